"""Kubernetes Schema Field Selection Function.

This function resolves the schema of a Kubernetes or custom resource, applies a
selection of fields to it and returns the schema tree, the filtered schema and
the template schema to later pipeline steps through the function context.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import grpc
from crossplane.function import logging as fn_logging
from crossplane.function import resource, response
from crossplane.function.proto.v1 import run_function_pb2 as fnv1
from crossplane.function.proto.v1 import run_function_pb2_grpc as grpcv1

from .k8s_client import K8sClient
from .schema_index import CRD_SOURCE_ID, crd_resource_key
from .schema_service import CLUSTER_SOURCE_ID, SchemaSelectionService, ServiceConfig

CONTEXT_KEY = "context.fn.schema-selector.io/schema-selection"


class SchemaSelectionFunction:
    """Main function class for schema field selection."""

    def __init__(
        self,
        config: ServiceConfig | None = None,
        k8s_client: K8sClient | None = None,
    ):
        """Initialize the function.

        Args:
            config: Engine settings; read from the environment when omitted
            k8s_client: Cluster client; created when a cluster source is enabled
        """
        self.logger = logging.getLogger(__name__)
        self.logger.info("Initializing SchemaSelectionFunction")

        self.config = config or ServiceConfig.from_env()
        self.logger.debug(
            f"Schema configuration: definitions={self.config.definitions_dir}, "
            f"crds={self.config.crd_definitions_dir}, source={self.config.source_id}"
        )
        self.logger.debug(
            f"Cache configuration: TTL={self.config.cache_ttl_seconds}s, "
            f"max_entries={self.config.cache_max_entries}"
        )

        if k8s_client is None and (
            self.config.enable_cluster_crds or self.config.source_id == CLUSTER_SOURCE_ID
        ):
            # Connects lazily on first use
            k8s_client = K8sClient()

        self.service = SchemaSelectionService(self.config, k8s_client)
        self.logger.info("SchemaSelectionFunction initialization complete")

    async def run_function_async(self, request: dict[str, Any]) -> dict[str, Any]:
        """Apply the selection described by the function input.

        Raises:
            ValueError: If the input specification is incomplete
            SchemaSelectionError: If the schema cannot be loaded or the resource
                is unknown
        """
        start_time = time.time()
        spec = request.get("input", {}).get("spec", {})
        self.logger.debug(f"Input specification keys: {list(spec.keys())}")

        source = spec.get("source") or {}
        source_type = source.get("type", "kubernetes")
        if source_type == "crd":
            source_id = CRD_SOURCE_ID
            resource_key = self._crd_resource_key(spec, source)
        elif source_type == "kubernetes":
            source_id = self.service.definitions_loader.source_id_for(source.get("version"))
            resource_key = spec.get("resourceKey")
            if not resource_key:
                raise ValueError("Missing 'resourceKey' in input specification")
        else:
            raise ValueError(f"Unsupported schema source type: {source_type}")

        selected_fields = spec.get("selectedFields")
        if selected_fields is not None and not isinstance(selected_fields, list):
            raise ValueError("'selectedFields' must be a list")
        expanded_paths = spec.get("expandedPaths")
        if expanded_paths is not None and not isinstance(expanded_paths, list):
            raise ValueError("'expandedPaths' must be a list")

        self.logger.debug(
            f"Selecting {len(selected_fields or [])} fields of {resource_key} from {source_id}"
        )
        result = await self.service.select(
            resource_key, selected_fields, expanded_paths, source_id
        )

        duration = time.time() - start_time
        self.logger.info(
            f"Schema selection for {resource_key} completed in {duration*1000:.1f}ms "
            f"({len(result.selected_paths)} selected paths)"
        )
        return result.to_dict()

    def _crd_resource_key(self, spec: dict[str, Any], source: dict[str, Any]) -> str:
        inline = source.get("crd")
        registered = self.service.register_crd(inline) if inline else []

        group = source.get("group")
        version = source.get("version")
        kind = source.get("kind")
        if registered:
            chosen = next((m for m in registered if m.version == version), registered[0])
            group = group or chosen.group
            version = version or chosen.version
            kind = kind or chosen.kind

        if group and version and kind:
            return crd_resource_key(group, version, kind)
        if spec.get("resourceKey"):
            return spec["resourceKey"]
        raise ValueError("CRD source requires 'group', 'version' and 'kind' or an inline 'crd'")


class FunctionRunner(grpcv1.FunctionRunnerService):
    """A FunctionRunner handles gRPC RunFunctionRequests."""

    def __init__(self, function: SchemaSelectionFunction | None = None):
        """Create a new FunctionRunner."""
        self.log = fn_logging.get_logger()
        self.log.info("Initializing FunctionRunner")
        self.function = function or SchemaSelectionFunction()
        self.log.debug("FunctionRunner initialization complete")

    async def RunFunction(
        self, req: fnv1.RunFunctionRequest, _: grpc.aio.ServicerContext
    ) -> fnv1.RunFunctionResponse:
        """Run the function."""
        log = self.log.bind(tag=req.meta.tag)
        log.info("schema-selection.start", step="schema-selection")

        rsp = response.to(req)

        input_dict = resource.struct_to_dict(req.input) if req.input else {}
        request_dict = {"input": input_dict}
        log.debug(f"Prepared request dictionary: input keys={list(input_dict.keys())}")

        try:
            result = await self.function.run_function_async(request_dict)

            current_ctx = resource.struct_to_dict(rsp.context)
            current_ctx[CONTEXT_KEY] = result
            rsp.context = resource.dict_to_struct(current_ctx)
            log.debug(f"Wrote schema selection to context key: {CONTEXT_KEY}")

            response.normal(
                rsp,
                f"Selected {len(result['selectedPaths'])} fields of {result['resourceKey']}",
            )
            log.info("schema-selection.complete", step="schema-selection")

        except Exception as e:
            log.error("schema-selection.error", error=str(e))
            log.debug(f"Function execution failed with exception: {e}", exc_info=True)
            response.fatal(rsp, f"Schema selection failed: {e!s}")

        return rsp
