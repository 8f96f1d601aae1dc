"""Kubernetes client for the schema selection function.

This module reads schema material from a live cluster: the aggregated OpenAPI v2
document served at ``/openapi/v2`` and CustomResourceDefinition objects. The
``kubernetes`` client is blocking, so every call runs in the default executor.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException

from .errors import (
    SchemaSourceConnectionError,
    SchemaSourceError,
    SchemaSourceNotFoundError,
    SchemaSourcePermissionError,
)

OPENAPI_V2_PATH = "/openapi/v2"


class K8sClient:
    """Kubernetes client for OpenAPI and CRD schema retrieval."""

    def __init__(self, connection_timeout: int = 30, read_timeout: int = 60):
        """Initialize the Kubernetes client.

        Args:
            connection_timeout: Connection timeout in seconds
            read_timeout: Read timeout in seconds
        """
        self.connection_timeout = connection_timeout
        self.read_timeout = read_timeout
        self.logger = logging.getLogger(__name__)

        # Client instances
        self._api_client: client.ApiClient | None = None
        self._version_api: client.VersionApi | None = None
        self._extensions_v1: client.ApiextensionsV1Api | None = None

        # Connection state
        self._connected = False
        self._last_health_check = 0.0
        self._health_check_interval = 30.0

    async def connect(self) -> None:
        """Load cluster configuration and verify the API server is reachable.

        Raises:
            SchemaSourceConnectionError: If no configuration is available or the
                server cannot be reached
            SchemaSourcePermissionError: If the server rejects the credentials
        """
        try:
            # First try in-cluster config, then fall back to local config
            try:
                config.load_incluster_config()
                self.logger.info("Using in-cluster Kubernetes configuration")
            except config.ConfigException:
                try:
                    config.load_kube_config()
                    self.logger.info("Using local Kubernetes configuration")
                except config.ConfigException as e:
                    raise SchemaSourceConnectionError(
                        f"Unable to load Kubernetes configuration: {e}"
                    ) from e

            configuration = client.Configuration.get_default_copy()
            configuration.connection_pool_maxsize = 4
            configuration.retries = 0

            self._api_client = client.ApiClient(configuration)
            self._version_api = client.VersionApi(self._api_client)
            self._extensions_v1 = client.ApiextensionsV1Api(self._api_client)

            await self._test_connection()
            self._connected = True
            self._last_health_check = time.time()

            self.logger.info("Successfully connected to Kubernetes cluster")

        except Exception as e:
            self._connected = False
            if isinstance(e, SchemaSourceError):
                raise
            raise SchemaSourceConnectionError(f"Failed to connect to Kubernetes: {e}") from e

    async def disconnect(self) -> None:
        """Close connection to Kubernetes cluster."""
        if self._api_client:
            self._api_client.close()

        self._api_client = None
        self._version_api = None
        self._extensions_v1 = None
        self._connected = False

        self.logger.info("Disconnected from Kubernetes cluster")

    async def _test_connection(self) -> None:
        """Test Kubernetes cluster connectivity."""
        if not self._version_api:
            raise SchemaSourceConnectionError("Version API client not initialized")

        await self._call(self._version_api.get_code)

    async def _ensure_connected(self) -> None:
        """Ensure connection is active and perform health checks."""
        current_time = time.time()

        if not self._connected:
            await self.connect()
        elif current_time - self._last_health_check > self._health_check_interval:
            try:
                await self._test_connection()
                self._last_health_check = current_time
            except SchemaSourceError:
                self.logger.warning("Health check failed, reconnecting...")
                await self.connect()

    async def _call(self, func, *args, **kwargs) -> Any:
        """Run a blocking client call in the executor and map API errors."""
        try:
            return await asyncio.get_event_loop().run_in_executor(
                None, functools.partial(func, *args, **kwargs)
            )
        except ApiException as e:
            raise self._map_api_exception(e) from e
        except Exception as e:
            raise SchemaSourceConnectionError(f"Kubernetes request failed: {e}") from e

    def _map_api_exception(self, e: ApiException) -> SchemaSourceError:
        if e.status == 401:
            return SchemaSourcePermissionError("Kubernetes authentication failed")
        if e.status == 403:
            return SchemaSourcePermissionError("Insufficient permissions for Kubernetes API")
        if e.status == 404:
            return SchemaSourceNotFoundError(f"Resource not found: {e.reason}")
        return SchemaSourceConnectionError(f"Kubernetes request failed: {e.status} {e.reason}")

    async def get_openapi_definitions(self) -> dict[str, Any]:
        """Fetch the cluster's aggregated OpenAPI v2 document.

        Returns:
            The document, including its ``definitions`` map

        Raises:
            SchemaSourceError: If the request fails
        """
        await self._ensure_connected()

        document = await self._call(
            self._api_client.call_api,
            OPENAPI_V2_PATH,
            "GET",
            response_type="object",
            auth_settings=["BearerToken"],
            _return_http_data_only=True,
            _request_timeout=(self.connection_timeout, self.read_timeout),
        )
        if not isinstance(document, dict):
            raise SchemaSourceConnectionError(
                f"Unexpected response from {OPENAPI_V2_PATH}: {type(document).__name__}"
            )

        self.logger.debug(
            f"Fetched OpenAPI document with {len(document.get('definitions') or {})} definitions"
        )
        return document

    async def list_crds(self, label_selector: str | None = None) -> list[dict[str, Any]]:
        """List CustomResourceDefinitions as plain dictionaries.

        Args:
            label_selector: Label selector for filtering

        Returns:
            CRD documents with camelCase keys, as served by the API
        """
        await self._ensure_connected()

        kwargs = {"label_selector": label_selector} if label_selector else {}
        response = await self._call(
            self._extensions_v1.list_custom_resource_definition, **kwargs
        )
        items = [self._api_client.sanitize_for_serialization(crd) for crd in response.items]
        self.logger.debug(f"Listed {len(items)} CustomResourceDefinitions")
        return items

    async def get_crd(self, group: str, kind: str) -> dict[str, Any]:
        """Get a single CustomResourceDefinition by group and kind.

        Raises:
            SchemaSourceNotFoundError: If the CRD does not exist
            SchemaSourcePermissionError: If insufficient permissions
            SchemaSourceConnectionError: If connection fails
        """
        await self._ensure_connected()

        name = f"{self._get_plural_form(kind)}.{group}"
        crd = await self._call(self._extensions_v1.read_custom_resource_definition, name)
        return self._api_client.sanitize_for_serialization(crd)

    def _get_plural_form(self, kind: str) -> str:
        """Get plural form of a Kubernetes resource kind.

        CRD object names are ``<plural>.<group>``; this covers regular English
        plurals only.
        """
        irregular = {
            "Endpoints": "endpoints",
            "NetworkPolicy": "networkpolicies",
        }

        if kind in irregular:
            return irregular[kind]

        kind_lower = kind.lower()
        if kind_lower.endswith("s"):
            return kind_lower + "es"
        elif kind_lower.endswith("y"):
            return kind_lower[:-1] + "ies"
        else:
            return kind_lower + "s"

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[K8sClient, None]:
        """Context manager for managing Kubernetes connections."""
        try:
            await self.connect()
            yield self
        finally:
            await self.disconnect()

    @property
    def is_connected(self) -> bool:
        """Check if client is connected to Kubernetes cluster."""
        return self._connected
