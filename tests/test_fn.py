import json
import tempfile
import unittest
from pathlib import Path

import yaml
from crossplane.function import logging, resource
from crossplane.function.proto.v1 import run_function_pb2 as fnv1
from google.protobuf import json_format

from samples import definitions_document, xapp_crd

from schema_selector import fn
from schema_selector.schema_service import ServiceConfig


class TestFunctionRunner(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        # Allow larger diffs, since we diff large strings of JSON.
        self.maxDiff = 2000

        logging.configure(level=logging.Level.DISABLED)

        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        version_dir = root / "kubernetes" / "v1.30.0"
        version_dir.mkdir(parents=True)
        (version_dir / "_definitions.json").write_text(
            json.dumps(definitions_document()), encoding="utf-8"
        )
        crd_dir = root / "crds"
        crd_dir.mkdir()
        (crd_dir / "xapp.yaml").write_text(yaml.safe_dump(xapp_crd()), encoding="utf-8")

        self.config = ServiceConfig(
            definitions_dir=str(root / "kubernetes"),
            crd_definitions_dir=str(crd_dir),
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def runner(self) -> fn.FunctionRunner:
        return fn.FunctionRunner(fn.SchemaSelectionFunction(self.config))

    async def run_input(self, runner: fn.FunctionRunner, spec: dict) -> dict:
        req = fnv1.RunFunctionRequest(
            meta=fnv1.RequestMeta(tag="test"),
            input=resource.dict_to_struct(
                {
                    "apiVersion": "schema-selector.fn.io/v1alpha1",
                    "kind": "Input",
                    "spec": spec,
                }
            ),
        )
        got = await runner.RunFunction(req, None)
        return json_format.MessageToDict(got)

    async def test_kubernetes_resource_selection(self) -> None:
        got = await self.run_input(
            self.runner(),
            {
                "source": {"type": "kubernetes", "version": "v1.30.0"},
                "resourceKey": "apps/v1/Deployment",
                "selectedFields": [
                    "spec.template.spec.containers[].image",
                    {"path": "apps/v1/Deployment.metadata.name", "title": "name"},
                ],
                "expandedPaths": ["spec"],
            },
        )

        self.assertEqual(got["results"][0]["severity"], "SEVERITY_NORMAL")
        self.assertEqual(
            got["results"][0]["message"], "Selected 2 fields of apps/v1/Deployment"
        )

        selection = got["context"][fn.CONTEXT_KEY]
        self.assertEqual(
            selection["selectedPaths"],
            ["metadata.name", "spec.template.spec.containers[].image"],
        )
        containers = selection["filteredSchema"]["properties"]["spec"]["properties"][
            "template"
        ]["properties"]["spec"]["properties"]["containers"]
        self.assertEqual(
            containers["items"]["properties"],
            {"image": {"type": "string", "description": "Container image name."}},
        )
        self.assertEqual(
            list(selection["templateSchema"]["properties"]),
            ["apiVersion", "kind", "metadata", "spec"],
        )
        spec_node = next(n for n in selection["tree"] if n["name"] == "spec")
        self.assertEqual(spec_node["children"][0]["path"], "spec.replicas")

    async def test_crd_source_by_group_version_kind(self) -> None:
        got = await self.run_input(
            self.runner(),
            {
                "source": {
                    "type": "crd",
                    "group": "platform.example.io",
                    "version": "v1alpha1",
                    "kind": "XApp",
                },
                "selectedFields": [
                    "spec.versions[0].schema.openAPIV3Schema.properties.spec.project"
                ],
            },
        )

        selection = got["context"][fn.CONTEXT_KEY]
        self.assertEqual(selection["resourceKey"], "crd-platform.example.io-v1alpha1-XApp")
        self.assertEqual(selection["selectedPaths"], ["spec.project"])
        self.assertEqual(
            selection["filteredSchema"]["properties"]["spec"]["required"], ["project"]
        )

    async def test_inline_crd(self) -> None:
        crd = xapp_crd()
        crd["spec"]["names"]["kind"] = "XWidget"
        crd["spec"]["names"]["plural"] = "xwidgets"

        got = await self.run_input(
            self.runner(),
            {"source": {"type": "crd", "crd": crd}, "selectedFields": ["spec.replicas"]},
        )

        selection = got["context"][fn.CONTEXT_KEY]
        self.assertEqual(selection["resourceKey"], "crd-platform.example.io-v1alpha1-XWidget")
        self.assertEqual(
            selection["templateSchema"]["properties"]["spec"]["properties"],
            {"replicas": {"type": "integer"}},
        )

    async def test_missing_resource_key(self) -> None:
        got = await self.run_input(self.runner(), {"source": {"type": "kubernetes"}})

        self.assertEqual(got["results"][0]["severity"], "SEVERITY_FATAL")
        self.assertIn("resourceKey", got["results"][0]["message"])
        self.assertNotIn(fn.CONTEXT_KEY, got.get("context", {}))

    async def test_unknown_resource(self) -> None:
        got = await self.run_input(
            self.runner(), {"resourceKey": "example.io/v1/Nothing"}
        )

        self.assertEqual(got["results"][0]["severity"], "SEVERITY_FATAL")
        self.assertTrue(got["results"][0]["message"].startswith("Schema selection failed:"))

    async def test_invalid_input(self) -> None:
        runner = self.runner()
        for spec in (
            {"source": {"type": "helm"}, "resourceKey": "v1/Pod"},
            {"resourceKey": "v1/Pod", "selectedFields": "spec"},
            {"source": {"type": "crd"}},
        ):
            got = await self.run_input(runner, spec)
            self.assertEqual(got["results"][0]["severity"], "SEVERITY_FATAL", spec)


if __name__ == "__main__":
    unittest.main()
