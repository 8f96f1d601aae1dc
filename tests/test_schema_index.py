"""Unit tests for the schema definition index."""

import unittest

from samples import DEPLOYMENT, crd_index, definitions_index, xapp_crd

from schema_selector.errors import InvalidCRDError, ResourceNotFoundError
from schema_selector.schema_index import (
    SchemaDefinitionIndex,
    api_version_for,
    crd_resource_key,
    display_name_for,
    validate_crd,
)


class TestDefinitionsIndex(unittest.TestCase):
    """Indexes built from Kubernetes definitions documents."""

    def setUp(self):
        self.index = definitions_index()

    def test_kinds_indexed_from_group_version_kind(self):
        self.assertEqual(self.index.get_available_kinds(), ["Deployment", "Pod"])
        self.assertEqual(
            self.index.definition_name_for_gvk("apps", "v1", "Deployment"), DEPLOYMENT
        )
        self.assertEqual(
            self.index.definition_name_for_gvk("", "v1", "Pod"), "io.k8s.api.core.v1.Pod"
        )

    def test_lookup_accepts_resource_keys_and_definition_names(self):
        name, metadata = self.index.lookup("apps/v1/Deployment")
        self.assertEqual(name, DEPLOYMENT)
        self.assertEqual(metadata.kind, "Deployment")

        name, metadata = self.index.lookup("v1/Pod")
        self.assertEqual(name, "io.k8s.api.core.v1.Pod")
        self.assertEqual(metadata.api_version, "v1")

        name, metadata = self.index.lookup("core/v1/Pod")
        self.assertEqual(name, "io.k8s.api.core.v1.Pod")

        name, metadata = self.index.lookup(DEPLOYMENT)
        self.assertEqual(name, DEPLOYMENT)
        self.assertEqual(metadata.resource_key, "apps/v1/Deployment")

    def test_lookup_of_definition_without_resource(self):
        name, metadata = self.index.lookup("io.k8s.api.core.v1.Container")
        self.assertEqual(name, "io.k8s.api.core.v1.Container")
        self.assertIsNone(metadata)

    def test_lookup_unknown_key_raises(self):
        with self.assertRaises(ResourceNotFoundError):
            self.index.lookup("batch/v1/Job")

    def test_display_names(self):
        names = {m.kind: m.display_name for m in self.index.list_resources()}
        self.assertEqual(names, {"Deployment": "Deployment v1 (apps)", "Pod": "Pod v1"})

    def test_search(self):
        results = self.index.search("deploy")
        self.assertEqual([m.kind for m in results], ["Deployment"])

        # Description matches count too
        results = self.index.search("collection of containers")
        self.assertEqual([m.kind for m in results], ["Pod"])

        self.assertEqual(self.index.search("   "), [])

    def test_get_returns_only_mappings(self):
        index = SchemaDefinitionIndex("test", {"definitions": {"a": {"type": "string"}, "b": 3}})
        self.assertEqual(index.get("a"), {"type": "string"})
        self.assertIsNone(index.get("b"))
        self.assertIsNone(index.get("missing"))

    def test_metadata_to_dict(self):
        _, metadata = self.index.lookup("apps/v1/Deployment")
        data = metadata.to_dict()
        self.assertEqual(data["resourceKey"], "apps/v1/Deployment")
        self.assertEqual(data["apiVersion"], "apps/v1")
        self.assertEqual(data["definitionKey"], DEPLOYMENT)


class TestCRDIndex(unittest.TestCase):
    """Indexes built from CustomResourceDefinitions."""

    def test_crd_versions_become_definitions(self):
        index = crd_index()
        key = crd_resource_key("platform.example.io", "v1alpha1", "XApp")

        self.assertTrue(index.is_crd)
        self.assertEqual(index.crd_kind, "XApp")
        self.assertIn(key, index.definitions)
        self.assertEqual(index.lookup(key)[1].display_name, "XApp v1alpha1 (platform.example.io)")
        self.assertEqual(
            index.by_resource_key[key].description, "An application deployed by the platform."
        )

    def test_crd_without_annotations(self):
        crd = xapp_crd()
        crd["metadata"] = {"name": "xapps.platform.example.io"}
        index = SchemaDefinitionIndex.from_crd(crd)
        self.assertEqual(len(index.list_resources()), 1)

    def test_invalid_crd_raises_with_errors(self):
        crd = xapp_crd()
        crd["kind"] = "Deployment"
        crd["spec"]["versions"] = []

        with self.assertRaises(InvalidCRDError) as ctx:
            SchemaDefinitionIndex.from_crd(crd)

        self.assertIn("Expected kind to be CustomResourceDefinition", ctx.exception.errors)
        self.assertIn("Missing or invalid versions array", ctx.exception.errors)

    def test_validate_crd(self):
        self.assertEqual(validate_crd(xapp_crd()), [])
        self.assertEqual(validate_crd("nope"), ["CRD document must be a mapping"])

        crd = xapp_crd()
        del crd["spec"]["names"]
        self.assertEqual(validate_crd(crd), ["Missing required spec fields: group and names.kind"])


class TestHelpers(unittest.TestCase):
    def test_api_version_for(self):
        self.assertEqual(api_version_for("core", "v1"), "v1")
        self.assertEqual(api_version_for("", "v1"), "v1")
        self.assertEqual(api_version_for("apps", "v1"), "apps/v1")

    def test_display_name_for(self):
        self.assertEqual(display_name_for("", "v1", "Service"), "Service v1")
        self.assertEqual(display_name_for("batch", "v1", "Job"), "Job v1 (batch)")


if __name__ == "__main__":
    unittest.main()
