"""Tests for field selection and schema filtering."""

import unittest

from schema_selector.field_selection import (
    FieldSelection,
    FieldSelectionFilter,
    TemplateField,
    ancestor_paths,
    build_template_schema,
    filter_schema,
    is_descendant,
    schema_at_path,
)
from schema_selector.schema_nodes import ArrayNode, ObjectNode, ScalarNode, SchemaNode


def workload_schema() -> ObjectNode:
    return ObjectNode(
        properties={
            "apiVersion": ScalarNode(type="string", description="APIVersion of the object."),
            "kind": ScalarNode(type="string"),
            "metadata": ObjectNode(
                properties={
                    "name": ScalarNode(type="string"),
                    "namespace": ScalarNode(type="string"),
                },
                description="Standard object's metadata.",
            ),
            "spec": ObjectNode(
                properties={
                    "replicas": ScalarNode(type="integer"),
                    "containers": ArrayNode(
                        items=ObjectNode(
                            properties={
                                "image": ScalarNode(type="string"),
                                "name": ScalarNode(type="string"),
                            },
                            required=("name",),
                        )
                    ),
                },
                required=("replicas", "containers"),
            ),
        }
    )


def field(path: str) -> TemplateField:
    return TemplateField.from_path(path)


def collect_paths(node: SchemaNode, prefix: str = "") -> set[str]:
    """Canonical paths present in a filtered schema."""
    paths = set()
    if isinstance(node, ArrayNode):
        return collect_paths(node.items, f"{prefix}[]") if node.items else paths
    if isinstance(node, ObjectNode):
        for name, prop in node.properties.items():
            path = f"{prefix}.{name}" if prefix else name
            paths.add(path)
            paths |= collect_paths(prop, path)
    return paths


class TestFieldSelectionFilter(unittest.TestCase):
    """Test cases for FieldSelectionFilter."""

    def setUp(self):
        self.filter = FieldSelectionFilter()
        self.schema = workload_schema()

    def test_array_item_selection(self):
        filtered = self.filter.filter(self.schema, {"spec.containers[].image"})

        self.assertEqual(
            filtered.to_dict(),
            {
                "type": "object",
                "properties": {
                    "spec": {
                        "type": "object",
                        "properties": {
                            "containers": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {"image": {"type": "string"}},
                                },
                            }
                        },
                        "required": ["containers"],
                    }
                },
            },
        )

    def test_minimality(self):
        selected = {"spec.containers[].image", "metadata.name"}
        filtered = self.filter.filter(self.schema, selected)

        self.assertEqual(
            collect_paths(filtered),
            {
                "metadata",
                "metadata.name",
                "spec",
                "spec.containers",
                "spec.containers[].image",
            },
        )

    def test_selected_object_copied_whole(self):
        filtered = self.filter.filter(self.schema, {"metadata"})
        self.assertIs(filtered.properties["metadata"], self.schema.properties["metadata"])

    def test_empty_selection(self):
        filtered = self.filter.filter(self.schema, set())
        self.assertEqual(filtered.properties, {})
        self.assertEqual(filtered.to_dict(), {"type": "object"})

    def test_required_pruned_to_survivors(self):
        filtered = self.filter.filter(self.schema, {"spec.replicas"})
        self.assertEqual(filtered.properties["spec"].required, ("replicas",))

    def test_mismatched_shape_keeps_field(self):
        # Dot path into an array; the array is kept whole
        filtered = self.filter.filter(self.schema, {"spec.containers.image"})
        self.assertIs(
            filtered.properties["spec"].properties["containers"],
            self.schema.properties["spec"].properties["containers"],
        )

    def test_non_object_root(self):
        filtered = filter_schema(ScalarNode(type="string", description="text"), {"a"})
        self.assertEqual(filtered, ObjectNode(description="text"))

    def test_source_schema_untouched(self):
        before = self.schema.to_dict()
        self.filter.filter(self.schema, {"spec.replicas"})
        self.assertEqual(self.schema.to_dict(), before)


class TestFieldSelection(unittest.TestCase):
    """Test cases for FieldSelection."""

    def test_selecting_ancestor_replaces_descendants(self):
        selection = FieldSelection()
        selection.select(field("spec.template.spec"))
        selection.select(field("spec.containers[].image"))

        self.assertTrue(selection.select(field("spec")))
        self.assertEqual(selection.paths(), {"spec"})

    def test_descendant_of_selected_is_absorbed(self):
        selection = FieldSelection([field("a.b")])

        self.assertFalse(selection.select(field("a.b.c")))
        self.assertEqual(selection.paths(), {"a.b"})

    def test_select_after_descendant(self):
        selection = FieldSelection([field("a.b.c")])
        selection.select(field("a.b"))
        self.assertEqual(selection.paths(), {"a.b"})

    def test_sibling_with_shared_prefix_is_independent(self):
        selection = FieldSelection([field("spec.replica"), field("spec.replicas")])
        self.assertEqual(selection.paths(), {"spec.replica", "spec.replicas"})

        selection.deselect("spec.replica")
        self.assertEqual(selection.paths(), {"spec.replicas"})

    def test_deselect_removes_descendants(self):
        selection = FieldSelection(
            [field("spec.replicas"), field("spec.containers[].image"), field("metadata.name")]
        )

        removed = selection.deselect("spec")

        self.assertEqual({f.path for f in removed}, {"spec.replicas", "spec.containers[].image"})
        self.assertEqual(selection.paths(), {"metadata.name"})

    def test_reselect_replaces_field(self):
        selection = FieldSelection([field("spec.replicas")])
        selection.select(TemplateField(path="spec.replicas", title="replicas", type="integer"))
        self.assertEqual(len(selection), 1)
        self.assertEqual(selection.fields[0].type, "integer")

    def test_clear(self):
        selection = FieldSelection([field("a"), field("b")])
        selection.clear()
        self.assertEqual(selection.fields, [])

    def test_reveal_path(self):
        selection = FieldSelection()
        self.assertEqual(selection.reveal_path("spec.containers[].image"), ["spec", "spec.containers"])
        self.assertEqual(ancestor_paths("metadata"), [])

    def test_is_descendant(self):
        self.assertTrue(is_descendant("a.b", "a"))
        self.assertTrue(is_descendant("a[].b", "a"))
        self.assertFalse(is_descendant("ab", "a"))
        self.assertFalse(is_descendant("a", "a"))


class TestTemplateField(unittest.TestCase):
    def test_round_trip_keys(self):
        template_field = TemplateField(
            path="spec.replicas", title="replicas", type="integer", required=True, format="int32"
        )
        data = template_field.to_dict()

        self.assertEqual(data["templateType"], "kubernetes")
        self.assertNotIn("description", data)
        self.assertEqual(TemplateField.from_dict(data), template_field)

    def test_from_path(self):
        self.assertEqual(field("spec.containers[]").title, "containers")
        self.assertEqual(field("spec.replicas").type, "unknown")

    def test_from_dict_default_title(self):
        stored = TemplateField.from_dict({"path": "spec.containers[]", "type": "array"})

        self.assertEqual(stored.title, "containers")
        self.assertEqual(stored.title, field("spec.containers[]").title)


class TestTemplateSchema(unittest.TestCase):
    def test_envelope(self):
        schema = workload_schema()
        filtered = filter_schema(schema, {"spec.replicas", "metadata.namespace"})

        template = build_template_schema(filtered, schema)
        properties = template["properties"]

        self.assertEqual(list(properties), ["apiVersion", "kind", "metadata", "spec"])
        self.assertEqual(properties["apiVersion"]["description"], "APIVersion of the object.")
        self.assertEqual(
            set(properties["metadata"]["properties"]),
            {"name", "labels", "annotations", "namespace"},
        )
        self.assertEqual(properties["metadata"]["description"], "Standard object's metadata.")
        self.assertEqual(properties["spec"]["properties"], {"replicas": {"type": "integer"}})

    def test_envelope_without_source_fields(self):
        template = build_template_schema(ObjectNode(), ObjectNode())
        self.assertEqual(template["properties"]["kind"], {"type": "string"})
        self.assertEqual(
            template["properties"]["metadata"]["properties"]["labels"], {"type": "object"}
        )


class TestSchemaAtPath(unittest.TestCase):
    def test_lookup(self):
        schema = workload_schema()
        self.assertEqual(schema_at_path(schema, "spec.containers[].image"), ScalarNode(type="string"))
        self.assertIsInstance(schema_at_path(schema, "spec.containers"), ArrayNode)
        self.assertIsNone(schema_at_path(schema, "spec.missing"))
        self.assertIsNone(schema_at_path(schema, "spec.replicas[]"))


if __name__ == "__main__":
    unittest.main()
