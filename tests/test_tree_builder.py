"""Tests for lazy schema tree construction."""

import pytest

from samples import DEPLOYMENT, definitions_index

from schema_selector.reference_resolver import ReferenceResolver
from schema_selector.schema_nodes import ArrayNode, ObjectNode, ScalarNode
from schema_selector.tree_builder import (
    TreeBuilder,
    build_children,
    container_of,
    index_nodes,
    initial_expansion,
)


@pytest.fixture
def deployment():
    return ReferenceResolver(definitions_index()).resolve_definition(DEPLOYMENT)


@pytest.fixture
def builder():
    return TreeBuilder()


class TestTreeBuilder:
    """Test suite for TreeBuilder."""

    def test_first_level_only(self, builder, deployment):
        tree = builder.build_children(deployment)

        assert [node.name for node in tree] == ["apiVersion", "kind", "metadata", "spec"]
        by_name = {node.name: node for node in tree}
        assert by_name["spec"].has_children
        assert by_name["spec"].children == []
        assert not by_name["apiVersion"].has_children
        assert by_name["spec"].is_reference

    def test_expanded_paths_materialize_children(self, builder, deployment):
        expanded = {
            "spec",
            "spec.template",
            "spec.template.spec",
            "spec.template.spec.containers",
        }
        tree = builder.build_children(deployment, expanded_paths=expanded)
        nodes = index_nodes(tree)

        containers = nodes["spec.template.spec.containers"]
        assert containers.type == "array"
        assert containers.has_children
        assert [child.path for child in containers.children] == [
            "spec.template.spec.containers[].name",
            "spec.template.spec.containers[].image",
            "spec.template.spec.containers[].args",
            "spec.template.spec.containers[].ports",
        ]
        # Not expanded
        assert nodes["spec.template.metadata"].children == []
        assert "spec.selector.matchLabels" not in nodes

    def test_required_and_scalar_details(self, builder, deployment):
        expanded = {"spec", "spec.template", "spec.template.spec", "spec.template.spec.containers"}
        nodes = index_nodes(builder.build_children(deployment, expanded_paths=expanded))

        assert nodes["spec.template"].required
        assert not nodes["spec.replicas"].required
        assert nodes["spec.replicas"].format == "int32"
        assert nodes["spec.strategy"].enum == ["Recreate", "RollingUpdate"]
        assert nodes["spec.template.spec.containers[].name"].required
        assert not nodes["spec.template.spec.containers[].image"].required

    def test_array_children_rules(self, builder, deployment):
        expanded = {"spec", "spec.template", "spec.template.spec", "spec.template.spec.containers"}
        nodes = index_nodes(builder.build_children(deployment, expanded_paths=expanded))

        assert not nodes["spec.template.spec.containers[].args"].has_children
        assert nodes["spec.template.spec.containers[].ports"].has_children

    def test_build_children_under_prefix(self, builder, deployment):
        spec = deployment.properties["spec"]
        tree = builder.build_children(spec, "spec")
        assert tree[0].path == "spec.replicas"

    def test_build_children_of_array(self, builder):
        node = ArrayNode(items=ObjectNode(properties={"x": ScalarNode(type="string")}))
        tree = build_children(node, "list")
        assert [n.path for n in tree] == ["list[].x"]

    def test_leaf_has_no_children(self, builder):
        assert builder.build_children(ScalarNode(type="string"), "a") == []
        assert container_of(ObjectNode(), "a") == (None, "a")

    def test_circular_stub_is_a_leaf(self, builder):
        node = ReferenceResolver(definitions_index()).resolve_definition("io.example.Node")
        tree = builder.build_children(node)
        parent = {n.name: n for n in tree}["parent"]

        assert parent.type == "object"
        assert parent.is_reference
        assert not parent.has_children

    def test_expand_on_demand(self, builder, deployment):
        tree = builder.build_children(deployment)
        node = builder.expand(tree, "spec")

        assert node is not None
        assert "spec.replicas" in index_nodes(tree)
        assert builder.expand(tree, "does.not.exist") is None

    def test_max_depth(self, deployment):
        builder = TreeBuilder(max_depth=1)
        tree = builder.build_children(deployment, expanded_paths={"spec"})
        spec = {n.name: n for n in tree}["spec"]
        assert spec.children == []

    def test_to_dict(self, builder, deployment):
        tree = builder.build_children(deployment, expanded_paths={"spec"})
        data = {n["name"]: n for n in (node.to_dict() for node in tree)}

        assert data["spec"]["hasChildren"] is True
        assert data["spec"]["isReference"] is True
        assert data["spec"]["children"][0]["path"] == "spec.replicas"
        assert "children" not in data["kind"]
        assert data["apiVersion"]["description"] == "APIVersion of the object."


class TestInitialExpansion:
    def test_without_persisted_state(self, builder, deployment):
        tree = builder.build_children(deployment)
        assert initial_expansion(tree, None) == {"metadata", "spec"}

    def test_persisted_state_restored_verbatim(self, builder, deployment):
        tree = builder.build_children(deployment)
        assert initial_expansion(tree, []) == set()
        assert initial_expansion(tree, ["spec.template"]) == {"spec.template"}
