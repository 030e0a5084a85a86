"""Unit tests for the dependency graph engine."""

import pytest

from plantrack.database import Database
from plantrack.dependencies import DependencyGraph
from plantrack.errors import ValidationError
from plantrack.models import ChainDirection, DependencyType, EntityKind, EntityRef
from plantrack.planning_logging import observability_hooks


def task(name):
    return EntityRef(EntityKind.TASK, name)


@pytest.fixture
def db():
    database = Database()
    yield database
    database.close()


@pytest.fixture
def graph(db):
    return DependencyGraph(db)


class TestEdges:
    """Test cases for creating, finding and deleting edges."""

    def test_exists_after_create(self, graph):
        """Test that a created edge exists in its own direction only."""
        a, b = task("a"), task("b")

        dependency = graph.create(a, b)

        assert dependency.dependency_type == DependencyType.BLOCKS
        assert graph.exists(a, b)
        assert not graph.exists(b, a)

    def test_not_exists_after_delete(self, graph):
        """Test deleting the edges between two entities."""
        a, b = task("a"), task("b")
        graph.create(a, b)

        assert graph.delete_between(a, b) == 1
        assert not graph.exists(a, b)
        assert graph.delete_between(a, b) == 0

    def test_delete_by_id(self, graph):
        """Test deleting an edge by id."""
        dependency = graph.create(task("a"), task("b"))

        assert graph.delete(dependency.id) is True
        assert graph.find_by_id(dependency.id) is None
        assert graph.delete(dependency.id) is False

    def test_find_by_source_and_target_in_insertion_order(self, graph):
        """Test finding edges by either end, in insertion order."""
        a = task("a")
        graph.create(a, task("b"))
        graph.create(a, task("c"), DependencyType.RELATED_TO)
        graph.create(a, task("d"))

        assert [d.target.id for d in graph.find_by_source(a)] == ["b", "c", "d"]
        assert [d.target.id for d in graph.find_by_source(a, [DependencyType.BLOCKS])] == ["b", "d"]
        assert [d.source.id for d in graph.find_by_target(task("c"))] == ["a"]

    def test_find_by_entity_covers_both_ends(self, graph):
        """Test that find_by_entity returns edges at either end."""
        graph.create(task("a"), task("b"))
        graph.create(task("b"), task("c"))
        graph.create(task("x"), task("y"))

        edges = graph.find_by_entity(task("b"))

        assert {(d.source.id, d.target.id) for d in edges} == {("a", "b"), ("b", "c")}

    def test_blockers_ignore_non_blocking_edges(self, graph):
        """Test that only blocks edges make blockers."""
        graph.create(task("a"), task("c"))
        graph.create(task("b"), task("c"), DependencyType.RELATED_TO)

        assert graph.get_blockers(task("c")) == [task("a")]
        assert graph.get_blocked(task("a")) == [task("c")]
        assert graph.get_blocked(task("b")) == []

    def test_edges_between_different_kinds(self, graph):
        """Test that an edge is keyed by entity kind as well as id."""
        milestone = EntityRef(EntityKind.MILESTONE, "m1")
        graph.create(milestone, task("a"))

        assert graph.get_blockers(task("a")) == [milestone]
        assert graph.exists(milestone, task("a"))
        assert not graph.exists(task("m1"), task("a"))

    def test_delete_all_for_entity(self, graph):
        """Test removing every edge that touches an entity."""
        graph.create(task("a"), task("b"))
        graph.create(task("b"), task("c"))
        graph.create(task("c"), task("d"))

        assert graph.delete_all_for_entity(task("b")) == 2
        assert graph.find_by_entity(task("b")) == []
        assert graph.exists(task("c"), task("d"))

    def test_count_for_entity(self, graph):
        """Test counting an entity's edges by end."""
        graph.create(task("a"), task("b"))
        graph.create(task("a"), task("c"))
        graph.create(task("d"), task("a"))

        assert graph.count_for_entity(task("a")) == {"as_source": 2, "as_target": 1}
        assert graph.count_for_entity(task("zzz")) == {"as_source": 0, "as_target": 0}

    def test_create_emits_planning_event(self, graph):
        """Test that creating an edge emits a dependency_created event."""
        events = []

        def hook(**data):
            events.append(data)

        observability_hooks.register_hook("dependency_created", hook)
        try:
            graph.create(task("a"), task("b"))
        finally:
            observability_hooks.unregister_hook("dependency_created", hook)

        assert len(events) == 1
        assert events[0]["source"] == "task:a"
        assert events[0]["target"] == "task:b"

    def test_unknown_dependency_type_raises(self, graph):
        """Test that an unknown dependency type is rejected."""
        with pytest.raises(ValidationError):
            graph.create(task("a"), task("b"), "depends_on")


class TestCycleDetection:
    """Test cases for would_create_cycle."""

    def test_self_reference_is_a_cycle(self, graph):
        """Test that an edge from an entity to itself is a cycle."""
        assert graph.would_create_cycle(task("a"), task("a"))

    def test_closing_edge_is_detected(self, graph):
        """Test detecting the edge that closes a chain into a cycle."""
        a, b, c = task("a"), task("b"), task("c")
        graph.create(a, b)
        graph.create(b, c)

        assert graph.would_create_cycle(c, a)
        assert not graph.would_create_cycle(a, c)

    def test_unrelated_edge_is_not_a_cycle(self, graph):
        """Test that an edge between unconnected entities is safe."""
        graph.create(task("a"), task("b"))

        assert not graph.would_create_cycle(task("c"), task("d"))

    def test_only_blocks_edges_count(self, graph):
        """Test that non-blocking edges never form a cycle."""
        graph.create(task("a"), task("b"), DependencyType.RELATED_TO)
        graph.create(task("b"), task("c"), DependencyType.REQUIRED_BY)

        assert not graph.would_create_cycle(task("c"), task("a"))

    def test_diamond_is_not_a_cycle(self, graph):
        """Test that a diamond is not a cycle but closing it is."""
        graph.create(task("a"), task("b"))
        graph.create(task("a"), task("c"))
        graph.create(task("b"), task("d"))

        assert not graph.would_create_cycle(task("c"), task("d"))
        assert graph.would_create_cycle(task("d"), task("a"))


class TestDependencyChain:
    """Test cases for get_dependency_chain."""

    def test_upstream_chain_is_breadth_first(self, graph):
        """Test that the upstream chain is walked breadth first."""
        # a -> b -> d and c -> d: d waits on b and c, b waits on a
        graph.create(task("b"), task("d"))
        graph.create(task("c"), task("d"))
        graph.create(task("a"), task("b"))

        chain = graph.get_dependency_chain(task("d"), ChainDirection.UPSTREAM)

        assert [(item.entity.id, item.depth) for item in chain] == [("b", 1), ("c", 1), ("a", 2)]

    def test_downstream_chain(self, graph):
        """Test the downstream chain and its edge types."""
        graph.create(task("a"), task("b"))
        graph.create(task("b"), task("c"), DependencyType.RELATED_TO)

        chain = graph.get_dependency_chain(task("a"), "downstream")

        assert [(i.entity.id, i.depth, i.dependency_type) for i in chain] == [
            ("b", 1, DependencyType.BLOCKS),
            ("c", 2, DependencyType.RELATED_TO),
        ]

    def test_each_entity_reported_once_at_shortest_depth(self, graph):
        """Test that each entity appears once at its shortest depth."""
        graph.create(task("a"), task("b"))
        graph.create(task("b"), task("c"))
        graph.create(task("a"), task("c"))

        chain = graph.get_dependency_chain(task("a"), ChainDirection.DOWNSTREAM)

        assert [(i.entity.id, i.depth) for i in chain] == [("b", 1), ("c", 1)]

    def test_origin_is_never_reported(self, graph):
        """Test that the starting entity is left out of its own chain."""
        # related_to edges may close a loop
        graph.create(task("a"), task("b"), DependencyType.RELATED_TO)
        graph.create(task("b"), task("a"), DependencyType.RELATED_TO)

        chain = graph.get_dependency_chain(task("a"), ChainDirection.DOWNSTREAM)

        assert [i.entity.id for i in chain] == ["b"]

    def test_max_depth_bounds_the_walk(self, graph):
        """Test that max_depth limits the walk."""
        names = ["n0", "n1", "n2", "n3", "n4"]
        for source, target in zip(names, names[1:]):
            graph.create(task(source), task(target))

        chain = graph.get_dependency_chain(task("n0"), ChainDirection.DOWNSTREAM, max_depth=2)

        assert [(i.entity.id, i.depth) for i in chain] == [("n1", 1), ("n2", 2)]
        assert graph.get_dependency_chain(task("n0"), ChainDirection.DOWNSTREAM, max_depth=0) == []

    def test_negative_max_depth_raises(self, graph):
        """Test that a negative max_depth is rejected."""
        with pytest.raises(ValidationError):
            graph.get_dependency_chain(task("a"), max_depth=-1)

    def test_isolated_entity_has_empty_chain(self, graph):
        """Test the chain of an entity without edges."""
        assert graph.get_dependency_chain(task("lonely")) == []
