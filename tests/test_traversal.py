import unittest

from core.database import InMemoryGraphStore
from core.exceptions import InvalidRequestError, NotFoundError
from core.traversal import connected_nodes, format_path, label_map, shortest_path


class TraversalTestCase(unittest.TestCase):

    def setUp(self):
        # A -x(1)-> B -y(1)-> C, plus a costly shortcut A -z(5)-> C
        self.store = InMemoryGraphStore()
        self.a = self.store.create_node("A")
        self.b = self.store.create_node("B")
        self.c = self.store.create_node("C")
        self.store.create_edge(self.a.id, self.b.id, "x", weight=1.0)
        self.store.create_edge(self.b.id, self.c.id, "y", weight=1.0)
        self.store.create_edge(self.a.id, self.c.id, "z", weight=5.0)

    def depths(self, results):
        return {r.node.label: r.depth for r in results}


class TestConnectedNodes(TraversalTestCase):

    def test_depth_one(self):
        # C is also directly reachable through the shortcut edge.
        results = connected_nodes(self.store, self.a.id, 1)
        self.assertEqual(self.depths(results), {"A": 0, "B": 1, "C": 1})

    def test_depth_one_without_shortcut(self):
        store = InMemoryGraphStore()
        a, b, c = (store.create_node(label) for label in "ABC")
        store.create_edge(a.id, b.id, "x")
        store.create_edge(b.id, c.id, "y")

        results = connected_nodes(store, a.id, 1)

        self.assertEqual(self.depths(results), {"A": 0, "B": 1})

    def test_depth_zero_returns_only_start(self):
        results = connected_nodes(self.store, self.a.id, 0)
        self.assertEqual(self.depths(results), {"A": 0})
        self.assertEqual(results[0].path, [self.a.id])

    def test_edges_are_followed_in_both_directions(self):
        results = connected_nodes(self.store, self.c.id, 1)
        self.assertEqual(self.depths(results), {"C": 0, "B": 1, "A": 1})

    def test_each_node_once_at_minimum_depth(self):
        d = self.store.create_node("D")
        self.store.create_edge(self.c.id, d.id, "w")
        self.store.create_edge(d.id, self.a.id, "cycle")

        results = connected_nodes(self.store, self.a.id, 5)

        ids = [r.node.id for r in results]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(self.depths(results), {"A": 0, "B": 1, "C": 1, "D": 1})
        start = [r for r in results if r.node.id == self.a.id]
        self.assertEqual(len(start), 1)
        self.assertEqual(start[0].depth, 0)

    def test_results_are_ordered_by_node_id(self):
        results = connected_nodes(self.store, self.a.id, 2)
        ids = [r.node.id for r in results]
        self.assertEqual(ids, sorted(ids))

    def test_paths_follow_relationships(self):
        store = InMemoryGraphStore()
        nasa = store.create_node("NASA")
        iss = store.create_node("ISS")
        earth = store.create_node("Earth")
        store.create_edge(nasa.id, iss.id, "operates")
        store.create_edge(earth.id, iss.id, "is_orbited_by")

        results = {r.node.label: r for r in connected_nodes(store, nasa.id, 2)}

        self.assertEqual(results["Earth"].path, [nasa.id, iss.id, earth.id])
        self.assertEqual(results["Earth"].relationships, ["operates", "is_orbited_by"])
        labels = label_map([r.node for r in results.values()])
        self.assertEqual(
            format_path(labels, results["Earth"].path, results["Earth"].relationships),
            "NASA -> [operates] -> ISS -> [is_orbited_by] -> Earth",
        )

    def test_reverse_edge_does_not_change_node_set(self):
        before = {r.node.id for r in connected_nodes(self.store, self.b.id, 2)}
        self.store.create_edge(self.b.id, self.a.id, "x")
        self.store.create_edge(self.c.id, self.b.id, "y")
        after = {r.node.id for r in connected_nodes(self.store, self.b.id, 2)}

        self.assertEqual(before, after)

    def test_missing_start_node(self):
        with self.assertRaises(NotFoundError):
            connected_nodes(self.store, "missing", 2)

    def test_negative_depth(self):
        with self.assertRaises(InvalidRequestError):
            connected_nodes(self.store, self.a.id, -1)


class TestShortestPath(TraversalTestCase):

    def test_prefers_lighter_longer_path(self):
        result = shortest_path(self.store, self.a.id, self.c.id, 3)

        self.assertEqual(result.path, [self.a.id, self.b.id, self.c.id])
        self.assertEqual(result.total_weight, 2.0)
        self.assertEqual(result.relationships, ["x", "y"])

    def test_hop_bound_forces_heavier_path(self):
        result = shortest_path(self.store, self.a.id, self.c.id, 1)

        self.assertEqual(result.path, [self.a.id, self.c.id])
        self.assertEqual(result.total_weight, 5.0)

    def test_edges_are_directed(self):
        with self.assertRaises(NotFoundError):
            shortest_path(self.store, self.c.id, self.a.id, 5)

    def test_no_path_within_depth(self):
        d = self.store.create_node("D")
        self.store.create_edge(self.c.id, d.id, "w")

        with self.assertRaises(NotFoundError):
            shortest_path(self.store, self.a.id, d.id, 1)
        result = shortest_path(self.store, self.a.id, d.id, 3)
        self.assertEqual(result.total_weight, 3.0)

    def test_missing_start_node(self):
        with self.assertRaises(NotFoundError):
            shortest_path(self.store, "missing", self.c.id, 3)

    def test_start_equals_end(self):
        result = shortest_path(self.store, self.a.id, self.a.id, 3)
        self.assertEqual(result.path, [self.a.id])
        self.assertEqual(result.total_weight, 0.0)

    def test_result_is_minimal_over_all_paths(self):
        # A diamond with several routes of different cost and length.
        store = InMemoryGraphStore()
        s, p, q, r, t = (store.create_node(label) for label in "SPQRT")
        store.create_edge(s.id, p.id, "a", weight=2.0)
        store.create_edge(s.id, q.id, "b", weight=1.0)
        store.create_edge(q.id, p.id, "c", weight=0.5)
        store.create_edge(p.id, t.id, "d", weight=1.0)
        store.create_edge(q.id, r.id, "e", weight=3.0)
        store.create_edge(r.id, t.id, "f", weight=0.1)
        store.create_edge(s.id, t.id, "g", weight=4.0)

        result = shortest_path(store, s.id, t.id, 4)

        self.assertEqual(result.path, [s.id, q.id, p.id, t.id])
        self.assertAlmostEqual(result.total_weight, 2.5)

    def test_never_revisits_a_node(self):
        store = InMemoryGraphStore()
        a, b, c = (store.create_node(label) for label in "ABC")
        store.create_edge(a.id, b.id, "x", weight=0.0)
        store.create_edge(b.id, a.id, "back", weight=0.0)
        store.create_edge(b.id, c.id, "y", weight=1.0)

        result = shortest_path(store, a.id, c.id, 10)

        self.assertEqual(result.path, [a.id, b.id, c.id])
        self.assertEqual(len(result.path), len(set(result.path)))

    def test_equal_weights_prefer_first_discovered(self):
        store = InMemoryGraphStore()
        a, b, c, d = (store.create_node(label) for label in "ABCD")
        store.create_edge(a.id, b.id, "first", weight=1.0)
        store.create_edge(a.id, c.id, "second", weight=1.0)
        store.create_edge(b.id, d.id, "x", weight=1.0)
        store.create_edge(c.id, d.id, "y", weight=1.0)

        for _ in range(3):
            result = shortest_path(store, a.id, d.id, 3)
            self.assertEqual(result.path, [a.id, b.id, d.id])


if __name__ == '__main__':
    unittest.main()
