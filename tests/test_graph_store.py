import threading
import unittest

from core.database import InMemoryGraphStore, node_embedding_text
from core.exceptions import DuplicateError, InvalidRequestError, NotFoundError, ReferenceIntegrityError


class TestInMemoryGraphStore(unittest.TestCase):

    def setUp(self):
        self.store = InMemoryGraphStore()
        self.nasa = self.store.create_node("NASA", "organization", {"description": "US space agency"})
        self.iss = self.store.create_node("ISS", "technology")

    def test_find_node_by_label_returns_oldest_on_collision(self):
        duplicate = self.store.create_node("NASA", "concept")

        found = self.store.find_node_by_label("NASA")

        self.assertEqual(found.id, self.nasa.id)
        self.assertNotEqual(found.id, duplicate.id)

    def test_find_node_by_label_missing(self):
        with self.assertRaises(NotFoundError):
            self.store.find_node_by_label("ESA")

    def test_create_edge_defaults(self):
        edge = self.store.create_edge(self.nasa.id, self.iss.id, "operates")

        self.assertEqual(edge.weight, 1.0)
        self.assertEqual(edge.properties, {})
        self.assertEqual([e.id for e in self.store.edges_from(self.nasa.id)], [edge.id])
        self.assertEqual([e.id for e in self.store.edges_to(self.iss.id)], [edge.id])

    def test_duplicate_edge_is_rejected_without_new_row(self):
        self.store.create_edge(self.nasa.id, self.iss.id, "operates")

        with self.assertRaises(DuplicateError):
            self.store.create_edge(self.nasa.id, self.iss.id, "operates", weight=3.0)

        edges = self.store.list_edges()
        self.assertEqual(len(edges), 1)
        self.assertEqual(edges[0].weight, 1.0)

    def test_distinct_relationships_between_same_pair_are_allowed(self):
        self.store.create_edge(self.nasa.id, self.iss.id, "operates")
        self.store.create_edge(self.nasa.id, self.iss.id, "funds")
        self.store.create_edge(self.iss.id, self.nasa.id, "operates")

        self.assertEqual(len(self.store.list_edges()), 3)

    def test_edge_to_missing_node_creates_nothing(self):
        with self.assertRaises(ReferenceIntegrityError):
            self.store.create_edge(self.nasa.id, "missing", "operates")
        with self.assertRaises(ReferenceIntegrityError):
            self.store.create_edge("missing", self.iss.id, "operates")

        self.assertEqual(self.store.list_edges(), [])
        self.assertEqual(self.store.edges_from(self.nasa.id), [])

    def test_negative_weight_is_rejected(self):
        with self.assertRaises(InvalidRequestError):
            self.store.create_edge(self.nasa.id, self.iss.id, "operates", weight=-1.0)

    def test_delete_node_cascades_to_incident_edges(self):
        moon = self.store.create_node("Moon")
        self.store.create_edge(self.nasa.id, self.iss.id, "operates")
        self.store.create_edge(self.iss.id, moon.id, "orbits_near")
        self.store.create_edge(self.nasa.id, moon.id, "explored")

        removed = self.store.delete_node(self.iss.id)

        self.assertEqual(removed, 2)
        remaining = self.store.list_edges()
        self.assertEqual([e.relationship for e in remaining], ["explored"])
        self.assertFalse(self.store.has_node(self.iss.id))
        with self.assertRaises(NotFoundError):
            self.store.find_node_by_label("ISS")
        # The triple is free again once the edge is gone.
        iss = self.store.create_node("ISS")
        self.store.create_edge(self.nasa.id, iss.id, "operates")

    def test_update_node_merges_properties_and_sets_embedding(self):
        updated = self.store.update_node(self.nasa.id, properties={"founded": 1958}, embedding=[0.1, 0.2])

        self.assertEqual(updated.properties, {"description": "US space agency", "founded": 1958})
        self.assertEqual(updated.embedding, [0.1, 0.2])
        self.assertGreaterEqual(updated.updated_at, self.nasa.updated_at)

    def test_returned_models_are_copies(self):
        node = self.store.get_node(self.nasa.id)
        node.properties["description"] = "changed"

        self.assertEqual(self.store.get_node(self.nasa.id).properties["description"], "US space agency")

    def test_concurrent_duplicate_edge_creation_has_one_winner(self):
        outcomes = []
        barrier = threading.Barrier(8)

        def attempt():
            barrier.wait()
            try:
                self.store.create_edge(self.nasa.id, self.iss.id, "operates")
                outcomes.append("created")
            except DuplicateError:
                outcomes.append("duplicate")

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count("created"), 1)
        self.assertEqual(outcomes.count("duplicate"), 7)
        self.assertEqual(len(self.store.list_edges()), 1)

    def test_snapshot_shape_and_cap(self):
        self.store.create_edge(self.nasa.id, self.iss.id, "operates")
        moon = self.store.create_node("Moon")
        self.store.create_edge(self.iss.id, moon.id, "orbits_near")

        snapshot = self.store.snapshot(limit=2)

        self.assertEqual([n.label for n in snapshot.nodes], ["NASA", "ISS"])
        self.assertEqual(snapshot.nodes[0].description, "US space agency")
        self.assertEqual(snapshot.nodes[1].type, "technology")
        self.assertEqual(len(snapshot.edges), 1)
        self.assertEqual(snapshot.edges[0].label, "operates")
        self.assertEqual(snapshot.edges[0].source, self.nasa.id)

        full = self.store.snapshot()
        self.assertEqual(len(full.nodes), 3)
        self.assertEqual(full.nodes[2].type, "entity")
        self.assertEqual(len(full.edges), 2)

    def test_node_embedding_text(self):
        node = self.store.create_node("GPT-4", "model", {"description": "A language model", "year": 2023})

        self.assertEqual(node_embedding_text(node), "GPT-4 - model - A language model - year: 2023")


if __name__ == '__main__':
    unittest.main()
