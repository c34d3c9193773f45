import time
import unittest
from unittest.mock import MagicMock

from core.embeddings import EmbeddingService, fallback_vector
from core.exceptions import ConfigurationError


class TestEmbeddingService(unittest.TestCase):

    def setUp(self):
        self.model = MagicMock()
        self.service = EmbeddingService(self.model, dimensions=3, max_chars=10, timeout=1.0)

    def tearDown(self):
        self.service.close()

    def test_real_embedding(self):
        self.model.embed_query.return_value = [0.1, 0.2, 0.3]

        result = self.service.embed("hello")

        self.assertEqual(result.vector, [0.1, 0.2, 0.3])
        self.assertFalse(result.degraded)
        self.model.embed_query.assert_called_once_with("hello")

    def test_input_is_truncated(self):
        self.model.embed_query.return_value = [0.1, 0.2, 0.3]

        self.service.embed("a" * 50)

        self.model.embed_query.assert_called_once_with("a" * 10)

    def test_failure_returns_flagged_fallback(self):
        self.model.embed_query.side_effect = RuntimeError("quota exceeded")

        result = self.service.embed("hello")

        self.assertTrue(result.degraded)
        self.assertIn("quota exceeded", result.reason)
        self.assertEqual(len(result.vector), 3)
        self.assertEqual(result.vector, self.service.embed("hello").vector)

    def test_timeout_returns_flagged_fallback(self):
        self.model.embed_query.side_effect = lambda text: time.sleep(0.5) or [0.1, 0.2, 0.3]
        service = EmbeddingService(self.model, dimensions=3, timeout=0.05)

        result = service.embed("slow")

        self.assertTrue(result.degraded)
        self.assertIn("timed out", result.reason)
        service.close()

    def test_wrong_dimensions_is_a_configuration_error(self):
        self.model.embed_query.return_value = [0.1, 0.2]

        with self.assertRaises(ConfigurationError):
            self.service.embed("hello")

    def test_fallback_vector_is_deterministic(self):
        self.assertEqual(fallback_vector("abc", 5), fallback_vector("abc", 5))
        self.assertNotEqual(fallback_vector("abc", 5), fallback_vector("abd", 5))


if __name__ == '__main__':
    unittest.main()
