import unittest

from linkpulse.embeddings.vectors import (
    VectorError,
    cosine_similarity,
    parse_embedding,
    serialize_embedding,
    similarity_matrix,
)


class TestCosine(unittest.TestCase):
    def test_identical_and_orthogonal(self):
        self.assertAlmostEqual(cosine_similarity([1, 2, 3], [1, 2, 3]), 1.0)
        self.assertAlmostEqual(cosine_similarity([1, 0], [0, 1]), 0.0)
        self.assertAlmostEqual(cosine_similarity([1, 0], [-1, 0]), -1.0)

    def test_zero_vector_scores_zero(self):
        self.assertEqual(cosine_similarity([0, 0, 0], [1, 2, 3]), 0.0)

    def test_length_mismatch_raises(self):
        with self.assertRaises(VectorError):
            cosine_similarity([1, 2], [1, 2, 3])

    def test_matrix_matches_pairwise(self):
        vecs = [[1.0, 0.0], [1.0, 1.0], [0.0, 0.0]]
        m = similarity_matrix(vecs)
        self.assertEqual(m.shape, (3, 3))
        self.assertAlmostEqual(m[0, 1], cosine_similarity(vecs[0], vecs[1]))
        self.assertEqual(m[2, 0], 0.0)
        self.assertEqual(similarity_matrix([]).shape, (0, 0))


class TestParseEmbedding(unittest.TestCase):
    def test_accepts_json_text_and_lists(self):
        self.assertEqual(parse_embedding("[0.5, 1, -2]"), [0.5, 1.0, -2.0])
        self.assertEqual(parse_embedding(b"[1, 2]"), [1.0, 2.0])
        self.assertEqual(parse_embedding((3, 4)), [3.0, 4.0])
        self.assertEqual(parse_embedding(serialize_embedding([0.25, 0.75])), [0.25, 0.75])

    def test_rejects_malformed_values(self):
        for raw in (None, "", "not json", "{}", "[]", '["a", 1]', "[true, 1]", "[1, NaN]", 42):
            with self.subTest(raw=raw):
                self.assertIsNone(parse_embedding(raw))


if __name__ == "__main__":
    unittest.main()
