import unittest

from engines.difficulty_manager import DifficultySelector


class DifficultySelectorTests(unittest.TestCase):
    def setUp(self):
        self.selector = DifficultySelector()

    def test_strong_recent_scores_select_hard(self):
        self.assertEqual(
            self.selector.select_difficulty("Arrays", 0.5, [0.9, 0.95, 1.0]), "hard"
        )

    def test_weak_recent_scores_select_easy(self):
        self.assertEqual(self.selector.select_difficulty("Arrays", 0.5, [0.1, 0.2]), "easy")

    def test_no_history_uses_neutral_prior(self):
        decision = self.selector.decide("Arrays", None, [])

        self.assertEqual(decision.difficulty, "medium")
        self.assertAlmostEqual(decision.theta, 0.5)
        self.assertIn("neutral prior", decision.reason)

    def test_only_last_five_scores_count(self):
        scores = [0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 1.0, 1.0]

        decision = self.selector.decide("Arrays", 0.1, scores)

        self.assertEqual(decision.window, [1.0] * 5)
        self.assertEqual(decision.difficulty, "hard")

    def test_threshold_boundaries(self):
        self.assertEqual(self.selector.select_difficulty("Arrays", 0.0, [0.29]), "easy")
        self.assertEqual(self.selector.select_difficulty("Arrays", 0.0, [0.3]), "medium")
        self.assertEqual(self.selector.select_difficulty("Arrays", 0.0, [0.59]), "medium")
        self.assertEqual(self.selector.select_difficulty("Arrays", 0.0, [0.6]), "hard")

    def test_standing_mastery_does_not_override_recent_scores(self):
        self.assertEqual(self.selector.select_difficulty("Arrays", 0.95, [0.1]), "easy")

    def test_decision_serialises(self):
        payload = self.selector.decide("Trees", 0.4, [0.5, 0.5]).to_dict()

        self.assertEqual(payload["topic"], "Trees")
        self.assertEqual(payload["difficulty"], "medium")
        self.assertEqual(payload["window"], [0.5, 0.5])

    def test_rejects_invalid_configuration(self):
        with self.assertRaises(ValueError):
            DifficultySelector(window_size=0)
        with self.assertRaises(ValueError):
            DifficultySelector(prior=1.5)
        with self.assertRaises(ValueError):
            DifficultySelector(easy_below=0.7, medium_below=0.6)


if __name__ == "__main__":
    unittest.main()
