import os
import sys
import unittest
from contextlib import redirect_stdout
from io import StringIO
sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from cli import demo_data, recommend, rest_period, show_metrics
from db import WorkoutRepository


class CLIToolsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_cli.db"
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def tearDown(self) -> None:
        if os.path.exists(self.db_path):
            os.remove(self.db_path)

    def _run(self, fn, *args) -> str:
        out = StringIO()
        with redirect_stdout(out):
            fn(*args)
        return out.getvalue()

    def test_demo_data(self) -> None:
        output = self._run(demo_data, self.db_path, "local", 3)
        self.assertIn("Demo data inserted", output)
        sessions = WorkoutRepository(self.db_path).fetch_sessions()
        self.assertEqual(len(sessions), 3)
        self.assertEqual(
            [e.name for e in sessions[0].exercises], ["Squat", "Bench Press", "Pull-up"]
        )
        output = self._run(demo_data, self.db_path, "local", 3)
        self.assertIn("already contains", output)

    def test_metrics_output(self) -> None:
        self._run(demo_data, self.db_path, "local", 2)
        output = self._run(show_metrics, self.db_path, 50, "local", "kg", False)
        self.assertIn("Workouts: 2", output)
        self.assertIn("Sets: 12", output)
        self.assertIn("k kg", output)
        self.assertIn("PR Squat", output)

    def test_metrics_json(self) -> None:
        output = self._run(show_metrics, self.db_path, 50, "local", "lbs", True)
        self.assertIn('"total_workouts": 0', output)

    def test_recommend(self) -> None:
        output = self._run(recommend, self.db_path, 50, "local", "tired", 20.0)
        self.assertIn("Active Recovery Focus", output)
        self.assertIn("[high]", output)

    def test_rest(self) -> None:
        output = self._run(rest_period, self.db_path, 50, "local", "Plank", 1)
        # no history counts as a long break, so rest is extended
        self.assertIn("Plank set 1: rest 75s", output)


if __name__ == "__main__":
    unittest.main()
