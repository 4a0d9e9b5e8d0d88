"""Smoke tests for the position/velocity example.

Runs the example in-process for every scheme, and once as a script with
the Agg backend, validating the machine-readable [PV_SUMMARY] JSON line.
"""

import json
import os
import re
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from bayes_filter.estimators import UDScheme
from examples.example_position_velocity import (
    SCHEMES,
    make_observe_model,
    make_predict_model,
    plot_result,
    predicted_innovation,
    run_position_velocity,
    summarize,
)


def parse_pv_summary(stdout: str) -> Optional[Dict[str, Any]]:
    """Parse the [PV_SUMMARY] JSON line from script output."""
    match = re.search(r"\[PV_SUMMARY\]\s*(\{.*\})", stdout)
    if not match:
        return None
    return json.loads(match.group(1))


class TestPositionVelocitySchemes(unittest.TestCase):

    def test_all_schemes_consistent(self):
        for scheme in sorted(SCHEMES):
            with self.subTest(scheme=scheme):
                result = run_position_velocity(scheme, n_steps=100, noise_free=True)
                summary = summarize(scheme, result)

                self.assertGreaterEqual(summary["min_rcond"], 0.0)
                error = abs(summary["final_estimate"][0] - summary["final_truth"][0])
                self.assertLessEqual(error, 3.0 * summary["final_sigma"][0])

    def test_ud_matches_covariance(self):
        ud = run_position_velocity("ud", n_steps=60, seed=4)
        cov = run_position_velocity("covariance", n_steps=60, seed=4)

        np.testing.assert_allclose(ud["truth"], cov["truth"])
        np.testing.assert_allclose(ud["estimates"], cov["estimates"], rtol=1e-6, atol=1e-6)

    def test_innovations_recorded_per_observation(self):
        result = run_position_velocity("ud", n_steps=100, seed=2)
        summary = summarize("ud", result)

        n_obs = summary["n_observations"]
        self.assertGreater(n_obs, 1)
        self.assertEqual(result["innovations"].shape, (n_obs, 1))
        self.assertEqual(result["innovation_covariances"].shape, (n_obs, 1, 1))
        self.assertTrue(np.all(result["innovation_covariances"] > 0.0))
        self.assertTrue(np.isfinite(summary["mean_nis"]))
        self.assertLess(summary["nis_bounds"][0], summary["nis_bounds"][1])

    def test_plot_result_saves_figures(self):
        result = run_position_velocity("covariance", n_steps=30)

        with tempfile.TemporaryDirectory() as tmp:
            plot_result("covariance", result, tmp)
            plt.close("all")

            saved = sorted(p.name for p in Path(tmp).iterdir())
        self.assertEqual(
            saved, ["position_velocity_covariance.png", "position_velocity_nis_covariance.png"]
        )


class TestPredictedInnovation(unittest.TestCase):

    def test_matches_ud_innovation(self):
        """The innovation seen by the UdU' filter equals the predicted one."""
        flt = UDScheme(2, q_max=1)
        flt.init_kalman(np.array([900.0, 1.5]), np.diag([1e6, 100.0]))
        observe_model = make_observe_model()
        flt.predict(make_predict_model())
        flt.update()
        z = np.array([1000.0])

        s, S = predicted_innovation(flt, observe_model, z)
        flt.observe(observe_model, z)

        np.testing.assert_allclose(s, flt.s)
        np.testing.assert_allclose(np.diag(S), flt.Sd, rtol=1e-10)


class TestExamplePositionVelocityRuns(unittest.TestCase):

    def setUp(self):
        self.workspace_root = Path(__file__).parent.parent
        self.script_module = "examples.example_position_velocity"

    def test_script_runs(self):
        env = os.environ.copy()
        env.update({
            "MPLBACKEND": "Agg",
            "PYTHONPATH": str(self.workspace_root),
        })

        result = subprocess.run(
            [sys.executable, "-m", self.script_module, "--scheme", "ud", "--steps", "50"],
            cwd=str(self.workspace_root),
            env=env,
            capture_output=True,
            text=True,
            timeout=120,
        )

        self.assertEqual(result.returncode, 0, f"Script failed:\n{result.stderr}")
        self.assertIn("EXAMPLE COMPLETED", result.stdout)
        summary = parse_pv_summary(result.stdout)
        self.assertIsNotNone(summary, "No [PV_SUMMARY] line in output")
        self.assertEqual(summary["scheme"], "ud")
        self.assertEqual(len(summary["final_estimate"]), 2)
        self.assertGreater(summary["min_rcond"], 0.0)
        self.assertGreater(summary["n_observations"], 0)
        self.assertIn("mean_nis", summary)


if __name__ == "__main__":
    unittest.main()
