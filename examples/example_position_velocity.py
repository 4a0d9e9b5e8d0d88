"""
Example: Position and Velocity Filter

A position/velocity state is observed through its position only. The
motion model is an Integrated Ornstein-Uhlenbeck process: velocity is
Brownian with a trend towards zero proportional to the velocity, and
position is integrated velocity. The mean squared speed and the velocity
correlation time are both parameterised.

Demonstrates:
    - Linear predict and observe models
    - Running the same problem through any Kalman-type scheme
    - Consistency of the final estimate (NEES) and of the observations (NIS)

Reference:
    L.D. Stone, C.A. Barlow, T.L. Corwin, "Bayesian Multiple Target
    Tracking", Artech House 1999.
"""

import argparse
import json
from typing import Callable, Dict, Tuple

import matplotlib.pyplot as plt
import numpy as np
from tqdm import tqdm

from bayes_filter.estimators import (
    CIScheme,
    CovarianceScheme,
    InformationScheme,
    KalmanFilter,
    LinearPredictModel,
    LinearUncorrelatedObserveModel,
    UDScheme,
)
from bayes_filter.eval import (
    chi_square_bounds,
    compute_nees,
    compute_nis,
    compute_rmse,
    plot_consistency,
    plot_estimate_time,
    save_figure,
)

NX = 2  # State dimension (position, velocity)

# Integrated Ornstein-Uhlenbeck prediction parameters
DT = 0.01
V_NOISE = 0.1  # Velocity noise, giving mean squared error bound
V_GAMMA = 1.0  # Velocity correlation, giving velocity change time constant

# Initial state uncertainty: system state is unknown
I_P_NOISE = 1000.0
I_V_NOISE = 10.0

# Noise on observing system state
OBS_INTERVAL = 0.10
OBS_NOISE = 0.001

SCHEMES: Dict[str, Callable[[], KalmanFilter]] = {
    "ud": lambda: UDScheme(NX, q_max=1),
    "covariance": lambda: CovarianceScheme(NX),
    "information": lambda: InformationScheme(NX),
    "ci": lambda: CIScheme(NX),
}


def make_predict_model(dt: float = DT) -> LinearPredictModel:
    """IOU process: x = [[1, dt], [0, exp(-dt·γ)]]·x + [0, 1]ᵗ·w."""
    Fvv = np.exp(-dt * V_GAMMA)
    return LinearPredictModel(
        Fx=[[1.0, dt], [0.0, Fvv]],
        G=[[0.0], [1.0]],
        q=[dt * ((1.0 - Fvv) * V_NOISE) ** 2],
    )


def make_observe_model() -> LinearUncorrelatedObserveModel:
    """Position observation with additive noise."""
    return LinearUncorrelatedObserveModel(Hx=[[1.0, 0.0]], Zv=[OBS_NOISE**2])


def predicted_innovation(
    flt: KalmanFilter, model: LinearUncorrelatedObserveModel, z: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Innovation of z and its covariance against the filter's current x and X."""
    s = z - model.h(flt.x)
    S = model.Hx @ flt.X @ model.Hx.T + model.noise()
    return s, S


def run_position_velocity(
    scheme: str = "ud",
    n_steps: int = 100,
    obs_interval: float = OBS_INTERVAL,
    noise_free: bool = False,
    seed: int = 0,
    progress: bool = False,
) -> Dict[str, np.ndarray]:
    """
    Run the position/velocity filter against a simulated truth.

    Args:
        scheme: Name of the filter scheme (see SCHEMES).
        n_steps: Number of predict steps.
        obs_interval: Time between observations; 0 observes every step.
        noise_free: Simulate truth and observations without noise.
        seed: Random seed for the simulation.
        progress: Show a progress bar over the predict steps.

    Returns:
        Dictionary with arrays time, truth (N×2), estimates (N×2),
        covariances (N×2×2), rcond (per predict/observe call),
        innovations (M×1) and innovation_covariances (M×1×1) for the M
        observations.
    """
    rng = np.random.default_rng(seed)
    predict_model = make_predict_model()
    observe_model = make_observe_model()

    x_true = np.array([1000.0, 1.0])
    x_guess = np.array([900.0, 1.5])

    flt = SCHEMES[scheme]()
    flt.init_kalman(x_guess, np.diag([I_P_NOISE**2, I_V_NOISE**2]))

    truth, estimates, covariances, rconds = [], [], [], []
    innovations, innovation_covariances = [], []
    time = 0.0
    obs_time = 0.0
    for _ in tqdm(range(n_steps), desc="Filtering", unit="step", disable=not progress):
        # Truth with normally distributed velocity perturbation
        x_true = predict_model.f(x_true)
        if not noise_free:
            x_true[1] += rng.normal() * V_NOISE**2 / (2.0 * V_GAMMA)

        rconds.append(flt.predict(predict_model))
        time += DT

        if obs_time <= time:
            z = np.array([x_true[0]])
            if not noise_free:
                z = z + rng.normal(0.0, OBS_NOISE, size=1)
            # X of the factorised and information forms is stale until update
            flt.update()
            s, S = predicted_innovation(flt, observe_model, z)
            innovations.append(s)
            innovation_covariances.append(S)
            rconds.append(flt.observe(observe_model, z))
            obs_time += obs_interval

        flt.update()
        truth.append(x_true.copy())
        estimates.append(flt.x.copy())
        covariances.append(flt.X.copy())

    return {
        "time": np.arange(1, n_steps + 1) * DT,
        "truth": np.array(truth),
        "estimates": np.array(estimates),
        "covariances": np.array(covariances),
        "rcond": np.array(rconds, dtype=float),
        "innovations": np.array(innovations),
        "innovation_covariances": np.array(innovation_covariances),
    }


def summarize(scheme: str, result: Dict[str, np.ndarray]) -> Dict:
    """Final estimate and consistency figures of a run."""
    errors = result["estimates"] - result["truth"]
    nees = compute_nees(result["truth"][-1:], result["estimates"][-1:], result["covariances"][-1:])
    lower, upper = chi_square_bounds(NX, n_runs=1, confidence=0.99)
    nis = compute_nis(result["innovations"], result["innovation_covariances"])
    nis_lower, nis_upper = chi_square_bounds(1, n_runs=len(nis), confidence=0.99)
    return {
        "scheme": scheme,
        "final_truth": result["truth"][-1].tolist(),
        "final_estimate": result["estimates"][-1].tolist(),
        "final_sigma": np.sqrt(np.diag(result["covariances"][-1])).tolist(),
        "position_rmse_last_half": compute_rmse(errors[len(errors) // 2:, 0]),
        "final_nees": float(nees[0]),
        "nees_bounds": [lower, upper],
        "mean_nis": float(np.mean(nis)),
        "nis_bounds": [nis_lower, nis_upper],
        "n_observations": len(nis),
        "min_rcond": float(np.min(result["rcond"])),
    }


def plot_result(
    scheme: str, result: Dict[str, np.ndarray], out_dir: str, obs_interval: float = OBS_INTERVAL
) -> None:
    fig = plot_estimate_time(
        result["time"],
        result["truth"][:, 0],
        {scheme: (result["estimates"][:, 0], result["covariances"][:, 0, 0])},
        ylabel="Position (m)",
        title="Position Velocity Filter",
    )
    paths = save_figure(fig, out_dir, f"position_velocity_{scheme}", formats=("png",))
    print(f"Plot saved as: {paths[0]}")

    nis = compute_nis(result["innovations"], result["innovation_covariances"])
    fig_nis = plot_consistency(
        nis,
        chi_square_bounds(1, confidence=0.95),
        label="NIS",
        dt=max(obs_interval, DT),
        title=f"Position Observation NIS ({scheme})",
    )
    paths = save_figure(fig_nis, out_dir, f"position_velocity_nis_{scheme}", formats=("png",))
    print(f"Plot saved as: {paths[0]}")
    plt.show()


def main():
    """Run the position/velocity example."""
    parser = argparse.ArgumentParser(
        description="Position and velocity filter with a position observation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Square-root UD filter (default)
  python -m examples.example_position_velocity

  # Covariance form filter, observing every step, noise free
  python -m examples.example_position_velocity --scheme covariance --obs-interval 0 --noise-free
        """,
    )
    parser.add_argument("--scheme", choices=sorted(SCHEMES), default="ud",
                        help="Filter scheme to run")
    parser.add_argument("--steps", type=int, default=100, help="Number of predict steps")
    parser.add_argument("--obs-interval", type=float, default=OBS_INTERVAL,
                        help="Time between observations in seconds (0 = every step)")
    parser.add_argument("--noise-free", action="store_true",
                        help="Simulate truth and observations without noise")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    parser.add_argument("--plot", action="store_true", help="Plot the position estimate and observation NIS")
    parser.add_argument("--out-dir", type=str, default=".", help="Directory for saved plots")
    args = parser.parse_args()

    print("=" * 70)
    print("EXAMPLE: Position Velocity Filter")
    print("=" * 70)
    print(f"  Scheme: {args.scheme}")
    print(f"  Time step: {DT} s, {args.steps} steps")
    print(f"  Observation noise: {OBS_NOISE} m (std dev)")

    result = run_position_velocity(
        args.scheme, args.steps, args.obs_interval, args.noise_free, args.seed, progress=True
    )
    summary = summarize(args.scheme, result)

    print(f"\nResults:")
    print(f"  True     {np.array(summary['final_truth'])}")
    print(f"  Estimate {np.array(summary['final_estimate'])}")
    print(f"  Sigma    {np.array(summary['final_sigma'])}")
    print(f"  Final covariance:\n{result['covariances'][-1]}")
    print(f"  Final NEES: {summary['final_nees']:.3f} "
          f"(99% bounds {summary['nees_bounds'][0]:.3f}..{summary['nees_bounds'][1]:.3f})")
    print(f"  Mean NIS over {summary['n_observations']} observations: {summary['mean_nis']:.3f} "
          f"(99% bounds {summary['nis_bounds'][0]:.3f}..{summary['nis_bounds'][1]:.3f})")
    print(f"  Minimum rcond: {summary['min_rcond']:.3e}")
    print(f"[PV_SUMMARY] {json.dumps(summary)}")

    if args.plot:
        plot_result(args.scheme, result, args.out_dir, args.obs_interval)

    print("\n" + "=" * 70)
    print("EXAMPLE COMPLETED")
    print("=" * 70)


if __name__ == "__main__":
    main()
