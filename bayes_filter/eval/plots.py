"""
Visualization utilities for filter runs.

All functions return matplotlib Figure objects for flexible display/saving.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np


def plot_estimate_time(
    time: np.ndarray,
    truth: np.ndarray,
    estimates: Dict[str, Tuple[np.ndarray, np.ndarray]],
    ylabel: str = "Position (m)",
    title: str = "Estimate vs Time",
) -> plt.Figure:
    """
    Plot one state component against truth with 3σ bands.

    Args:
        time: Time stamps, shape (N,)
        truth: True values, shape (N,)
        estimates: Dictionary {name: (mean, variance)}, each shape (N,)
        ylabel: Label of the plotted component
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    fig, (ax_val, ax_err) = plt.subplots(2, 1, figsize=(12, 8), sharex=True)
    colors = ["blue", "red", "green", "orange", "purple"]

    ax_val.plot(time, truth, "k-", linewidth=2, label="Ground Truth")
    for i, (name, (mean, var)) in enumerate(estimates.items()):
        color = colors[i % len(colors)]
        sigma3 = 3.0 * np.sqrt(np.maximum(var, 0.0))
        ax_val.plot(time, mean, color=color, linewidth=1.5, label=name)
        ax_err.plot(time, mean - truth, color=color, linewidth=1.5, label=f"{name} error")
        ax_err.fill_between(time, -sigma3, sigma3, color=color, alpha=0.15, label=f"{name} ±3σ")

    ax_val.set_ylabel(ylabel, fontsize=11)
    ax_val.set_title(title, fontsize=12, fontweight="bold")
    ax_val.legend(fontsize=9)
    ax_val.grid(True, alpha=0.3)

    ax_err.set_xlabel("Time (s)", fontsize=11)
    ax_err.set_ylabel("Error", fontsize=11)
    ax_err.axhline(y=0, color="k", linestyle="--", linewidth=0.8, alpha=0.5)
    ax_err.legend(fontsize=9)
    ax_err.grid(True, alpha=0.3)

    plt.tight_layout()
    return fig


def plot_consistency(
    values: np.ndarray,
    bounds: Tuple[float, float],
    label: str = "NEES",
    dt: float = 1.0,
    title: Optional[str] = None,
) -> plt.Figure:
    """
    Plot a NEES or NIS sequence against its chi-square acceptance interval.

    Args:
        values: Statistic per step, shape (N,)
        bounds: (lower, upper) from chi_square_bounds
        label: Name of the statistic
        dt: Time step in seconds
        title: Plot title

    Returns:
        fig: Matplotlib figure
    """
    time = np.arange(len(values)) * dt
    fig, ax = plt.subplots(figsize=(12, 4))
    ax.plot(time, values, "b-", linewidth=1.2, label=label)
    ax.axhline(y=bounds[0], color="r", linestyle="--", linewidth=1.0, label="Lower bound")
    ax.axhline(y=bounds[1], color="r", linestyle="--", linewidth=1.0, label="Upper bound")
    ax.set_xlabel("Time (s)", fontsize=11)
    ax.set_ylabel(label, fontsize=11)
    ax.set_title(title or f"{label} Consistency", fontsize=12, fontweight="bold")
    ax.legend(fontsize=9)
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    return fig


def save_figure(
    fig: plt.Figure,
    out_dir: Union[str, Path],
    name: str,
    formats: Tuple[str, ...] = ("svg", "png"),
) -> List[Path]:
    """
    Save figure in multiple formats.

    Args:
        fig: Matplotlib figure to save
        out_dir: Output directory
        name: Base filename (without extension)
        formats: Tuple of format extensions

    Returns:
        paths: List of saved file paths
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for fmt in formats:
        filepath = out_dir / f"{name}.{fmt}"
        fig.savefig(filepath, dpi=150, bbox_inches="tight")
        paths.append(filepath)
    return paths
