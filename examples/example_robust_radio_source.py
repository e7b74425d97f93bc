"""
Robust Radio Source Localization Example.

This script demonstrates locating a radio emitter from located readings
that contain gross errors (multipath, NLOS) using the robust estimators:

    - Ranging readings with RANSAC and LMedS
    - RSSI readings with PROMedS (position + transmitted power)
    - Sequential estimation: position from ranging, power from RSSI

Run from the repository root:
    python examples/example_robust_radio_source.py
"""

import argparse
import logging

import matplotlib.pyplot as plt
import numpy as np

from radioloc.estimators import RobustEstimatorMethod
from radioloc.radiosource import (
    RadioSourceEstimatorListener,
    RobustEstimatorConfig,
    RobustRangingRadioSourceEstimator,
    RobustRssiRadioSourceEstimator,
    SequentialEstimatorConfig,
    SequentialRobustRangingAndRssiRadioSourceEstimator,
)
from radioloc.rf import (
    RadioSource,
    RangingAndRssiReading,
    RangingReading,
    RssiReading,
    received_power,
)

SOURCE = RadioSource("ap-corridor", 2.4e9)
TRUE_POS = np.array([12.0, 7.0])
TRUE_POWER_DBM = 16.0


class ProgressPrinter(RadioSourceEstimatorListener):
    """Prints estimation progress."""

    def on_estimate_start(self, estimator):
        print(f"  {type(estimator).__name__} started")

    def on_estimate_progress_change(self, estimator, progress):
        print(f"    progress {progress:5.1%}")

    def on_estimate_end(self, estimator):
        print(f"  {type(estimator).__name__} finished")


def survey_positions(n, seed=0):
    """Receiver positions along a walk through a 25 m x 15 m floor."""
    rng = np.random.default_rng(seed)
    positions = np.column_stack([rng.uniform(0.0, 25.0, n), rng.uniform(0.0, 15.0, n)])
    # Receivers stand at least 1 m away from the source
    close = np.linalg.norm(positions - TRUE_POS, axis=1) < 1.0
    while np.any(close):
        k = np.count_nonzero(close)
        positions[close] = np.column_stack([rng.uniform(0.0, 25.0, k), rng.uniform(0.0, 15.0, k)])
        close = np.linalg.norm(positions - TRUE_POS, axis=1) < 1.0
    return positions


def example_ranging():
    """Example 1: Robust ranging with NLOS outliers."""
    print("=" * 70)
    print("Example 1: Robust Ranging with NLOS Outliers")
    print("=" * 70)

    rng = np.random.default_rng(1)
    positions = survey_positions(25)
    distances = np.linalg.norm(positions - TRUE_POS, axis=1)
    # Ranging never reports a negative distance
    distances = np.maximum(distances + 0.1 * rng.standard_normal(len(distances)), 0.0)

    # NLOS readings measure a longer path
    nlos = rng.choice(len(distances), size=6, replace=False)
    distances[nlos] += rng.uniform(3.0, 12.0, size=len(nlos))

    readings = [
        RangingReading(SOURCE, p, d, distance_std=0.1) for p, d in zip(positions, distances)
    ]

    print(f"\nTrue position: {TRUE_POS}")
    print(f"Readings: {len(readings)}, NLOS: {sorted(nlos.tolist())}")

    results = {}
    for method in (RobustEstimatorMethod.RANSAC, RobustEstimatorMethod.LMEDS):
        config = RobustEstimatorConfig(
            threshold=0.5 if method == RobustEstimatorMethod.RANSAC else None,
            random_seed=0,
        )
        estimator = RobustRangingRadioSourceEstimator.create(config, method, readings=readings)
        estimator.estimate()

        error = np.linalg.norm(estimator.estimated_position - TRUE_POS)
        outliers = np.flatnonzero(~estimator.inliers_data.inliers)
        std = np.sqrt(np.diag(estimator.estimated_position_covariance))

        print(f"\n--- {method.name} ---")
        print(f"Estimated position: {estimator.estimated_position}")
        print(f"Position error: {error:.3f} m")
        print(f"Position std (x, y): {std}")
        print(f"Rejected readings: {outliers.tolist()}")
        results[method] = estimator

    # Plain least squares on every reading for comparison
    print("\n--- Non-robust fit on all readings ---")
    all_in = RobustRangingRadioSourceEstimator(
        readings,
        RobustEstimatorConfig(threshold=1e6, random_seed=0),
        method=RobustEstimatorMethod.RANSAC,
    )
    all_in.estimate()
    print(f"Estimated position: {all_in.estimated_position}")
    print(f"Position error: {np.linalg.norm(all_in.estimated_position - TRUE_POS):.3f} m")

    return positions, results[RobustEstimatorMethod.RANSAC], all_in


def example_rssi():
    """Example 2: Position and transmitted power from RSSI."""
    print("\n" + "=" * 70)
    print("Example 2: Position and Transmitted Power from RSSI (PROMedS)")
    print("=" * 70)

    rng = np.random.default_rng(2)
    positions = survey_positions(30, seed=2)
    sqr_distances = np.sum((positions - TRUE_POS) ** 2, axis=1)
    rssi = received_power(TRUE_POWER_DBM, sqr_distances, SOURCE.frequency, 2.0)
    rssi += 0.5 * rng.standard_normal(len(rssi))

    # Shadowed readings
    shadowed = rng.choice(len(rssi), size=5, replace=False)
    rssi[shadowed] -= rng.uniform(10.0, 20.0, size=len(shadowed))

    readings = [RssiReading(SOURCE, p, r, rssi_std=0.5) for p, r in zip(positions, rssi)]

    # Readings with higher power are more reliable
    quality_scores = rssi - rssi.min()

    estimator = RobustRssiRadioSourceEstimator.create(
        RobustEstimatorConfig(random_seed=0),
        RobustEstimatorMethod.PROMEDS,
        readings=readings,
        quality_scores=quality_scores,
        listener=ProgressPrinter(),
    )
    estimator.estimate()

    print(f"\nTrue position: {TRUE_POS}, true power: {TRUE_POWER_DBM:.1f} dBm")
    print(f"Estimated position: {estimator.estimated_position}")
    print(f"Position error: {np.linalg.norm(estimator.estimated_position - TRUE_POS):.3f} m")
    print(
        f"Estimated power: {estimator.estimated_transmitted_power_dbm:.2f} dBm "
        f"± {np.sqrt(estimator.estimated_transmitted_power_variance):.2f} dB "
        f"({estimator.estimated_transmitted_power:.2f} mW)"
    )
    print(f"Shadowed: {sorted(shadowed.tolist())}")
    rejected = np.flatnonzero(~estimator.inliers_data.inliers)
    print(f"Rejected: {rejected.tolist()}")
    # Clean readings beyond the robust noise scale are rejected too
    print(f"Rejected clean readings: {np.setdiff1d(rejected, shadowed).tolist()}")


def example_sequential():
    """Example 3: Sequential position-then-power estimation."""
    print("\n" + "=" * 70)
    print("Example 3: Sequential Ranging + RSSI Estimation")
    print("=" * 70)

    rng = np.random.default_rng(3)
    positions = survey_positions(20, seed=3)
    distances = np.linalg.norm(positions - TRUE_POS, axis=1)
    rssi = received_power(TRUE_POWER_DBM, distances**2, SOURCE.frequency, 2.2)
    # Ranging never reports a negative distance
    distances = np.maximum(distances + 0.1 * rng.standard_normal(len(distances)), 0.0)
    rssi += 0.5 * rng.standard_normal(len(rssi))

    bad = rng.choice(len(distances), size=4, replace=False)
    distances[bad] += 8.0
    rssi[bad] -= 12.0

    readings = [
        RangingAndRssiReading(SOURCE, p, d, r, distance_std=0.1, rssi_std=0.5)
        for p, d, r in zip(positions, distances, rssi)
    ]

    config = SequentialEstimatorConfig(
        ranging_method=RobustEstimatorMethod.RANSAC,
        rssi_method=RobustEstimatorMethod.LMEDS,
        ranging_threshold=0.5,
        path_loss_estimation_enabled=True,
        random_seed=0,
    )
    estimator = SequentialRobustRangingAndRssiRadioSourceEstimator(readings, config=config)
    estimator.estimate()

    located = estimator.estimated_radio_source
    print(f"\nEstimated position: {located.position}")
    print(f"Position error: {np.linalg.norm(located.position - TRUE_POS):.3f} m")
    print(
        f"Transmitted power: {located.transmitted_power_dbm:.2f} dBm "
        f"± {located.transmitted_power_std_db:.2f} dB (true: {TRUE_POWER_DBM:.1f})"
    )
    print(
        f"Path-loss exponent: {located.path_loss_exponent:.3f} "
        f"± {located.path_loss_exponent_std:.3f} (true: 2.2)"
    )
    print(f"Covariance [x, y, P, n]:\n{estimator.estimated_covariance}")


def plot_ranging(positions, robust, non_robust):
    """Visualize robust ranging results."""
    plt.figure(figsize=(10, 6))

    inliers = robust.inliers_data.inliers
    plt.scatter(
        positions[inliers, 0], positions[inliers, 1],
        s=60, c="tab:blue", marker="^", label="Inlier readings", zorder=4,
    )
    plt.scatter(
        positions[~inliers, 0], positions[~inliers, 1],
        s=60, c="tab:red", marker="v", label="Rejected readings", zorder=4,
    )

    plt.scatter(*TRUE_POS, s=150, c="green", marker="o", label="True Position", zorder=5)
    plt.scatter(
        *robust.estimated_position, s=150, c="blue", marker="x",
        linewidths=3, label="RANSAC Estimate", zorder=6,
    )
    plt.scatter(
        *non_robust.estimated_position, s=150, c="orange", marker="+",
        linewidths=3, label="Non-robust Estimate", zorder=6,
    )

    # 3-sigma error ellipse of the robust estimate
    eigenvalues, eigenvectors = np.linalg.eigh(robust.estimated_position_covariance)
    angles = np.linspace(0.0, 2.0 * np.pi, 100)
    unit = np.column_stack([np.cos(angles), np.sin(angles)])
    ellipse = robust.estimated_position + 3.0 * (unit * np.sqrt(eigenvalues)) @ eigenvectors.T
    plt.plot(ellipse[:, 0], ellipse[:, 1], "b--", alpha=0.6, label="3σ ellipse")

    plt.grid(True, alpha=0.3)
    plt.axis("equal")
    plt.xlabel("East (m)", fontsize=12)
    plt.ylabel("North (m)", fontsize=12)
    plt.title("Robust Ranging Radio Source Localization", fontsize=14, fontweight="bold")
    plt.legend(loc="best")

    plt.tight_layout()
    return plt.gcf()


def main():
    """Run all robust radio source examples."""
    parser = argparse.ArgumentParser(
        description="Robust radio source localization from outlier-contaminated readings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run all examples and show the figure
  python examples/example_robust_radio_source.py

  # Save the figure elsewhere without opening a window
  python examples/example_robust_radio_source.py --output out.png --no-show
        """,
    )
    parser.add_argument(
        "--output", type=str, default="examples/robust_radio_source_example.png",
        help="Output file for figure",
    )
    parser.add_argument(
        "--no-show", action="store_true",
        help="Do not open the figure window",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Enable debug logging from the estimators",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(name)s %(levelname)s: %(message)s",
    )

    print("\n" + "=" * 70)
    print("Robust Radio Source Localization Examples")
    print("=" * 70)

    positions, robust, non_robust = example_ranging()
    example_rssi()
    example_sequential()

    print("\n" + "=" * 70)
    print("Generating visualization...")
    print("=" * 70)

    plot_ranging(positions, robust, non_robust)
    plt.savefig(args.output, dpi=150, bbox_inches="tight")
    print(f"\nFigure saved: {args.output}")

    if not args.no_show:
        plt.show()

    print("\n" + "=" * 70)
    print("Examples completed successfully!")
    print("=" * 70)


if __name__ == "__main__":
    main()
