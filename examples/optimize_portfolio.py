"""
Portfolio Optimization Example
==============================

Computes portfolio weights on historical returns and on the best vine
simulation of those returns.
"""
from vine_lab import (
    CvxpyWeightProvider,
    FitControls,
    InvalidInputError,
    SimulationConfig,
    equal_weights,
    simulate_rvine,
)
from vine_lab.optimization import portfolio_stats

from examples.simulate_returns import create_market_returns


def print_weights(title, weights):
    print(f"\n{title}")
    for asset, w in zip(weights.assets, weights.weights):
        print(f"   {asset:<8} {w:8.2%}")


def main(**kwargs):
    print("=" * 70)
    print("Portfolio Weights: Historical vs Simulated")
    print("=" * 70)

    n_obs = kwargs.get("n_obs", 750)
    n_points = kwargs.get("n_points", 10)
    rf = kwargs.get("risk_free_rate", 0.0001)

    historical = create_market_returns(n_obs=n_obs)
    config = SimulationConfig(
        fit=FitControls(family_set=("gaussian", "t")),
        n_trials=kwargs.get("n_trials", 3),
        seed=kwargs.get("seed", 7),
    )
    simulated = simulate_rvine(historical, config).simulated_data

    provider = CvxpyWeightProvider(constraints="long_only")
    results = {}
    for name, data in (("historical", historical), ("simulated", simulated)):
        mvp = provider.compute_min_variance(data)
        try:
            tangency = provider.compute_tangency(data, risk_free_rate=rf)
        except InvalidInputError as exc:
            print(f"\n{name.title()} tangency failed: {exc}")
            tangency = None
        frontier = provider.compute_frontier(data, n_points=n_points)
        results[name] = {"min_variance": mvp, "tangency": tangency, "frontier": frontier}

        print_weights(f"{name.title()} minimum variance:", mvp)
        if tangency is not None:
            print_weights(f"{name.title()} tangency:", tangency)
        print(f"   frontier points: {len(frontier)}")

    naive = equal_weights(historical.columns)
    mean, risk = portfolio_stats(naive, historical)
    print(f"\nEqual weights on history: mean {mean:.5f}, risk {risk:.5f}")
    results["equal"] = naive

    print("\n" + "=" * 70)
    print("All Portfolios Complete")
    print("=" * 70)
    return results


if __name__ == "__main__":
    main()
