"""
cli.py - Rich Command Line Interface for Vine Lab

Fit R-vine copulas to return data, simulate synthetic paths and compute
mean-variance portfolios from the terminal.

Usage:
    vine-lab --help
    vine-lab fit returns.csv --output model.json
    vine-lab simulate returns.csv --trials 5 --seed 123 --multiplier 2 -o sim.csv
    vine-lab frontier returns.csv --rf-column tBillReturn
    vine-lab info model.json
"""

from __future__ import annotations

import sys
from enum import Enum
from pathlib import Path
from typing import List, Optional

import numpy as np
import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .controls import ALL_FAMILIES, FitControls, SimulationConfig
from .errors import InvalidInputError, VineLabError

app = typer.Typer(
    name="vine-lab",
    help="Vine Lab: R-vine copula fitting, simulation & portfolio weights",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()


# =============================================================================
# ENUMS FOR CLI OPTIONS
# =============================================================================

class TreeCriterion(str, Enum):
    tau = "tau"
    rho = "rho"


class SelectionCriterion(str, Enum):
    bic = "bic"
    aic = "aic"
    loglik = "loglik"


class ConstraintSet(str, Enum):
    long_only = "long_only"
    short = "short"


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/red] {error}")
    raise typer.Exit(1)


def _spinner() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
    )


def print_vine_summary(model, title: str = "R-Vine Model") -> None:
    """Print the overview and pair-copula table of a vine."""
    overview = Table(title=title, box=box.ROUNDED, show_header=False, title_style="bold cyan")
    overview.add_column("Property", style="dim")
    overview.add_column("Value", style="bold")
    overview.add_row("Variables (d)", str(model.d))
    overview.add_row("Trees", str(model.n_trees))
    overview.add_row("Truncation", "none" if model.trunc_lvl is None else str(model.trunc_lvl))
    overview.add_row("Observations", str(model.nobs))
    overview.add_row("Log-likelihood", f"{model.loglik:.3f}")
    overview.add_row("Parameters", str(model.npars))
    overview.add_row("AIC / BIC", f"{model.aic:.3f} / {model.bic:.3f}")
    console.print(overview)

    edges = Table(title="Pair Copulas", box=box.SIMPLE)
    edges.add_column("Tree", justify="right")
    edges.add_column("Edge", style="cyan")
    edges.add_column("Family")
    edges.add_column("Rot", justify="right")
    edges.add_column("Tau", justify="right")
    edges.add_column("Parameters", justify="right")
    for e in model.edges():
        a, b = e.conditioned
        name = f"{model.columns[a]}, {model.columns[b]}"
        if e.conditioning:
            name += " | " + ", ".join(model.columns[v] for v in e.conditioning)
        edges.add_row(
            str(e.tree + 1),
            name,
            e.copula.family.value,
            str(e.copula.rotation),
            f"{e.copula.tau:+.3f}",
            ", ".join(f"{p:.4g}" for p in e.copula.parameters),
        )
    console.print(edges)


def print_weights(weights, title: str) -> None:
    table = Table(title=title, box=box.SIMPLE)
    table.add_column("Asset", style="cyan")
    table.add_column("Weight", justify="right")
    table.add_column("Bar", justify="left")
    max_weight = float(np.max(np.abs(weights.weights))) or 1.0
    for asset, w in weights.as_dict().items():
        bar_len = int(20 * abs(w) / max_weight)
        color = "green" if w >= 0 else "red"
        table.add_row(asset, f"{w:+.2%}", f"[{color}]{'█' * bar_len}[/{color}]")
    console.print(table)


# =============================================================================
# COMMANDS
# =============================================================================

@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show library log output"),
):
    """Vine Lab command line."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING")


@app.command()
def fit(
    input_file: Path = typer.Argument(..., help="CSV file with returns (first column = dates)"),
    output: Path = typer.Option(Path("model.json"), "--output", "-o", help="Output model file (.json or .npz)"),
    family: Optional[List[str]] = typer.Option(None, "--family", "-f", help="Candidate family (repeatable)"),
    trunc: Optional[int] = typer.Option(None, "--trunc", help="Truncation level (default: none)"),
    criterion: TreeCriterion = typer.Option(TreeCriterion.tau, "--criterion", help="Tree criterion"),
    selection: SelectionCriterion = typer.Option(SelectionCriterion.bic, "--selection", help="Family selection criterion"),
    drop: Optional[List[str]] = typer.Option(None, "--drop", help="Column to drop before fitting (repeatable)"),
    threads: int = typer.Option(1, "--threads", help="Threads for edge fitting"),
):
    """
    Fit an R-vine copula to historical returns.

    Example:
        vine-lab fit returns.csv --drop tBillReturn -o model.json
    """
    from .io import ModelFormat, load_returns, save_vine_model
    from .margins import to_pseudo_obs
    from .selection import VineStructureFitter

    console.print(Panel.fit("[bold]R-Vine Fitting[/bold]", border_style="blue"))
    try:
        returns = load_returns(input_file, drop=drop)
        console.print(f"  Loaded returns: [cyan]{returns.n_obs}[/cyan] periods x [cyan]{returns.n_assets}[/cyan] assets")
        controls = FitControls(
            family_set=tuple(family) if family else ALL_FAMILIES,
            tree_criterion=criterion.value,
            trunc_lvl=trunc,
            selection_criterion=selection.value,
            num_threads=threads,
        )
        with _spinner() as progress:
            progress.add_task("Selecting vine structure and pair copulas...", total=None)
            model = VineStructureFitter(controls).fit(to_pseudo_obs(returns), columns=returns.columns)
        fmt = ModelFormat.NPZ if output.suffix == ".npz" else ModelFormat.JSON
        save_vine_model(model, output, format=fmt)
    except (VineLabError, FileNotFoundError) as e:
        _fail(e)

    console.print("  [green]✓[/green] Model fitted successfully\n")
    print_vine_summary(model, title="Fitted R-Vine")
    console.print(f"\n  Saved to: [bold]{output}[/bold]")


@app.command()
def simulate(
    input_file: Path = typer.Argument(..., help="CSV file with historical returns"),
    trials: int = typer.Option(5, "--trials", "-t", help="Number of trials (best is kept)"),
    seed: Optional[int] = typer.Option(None, "--seed", "-s", help="Random seed for reproducibility"),
    multiplier: float = typer.Option(1.0, "--multiplier", "-m", help="Simulated rows = multiplier x historical rows"),
    n: Optional[int] = typer.Option(None, "--rows", "-n", help="Simulated rows (overrides --multiplier)"),
    model_file: Optional[Path] = typer.Option(None, "--model", help="Use a previously fitted model (not combinable with --family or --cache-dir)"),
    family: Optional[List[str]] = typer.Option(None, "--family", "-f", help="Candidate family (repeatable)"),
    drop: Optional[List[str]] = typer.Option(None, "--drop", help="Column to drop before fitting (repeatable)"),
    workers: int = typer.Option(1, "--workers", help="Threads for running trials"),
    cache_dir: Optional[Path] = typer.Option(None, "--cache-dir", help="Reuse/store results in this directory"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output CSV for the simulated returns"),
):
    """
    Fit (or load) a vine and simulate synthetic returns.

    Example:
        vine-lab simulate returns.csv --trials 5 --seed 123 --multiplier 2 -o sim.csv
    """
    from .io import FileResultStore, load_returns, load_vine_model, save_returns
    from .scoring import SimulationQualityScorer
    from .simulation import MultiTrialSimulationRunner, cached_simulation, simulate_rvine

    console.print(Panel.fit("[bold]R-Vine Simulation[/bold]", border_style="blue"))
    try:
        if model_file is not None and (family or cache_dir is not None):
            raise InvalidInputError("--model cannot be combined with --family or --cache-dir")
        returns = load_returns(input_file, drop=drop)
        config = SimulationConfig(
            fit=FitControls(family_set=tuple(family) if family else ALL_FAMILIES),
            n=n,
            n_multiplier=multiplier,
            n_trials=trials,
            seed=seed,
            max_workers=workers,
        )
        with _spinner() as progress:
            progress.add_task(f"Running {trials} trial(s)...", total=None)
            if model_file is not None:
                runner = MultiTrialSimulationRunner(
                    scorer=SimulationQualityScorer(config.kendall_weight, config.pearson_weight),
                    quantile_method=config.quantile_method,
                    max_workers=workers,
                )
                result = runner.run(
                    returns,
                    load_vine_model(model_file),
                    n=config.resolve_n(returns.n_obs),
                    n_trials=trials,
                    seed=seed,
                )
            elif cache_dir is not None:
                result = cached_simulation(returns, config, FileResultStore(cache_dir))
            else:
                result = simulate_rvine(returns, config)
    except (VineLabError, FileNotFoundError) as e:
        _fail(e)

    sim = result.simulated_data
    console.print(f"  [green]✓[/green] Generated {sim.n_obs} x {sim.n_assets} returns matrix\n")

    scores = Table(title="Trial Scores", box=box.ROUNDED)
    scores.add_column("Trial", justify="right")
    scores.add_column("Score", justify="right")
    for i, s in enumerate(result.trial_scores):
        mark = " [green]← kept[/green]" if i == result.best_trial else ""
        scores.add_row(str(i), f"{s:.6f}{mark}")
    console.print(scores)

    diag = Table(title="Pearson Correlation Difference (simulated - historical)", box=box.SIMPLE)
    diag.add_column("", style="cyan")
    for c in sim.columns:
        diag.add_column(c, justify="right")
    for name, row in zip(sim.columns, result.diagnostics.cor_diff):
        diag.add_row(name, *(f"{v:+.3f}" for v in row))
    console.print(diag)

    if output:
        save_returns(sim, output)
        console.print(f"\n  Saved to: [bold]{output}[/bold]")


@app.command()
def frontier(
    input_file: Path = typer.Argument(..., help="CSV file with returns"),
    rf_column: Optional[str] = typer.Option(None, "--rf-column", help="Risk-free column (dropped from assets, mean used as rf)"),
    constraints: ConstraintSet = typer.Option(ConstraintSet.long_only, "--constraints", "-c", help="Constraint set"),
    points: int = typer.Option(10, "--points", "-p", help="Number of frontier points"),
):
    """
    Efficient frontier, minimum variance and tangency portfolios.

    Example:
        vine-lab frontier returns.csv --rf-column tBillReturn --constraints short
    """
    from .io import load_returns, load_series
    from .optimization import CvxpyWeightProvider, equal_weights, risk_free_rate

    console.print(Panel.fit("[bold]Mean-Variance Portfolios[/bold]", border_style="blue"))
    try:
        returns = load_returns(input_file, drop=[rf_column] if rf_column else None)
        rf = risk_free_rate(load_series(input_file, rf_column)) if rf_column else 0.0
        provider = CvxpyWeightProvider(constraints=constraints.value)
        with _spinner() as progress:
            progress.add_task("Solving quadratic programs...", total=None)
            points_list = provider.compute_frontier(returns, n_points=points)
            mvp = provider.compute_min_variance(returns)
            tangency = provider.compute_tangency(returns, risk_free_rate=rf)
    except (VineLabError, FileNotFoundError) as e:
        _fail(e)

    table = Table(title=f"Efficient Frontier ({constraints.value})", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Risk", justify="right")
    table.add_column("Return", justify="right")
    for i, pt in enumerate(points_list):
        table.add_row(str(i), f"{pt.risk:.4%}", f"{pt.expected_return:.4%}")
    console.print(table)

    console.print(f"  Risk-free rate: [cyan]{rf:.4%}[/cyan]")
    print_weights(mvp, "Minimum Variance Portfolio")
    print_weights(tangency, "Tangency Portfolio")
    print_weights(equal_weights(returns.columns), "Equal Weights")


@app.command()
def info(
    model_file: Path = typer.Argument(..., help="Vine model file (.json or .npz)"),
):
    """Display information about a fitted vine."""
    from .io import load_vine_model

    try:
        model = load_vine_model(model_file)
    except (VineLabError, FileNotFoundError) as e:
        _fail(e)
    print_vine_summary(model, title=f"Model: {model_file.name}")


@app.command()
def version():
    """Show version information."""
    from . import __version__

    console.print(Panel(
        f"[bold cyan]Vine Lab[/bold cyan] v{__version__}\n\n"
        "R-vine copula fitting, simulation\n"
        "and mean-variance portfolio weights.",
        border_style="cyan"
    ))


# =============================================================================
# ENTRY POINT
# =============================================================================

def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
