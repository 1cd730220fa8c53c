# Copyright (c) Syntropy Systems
"""trialgate threshold, sample-size and interval commands."""
from __future__ import annotations

from typing import Optional, cast

import typer
from rich.console import Console
from rich.table import Table

from trialgate.statistics.estimator import estimate
from trialgate.statistics.sample_size import achieved_power, calculate_for_power
from trialgate.statistics.thresholds import (
    derive_sample_size_first,
    derive_threshold_first,
)

console = Console()


def _pct(value: float) -> str:
    return f"{value:.2%}"


def threshold(
    samples: int = typer.Option(..., "--samples", "-n", help="Baseline sample count"),
    successes: int = typer.Option(..., "--successes", "-k", help="Baseline success count"),
    test_samples: int = typer.Option(
        100,
        "--test-samples", "-t",
        help="Samples the test will run",
    ),
    confidence: Optional[float] = typer.Option(
        None,
        "--confidence", "-c",
        help="Derive the threshold at this confidence (Sample-Size-First)",
    ),
    min_pass_rate: Optional[float] = typer.Option(
        None,
        "--min-pass-rate", "-p",
        help="Judge an explicit threshold (Threshold-First)",
    ),
) -> None:
    """Derive a pass-rate threshold from baseline counts.

    Pass --confidence to derive a threshold, or --min-pass-rate to see
    what confidence an explicit threshold implies.
    """
    if (confidence is None) == (min_pass_rate is None):
        console.print("[red]Error:[/red] Pass exactly one of --confidence or --min-pass-rate")
        raise typer.Exit(1)

    try:
        if confidence is not None:
            derived = derive_sample_size_first(samples, successes, test_samples, confidence)
        else:
            rate = cast("float", min_pass_rate)
            derived = derive_threshold_first(samples, successes, test_samples, rate)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    table = Table(show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Approach", derived.approach.label)
    table.add_row("Baseline rate", f"{_pct(derived.context.baseline_rate)} ({successes}/{samples})")
    table.add_row("Test samples", str(test_samples))
    table.add_row("Threshold", _pct(derived.value))
    table.add_row("Confidence", _pct(derived.context.confidence))
    table.add_row("Gap from baseline", _pct(derived.gap_from_baseline))
    table.add_row("Sound", "[green]yes[/green]" if derived.sound else "[yellow]no[/yellow]")
    console.print(table)

    if not derived.sound:
        console.print(
            "[yellow]Warning:[/yellow] threshold is at or near the baseline rate; "
            "expect frequent false failures."
        )


def sample_size(
    baseline_rate: float = typer.Option(..., "--baseline-rate", "-r", help="Baseline success rate"),
    mde: float = typer.Option(..., "--mde", "-d", help="Minimum detectable effect"),
    confidence: float = typer.Option(0.95, "--confidence", "-c", help="Confidence (1 - alpha)"),
    power: float = typer.Option(0.80, "--power", "-w", help="Power (1 - beta)"),
) -> None:
    """Compute the samples needed to detect a degradation."""
    try:
        requirement = calculate_for_power(baseline_rate, mde, confidence, power)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    achieved = achieved_power(requirement.required_samples, baseline_rate, mde, confidence)
    console.print(f"Required samples: [bold]{requirement.required_samples}[/bold]")
    console.print(
        f"[dim]H0 rate {_pct(requirement.null_rate)}, H1 rate "
        f"{_pct(requirement.alternative_rate)}, achieved power {_pct(achieved)}[/dim]"
    )


def interval(
    successes: int = typer.Option(..., "--successes", "-k", help="Success count"),
    trials: int = typer.Option(..., "--trials", "-n", help="Trial count"),
    confidence: float = typer.Option(0.95, "--confidence", "-c", help="Confidence level"),
) -> None:
    """Show the Wilson score interval for a success rate."""
    try:
        result = estimate(successes, trials, confidence)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    console.print(
        f"{_pct(result.point_estimate)} "
        f"[{_pct(result.lower_bound)}, {_pct(result.upper_bound)}] "
        f"at {_pct(confidence)} confidence (n={trials})",
        markup=False,
    )
