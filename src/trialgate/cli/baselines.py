# Copyright (c) Syntropy Systems
"""trialgate baselines and footprint commands."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from trialgate.baseline.footprint import compute_footprint
from trialgate.baseline.models import CovariateCategory, CovariateDeclaration, CovariateProfile
from trialgate.baseline.repository import YamlBaselineRepository
from trialgate.baseline.selector import select_baseline
from trialgate.errors import TrialgateError

console = Console()

baselines_app = typer.Typer(
    name="baselines",
    help="Inspect recorded baselines.",
    no_args_is_help=True,
)


def _parse_pairs(pairs: list[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            msg = f"Expected KEY=VALUE, got '{pair}'"
            raise typer.BadParameter(msg)
        key, value = pair.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def _parse_categories(pairs: list[str]) -> dict[str, CovariateCategory]:
    categories: dict[str, CovariateCategory] = {}
    for key, value in _parse_pairs(pairs).items():
        try:
            categories[key] = CovariateCategory(value.lower())
        except ValueError as e:
            choices = ", ".join(c.value for c in CovariateCategory)
            msg = f"Unknown category '{value}' for {key}; expected one of {choices}"
            raise typer.BadParameter(msg) from e
    return categories


def list_baselines(
    use_case: str = typer.Argument(..., help="Use case id"),
    directory: Optional[Path] = typer.Option(
        None,
        "--dir", "-d",
        help="Baseline directory (default: ./baselines or ./tests/baselines)",
    ),
) -> None:
    """List the baselines recorded for a use case."""
    repository = YamlBaselineRepository(directory)
    try:
        records = repository.find_candidates(use_case, None)
    except TrialgateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if not records:
        console.print(f"[dim]No baselines found for {use_case} in {repository.root}[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("File", style="dim")
    table.add_column("Footprint")
    table.add_column("Rate", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Generated")
    table.add_column("Covariates")
    table.add_column("Expiration")

    for record in sorted(records, key=lambda r: r.generated_at, reverse=True):
        status = record.expiration_status()
        expiration = status.describe()
        if status.is_expired:
            expiration = f"[red]{expiration}[/red]"
        elif status.requires_warning:
            expiration = f"[yellow]{expiration}[/yellow]"
        table.add_row(
            record.source_id,
            record.footprint or "-",
            f"{record.observed_rate:.2%}",
            str(record.samples),
            record.generated_at.strftime("%Y-%m-%d %H:%M"),
            ", ".join(f"{k}={v}" for k, v in record.covariates.items()) or "-",
            expiration,
        )

    console.print(table)


def select(
    use_case: str = typer.Argument(..., help="Use case id"),
    covariate: list[str] = typer.Option(
        [],
        "--covariate", "-c",
        help="Current covariate value as KEY=VALUE, in declaration order (repeatable)",
    ),
    category: list[str] = typer.Option(
        [],
        "--category",
        help="Covariate category as KEY=CATEGORY (default: infrastructure)",
    ),
    directory: Optional[Path] = typer.Option(None, "--dir", "-d", help="Baseline directory"),
) -> None:
    """Show which baseline a run with the given covariates would use."""
    values = _parse_pairs(covariate)
    categories = _parse_categories(category)
    declaration = CovariateDeclaration.of(*values, **categories)
    footprint = compute_footprint(use_case, declaration)

    repository = YamlBaselineRepository(directory)
    try:
        candidates = repository.find_candidates(use_case, footprint)
        result = select_baseline(candidates, CovariateProfile(values), declaration)
    except TrialgateError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if result.selected is None:
        console.print(f"[red]No compatible baseline[/red] for footprint {footprint}")
        available = repository.find_available_footprints(use_case)
        if available:
            console.print(f"[dim]Available footprints: {', '.join(available)}[/dim]")
        for signature in result.rejected_configurations:
            console.print(f"[dim]Excluded configuration: {signature}[/dim]")
        raise typer.Exit(1)

    record = result.selected
    console.print(f"[bold]Selected:[/bold] {record.source_id}")
    console.print(
        f"  Rate {record.observed_rate:.2%} ({record.successes}/{record.samples}), "
        f"footprint {footprint}, {result.candidate_count} candidates"
    )
    for detail in result.conformance:
        mark = "[green]✓[/green]" if detail.conforms else "[yellow]⚠[/yellow]"
        console.print(
            f"  {mark} {detail.key}: baseline={detail.baseline_value}, test={detail.test_value}"
        )
    if result.ambiguous:
        console.print("[yellow]Ambiguous:[/yellow] several baselines match equally well")


def footprint(
    use_case: str = typer.Argument(..., help="Use case id"),
    covariate: list[str] = typer.Option(
        [],
        "--covariate", "-c",
        help="Declared covariate name (repeatable, order matters)",
    ),
    factor: list[str] = typer.Option(
        [],
        "--factor", "-f",
        help="Identity factor as KEY=VALUE (repeatable)",
    ),
) -> None:
    """Print the footprint for a use case and covariate declaration."""
    console.print(compute_footprint(use_case, covariate, _parse_pairs(factor)))


baselines_app.command(name="list")(list_baselines)
baselines_app.command()(select)
