# Copyright (c) Syntropy Systems
"""Main CLI entry point for trialgate."""

import typer

from trialgate.cli.baselines import baselines_app, footprint
from trialgate.cli.stats import interval, sample_size, threshold

app = typer.Typer(
    name="trialgate",
    help=(
        "Statistical pass/fail decisions for non-deterministic tests. "
        "Derive thresholds, size runs and inspect baselines."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(threshold)
_ = app.command(name="sample-size")(sample_size)
_ = app.command()(interval)
_ = app.command()(footprint)

# Register baselines sub-app
app.add_typer(baselines_app, name="baselines")


if __name__ == "__main__":
    app()
