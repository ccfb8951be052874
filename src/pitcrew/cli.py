from pathlib import Path

import typer

app = typer.Typer(name="pitcrew", help="Run unit tests with fixtures and mocks")

_STATUS_LABELS = {
    "passed": "PASS",
    "failed": "FAIL",
    "inconclusive": "INCONCLUSIVE",
}


def _discover_or_exit(modules: list[str]):
    from pitcrew.discovery import discover, load_modules

    try:
        return discover(load_modules(modules))
    except (ImportError, ValueError, TypeError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command()
def run(
    modules: list[str] | None = typer.Argument(
        None, help="Dotted module paths to discover tests in"
    ),
    config: str | None = typer.Option(
        None, "--config", "-c", help="Path to a pitcrew YAML config"
    ),
    output_dir: str = typer.Option("runs", help="Output directory for run results"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output to terminal"
    ),
    parallel: int | None = typer.Option(
        None, "--parallel", "-p", min=1, max=256, help="Number of units to run in parallel"
    ),
    timeout: float | None = typer.Option(None, "--timeout", help="Per-test timeout in seconds"),
    deadline: float | None = typer.Option(
        None, "--deadline", help="Deadline for the whole run in seconds"
    ),
    lenient_mocks: bool = typer.Option(
        False, "--lenient-mocks", help="Unconfigured mock calls return defaults"
    ),
):
    """Discover and run tests, then write junit.xml and meta.yaml."""
    import yaml
    from pydantic import ValidationError

    from pitcrew.config import RunConfig, load_config
    from pitcrew.mocking import configure_default_engine
    from pitcrew.runner import TestRunner

    try:
        if config:
            config_path = Path(config)
            if not config_path.exists():
                typer.echo(f"Error: config file not found: {config}", err=True)
                raise typer.Exit(1)
            run_config = load_config(config_path)
        else:
            run_config = RunConfig()

        overrides: dict = {}
        if modules:
            overrides["modules"] = modules
        if parallel is not None:
            overrides["concurrency_limit"] = parallel
        if timeout is not None:
            overrides["timeout_s"] = timeout
        if deadline is not None:
            overrides["deadline_s"] = deadline
        if lenient_mocks:
            overrides["strict_mocks"] = False
        run_config = RunConfig(**{**run_config.model_dump(), **overrides})
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if not run_config.modules:
        typer.echo("Error: no test modules given", err=True)
        raise typer.Exit(1)

    units = _discover_or_exit(run_config.modules)
    configure_default_engine(
        strict=run_config.strict_mocks, synchronized=run_config.synchronized_mocks
    )

    runner = TestRunner.from_config(run_config, verbose=verbose)
    typer.echo(
        f"Running {len(units)} unit(s) with concurrency {run_config.concurrency_limit}..."
    )

    def report_progress(result, index: int, total: int) -> None:
        label = _STATUS_LABELS[result.status.value]
        typer.echo(
            f"  [{index}/{total}] {label}  {result.qualified_name} ({result.duration_s:.2f}s)"
        )

    run_dir = runner.execute(units, Path(output_dir), on_result=report_progress)

    meta = yaml.safe_load((run_dir / "meta.yaml").read_text())
    summary = meta["summary"]

    for failure in summary["failures"]:
        typer.echo(f"FAILED {failure['name']}")
        for message in failure["messages"]:
            typer.echo(f"    {message}")
    for name in summary["inconclusive_names"]:
        typer.echo(f"INCONCLUSIVE {name} (no assertions executed)")
    for group_fault in summary["group_faults"]:
        typer.echo(
            f"GROUP FAULT {group_fault['group']} {group_fault['phase']}: {group_fault['message']}"
        )

    wall_clock = summary["wall_clock_s"] or 0.0
    typer.echo(
        f"{summary['passed']} passed, {summary['failed']} failed, "
        f"{summary['inconclusive']} inconclusive in {wall_clock:.2f}s"
    )
    if runner.interrupted:
        typer.echo(f"Partial run saved: {run_dir}")
    else:
        typer.echo(f"Run complete: {run_dir}")
    if not verbose:
        typer.echo(f"Debug log: {run_dir / 'debug.log'}")

    # Exit with non-zero if any unit failed or the run was interrupted
    if runner.interrupted or not summary["successful"]:
        raise typer.Exit(1)


@app.command("list")
def list_units(
    modules: list[str] = typer.Argument(help="Dotted module paths to discover tests in"),
):
    """List the units discovered in the given modules."""
    units = _discover_or_exit(modules)
    for unit in units:
        typer.echo(unit.qualified_name)
    typer.echo(f"{len(units)} unit(s)")


if __name__ == "__main__":
    app()
