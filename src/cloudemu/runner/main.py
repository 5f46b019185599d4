from __future__ import annotations

from typing import Any

import pytest
import typer

from ..config.loader import load_settings
from ..emulator import EMULATORS, Emulator, get_spec
from ..harness.launcher import ProcessHandle
from ..harness.teardown import TeardownManager

# Create a CLI application using Typer
app = typer.Typer(add_completion=False)


@app.command()
def run(
    emulator: list[str] = typer.Option(
        [], "--emulator", "-e", help="Emulator to enable (repeatable): spanner, pubsub, ..."
    ),
    config: str = typer.Option(None, help="Path to the YAML emulator configuration file"),
    tests_path: str = typer.Option("tests", help="Path to the tests to run"),
    extra: str = typer.Option("", help="Additional arguments for pytest (space-separated)"),
) -> Any:
    """
    Run pytest with the given emulators opted in.

    Example usage:
        cloudemu run -e spanner --tests-path tests/e2e --extra "-m spanner"
    """
    args = [tests_path]
    if config:
        args += ["--emulator-config", config]
    for name in emulator:
        try:
            spec = get_spec(name)
        except KeyError as e:
            raise typer.BadParameter(str(e.args[0]), param_hint="--emulator") from None
        args += ["--property", f"{spec.gating_property}=true"]
    if extra:
        args += extra.split()

    # Exit with pytest's return code
    raise SystemExit(pytest.main(args))


@app.command()
def cleanup(
    names: list[str] = typer.Argument(None, help="Emulators to clean up (default: all)"),
    config: str = typer.Option(None, help="Path to the YAML emulator configuration file"),
) -> None:
    """
    Kill emulator processes left behind by interrupted test runs.
    """
    settings = load_settings(config)
    teardown = TeardownManager(settings.kill_timeout)
    specs = [get_spec(n) for n in names] if names else list(EMULATORS.values())
    total = 0
    for spec in specs:
        handle = ProcessHandle.from_pid_file(
            spec.name, settings.artifacts_dir, expect=" ".join(spec.start_args)
        )
        killed = teardown.cleanup(spec.cleanup_patterns, handle=handle)
        total += len(killed)
        typer.echo(f"{spec.name}: killed {len(killed)} process(es)")
    typer.echo(f"Done, {total} process(es) killed")


@app.command(name="list")
def list_emulators() -> None:
    """
    Print the known emulators with their opt-in properties and default ports.
    """
    for emulator in Emulator:
        spec = EMULATORS[emulator]
        typer.echo(
            f"{spec.name:<10} {spec.gating_property:<24} "
            f"{spec.host_env_var:<24} port {spec.default_port}"
        )


if __name__ == "__main__":
    app()
