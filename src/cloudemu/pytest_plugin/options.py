import pytest


def pytest_addoption(parser: pytest.Parser) -> None:
    """
    Registers custom command-line (CLI) options for pytest.

    Adds options to configure emulator-backed test runs:
      --emulator-config <path>  : Path to the YAML configuration file.
      --property key=value      : Opt-in/override property, repeatable
                                  (e.g. --property it.spanner-emulator=true).
    """
    g = parser.getgroup("cloudemu")
    g.addoption(
        "--emulator-config",
        action="store",
        default=None,
        help="Path to YAML emulator configuration file",
    )
    g.addoption(
        "--property",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Set a harness property, e.g. it.spanner-emulator=true (repeatable)",
    )
