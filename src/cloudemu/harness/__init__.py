from .gate import Gate, env_key
from .launcher import ProcessHandle, ProcessLauncher
from .lifecycle import EmulatorHarness, LifecycleState, parse_env_init
from .readiness import ReadinessWaiter, port_probe
from .setup import SetupCommand, SetupRunner
from .teardown import TeardownManager, find_processes

__all__ = [
    "EmulatorHarness",
    "Gate",
    "LifecycleState",
    "ProcessHandle",
    "ProcessLauncher",
    "ReadinessWaiter",
    "SetupCommand",
    "SetupRunner",
    "TeardownManager",
    "env_key",
    "find_processes",
    "parse_env_init",
    "port_probe",
]
