from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import pytest

from stagehand_automation.errors import HostConnectionError, TransportError
from stagehand_automation.executors import CommandResult, Executor
from stagehand_automation.types import Host

EXAMPLES = Path(__file__).resolve().parents[1] / "examples" / "webserver"

WRITE_RE = re.compile(r"^mkdir -p (\S+) && cat > (\S+)$")


@dataclass
class SimulatedHost:
    """In-memory Debian-like host driven through real executor commands."""

    available: set[str] = field(default_factory=lambda: {"nginx", "git"})
    installed: set[str] = field(default_factory=set)
    # package -> systemd unit it ships
    units: dict[str, str] = field(default_factory=lambda: {"nginx": "nginx"})
    active: set[str] = field(default_factory=set)
    enabled: set[str] = field(default_factory=set)
    files: dict[str, tuple[str, int]] = field(default_factory=dict)
    binaries: set[str] = field(default_factory=lambda: {"apt-get", "systemctl"})
    superuser: bool = True
    commands: list[list[str]] = field(default_factory=list)
    restarts: int = 0
    break_after: Optional[int] = None

    def loaded_units(self) -> set[str]:
        return {unit for pkg, unit in self.units.items() if pkg in self.installed}


class SimulatedExecutor(Executor):
    def __init__(self, host: Host, machine: SimulatedHost, *, dry_run: bool = False, become: bool = False):
        super().__init__(host, dry_run=dry_run, become=become)
        self.machine = machine
        self.closed = False

    def is_superuser(self) -> bool:
        return self.machine.superuser

    def close(self) -> None:
        self.closed = True

    def _execute(self, command, *, input, timeout):  # noqa: ARG002
        m = self.machine
        m.commands.append(list(command))
        if m.break_after is not None and len(m.commands) > m.break_after:
            raise TransportError("connection reset by peer")
        args = list(command)
        if args[:3] == ["sudo", "-n", "--"]:
            args = args[3:]
        if args[:1] == ["env"]:
            args = [a for a in args[1:] if "=" not in a]

        def ok(stdout: str = "") -> CommandResult:
            return CommandResult(command, stdout, "", 0)

        def fail(code: int, stderr: str = "") -> CommandResult:
            return CommandResult(command, "", stderr, code)

        if args[:2] == ["sh", "-c"]:
            script = args[2]
            if script.startswith("command -v "):
                binary = shlex.split(script)[2]
                return ok(f"/usr/bin/{binary}\n") if binary in m.binaries else fail(1)
            match = WRITE_RE.match(script)
            if match:
                path = shlex.split(match.group(2))[0]
                mode = m.files.get(path, ("", 0o644))[1]
                m.files[path] = (input or "", mode)
                return ok()
        if args[0] == "cat":
            entry = m.files.get(args[1])
            return ok(entry[0]) if entry else fail(1, "No such file or directory")
        if args[0] == "stat":
            entry = m.files.get(args[-1])
            return ok(f"{entry[1]:o}\n") if entry else fail(1)
        if args[0] == "chmod":
            content, _ = m.files[args[2]]
            m.files[args[2]] = (content, int(args[1], 8))
            return ok()
        if args[0] == "dpkg-query":
            pkg = args[-1]
            return ok("install ok installed") if pkg in m.installed else fail(1)
        if args[0] == "apt-get":
            verb, pkgs = args[1], [a for a in args[2:] if a != "-y"]
            if verb == "update":
                return ok()
            missing = [p for p in pkgs if p not in m.available]
            if missing:
                return fail(100, f"E: Unable to locate package {missing[0]}")
            if verb == "install":
                m.installed.update(pkgs)
            elif verb == "remove":
                m.installed.difference_update(pkgs)
            return ok()
        if args[0] == "systemctl":
            verb, unit = args[1], args[-1]
            loaded = unit in m.loaded_units()
            if verb == "show":
                return ok("loaded\n" if loaded else "not-found\n")
            if verb == "is-active":
                return ok("active") if unit in m.active else fail(3, "inactive")
            if verb == "is-enabled":
                return ok("enabled") if unit in m.enabled else fail(1, "disabled")
            if not loaded:
                return fail(5, f"Failed to {verb} {unit}.service: Unit {unit}.service not found.")
            if verb in {"start", "restart"}:
                m.active.add(unit)
                if verb == "restart":
                    m.restarts += 1
            elif verb == "stop":
                m.active.discard(unit)
            elif verb == "enable":
                m.enabled.add(unit)
            elif verb == "disable":
                m.enabled.discard(unit)
            return ok()
        return fail(127, f"{args[0]}: command not found")


class FakeTransport:
    def __init__(self, machines: dict[str, Union[SimulatedHost, Exception]], *, dry_run: bool = False):
        self.machines = machines
        self.dry_run = dry_run
        self.executors: list[SimulatedExecutor] = []

    def connect(self, host: Host, *, become: bool = False) -> SimulatedExecutor:
        machine = self.machines.get(host.name)
        if machine is None:
            raise HostConnectionError(f"unable to connect to {host.target}:{host.port}: timed out")
        if isinstance(machine, Exception):
            raise machine
        executor = SimulatedExecutor(host, machine, dry_run=self.dry_run, become=become)
        self.executors.append(executor)
        return executor


@pytest.fixture
def machine() -> SimulatedHost:
    return SimulatedHost()


@pytest.fixture
def examples_dir() -> Path:
    return EXAMPLES


@pytest.fixture
def fake_transport():
    def build(machines, *, dry_run: bool = False) -> FakeTransport:
        return FakeTransport(machines, dry_run=dry_run)

    return build


@pytest.fixture
def simulated_executor(machine):
    def build(host: Optional[Host] = None, *, dry_run: bool = False, become: bool = False) -> SimulatedExecutor:
        return SimulatedExecutor(host or Host(name="10.0.0.1"), machine, dry_run=dry_run, become=become)

    return build


@pytest.fixture
def make_machine():
    return SimulatedHost
