from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .base import Operation, coerce_bool
from ..errors import CapabilityError
from ..executors import Executor

logger = logging.getLogger(__name__)

STATE_ALIASES = {"running": "started"}
ONE_SHOT_STATES = {"restarted", "reloaded"}


@dataclass
class ServiceState:
    loaded: bool
    active: bool
    enabled: bool


@dataclass
class SystemCtl:
    executable: str = "systemctl"

    def available(self, executor: Executor) -> bool:
        return executor.command_exists(self.executable)

    def is_loaded(self, executor: Executor, service: str) -> bool:
        result = executor.run(
            [self.executable, "show", "-p", "LoadState", "--value", service],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and result.stdout.strip() not in {"", "not-found"}

    def is_enabled(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-enabled", service], check=False, mutable=False)
        return result.returncode == 0

    def is_active(self, executor: Executor, service: str) -> bool:
        result = executor.run([self.executable, "is-active", service], check=False, mutable=False)
        return result.returncode == 0

    def enable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "enable", service])

    def disable(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "disable", service])

    def start(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "start", service])

    def stop(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "stop", service])

    def restart(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "restart", service])

    def reload(self, executor: Executor, service: str) -> None:
        executor.run([self.executable, "reload", service])


class ServiceOperation(Operation):
    """Manage systemd services."""

    action = "service"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_name = spec.get("name")
        if not raw_name:
            raise ValueError("service operation requires a name")
        self.name = str(raw_name)
        self.enabled = coerce_bool(spec.get("enabled"))
        state = spec.get("state")
        self.state = STATE_ALIASES.get(state, state) if state is not None else None
        if self.state not in {None, "started", "stopped", *ONE_SHOT_STATES}:
            raise ValueError("service state must be 'started', 'stopped', 'restarted' or 'reloaded'")
        if self.state is None and self.enabled is None:
            raise ValueError("service operation requires a state or enabled")
        self.systemctl = SystemCtl()

    def query_state(self, executor: Executor) -> ServiceState:
        if not self.systemctl.available(executor):
            raise CapabilityError(f"systemctl is not available on {executor.host.name}")
        return ServiceState(
            loaded=self.systemctl.is_loaded(executor, self.name),
            active=self.systemctl.is_active(executor, self.name),
            enabled=self.systemctl.is_enabled(executor, self.name),
        )

    def satisfied(self, state: ServiceState) -> bool:
        if self.state in ONE_SHOT_STATES:
            return False
        if self.enabled is not None and state.enabled != self.enabled:
            return False
        if self.state == "started" and not state.active:
            return False
        if self.state == "stopped" and state.active:
            return False
        return True

    def converge(self, executor: Executor, state: ServiceState) -> str:
        if not state.loaded:
            raise CapabilityError(f"service {self.name} is not installed")

        changes: list[str] = []
        if self.enabled is not None and state.enabled != self.enabled:
            if self.enabled:
                logger.debug("Enabling service %s", self.name)
                self.systemctl.enable(executor, self.name)
                changes.append("enabled")
            else:
                logger.debug("Disabling service %s", self.name)
                self.systemctl.disable(executor, self.name)
                changes.append("disabled")

        if self.state == "started" and not state.active:
            logger.debug("Starting service %s", self.name)
            self.systemctl.start(executor, self.name)
            changes.append("started")
        elif self.state == "stopped" and state.active:
            logger.debug("Stopping service %s", self.name)
            self.systemctl.stop(executor, self.name)
            changes.append("stopped")
        elif self.state == "restarted":
            logger.debug("Restarting service %s", self.name)
            self.systemctl.restart(executor, self.name)
            changes.append("restarted")
        elif self.state == "reloaded":
            logger.debug("Reloading service %s", self.name)
            self.systemctl.reload(executor, self.name)
            changes.append("reloaded")

        return ", ".join(changes)
