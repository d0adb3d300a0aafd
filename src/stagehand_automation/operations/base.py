from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional
import subprocess

from ..errors import CapabilityError
from ..executors import Executor
from ..types import Host, TaskResult


class Operation(ABC):
    """Shared surface for idempotent capabilities.

    ``apply`` queries the current state, compares it with the desired state and
    only converges when they differ.
    """

    action = "operation"

    def __init__(self, spec: dict[str, Any]):
        self.spec = spec

    @property
    def resource(self) -> Optional[str]:
        for key in ("name", "dest", "path"):
            value = self.spec.get(key)
            if value:
                return value if isinstance(value, str) else ",".join(str(v) for v in value)
        return None

    @abstractmethod
    def query_state(self, executor: Executor) -> Any:
        """Return the current state of the target on the host."""

    @abstractmethod
    def satisfied(self, state: Any) -> bool:
        """Whether ``state`` already matches the desired state."""

    @abstractmethod
    def converge(self, executor: Executor, state: Any) -> str:
        """Bring the host to the desired state and describe what changed."""

    def apply(self, host: Host, executor: Executor) -> TaskResult:
        try:
            state = self.query_state(executor)
            if self.satisfied(state):
                return self._result(host, changed=False, details="noop")
            detail = self.converge(executor, state)
        except subprocess.CalledProcessError as exc:
            raise CapabilityError(self._describe_failure(exc)) from exc
        if executor.dry_run:
            detail = f"{detail} (check mode)"
        return self._result(host, changed=True, details=detail)

    def _result(self, host: Host, *, changed: bool, details: str) -> TaskResult:
        return TaskResult(
            host=host.name,
            task=self.action,
            action=self.action,
            changed=changed,
            details=details,
            resource=self.resource,
        )

    @staticmethod
    def _describe_failure(exc: subprocess.CalledProcessError) -> str:
        command = " ".join(exc.cmd) if isinstance(exc.cmd, (list, tuple)) else str(exc.cmd)
        output = (exc.stderr or exc.stdout or "").strip()
        message = f"'{command}' exited with {exc.returncode}"
        if output:
            message = f"{message}: {output.splitlines()[-1]}"
        return message


def coerce_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
        raise ValueError(f"Unable to interpret boolean value '{value}'")
    return bool(value)
