from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

SUCCESS = "success"
FAILED = "failed"
UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class Host:
    name: str
    address: Optional[str] = None
    user: Optional[str] = None
    key_file: Optional[str] = None
    port: int = 22
    connection: str = "ssh"
    variables: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def target(self) -> str:
        return self.address or self.name


@dataclass(frozen=True)
class Task:
    name: str
    capability: str
    params: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    notify: tuple[str, ...] = ()


@dataclass(frozen=True)
class Handler:
    name: str
    capability: str
    params: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass
class Role:
    name: str
    tasks: list[Task] = field(default_factory=list)
    handlers: list[Handler] = field(default_factory=list)


@dataclass
class Play:
    hosts: str
    roles: list[Role]
    name: Optional[str] = None
    become: bool = False
    vars: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskResult:
    host: str
    task: str
    action: str
    changed: bool
    details: str
    failed: bool = False
    resource: Optional[str] = None
    handler: bool = False


@dataclass
class HostReport:
    host: Host
    outcome: str
    results: list[TaskResult] = field(default_factory=list)
    notified: set[str] = field(default_factory=set)
    message: Optional[str] = None
    failed_task: Optional[str] = None

    @property
    def changed(self) -> int:
        return sum(1 for result in self.results if result.changed)

    @property
    def ok(self) -> int:
        return sum(1 for result in self.results if not result.failed)
