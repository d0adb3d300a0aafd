from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Union
import logging

from .errors import CapabilityError, ParseError, TransportError
from .executors import Executor, Transport
from .inventory import ALL
from .operations import OPERATION_REGISTRY, Operation
from .types import (
    FAILED,
    SUCCESS,
    UNREACHABLE,
    Handler,
    Host,
    HostReport,
    Play,
    Role,
    Task,
    TaskResult,
)

logger = logging.getLogger(__name__)

ReportCallback = Callable[[HostReport], None]


def run_capability(
    executor: Executor,
    host: Host,
    name: str,
    capability: str,
    params: dict[str, Any],
    *,
    handler: bool = False,
) -> TaskResult:
    """Apply one capability and fold capability failures into the result.

    Transport failures are re-raised so the caller can mark the host unreachable.
    """
    operation_cls = OPERATION_REGISTRY.get(capability)
    if not operation_cls:
        detail = f"unknown capability '{capability}'"
        logger.warning(detail)
        return TaskResult(host=host.name, task=name, action=capability, changed=False,
                          details=detail, failed=True, handler=handler,
                          resource=_resource_name(params))
    try:
        operation: Operation = operation_cls(params)
        result = operation.apply(host, executor)
    except TransportError:
        raise
    except (CapabilityError, ValueError) as exc:
        logger.debug("task=%s host=%s failed: %s", name, host.name, exc)
        result = TaskResult(host=host.name, task=name, action=capability, changed=False,
                            details=str(exc), failed=True)
    except Exception as exc:  # noqa: BLE001
        logger.error("task=%s host=%s failed: %s", name, host.name, exc, exc_info=True)
        result = TaskResult(host=host.name, task=name, action=capability, changed=False,
                            details=str(exc), failed=True)
    result.task = name
    result.handler = handler
    if result.resource is None:
        result.resource = _resource_name(params)
    logger.debug(
        "task=%s action=%s host=%s changed=%s failed=%s",
        name, capability, host.name, result.changed, result.failed,
    )
    return result


def _resource_name(params: dict[str, Any]) -> Optional[str]:
    for key in ("name", "dest", "path"):
        value = params.get(key)
        if value:
            return value if isinstance(value, str) else ",".join(str(v) for v in value)
    return None


class TaskExecutor:
    """Applies an ordered task list to one host, stopping at the first failure."""

    def __init__(self, executor: Executor):
        self.executor = executor

    def apply(self, host: Host, tasks: Sequence[Task]) -> tuple[list[TaskResult], set[str]]:
        results: list[TaskResult] = []
        notifications: set[str] = set()
        for task in tasks:
            result = run_capability(self.executor, host, task.name, task.capability, task.params)
            results.append(result)
            if result.failed:
                break
            if result.changed:
                notifications.update(task.notify)
        return results, notifications


class HandlerDispatcher:
    """Runs notified handlers once each, in the order they were declared."""

    def __init__(self, executor: Executor):
        self.executor = executor

    def dispatch(
        self,
        host: Host,
        notified: Iterable[str],
        handlers: Mapping[str, Handler],
    ) -> list[TaskResult]:
        notified = set(notified)
        for name in sorted(notified - set(handlers)):
            logger.warning("host=%s notified handler '%s' is not defined", host.name, name)

        results: list[TaskResult] = []
        for name, handler in handlers.items():
            if name not in notified:
                continue
            result = run_capability(
                self.executor, host, handler.name, handler.capability, handler.params, handler=True
            )
            results.append(result)
            if result.failed:
                break
        return results


class Orchestrator:
    """Converges every targeted host and collects one report per host."""

    def __init__(
        self,
        inventory: Mapping[str, list[Host]],
        *,
        transport: Optional[Transport] = None,
        forks: int = 5,
        dry_run: bool = False,
        force_handlers: bool = False,
        report_callback: Optional[ReportCallback] = None,
    ):
        if forks < 1:
            raise ValueError("forks must be at least 1")
        self.inventory = inventory
        self.transport = transport or Transport(dry_run=dry_run)
        self.forks = forks
        self.dry_run = dry_run
        self.force_handlers = force_handlers
        self.report_callback = report_callback

    def run_playbook(self, plays: Sequence[Play]) -> list[dict[Host, HostReport]]:
        for play in plays:
            self.targets(play.hosts)
        outcomes: list[dict[Host, HostReport]] = []
        for play in plays:
            logger.info("play=%s hosts=%s", play.name or play.hosts, play.hosts)
            outcomes.append(self.run(play.hosts, play.roles, become=play.become))
        return outcomes

    def run(
        self,
        groups: Union[str, Sequence[str]],
        role: Union[Role, Sequence[Role]],
        *,
        become: bool = False,
    ) -> dict[Host, HostReport]:
        hosts = self.targets(groups)
        roles = [role] if isinstance(role, Role) else list(role)
        tasks = [task for r in roles for task in r.tasks]
        handlers = self._handler_table(roles)

        reports: dict[str, HostReport] = {}
        with ThreadPoolExecutor(max_workers=self.forks) as pool:
            futures = {
                pool.submit(self.converge_host, host, tasks, handlers, become=become): host
                for host in hosts
            }
            for future in as_completed(futures):
                report = future.result()
                reports[report.host.name] = report
                if self.report_callback:
                    self.report_callback(report)
        return {host: reports[host.name] for host in hosts}

    def converge_host(
        self,
        host: Host,
        tasks: Sequence[Task],
        handlers: Mapping[str, Handler],
        *,
        become: bool = False,
    ) -> HostReport:
        try:
            executor = self.transport.connect(host, become=become)
        except TransportError as exc:
            logger.warning("host=%s unreachable: %s", host.name, exc)
            return HostReport(host=host, outcome=UNREACHABLE, message=str(exc))

        report = HostReport(host=host, outcome=SUCCESS)
        try:
            results, notified = TaskExecutor(executor).apply(host, tasks)
            report.results.extend(results)
            report.notified = notified
            if not self._fail(report) or self.force_handlers:
                report.results.extend(HandlerDispatcher(executor).dispatch(host, notified, handlers))
                self._fail(report)
        except TransportError as exc:
            logger.warning("host=%s unreachable: %s", host.name, exc)
            report.outcome = UNREACHABLE
            report.message = str(exc)
        finally:
            executor.close()
        return report

    def targets(self, groups: Union[str, Sequence[str]]) -> list[Host]:
        names = [groups] if isinstance(groups, str) else list(groups)
        seen: dict[str, Host] = {}
        for name in names:
            if name not in self.inventory:
                if name == ALL:
                    members = [h for hosts in self.inventory.values() for h in hosts]
                else:
                    raise ParseError(f"group '{name}' is not defined in the inventory")
            else:
                members = self.inventory[name]
            for host in members:
                seen.setdefault(host.name, host)
        return list(seen.values())

    @staticmethod
    def _handler_table(roles: Sequence[Role]) -> dict[str, Handler]:
        table: dict[str, Handler] = {}
        for role in roles:
            for handler in role.handlers:
                if handler.name in table:
                    logger.warning("role=%s handler '%s' already defined; keeping the first", role.name, handler.name)
                    continue
                table[handler.name] = handler
        return table

    @staticmethod
    def _fail(report: HostReport) -> bool:
        for result in report.results:
            if result.failed:
                report.outcome = FAILED
                report.failed_task = result.task
                report.message = result.details
                return True
        return False
