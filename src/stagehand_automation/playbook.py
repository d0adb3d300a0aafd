from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional
import logging
import shlex

import yaml

from .errors import ParseError
from .operations import CAPABILITY_ALIASES, OPERATION_REGISTRY
from .types import Handler, Play, Role, Task

logger = logging.getLogger(__name__)

PLAY_KEYS = {"name", "hosts", "become", "roles", "vars"}
TASK_META_KEYS = {"name", "notify"}
HANDLER_META_KEYS = {"name"}


class PlaybookLoader:
    """Loads plays and the roles they reference from YAML documents."""

    def __init__(self, roles_path: Optional[Iterable[Path]] = None):
        self.roles_path = [Path(p) for p in roles_path or []]

    def load(self, path: Path) -> list[Play]:
        path = Path(path)
        data = self._read_yaml(path)
        if not isinstance(data, list) or not data:
            raise ParseError(f"{path}: a playbook must be a non-empty list of plays")
        search = [*self.roles_path, path.parent / "roles"]
        return [self._parse_play(raw, index, path, search) for index, raw in enumerate(data, start=1)]

    def load_role(self, name: str, search: Iterable[Path], variables: Optional[dict[str, Any]] = None) -> Role:
        for base in search:
            role_dir = base / name
            if role_dir.is_dir():
                break
        else:
            raise ParseError(f"role '{name}' not found in {', '.join(str(p) for p in search)}")

        tasks_file = self._main_file(role_dir / "tasks")
        if tasks_file is None:
            raise ParseError(f"role '{name}' has no tasks/main.yml")
        handlers_file = self._main_file(role_dir / "handlers")

        extras = {
            "_files_dir": str(role_dir / "files"),
            "_templates_dir": str(role_dir / "templates"),
            "_vars": dict(variables or {}),
        }
        tasks = [
            self._parse_task(raw, index, tasks_file, extras)
            for index, raw in enumerate(self._entries(tasks_file), start=1)
        ]
        handlers: list[Handler] = []
        if handlers_file is not None:
            handlers = [
                self._parse_handler(raw, index, handlers_file, extras)
                for index, raw in enumerate(self._entries(handlers_file), start=1)
            ]
            names = [handler.name for handler in handlers]
            duplicates = sorted({n for n in names if names.count(n) > 1})
            if duplicates:
                raise ParseError(f"{handlers_file}: duplicate handler names: {', '.join(duplicates)}")
        logger.debug("role=%s tasks=%d handlers=%d", name, len(tasks), len(handlers))
        return Role(name=name, tasks=tasks, handlers=handlers)

    def _parse_play(self, raw: Any, index: int, path: Path, search: list[Path]) -> Play:
        where = f"{path}: play {index}"
        if not isinstance(raw, dict):
            raise ParseError(f"{where}: a play must be a mapping")
        unknown = set(raw) - PLAY_KEYS
        if unknown:
            raise ParseError(f"{where}: unsupported keys {', '.join(sorted(unknown))}")
        hosts = raw.get("hosts")
        if not isinstance(hosts, str) or not hosts.strip():
            raise ParseError(f"{where}: 'hosts' must name an inventory group")
        variables = raw.get("vars") or {}
        if not isinstance(variables, dict):
            raise ParseError(f"{where}: 'vars' must be a mapping")
        become = raw.get("become", False)
        if not isinstance(become, bool):
            raise ParseError(f"{where}: 'become' must be a boolean")
        roles: list[Role] = []
        for entry in raw.get("roles") or []:
            if isinstance(entry, dict):
                name = entry.get("role") or entry.get("name")
            else:
                name = entry
            if not isinstance(name, str) or not name:
                raise ParseError(f"{where}: invalid role reference {entry!r}")
            roles.append(self.load_role(name, search, variables))
        if not roles:
            raise ParseError(f"{where}: at least one role is required")
        return Play(
            hosts=hosts.strip(),
            roles=roles,
            name=raw.get("name"),
            become=become,
            vars=dict(variables),
        )

    def _parse_task(self, raw: Any, index: int, path: Path, extras: dict[str, Any]) -> Task:
        where = f"{path}: task {index}"
        capability, params = self._split_entry(raw, TASK_META_KEYS, where)
        notify = raw.get("notify") or []
        if isinstance(notify, str):
            notify = [notify]
        if not isinstance(notify, list) or not all(isinstance(n, str) for n in notify):
            raise ParseError(f"{where}: 'notify' must be a handler name or a list of names")
        name = raw.get("name") or f"{capability} {index}"
        return Task(name=str(name), capability=capability, params={**params, **extras}, notify=tuple(notify))

    def _parse_handler(self, raw: Any, index: int, path: Path, extras: dict[str, Any]) -> Handler:
        where = f"{path}: handler {index}"
        capability, params = self._split_entry(raw, HANDLER_META_KEYS, where)
        name = raw.get("name")
        if not isinstance(name, str) or not name:
            raise ParseError(f"{where}: handlers require a name")
        return Handler(name=name, capability=capability, params={**params, **extras})

    def _split_entry(self, raw: Any, meta_keys: set[str], where: str) -> tuple[str, dict[str, Any]]:
        if not isinstance(raw, dict):
            raise ParseError(f"{where}: entry must be a mapping")
        keywords = [key for key in raw if key not in meta_keys]
        if len(keywords) != 1:
            found = ", ".join(keywords) if keywords else "none"
            raise ParseError(f"{where}: expected exactly one capability, found {found}")
        keyword = keywords[0]
        capability = CAPABILITY_ALIASES.get(keyword, keyword)
        if capability not in OPERATION_REGISTRY:
            raise ParseError(f"{where}: unknown capability '{keyword}'")
        params = self._params(raw[keyword], where)
        if keyword != capability:
            params.setdefault("manager", keyword)
        return capability, params

    @staticmethod
    def _params(value: Any, where: str) -> dict[str, Any]:
        if isinstance(value, dict):
            return dict(value)
        if isinstance(value, str):
            try:
                items = shlex.split(value)
            except ValueError as exc:
                raise ParseError(f"{where}: {exc}") from None
            params: dict[str, Any] = {}
            for item in items:
                key, sep, val = item.partition("=")
                if not sep:
                    raise ParseError(f"{where}: parameter {item!r} is not key=value")
                params[key] = val
            return params
        raise ParseError(f"{where}: parameters must be a mapping or key=value string")

    def _entries(self, path: Path) -> list[Any]:
        data = self._read_yaml(path)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ParseError(f"{path}: expected a list")
        return data

    @staticmethod
    def _main_file(directory: Path) -> Optional[Path]:
        for candidate in ("main.yml", "main.yaml"):
            path = directory / candidate
            if path.is_file():
                return path
        return None

    @staticmethod
    def _read_yaml(path: Path) -> Any:
        try:
            text = path.read_text()
        except OSError as exc:
            raise ParseError(f"{path}: {exc.strerror or exc}") from None
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            if mark is None:
                raise ParseError(f"{path}: {exc}") from None
            problem = getattr(exc, "problem", None) or str(exc)
            raise ParseError(
                f"{path}:{mark.line + 1}:{mark.column + 1} {problem}",
                line=mark.line + 1,
                column=mark.column + 1,
            ) from None
