from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union
import re
import shlex

from .errors import ParseError
from .types import Host

UNGROUPED = "ungrouped"
ALL = "all"
CONNECTIONS = {"ssh", "local"}

# inventory key -> Host attribute
CONNECTION_KEYS = {
    "ansible_host": "address",
    "host": "address",
    "ansible_user": "user",
    "user": "user",
    "ansible_ssh_private_key_file": "key_file",
    "key_file": "key_file",
    "ansible_port": "port",
    "port": "port",
    "ansible_connection": "connection",
    "connection": "connection",
}


class InventoryLoader:
    """Resolves INI style inventories into groups of hosts."""

    SECTION_RE = re.compile(r"^\[([A-Za-z0-9_.-]+)(?::(vars|children))?\]$")

    def __init__(self, defaults: Optional[dict[str, Any]] = None):
        self.defaults = {k: v for k, v in (defaults or {}).items() if v is not None}

    def load(self, path: Path) -> dict[str, list[Host]]:
        path = Path(path)
        try:
            text = path.read_text()
        except OSError as exc:
            raise ParseError(f"{path}: unable to read inventory: {exc.strerror or exc}") from None
        try:
            return self.resolve(text)
        except ParseError as exc:
            line = f"{exc.line}" if exc.line is not None else "?"
            raise ParseError(f"{path}:{line} {exc}", line=exc.line) from None

    def resolve(self, source: Union[str, Path]) -> dict[str, list[Host]]:
        if isinstance(source, Path):
            return self.load(source)

        declared: dict[str, list[tuple[str, dict[str, str]]]] = {}
        group_vars: dict[str, dict[str, str]] = {}
        section: Optional[str] = UNGROUPED
        kind: Optional[str] = None

        for lineno, raw in enumerate(source.splitlines(), start=1):
            line = raw.strip()
            if not line or line[0] in "#;":
                continue
            if line.startswith("["):
                match = self.SECTION_RE.match(line)
                if not match:
                    raise ParseError(f"malformed section header {line!r}", line=lineno)
                section, kind = match.group(1), match.group(2)
                if kind == "children":
                    raise ParseError("group children are not supported", line=lineno)
                if kind == "vars":
                    group_vars.setdefault(section, {})
                else:
                    declared.setdefault(section, [])
                continue
            if kind == "vars":
                key, sep, value = line.partition("=")
                if not sep or not key.strip():
                    raise ParseError(f"expected key=value, got {line!r}", line=lineno)
                key, value = key.strip(), self._unquote(value.strip(), lineno)
                self._check_connection_value(key, value, lineno)
                group_vars[section][key] = value
                continue
            name, attributes = self._parse_host_line(line, lineno)
            declared.setdefault(section, []).append((name, attributes))

        groups: dict[str, list[Host]] = {}
        everyone: dict[str, Host] = {}
        base_vars = group_vars.get(ALL, {})
        for group, entries in declared.items():
            merged_vars = {**base_vars, **group_vars.get(group, {})}
            hosts: list[Host] = []
            for name, attributes in entries:
                try:
                    host = self._build_host(name, {**merged_vars, **attributes})
                except ValueError as exc:
                    raise ParseError(f"[{group}:vars] {exc}") from None
                hosts.append(host)
                everyone.setdefault(host.name, host)
            groups[group] = hosts
        groups.setdefault(ALL, list(everyone.values()))
        return groups

    def _parse_host_line(self, line: str, lineno: int) -> tuple[str, dict[str, str]]:
        try:
            parts = shlex.split(line, comments=True)
        except ValueError as exc:
            raise ParseError(str(exc), line=lineno) from None
        name, *rest = parts
        attributes: dict[str, str] = {}
        for item in rest:
            key, sep, value = item.partition("=")
            if not sep or not key:
                raise ParseError(f"host attribute {item!r} is not key=value", line=lineno)
            attributes[key] = value
        try:
            self._build_host(name, attributes)
        except ValueError as exc:
            raise ParseError(str(exc), line=lineno) from None
        return name, attributes

    def _build_host(self, name: str, attributes: dict[str, str]) -> Host:
        fields: dict[str, Any] = {}
        variables: dict[str, Any] = {}
        for key, value in attributes.items():
            attr = CONNECTION_KEYS.get(key)
            if attr:
                fields[attr] = value
            else:
                variables[key] = value

        fields.setdefault("user", self.defaults.get("remote_user"))
        fields.setdefault("key_file", self.defaults.get("private_key_file"))
        port = fields.get("port", 22)
        try:
            fields["port"] = int(port)
        except (TypeError, ValueError):
            raise ValueError(f"port for host '{name}' must be an integer, got {port!r}") from None
        connection = fields.get("connection", "ssh")
        if connection not in CONNECTIONS:
            raise ValueError(f"unknown connection type '{connection}' for host '{name}'")
        return Host(name=name, variables=variables, **fields)

    @staticmethod
    def _check_connection_value(key: str, value: str, lineno: int) -> None:
        attr = CONNECTION_KEYS.get(key)
        if attr == "port":
            try:
                int(value)
            except ValueError:
                raise ParseError(f"port must be an integer, got {value!r}", line=lineno) from None
        elif attr == "connection" and value not in CONNECTIONS:
            raise ParseError(f"unknown connection type '{value}'", line=lineno)

    @staticmethod
    def _unquote(value: str, lineno: int) -> str:
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            try:
                return shlex.split(value)[0]
            except ValueError as exc:
                raise ParseError(str(exc), line=lineno) from None
        return value
