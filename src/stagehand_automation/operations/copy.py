from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Optional

import jinja2

from .base import Operation
from ..errors import CapabilityError
from ..executors import Executor
from ..types import Host


@dataclass
class FileState:
    content: Optional[str]
    mode: Optional[int]


class CopyOperation(Operation):
    """Ensure a file exists on the host with the requested contents."""

    action = "copy"
    source_key = "_files_dir"

    def __init__(self, spec: dict[str, Any]):
        super().__init__(spec)
        raw_dest = spec.get("dest") or spec.get("path")
        if not raw_dest:
            raise ValueError(f"{self.action} operation requires a dest")
        self.dest = PurePosixPath(str(raw_dest))
        self.src = spec.get("src")
        self.content = spec.get("content")
        if (self.src is None) == (self.content is None):
            raise ValueError(f"{self.action} operation requires exactly one of src or content")
        self.mode = self._parse_mode(spec.get("mode"))
        base = spec.get(self.source_key)
        self.base_dir = Path(str(base)) if base is not None else None
        self._desired: Optional[str] = None

    @property
    def resource(self) -> Optional[str]:
        return str(self.dest)

    def query_state(self, executor: Executor) -> FileState:
        self._desired = self.render(self._read_source(), executor.host)
        return FileState(content=executor.read_file(self.dest), mode=executor.file_mode(self.dest))

    def satisfied(self, state: FileState) -> bool:
        if state.content != self._desired:
            return False
        return self.mode is None or state.mode == self.mode

    def converge(self, executor: Executor, state: FileState) -> str:
        assert self._desired is not None
        _, detail = executor.write_file(self.dest, content=self._desired, mode=self.mode)
        return detail

    def render(self, text: str, host: Host) -> str:  # noqa: ARG002
        return text

    def _read_source(self) -> str:
        if self.content is not None:
            return str(self.content)
        source = Path(str(self.src)).expanduser()
        if not source.is_absolute() and self.base_dir is not None:
            source = self.base_dir / source
        try:
            return source.read_text()
        except OSError as exc:
            raise CapabilityError(f"unable to read source {source}: {exc.strerror or exc}") from exc

    @staticmethod
    def _parse_mode(value: Optional[object]) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int):
            return value
        text = str(value).strip()
        if not text:
            return None
        try:
            return int(text, 8)
        except ValueError:
            raise ValueError(f"invalid file mode '{text}'") from None


class TemplateOperation(CopyOperation):
    """Render a Jinja2 template from the role and place it on the host."""

    action = "template"
    source_key = "_templates_dir"

    def render(self, text: str, host: Host) -> str:
        context: dict[str, Any] = dict(host.variables)
        context.update(self.spec.get("_vars") or {})
        context.setdefault("inventory_hostname", host.name)
        env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False, keep_trailing_newline=True)
        try:
            return env.from_string(text).render(**context)
        except jinja2.TemplateError as exc:
            raise CapabilityError(f"unable to render {self.src or 'content'}: {exc}") from exc
