from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Sequence, Union
import errno
import logging
import os
import select
import shlex
import stat
import subprocess
import time

import paramiko

from .errors import HostConnectionError, TransportError
from .types import Host

logger = logging.getLogger(__name__)

PathLike = Union[str, PurePosixPath, Path]

READ_CHUNK = 32 * 1024


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


class Executor:
    """Base executor abstraction used by operations.

    Subclasses only need to provide ``_execute``; the file primitives are built
    on top of ``run`` so they work over any session that can run a POSIX shell.
    """

    def __init__(self, host: Host, *, dry_run: bool = False, become: bool = False):
        self.host = host
        self.dry_run = dry_run
        self.become = become

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        mutable: bool = True,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run ``command`` and optionally skip it during dry-runs."""

        cmd_list = [str(part) for part in command]
        if self.dry_run and mutable:
            return CommandResult(cmd_list, "", "skipped (dry-run)", 0)

        if self.become and not self.is_superuser():
            cmd_list = ["sudo", "-n", "--", *cmd_list]
        logger.debug("host=%s run=%s", self.host.name, shlex.join(cmd_list))
        result = self._execute(cmd_list, input=input, timeout=timeout)
        if check and result.returncode != 0:
            raise subprocess.CalledProcessError(
                result.returncode,
                cmd_list,
                result.stdout,
                result.stderr,
            )
        return result

    def _execute(
        self, command: list[str], *, input: Optional[str], timeout: Optional[float]
    ) -> CommandResult:
        raise NotImplementedError

    def is_superuser(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        """Release the session; executors are single-use per host run."""

    def command_exists(self, name: str) -> bool:
        result = self.run(
            ["sh", "-c", f"command -v {shlex.quote(name)}"], check=False, mutable=False
        )
        return result.returncode == 0

    # File primitives -----------------------------------------------------
    def read_file(self, path: PathLike) -> Optional[str]:
        result = self.run(["cat", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def file_mode(self, path: PathLike) -> Optional[int]:
        result = self.run(["stat", "-c", "%a", str(path)], check=False, mutable=False)
        if result.returncode != 0:
            return None
        return int(result.stdout.strip(), 8)

    def write_file(self, path: PathLike, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        target = PurePosixPath(str(path))
        current = self.read_file(target)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            script = "mkdir -p {parent} && cat > {path}".format(
                parent=shlex.quote(str(target.parent)), path=shlex.quote(str(target))
            )
            self.run(["sh", "-c", script], input=content)

        if mode is not None:
            existing_mode = self.file_mode(target)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                self.run(["chmod", f"{mode:04o}", str(target)])
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail


class LocalExecutor(Executor):
    """Executor that acts directly on the local host."""

    def _execute(
        self, command: list[str], *, input: Optional[str], timeout: Optional[float]
    ) -> CommandResult:
        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=False,
                input=input,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            return CommandResult(command, "", str(exc), 127)
        except subprocess.TimeoutExpired as exc:
            raise TransportError(f"command timed out after {exc.timeout}s: {shlex.join(command)}") from exc
        return CommandResult(command, proc.stdout, proc.stderr, proc.returncode)

    def is_superuser(self) -> bool:
        return os.geteuid() == 0

    def _direct(self) -> bool:
        return not self.become or self.is_superuser()

    def read_file(self, path: PathLike) -> Optional[str]:
        if not self._direct():
            return super().read_file(path)
        try:
            return Path(path).read_text()
        except FileNotFoundError:
            return None

    def file_mode(self, path: PathLike) -> Optional[int]:
        if not self._direct():
            return super().file_mode(path)
        try:
            return stat.S_IMODE(Path(path).stat().st_mode)
        except FileNotFoundError:
            return None

    def write_file(self, path: PathLike, *, content: str, mode: Optional[int]) -> tuple[bool, str]:
        if not self._direct():
            return super().write_file(path, content=content, mode=mode)
        path = Path(path)
        current = self.read_file(path)
        changed = False
        reasons: list[str] = []

        if current != content:
            changed = True
            reasons.append("content")
            if not self.dry_run:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

        if mode is not None:
            existing_mode = self.file_mode(path)
            if existing_mode != mode:
                changed = True
                reasons.append(f"mode->{mode:04o}")
                # ``chmod`` fails if the file is absent, which happens in dry-run.
                if not self.dry_run and path.exists():
                    os.chmod(path, mode)
        detail = ", ".join(reasons) if reasons else "noop"
        return changed, detail


class SSHExecutor(Executor):
    """Executor that runs commands over an established paramiko session."""

    def __init__(
        self,
        host: Host,
        client: paramiko.SSHClient,
        *,
        dry_run: bool = False,
        become: bool = False,
        username: Optional[str] = None,
    ):
        super().__init__(host, dry_run=dry_run, become=become)
        self.client = client
        self.username = username or host.user

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} host={self.host.name} address={self.host.target}>"

    def _execute(
        self, command: list[str], *, input: Optional[str], timeout: Optional[float]
    ) -> CommandResult:
        line = shlex.join(command)
        try:
            stdin, stdout, _ = self.client.exec_command(line, timeout=timeout)
            if input is not None:
                stdin.write(input)
            stdin.channel.shutdown_write()
            out, err = self._drain(stdout.channel, line, timeout)
            returncode = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise TransportError(f"{self.host.target}: {exc}") from exc
        return CommandResult(command, out, err, returncode)

    def _drain(self, channel: paramiko.Channel, line: str, timeout: Optional[float]) -> tuple[str, str]:
        """Read stdout and stderr together so neither channel window fills up."""

        out, err = b"", b""
        deadline = time.monotonic() + timeout if timeout else None
        while True:
            received = False
            if channel.recv_ready():
                out += channel.recv(READ_CHUNK)
                received = True
            if channel.recv_stderr_ready():
                err += channel.recv_stderr(READ_CHUNK)
                received = True
            if received:
                continue
            if channel.exit_status_ready():
                break
            if deadline is not None and time.monotonic() > deadline:
                raise TransportError(f"{self.host.target}: command timed out after {timeout}s: {line}")
            select.select([channel], [], [], 0.1)
        return out.decode("utf-8", "replace"), err.decode("utf-8", "replace")

    def is_superuser(self) -> bool:
        return self.username == "root"

    def close(self) -> None:
        self.client.close()


class Transport:
    """Opens sessions to inventory hosts."""

    def __init__(
        self,
        *,
        dry_run: bool = False,
        timeout: float = 10.0,
        ssh_config: Optional[Path] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ):
        self.dry_run = dry_run
        self.timeout = timeout
        self.ssh_config = ssh_config or Path("~/.ssh/config").expanduser()
        self.client_factory = client_factory

    def connect(self, host: Host, *, become: bool = False) -> Executor:
        if host.connection == "local":
            return LocalExecutor(host, dry_run=self.dry_run, become=become)
        if host.connection == "ssh":
            return self._connect_ssh(host, become=become)
        raise HostConnectionError(f"Unknown connection type '{host.connection}'")

    def _connect_ssh(self, host: Host, *, become: bool) -> SSHExecutor:
        try:
            opts = self._lookup(host.target)
        except paramiko.SSHException as exc:
            raise HostConnectionError(f"unable to read {self.ssh_config}: {exc}") from exc
        username = host.user or opts.get("user")
        key_file = host.key_file or self._first(opts.get("identityfile"))
        client = self.client_factory()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        hostname = opts.get("hostname", host.target)
        logger.debug("connecting to %s:%s as %s", hostname, host.port, username)
        try:
            client.connect(
                hostname=hostname,
                port=host.port,
                username=username,
                key_filename=os.path.expanduser(key_file) if key_file else None,
                timeout=self.timeout,
                sock=paramiko.ProxyCommand(opts["proxycommand"]) if "proxycommand" in opts else None,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise HostConnectionError(f"authentication failed for {username}@{hostname}: {exc}") from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise HostConnectionError(f"unable to connect to {hostname}:{host.port}: {exc}") from exc
        return SSHExecutor(host, client, dry_run=self.dry_run, become=become, username=username)

    def _lookup(self, hostname: str) -> dict:
        cfg = paramiko.SSHConfig()
        try:
            with self.ssh_config.open() as fd:
                cfg.parse(fd)
        except OSError as exc:
            if exc.errno != errno.ENOENT:
                logger.warning("Unable to read %s: %s", self.ssh_config, exc)
        return cfg.lookup(hostname)

    @staticmethod
    def _first(value) -> Optional[str]:
        if isinstance(value, list):
            return value[0] if value else None
        return value
