from __future__ import annotations

from typing import Optional
import logging

from .base import Operation, coerce_bool
from ..errors import CapabilityError
from ..executors import Executor

logger = logging.getLogger(__name__)


class PackageOperation(Operation):
    """Install or remove packages using the package manager found on the host."""

    action = "package"

    def __init__(self, spec: dict[str, object]):
        super().__init__(spec)
        packages = spec.get("name") or spec.get("packages")
        if isinstance(packages, str):
            self.packages = [packages]
        else:
            self.packages = [str(pkg) for pkg in packages or []]
        if not self.packages:
            raise ValueError("package operation requires at least one package")
        self.state = str(spec.get("state", "present"))
        if self.state == "latest":
            self.state = "present"
        if self.state not in {"present", "absent"}:
            raise ValueError("package operation state must be 'present', 'latest' or 'absent'")
        self.preferred_manager = spec.get("manager")
        self.update_cache = bool(coerce_bool(spec.get("update_cache", False)))
        self.manager: Optional[PackageManager] = None

    def _manager(self, executor: Executor) -> "PackageManager":
        if self.manager is None:
            self.manager = PackageManagerFactory.create(self.preferred_manager, executor)
        return self.manager

    def query_state(self, executor: Executor) -> dict[str, bool]:
        manager = self._manager(executor)
        logger.debug(
            "package-manager=%s host=%s packages=%s", manager.name, executor.host.name, self.packages
        )
        return {pkg: manager.is_installed(executor, pkg) for pkg in self.packages}

    def satisfied(self, state: dict[str, bool]) -> bool:
        wanted = self.state == "present"
        return all(installed == wanted for installed in state.values())

    def converge(self, executor: Executor, state: dict[str, bool]) -> str:
        manager = self._manager(executor)
        if self.state == "present":
            needed = [pkg for pkg, installed in state.items() if not installed]
            if self.update_cache:
                manager.refresh(executor)
            manager.install(executor, needed)
            return f"manager={manager.name} installed={','.join(needed)}"
        removable = [pkg for pkg, installed in state.items() if installed]
        manager.remove(executor, removable)
        return f"manager={manager.name} removed={','.join(removable)}"


class PackageManagerFactory:
    _MANAGERS = [
        ("apt-get", "apt", lambda: AptPackageManager()),
        ("dnf", "dnf", lambda: DnfPackageManager()),
        ("yum", "yum", lambda: YumPackageManager()),
        ("pacman", "pacman", lambda: PacmanPackageManager()),
    ]

    @classmethod
    def create(cls, preferred: Optional[object], executor: Executor) -> "PackageManager":
        if isinstance(preferred, str):
            preferred = preferred.lower()
            for _, key, factory in cls._MANAGERS:
                if key == preferred:
                    return factory()
            raise ValueError(f"Unknown package manager '{preferred}'")
        for binary, _, factory in cls._MANAGERS:
            if executor.command_exists(binary):
                return factory()
        raise CapabilityError(f"No supported package manager found on {executor.host.name}")


class PackageManager:
    name = "generic"

    def refresh(self, executor: Executor) -> None:
        pass

    def install(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def remove(self, executor: Executor, packages: list[str]) -> None:
        raise NotImplementedError

    def is_installed(self, executor: Executor, package: str) -> bool:
        raise NotImplementedError


class AptPackageManager(PackageManager):
    name = "apt"
    _ENV = ["env", "DEBIAN_FRONTEND=noninteractive"]

    def refresh(self, executor: Executor) -> None:
        executor.run([*self._ENV, "apt-get", "update"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run([*self._ENV, "apt-get", "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run([*self._ENV, "apt-get", "remove", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(
            ["dpkg-query", "-W", "-f", "${Status}", package],
            check=False,
            mutable=False,
        )
        return result.returncode == 0 and result.stdout.strip().endswith(" installed")


class DnfPackageManager(PackageManager):
    name = "dnf"

    def refresh(self, executor: Executor) -> None:
        executor.run([self.name, "makecache"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "install", "-y", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run([self.name, "remove", "-y", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["rpm", "-q", package], check=False, mutable=False)
        return result.returncode == 0


class YumPackageManager(DnfPackageManager):
    name = "yum"


class PacmanPackageManager(PackageManager):
    name = "pacman"

    def refresh(self, executor: Executor) -> None:
        executor.run(["pacman", "-Sy", "--noconfirm"])

    def install(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["pacman", "-S", "--noconfirm", *packages])

    def remove(self, executor: Executor, packages: list[str]) -> None:
        executor.run(["pacman", "-R", "--noconfirm", *packages])

    def is_installed(self, executor: Executor, package: str) -> bool:
        result = executor.run(["pacman", "-Qi", package], check=False, mutable=False)
        return result.returncode == 0
