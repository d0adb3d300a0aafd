import pytest

from stagehand_automation.errors import CapabilityError
from stagehand_automation.operations import package as pkg
from stagehand_automation.operations.package import PackageManager
from stagehand_automation.types import Host


class FakePackageManager(PackageManager):
    name = "fake"

    def __init__(self, installed: set[str]):
        self._installed = installed
        self.installed_calls: list[list[str]] = []
        self.removed_calls: list[list[str]] = []
        self.refreshed = 0

    def refresh(self, executor) -> None:  # type: ignore[override]
        self.refreshed += 1

    def install(self, executor, packages: list[str]) -> None:  # type: ignore[override]
        self.installed_calls.append(packages)
        self._installed.update(packages)

    def remove(self, executor, packages: list[str]) -> None:  # type: ignore[override]
        self.removed_calls.append(packages)
        for pkg_name in packages:
            self._installed.discard(pkg_name)

    def is_installed(self, executor, package: str) -> bool:  # type: ignore[override]
        return package in self._installed


class DummyExecutor:
    def __init__(self, dry_run: bool = False):
        self.host = Host(name="local", connection="local")
        self.dry_run = dry_run


@pytest.fixture
def fake_manager(monkeypatch):
    installed = {"git"}
    managers: list[FakePackageManager] = []

    def create(cls, preferred, executor):
        manager = FakePackageManager(installed)
        managers.append(manager)
        return manager

    monkeypatch.setattr(pkg.PackageManagerFactory, "create", classmethod(create))
    return installed, managers


def test_package_present_installs_missing(fake_manager):
    installed, managers = fake_manager
    op = pkg.PackageOperation({"name": ["git", "htop"], "state": "present"})
    result = op.apply(Host("local"), DummyExecutor())

    assert result.changed is True
    assert "htop" in installed
    assert managers[0].installed_calls == [["htop"]]
    assert result.details == "manager=fake installed=htop"


def test_package_already_present_is_noop(fake_manager):
    _, managers = fake_manager
    op = pkg.PackageOperation({"name": "git", "update_cache": True})
    result = op.apply(Host("local"), DummyExecutor())

    assert result.changed is False
    assert result.details == "noop"
    assert managers[0].refreshed == 0


def test_update_cache_runs_before_install(fake_manager):
    _, managers = fake_manager
    op = pkg.PackageOperation({"name": "nginx", "update_cache": "yes"})
    op.apply(Host("local"), DummyExecutor())

    assert managers[0].refreshed == 1


def test_package_absent_removes_installed(fake_manager):
    installed, _ = fake_manager
    op = pkg.PackageOperation({"packages": ["git"], "state": "absent"})
    result = op.apply(Host("local"), DummyExecutor())

    assert result.changed is True
    assert "git" not in installed


def test_latest_is_treated_as_present():
    assert pkg.PackageOperation({"name": "git", "state": "latest"}).state == "present"


def test_package_requires_names():
    with pytest.raises(ValueError):
        pkg.PackageOperation({})


def test_package_rejects_unknown_state():
    with pytest.raises(ValueError):
        pkg.PackageOperation({"name": "git", "state": "purged"})


def test_apt_install_on_simulated_host(simulated_executor, machine):
    executor = simulated_executor()
    result = pkg.PackageOperation({"name": "nginx", "manager": "apt"}).apply(executor.host, executor)

    assert result.changed is True
    assert "nginx" in machine.installed
    assert ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "install", "-y", "nginx"] in machine.commands


def test_manager_detected_on_target(simulated_executor, machine):
    executor = simulated_executor()
    op = pkg.PackageOperation({"name": "git"})
    op.apply(executor.host, executor)

    assert op.manager is not None and op.manager.name == "apt"
    assert ["sh", "-c", "command -v apt-get"] in machine.commands


def test_no_package_manager_fails(simulated_executor, machine):
    machine.binaries = {"systemctl"}
    executor = simulated_executor()
    with pytest.raises(CapabilityError, match="No supported package manager"):
        pkg.PackageOperation({"name": "git"}).apply(executor.host, executor)


def test_unknown_package_fails_with_capability_error(simulated_executor):
    executor = simulated_executor()
    with pytest.raises(CapabilityError, match="Unable to locate package nosuchpkg"):
        pkg.PackageOperation({"name": "nosuchpkg"}).apply(executor.host, executor)


def test_dry_run_reports_change_without_installing(simulated_executor, machine):
    executor = simulated_executor(dry_run=True)
    result = pkg.PackageOperation({"name": "nginx"}).apply(executor.host, executor)

    assert result.changed is True
    assert result.details.endswith("(check mode)")
    assert "nginx" not in machine.installed
