from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import tomllib

DEFAULT_CONFIG = Path("/etc/stagehand/main.conf")
DEFAULT_INVENTORY = Path("/etc/stagehand/hosts")
DEFAULT_FORKS = 5


@dataclass
class StagehandConfig:
    inventory: Path = DEFAULT_INVENTORY
    playbook: Optional[Path] = None
    roles_path: list[Path] = field(default_factory=list)
    forks: int = DEFAULT_FORKS
    remote_user: Optional[str] = None
    private_key_file: Optional[str] = None
    ssh_timeout: float = 10.0
    force_handlers: bool = False


def load_config(path: Path) -> StagehandConfig:
    if not path.exists():
        return StagehandConfig()
    try:
        data = tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    playbook = defaults.get("playbook")
    roles_path = defaults.get("roles_path", [])
    if isinstance(roles_path, str):
        roles_path = roles_path.split(":")
    remote_user = defaults.get("remote_user")
    private_key_file = defaults.get("private_key_file")
    forks = int(defaults.get("forks", DEFAULT_FORKS))
    if forks < 1:
        raise ValueError(f"{path}: forks must be at least 1")
    return StagehandConfig(
        inventory=Path(defaults.get("inventory", DEFAULT_INVENTORY)),
        playbook=Path(playbook) if playbook else None,
        roles_path=[Path(p) for p in roles_path if p],
        forks=forks,
        remote_user=str(remote_user) if remote_user else None,
        private_key_file=str(private_key_file) if private_key_file else None,
        ssh_timeout=float(defaults.get("ssh_timeout", 10.0)),
        force_handlers=bool(defaults.get("force_handlers", False)),
    )
