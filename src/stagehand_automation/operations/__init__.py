from .base import Operation
from .copy import CopyOperation, TemplateOperation
from .package import PackageOperation
from .service import ServiceOperation

OPERATION_REGISTRY = {
    "package": PackageOperation,
    "copy": CopyOperation,
    "template": TemplateOperation,
    "service": ServiceOperation,
}

# Manager-specific keywords resolve to ``package`` with a pinned manager.
CAPABILITY_ALIASES = {
    "apt": "package",
    "dnf": "package",
    "yum": "package",
    "pacman": "package",
}

__all__ = [
    "Operation",
    "CopyOperation",
    "TemplateOperation",
    "PackageOperation",
    "ServiceOperation",
    "OPERATION_REGISTRY",
    "CAPABILITY_ALIASES",
]
