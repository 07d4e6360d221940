"""Operation handlers dispatched through the request pipeline."""

from .checks import CheckResult, CheckStatus, compliance_checks, preflight_checks
from .operations import CATALOGUE, ArtifactInfo, StoreOperations, inspect_artifact

__all__ = [
    "ArtifactInfo",
    "CATALOGUE",
    "CheckResult",
    "CheckStatus",
    "StoreOperations",
    "compliance_checks",
    "inspect_artifact",
    "preflight_checks",
]
