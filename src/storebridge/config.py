"""
Secret and settings loading for StoreBridge.

Settings are read from a TOML file. The lookup order is:

1. Explicit ``STOREBRIDGE_SECRETS_PATH`` environment variable.
2. Project-relative ``.secrets/secret.toml`` (both from CWD and the package root).
3. Project-relative ``.secrets/secrets.toml``.
4. Fallback to ``.secrets/secrets.example.toml`` for scaffolding values.

A typical file looks like::

    [auth]
    fallback_api_key = "sk-storebridge-pro-..."

    [quota]
    window_days = 30

    [quota.plans.free]
    publish_limit = 5

    [retry]
    max_attempts = 3

    [stores.pgyer]
    api_key = "..."

    [[api_keys]]
    id = "key_0123456789abcdef"
    key_hash = "<sha256 hex>"
    plan = "pro"

Call :func:`load_secrets` to retrieve a :class:`SecretsBundle`.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

DEFAULT_QUOTA_WINDOW_DAYS = 30
_ENV_SECRETS_PATH = "STOREBRIDGE_SECRETS_PATH"
_ENV_API_KEY = "STOREBRIDGE_API_KEY"


@dataclass(slots=True)
class QuotaSettings:
    """Quota window length and optional per-plan ceiling overrides."""

    window_days: int = DEFAULT_QUOTA_WINDOW_DAYS
    plan_overrides: Dict[str, Dict[str, int]] = field(default_factory=dict)


@dataclass(slots=True)
class RetrySettings:
    """Parameters for the adapter retry policy."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    jitter: float = 0.5


@dataclass(slots=True)
class ProvisionedKey:
    """An API key created out-of-band, identified only by the hash of its secret."""

    key_id: str
    key_hash: str
    plan: str
    email: Optional[str] = None
    user_id: Optional[str] = None
    active: bool = True


@dataclass(slots=True)
class SecretsBundle:
    """Lightweight container for parsed secret values."""

    source_path: Optional[Path]
    data: Dict[str, object]
    stores: Dict[str, Dict[str, str]] = field(default_factory=dict)
    quota: QuotaSettings = field(default_factory=QuotaSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    api_keys: List[ProvisionedKey] = field(default_factory=list)
    fallback_api_key: Optional[str] = None


def _discover_project_root() -> Optional[Path]:
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return None


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(_ENV_SECRETS_PATH)
    if env_override:
        yield Path(env_override).expanduser()

    search_roots = [Path.cwd()]
    package_root = _discover_project_root()
    if package_root and package_root not in search_roots:
        search_roots.append(package_root)

    seen: set[Path] = set()
    for base in search_roots:
        for filename in ("secret.toml", "secrets.toml", "secrets.example.toml"):
            candidate = base / ".secrets" / filename
            if candidate not in seen:
                seen.add(candidate)
                yield candidate


def _load_toml(path: Path) -> Dict[str, object]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _section(raw: Mapping[str, object], name: str) -> Mapping[str, object]:
    value = raw.get(name, {})
    return value if isinstance(value, Mapping) else {}


def _extract_stores(raw: Mapping[str, object]) -> Dict[str, Dict[str, str]]:
    stores: Dict[str, Dict[str, str]] = {}
    for store_id, values in _section(raw, "stores").items():
        if not isinstance(values, Mapping):
            continue
        stores[str(store_id)] = {str(key): str(value) for key, value in values.items() if value is not None}
    return stores


def _extract_quota(raw: Mapping[str, object]) -> QuotaSettings:
    section = _section(raw, "quota")
    window = section.get("window_days", DEFAULT_QUOTA_WINDOW_DAYS)
    overrides: Dict[str, Dict[str, int]] = {}
    for plan, limits in _section(section, "plans").items():
        if isinstance(limits, Mapping):
            overrides[str(plan)] = {str(key): int(value) for key, value in limits.items() if isinstance(value, int)}
    window_days = window if isinstance(window, int) and window > 0 else DEFAULT_QUOTA_WINDOW_DAYS
    return QuotaSettings(window_days=window_days, plan_overrides=overrides)


def _extract_retry(raw: Mapping[str, object]) -> RetrySettings:
    section = _section(raw, "retry")
    defaults = RetrySettings()
    return RetrySettings(
        max_attempts=int(section.get("max_attempts", defaults.max_attempts)),
        base_delay=float(section.get("base_delay", defaults.base_delay)),
        max_delay=float(section.get("max_delay", defaults.max_delay)),
        jitter=float(section.get("jitter", defaults.jitter)),
    )


def _extract_api_keys(raw: Mapping[str, object]) -> List[ProvisionedKey]:
    entries = raw.get("api_keys", [])
    if not isinstance(entries, list):
        return []
    keys: List[ProvisionedKey] = []
    for entry in entries:
        if not isinstance(entry, Mapping) or not entry.get("id") or not entry.get("key_hash"):
            continue
        keys.append(
            ProvisionedKey(
                key_id=str(entry["id"]),
                key_hash=str(entry["key_hash"]).lower(),
                plan=str(entry.get("plan", "free")),
                email=str(entry["email"]) if entry.get("email") else None,
                user_id=str(entry["user_id"]) if entry.get("user_id") else None,
                active=bool(entry.get("active", True)),
            )
        )
    return keys


def _resolve_fallback_key(raw: Mapping[str, object]) -> Optional[str]:
    from_env = os.getenv(_ENV_API_KEY)
    if from_env:
        return from_env
    value = _section(raw, "auth").get("fallback_api_key")
    return str(value) if isinstance(value, str) and value else None


def parse_secrets(data: Mapping[str, object], *, source_path: Optional[Path] = None) -> SecretsBundle:
    """Build a :class:`SecretsBundle` from an already-parsed TOML mapping."""

    return SecretsBundle(
        source_path=source_path,
        data=dict(data),
        stores=_extract_stores(data),
        quota=_extract_quota(data),
        retry=_extract_retry(data),
        api_keys=_extract_api_keys(data),
        fallback_api_key=_resolve_fallback_key(data),
    )


def load_secrets(strict: bool = False, *, path: Optional[Path] = None) -> SecretsBundle:
    """
    Attempt to load secrets from the configured locations.

    Parameters
    ----------
    strict:
        When ``True`` the function raises ``FileNotFoundError`` if no secrets file is
        discovered. Defaults to ``False`` for ease of use in development environments.
    path:
        Explicit file to load, bypassing discovery.
    """

    candidates = [path] if path is not None else _candidate_paths()
    for candidate in candidates:
        if candidate.is_file():
            return parse_secrets(_load_toml(candidate), source_path=candidate)

    if strict:
        raise FileNotFoundError(f"No secrets file found. Configure {_ENV_SECRETS_PATH} or .secrets/secret.toml.")

    return parse_secrets({})
