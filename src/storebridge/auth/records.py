"""Credential records and plan tiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(UTC)


class Plan(str, Enum):
    """Subscription tier controlling quota ceilings."""

    FREE = "free"
    PRO = "pro"
    TEAM = "team"
    ENTERPRISE = "enterprise"


@dataclass(slots=True)
class CredentialRecord:
    """
    Stored state for one API key.

    Attributes
    ----------
    key_id:
        Public identifier (``key_<16 hex>``), safe to log.
    key_hash:
        SHA-256 hex digest of the secret. Unique across all records; the
        plaintext key is never stored.
    plan:
        Tier selecting the quota ceilings.
    quota_resets_at:
        End of the current quota window. Advances in fixed-size steps.
    publish_count, call_count:
        Usage consumed in the current window by publish-class calls and by all
        calls respectively.
    """

    key_id: str
    key_hash: str
    plan: Plan
    quota_resets_at: datetime
    user_id: Optional[str] = None
    email: Optional[str] = None
    publish_count: int = 0
    call_count: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None
    is_active: bool = True

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialisable view without the secret hash."""

        return {
            "key_id": self.key_id,
            "plan": self.plan.value,
            "user_id": self.user_id,
            "email": self.email,
            "publish_count": self.publish_count,
            "call_count": self.call_count,
            "quota_resets_at": self.quota_resets_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "is_active": self.is_active,
        }
