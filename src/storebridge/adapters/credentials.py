"""
Credential resolver backed by the ``[stores.<id>]`` sections of the secrets file.

Token exchange (OAuth refresh, JWT minting) is the business of whatever produces
those values; this resolver only hands them out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping

from ..config import SecretsBundle
from .base import CredentialError, CredentialResolver

_TOKEN_FIELDS = ("token", "access_token", "api_key", "apiKey")


@dataclass(slots=True)
class StaticCredentialResolver(CredentialResolver):
    """Serve per-store credentials from an in-memory mapping."""

    stores: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    @classmethod
    def from_secrets(cls, secrets: SecretsBundle) -> "StaticCredentialResolver":
        return cls(stores=dict(secrets.stores))

    async def get_token(self, store_id: str) -> str:
        config = self.get_config(store_id)
        for key in _TOKEN_FIELDS:
            value = config.get(key)
            if value:
                return value
        raise CredentialError(f"No token configured for store '{store_id}'. Add it under [stores.{store_id}] in the secrets file.")

    def get_config(self, store_id: str) -> Dict[str, str]:
        return dict(self.stores.get(store_id, {}))
