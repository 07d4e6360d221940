"""API key records, persistence and lifecycle management."""

from .keys import ApiKeyManager, GeneratedKey, KeyValidation, hash_key
from .records import CredentialRecord, Plan
from .store import CredentialStore, DuplicateKeyError, InMemoryCredentialStore

__all__ = [
    "ApiKeyManager",
    "CredentialRecord",
    "CredentialStore",
    "DuplicateKeyError",
    "GeneratedKey",
    "InMemoryCredentialStore",
    "KeyValidation",
    "Plan",
    "hash_key",
]
