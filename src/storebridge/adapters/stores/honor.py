"""Honor App Market client and adapter (AppGallery-style Publishing API)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Mapping, Optional

import httpx

from ..base import AuthMethod, CredentialResolver, StoreCapabilities
from ..retry import DEFAULT_RETRY_POLICY, RetryPolicy
from .huawei_agc import AppGalleryClient, AppGalleryStyleAdapter

DEFAULT_BASE_URL = "https://connect-api.cloud.honor.com/api"

CAPABILITIES = StoreCapabilities(
    store_id="honor",
    name="Honor App Market",
    supported_file_types=("apk", "aab"),
    supports_upload=True,
    supports_listing=True,
    supports_review=True,
    supports_analytics=False,
    supports_rollback=False,
    supports_staged_rollout=False,
    max_file_size_mb=4096,
    auth_method=AuthMethod.OAUTH2,
    requires_icp=True,
)


class HonorClient(AppGalleryClient):
    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(store_id="honor", base_url=base_url, credentials=credentials, transport=transport)


@dataclass(slots=True)
class HonorAdapter(AppGalleryStyleAdapter):
    """Adapter exposing Honor App Market through the uniform store contract."""

    CAPABILITIES: ClassVar[StoreCapabilities] = CAPABILITIES
    REF_PREFIX: ClassVar[str] = "honor"
    UPLOAD_REF_PREFIX: ClassVar[str] = "honor"
    AUDIT_STATES: ClassVar[Mapping[int, str]] = {0: "draft", 1: "in_review", 2: "approved", 3: "rejected"}

    store_id: str = "honor"

    @classmethod
    def create(cls, credentials: CredentialResolver, *, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY, transport: Optional[httpx.AsyncBaseTransport] = None) -> "HonorAdapter":
        return cls(client=HonorClient(credentials, transport=transport), retry_policy=retry_policy)
