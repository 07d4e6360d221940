"""
Xiaomi App Store developer upload client and adapter.

Every request is signed: the form fields are sorted, joined as ``k=v`` pairs
with ``&``, signed with the developer's RSA key (PKCS#1 v1.5, SHA-256) and sent
base64-encoded as ``sig``. Uploading a build also triggers review, so there
is no separate release or submission step.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..base import (
    AnalyticsParams,
    AnalyticsResult,
    AuthMethod,
    CredentialResolver,
    ListingParams,
    ListingResult,
    ReleaseParams,
    ReleaseResult,
    ReviewListParams,
    ReviewListResult,
    RollbackParams,
    RollbackResult,
    StatusParams,
    StatusResult,
    StoreAdapter,
    StoreCapabilities,
    SubmissionResult,
    SubmitParams,
    UploadParams,
    UploadResult,
)
from ..retry import DEFAULT_RETRY_POLICY, RetryPolicy, run_with_retry
from .base import UPLOAD_TIMEOUT, BaseStoreClient, as_mapping, canonical_query

DEFAULT_BASE_URL = "https://api.developer.xiaomi.com/devupload"

CAPABILITIES = StoreCapabilities(
    store_id="xiaomi",
    name="Xiaomi App Store",
    supported_file_types=("apk",),
    supports_upload=True,
    supports_listing=False,
    supports_review=False,
    supports_analytics=False,
    supports_rollback=False,
    supports_staged_rollout=False,
    max_file_size_mb=4096,
    auth_method=AuthMethod.RSA,
    requires_icp=True,
)


class XiaomiClient(BaseStoreClient):
    """Wire calls for the Xiaomi ``devupload`` API."""

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(store_id="xiaomi", base_url=base_url, credentials=credentials, transport=transport)

    def sign(self, params: Mapping[str, Any]) -> str:
        pem = self.config_value("private_key", "privateKey")
        try:
            key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
        except (ValueError, TypeError) as exc:
            raise self.error(f"Cannot load Xiaomi RSA private key: {exc}", "STORE_NOT_CONNECTED") from exc
        if not isinstance(key, rsa.RSAPrivateKey):
            raise self.error("Xiaomi signing key must be an RSA private key", "STORE_NOT_CONNECTED")
        signature = key.sign(canonical_query(params).encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode("ascii")

    def _signed(self, fields: Mapping[str, Any]) -> Dict[str, str]:
        params = {key: str(value) for key, value in fields.items() if value is not None}
        params["userName"] = self.config_value("user_name", "userName", "email")
        params["timestamp"] = str(int(time.time() * 1000))
        params["sig"] = self.sign(params)
        return params

    def _check(self, payload: Any, code: str, *, retryable: bool) -> Mapping[str, Any]:
        body = as_mapping(payload)
        if body.get("result") != 0:
            raise self.error(f"Xiaomi error {body.get('result')}: {body.get('message', 'unknown error')}", code, retryable=retryable)
        return body

    async def push(self, package: str, file_path: str, *, description: Optional[str]) -> Mapping[str, Any]:
        form = self._signed({"packageName": package, "synchroType": 1, "updateDesc": description or ""})
        with self.open_artifact(file_path) as handle:
            payload = await self.request_json(
                "POST",
                "/dev/push",
                data=form,
                files={"apk": (Path(file_path).name, handle)},
                timeout=UPLOAD_TIMEOUT,
            )
        return self._check(payload, "UPLOAD_FAILED", retryable=True)

    async def query(self, package: str) -> Mapping[str, Any]:
        payload = await self.request_json("GET", "/dev/query", params=self._signed({"packageName": package}))
        return self._check(payload, "STATUS_FAILED", retryable=False)


@dataclass(slots=True)
class XiaomiAdapter(StoreAdapter):
    """Adapter exposing the Xiaomi App Store through the uniform store contract."""

    client: XiaomiClient
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    store_id: str = "xiaomi"

    @classmethod
    def create(cls, credentials: CredentialResolver, *, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY, transport: Optional[httpx.AsyncBaseTransport] = None) -> "XiaomiAdapter":
        return cls(client=XiaomiClient(credentials, transport=transport), retry_policy=retry_policy)

    def capabilities(self) -> StoreCapabilities:
        return CAPABILITIES

    async def upload_build(self, params: UploadParams) -> UploadResult:
        await run_with_retry(
            lambda: self.client.push(params.app_id, params.file_path, description=params.changelog),
            "xiaomi.upload_build",
            policy=self.retry_policy,
            logger=self.client.logger,
        )
        return UploadResult(success=True, message="Build pushed to Xiaomi; review starts automatically", store_ref=f"xiaomi-{params.app_id}")

    async def create_release(self, params: ReleaseParams) -> ReleaseResult:
        return ReleaseResult.not_supported("Xiaomi does not have a separate release step. Upload triggers the process.")

    async def update_listing(self, params: ListingParams) -> ListingResult:
        return ListingResult.not_supported("Xiaomi listing is managed via the developer console.")

    async def submit_for_review(self, params: SubmitParams) -> SubmissionResult:
        return SubmissionResult.not_supported("Xiaomi submission is triggered automatically on upload.")

    async def get_status(self, params: StatusParams) -> StatusResult:
        body = await run_with_retry(
            lambda: self.client.query(params.app_id),
            "xiaomi.get_status",
            policy=self.retry_policy,
            logger=self.client.logger,
        )
        info = as_mapping(body.get("packageInfo"))
        return StatusResult(
            success=True,
            message="Package found on Xiaomi" if info else "Package not yet published on Xiaomi",
            review_status="unknown",
            live_status="live" if info else "not_live",
            version=info.get("versionName"),
            details={"version_code": info.get("versionCode")} if info.get("versionCode") is not None else {},
        )

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult:
        return AnalyticsResult.not_supported("Xiaomi does not provide an analytics API.")

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult:
        return ReviewListResult.not_supported("Xiaomi does not expose user reviews via API.")

    async def rollback(self, params: RollbackParams) -> RollbackResult:
        return RollbackResult.not_supported("Xiaomi does not support rollback via API.")
