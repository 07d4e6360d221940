"""
vivo App Store open-platform client and adapter.

All calls go to one router endpoint; the ``method`` field selects the action.
Requests carry an HMAC-SHA256 ``sign`` over the sorted ``k=v`` form fields,
keyed with the developer's access secret.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

import httpx

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

DEFAULT_BASE_URL = "https://developer-api.vivo.com.cn/router/rest"

T = TypeVar("T")

CAPABILITIES = StoreCapabilities(
    store_id="vivo",
    name="vivo App Store",
    supported_file_types=("apk",),
    supports_upload=True,
    supports_listing=False,
    supports_review=True,
    supports_analytics=False,
    supports_rollback=False,
    supports_staged_rollout=False,
    max_file_size_mb=4096,
    auth_method=AuthMethod.HMAC,
    requires_icp=True,
)

_TASK_STATES = {0: "draft", 1: "in_review", 2: "live", 3: "rejected", 4: "removed"}


class VivoClient(BaseStoreClient):
    """Wire calls for the vivo developer router API."""

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(store_id="vivo", base_url=base_url, credentials=credentials, transport=transport)

    def sign(self, params: Mapping[str, Any]) -> str:
        secret = self.config_value("access_secret", "accessSecret")
        return hmac.new(secret.encode("utf-8"), canonical_query(params).encode("utf-8"), hashlib.sha256).hexdigest()

    def _signed(self, method: str, fields: Mapping[str, Any]) -> Dict[str, str]:
        params = {key: str(value) for key, value in fields.items() if value is not None}
        params.update(
            {
                "method": method,
                "access_key": self.config_value("access_key", "accessKey"),
                "timestamp": str(int(time.time() * 1000)),
                "format": "json",
                "v": "1.0",
                "sign_method": "hmac",
                "target_app_key": "developer",
            }
        )
        params["sign"] = self.sign(params)
        return params

    def _check(self, payload: Any, code: str, *, retryable: bool) -> Mapping[str, Any]:
        body = as_mapping(payload)
        if body.get("code") != 0:
            raise self.error(f"vivo error {body.get('code')}: {body.get('msg', 'unknown error')}", code, retryable=retryable)
        return as_mapping(body.get("data"))

    async def upload_apk(self, package: str, file_path: str) -> Mapping[str, Any]:
        with self.open_artifact(file_path) as handle:
            payload = await self.request_json(
                "POST",
                "",
                data=self._signed("app.upload.apk.app", {"packageName": package}),
                files={"file": (Path(file_path).name, handle)},
                timeout=UPLOAD_TIMEOUT,
            )
        return self._check(payload, "UPLOAD_FAILED", retryable=True)

    async def sync_update(self, package: str, serial_number: str, file_md5: str, *, description: str) -> Mapping[str, Any]:
        fields = {"packageName": package, "apk": serial_number, "fileMd5": file_md5, "onlineType": 1, "updateDesc": description}
        payload = await self.request_json("POST", "", data=self._signed("app.sync.update.app", fields))
        return self._check(payload, "SUBMIT_FAILED", retryable=False)

    async def task_status(self, package: str) -> Mapping[str, Any]:
        payload = await self.request_json("POST", "", data=self._signed("app.query.task.status", {"packageName": package}))
        return self._check(payload, "STATUS_FAILED", retryable=False)


@dataclass(slots=True)
class VivoAdapter(StoreAdapter):
    """
    Adapter exposing the vivo App Store through the uniform store contract.

    ``upload_build`` returns ``build_id`` as ``<serialnumber>:<md5>``; pass it as
    ``release_id`` to ``submit_for_review`` to publish that upload.
    """

    client: VivoClient
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    store_id: str = "vivo"

    @classmethod
    def create(cls, credentials: CredentialResolver, *, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY, transport: Optional[httpx.AsyncBaseTransport] = None) -> "VivoAdapter":
        return cls(client=VivoClient(credentials, transport=transport), retry_policy=retry_policy)

    def capabilities(self) -> StoreCapabilities:
        return CAPABILITIES

    async def _retry(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await run_with_retry(operation, f"vivo.{label}", policy=self.retry_policy, logger=self.client.logger)

    async def upload_build(self, params: UploadParams) -> UploadResult:
        data = await self._retry("upload_build", lambda: self.client.upload_apk(params.app_id, params.file_path))
        serial, md5 = data.get("serialnumber"), data.get("fileMd5")
        return UploadResult(
            success=True,
            message="Build uploaded to vivo. Submit it for review to publish.",
            build_id=f"{serial}:{md5}" if serial and md5 else None,
            store_ref=f"vivo-{params.app_id}",
        )

    async def create_release(self, params: ReleaseParams) -> ReleaseResult:
        return ReleaseResult.not_supported("vivo creates the release when an uploaded build is submitted for review.")

    async def update_listing(self, params: ListingParams) -> ListingResult:
        return ListingResult.not_supported("vivo listing is managed via the developer console.")

    async def submit_for_review(self, params: SubmitParams) -> SubmissionResult:
        serial, _, md5 = (params.release_id or "").partition(":")
        if not serial or not md5:
            return SubmissionResult(success=False, message="vivo submission needs the build_id returned by upload_build as release_id.")
        await self._retry("submit_for_review", lambda: self.client.sync_update(params.app_id, serial, md5, description=""))
        return SubmissionResult(success=True, message="Submitted for vivo review", submission_id=f"vivo-submit-{params.app_id}")

    async def get_status(self, params: StatusParams) -> StatusResult:
        data = await self._retry("get_status", lambda: self.client.task_status(params.app_id))
        state = data.get("status")
        review_status = _TASK_STATES.get(int(state), "unknown") if isinstance(state, int) else "unknown"
        return StatusResult(
            success=True,
            message=f"Task status: {review_status}",
            review_status=review_status,
            live_status="live" if review_status == "live" else "not_live",
            version=data.get("versionName"),
            details={"reason": data.get("reason")} if data.get("reason") else {},
        )

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult:
        return AnalyticsResult.not_supported("vivo does not provide an analytics API.")

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult:
        return ReviewListResult.not_supported("vivo does not expose user reviews via API.")

    async def rollback(self, params: RollbackParams) -> RollbackResult:
        return RollbackResult.not_supported("vivo does not support rollback via API.")
