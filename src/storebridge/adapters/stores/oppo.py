"""
OPPO App Market open-platform client and adapter.

Reference: https://open.oppomobile.com/new/developmentDoc/info?id=10998
"""

from __future__ import annotations

from dataclasses import dataclass
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
from .base import UPLOAD_TIMEOUT, BaseStoreClient, as_mapping, iter_chunks, stream_headers

DEFAULT_BASE_URL = "https://oop-openapi-cn.heytapmobi.com/developer/v1"

T = TypeVar("T")

CAPABILITIES = StoreCapabilities(
    store_id="oppo",
    name="OPPO App Market",
    supported_file_types=("apk",),
    supports_upload=True,
    supports_listing=False,
    supports_review=True,
    supports_analytics=False,
    supports_rollback=False,
    supports_staged_rollout=False,
    max_file_size_mb=4096,
    auth_method=AuthMethod.OAUTH2,
    requires_icp=True,
)

_AUDIT_STATES = {0: "draft", 1: "in_review", 2: "approved", 3: "rejected", 4: "live"}


class OppoClient(BaseStoreClient):
    """Wire calls for the OPPO developer open API. Responses use an ``errno`` envelope."""

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(store_id="oppo", base_url=base_url, credentials=credentials, transport=transport)

    def _check(self, payload: Any, code: str, *, retryable: bool) -> Mapping[str, Any]:
        body = as_mapping(payload)
        if body.get("errno") != 0:
            data = as_mapping(body.get("data"))
            message = data.get("message") or body.get("message") or "unknown error"
            raise self.error(f"OPPO error {body.get('errno')}: {message}", code, retryable=retryable)
        return as_mapping(body.get("data"))

    async def _call(self, method: str, path: str, code: str, *, retryable: bool = False, **kwargs: Any) -> Mapping[str, Any]:
        token = await self.token()
        params: Dict[str, Any] = {"access_token": token}
        params.update(kwargs.pop("params", {}) or {})
        payload = await self.request_json(method, path, params=params, **kwargs)
        return self._check(payload, code, retryable=retryable)

    async def upload(self, file_path: str) -> Mapping[str, Any]:
        grant = await self._call("GET", "/upload/upload-url", "UPLOAD_URL_FAILED", retryable=True)
        upload_url, sign = grant.get("upload_url"), grant.get("sign")
        if not upload_url or not sign:
            raise self.error("Upload URL response is missing upload_url or sign", "UPLOAD_URL_FAILED", retryable=True)
        with self.open_artifact(file_path) as handle:
            payload = await self.request_json(
                "PUT",
                str(upload_url),
                params={"sign": sign, "type": "apk"},
                content=iter_chunks(handle),
                headers=stream_headers(handle),
                timeout=UPLOAD_TIMEOUT,
            )
        return self._check(payload, "UPLOAD_FAILED", retryable=True)

    async def update_app_info(self, package: str, version_name: str, description: str, apk_url: Optional[str]) -> Mapping[str, Any]:
        data = {"pkg_name": package, "version_name": version_name, "update_desc": description}
        if apk_url:
            data["apk_url"] = apk_url
        return await self._call("POST", "/app/update-app-info", "RELEASE_FAILED", data=data)

    async def submit_audit(self, package: str) -> Mapping[str, Any]:
        return await self._call("POST", "/app/submit-audit", "SUBMIT_FAILED", data={"pkg_name": package})

    async def app_info(self, package: str) -> Mapping[str, Any]:
        return await self._call("GET", "/app/info", "STATUS_FAILED", params={"pkg_name": package})


@dataclass(slots=True)
class OppoAdapter(StoreAdapter):
    """Adapter exposing OPPO App Market through the uniform store contract."""

    client: OppoClient
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    store_id: str = "oppo"

    @classmethod
    def create(cls, credentials: CredentialResolver, *, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY, transport: Optional[httpx.AsyncBaseTransport] = None) -> "OppoAdapter":
        return cls(client=OppoClient(credentials, transport=transport), retry_policy=retry_policy)

    def capabilities(self) -> StoreCapabilities:
        return CAPABILITIES

    async def _retry(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await run_with_retry(operation, f"oppo.{label}", policy=self.retry_policy, logger=self.client.logger)

    async def upload_build(self, params: UploadParams) -> UploadResult:
        data = await self._retry("upload_build", lambda: self.client.upload(params.file_path))
        url = data.get("url")
        return UploadResult(
            success=True,
            message="Build uploaded to OPPO",
            build_id=str(url) if url else None,
            store_ref=f"oppo-{params.app_id}",
            url=str(url) if url else None,
        )

    async def create_release(self, params: ReleaseParams) -> ReleaseResult:
        notes = params.release_notes.get("zh-CN") or params.release_notes.get("en-US") or ""
        await self._retry(
            "create_release",
            lambda: self.client.update_app_info(params.app_id, params.version_name, notes, params.build_id),
        )
        return ReleaseResult(
            success=True,
            message="Release info updated. Call submitForReview to submit.",
            release_id=f"oppo-{params.app_id}-{params.version_name}",
            status="prepared",
        )

    async def update_listing(self, params: ListingParams) -> ListingResult:
        return ListingResult.not_supported("OPPO listing updates are done via createRelease.")

    async def submit_for_review(self, params: SubmitParams) -> SubmissionResult:
        await self._retry("submit_for_review", lambda: self.client.submit_audit(params.app_id))
        return SubmissionResult(success=True, message="Submitted for OPPO review", submission_id=f"oppo-submit-{params.app_id}")

    async def get_status(self, params: StatusParams) -> StatusResult:
        data = await self._retry("get_status", lambda: self.client.app_info(params.app_id))
        audit = data.get("audit_status")
        review_status = _AUDIT_STATES.get(int(audit), "unknown") if isinstance(audit, int) else "unknown"
        return StatusResult(
            success=True,
            message=f"Review status: {review_status}",
            review_status=review_status,
            live_status="live" if review_status == "live" else "not_live",
            version=data.get("version_name"),
            details={"audit_message": data.get("audit_message")} if data.get("audit_message") else {},
        )

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult:
        return AnalyticsResult.not_supported("OPPO does not provide an analytics API.")

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult:
        return ReviewListResult.not_supported("OPPO does not expose user reviews via API.")

    async def rollback(self, params: RollbackParams) -> RollbackResult:
        return RollbackResult.not_supported("OPPO does not support rollback via API.")
