"""
Huawei AppGallery Connect client and adapter.

AppGallery Connect publishes in three steps: request an upload URL, push the
file to it, then attach the uploaded file to the draft release. Honor's market
exposes the same Publishing API shape, so the client and adapter here are
written against that shape and specialised per vendor.

Reference: https://developer.huawei.com/consumer/en/doc/AppGallery-connect-References/agcapi-getstarted-0000001111845114
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Mapping, Optional, TypeVar

import httpx

from ..base import (
    AnalyticsParams,
    AnalyticsResult,
    AuthMethod,
    CredentialResolver,
    GetListingParams,
    ListingInfo,
    ListingParams,
    ListingResult,
    ReleaseParams,
    ReleaseResult,
    ReviewItem,
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
from .base import UPLOAD_TIMEOUT, BaseStoreClient, as_mapping, bearer

DEFAULT_BASE_URL = "https://connect-api.cloud.huawei.com/api"
_RELEASE_TYPE_FULL = 1
_FILE_TYPE_CODES = {"hap": 5, "aab": 3}

T = TypeVar("T")

CAPABILITIES = StoreCapabilities(
    store_id="huawei_agc",
    name="Huawei AppGallery",
    supported_file_types=("apk", "aab", "hap"),
    supports_upload=True,
    supports_listing=True,
    supports_review=True,
    supports_analytics=True,
    supports_rollback=False,
    supports_staged_rollout=False,
    max_file_size_mb=4096,
    auth_method=AuthMethod.OAUTH2,
    requires_icp=True,
)


class AppGalleryClient(BaseStoreClient):
    """
    Wire calls for an AppGallery-style Publishing API.

    Every JSON response carries a ``ret`` envelope; a non-zero ``ret.code`` is a
    vendor-side rejection and becomes a :class:`StoreAPIError` with the caller's
    error code.
    """

    def _check(self, payload: Any, code: str, *, retryable: bool) -> Mapping[str, Any]:
        body = as_mapping(payload)
        ret = as_mapping(body.get("ret"))
        if ret and ret.get("code") not in (0, None):
            raise self.error(f"{self.store_id} error {ret.get('code')}: {ret.get('msg', 'unknown error')}", code, retryable=retryable)
        return body

    async def _headers(self) -> Dict[str, str]:
        token = await self.token()
        headers = dict(bearer(token))
        headers["client_id"] = self.config_value("client_id", "clientId")
        return headers

    async def get_upload_url(self, app_id: str, suffix: str) -> Mapping[str, Any]:
        payload = await self.request_json(
            "GET",
            "/publish/v2/upload-url",
            params={"appId": app_id, "releaseType": _RELEASE_TYPE_FULL, "suffix": suffix},
            headers=await self._headers(),
        )
        body = self._check(payload, "UPLOAD_URL_FAILED", retryable=True)
        if not body.get("uploadUrl") or not body.get("authCode"):
            raise self.error("Upload URL response is missing uploadUrl or authCode", "UPLOAD_URL_FAILED", retryable=True)
        return body

    async def push_file(self, upload_url: str, auth_code: str, file_path: str) -> str:
        with self.open_artifact(file_path) as handle:
            payload = await self.request_json(
                "POST",
                upload_url,
                data={"authCode": auth_code, "fileCount": "1"},
                files={"file": (Path(file_path).name, handle)},
                timeout=UPLOAD_TIMEOUT,
            )
        result = as_mapping(as_mapping(payload).get("result"))
        upload_rsp = as_mapping(result.get("UploadFileRsp"))
        files = upload_rsp.get("fileInfoList") or [{}]
        first = as_mapping(files[0])
        destination = first.get("fileDestUlr") or first.get("fileDestUrl")
        if not upload_rsp.get("ifSuccess") or not destination:
            raise self.error("File upload was not accepted by the storage server", "FILE_UPLOAD_FAILED", retryable=True)
        return str(destination)

    async def attach_file(self, app_id: str, file_type: str, file_name: str, destination: str) -> None:
        payload = await self.request_json(
            "PUT",
            "/publish/v2/app-file-info",
            params={"appId": app_id, "releaseType": _RELEASE_TYPE_FULL},
            json={"fileType": _FILE_TYPE_CODES.get(file_type, 1), "files": [{"fileName": file_name, "fileDestUrl": destination}]},
            headers=await self._headers(),
        )
        self._check(payload, "FILE_INFO_FAILED", retryable=True)

    async def update_language_info(self, app_id: str, body: Mapping[str, Any]) -> None:
        payload = await self.request_json(
            "PUT",
            "/publish/v2/app-language-info",
            params={"appId": app_id},
            json=dict(body),
            headers=await self._headers(),
        )
        self._check(payload, "LISTING_UPDATE_FAILED", retryable=False)

    async def get_app_info(self, app_id: str) -> Mapping[str, Any]:
        payload = await self.request_json("GET", "/publish/v2/app-info", params={"appId": app_id}, headers=await self._headers())
        return self._check(payload, "STATUS_FAILED", retryable=False)

    async def submit(self, app_id: str) -> Mapping[str, Any]:
        payload = await self.request_json(
            "POST",
            "/publish/v2/app-submit",
            params={"appId": app_id, "releaseType": _RELEASE_TYPE_FULL},
            headers=await self._headers(),
        )
        return self._check(payload, "SUBMIT_FAILED", retryable=False)

    async def download_report(self, app_id: str, start_date: str, end_date: str) -> Mapping[str, Any]:
        payload = await self.request_json(
            "GET",
            f"/report/distribution-operation-quality/v1/appDownloadExport/{app_id}",
            params={"language": "en-US", "startTime": start_date.replace("-", ""), "endTime": end_date.replace("-", "")},
            headers=await self._headers(),
        )
        return self._check(payload, "ANALYTICS_FAILED", retryable=False)

    async def list_comments(self, app_id: str, *, limit: int, page: int) -> Mapping[str, Any]:
        payload = await self.request_json(
            "GET",
            "/publish/v2/comments",
            params={"appId": app_id, "pageSize": max(1, min(limit, 100)), "pageNum": page, "orderType": 2},
            headers=await self._headers(),
        )
        return self._check(payload, "REVIEWS_FAILED", retryable=False)


class HuaweiAGCClient(AppGalleryClient):
    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(store_id="huawei_agc", base_url=base_url, credentials=credentials, transport=transport)


@dataclass(slots=True)
class AppGalleryStyleAdapter(StoreAdapter):
    """
    Contract implementation shared by AppGallery-style backends.

    Subclasses set the capability descriptor, the prefix used for
    backend-assigned references and the audit-state table.
    """

    CAPABILITIES: ClassVar[StoreCapabilities]
    REF_PREFIX: ClassVar[str]
    UPLOAD_REF_PREFIX: ClassVar[str]
    AUDIT_STATES: ClassVar[Mapping[int, str]] = {0: "draft", 1: "in_review", 2: "approved", 3: "rejected", 4: "revoked"}

    client: AppGalleryClient
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    store_id: str = ""

    def capabilities(self) -> StoreCapabilities:
        return self.CAPABILITIES

    async def _retry(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await run_with_retry(operation, f"{self.store_id}.{label}", policy=self.retry_policy, logger=self.client.logger)

    async def upload_build(self, params: UploadParams) -> UploadResult:
        async def upload() -> str:
            grant = await self.client.get_upload_url(params.app_id, params.file_type)
            destination = await self.client.push_file(str(grant["uploadUrl"]), str(grant["authCode"]), params.file_path)
            await self.client.attach_file(params.app_id, params.file_type, Path(params.file_path).name, destination)
            return str(grant["authCode"])

        auth_code = await self._retry("upload_build", upload)
        return UploadResult(
            success=True,
            message=f"Build uploaded to {self.CAPABILITIES.name}",
            build_id=auth_code,
            store_ref=f"{self.UPLOAD_REF_PREFIX}-{params.app_id}",
        )

    async def create_release(self, params: ReleaseParams) -> ReleaseResult:
        notes = params.release_notes.get("zh-CN") or params.release_notes.get("en-US") or ""
        body = {"lang": "zh-CN", "appName": params.version_name, "newFeatures": notes}
        await self._retry("create_release", lambda: self.client.update_language_info(params.app_id, body))
        return ReleaseResult(
            success=True,
            message="Release info updated. Call submitForReview to submit.",
            release_id=f"{self.REF_PREFIX}-{params.app_id}-{params.version_name}",
            status="prepared",
        )

    async def update_listing(self, params: ListingParams) -> ListingResult:
        body: Dict[str, Any] = {"lang": params.language}
        for key, value in (("appName", params.title), ("briefInfo", params.short_description), ("appDesc", params.full_description)):
            if value is not None:
                body[key] = value
        await self._retry("update_listing", lambda: self.client.update_language_info(params.app_id, body))
        return ListingResult(success=True, message=f"Listing updated for {params.language}")

    async def get_listing(self, params: GetListingParams) -> ListingInfo:
        info = await self._retry("get_listing", lambda: self.client.get_app_info(params.app_id))
        languages: List[Mapping[str, Any]] = [as_mapping(item) for item in info.get("languages", [])]
        if not languages:
            return ListingInfo(success=False, message="No listing languages configured")
        chosen = next((item for item in languages if item.get("lang") == params.language), languages[0])
        return ListingInfo(
            success=True,
            message=f"Listing for {chosen.get('lang')}",
            language=chosen.get("lang"),
            title=chosen.get("appName"),
            short_description=chosen.get("briefInfo"),
            full_description=chosen.get("appDesc"),
        )

    async def submit_for_review(self, params: SubmitParams) -> SubmissionResult:
        await self._retry("submit_for_review", lambda: self.client.submit(params.app_id))
        return SubmissionResult(
            success=True,
            message=f"Submitted for {self.CAPABILITIES.name} review",
            submission_id=f"{self.REF_PREFIX}-submit-{params.app_id}",
        )

    async def get_status(self, params: StatusParams) -> StatusResult:
        info = await self._retry("get_status", lambda: self.client.get_app_info(params.app_id))
        app_info = as_mapping(info.get("appInfo"))
        audit = app_info.get("auditResult", app_info.get("releaseState"))
        review_status = self.AUDIT_STATES.get(int(audit), "unknown") if isinstance(audit, int) else "unknown"
        return StatusResult(
            success=True,
            message=f"Review status: {review_status}",
            review_status=review_status,
            live_status="live" if app_info.get("releaseState") == 1 else "not_live",
            version=app_info.get("versionNumber"),
            details={key: app_info.get(key) for key in ("auditOpinion", "updateTime") if app_info.get(key) is not None},
        )

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult:
        return AnalyticsResult.not_supported(f"{self.CAPABILITIES.name} does not provide an analytics API.")

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult:
        return ReviewListResult.not_supported(f"{self.CAPABILITIES.name} does not expose user reviews via API.")

    async def rollback(self, params: RollbackParams) -> RollbackResult:
        return RollbackResult.not_supported(
            f"{self.CAPABILITIES.name} does not support automated rollback via API. Please use the developer console manually."
        )


@dataclass(slots=True)
class HuaweiAGCAdapter(AppGalleryStyleAdapter):
    """Adapter exposing Huawei AppGallery Connect through the uniform store contract."""

    CAPABILITIES: ClassVar[StoreCapabilities] = CAPABILITIES
    REF_PREFIX: ClassVar[str] = "agc"
    UPLOAD_REF_PREFIX: ClassVar[str] = "huawei"

    store_id: str = "huawei_agc"

    @classmethod
    def create(cls, credentials: CredentialResolver, *, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY, transport: Optional[httpx.AsyncBaseTransport] = None) -> "HuaweiAGCAdapter":
        return cls(client=HuaweiAGCClient(credentials, transport=transport), retry_policy=retry_policy)

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult:
        report = await self._retry("get_analytics", lambda: self.client.download_report(params.app_id, params.start_date, params.end_date))
        return AnalyticsResult(
            success=True,
            message="Download report generated",
            metrics={"report_url": report.get("fileURL"), "start_date": params.start_date, "end_date": params.end_date},
        )

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult:
        page = int(params.page_token) if params.page_token and params.page_token.isdigit() else 1
        payload = await self._retry("list_reviews", lambda: self.client.list_comments(params.app_id, limit=params.limit, page=page))
        reviews = [
            ReviewItem(
                review_id=str(entry.get("commentId")),
                rating=entry.get("rating"),
                author=entry.get("nickName"),
                text=entry.get("content"),
                language=entry.get("language"),
                created_at=entry.get("commentTime"),
            )
            for entry in (as_mapping(item) for item in payload.get("comments", []))
        ]
        next_token = str(page + 1) if len(reviews) >= params.limit else None
        return ReviewListResult(success=True, message=f"Fetched {len(reviews)} reviews", reviews=reviews, next_page_token=next_token)

    async def rollback(self, params: RollbackParams) -> RollbackResult:
        return RollbackResult.not_supported("Huawei AGC does not support automated rollback via API. Please use the AGC Console manually.")
