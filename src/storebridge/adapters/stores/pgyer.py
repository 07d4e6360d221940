"""
Pgyer test-distribution client and adapter.

Pgyer hosts builds for testers; it has no release, review or listing concepts.
Reference: https://www.pgyer.com/doc/view/api
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

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
from .base import UPLOAD_TIMEOUT, BaseStoreClient, as_mapping

DEFAULT_BASE_URL = "https://www.pgyer.com/apiv2"

CAPABILITIES = StoreCapabilities(
    store_id="pgyer",
    name="Pgyer",
    supported_file_types=("apk", "ipa"),
    supports_upload=True,
    supports_listing=False,
    supports_review=False,
    supports_analytics=False,
    supports_rollback=False,
    supports_staged_rollout=False,
    max_file_size_mb=4096,
    auth_method=AuthMethod.API_KEY,
    requires_icp=False,
)


class PgyerClient(BaseStoreClient):
    """Wire calls for the Pgyer v2 API."""

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(store_id="pgyer", base_url=base_url, credentials=credentials, transport=transport)

    def _check(self, payload: Any, code: str, *, retryable: bool) -> Mapping[str, Any]:
        body = as_mapping(payload)
        if body.get("code") != 0:
            raise self.error(f"Pgyer error: {body.get('message', 'unknown error')}", code, retryable=retryable)
        return as_mapping(body.get("data"))

    async def upload(self, file_path: str, *, description: Optional[str] = None) -> Mapping[str, Any]:
        api_key = await self.token()
        with self.open_artifact(file_path) as handle:
            payload = await self.request_json(
                "POST",
                "/app/upload",
                data={"_api_key": api_key, "buildUpdateDescription": description or ""},
                files={"file": (Path(file_path).name, handle)},
                timeout=UPLOAD_TIMEOUT,
            )
        return self._check(payload, "UPLOAD_FAILED", retryable=True)

    async def view(self, app_key: str) -> Mapping[str, Any]:
        api_key = await self.token()
        payload = await self.request_json("POST", "/app/view", data={"_api_key": api_key, "appKey": app_key})
        return self._check(payload, "STATUS_FAILED", retryable=False)


@dataclass(slots=True)
class PgyerAdapter(StoreAdapter):
    """Adapter exposing Pgyer through the uniform store contract."""

    client: PgyerClient
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    store_id: str = "pgyer"

    @classmethod
    def create(cls, credentials: CredentialResolver, *, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY, transport: Optional[httpx.AsyncBaseTransport] = None) -> "PgyerAdapter":
        return cls(client=PgyerClient(credentials, transport=transport), retry_policy=retry_policy)

    def capabilities(self) -> StoreCapabilities:
        return CAPABILITIES

    async def upload_build(self, params: UploadParams) -> UploadResult:
        data = await run_with_retry(
            lambda: self.client.upload(params.file_path, description=params.changelog),
            "pgyer.upload_build",
            policy=self.retry_policy,
            logger=self.client.logger,
        )
        short_url = data.get("buildShortcutUrl")
        return UploadResult(
            success=True,
            message=f"Build uploaded to Pgyer (v{data.get('buildVersion', '?')})",
            build_id=data.get("buildKey"),
            store_ref=data.get("buildKey"),
            url=f"https://www.pgyer.com/{short_url}" if short_url else None,
        )

    async def create_release(self, params: ReleaseParams) -> ReleaseResult:
        return ReleaseResult.not_supported("Pgyer is a test distribution platform and does not support formal releases.")

    async def update_listing(self, params: ListingParams) -> ListingResult:
        return ListingResult.not_supported("Pgyer does not support listing management.")

    async def submit_for_review(self, params: SubmitParams) -> SubmissionResult:
        return SubmissionResult.not_supported("Pgyer does not require review submission.")

    async def get_status(self, params: StatusParams) -> StatusResult:
        data = await run_with_retry(
            lambda: self.client.view(params.app_id),
            "pgyer.get_status",
            policy=self.retry_policy,
            logger=self.client.logger,
        )
        details: Dict[str, Any] = {key: data.get(key) for key in ("buildName", "buildIdentifier", "buildUpdated") if data.get(key) is not None}
        return StatusResult(
            success=True,
            message="Build is available for download",
            review_status="not_applicable",
            live_status="distributed",
            version=data.get("buildVersion"),
            details=details,
        )

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult:
        return AnalyticsResult.not_supported("Pgyer does not provide analytics API.")

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult:
        return ReviewListResult.not_supported("Pgyer does not collect user reviews.")

    async def rollback(self, params: RollbackParams) -> RollbackResult:
        return RollbackResult.not_supported("Pgyer does not support rollback.")
