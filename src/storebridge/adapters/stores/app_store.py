"""
App Store Connect client and adapter.

Binary uploads go through Apple's Transporter tooling, so this adapter manages
versions, localizations, submissions, phased releases and customer reviews.
Reference: https://developer.apple.com/documentation/appstoreconnectapi
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar

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
    ReleaseControlResult,
    ReleaseParams,
    ReleaseResult,
    ResumeReleaseParams,
    ReviewItem,
    ReviewListParams,
    ReviewListResult,
    RollbackParams,
    RollbackResult,
    SetRolloutParams,
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
from .base import BaseStoreClient, as_mapping, bearer

DEFAULT_BASE_URL = "https://api.appstoreconnect.apple.com/v1"
_EDITABLE_STATES = "PREPARE_FOR_SUBMISSION,DEVELOPER_ACTION_NEEDED"

T = TypeVar("T")

CAPABILITIES = StoreCapabilities(
    store_id="app_store",
    name="Apple App Store",
    supported_file_types=("ipa",),
    supports_upload=False,
    supports_listing=True,
    supports_review=True,
    supports_analytics=False,
    supports_rollback=True,
    supports_staged_rollout=True,
    max_file_size_mb=4000,
    auth_method=AuthMethod.JWT,
    requires_icp=False,
)

_REVIEW_STATUS = {
    "PREPARE_FOR_SUBMISSION": "draft",
    "DEVELOPER_ACTION_NEEDED": "draft",
    "WAITING_FOR_REVIEW": "in_review",
    "IN_REVIEW": "in_review",
    "PENDING_DEVELOPER_RELEASE": "approved",
    "PENDING_APPLE_RELEASE": "approved",
    "READY_FOR_DISTRIBUTION": "approved",
    "REJECTED": "rejected",
    "METADATA_REJECTED": "rejected",
}


class AppStoreClient(BaseStoreClient):
    """Wire calls for the App Store Connect REST API."""

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(store_id="app_store", base_url=base_url, credentials=credentials, transport=transport)

    async def _call(self, method: str, path: str, **kwargs: Any) -> Mapping[str, Any]:
        token = await self.token()
        return as_mapping(await self.request_json(method, path, headers=dict(bearer(token)), **kwargs))

    async def list_versions(self, app_id: str, *, states: Optional[str] = None, limit: int = 1) -> List[Mapping[str, Any]]:
        params: Dict[str, Any] = {"limit": limit}
        if states:
            params["filter[appStoreState]"] = states
        payload = await self._call("GET", f"/apps/{app_id}/appStoreVersions", params=params)
        return [as_mapping(item) for item in payload.get("data", [])]

    async def create_version(self, app_id: str, version: str, *, release_type: str) -> Mapping[str, Any]:
        body = {
            "data": {
                "type": "appStoreVersions",
                "attributes": {"platform": "IOS", "versionString": version, "releaseType": release_type},
                "relationships": {"app": {"data": {"type": "apps", "id": app_id}}},
            }
        }
        return as_mapping((await self._call("POST", "/appStoreVersions", json=body)).get("data"))

    async def list_localizations(self, version_id: str) -> List[Mapping[str, Any]]:
        payload = await self._call("GET", f"/appStoreVersions/{version_id}/appStoreVersionLocalizations")
        return [as_mapping(item) for item in payload.get("data", [])]

    async def update_localization(self, localization_id: str, attributes: Mapping[str, Any]) -> None:
        body = {"data": {"type": "appStoreVersionLocalizations", "id": localization_id, "attributes": dict(attributes)}}
        await self._call("PATCH", f"/appStoreVersionLocalizations/{localization_id}", json=body)

    async def create_localization(self, version_id: str, locale: str, attributes: Mapping[str, Any]) -> None:
        body = {
            "data": {
                "type": "appStoreVersionLocalizations",
                "attributes": {"locale": locale, **attributes},
                "relationships": {"appStoreVersion": {"data": {"type": "appStoreVersions", "id": version_id}}},
            }
        }
        await self._call("POST", "/appStoreVersionLocalizations", json=body)

    async def submit_version(self, version_id: str) -> Mapping[str, Any]:
        body = {
            "data": {
                "type": "appStoreVersionSubmissions",
                "relationships": {"appStoreVersion": {"data": {"type": "appStoreVersions", "id": version_id}}},
            }
        }
        return as_mapping((await self._call("POST", "/appStoreVersionSubmissions", json=body)).get("data"))

    async def get_phased_release(self, version_id: str) -> Mapping[str, Any]:
        payload = await self._call("GET", f"/appStoreVersions/{version_id}/appStoreVersionPhasedRelease")
        return as_mapping(payload.get("data"))

    async def set_phased_release_state(self, phased_release_id: str, state: str) -> None:
        body = {"data": {"type": "appStoreVersionPhasedReleases", "id": phased_release_id, "attributes": {"phasedReleaseState": state}}}
        await self._call("PATCH", f"/appStoreVersionPhasedReleases/{phased_release_id}", json=body)

    async def list_reviews(self, app_id: str, *, limit: int, cursor: Optional[str]) -> Mapping[str, Any]:
        params: Dict[str, Any] = {"limit": max(1, min(limit, 200)), "sort": "-createdDate"}
        if cursor:
            params["cursor"] = cursor
        return await self._call("GET", f"/apps/{app_id}/customerReviews", params=params)


def _next_cursor(payload: Mapping[str, Any]) -> Optional[str]:
    next_link = as_mapping(payload.get("links")).get("next")
    if not next_link:
        return None
    query = httpx.URL(str(next_link)).params
    return query.get("cursor")


@dataclass(slots=True)
class AppStoreAdapter(StoreAdapter):
    """Adapter exposing App Store Connect through the uniform store contract."""

    client: AppStoreClient
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    store_id: str = "app_store"

    @classmethod
    def create(cls, credentials: CredentialResolver, *, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY, transport: Optional[httpx.AsyncBaseTransport] = None) -> "AppStoreAdapter":
        return cls(client=AppStoreClient(credentials, transport=transport), retry_policy=retry_policy)

    def capabilities(self) -> StoreCapabilities:
        return CAPABILITIES

    async def _retry(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await run_with_retry(operation, f"app_store.{label}", policy=self.retry_policy, logger=self.client.logger)

    async def _latest_version(self, app_id: str, *, states: Optional[str] = None) -> Optional[Mapping[str, Any]]:
        versions = await self._retry("list_versions", lambda: self.client.list_versions(app_id, states=states))
        return versions[0] if versions else None

    async def upload_build(self, params: UploadParams) -> UploadResult:
        return UploadResult.not_supported(
            "IPA upload requires Transporter CLI. Run: xcrun altool --upload-app -f app.ipa -t ios -u USER -p @keychain:AC_PASSWORD"
        )

    async def create_release(self, params: ReleaseParams) -> ReleaseResult:
        phased = params.rollout_percentage is not None and params.rollout_percentage < 100
        release_type = "SCHEDULED" if phased else "AFTER_APPROVAL"
        version = await self._retry(
            "create_release",
            lambda: self.client.create_version(params.app_id, params.version_name, release_type=release_type),
        )
        state = as_mapping(version.get("attributes")).get("appStoreState", "PREPARE_FOR_SUBMISSION")
        return ReleaseResult(
            success=True,
            message=f"App Store version {params.version_name} created",
            release_id=version.get("id"),
            status=str(state),
        )

    async def update_listing(self, params: ListingParams) -> ListingResult:
        version = await self._latest_version(params.app_id, states=_EDITABLE_STATES)
        if version is None:
            return ListingResult(success=False, message="No editable app store version found")
        attributes = {
            key: value
            for key, value in (
                ("description", params.full_description),
                ("promotionalText", params.short_description),
                ("keywords", params.keywords),
            )
            if value is not None
        }
        version_id = str(version.get("id"))
        localizations = await self._retry("list_localizations", lambda: self.client.list_localizations(version_id))
        existing = next((item for item in localizations if as_mapping(item.get("attributes")).get("locale") == params.language), None)
        if existing is not None:
            localization_id = str(existing.get("id"))
            await self._retry("update_listing", lambda: self.client.update_localization(localization_id, attributes))
        else:
            await self._retry("update_listing", lambda: self.client.create_localization(version_id, params.language, attributes))
        return ListingResult(success=True, message=f"Listing updated for {params.language}")

    async def get_listing(self, params: GetListingParams) -> ListingInfo:
        version = await self._latest_version(params.app_id)
        if version is None:
            return ListingInfo(success=False, message="No app store version found")
        version_id = str(version.get("id"))
        localizations = await self._retry("get_listing", lambda: self.client.list_localizations(version_id))
        for item in localizations:
            attributes = as_mapping(item.get("attributes"))
            if attributes.get("locale") == params.language:
                return ListingInfo(
                    success=True,
                    message=f"Listing for {params.language}",
                    language=params.language,
                    short_description=attributes.get("promotionalText"),
                    full_description=attributes.get("description"),
                )
        return ListingInfo(success=False, message=f"No localization for {params.language}")

    async def submit_for_review(self, params: SubmitParams) -> SubmissionResult:
        version = await self._latest_version(params.app_id, states="PREPARE_FOR_SUBMISSION")
        if version is None:
            return SubmissionResult(success=False, message="No version in PREPARE_FOR_SUBMISSION state found")
        version_id = str(version.get("id"))
        submission = await self._retry("submit_for_review", lambda: self.client.submit_version(version_id))
        return SubmissionResult(success=True, message="Submitted for App Review", submission_id=submission.get("id"))

    async def get_status(self, params: StatusParams) -> StatusResult:
        version = await self._latest_version(params.app_id)
        if version is None:
            return StatusResult(success=True, message="No App Store versions yet", review_status="unknown", live_status="not_released")
        attributes = as_mapping(version.get("attributes"))
        state = str(attributes.get("appStoreState", "UNKNOWN"))
        return StatusResult(
            success=True,
            message=f"App Store state: {state}",
            review_status=_REVIEW_STATUS.get(state, state.lower()),
            live_status="live" if state == "READY_FOR_DISTRIBUTION" else "not_live",
            version=attributes.get("versionString"),
            details={"app_store_state": state, "version_id": version.get("id")},
        )

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult:
        return AnalyticsResult.not_supported("Apple analytics require the App Store Connect Analytics Reports API. Not yet implemented.")

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult:
        payload = await self._retry(
            "list_reviews",
            lambda: self.client.list_reviews(params.app_id, limit=params.limit, cursor=params.page_token),
        )
        reviews = []
        for entry in payload.get("data", []):
            attributes = as_mapping(as_mapping(entry).get("attributes"))
            reviews.append(
                ReviewItem(
                    review_id=str(as_mapping(entry).get("id")),
                    rating=attributes.get("rating"),
                    author=attributes.get("reviewerNickname"),
                    text=attributes.get("body"),
                    language=attributes.get("territory"),
                    created_at=attributes.get("createdDate"),
                )
            )
        return ReviewListResult(success=True, message=f"Fetched {len(reviews)} reviews", reviews=reviews, next_page_token=_next_cursor(payload))

    async def _phased_release(self, app_id: str) -> tuple[Optional[Mapping[str, Any]], Optional[Mapping[str, Any]]]:
        version = await self._latest_version(app_id, states="READY_FOR_DISTRIBUTION")
        if version is None:
            return None, None
        version_id = str(version.get("id"))
        phased = await self._retry("get_phased_release", lambda: self.client.get_phased_release(version_id))
        return version, phased or None

    async def rollback(self, params: RollbackParams) -> RollbackResult:
        version, phased = await self._phased_release(params.app_id)
        if version is None:
            return RollbackResult(success=False, message="No active release found to rollback")
        if phased is None or as_mapping(phased.get("attributes")).get("phasedReleaseState") != "ACTIVE":
            return RollbackResult(success=False, message="No phased release in progress. Full rollback requires removing from sale.")
        phased_id = str(phased.get("id"))
        await self._retry("rollback", lambda: self.client.set_phased_release_state(phased_id, "PAUSED"))
        return RollbackResult(success=True, message="Phased release paused")

    async def resume_release(self, params: ResumeReleaseParams) -> ReleaseControlResult:
        _, phased = await self._phased_release(params.app_id)
        if phased is None or as_mapping(phased.get("attributes")).get("phasedReleaseState") != "PAUSED":
            return ReleaseControlResult(success=False, message="No paused phased release found", track=params.track)
        phased_id = str(phased.get("id"))
        await self._retry("resume_release", lambda: self.client.set_phased_release_state(phased_id, "ACTIVE"))
        return ReleaseControlResult(success=True, message="Phased release resumed", track=params.track)

    async def set_rollout(self, params: SetRolloutParams) -> ReleaseControlResult:
        if params.percentage < 100:
            return ReleaseControlResult(
                success=False,
                message="Apple phased releases follow a fixed 7-day schedule; only pausing, resuming or completing (100%) is possible.",
                track=params.track,
            )
        _, phased = await self._phased_release(params.app_id)
        if phased is None or as_mapping(phased.get("attributes")).get("phasedReleaseState") not in {"ACTIVE", "PAUSED"}:
            return ReleaseControlResult(success=False, message="No phased release in progress", track=params.track)
        phased_id = str(phased.get("id"))
        await self._retry("set_rollout", lambda: self.client.set_phased_release_state(phased_id, "COMPLETE"))
        return ReleaseControlResult(success=True, message="Phased release completed for all users", track=params.track, rollout_percentage=100.0)
