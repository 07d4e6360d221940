"""
Google Play Developer API client and adapter.

Every change goes through an *edit*: insert an edit, stage changes against it,
then commit (or delete it for read-only work). Each adapter operation runs a
whole edit session inside the retry policy so a retried attempt starts from a
fresh edit.

Reference: https://developers.google.com/android-publisher
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
    PromoteReleaseParams,
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
    StoreAPIError,
    StoreCapabilities,
    SubmissionResult,
    SubmitParams,
    UploadParams,
    UploadResult,
)
from ..retry import DEFAULT_RETRY_POLICY, RetryPolicy, run_with_retry
from .base import UPLOAD_TIMEOUT, BaseStoreClient, as_mapping, bearer, iter_chunks, stream_headers

DEFAULT_BASE_URL = "https://androidpublisher.googleapis.com"
_API_PREFIX = "/androidpublisher/v3/applications"
_UPLOAD_PREFIX = "/upload/androidpublisher/v3/applications"

T = TypeVar("T")

CAPABILITIES = StoreCapabilities(
    store_id="google_play",
    name="Google Play",
    supported_file_types=("apk", "aab"),
    supports_upload=True,
    supports_listing=True,
    supports_review=True,
    supports_analytics=False,
    supports_rollback=True,
    supports_staged_rollout=True,
    max_file_size_mb=150,
    auth_method=AuthMethod.OAUTH2,
    requires_icp=False,
)


class _NothingToChange(Exception):
    """Internal signal: the track holds no release the requested change applies to."""


_LIVE_STATUS = {
    "completed": "live",
    "inProgress": "rolling_out",
    "halted": "halted",
    "draft": "draft",
}


class GooglePlayClient(BaseStoreClient):
    """Wire calls for the ``androidpublisher`` v3 API."""

    def __init__(
        self,
        credentials: CredentialResolver,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(store_id="google_play", base_url=base_url, credentials=credentials, transport=transport)

    async def _call(self, method: str, path: str, **kwargs: Any) -> Mapping[str, Any]:
        token = await self.token()
        headers = dict(bearer(token))
        headers.update(kwargs.pop("headers", {}) or {})
        return as_mapping(await self.request_json(method, path, headers=headers, **kwargs))

    async def insert_edit(self, package: str) -> str:
        payload = await self._call("POST", f"{_API_PREFIX}/{package}/edits", json={})
        edit_id = payload.get("id")
        if not edit_id:
            raise self.error("Google Play did not return an edit id", "MALFORMED_RESPONSE")
        return str(edit_id)

    async def commit_edit(self, package: str, edit_id: str) -> Mapping[str, Any]:
        return await self._call("POST", f"{_API_PREFIX}/{package}/edits/{edit_id}:commit")

    async def delete_edit(self, package: str, edit_id: str) -> None:
        await self._call("DELETE", f"{_API_PREFIX}/{package}/edits/{edit_id}")

    async def upload_artifact(self, package: str, edit_id: str, file_path: str, file_type: str) -> Mapping[str, Any]:
        collection = "bundles" if file_type == "aab" else "apks"
        with self.open_artifact(file_path) as handle:
            return await self._call(
                "POST",
                f"{_UPLOAD_PREFIX}/{package}/edits/{edit_id}/{collection}",
                params={"uploadType": "media"},
                content=iter_chunks(handle),
                headers=stream_headers(handle),
                timeout=UPLOAD_TIMEOUT,
            )

    async def get_track(self, package: str, edit_id: str, track: str) -> Mapping[str, Any]:
        return await self._call("GET", f"{_API_PREFIX}/{package}/edits/{edit_id}/tracks/{track}")

    async def update_track(self, package: str, edit_id: str, track: str, releases: List[Dict[str, Any]]) -> Mapping[str, Any]:
        return await self._call(
            "PUT",
            f"{_API_PREFIX}/{package}/edits/{edit_id}/tracks/{track}",
            json={"track": track, "releases": releases},
        )

    async def get_listing(self, package: str, edit_id: str, language: str) -> Mapping[str, Any]:
        return await self._call("GET", f"{_API_PREFIX}/{package}/edits/{edit_id}/listings/{language}")

    async def patch_listing(self, package: str, edit_id: str, language: str, body: Mapping[str, Any]) -> Mapping[str, Any]:
        return await self._call("PATCH", f"{_API_PREFIX}/{package}/edits/{edit_id}/listings/{language}", json=dict(body))

    async def list_reviews(self, package: str, *, limit: int, token: Optional[str]) -> Mapping[str, Any]:
        params: Dict[str, Any] = {"maxResults": max(1, min(limit, 100))}
        if token:
            params["token"] = token
        return await self._call("GET", f"{_API_PREFIX}/{package}/reviews", params=params)


def _release_body(version_codes: List[str], *, name: Optional[str], percentage: Optional[float], notes: Mapping[str, str]) -> Dict[str, Any]:
    release: Dict[str, Any] = {"versionCodes": version_codes}
    if name:
        release["name"] = name
    if percentage is not None and percentage < 100:
        release["status"] = "inProgress"
        release["userFraction"] = round(max(percentage, 0.01) / 100, 4)
    else:
        release["status"] = "completed"
    if notes:
        release["releaseNotes"] = [{"language": language, "text": text} for language, text in notes.items()]
    return release


def _releases(track: Mapping[str, Any]) -> List[Dict[str, Any]]:
    return [dict(item) for item in track.get("releases", []) if isinstance(item, Mapping)]


@dataclass(slots=True)
class GooglePlayAdapter(StoreAdapter):
    """Adapter exposing Google Play through the uniform store contract."""

    client: GooglePlayClient
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY
    store_id: str = "google_play"

    @classmethod
    def create(cls, credentials: CredentialResolver, *, retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY, transport: Optional[httpx.AsyncBaseTransport] = None) -> "GooglePlayAdapter":
        return cls(client=GooglePlayClient(credentials, transport=transport), retry_policy=retry_policy)

    def capabilities(self) -> StoreCapabilities:
        return CAPABILITIES

    async def _in_edit(self, package: str, label: str, body: Callable[[str], Awaitable[T]], *, commit: bool) -> T:
        async def session() -> T:
            edit_id = await self.client.insert_edit(package)
            try:
                result = await body(edit_id)
            except Exception:
                await self._discard(package, edit_id)
                raise
            if commit:
                await self.client.commit_edit(package, edit_id)
            else:
                await self._discard(package, edit_id)
            return result

        return await run_with_retry(session, f"google_play.{label}", policy=self.retry_policy, logger=self.client.logger)

    async def _discard(self, package: str, edit_id: str) -> None:
        try:
            await self.client.delete_edit(package, edit_id)
        except StoreAPIError as exc:
            self.client.logger.warning("Failed to delete edit", extra={"edit_id": edit_id, "error": str(exc)})

    async def upload_build(self, params: UploadParams) -> UploadResult:
        async def body(edit_id: str) -> tuple[str, Mapping[str, Any]]:
            return edit_id, await self.client.upload_artifact(params.app_id, edit_id, params.file_path, params.file_type)

        edit_id, artifact = await self._in_edit(params.app_id, "upload_build", body, commit=True)
        version_code = artifact.get("versionCode")
        return UploadResult(
            success=True,
            message=f"Uploaded {params.file_type} with versionCode {version_code}",
            build_id=str(version_code) if version_code is not None else None,
            store_ref=edit_id,
            url=f"https://play.google.com/console/developers/app/{params.app_id}",
        )

    async def create_release(self, params: ReleaseParams) -> ReleaseResult:
        if not params.build_id:
            return ReleaseResult(success=False, message="Google Play releases need the versionCode returned by upload_build (build_id).")
        release = _release_body([params.build_id], name=params.version_name, percentage=params.rollout_percentage, notes=params.release_notes)

        async def body(edit_id: str) -> Mapping[str, Any]:
            return await self.client.update_track(params.app_id, edit_id, params.track, [release])

        await self._in_edit(params.app_id, "create_release", body, commit=True)
        return ReleaseResult(
            success=True,
            message=f"Release {params.version_name} created on track {params.track}",
            release_id=f"{params.track}:{params.build_id}",
            status=release["status"],
        )

    async def update_listing(self, params: ListingParams) -> ListingResult:
        listing = {
            key: value
            for key, value in (
                ("title", params.title),
                ("shortDescription", params.short_description),
                ("fullDescription", params.full_description),
            )
            if value is not None
        }
        if not listing:
            return ListingResult(success=False, message="No listing fields provided.")

        async def body(edit_id: str) -> Mapping[str, Any]:
            return await self.client.patch_listing(params.app_id, edit_id, params.language, listing)

        await self._in_edit(params.app_id, "update_listing", body, commit=True)
        return ListingResult(success=True, message=f"Listing updated for {params.language}")

    async def get_listing(self, params: GetListingParams) -> ListingInfo:
        async def body(edit_id: str) -> Mapping[str, Any]:
            return await self.client.get_listing(params.app_id, edit_id, params.language)

        listing = await self._in_edit(params.app_id, "get_listing", body, commit=False)
        return ListingInfo(
            success=True,
            message=f"Listing for {params.language}",
            language=listing.get("language", params.language),
            title=listing.get("title"),
            short_description=listing.get("shortDescription"),
            full_description=listing.get("fullDescription"),
        )

    async def submit_for_review(self, params: SubmitParams) -> SubmissionResult:
        return SubmissionResult(
            success=True,
            message="Google Play auto-reviews upon edit commit. No separate submission needed.",
            submission_id=params.release_id,
        )

    async def get_status(self, params: StatusParams) -> StatusResult:
        track_name = "production"

        async def body(edit_id: str) -> Mapping[str, Any]:
            return await self.client.get_track(params.app_id, edit_id, track_name)

        track = await self._in_edit(params.app_id, "get_status", body, commit=False)
        releases = _releases(track)
        if not releases:
            return StatusResult(success=True, message="No releases on the production track", review_status="unknown", live_status="not_released")
        latest = releases[0]
        fraction = latest.get("userFraction")
        return StatusResult(
            success=True,
            message=f"Track {track_name}: {latest.get('status', 'unknown')}",
            review_status="approved" if latest.get("status") in {"completed", "inProgress", "halted"} else "pending",
            live_status=_LIVE_STATUS.get(str(latest.get("status")), str(latest.get("status"))),
            version=latest.get("name"),
            rollout_percentage=float(fraction) * 100 if fraction is not None else None,
            details={"track": track_name, "version_codes": latest.get("versionCodes", [])},
        )

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult:
        return AnalyticsResult.not_supported(
            "Google Play analytics require Google Play Console API or BigQuery export. Not available via androidpublisher API."
        )

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult:
        payload = await run_with_retry(
            lambda: self.client.list_reviews(params.app_id, limit=params.limit, token=params.page_token),
            "google_play.list_reviews",
            policy=self.retry_policy,
            logger=self.client.logger,
        )
        reviews: List[ReviewItem] = []
        for entry in payload.get("reviews", []):
            comments = entry.get("comments") or [{}]
            user_comment = as_mapping(as_mapping(comments[0]).get("userComment"))
            modified = as_mapping(user_comment.get("lastModified")).get("seconds")
            reviews.append(
                ReviewItem(
                    review_id=str(entry.get("reviewId")),
                    rating=user_comment.get("starRating"),
                    author=entry.get("authorName"),
                    text=(user_comment.get("text") or "").strip() or None,
                    language=user_comment.get("reviewerLanguage"),
                    created_at=str(modified) if modified is not None else None,
                )
            )
        next_token = as_mapping(payload.get("tokenPagination")).get("nextPageToken")
        return ReviewListResult(success=True, message=f"Fetched {len(reviews)} reviews", reviews=reviews, next_page_token=next_token)

    async def _rewrite_track(
        self,
        package: str,
        track: str,
        label: str,
        rewrite: Callable[[List[Dict[str, Any]]], Optional[List[Dict[str, Any]]]],
    ) -> bool:
        """Apply ``rewrite`` to a track's releases; ``None`` means nothing to change."""

        async def body(edit_id: str) -> bool:
            current = _releases(await self.client.get_track(package, edit_id, track))
            updated = rewrite(current)
            if updated is None:
                raise _NothingToChange()
            await self.client.update_track(package, edit_id, track, updated)
            return True

        try:
            return await self._in_edit(package, label, body, commit=True)
        except _NothingToChange:
            return False

    async def rollback(self, params: RollbackParams) -> RollbackResult:
        def halt(releases: List[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
            targets = [release for release in releases if release.get("status") == "inProgress"]
            if not targets:
                return None
            for release in targets:
                release["status"] = "halted"
            return releases

        if await self._rewrite_track(params.app_id, params.track, "rollback", halt):
            return RollbackResult(success=True, message=f"Rollout halted on track {params.track}")
        return RollbackResult(success=False, message=f"No in-progress rollout on track {params.track} to halt")

    async def set_rollout(self, params: SetRolloutParams) -> ReleaseControlResult:
        def adjust(releases: List[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
            targets = [release for release in releases if release.get("status") in {"inProgress", "halted"}]
            if not targets:
                return None
            for release in targets:
                if params.percentage >= 100:
                    release["status"] = "completed"
                    release.pop("userFraction", None)
                else:
                    release["userFraction"] = round(max(params.percentage, 0.01) / 100, 4)
            return releases

        if await self._rewrite_track(params.app_id, params.track, "set_rollout", adjust):
            return ReleaseControlResult(
                success=True,
                message=f"Rollout on track {params.track} set to {params.percentage:g}%",
                track=params.track,
                rollout_percentage=min(params.percentage, 100.0),
            )
        return ReleaseControlResult(success=False, message=f"No staged release on track {params.track}", track=params.track)

    async def resume_release(self, params: ResumeReleaseParams) -> ReleaseControlResult:
        def resume(releases: List[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
            targets = [release for release in releases if release.get("status") == "halted"]
            if not targets:
                return None
            for release in targets:
                release["status"] = "inProgress" if release.get("userFraction") else "completed"
            return releases

        if await self._rewrite_track(params.app_id, params.track, "resume_release", resume):
            return ReleaseControlResult(success=True, message=f"Rollout resumed on track {params.track}", track=params.track)
        return ReleaseControlResult(success=False, message=f"No halted release on track {params.track}", track=params.track)

    async def promote_release(self, params: PromoteReleaseParams) -> ReleaseControlResult:
        async def body(edit_id: str) -> List[str]:
            source = _releases(await self.client.get_track(params.app_id, edit_id, params.source_track))
            if not source or not source[0].get("versionCodes"):
                raise _NothingToChange()
            latest = source[0]
            codes = [str(code) for code in latest["versionCodes"]]
            notes = {note["language"]: note["text"] for note in latest.get("releaseNotes", []) if "language" in note and "text" in note}
            release = _release_body(codes, name=latest.get("name"), percentage=params.rollout_percentage, notes=notes)
            await self.client.update_track(params.app_id, edit_id, params.target_track, [release])
            return codes

        try:
            codes = await self._in_edit(params.app_id, "promote_release", body, commit=True)
        except _NothingToChange:
            return ReleaseControlResult(success=False, message=f"No release found on track {params.source_track}", track=params.source_track)
        return ReleaseControlResult(
            success=True,
            message=f"Promoted versionCodes {', '.join(codes)} from {params.source_track} to {params.target_track}",
            track=params.target_track,
            rollout_percentage=params.rollout_percentage,
        )
