"""
Operation handlers exposed to callers of the gateway.

Each handler turns a loosely typed parameter bundle into the typed parameter
dataclass of one adapter call, dispatches it through the registry and returns a
JSON-ready dict. Handlers know nothing about keys or quotas; the pipeline
stages supply that.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from logging import LoggerAdapter
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..adapters.base import (
    AnalyticsParams,
    CredentialResolver,
    GetListingParams,
    InvalidParamsError,
    ListingParams,
    OperationResult,
    PromoteReleaseParams,
    ReleaseParams,
    ResumeReleaseParams,
    ReviewListParams,
    RollbackParams,
    SetRolloutParams,
    StatusParams,
    StoreAdapter,
    StoreCapabilities,
    SubmitParams,
    UploadParams,
)
from ..core.logging import get_logger
from ..core.registry import AdapterRegistry
from ..pipeline.base import CallContext, Handler, OperationSpec, error_payload
from .checks import COMPLIANCE_CATEGORIES, CheckResult, CheckStatus, ListingMetadata, compliance_checks, overall_status, preflight_checks

CATALOGUE: Tuple[OperationSpec, ...] = (
    OperationSpec("store.list", requires_auth=False, description="List registered stores and their capabilities."),
    OperationSpec("app.upload", description="Validate a local artifact and upload it as a new build."),
    OperationSpec("app.publish", description="Upload, create a release and submit it for review in one call."),
    OperationSpec("app.release", description="Create a release from an uploaded build."),
    OperationSpec("app.listing", description="Update store listing metadata."),
    OperationSpec("app.listing.get", description="Read store listing metadata."),
    OperationSpec("app.submit", description="Submit a release for review."),
    OperationSpec("app.status", description="Report review and live status."),
    OperationSpec("app.analytics", description="Fetch store analytics for a date range."),
    OperationSpec("app.reviews", description="List user reviews."),
    OperationSpec("app.rollback", description="Halt or roll back the current release."),
    OperationSpec("app.rollout", description="Set, promote or resume a staged rollout."),
    OperationSpec("compliance.check", description="Check listing metadata, artifact and regional rules before submission."),
    OperationSpec("publish.preflight", description="Check credentials, build file and environment before an upload."),
)

_HASH_CHUNK = 1024 * 1024
_ROLLOUT_ACTIONS = ("set", "promote", "resume")


# --------------------------------------------------------------------------- param helpers


def _require_str(params: Mapping[str, Any], name: str) -> str:
    value = params.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidParamsError(f"Missing required parameter '{name}'.")
    return str(value)


def _optional_str(params: Mapping[str, Any], name: str) -> Optional[str]:
    value = params.get(name)
    if value is None or value == "":
        return None
    return str(value)


def _optional_number(params: Mapping[str, Any], name: str) -> Optional[float]:
    value = params.get(name)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParamsError(f"Parameter '{name}' must be a number, got {value!r}.") from exc


def _percentage(params: Mapping[str, Any], name: str, *, required: bool) -> Optional[float]:
    value = _optional_number(params, name)
    if value is None:
        if required:
            raise InvalidParamsError(f"Missing required parameter '{name}'.")
        return None
    if not 0 < value <= 100:
        raise InvalidParamsError(f"Parameter '{name}' must be within (0, 100], got {value}.")
    return value


def _int(params: Mapping[str, Any], name: str, default: int) -> int:
    value = params.get(name, default)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParamsError(f"Parameter '{name}' must be an integer, got {value!r}.") from exc


def _string_map(params: Mapping[str, Any], name: str) -> Dict[str, str]:
    value = params.get(name)
    if value is None:
        return {}
    if isinstance(value, str):
        return {"en-US": value}
    if not isinstance(value, Mapping):
        raise InvalidParamsError(f"Parameter '{name}' must map language codes to text.")
    return {str(key): str(text) for key, text in value.items()}


def _string_list(params: Mapping[str, Any], name: str) -> Tuple[str, ...]:
    value = params.get(name)
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(item.strip() for item in value.split(",") if item.strip())
    if isinstance(value, Sequence):
        return tuple(str(item) for item in value)
    raise InvalidParamsError(f"Parameter '{name}' must be a list of strings.")


def _optional_int(params: Mapping[str, Any], name: str) -> Optional[int]:
    value = _optional_number(params, name)
    return int(value) if value is not None else None


def _result(store_id: str, result: OperationResult) -> Dict[str, Any]:
    payload = result.to_dict()
    payload["store"] = store_id
    return payload


# --------------------------------------------------------------------------- artifacts


@dataclass(frozen=True, slots=True)
class ArtifactInfo:
    path: Path
    file_type: str
    size: int
    sha256: str

    @property
    def artifact_id(self) -> str:
        return f"art_{self.sha256[:16]}"


def _sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_HASH_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


async def inspect_artifact(file_path: str, file_type: str, capabilities: StoreCapabilities) -> ArtifactInfo | Dict[str, Any]:
    """
    Validate a local build artifact against a store's constraints.

    Returns an :class:`ArtifactInfo` for a valid artifact, otherwise an error
    payload with code ``ARTIFACT_NOT_FOUND``, ``ARTIFACT_INVALID_FORMAT`` or
    ``UPLOAD_SIZE_EXCEEDED``. No backend call happens here.
    """

    path = Path(file_path).expanduser()
    if ".." in path.parts:
        return error_payload(f"Path traversal is not allowed: {file_path}", "ARTIFACT_NOT_FOUND")
    if not path.is_file():
        return error_payload(f"Artifact not found: {file_path}", "ARTIFACT_NOT_FOUND")

    extension = path.suffix.lower().lstrip(".")
    if extension != file_type:
        return error_payload(f"File extension '.{extension}' does not match file type '{file_type}'.", "ARTIFACT_INVALID_FORMAT")
    if file_type not in capabilities.supported_file_types:
        accepted = ", ".join(capabilities.supported_file_types)
        return error_payload(f"{capabilities.name} does not accept '{file_type}' files (accepted: {accepted}).", "ARTIFACT_INVALID_FORMAT")

    size = path.stat().st_size
    if size > capabilities.max_file_size_bytes:
        return error_payload(
            f"Artifact is {size} bytes; {capabilities.name} accepts at most {capabilities.max_file_size_mb} MB.",
            "UPLOAD_SIZE_EXCEEDED",
        )

    sha256 = await asyncio.to_thread(_sha256_file, path)
    return ArtifactInfo(path=path, file_type=file_type, size=size, sha256=sha256)


# --------------------------------------------------------------------------- handlers


@dataclass(slots=True)
class StoreOperations:
    """Handlers for every operation in :data:`CATALOGUE`, bound to one registry."""

    registry: AdapterRegistry
    credentials: Optional[CredentialResolver] = None
    logger: LoggerAdapter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def handlers(self) -> Dict[str, Handler]:
        return {
            "store.list": self.list_stores,
            "app.upload": self.upload,
            "app.publish": self.publish,
            "app.release": self.create_release,
            "app.listing": self.update_listing,
            "app.listing.get": self.get_listing,
            "app.submit": self.submit,
            "app.status": self.status,
            "app.analytics": self.analytics,
            "app.reviews": self.reviews,
            "app.rollback": self.rollback,
            "app.rollout": self.rollout,
            "compliance.check": self.compliance_check,
            "publish.preflight": self.publish_preflight,
        }

    def _adapter(self, params: Mapping[str, Any]) -> StoreAdapter:
        return self.registry.require(_require_str(params, "store"))

    async def list_stores(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        platform = _optional_str(params, "platform")
        stores: List[Dict[str, Any]] = []
        for capabilities in self.registry.all_capabilities():
            if platform and platform not in capabilities.platforms:
                continue
            stores.append(capabilities.to_dict())
        return {"stores": stores, "count": len(stores)}

    async def upload(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        app_id = _require_str(params, "app_id")
        file_path = _require_str(params, "file_path")
        file_type = (_optional_str(params, "file_type") or Path(file_path).suffix.lstrip(".")).lower()

        artifact = await inspect_artifact(file_path, file_type, adapter.capabilities())
        if not isinstance(artifact, ArtifactInfo):
            return artifact
        context.payload_size = artifact.size
        self.logger.info("Uploading artifact", extra={"store_id": adapter.store_id, "artifact_id": artifact.artifact_id, "size": artifact.size})

        result = await adapter.upload_build(
            UploadParams(app_id=app_id, file_path=str(artifact.path), file_type=file_type, changelog=_optional_str(params, "changelog"))
        )
        payload = _result(adapter.store_id, result)
        payload.update({"artifact_id": artifact.artifact_id, "file_size": artifact.size})
        return payload

    async def publish(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        """
        Upload, release and submit in sequence.

        A step the store does not offer is skipped; a step the store declines
        stops the sequence and is reported as the failing step.
        """

        adapter = self._adapter(params)
        version_name = _require_str(params, "version_name")
        upload = await self.upload(params, context)
        if "error" in upload:
            return upload
        steps: Dict[str, Dict[str, Any]] = {"upload": upload}
        if not upload["success"]:
            return self._publish_outcome(adapter, steps, failed="upload")

        app_id = _require_str(params, "app_id")
        release = await adapter.create_release(
            ReleaseParams(
                app_id=app_id,
                version_name=version_name,
                build_id=upload.get("build_id"),
                track=_optional_str(params, "track") or "production",
                release_notes=_string_map(params, "release_notes"),
                rollout_percentage=_percentage(params, "rollout_percentage", required=False),
            )
        )
        steps["release"] = _result(adapter.store_id, release)
        if not release.success and not release.unsupported:
            return self._publish_outcome(adapter, steps, failed="release")

        submission = await adapter.submit_for_review(SubmitParams(app_id=app_id, release_id=release.release_id or upload.get("build_id")))
        steps["submit"] = _result(adapter.store_id, submission)
        if not submission.success and not submission.unsupported:
            return self._publish_outcome(adapter, steps, failed="submit")
        return self._publish_outcome(adapter, steps, failed=None)

    def _publish_outcome(self, adapter: StoreAdapter, steps: Dict[str, Dict[str, Any]], *, failed: Optional[str]) -> Dict[str, Any]:
        skipped = [name for name, step in steps.items() if step.get("unsupported")]
        if failed is not None:
            message = f"Publish stopped at {failed}: {steps[failed]['message']}"
        else:
            message = f"Published to {adapter.capabilities().name}"
            if skipped:
                message += f" (skipped: {', '.join(skipped)})"
        return {"store": adapter.store_id, "success": failed is None, "message": message, "failed_step": failed, "skipped": skipped, "steps": steps}

    async def create_release(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        result = await adapter.create_release(
            ReleaseParams(
                app_id=_require_str(params, "app_id"),
                version_name=_require_str(params, "version_name"),
                build_id=_optional_str(params, "build_id"),
                track=_optional_str(params, "track") or "production",
                release_notes=_string_map(params, "release_notes"),
                rollout_percentage=_percentage(params, "rollout_percentage", required=False),
            )
        )
        return _result(adapter.store_id, result)

    async def update_listing(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        result = await adapter.update_listing(
            ListingParams(
                app_id=_require_str(params, "app_id"),
                language=_optional_str(params, "language") or "en-US",
                title=_optional_str(params, "title"),
                short_description=_optional_str(params, "short_description"),
                full_description=_optional_str(params, "full_description"),
                keywords=_optional_str(params, "keywords"),
            )
        )
        return _result(adapter.store_id, result)

    async def get_listing(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        result = await adapter.get_listing(GetListingParams(app_id=_require_str(params, "app_id"), language=_optional_str(params, "language") or "en-US"))
        return _result(adapter.store_id, result)

    async def submit(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        result = await adapter.submit_for_review(SubmitParams(app_id=_require_str(params, "app_id"), release_id=_optional_str(params, "release_id")))
        return _result(adapter.store_id, result)

    async def status(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        result = await adapter.get_status(StatusParams(app_id=_require_str(params, "app_id"), release_id=_optional_str(params, "release_id")))
        return _result(adapter.store_id, result)

    async def analytics(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        result = await adapter.get_analytics(
            AnalyticsParams(
                app_id=_require_str(params, "app_id"),
                start_date=_require_str(params, "start_date"),
                end_date=_require_str(params, "end_date"),
                metrics=_string_list(params, "metrics"),
            )
        )
        return _result(adapter.store_id, result)

    async def reviews(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        limit = _int(params, "limit", 20)
        if limit < 1:
            raise InvalidParamsError("Parameter 'limit' must be positive.")
        result = await adapter.list_reviews(ReviewListParams(app_id=_require_str(params, "app_id"), limit=limit, page_token=_optional_str(params, "page_token")))
        return _result(adapter.store_id, result)

    async def rollback(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        result = await adapter.rollback(
            RollbackParams(
                app_id=_require_str(params, "app_id"),
                track=_optional_str(params, "track") or "production",
                release_id=_optional_str(params, "release_id"),
            )
        )
        return _result(adapter.store_id, result)

    async def rollout(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        app_id = _require_str(params, "app_id")
        action = _require_str(params, "action")
        if action == "set":
            result = await adapter.set_rollout(
                SetRolloutParams(app_id=app_id, track=_optional_str(params, "track") or "production", percentage=_percentage(params, "percentage", required=True))
            )
        elif action == "promote":
            result = await adapter.promote_release(
                PromoteReleaseParams(
                    app_id=app_id,
                    source_track=_require_str(params, "source_track"),
                    target_track=_require_str(params, "target_track"),
                    rollout_percentage=_percentage(params, "rollout_percentage", required=False),
                )
            )
        elif action == "resume":
            result = await adapter.resume_release(ResumeReleaseParams(app_id=app_id, track=_optional_str(params, "track") or "production"))
        else:
            raise InvalidParamsError(f"Unknown rollout action '{action}'. Expected one of: {', '.join(_ROLLOUT_ACTIONS)}.")
        return _result(adapter.store_id, result)

    async def compliance_check(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        """
        Grade an app against each target store's submission rules.

        ``stores`` (or a single ``store``) names the targets. Listing facts come
        from a nested ``metadata`` mapping when given, otherwise from the
        top-level parameters. Nothing is sent to a store.
        """

        app_id = _require_str(params, "app_id")
        store_ids = _string_list(params, "stores") or (_require_str(params, "store"),)
        categories = _string_list(params, "check_categories") or tuple(COMPLIANCE_CATEGORIES)
        unknown = [category for category in categories if category not in COMPLIANCE_CATEGORIES]
        if unknown:
            raise InvalidParamsError(f"Unknown check categories: {', '.join(unknown)}. Expected any of: {', '.join(COMPLIANCE_CATEGORIES)}.")

        raw_metadata = params.get("metadata")
        if raw_metadata is not None and not isinstance(raw_metadata, Mapping):
            raise InvalidParamsError("Parameter 'metadata' must be a mapping.")
        source = raw_metadata if raw_metadata is not None else params
        title = source.get("title")
        description = source.get("full_description")
        metadata = ListingMetadata(
            title=None if title is None else str(title),
            full_description=None if description is None else str(description),
            privacy_policy_url=_optional_str(source, "privacy_policy_url"),
            screenshot_count=_optional_int(source, "screenshot_count"),
        )

        checks: List[CheckResult] = []
        for store_id in store_ids:
            capabilities = self.registry.require(store_id).capabilities()
            checks.extend(
                compliance_checks(
                    capabilities,
                    categories,
                    metadata,
                    artifact_path=_optional_str(params, "artifact_path"),
                    permissions=_string_list(params, "permissions"),
                    target_sdk=_optional_int(params, "target_sdk"),
                )
            )

        status = overall_status(checks)
        return {
            "app_id": app_id,
            "stores": list(store_ids),
            "overall_status": status.value,
            "passed": status is not CheckStatus.FAIL,
            "blocking_issues_count": sum(1 for check in checks if check.status is CheckStatus.FAIL),
            "warning_count": sum(1 for check in checks if check.status is CheckStatus.WARNING),
            "checks": [check.to_dict() for check in checks],
        }

    async def publish_preflight(self, params: Mapping[str, Any], context: CallContext) -> Dict[str, Any]:
        adapter = self._adapter(params)
        checks = preflight_checks(adapter.capabilities(), self.credentials, _optional_str(params, "file_path"))
        status = overall_status(checks)
        if status is CheckStatus.FAIL:
            summary = "Not ready: fix the failed checks before publishing."
            next_step = "Fix the failed checks, then run publish.preflight again."
        elif status is CheckStatus.WARNING:
            summary = "Mostly ready: review the warnings."
            next_step = "Proceed with app.upload once the warnings are understood."
        else:
            summary = "Ready to publish."
            next_step = "Proceed with app.upload."
        return {
            "store": adapter.store_id,
            "ready": status is CheckStatus.PASS,
            "summary": summary,
            "checks": [check.to_dict() for check in checks],
            "next_step": next_step,
        }
