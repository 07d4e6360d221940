"""
Pre-submission checks that run locally, without calling a store backend.

``compliance.check`` judges listing metadata, the build artifact and regional
filing rules per store. ``publish.preflight`` answers a narrower question: can
``app.upload`` run right now for one store? Both produce a list of
:class:`CheckResult` entries graded ``pass``, ``warning`` or ``fail``.
"""

from __future__ import annotations

import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..adapters.base import CredentialResolver, StoreCapabilities


class CheckStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class CheckResult:
    store: str
    check: str
    status: CheckStatus
    message: str
    suggestion: Optional[str] = None
    reference_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"store": self.store, "check": self.check, "status": self.status.value, "message": self.message}
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.reference_url:
            payload["reference_url"] = self.reference_url
        return payload


@dataclass(frozen=True, slots=True)
class ListingMetadata:
    title: Optional[str] = None
    full_description: Optional[str] = None
    privacy_policy_url: Optional[str] = None
    screenshot_count: Optional[int] = None


COMPLIANCE_CATEGORIES: Sequence[str] = (
    "privacy_policy",
    "data_collection",
    "content_rating",
    "icp_filing",
    "pipl_compliance",
    "export_compliance",
    "age_rating",
    "screenshots",
    "listing_completeness",
    "artifact_validation",
)

TITLE_MAX_LENGTH: Mapping[str, int] = {
    "google_play": 50,
    "app_store": 30,
    "huawei_agc": 64,
    "xiaomi": 64,
    "oppo": 64,
    "vivo": 64,
    "honor": 64,
}
DEFAULT_TITLE_MAX_LENGTH = 50

DESCRIPTION_MAX_LENGTH: Mapping[str, int] = {"huawei_agc": 8000}
DEFAULT_DESCRIPTION_MAX_LENGTH = 4000
DESCRIPTION_MIN_LENGTH = 10
MIN_SCREENSHOTS = 2
MIN_TARGET_SDK = 33

ICP_REFERENCE_URL = "https://beian.miit.gov.cn/"
TARGET_SDK_REFERENCE_URL = "https://developer.android.com/google/play/requirements/target-sdk"

# Runtime permissions stores ask developers to justify.
DANGEROUS_PERMISSIONS = frozenset(
    {
        "android.permission.SEND_SMS",
        "android.permission.READ_CONTACTS",
        "android.permission.READ_CALL_LOG",
        "android.permission.WRITE_CALL_LOG",
        "android.permission.READ_PHONE_STATE",
        "android.permission.PROCESS_OUTGOING_CALLS",
        "android.permission.READ_EXTERNAL_STORAGE",
        "android.permission.WRITE_EXTERNAL_STORAGE",
        "android.permission.CAMERA",
        "android.permission.RECORD_AUDIO",
        "android.permission.ACCESS_FINE_LOCATION",
        "android.permission.ACCESS_BACKGROUND_LOCATION",
    }
)

_ANDROID_FILE_TYPES = frozenset({"apk", "aab"})
_MB = 1024 * 1024


def overall_status(checks: Iterable[CheckResult]) -> CheckStatus:
    statuses = {check.status for check in checks}
    if CheckStatus.FAIL in statuses:
        return CheckStatus.FAIL
    if CheckStatus.WARNING in statuses:
        return CheckStatus.WARNING
    return CheckStatus.PASS


# --------------------------------------------------------------------------- compliance


def _regional(capabilities: StoreCapabilities, check: str, warning: str, suggestion: str, *, not_required: str, url: Optional[str] = None) -> CheckResult:
    if capabilities.requires_icp:
        return CheckResult(capabilities.store_id, check, CheckStatus.WARNING, warning, suggestion, url)
    return CheckResult(capabilities.store_id, check, CheckStatus.PASS, not_required)


def _privacy_policy(store: str, metadata: ListingMetadata) -> CheckResult:
    url = metadata.privacy_policy_url
    if not url:
        return CheckResult(
            store,
            "privacy_policy",
            CheckStatus.FAIL,
            "Privacy policy URL is missing. All stores require one.",
            "Provide privacy_policy_url starting with https://.",
        )
    if not url.startswith("https://"):
        return CheckResult(store, "privacy_policy", CheckStatus.FAIL, f"Privacy policy URL must use HTTPS. Got: {url}", "Serve the privacy policy over https://.")
    return CheckResult(store, "privacy_policy", CheckStatus.PASS, "Privacy policy URL is present and uses HTTPS.")


def _screenshots(store: str, metadata: ListingMetadata) -> CheckResult:
    count = metadata.screenshot_count
    if count is None:
        return CheckResult(
            store,
            "screenshots",
            CheckStatus.WARNING,
            "Screenshot count not provided.",
            f"Provide screenshot_count. At least {MIN_SCREENSHOTS} screenshots are required.",
        )
    if count < MIN_SCREENSHOTS:
        return CheckResult(
            store,
            "screenshots",
            CheckStatus.FAIL,
            f"Only {count} screenshot(s) provided. {store} requires at least {MIN_SCREENSHOTS}.",
            f"Add {MIN_SCREENSHOTS - count} more screenshot(s).",
        )
    return CheckResult(store, "screenshots", CheckStatus.PASS, f"{count} screenshots provided (minimum {MIN_SCREENSHOTS}).")


def _listing(store: str, metadata: ListingMetadata) -> List[CheckResult]:
    results: List[CheckResult] = []
    if metadata.title is not None:
        limit = TITLE_MAX_LENGTH.get(store, DEFAULT_TITLE_MAX_LENGTH)
        length = len(metadata.title)
        if length == 0:
            results.append(CheckResult(store, "listing_completeness", CheckStatus.FAIL, "Title is empty.", "Provide a non-empty title."))
        elif length > limit:
            results.append(
                CheckResult(
                    store,
                    "listing_completeness",
                    CheckStatus.FAIL,
                    f"Title is {length} chars; {store} allows at most {limit}.",
                    f"Shorten the title to {limit} characters or fewer.",
                )
            )
        else:
            results.append(CheckResult(store, "listing_completeness", CheckStatus.PASS, f"Title length {length}/{limit} is within limits."))

    if metadata.full_description is not None:
        limit = DESCRIPTION_MAX_LENGTH.get(store, DEFAULT_DESCRIPTION_MAX_LENGTH)
        length = len(metadata.full_description)
        if length < DESCRIPTION_MIN_LENGTH:
            results.append(
                CheckResult(
                    store,
                    "listing_completeness",
                    CheckStatus.FAIL,
                    f"Description is {length} chars; at least {DESCRIPTION_MIN_LENGTH} are required.",
                    "Describe the app in more detail.",
                )
            )
        elif length > limit:
            results.append(
                CheckResult(
                    store,
                    "listing_completeness",
                    CheckStatus.FAIL,
                    f"Description is {length} chars; {store} allows at most {limit}.",
                    f"Shorten the description to {limit} characters or fewer.",
                )
            )
        else:
            results.append(CheckResult(store, "listing_completeness", CheckStatus.PASS, f"Description length {length}/{limit} is within limits."))

    if not results:
        results.append(
            CheckResult(
                store,
                "listing_completeness",
                CheckStatus.WARNING,
                "No title or description provided to check.",
                "Provide title and full_description.",
            )
        )
    return results


def _artifact(capabilities: StoreCapabilities, artifact_path: Optional[str]) -> List[CheckResult]:
    store = capabilities.store_id
    if not artifact_path:
        return [CheckResult(store, "artifact_validation", CheckStatus.WARNING, "No artifact_path provided. Skipping artifact validation.")]

    path = Path(artifact_path).expanduser()
    if not path.is_file():
        return [
            CheckResult(
                store,
                "artifact_validation",
                CheckStatus.FAIL,
                f"Artifact not found: {artifact_path}",
                "Check the path and that the build finished.",
            )
        ]

    results: List[CheckResult] = []
    file_type = path.suffix.lower().lstrip(".")
    accepted = ", ".join(f".{kind}" for kind in capabilities.supported_file_types)
    if file_type in capabilities.supported_file_types:
        results.append(CheckResult(store, "artifact_validation", CheckStatus.PASS, f"File type '.{file_type}' is accepted by {store}."))
    else:
        results.append(
            CheckResult(
                store,
                "artifact_validation",
                CheckStatus.FAIL,
                f"File type '.{file_type}' is not accepted by {store}. Expected: {accepted}",
                f"Build one of: {accepted}",
            )
        )

    size_mb = path.stat().st_size / _MB
    if size_mb > capabilities.max_file_size_mb:
        results.append(
            CheckResult(
                store,
                "artifact_validation",
                CheckStatus.FAIL,
                f"Artifact is {size_mb:.1f} MB; {store} accepts at most {capabilities.max_file_size_mb} MB.",
                "Shrink the build, for example by enabling code shrinking or dropping unused resources.",
            )
        )
    else:
        results.append(
            CheckResult(store, "artifact_validation", CheckStatus.PASS, f"Artifact size {size_mb:.1f} MB is within the {capabilities.max_file_size_mb} MB limit.")
        )
    return results


def _android_manifest(store: str, permissions: Sequence[str], target_sdk: Optional[int]) -> List[CheckResult]:
    results: List[CheckResult] = []
    if target_sdk is not None:
        if target_sdk < MIN_TARGET_SDK:
            results.append(
                CheckResult(
                    store,
                    "artifact_validation",
                    CheckStatus.WARNING,
                    f"targetSdkVersion is {target_sdk}; new apps need {MIN_TARGET_SDK} or higher.",
                    f"Raise targetSdkVersion to {MIN_TARGET_SDK} or higher.",
                    TARGET_SDK_REFERENCE_URL,
                )
            )
        else:
            results.append(CheckResult(store, "artifact_validation", CheckStatus.PASS, f"targetSdkVersion {target_sdk} meets requirements."))

    if permissions:
        flagged = sorted(permission for permission in set(permissions) if permission in DANGEROUS_PERMISSIONS)
        if flagged:
            results.append(
                CheckResult(
                    store,
                    "artifact_validation",
                    CheckStatus.WARNING,
                    f"Found {len(flagged)} sensitive permission(s): {', '.join(flagged)}",
                    "Justify each sensitive permission; stores reject apps that request ones they do not need.",
                )
            )
        else:
            results.append(CheckResult(store, "artifact_validation", CheckStatus.PASS, "No sensitive permissions requested."))
    return results


def compliance_checks(
    capabilities: StoreCapabilities,
    categories: Sequence[str],
    metadata: ListingMetadata,
    *,
    artifact_path: Optional[str] = None,
    permissions: Sequence[str] = (),
    target_sdk: Optional[int] = None,
) -> List[CheckResult]:
    """
    Run ``categories`` for one store.

    Categories that need data no caller can supply here (content rating,
    export rules and the like) come back as a manual-verification warning.
    Manifest facts (``permissions``, ``target_sdk``) are judged only for stores
    that take Android builds.
    """

    store = capabilities.store_id
    results: List[CheckResult] = []
    for category in categories:
        if category == "icp_filing":
            results.append(
                _regional(
                    capabilities,
                    category,
                    "An ICP filing is required for this store. Verify the filing number is registered.",
                    "Add a valid ICP filing number to the app listing.",
                    not_required="ICP filing is not required for this store.",
                    url=ICP_REFERENCE_URL,
                )
            )
        elif category == "pipl_compliance":
            results.append(
                _regional(
                    capabilities,
                    category,
                    "Personal Information Protection Law compliance should be verified for this store.",
                    "Check that data collection disclosures and consent flows meet PIPL requirements.",
                    not_required="PIPL compliance does not apply to this store.",
                )
            )
        elif category == "privacy_policy":
            results.append(_privacy_policy(store, metadata))
        elif category == "screenshots":
            results.append(_screenshots(store, metadata))
        elif category == "listing_completeness":
            results.extend(_listing(store, metadata))
        elif category == "artifact_validation":
            results.extend(_artifact(capabilities, artifact_path))
            if _ANDROID_FILE_TYPES.intersection(capabilities.supported_file_types):
                results.extend(_android_manifest(store, permissions, target_sdk))
        else:
            readable = category.replace("_", " ")
            results.append(
                CheckResult(
                    store,
                    category,
                    CheckStatus.WARNING,
                    f"{readable} requires manual verification for {store}.",
                    f"Review the {readable} requirements in the {capabilities.name} developer console.",
                )
            )
    return results


# --------------------------------------------------------------------------- preflight


def _credentials_check(store: str, credentials: Optional[CredentialResolver]) -> CheckResult:
    config = credentials.get_config(store) if credentials is not None else {}
    if not any(config.values()):
        return CheckResult(
            store,
            "credentials",
            CheckStatus.FAIL,
            f"Store '{store}' is not configured.",
            f"Add its credentials under [stores.{store}] in the secrets file.",
        )
    return CheckResult(store, "credentials", CheckStatus.PASS, f"Store '{store}' credentials configured.")


def _build_file_check(capabilities: StoreCapabilities, file_path: Optional[str]) -> CheckResult:
    store = capabilities.store_id
    if not file_path:
        return CheckResult(store, "build_file", CheckStatus.WARNING, "No file_path provided. Skipping file check.")
    path = Path(file_path).expanduser()
    if not path.is_file():
        return CheckResult(store, "build_file", CheckStatus.FAIL, f"File not found: {file_path}")
    file_type = path.suffix.lower().lstrip(".")
    if file_type not in capabilities.supported_file_types:
        accepted = ", ".join(f".{kind}" for kind in capabilities.supported_file_types)
        return CheckResult(store, "build_file", CheckStatus.FAIL, f"File type '.{file_type}' is not supported by {store}. Expected: {accepted}")
    size = path.stat().st_size
    if size > capabilities.max_file_size_bytes:
        return CheckResult(
            store,
            "build_file",
            CheckStatus.FAIL,
            f"File too large ({size / _MB:.1f} MB). {store} accepts at most {capabilities.max_file_size_mb} MB.",
        )
    return CheckResult(store, "build_file", CheckStatus.PASS, f"File OK ({size / _MB:.1f} MB, .{file_type})")


def _environment_check(store: str) -> CheckResult:
    if store != "app_store":
        return CheckResult(store, "environment", CheckStatus.PASS, "No special environment requirements.")
    if sys.platform != "darwin" or shutil.which("xcrun") is None:
        return CheckResult(
            store,
            "environment",
            CheckStatus.WARNING,
            "IPA uploads go through Transporter, which needs macOS with the Xcode command line tools.",
            "Upload the build from a Mac with `xcrun altool`, then use app.release and app.submit here.",
        )
    return CheckResult(store, "environment", CheckStatus.PASS, "macOS with Xcode command line tools detected.")


def _filing_check(capabilities: StoreCapabilities) -> CheckResult:
    if capabilities.requires_icp:
        return CheckResult(
            capabilities.store_id,
            "compliance",
            CheckStatus.WARNING,
            "This store requires an ICP filing. Run compliance.check to review the listing.",
        )
    return CheckResult(capabilities.store_id, "compliance", CheckStatus.PASS, "No regional filing requirements.")


def preflight_checks(capabilities: StoreCapabilities, credentials: Optional[CredentialResolver], file_path: Optional[str]) -> List[CheckResult]:
    store = capabilities.store_id
    return [
        _credentials_check(store, credentials),
        _build_file_check(capabilities, file_path),
        _environment_check(store),
        _filing_check(capabilities),
    ]
