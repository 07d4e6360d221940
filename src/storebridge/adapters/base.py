"""
Base protocols and value types for app-store adapters.

Adapters translate the uniform publishing contract into one vendor's API. They
never hold secrets: each operation asks the shared :class:`CredentialResolver`
for what it needs right before the call. Anything an adapter's backend cannot
do is answered with a result whose ``success`` is ``False`` and ``unsupported``
is ``True``; only genuine execution failures are raised, as
:class:`StoreAPIError`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, TypeVar

ResultT = TypeVar("ResultT", bound="OperationResult")


class AdapterError(RuntimeError):
    """Raised when an adapter encounters a non-recoverable error."""


class StoreAPIError(AdapterError):
    """
    Classified failure raised by a store backend call.

    Parameters
    ----------
    message:
        Human-readable description.
    store_id:
        Backend that produced the failure.
    code:
        Stable machine-readable code (``TIMEOUT``, ``UPLOAD_FAILED`` ...).
    status_code:
        HTTP status when the failure came from a response.
    retryable:
        Whether repeating the call may succeed. This flag is the only signal the
        retry policy consults.
    """

    def __init__(
        self,
        message: str,
        *,
        store_id: str,
        code: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.store_id = store_id
        self.code = code
        self.status_code = status_code
        self.retryable = retryable

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.message,
            "code": self.code,
            "store": self.store_id,
            "retryable": self.retryable,
        }
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload


class CredentialError(AdapterError):
    """Raised by a credential resolver when a store has no usable credentials."""


class StoreNotRegisteredError(AdapterError):
    """Raised when an operation targets a store the registry does not hold."""


class InvalidParamsError(AdapterError):
    """Raised when an operation's parameter bundle is missing or malformed."""


class AuthMethod(str, Enum):
    """How a backend authenticates requests."""

    OAUTH2 = "oauth2"
    JWT = "jwt"
    API_KEY = "apikey"
    RSA = "rsa"
    HMAC = "hmac"


_PLATFORM_BY_FILE_TYPE = {"apk": "android", "aab": "android", "ipa": "ios", "hap": "harmonyos"}


@dataclass(frozen=True, slots=True)
class StoreCapabilities:
    """
    Immutable feature matrix for one backend.

    Attributes
    ----------
    store_id:
        Identifier used for registry lookups.
    name:
        Display name.
    supported_file_types:
        Artifact extensions the backend accepts (without the dot).
    supports_upload, supports_listing, supports_review, supports_analytics, supports_rollback, supports_staged_rollout:
        Operation support flags.
    max_file_size_mb:
        Largest artifact the backend accepts.
    auth_method:
        Authentication scheme tag.
    requires_icp:
        Whether publishing requires a regional compliance filing.
    """

    store_id: str
    name: str
    supported_file_types: tuple[str, ...]
    supports_upload: bool
    supports_listing: bool
    supports_review: bool
    supports_analytics: bool
    supports_rollback: bool
    supports_staged_rollout: bool
    max_file_size_mb: int
    auth_method: AuthMethod
    requires_icp: bool = False

    @property
    def platforms(self) -> tuple[str, ...]:
        seen: List[str] = []
        for file_type in self.supported_file_types:
            platform = _PLATFORM_BY_FILE_TYPE.get(file_type)
            if platform and platform not in seen:
                seen.append(platform)
        return tuple(seen)

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["supported_file_types"] = list(self.supported_file_types)
        payload["auth_method"] = self.auth_method.value
        payload["platforms"] = list(self.platforms)
        return payload


# --------------------------------------------------------------------------- params


@dataclass(slots=True)
class UploadParams:
    app_id: str
    file_path: str
    file_type: str
    changelog: Optional[str] = None


@dataclass(slots=True)
class ReleaseParams:
    app_id: str
    version_name: str
    build_id: Optional[str] = None
    track: str = "production"
    release_notes: Mapping[str, str] = field(default_factory=dict)
    rollout_percentage: Optional[float] = None


@dataclass(slots=True)
class ListingParams:
    app_id: str
    language: str = "en-US"
    title: Optional[str] = None
    short_description: Optional[str] = None
    full_description: Optional[str] = None
    keywords: Optional[str] = None


@dataclass(slots=True)
class GetListingParams:
    app_id: str
    language: str = "en-US"


@dataclass(slots=True)
class SubmitParams:
    app_id: str
    release_id: Optional[str] = None


@dataclass(slots=True)
class StatusParams:
    app_id: str
    release_id: Optional[str] = None


@dataclass(slots=True)
class AnalyticsParams:
    app_id: str
    start_date: str
    end_date: str
    metrics: Sequence[str] = field(default_factory=tuple)


@dataclass(slots=True)
class ReviewListParams:
    app_id: str
    limit: int = 20
    page_token: Optional[str] = None


@dataclass(slots=True)
class RollbackParams:
    app_id: str
    track: str = "production"
    release_id: Optional[str] = None


@dataclass(slots=True)
class PromoteReleaseParams:
    app_id: str
    source_track: str
    target_track: str
    rollout_percentage: Optional[float] = None


@dataclass(slots=True)
class SetRolloutParams:
    app_id: str
    track: str
    percentage: float


@dataclass(slots=True)
class ResumeReleaseParams:
    app_id: str
    track: str = "production"


# --------------------------------------------------------------------------- results


@dataclass(slots=True, kw_only=True)
class OperationResult:
    """
    Common shape for every adapter outcome.

    ``unsupported`` separates "this backend does not do that" from "the backend
    declined the request"; both carry ``success=False``.
    """

    success: bool
    message: str
    unsupported: bool = False

    @classmethod
    def not_supported(cls: type[ResultT], message: str, **fields: Any) -> ResultT:
        return cls(success=False, message=message, unsupported=True, **fields)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True, kw_only=True)
class UploadResult(OperationResult):
    build_id: Optional[str] = None
    store_ref: Optional[str] = None
    url: Optional[str] = None


@dataclass(slots=True, kw_only=True)
class ReleaseResult(OperationResult):
    release_id: Optional[str] = None
    status: Optional[str] = None


@dataclass(slots=True, kw_only=True)
class ListingResult(OperationResult):
    pass


@dataclass(slots=True, kw_only=True)
class ListingInfo(OperationResult):
    language: Optional[str] = None
    title: Optional[str] = None
    short_description: Optional[str] = None
    full_description: Optional[str] = None


@dataclass(slots=True, kw_only=True)
class SubmissionResult(OperationResult):
    submission_id: Optional[str] = None


@dataclass(slots=True, kw_only=True)
class StatusResult(OperationResult):
    review_status: Optional[str] = None
    live_status: Optional[str] = None
    version: Optional[str] = None
    rollout_percentage: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, kw_only=True)
class AnalyticsResult(OperationResult):
    metrics: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ReviewItem:
    review_id: str
    rating: Optional[int] = None
    author: Optional[str] = None
    text: Optional[str] = None
    language: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(slots=True, kw_only=True)
class ReviewListResult(OperationResult):
    reviews: List[ReviewItem] = field(default_factory=list)
    next_page_token: Optional[str] = None


@dataclass(slots=True, kw_only=True)
class RollbackResult(OperationResult):
    pass


@dataclass(slots=True, kw_only=True)
class ReleaseControlResult(OperationResult):
    track: Optional[str] = None
    rollout_percentage: Optional[float] = None


# --------------------------------------------------------------------------- protocols


class CredentialResolver(Protocol):
    """Resolves per-store secrets. Implementations live outside the adapters."""

    async def get_token(self, store_id: str) -> str:
        """Return a bearer token or API key for ``store_id``."""

    def get_config(self, store_id: str) -> Mapping[str, str]:
        """Return the raw key/value credential bundle for ``store_id``."""


class StoreAdapter(Protocol):
    """
    Protocol implemented by all store adapters.

    The release-management extras (``get_listing``, ``promote_release``,
    ``set_rollout``, ``resume_release``) default to an unsupported result so
    adapters only override what their backend offers.
    """

    @property
    def store_id(self) -> str:
        """Identifier matching the registry key."""

    def capabilities(self) -> StoreCapabilities:
        """Return the static capability descriptor. Must not perform I/O."""

    async def upload_build(self, params: UploadParams) -> UploadResult: ...

    async def create_release(self, params: ReleaseParams) -> ReleaseResult: ...

    async def update_listing(self, params: ListingParams) -> ListingResult: ...

    async def submit_for_review(self, params: SubmitParams) -> SubmissionResult: ...

    async def get_status(self, params: StatusParams) -> StatusResult: ...

    async def get_analytics(self, params: AnalyticsParams) -> AnalyticsResult: ...

    async def list_reviews(self, params: ReviewListParams) -> ReviewListResult: ...

    async def rollback(self, params: RollbackParams) -> RollbackResult: ...

    async def get_listing(self, params: GetListingParams) -> ListingInfo:
        return ListingInfo.not_supported(f"{self.capabilities().name} does not expose listing reads.")

    async def promote_release(self, params: PromoteReleaseParams) -> ReleaseControlResult:
        return ReleaseControlResult.not_supported(f"{self.capabilities().name} does not support track promotion.")

    async def set_rollout(self, params: SetRolloutParams) -> ReleaseControlResult:
        return ReleaseControlResult.not_supported(f"{self.capabilities().name} does not support staged rollout.")

    async def resume_release(self, params: ResumeReleaseParams) -> ReleaseControlResult:
        return ReleaseControlResult.not_supported(f"{self.capabilities().name} does not support resuming releases.")
