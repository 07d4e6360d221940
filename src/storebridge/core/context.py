"""
Service wiring shared by the CLI and any other caller of the gateway.

:class:`GatewayContext` constructs every long-lived service exactly once and
hands them to each other by reference: the credential resolver and adapter
registry, the credential/usage store, key, quota and usage services, and the
request pipeline wrapping every operation handler. There are no module-level
singletons; two contexts never share state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from logging import LoggerAdapter
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from ..adapters.base import CredentialResolver, InvalidParamsError
from ..adapters.credentials import StaticCredentialResolver
from ..adapters.retry import RetryPolicy
from ..auth.keys import ApiKeyManager
from ..auth.records import CredentialRecord, Plan, utcnow
from ..auth.store import CredentialStore, InMemoryCredentialStore
from ..config import SecretsBundle, load_secrets
from ..pipeline import ApiKeyStage, Invoker, LoggingStage, OperationPipeline, OperationSpec
from ..services.operations import CATALOGUE, StoreOperations
from ..usage.quota import QuotaManager, build_plan_limits
from ..usage.recorder import UsageRecorder
from .logging import get_logger
from .registry import AdapterRegistry


def _seed_records(secrets: SecretsBundle, *, window: timedelta, now: datetime, logger: LoggerAdapter) -> List[CredentialRecord]:
    records: List[CredentialRecord] = []
    for entry in secrets.api_keys:
        try:
            plan = Plan(entry.plan)
        except ValueError:
            logger.warning("Skipping provisioned key with unknown plan", extra={"credential_id": entry.key_id, "plan": entry.plan})
            continue
        records.append(
            CredentialRecord(
                key_id=entry.key_id,
                key_hash=entry.key_hash,
                plan=plan,
                quota_resets_at=now + window,
                user_id=entry.user_id,
                email=entry.email,
                created_at=now,
                is_active=entry.active,
            )
        )
    return records


@dataclass(slots=True)
class GatewayContext:
    """
    Every service a call needs, built once at startup.

    Attributes
    ----------
    secrets:
        Parsed configuration the services were built from.
    registry:
        Adapter per store identifier, sharing :attr:`credentials`.
    store:
        Credential and usage persistence; the only shared mutable resource.
    pipeline:
        Logging stage outermost, then the API key/quota stage.
    handlers:
        Operation name to pipeline-wrapped invoker.
    """

    secrets: SecretsBundle
    credentials: CredentialResolver
    registry: AdapterRegistry
    store: CredentialStore
    keys: ApiKeyManager
    quota: QuotaManager
    usage: UsageRecorder
    pipeline: OperationPipeline
    operations: StoreOperations
    specs: Dict[str, OperationSpec] = field(default_factory=dict)
    handlers: Dict[str, Invoker] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.handlers:
            raw_handlers = self.operations.handlers()
            for spec in CATALOGUE:
                self.specs[spec.name] = spec
                self.handlers[spec.name] = self.pipeline.wrap(spec, raw_handlers[spec.name])

    @classmethod
    def build_default(
        cls,
        secrets: Optional[SecretsBundle] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        registry: Optional[AdapterRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> "GatewayContext":
        """
        Construct a context using sensible defaults.

        Parameters
        ----------
        secrets:
            Preloaded secret bundle. When omitted the helper calls
            :func:`load_secrets`.
        clock:
            Source of the current UTC time for keys, quotas and usage events.
        transport:
            Optional :mod:`httpx` transport shared by every store client.
        registry:
            Prebuilt adapter registry, replacing the default eight backends.
        retry_policy:
            Overrides the ``[retry]`` settings.
        """

        resolved_secrets = secrets or load_secrets(strict=False)
        now = clock or utcnow
        logger = get_logger(__name__)

        credentials = StaticCredentialResolver.from_secrets(resolved_secrets)
        retry = resolved_secrets.retry
        policy = retry_policy or RetryPolicy(
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay,
            max_delay=retry.max_delay,
            jitter=retry.jitter,
        )
        resolved_registry = registry or AdapterRegistry.create_default(credentials, retry_policy=policy, transport=transport)

        window = timedelta(days=resolved_secrets.quota.window_days)
        store = InMemoryCredentialStore(_seed_records(resolved_secrets, window=window, now=now(), logger=logger))
        keys = ApiKeyManager(store, quota_window=window, clock=now)
        quota = QuotaManager(store, window=window, plan_limits=build_plan_limits(resolved_secrets.quota.plan_overrides), clock=now)
        usage = UsageRecorder(store, clock=now)
        pipeline = OperationPipeline(
            [
                LoggingStage(),
                ApiKeyStage(keys, quota, usage, fallback_api_key=resolved_secrets.fallback_api_key),
            ]
        )
        return cls(
            secrets=resolved_secrets,
            credentials=credentials,
            registry=resolved_registry,
            store=store,
            keys=keys,
            quota=quota,
            usage=usage,
            pipeline=pipeline,
            operations=StoreOperations(resolved_registry, credentials=credentials),
        )

    def operation_names(self) -> List[str]:
        return list(self.handlers)

    async def invoke(self, operation: str, params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Dispatch ``operation`` through the pipeline."""

        handler = self.handlers.get(operation)
        if handler is None:
            raise InvalidParamsError(f"Unknown operation '{operation}'. Known operations: {', '.join(self.handlers)}.")
        return await handler(params)
