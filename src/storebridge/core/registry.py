"""
Adapter registry: one adapter instance per store identifier.

The registry is pure indirection. It performs no I/O and holds no network state,
so capability discovery never touches a backend. It is populated once at
startup and only read afterwards.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, MutableMapping, Optional

import httpx

from ..adapters.base import CredentialResolver, StoreAdapter, StoreCapabilities, StoreNotRegisteredError
from ..adapters.retry import DEFAULT_RETRY_POLICY, RetryPolicy
from ..adapters.stores import ADAPTER_FACTORIES


class AdapterRegistry:
    """In-memory mapping of store identifiers to :class:`StoreAdapter` instances."""

    def __init__(self) -> None:
        self._adapters: MutableMapping[str, StoreAdapter] = {}

    def register(self, store_id: str, adapter: StoreAdapter) -> None:
        """Register or overwrite the adapter for ``store_id``."""

        self._adapters[store_id] = adapter

    def unregister(self, store_id: str) -> None:
        self._adapters.pop(store_id, None)

    def get(self, store_id: str) -> Optional[StoreAdapter]:
        """Retrieve an adapter if present; ``None`` means not registered."""

        return self._adapters.get(store_id)

    def require(self, store_id: str) -> StoreAdapter:
        """Retrieve an adapter or raise :class:`StoreNotRegisteredError`."""

        adapter = self.get(store_id)
        if adapter is None:
            known = ", ".join(self.list_ids()) or "none"
            raise StoreNotRegisteredError(f"Store '{store_id}' is not registered. Known stores: {known}.")
        return adapter

    def list_ids(self) -> List[str]:
        return list(self._adapters)

    def capabilities_of(self, store_id: str) -> Optional[StoreCapabilities]:
        adapter = self.get(store_id)
        return adapter.capabilities() if adapter is not None else None

    def all_capabilities(self) -> List[StoreCapabilities]:
        """Aggregate descriptors of every registered adapter, in registration order."""

        return [adapter.capabilities() for adapter in self._adapters.values()]

    def __contains__(self, store_id: object) -> bool:
        return store_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)

    @classmethod
    def create_default(
        cls,
        credentials: CredentialResolver,
        *,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        store_ids: Optional[Iterable[str]] = None,
    ) -> "AdapterRegistry":
        """
        Wire one adapter per known store against a single shared resolver.

        Parameters
        ----------
        credentials:
            Resolver every adapter consults before each backend call.
        retry_policy:
            Retry ceiling and backoff applied by every adapter.
        transport:
            Optional :mod:`httpx` transport injected into every client (tests).
        store_ids:
            Restrict registration to these identifiers. Unknown ids raise
            :class:`StoreNotRegisteredError`.
        """

        selected: Dict[str, Callable[..., StoreAdapter]] = dict(ADAPTER_FACTORIES)
        if store_ids is not None:
            wanted = list(store_ids)
            unknown = [store_id for store_id in wanted if store_id not in ADAPTER_FACTORIES]
            if unknown:
                raise StoreNotRegisteredError(f"No adapter available for: {', '.join(unknown)}.")
            selected = {store_id: ADAPTER_FACTORIES[store_id] for store_id in wanted}

        registry = cls()
        for store_id, factory in selected.items():
            registry.register(store_id, factory(credentials, retry_policy=retry_policy, transport=transport))
        return registry
