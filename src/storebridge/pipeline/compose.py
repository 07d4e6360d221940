"""Ordered composition of pipeline stages."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence

from .base import CallContext, Handler, OperationSpec, Stage

Invoker = Callable[[Optional[Mapping[str, Any]]], Awaitable[Dict[str, Any]]]


class OperationPipeline:
    """
    Apply ``stages`` around handlers, first stage outermost.

    The standard order is logging, then auth/quota, then the domain handler.
    """

    def __init__(self, stages: Sequence[Stage]) -> None:
        self.stages = tuple(stages)

    def compose(self, spec: OperationSpec, handler: Handler) -> Handler:
        wrapped = handler
        for stage in reversed(self.stages):
            wrapped = stage.wrap(spec, wrapped)
        return wrapped

    def wrap(self, spec: OperationSpec, handler: Handler) -> Invoker:
        """Return a callable taking only the parameter bundle; each call gets a fresh context."""

        composed = self.compose(spec, handler)

        async def invoke(params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
            return await composed(dict(params or {}), CallContext(operation=spec.name))

        return invoke
