"""
Core runtime pieces shared across StoreBridge.

The adapter registry lives in :mod:`storebridge.core.registry` and service wiring
in :mod:`storebridge.core.context`; import those directly. This module only
re-exports the logging helpers every other module depends on, which keeps it
importable from the adapters themselves.
"""

from .logging import StructuredLogFormatter, configure_logging, get_logger, log_event

__all__ = [
    "StructuredLogFormatter",
    "configure_logging",
    "get_logger",
    "log_event",
]
