"""
StoreBridge: one publishing protocol across mobile app stores.

The package exposes a uniform adapter contract for app-store backends together
with the request pipeline (API-key validation, quota enforcement, usage
recording and structured logging) that guards every inbound operation.
"""

__version__ = "0.1.0"
