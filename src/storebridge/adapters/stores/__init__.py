"""Concrete store adapters, keyed by backend identifier."""

from typing import Callable, Dict

from ..base import StoreAdapter
from .app_store import AppStoreAdapter, AppStoreClient
from .base import BaseStoreClient
from .google_play import GooglePlayAdapter, GooglePlayClient
from .honor import HonorAdapter, HonorClient
from .huawei_agc import AppGalleryClient, AppGalleryStyleAdapter, HuaweiAGCAdapter, HuaweiAGCClient
from .oppo import OppoAdapter, OppoClient
from .pgyer import PgyerAdapter, PgyerClient
from .vivo import VivoAdapter, VivoClient
from .xiaomi import XiaomiAdapter, XiaomiClient

ADAPTER_FACTORIES: Dict[str, Callable[..., StoreAdapter]] = {
    "google_play": GooglePlayAdapter.create,
    "app_store": AppStoreAdapter.create,
    "huawei_agc": HuaweiAGCAdapter.create,
    "pgyer": PgyerAdapter.create,
    "oppo": OppoAdapter.create,
    "honor": HonorAdapter.create,
    "xiaomi": XiaomiAdapter.create,
    "vivo": VivoAdapter.create,
}

__all__ = [
    "ADAPTER_FACTORIES",
    "AppGalleryClient",
    "AppGalleryStyleAdapter",
    "AppStoreAdapter",
    "AppStoreClient",
    "BaseStoreClient",
    "GooglePlayAdapter",
    "GooglePlayClient",
    "HonorAdapter",
    "HonorClient",
    "HuaweiAGCAdapter",
    "HuaweiAGCClient",
    "OppoAdapter",
    "OppoClient",
    "PgyerAdapter",
    "PgyerClient",
    "VivoAdapter",
    "VivoClient",
    "XiaomiAdapter",
    "XiaomiClient",
]
