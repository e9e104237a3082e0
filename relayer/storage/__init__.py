from .gateway import RelayStateStore
from .settings import StorageSettings

__all__ = [
    "RelayStateStore",
    "StorageSettings",
]
