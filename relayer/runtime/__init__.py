from .logging import setup_logger
from .loop import bootstrap_dependencies, run_relay_loop, wait_with_stop
from .settings import RelayerIdentities, RelayerSettings, load_keypair

__all__ = [
    "RelayerIdentities",
    "RelayerSettings",
    "bootstrap_dependencies",
    "load_keypair",
    "run_relay_loop",
    "setup_logger",
    "wait_with_stop",
]
