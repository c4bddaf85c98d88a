import json
import logging
import os
from dataclasses import dataclass

from .errors import ConfigError
from .wallet import create_wallet

log = logging.getLogger(__name__)

DEFAULT_RPC = "https://devnet.octra.com"


@dataclass
class Config:
    priv: str
    addr: str
    rpc: str = DEFAULT_RPC
    contract: str = ""
    wallet_path: str = ""
    tx_timeout: float = 120.0
    poll_interval: float = 1.0
    rpc_timeout: float = 10.0
    success_delay: float = 2.0
    error_delay: float = 3.0
    log_file: str = "voicecmd.log"
    log_level: str = "INFO"

    @property
    def insecure(self):
        return not self.rpc.startswith('https://') and 'localhost' not in self.rpc and '127.0.0.1' not in self.rpc


def wallet_path():
    return os.environ.get("VOICECMD_WALLET") or os.path.join(os.getcwd(), "wallet.json")


def _float_env(name, default):
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_config(path=None, create=True):
    path = path or wallet_path()
    if not os.path.exists(path):
        if not create:
            raise ConfigError(f"{path} not found")
        path, new_addr = create_wallet(path)
        log.info("new wallet created: %s (%s)", new_addr, path)

    try:
        with open(path, 'r') as f:
            d = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"{path}: {e}", message="wallet.json error")

    priv = d.get('priv')
    addr = d.get('addr')
    if not priv or not addr:
        raise ConfigError(f"{path}: priv/addr missing", message="wallet.json not configured")

    rpc = os.environ.get("VOICECMD_RPC") or d.get('rpc', DEFAULT_RPC)
    cfg = Config(
        priv=priv,
        addr=addr,
        rpc=rpc.rstrip('/'),
        contract=os.environ.get("VOICECMD_CONTRACT") or d.get('contract', ''),
        wallet_path=path,
        tx_timeout=_float_env("VOICECMD_TX_TIMEOUT", float(d.get('tx_timeout', 120.0))),
        poll_interval=float(d.get('poll_interval', 1.0)),
        rpc_timeout=float(d.get('rpc_timeout', 10.0)),
        log_file=d.get('log_file', "voicecmd.log"),
        log_level=os.environ.get("VOICECMD_LOG_LEVEL", d.get('log_level', "INFO")).upper(),
    )
    if cfg.rpc.endswith('/rpc'):
        cfg.rpc = cfg.rpc[:-4]
    if cfg.insecure:
        log.warning("using insecure HTTP connection to %s", cfg.rpc)
    return cfg
