import base64
import hashlib
import json
import logging
import os

import nacl.signing
from nacl.exceptions import CryptoError

from .errors import ConfigError

log = logging.getLogger(__name__)

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def base58_encode(data):
    n = int.from_bytes(data, "big")
    result = []
    while n > 0:
        n, r = divmod(n, 58)
        result.append(BASE58_ALPHABET[r])
    for i, b in enumerate(data):
        if b != 0:
            return "1" * i + "".join(reversed(result))
    return "1" * len(data)


def address_of(verify_key):
    h = hashlib.sha256(verify_key.encode()).digest()
    return "oct" + base58_encode(h)


def create_wallet(path, rpc="https://devnet.octra.com"):
    for _ in range(100):
        new_sk = nacl.signing.SigningKey.generate()
        new_addr = address_of(new_sk.verify_key)
        if len(new_addr) == 47:
            wallet_data = {
                "priv": base64.b64encode(bytes(new_sk)).decode(),
                "addr": new_addr,
                "rpc": rpc,
                "contract": "",
            }
            old_umask = os.umask(0o077)
            try:
                with open(path, 'w') as f:
                    json.dump(wallet_data, f, indent=2)
            finally:
                os.umask(old_umask)
            os.chmod(path, 0o600)
            return path, new_addr
    raise RuntimeError("failed to generate valid address")


async def _auto_approve(summary):
    return True


class Wallet:
    """Session side of the wallet: connection state, account, signing.

    `approver` is an async callable given a short summary of every
    transaction before it is signed; returning False rejects it.
    """

    def __init__(self, priv_b64, addr, approver=None):
        self._priv = priv_b64
        self.addr = addr
        self.sk = None
        self.pub = None
        self.connected = False
        self._approver = approver or _auto_approve
        self._listeners = []

    @property
    def account(self):
        return self.addr if self.connected else None

    def on_change(self, cb):
        self._listeners.append(cb)

    def _emit(self):
        for cb in list(self._listeners):
            cb(self.connected)

    def connect(self):
        if self.connected:
            return
        try:
            self.sk = nacl.signing.SigningKey(base64.b64decode(self._priv))
        except (CryptoError, ValueError, TypeError) as e:
            raise ConfigError(str(e), message="wallet key invalid")
        self.pub = base64.b64encode(self.sk.verify_key.encode()).decode()
        self.connected = True
        log.info("wallet connected: %s", self.addr)
        self._emit()

    def disconnect(self):
        if not self.connected:
            return
        self.connected = False
        self.sk = None
        log.info("wallet disconnected")
        self._emit()

    def sign(self, data):
        if not self.connected:
            raise ConfigError("wallet not connected", message="Connect wallet first")
        if isinstance(data, str):
            data = data.encode()
        return base64.b64encode(self.sk.sign(data).signature).decode()

    def set_approver(self, approver):
        self._approver = approver or _auto_approve

    async def approve(self, summary):
        return bool(await self._approver(summary))
