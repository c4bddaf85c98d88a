import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .errors import (ReadFailure, TransactionFailed, TransactionRejectedByUser,
                     classify_ledger_error, extract_error)

log = logging.getLogger(__name__)

FN_LIST_IDS = "getAllBusinessIds"
FN_GET_ENTRY = "getBusinessData"
FN_GET_HANDLE = "getEncryptedValue"
FN_SUBMIT_ENTRY = "createBusinessData"
FN_VERIFY = "verifyDecryption"
FN_AVAILABLE = "isAvailable"


@dataclass(frozen=True)
class Entry:
    created_at: int
    creator: str
    is_verified: bool
    clear_value: Optional[int] = None

    @classmethod
    def from_result(cls, d):
        verified = bool(d.get("isVerified", False))
        try:
            value = int(d.get("decryptedValue") or 0)
            created_at = int(d["timestamp"])
        except (KeyError, TypeError, ValueError) as e:
            raise ReadFailure(f"malformed entry {d!r}: {e}") from e
        return cls(
            created_at=created_at,
            creator=str(d.get("creator", "")),
            is_verified=verified,
            clear_value=value if verified else None,
        )


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    epoch: int
    timestamp: int = 0
    result: dict = field(default_factory=dict)


class Transaction:
    """A dispatched contract call. `wait()` resolves at finality."""

    def __init__(self, contract, tx_hash, fn):
        self._contract = contract
        self.hash = tx_hash
        self.fn = fn
        self._receipt = None

    def __repr__(self):
        return f"<Transaction {self.fn} {self.hash[:16]}>"

    async def wait(self, timeout=None):
        if self._receipt is not None:
            return self._receipt
        rpc = self._contract.rpc
        loop = asyncio.get_running_loop()
        timeout = self._contract.tx_timeout if timeout is None else timeout
        deadline = loop.time() + timeout
        while True:
            ok, p = await rpc.call("octra_transaction", [self.hash], 5)
            if ok and isinstance(p, dict):
                status = p.get("status", "")
                if status in ("rejected", "failed"):
                    reason = extract_error(p, fallback=f"transaction {status}")
                    log.warning("tx %s %s: %s", self.hash[:16], status, reason)
                    raise classify_ledger_error(reason)
                if p.get("epoch"):
                    self._receipt = Receipt(
                        tx_hash=self.hash,
                        epoch=int(p["epoch"]),
                        timestamp=int(p.get("timestamp", 0)),
                        result=p.get("result") or {},
                    )
                    log.info("tx %s final in epoch %s", self.hash[:16], self._receipt.epoch)
                    return self._receipt
            if loop.time() >= deadline:
                raise TransactionFailed(f"timeout waiting for {self.hash} after {timeout:.0f}s")
            await asyncio.sleep(self._contract.poll_interval)


class VoiceCommandContract:
    """Ledger contract collaborator: view calls and signed call transactions."""

    def __init__(self, rpc, wallet, address, tx_timeout=120.0, poll_interval=1.0):
        self.rpc = rpc
        self.wallet = wallet
        self.address = address
        self.tx_timeout = tx_timeout
        self.poll_interval = poll_interval

    async def _view(self, fn, *args):
        ok, result = await self.rpc.call("contract_call", [self.address, fn, list(args)])
        if not ok:
            raise ReadFailure(f"{fn}({', '.join(map(str, args))}): {result}")
        return result

    async def list_ids(self):
        result = await self._view(FN_LIST_IDS)
        if not isinstance(result, list):
            raise ReadFailure(f"{FN_LIST_IDS}: unexpected result {result!r}")
        return [str(i) for i in result]

    async def get_entry(self, command_id):
        result = await self._view(FN_GET_ENTRY, command_id)
        if not isinstance(result, dict):
            raise ReadFailure(f"{FN_GET_ENTRY}({command_id}): unexpected result {result!r}")
        return Entry.from_result(result)

    async def get_ciphertext_handle(self, command_id):
        result = await self._view(FN_GET_HANDLE, command_id)
        if not result:
            raise ReadFailure(f"{FN_GET_HANDLE}({command_id}): empty handle")
        return str(result)

    async def _next_nonce(self):
        addr = self.wallet.account
        results = await asyncio.gather(
            self.rpc.call("octra_balance", [addr]),
            self.rpc.call("pool_view", [], 5),
        )
        (ok_b, bal), (ok_p, pool) = results
        n = int(bal.get("nonce", 0)) if ok_b and isinstance(bal, dict) else 0
        if ok_p and isinstance(pool, dict):
            our = [tx for tx in pool.get("transactions", []) if tx.get("from") == addr]
            if our:
                n = max(n, max(int(tx.get("nonce", 0)) for tx in our))
        return n + 1

    def _sign(self, fn, args, nonce, encrypted_data=None):
        tx = {
            "from": self.wallet.account,
            "to_": self.address,
            "amount": "0",
            "nonce": int(nonce),
            "ou": "10000",
            "timestamp": time.time(),
            "op_type": "call",
            "message": json.dumps({"fn": fn, "args": args}, separators=(",", ":")),
        }
        sign_fields = {k: tx[k] for k in ("from", "to_", "amount", "nonce", "ou", "timestamp", "op_type")}
        if encrypted_data:
            sign_fields["encrypted_data"] = encrypted_data
            tx["encrypted_data"] = encrypted_data
        sign_fields["message"] = tx["message"]
        bl = json.dumps(sign_fields, separators=(",", ":"))
        tx.update(signature=self.wallet.sign(bl), public_key=self.wallet.pub)
        return tx, hashlib.sha256(bl.encode()).hexdigest()

    async def _send(self, fn, args, encrypted_data=None, summary=None):
        if not await self.wallet.approve(summary or fn):
            raise TransactionRejectedByUser("user rejected transaction")
        nonce = await self._next_nonce()
        tx, local_hash = self._sign(fn, args, nonce, encrypted_data)
        ok, result = await self.rpc.call("octra_submit", [tx], 30)
        if not ok:
            log.warning("%s submit failed: %s", fn, result)
            raise classify_ledger_error(result if isinstance(result, str) else json.dumps(result))
        tx_hash = result.get("tx_hash", "") if isinstance(result, dict) else ""
        log.info("%s dispatched: %s", fn, tx_hash or local_hash)
        return Transaction(self, tx_hash or local_hash, fn)

    async def check_availability(self):
        return await self._send(FN_AVAILABLE, [], summary="check FHE availability")

    async def submit_entry(self, command_id, label, ciphertext, proof, extra1, extra2, note):
        return await self._send(
            FN_SUBMIT_ENTRY,
            [command_id, label, proof, int(extra1), int(extra2), note],
            encrypted_data=ciphertext,
            summary=f"submit encrypted command {command_id}",
        )

    async def submit_disclosure_proof(self, command_id, clear_values_encoded, proof):
        return await self._send(
            FN_VERIFY,
            [command_id, clear_values_encoded, proof],
            summary=f"verify decryption of {command_id}",
        )


class DisclosureVerifier:
    """Submits a disclosure proof for one command and waits for finality.

    Handed to the engine's `request_disclosure_proof` so the engine can
    reach the ledger without holding a contract reference itself.
    """

    def __init__(self, contract, command_id):
        self.contract = contract
        self.command_id = command_id

    async def verify(self, clear_values_encoded, proof):
        tx = await self.contract.submit_disclosure_proof(self.command_id, clear_values_encoded, proof)
        return await tx.wait()
