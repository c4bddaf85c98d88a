import asyncio
import base64

import nacl.signing

from voicecmd.errors import (AlreadyVerified, EngineInitFailure, EncryptionFailure,
                             ReadFailure, TransactionRejectedByUser)
from voicecmd.ledger import Entry, Receipt
from voicecmd.pvac import DisclosureResult, EncryptedInput
from voicecmd.wallet import Wallet, address_of

CONTRACT = "octC0ntract000000000000000000000000000000000000"


def make_wallet(approver=None):
    sk = nacl.signing.SigningKey.generate()
    return Wallet(base64.b64encode(bytes(sk)).decode(), address_of(sk.verify_key), approver)


class FakeTx:
    def __init__(self, ledger, fn, apply=None, error=None):
        self.ledger = ledger
        self.fn = fn
        self.hash = f"{fn}-{len(ledger.calls)}"
        self._apply = apply
        self._error = error

    async def wait(self, timeout=None):
        self.ledger.calls.append(("wait", self.fn))
        await asyncio.sleep(0)
        if self._error is not None:
            raise self._error
        if self._apply is not None:
            self._apply()
        return Receipt(tx_hash=self.hash, epoch=1, timestamp=self.ledger.now)


class FakeLedger:
    """In-memory contract: entries keyed by id, in insertion order."""

    address = CONTRACT

    def __init__(self, account=None, now=1700000000):
        self.account = account
        self.now = now
        self.entries = {}
        self.calls = []
        self.fail_reads = set()
        self.fail_list = False
        self.reject_next = False
        self.fail_next_wait = None
        self.verify_error = None

    def add(self, command_id, creator, value, verified=False, created_at=None):
        self.entries[command_id] = {
            "created_at": created_at or self.now,
            "creator": creator,
            "is_verified": verified,
            "clear_value": value if verified else 0,
            "handle": f"ct:{value}:{command_id}",
        }

    async def list_ids(self):
        self.calls.append(("list_ids",))
        if self.fail_list:
            raise ReadFailure("node unreachable")
        return list(self.entries)

    async def get_entry(self, command_id):
        self.calls.append(("get_entry", command_id))
        if command_id in self.fail_reads or command_id not in self.entries:
            raise ReadFailure(f"cannot read {command_id}")
        e = self.entries[command_id]
        return Entry(
            created_at=e["created_at"],
            creator=e["creator"],
            is_verified=e["is_verified"],
            clear_value=e["clear_value"] if e["is_verified"] else None,
        )

    async def get_ciphertext_handle(self, command_id):
        self.calls.append(("get_ciphertext_handle", command_id))
        return self.entries[command_id]["handle"]

    def _dispatch(self, fn):
        if self.reject_next:
            self.reject_next = False
            raise TransactionRejectedByUser("user rejected transaction")

    async def check_availability(self):
        self.calls.append(("check_availability",))
        self._dispatch("isAvailable")
        return FakeTx(self, "isAvailable")

    async def submit_entry(self, command_id, label, ciphertext, proof, extra1, extra2, note):
        self.calls.append(("submit_entry", command_id, ciphertext))
        self._dispatch("createBusinessData")
        value = int(ciphertext.split(":")[1])

        def apply():
            self.entries[command_id] = {
                "created_at": self.now,
                "creator": self.account,
                "is_verified": False,
                "clear_value": 0,
                "handle": ciphertext,
            }

        error, self.fail_next_wait = self.fail_next_wait, None
        tx = FakeTx(self, "createBusinessData", apply, error)
        tx.value = value
        return tx

    async def submit_disclosure_proof(self, command_id, clear_values_encoded, proof):
        self.calls.append(("submit_disclosure_proof", command_id, clear_values_encoded))
        self._dispatch("verifyDecryption")
        entry = self.entries[command_id]
        if self.verify_error is not None:
            return FakeTx(self, "verifyDecryption", error=self.verify_error)
        if entry["is_verified"]:
            return FakeTx(self, "verifyDecryption", error=AlreadyVerified("Data already verified"))

        def apply():
            entry["is_verified"] = True
            entry["clear_value"] = int(clear_values_encoded)

        return FakeTx(self, "verifyDecryption", apply)

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FakeEngine:
    def __init__(self, fail_init=False, fail_encrypt=False, hold_init=False, encrypt_error=None):
        self.encrypt_error = encrypt_error
        self.initialized = False
        self.fail_init = fail_init
        self.fail_encrypt = fail_encrypt
        self.init_calls = 0
        self.encrypt_calls = 0
        self.proof_calls = 0
        self.release = asyncio.Event()
        if not hold_init:
            self.release.set()

    async def initialize(self):
        self.init_calls += 1
        await self.release.wait()
        if self.fail_init:
            raise EngineInitFailure("libpvac.so not found")
        self.initialized = True

    async def encrypt(self, target_contract, account_id, plain_value):
        self.encrypt_calls += 1
        await asyncio.sleep(0)
        if self.fail_encrypt:
            raise EncryptionFailure("pvac_enc_value_seeded returned null")
        if self.encrypt_error is not None:
            raise self.encrypt_error
        return EncryptedInput(ciphertext=f"ct:{plain_value}:{self.encrypt_calls}",
                              proof=f"proof:{target_contract}:{account_id}")

    async def request_disclosure_proof(self, handles, target_contract, verifier):
        self.proof_calls += 1
        values = {h: int(h.split(":")[1]) for h in handles}
        encoded = str(values[handles[0]])
        receipt = await verifier.verify(encoded, "dsc-proof")
        return DisclosureResult(clear_values=values, receipt=receipt)


