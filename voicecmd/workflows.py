import logging
import time
from contextlib import contextmanager

from .errors import (AlreadyVerified, DisclosureFailure,
                     InvalidCommand, NotReady, OperationInProgress, ReadFailure,
                     TransactionRejectedByUser, VoiceCommandError)
from .ledger import DisclosureVerifier
from .registry import MAX_VALUE, MIN_VALUE, Command

log = logging.getLogger(__name__)

ENTRY_LABEL = "Voice Command"
ENTRY_NOTE = "Encrypted voice command"


class InFlightGuard:
    """One outstanding invocation per workflow key."""

    def __init__(self):
        self._held = set()

    def busy(self, key):
        return key in self._held

    @contextmanager
    def hold(self, key):
        if key in self._held:
            raise OperationInProgress(f"{key} already running and cannot be cancelled once dispatched")
        self._held.add(key)
        try:
            yield
        finally:
            self._held.discard(key)


def new_command_id(registry, clock=time.time):
    ms = int(clock() * 1000)
    while f"cmd-{ms}" in registry:
        ms += 1
    return f"cmd-{ms}"


class _Workflow:
    def __init__(self, gate, registry, ledger, notifier, guard, contract_address):
        self.gate = gate
        self.registry = registry
        self.ledger = ledger
        self.notifier = notifier
        self.guard = guard
        self.contract_address = contract_address

    async def _reconcile(self):
        try:
            await self.registry.reload()
        except ReadFailure as e:
            log.error("reload failed: %s", e)
            self.notifier.error(e.message)


class SubmissionWorkflow(_Workflow):
    KEY = "submit"

    async def submit(self, plain_value):
        self.gate.require_ready()
        account = self.gate.wallet.account
        if not account:
            raise NotReady("no account")
        if (isinstance(plain_value, bool) or not isinstance(plain_value, int)
                or not MIN_VALUE <= plain_value <= MAX_VALUE):
            raise InvalidCommand(f"command value must be {MIN_VALUE}..{MAX_VALUE}, got {plain_value!r}")

        with self.guard.hold(self.KEY):
            command_id = new_command_id(self.registry)
            self.notifier.pending("Encrypting command...")
            try:
                encrypted = await self.gate.engine.encrypt(self.contract_address, account, plain_value)
                tx = await self.ledger.submit_entry(
                    command_id, ENTRY_LABEL, encrypted.ciphertext, encrypted.proof, 0, 0, ENTRY_NOTE)
                self.notifier.pending("Processing...")
                receipt = await tx.wait()
            except VoiceCommandError as e:
                log.error("submission of %s failed: %s", command_id, e)
                self.notifier.error(e.message if isinstance(e, TransactionRejectedByUser) else "Submission failed")
                raise
            except Exception as e:
                log.exception("submission of %s failed: %s", command_id, e)
                self.notifier.error("Submission failed")
                raise

            command = Command(
                id=command_id,
                created_at=receipt.timestamp or int(time.time()),
                creator=account,
                ciphertext_handle=encrypted.ciphertext,
            )
            try:
                self.registry.add(command)
            except VoiceCommandError as e:
                log.warning("%s landed but is already in the registry: %s", command_id, e)
            log.info("submitted %s in tx %s", command_id, receipt.tx_hash[:16])
            self.notifier.success("Command encrypted!")
            await self._reconcile()
            return self.registry.get(command_id) or command


class DisclosureWorkflow(_Workflow):
    KEY = "disclose"

    async def disclose(self, command_id):
        """Reveal a command's clear value through an on-chain verified proof.

        Returns the value, or None when another verifier got there first;
        in that case the registry has been reloaded and holds the value.
        """
        self.gate.require_ready()
        with self.guard.hold(self.KEY):
            try:
                entry = await self.ledger.get_entry(command_id)
            except ReadFailure as e:
                self.notifier.error(DisclosureFailure.message)
                raise DisclosureFailure(str(e)) from e

            if entry.is_verified:
                self.registry.mark_verified(command_id, entry.clear_value)
                return entry.clear_value

            try:
                handle = await self.ledger.get_ciphertext_handle(command_id)
                self.notifier.pending("Verifying...")
                result = await self.gate.engine.request_disclosure_proof(
                    [handle], self.contract_address, DisclosureVerifier(self.ledger, command_id))
                clear_value = int(result.clear_values[handle])
            except AlreadyVerified:
                log.info("%s was verified concurrently", command_id)
                self.notifier.clear()
                await self._reconcile()
                return None
            except TransactionRejectedByUser as e:
                self.notifier.error(e.message)
                raise
            except (VoiceCommandError, KeyError, TypeError, ValueError) as e:
                log.error("disclosure of %s failed: %s", command_id, e)
                self.notifier.error(DisclosureFailure.message)
                raise DisclosureFailure(str(e)) from e

            self.registry.mark_verified(command_id, clear_value)
            self.notifier.success("Command decrypted!")
            await self._reconcile()
            return clear_value


class AvailabilityCheck(_Workflow):
    KEY = "availability"

    async def check(self):
        self.gate.require_ready()
        with self.guard.hold(self.KEY):
            try:
                tx = await self.ledger.check_availability()
                await tx.wait()
            except VoiceCommandError as e:
                log.error("availability check failed: %s", e)
                self.notifier.error("Check failed")
                raise
            self.notifier.success("FHE system available!")
            return True
