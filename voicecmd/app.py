import logging

from .errors import ConfigError, ReadFailure
from .gate import ReadinessGate
from .ledger import VoiceCommandContract
from .notify import StatusNotifier
from .pvac import PvacEngine
from .registry import CommandRegistry
from .rpc import RpcClient
from .wallet import Wallet
from .workflows import (AvailabilityCheck, DisclosureWorkflow, InFlightGuard,
                        SubmissionWorkflow)

log = logging.getLogger(__name__)


class VoiceApp:
    """One client session: collaborators, gate, registry and workflows.

    Collaborators can be injected; anything not given is built from `cfg`.
    """

    def __init__(self, cfg=None, wallet=None, engine=None, ledger=None, rpc=None, notifier=None):
        if cfg is None and (wallet is None or engine is None or ledger is None):
            raise ConfigError("config required when collaborators are not injected")
        self.cfg = cfg
        self.rpc = rpc or (RpcClient(cfg.rpc, cfg.rpc_timeout) if cfg else None)
        self.wallet = wallet or Wallet(cfg.priv, cfg.addr)
        self.engine = engine or PvacEngine(cfg.priv, self.rpc, self.wallet)
        if ledger is None:
            if not cfg.contract:
                raise ConfigError("contract address missing", message="wallet.json missing contract")
            ledger = VoiceCommandContract(self.rpc, self.wallet, cfg.contract,
                                          tx_timeout=cfg.tx_timeout, poll_interval=cfg.poll_interval)
        self.ledger = ledger
        self.contract_address = getattr(ledger, "address", cfg.contract if cfg else "")
        if notifier is None:
            notifier = StatusNotifier(cfg.success_delay, cfg.error_delay) if cfg else StatusNotifier()
        self.notifier = notifier
        self.gate = ReadinessGate(self.wallet, self.engine, self.notifier)
        self.registry = CommandRegistry(self.ledger)
        self.guard = InFlightGuard()
        parts = (self.gate, self.registry, self.ledger, self.notifier, self.guard, self.contract_address)
        self._submission = SubmissionWorkflow(*parts)
        self._disclosure = DisclosureWorkflow(*parts)
        self._availability = AvailabilityCheck(*parts)

    @property
    def commands(self):
        return self.registry.commands

    @property
    def stats(self):
        return self.registry.stats

    async def connect(self):
        """Connect the wallet, wait for the engine and load the commands."""
        self.wallet.connect()
        ready = await self.gate.wait_ready()
        if ready:
            await self.refresh()
        else:
            log.warning("connected but engine not ready: %s", self.gate.last_error)
        return ready

    def disconnect(self):
        self.wallet.disconnect()

    async def refresh(self):
        self.gate.require_ready()
        with self.guard.hold("reload"):
            try:
                return await self.registry.reload()
            except ReadFailure as e:
                self.notifier.error(e.message)
                raise

    async def submit(self, plain_value):
        return await self._submission.submit(plain_value)

    async def disclose(self, command_id):
        return await self._disclosure.disclose(command_id)

    async def check_availability(self):
        return await self._availability.check()

    async def close(self):
        self.notifier.close()
        if hasattr(self.engine, "close"):
            self.engine.close()
        if self.rpc is not None:
            await self.rpc.close()
