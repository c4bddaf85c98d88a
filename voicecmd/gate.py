import asyncio
import enum
import logging

from .errors import EngineInitFailure, NotReady

log = logging.getLogger(__name__)


class GateState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    READY = "ready"


class ReadinessGate:
    """Wallet connected and engine initialized, in that order.

    At most one engine initialization is outstanding. A failed attempt
    is reported once and not retried until `initialize()` is called
    again or the wallet reconnects.
    """

    def __init__(self, wallet, engine, notifier=None):
        self.wallet = wallet
        self.engine = engine
        self.notifier = notifier
        self.state = GateState.DISCONNECTED
        self.last_error = None
        self._task = None
        self._failed = False
        wallet.on_change(self._on_connection)

    @property
    def ready(self):
        return self.state is GateState.READY

    def _on_connection(self, connected):
        if not connected:
            self.state = GateState.DISCONNECTED
            self._failed = False
            return
        if self.state is GateState.DISCONNECTED:
            self.state = GateState.CONNECTED
        if not self._failed:
            self._start()

    def _start(self):
        if self.state is GateState.DISCONNECTED:
            return None
        if self.engine.initialized:
            self.state = GateState.READY
            return None
        if self._task is not None and not self._task.done():
            return self._task
        self.state = GateState.INITIALIZING
        self._task = asyncio.get_running_loop().create_task(self._initialize())
        return self._task

    async def _initialize(self):
        try:
            await self.engine.initialize()
        except EngineInitFailure as e:
            self._fail(e)
            return False
        except Exception as e:
            self._fail(EngineInitFailure(str(e)))
            return False
        if not self.wallet.connected:
            self.state = GateState.DISCONNECTED
            return False
        self.state = GateState.READY
        self.last_error = None
        log.info("readiness gate open")
        return True

    def _fail(self, err):
        log.error("engine initialization failed: %s", err.detail or err)
        self.last_error = err
        self._failed = True
        if self.state is not GateState.DISCONNECTED:
            self.state = GateState.CONNECTED
        if self.notifier is not None:
            self.notifier.error(err.message)

    async def initialize(self):
        """Explicitly (re)start initialization and wait for the outcome."""
        self._failed = False
        task = self._start()
        if task is not None:
            await task
        return self.ready

    async def wait_ready(self):
        if self._task is not None and not self._task.done():
            await self._task
        return self.ready

    def require_ready(self):
        if self.state is not GateState.READY:
            raise NotReady(f"gate is {self.state.value}")
