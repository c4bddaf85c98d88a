import asyncio
import logging
from dataclasses import dataclass

log = logging.getLogger(__name__)

PENDING = "pending"
SUCCESS = "success"
ERROR = "error"


@dataclass(frozen=True)
class Status:
    kind: str
    message: str


class StatusNotifier:
    """Transient pending/success/error status for the UI.

    Terminal states clear themselves after a delay; pending stays until
    replaced. Every transition cancels the clear scheduled before it, and
    `close()` cancels whatever is still scheduled.
    """

    def __init__(self, success_delay=2.0, error_delay=3.0, loop=None):
        self.success_delay = success_delay
        self.error_delay = error_delay
        self._loop = loop
        self._handle = None
        self._closed = False
        self._listeners = []
        self.status = None

    def on_change(self, cb):
        self._listeners.append(cb)

    def _set(self, status, delay=None):
        if self._closed:
            return
        self._cancel()
        self.status = status
        if status is not None:
            log.debug("status %s: %s", status.kind, status.message)
            if delay is not None:
                loop = self._loop or asyncio.get_running_loop()
                self._handle = loop.call_later(delay, self._expire)
        for cb in list(self._listeners):
            cb(status)

    def _cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _expire(self):
        self._handle = None
        self._set(None)

    def pending(self, message):
        self._set(Status(PENDING, message))

    def success(self, message):
        self._set(Status(SUCCESS, message), self.success_delay)

    def error(self, message):
        self._set(Status(ERROR, message), self.error_delay)

    def clear(self):
        self._set(None)

    @property
    def scheduled(self):
        return self._handle is not None

    def close(self):
        self._cancel()
        self.status = None
        self._closed = True
        self._listeners.clear()
