import asyncio
import json
import logging
import ssl

import aiohttp

log = logging.getLogger(__name__)


class RpcClient:
    """JSON-RPC 2.0 over a lazily opened aiohttp session.

    `call` never raises for transport problems; it returns `(ok, result)`
    where `result` is the error text when `ok` is False.
    """

    def __init__(self, url, timeout=10):
        self.url = url.rstrip('/')
        self.timeout = timeout
        self._session = None
        self._id = 0

    def _open(self):
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=ssl.create_default_context(), force_close=True)
            self._session = aiohttp.ClientSession(
                connector=connector,
                json_serialize=json.dumps,
            )
        return self._session

    async def call(self, method, params=None, t=None):
        session = self._open()
        self._id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params or [], "id": self._id}
        try:
            async with session.post(f"{self.url}/rpc", json=payload,
                                    timeout=aiohttp.ClientTimeout(total=t or self.timeout)) as resp:
                j = json.loads(await resp.text())
        except asyncio.TimeoutError:
            log.warning("rpc %s timed out", method)
            return False, "timeout"
        except (aiohttp.ClientError, ValueError) as e:
            log.warning("rpc %s failed: %s", method, e)
            return False, str(e)
        if "result" in j:
            return True, j["result"]
        if "error" in j:
            e = j["error"]
            msg = e.get("message", "rpc error") if isinstance(e, dict) else str(e)
            log.debug("rpc %s error: %s", method, msg)
            return False, msg
        return False, "unknown rpc response"

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
