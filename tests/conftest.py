import pytest
import pytest_asyncio

from fakes import FakeEngine, FakeLedger, make_wallet
from voicecmd.app import VoiceApp
from voicecmd.notify import StatusNotifier


@pytest.fixture
def wallet():
    return make_wallet()


@pytest.fixture
def ledger(wallet):
    return FakeLedger(account=wallet.addr)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def notifier():
    n = StatusNotifier(success_delay=0.05, error_delay=0.08)
    yield n
    n.close()


@pytest.fixture
def app(wallet, engine, ledger, notifier):
    return VoiceApp(wallet=wallet, engine=engine, ledger=ledger, notifier=notifier)


@pytest_asyncio.fixture
async def ready_app(app):
    assert await app.connect()
    yield app
    await app.close()
