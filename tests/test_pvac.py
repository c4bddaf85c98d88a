import pytest

from fakes import make_wallet
from voicecmd.errors import DisclosureFailure, EngineInitFailure, EncryptionFailure
from voicecmd.pvac import DISCLOSURE_PREFIX, INPUT_PROOF_PREFIX, PvacEngine, make_seed, unpack


class StubLib:
    """Stands in for the loaded libpvac: ciphers are 'hfhe_v1|<value>'."""

    HFHE_PREFIX = "hfhe_v1|"

    def __init__(self):
        self.freed = []

    def encrypt(self, value, seed):
        assert len(seed) == 32
        return ("ct", value)

    def encode_cipher(self, ct):
        return f"hfhe_v1|{ct[1]}"

    def decode_cipher(self, s):
        return ("ct", int(s.split("|")[1])) if s.startswith(self.HFHE_PREFIX) else None

    def decrypt_value(self, s):
        ct = self.decode_cipher(s)
        if ct is None:
            raise ValueError("not an hfhe_v1 cipher")
        return ct[1]

    def commit(self, ct):
        return b"\x01" * 32

    def make_range_proof(self, ct, value):
        return ("rp", value)

    def encode_range_proof(self, rp):
        return f"rp_v1|{rp[1]}"

    def make_zero_proof_bound(self, ct, value, blinding):
        return ("zp", value)

    def encode_zero_proof(self, zp):
        return f"zkzp_v2|{zp[1]}"

    def free_cipher(self, h):
        self.freed.append(h)

    free_range_proof = free_zero_proof = free_cipher


class RecordingVerifier:
    def __init__(self):
        self.calls = []

    async def verify(self, encoded, proof):
        self.calls.append((encoded, proof))
        return "receipt"


@pytest.fixture
def engine():
    e = PvacEngine("", rpc=None, wallet=make_wallet())
    e.lib = StubLib()
    yield e
    e.close()


def test_seed_binds_contract_and_account():
    a = make_seed("octC", "octA", "n")
    assert len(a) == 32
    assert a != make_seed("octC2", "octA", "n")
    assert a != make_seed("octC", "octB", "n")


@pytest.mark.asyncio
async def test_encrypt_produces_bound_proof(engine):
    out = await engine.encrypt("octC", "octA", 4)
    assert out.ciphertext == "hfhe_v1|4"
    proof = unpack(INPUT_PROOF_PREFIX, out.proof)
    assert proof["contract"] == "octC"
    assert proof["account"] == "octA"
    assert proof["rp"] == "rp_v1|4"
    assert ("ct", 4) in engine.lib.freed


@pytest.mark.asyncio
async def test_disclosure_goes_through_verifier(engine):
    verifier = RecordingVerifier()
    result = await engine.request_disclosure_proof(["hfhe_v1|3"], "octC", verifier)
    assert result.clear_values == {"hfhe_v1|3": 3}
    assert result.receipt == "receipt"
    encoded, proof = verifier.calls[0]
    assert unpack(DISCLOSURE_PREFIX, encoded) == [3]
    assert unpack(DISCLOSURE_PREFIX, proof)["openings"][0]["zp"] == "zkzp_v2|3"


@pytest.mark.asyncio
async def test_disclosure_of_bad_handle(engine):
    verifier = RecordingVerifier()
    with pytest.raises(DisclosureFailure):
        await engine.request_disclosure_proof(["garbage"], "octC", verifier)
    assert verifier.calls == []


@pytest.mark.asyncio
async def test_uninitialized_engine_refuses_work():
    e = PvacEngine("", rpc=None, wallet=make_wallet())
    assert not e.initialized
    with pytest.raises(EncryptionFailure):
        await e.encrypt("octC", "octA", 1)
    with pytest.raises(DisclosureFailure):
        await e.request_disclosure_proof(["hfhe_v1|1"], "octC", RecordingVerifier())
    e.close()


@pytest.mark.asyncio
async def test_missing_library_is_init_failure(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    e = PvacEngine("AAAA", rpc=None, wallet=make_wallet(), lib_dir=str(tmp_path))
    with pytest.raises(EngineInitFailure):
        await e.initialize()
    assert not e.initialized
    e.close()


@pytest.mark.asyncio
async def test_unexpected_ffi_error_is_encryption_failure(engine):
    def broken(value, seed):
        raise AttributeError("undefined symbol: pvac_enc_value_seeded")

    engine.lib.encrypt = broken
    with pytest.raises(EncryptionFailure) as exc:
        await engine.encrypt("octC", "octA", 1)
    assert isinstance(exc.value.__cause__, AttributeError)
