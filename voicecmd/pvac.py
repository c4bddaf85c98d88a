import asyncio
import base64
import ctypes
import hashlib
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .errors import DisclosureFailure, EncryptionFailure, EngineInitFailure

log = logging.getLogger(__name__)

INPUT_PROOF_PREFIX = "inp_v1|"
DISCLOSURE_PREFIX = "dsc_v1|"


@dataclass(frozen=True)
class EncryptedInput:
    ciphertext: str
    proof: str


@dataclass(frozen=True)
class DisclosureResult:
    clear_values: dict = field(default_factory=dict)
    receipt: object = None


class PvacLib:
    HFHE_PREFIX = "hfhe_v1|"
    RP_PREFIX = "rp_v1|"
    ZKZP_PREFIX = "zkzp_v2|"

    def __init__(self, wallet_priv_b64, lib_dir=None):
        _dir = lib_dir or os.path.dirname(os.path.abspath(__file__))
        _ext = 'dylib' if sys.platform == 'darwin' else 'so'
        lib_paths = [
            os.path.join(_dir, 'pvac', 'build', f'libpvac.{_ext}'),
            os.path.join(_dir, f'libpvac.{_ext}'),
            f'libpvac.{_ext}',
        ]
        lib = None
        for p in lib_paths:
            p = os.path.abspath(p)
            if os.path.exists(p):
                try:
                    lib = ctypes.CDLL(p)
                    break
                except OSError as e:
                    log.debug("cannot load %s: %s", p, e)
                    continue
        if lib is None:
            raise RuntimeError(f"libpvac.{_ext} not found. Run: cd pvac && make")
        self._lib = lib
        self._setup_ffi()

        raw_priv = base64.b64decode(wallet_priv_b64)
        seed = (ctypes.c_uint8 * 32)(*raw_priv[:32])
        prm = self._lib.pvac_default_params()
        pk_ptr = ctypes.c_void_p()
        sk_ptr = ctypes.c_void_p()
        self._lib.pvac_keygen_from_seed(prm, seed, ctypes.byref(pk_ptr), ctypes.byref(sk_ptr))
        self._lib.pvac_free_params(prm)
        self.pk = pk_ptr
        self.sk = sk_ptr

    def _setup_ffi(self):
        L = self._lib

        L.pvac_default_params.restype = ctypes.c_void_p
        L.pvac_keygen_from_seed.argtypes = [ctypes.c_void_p, ctypes.c_uint8 * 32,
                                             ctypes.POINTER(ctypes.c_void_p), ctypes.POINTER(ctypes.c_void_p)]

        L.pvac_enc_value_seeded.restype = ctypes.c_void_p
        L.pvac_enc_value_seeded.argtypes = [ctypes.c_void_p, ctypes.c_void_p, ctypes.c_uint64, ctypes.c_uint8 * 32]
        L.pvac_dec_value_fp.restype = None
        L.pvac_dec_value_fp.argtypes = [ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p,
            ctypes.POINTER(ctypes.c_uint64), ctypes.POINTER(ctypes.c_uint64)]

        L.pvac_commit_ct.argtypes = [ctypes.c_void_p, ctypes.c_void_p, ctypes.c_uint8 * 32]

        L.pvac_make_range_proof.restype = ctypes.c_void_p
        L.pvac_make_range_proof.argtypes = [ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_uint64]

        # bound zero proof: ct encrypts `amount` under a Pedersen opening
        L.pvac_make_zero_proof_bound.restype = ctypes.c_void_p
        L.pvac_make_zero_proof_bound.argtypes = [ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p,
                                                   ctypes.c_uint64, ctypes.c_uint8 * 32]

        L.pvac_serialize_cipher.restype = ctypes.POINTER(ctypes.c_uint8)
        L.pvac_serialize_cipher.argtypes = [ctypes.c_void_p, ctypes.POINTER(ctypes.c_size_t)]
        L.pvac_deserialize_cipher.restype = ctypes.c_void_p
        L.pvac_deserialize_cipher.argtypes = [ctypes.POINTER(ctypes.c_uint8), ctypes.c_size_t]
        L.pvac_serialize_pubkey.restype = ctypes.POINTER(ctypes.c_uint8)
        L.pvac_serialize_pubkey.argtypes = [ctypes.c_void_p, ctypes.POINTER(ctypes.c_size_t)]
        L.pvac_serialize_range_proof.restype = ctypes.POINTER(ctypes.c_uint8)
        L.pvac_serialize_range_proof.argtypes = [ctypes.c_void_p, ctypes.POINTER(ctypes.c_size_t)]
        L.pvac_serialize_zero_proof.restype = ctypes.POINTER(ctypes.c_uint8)
        L.pvac_serialize_zero_proof.argtypes = [ctypes.c_void_p, ctypes.POINTER(ctypes.c_size_t)]

        L.pvac_free_params.argtypes = [ctypes.c_void_p]
        L.pvac_free_cipher.argtypes = [ctypes.c_void_p]
        L.pvac_free_bytes.argtypes = [ctypes.POINTER(ctypes.c_uint8)]
        L.pvac_free_zero_proof.argtypes = [ctypes.c_void_p]
        L.pvac_free_range_proof.argtypes = [ctypes.c_void_p]

    def encrypt(self, value, seed_bytes):
        seed_arr = (ctypes.c_uint8 * 32)(*seed_bytes[:32])
        return self._lib.pvac_enc_value_seeded(self.pk, self.sk, ctypes.c_uint64(value), seed_arr)

    def decrypt_fp(self, ct_handle):
        lo = ctypes.c_uint64(0)
        hi = ctypes.c_uint64(0)
        self._lib.pvac_dec_value_fp(self.pk, self.sk, ct_handle,
                                     ctypes.byref(lo), ctypes.byref(hi))
        return (lo.value, hi.value)

    def commit(self, ct_handle):
        out = (ctypes.c_uint8 * 32)()
        self._lib.pvac_commit_ct(self.pk, ct_handle, out)
        return bytes(out)

    def make_range_proof(self, ct_handle, value):
        return self._lib.pvac_make_range_proof(self.pk, self.sk, ct_handle, ctypes.c_uint64(value))

    def make_zero_proof_bound(self, ct_handle, amount, blinding_bytes):
        blind_arr = (ctypes.c_uint8 * 32)(*blinding_bytes[:32])
        return self._lib.pvac_make_zero_proof_bound(self.pk, self.sk, ct_handle,
                                                     ctypes.c_uint64(amount), blind_arr)

    def _serialize_ptr(self, func, handle):
        sz = ctypes.c_size_t()
        ptr = func(handle, ctypes.byref(sz))
        data = bytes(ptr[i] for i in range(sz.value))
        self._lib.pvac_free_bytes(ptr)
        return data

    def serialize_pubkey(self):
        return self._serialize_ptr(self._lib.pvac_serialize_pubkey, self.pk)

    def encode_cipher(self, ct_handle):
        raw = self._serialize_ptr(self._lib.pvac_serialize_cipher, ct_handle)
        return self.HFHE_PREFIX + base64.b64encode(raw).decode()

    def decode_cipher(self, cipher_str):
        if not cipher_str.startswith(self.HFHE_PREFIX):
            return None
        raw = base64.b64decode(cipher_str[len(self.HFHE_PREFIX):])
        arr = (ctypes.c_uint8 * len(raw))(*raw)
        result = self._lib.pvac_deserialize_cipher(arr, ctypes.c_size_t(len(raw)))
        return result or None

    def encode_range_proof(self, rp_handle):
        raw = self._serialize_ptr(self._lib.pvac_serialize_range_proof, rp_handle)
        return self.RP_PREFIX + base64.b64encode(raw).decode()

    def encode_zero_proof(self, zp_handle):
        raw = self._serialize_ptr(self._lib.pvac_serialize_zero_proof, zp_handle)
        return self.ZKZP_PREFIX + base64.b64encode(raw).decode()

    def free_cipher(self, ct_handle):
        if ct_handle:
            self._lib.pvac_free_cipher(ct_handle)

    def free_range_proof(self, rp_handle):
        if rp_handle:
            self._lib.pvac_free_range_proof(rp_handle)

    def free_zero_proof(self, zp_handle):
        if zp_handle:
            self._lib.pvac_free_zero_proof(zp_handle)

    def decrypt_value(self, cipher_str):
        """Decrypt an encoded cipher to a signed integer (p = 2^127 - 1)."""
        ct = self.decode_cipher(cipher_str)
        if ct is None:
            raise ValueError("not an hfhe_v1 cipher")
        try:
            lo, hi = self.decrypt_fp(ct)
        finally:
            self.free_cipher(ct)
        if hi == 0:
            return lo
        p = (1 << 127) - 1
        val = (hi << 64) | lo
        if val > p // 2:
            return -(p - val)
        return val


def make_seed(target_contract, account_id, nonce):
    buf = f"VOICECMD_INPUT_SEED_V1|{target_contract}|{account_id}|{nonce}"
    return hashlib.sha256(buf.encode()).digest()


def _pack(prefix, obj):
    return prefix + base64.b64encode(json.dumps(obj, separators=(",", ":")).encode()).decode()


def unpack(prefix, s):
    if not s.startswith(prefix):
        raise ValueError(f"expected {prefix!r} payload")
    return json.loads(base64.b64decode(s[len(prefix):]))


class PvacEngine:
    """Encryption engine backed by libpvac.

    FFI calls block, so they run on a single-worker executor; the event
    loop only sees the awaits around them.
    """

    def __init__(self, priv_b64, rpc, wallet, lib_dir=None):
        self._priv = priv_b64
        self._rpc = rpc
        self._wallet = wallet
        self._lib_dir = lib_dir
        self._executor = ThreadPoolExecutor(max_workers=1)
        self.lib = None

    @property
    def initialized(self):
        return self.lib is not None

    async def _run(self, fn, *args):
        return await asyncio.get_running_loop().run_in_executor(self._executor, fn, *args)

    async def initialize(self):
        if self.lib is not None:
            return
        try:
            lib = await self._run(PvacLib, self._priv, self._lib_dir)
        except (RuntimeError, OSError, ValueError) as e:
            raise EngineInitFailure(str(e)) from e
        await self._ensure_registered(lib)
        self.lib = lib
        log.info("pvac engine ready")

    async def _ensure_registered(self, lib):
        addr = self._wallet.account
        ok, result = await self._rpc.call("octra_encryptedCipher", [addr])
        if ok and isinstance(result, dict) and result.get("cipher_type") == "hfhe_v1":
            return
        pk_b64 = base64.b64encode(await self._run(lib.serialize_pubkey)).decode()
        reg_sig = self._wallet.sign(f"register_pvac|{addr}")
        ok, result = await self._rpc.call(
            "octra_registerPvacPubkey", [addr, pk_b64, reg_sig, self._wallet.pub], 120)
        if not ok:
            raise EngineInitFailure(f"pvac pubkey registration failed: {result}")
        log.info("pvac pubkey registered for %s", addr)

    def _encrypt(self, target_contract, account_id, plain_value):
        lib = self.lib
        seed = make_seed(target_contract, account_id, os.urandom(16).hex())
        ct = lib.encrypt(plain_value, seed)
        if not ct:
            raise EncryptionFailure("pvac_enc_value_seeded returned null")
        rp = None
        try:
            cipher = lib.encode_cipher(ct)
            commitment = base64.b64encode(lib.commit(ct)).decode()
            rp = lib.make_range_proof(ct, plain_value)
            range_proof = lib.encode_range_proof(rp)
        finally:
            lib.free_range_proof(rp)
            lib.free_cipher(ct)
        binding = hashlib.sha256(f"{target_contract}|{account_id}|{commitment}".encode()).hexdigest()
        proof = _pack(INPUT_PROOF_PREFIX, {
            "rp": range_proof,
            "commitment": commitment,
            "contract": target_contract,
            "account": account_id,
            "binding": binding,
        })
        return EncryptedInput(ciphertext=cipher, proof=proof)

    async def encrypt(self, target_contract, account_id, plain_value):
        if self.lib is None:
            raise EncryptionFailure("engine not initialized")
        try:
            return await self._run(self._encrypt, target_contract, account_id, plain_value)
        except EncryptionFailure:
            raise
        except Exception as e:
            raise EncryptionFailure(f"{type(e).__name__}: {e}") from e

    def _open(self, handle):
        lib = self.lib
        value = lib.decrypt_value(handle)
        ct = lib.decode_cipher(handle)
        blinding = os.urandom(32)
        zp = None
        try:
            zp = lib.make_zero_proof_bound(ct, value, blinding)
            zero_proof = lib.encode_zero_proof(zp)
        finally:
            lib.free_zero_proof(zp)
            lib.free_cipher(ct)
        return value, {"zp": zero_proof, "blinding": base64.b64encode(blinding).decode()}

    async def request_disclosure_proof(self, handles, target_contract, verifier):
        """Decrypt `handles`, prove the openings, and have `verifier` submit them.

        `verifier.verify(clear_values_encoded, proof)` is awaited before
        returning, so the result is only produced once the ledger accepted it.
        """
        if self.lib is None:
            raise DisclosureFailure("engine not initialized")
        values = {}
        openings = []
        for handle in handles:
            try:
                value, opening = await self._run(self._open, handle)
            except ValueError as e:
                raise DisclosureFailure(f"cannot open handle: {e}") from e
            values[handle] = value
            openings.append(opening)
        encoded = _pack(DISCLOSURE_PREFIX, [values[h] for h in handles])
        proof = _pack(DISCLOSURE_PREFIX, {"contract": target_contract, "openings": openings})
        receipt = await verifier.verify(encoded, proof)
        return DisclosureResult(clear_values=values, receipt=receipt)

    def close(self):
        self._executor.shutdown(wait=False)
