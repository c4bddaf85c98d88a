from voicecmd.errors import (AlreadyVerified, ConfigError, TransactionFailed,
                             TransactionRejectedByUser, classify_ledger_error,
                             extract_error)


def test_extract_error_shapes():
    assert extract_error(None) == "unknown error"
    assert extract_error("boom") == "boom"
    assert extract_error({"error": {"message": "bad nonce"}}) == "bad nonce"
    assert extract_error({"error": {"type": "revert", "reason": "x"}}) == "revert: x"
    assert extract_error({"error": {"type": "revert"}}) == "revert"
    assert extract_error({"status": "failed"}, fallback="transaction failed") == "transaction failed"


def test_classify_ledger_error():
    assert isinstance(classify_ledger_error("revert: Data already verified"), AlreadyVerified)
    assert isinstance(classify_ledger_error("MetaMask: user rejected transaction"), TransactionRejectedByUser)
    err = classify_ledger_error("out of gas")
    assert type(err) is TransactionFailed
    assert err.message == "Transaction failed"
    assert str(err) == "out of gas"


def test_message_override():
    err = ConfigError("missing field", message="wallet.json error")
    assert err.message == "wallet.json error"
    assert err.detail == "missing field"
    assert ConfigError().message == "Configuration error"
