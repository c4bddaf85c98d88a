class VoiceCommandError(Exception):
    message = "operation failed"

    def __init__(self, detail=None, message=None):
        super().__init__(detail or message or self.message)
        if message:
            self.message = message
        self.detail = detail


class ConfigError(VoiceCommandError):
    message = "Configuration error"


class NotReady(VoiceCommandError):
    message = "Connect wallet first"


class OperationInProgress(VoiceCommandError):
    message = "Operation already in progress"


class InvalidCommand(VoiceCommandError):
    message = "Invalid command"


class EngineInitFailure(VoiceCommandError):
    message = "FHE engine initialization failed"


class EncryptionFailure(VoiceCommandError):
    message = "Encryption failed"


class TransactionRejectedByUser(VoiceCommandError):
    message = "Transaction rejected"


class TransactionFailed(VoiceCommandError):
    message = "Transaction failed"


class AlreadyVerified(VoiceCommandError):
    message = "Data already verified"


class ReadFailure(VoiceCommandError):
    message = "Failed to load data"


class DisclosureFailure(VoiceCommandError):
    message = "Decryption failed"


def extract_error(j, fallback="unknown error"):
    if not j:
        return fallback
    if isinstance(j, str):
        return j
    err = j.get('error', fallback) if isinstance(j, dict) else j
    if isinstance(err, dict):
        if 'message' in err:
            return str(err['message'])
        etype = err.get('type', 'unknown')
        reason = err.get('reason', '')
        return f"{etype}: {reason}" if reason else etype
    return str(err)


def classify_ledger_error(text):
    """Map a node error string onto the matching error kind."""
    low = (text or "").lower()
    if "already verified" in low:
        return AlreadyVerified(text)
    if "user rejected" in low:
        return TransactionRejectedByUser(text)
    return TransactionFailed(text)
