"""
Custom exception classes for the note wallet runtime
"""

class WalletError(Exception):
    """Base exception for wallet operations"""
    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code or "WALLET_ERROR"

class TransportError(WalletError):
    """Network unreachable, non-2xx response or malformed streaming body.

    Never retried inside the wallet; the whole operation is safe to retry.
    """
    retryable = True

    def __init__(self, message: str, status: int = None, request_name: str = None):
        super().__init__(message, "TRANSPORT_ERROR")
        self.status = status
        self.request_name = request_name

class DecodeError(WalletError):
    """The oracle rejected a record, or a JSON payload could not be parsed"""
    def __init__(self, message: str):
        super().__init__(message, "DECODE_ERROR")

class PersistenceError(WalletError):
    """A note store write failed; in a bulk write the other rows stay committed"""
    def __init__(self, failed: int, total: int, message: str = None):
        message = message or f"{failed} of {total} note writes failed"
        super().__init__(message, "PERSISTENCE_ERROR")
        self.failed = failed
        self.total = total

class PreconditionError(WalletError):
    """Operation refused before any side effect"""
    def __init__(self, message: str):
        super().__init__(message, "PRECONDITION_ERROR")

class ConfirmationTimeoutError(WalletError):
    """Transaction never showed up within the polling ceiling"""
    def __init__(self, tx_hash: str, attempts: int, interval: float):
        message = f"tx {tx_hash} was not accepted after {attempts} attempts ({attempts * interval:g}s)"
        super().__init__(message, "CONFIRMATION_TIMEOUT")
        self.tx_hash = tx_hash
        self.attempts = attempts

class TransactionRejectedError(WalletError):
    """Transaction was indexed with an error"""
    def __init__(self, tx_hash: str, reason: str):
        super().__init__(f"error in tx {tx_hash}: {reason}", "TX_REJECTED")
        self.tx_hash = tx_hash
        self.reason = reason

class KeystoreError(WalletError):
    """The seed keystore is malformed or the password is wrong"""
    def __init__(self, message: str):
        super().__init__(message, "KEYSTORE_ERROR")
