"""
Exceptions raised by the LightAccount client.
"""
from typing import Any, Optional


class LightAccountError(Exception):
    pass


class OwnerMissing(LightAccountError):
    pass


class UnsupportedAccountVersion(LightAccountError):
    pass


class UnknownAccountVersion(UnsupportedAccountVersion):
    pass


class InvalidInput(LightAccountError):
    pass


class TransportFailure(LightAccountError):
    """
    Error reported by the chain node or the bundler.

    Raised verbatim to the caller, never retried here.
    """

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

    def __str__(self):
        if self.code is None:
            return self.message
        return f"[{self.code}] {self.message}"


class ReceiptTimeout(LightAccountError):
    def __init__(self, user_op_hash: str, timeout: float):
        super().__init__(f"Timed out after {timeout}s waiting for receipt of {user_op_hash}")
        self.user_op_hash = user_op_hash
        self.timeout = timeout


class ReceiptMismatch(LightAccountError):
    def __init__(self, user_op_hash: str, awaited: str, fetched: Optional[str]):
        super().__init__(
            f"Receipt for {user_op_hash} is inconsistent: "
            f"awaited tx {awaited}, fetched tx {fetched}"
        )
        self.user_op_hash = user_op_hash
        self.awaited = awaited
        self.fetched = fetched


class OperationReverted(LightAccountError):
    def __init__(self, user_op_hash: str, reason: Optional[str] = None):
        super().__init__(f"UserOperation {user_op_hash} reverted" + (f": {reason}" if reason else ""))
        self.user_op_hash = user_op_hash
        self.reason = reason
