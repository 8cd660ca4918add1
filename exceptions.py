class AuthorizationError(Exception):
    """Base exception for the charge authorization service."""

    pass


class BalanceStoreError(AuthorizationError):
    """Raised when the balance store cannot complete an operation.

    Covers unreachable servers, timeouts, and protocol or script errors. This
    is never a rejection: the charge was not evaluated at all.
    """

    def __init__(self, operation: str, key: str, message: str) -> None:
        self.operation = operation
        self.key = key
        super().__init__(f"Balance store {operation} failed for '{key}': {message}")
