class StoreUnavailableError(Exception):
    """
    Raised by refresh-token stores when the persistence backend fails.

    The message is safe to log; it never carries a raw secret or digest.
    """
    def __init__(self, operation: str, reason: str = ""):
        self.operation = operation
        self.reason = reason
        message = f"Refresh token store unavailable during {operation}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
