"""Exception types raised by gateway components"""


class GatewayError(Exception):
    """Base class for gateway failures that abort the current request"""


class StorageError(GatewayError):
    """The key-value store could not be reached or returned garbage"""

    def __init__(self, operation: str, key: str, reason: str = ""):
        self.operation = operation
        self.key = key
        self.reason = reason
        super().__init__(f"Storage {operation} failed for {key}: {reason}")


class ProviderError(GatewayError):
    """The AI provider gateway failed to produce a reply"""


class CommandConflictError(GatewayError):
    """A voice command phrase is already claimed by another command"""

    def __init__(self, phrase: str, existing: str, incoming: str):
        self.phrase = phrase
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"Phrase '{phrase}' already registered for '{existing}', cannot assign to '{incoming}'"
        )
