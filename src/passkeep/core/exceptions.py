"""
passkeep exception classes
"""


class PasskeepError(Exception):
    """Base exception for passkeep operations"""
    pass


class KeyDerivationError(PasskeepError):
    """Raised when the KDF rejects its input or fails"""
    pass


class EncryptionError(PasskeepError):
    """Raised when the cipher fails while encrypting"""
    pass


class DecryptionError(PasskeepError):
    """Raised when authentication fails or stored data cannot be decoded"""
    pass


class VaultIOError(PasskeepError):
    """Raised when a vault or side file cannot be read or written.

    Keeps the OS reason and the offending path so callers can show both.
    """

    def __init__(self, message: str, path=None, reason: str = ""):
        super().__init__(message)
        self.path = path
        self.reason = reason


class IPCError(PasskeepError):
    """Raised when the daemon is unreachable or answers with an error"""
    pass


class DaemonTimeoutError(IPCError):
    """Raised when a bounded daemon call does not finish in time"""
    pass


class ProtocolError(IPCError, ValueError):
    """Raised when an IPC message cannot be parsed"""
    pass


class DaemonStartupError(PasskeepError):
    """Raised when the daemon listener cannot be brought up"""
    pass


class StateInconsistentError(PasskeepError):
    """Raised when local state claims unlocked but the vault file is gone"""
    pass


class VaultLockedError(PasskeepError):
    """Raised when an operation needs an unlocked vault"""
    pass


class ConfigError(PasskeepError):
    """Raised when configuration is invalid"""
    pass
