"""
Error taxonomy for vault creation and unlocking.

Every error raised across a boundary (time-lock network, local store, content
pinning) is one of these types. ``friendly_error`` maps any exception to a
single message that is safe to show a user.
"""

from __future__ import annotations


class ChronovaultError(Exception):
    """Base class. ``str(err)`` is always user-presentable."""


class ValidationError(ChronovaultError):
    """Bad user input. Nothing was changed."""


class EncryptionError(ChronovaultError):
    """Local cipher failure."""


class TimeLockError(ChronovaultError):
    """Failure talking to, or refused by, the time-lock network."""


class NotYetUnlockable(TimeLockError):
    """The network declined to release the key: the unlock time has not passed."""


class NetworkError(TimeLockError):
    """Connectivity or service failure."""


class IntegrityError(TimeLockError):
    """The digest does not match the wrapped key."""


class PersistenceError(ChronovaultError):
    """The local vault store could not be read or written."""


class UploadError(ChronovaultError):
    """The ciphertext could not be pinned on the content network."""


class RateLimitExceeded(UploadError):
    """The upload endpoint refused the request until the window resets."""

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = retry_after
        minutes = max(1, -(-retry_after // 60))
        super().__init__(message or f"Rate limit exceeded. Try again in {minutes} minutes.")


class AlreadyInProgress(ChronovaultError):
    """A second arm/unlock was requested while one is in flight."""


class InvalidStateError(ChronovaultError):
    """Operation not allowed from the machine's current state."""


_FALLBACK = "Something went wrong. Please try again."


def friendly_error(err: BaseException) -> str:
    """Classify an exception into one message suitable for display.

    Our own errors already carry presentable text. Anything else is a raw
    internal error and is replaced by a generic message for its class.
    """
    if isinstance(err, NotYetUnlockable):
        return "This vault is still locked. Try again after the unlock time."
    if isinstance(err, IntegrityError):
        return "This vault link is damaged and cannot be unlocked."
    if isinstance(err, NetworkError):
        return "Could not reach the time-lock network. Check your connection and try again."
    if isinstance(err, ChronovaultError):
        return str(err) or _FALLBACK
    if isinstance(err, (ConnectionError, TimeoutError)):
        return "Network connection failed. Check your connection and try again."
    return _FALLBACK
