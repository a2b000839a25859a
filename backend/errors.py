"""Exceptions raised by the session engine."""


class JustSendError(Exception):
    """Base class for all engine errors."""


class SessionBusyError(JustSendError):
    """A pairing is already active; only one session is allowed at a time."""


class SessionStateError(JustSendError):
    """The operation is not valid in the session's current state."""


class PairingBusyError(JustSendError):
    """A pairing challenge is already outstanding."""


class PairingCancelledError(JustSendError):
    """The pairing challenge was cancelled before a code was submitted."""


class InvalidCodeError(JustSendError, ValueError):
    """The submitted pairing code is not exactly the expected digits."""


class TransferBusyError(JustSendError):
    """A batch is already being sent on this session."""


class ChannelClosedError(JustSendError):
    """The peer channel is not open, or closed while in use."""


class TransferAbortedError(JustSendError):
    """A batch stopped before all files were sent."""

    def __init__(self, message: str, sent_files: int = 0) -> None:
        super().__init__(message)
        self.sent_files = sent_files


class RelayConnectionError(JustSendError):
    """The relay could not be reached after all retries."""


class ArtifactReleasedError(JustSendError):
    """The received file's bytes were released when the session closed."""
