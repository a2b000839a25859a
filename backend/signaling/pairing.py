"""
Pairing challenge.

The responder must type the code shown on the initiator's screen before
an incoming connection is accepted. The prompt is a future that the UI
resolves through submit() or rejects through cancel().
"""

import asyncio
import logging
from enum import Enum

from config import CODE_LENGTH
from errors import (
    InvalidCodeError,
    PairingBusyError,
    PairingCancelledError,
    SessionStateError,
)

logger = logging.getLogger(__name__)


class ChallengeStatus(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"


def validate_code(code: str) -> str:
    """Return the code stripped of whitespace, or raise InvalidCodeError."""
    code = (code or "").strip()
    if len(code) != CODE_LENGTH or not code.isdigit() or not code.isascii():
        raise InvalidCodeError(f"Pairing code must be {CODE_LENGTH} digits")
    return code


class PairingChallenge:
    """A single outstanding code prompt."""

    def __init__(self) -> None:
        self.status = ChallengeStatus.AWAITING_INPUT
        self._digits: list[str] = []
        self._future: asyncio.Future[str] = asyncio.get_running_loop().create_future()

    @property
    def digits(self) -> str:
        return "".join(self._digits)

    @property
    def done(self) -> bool:
        return self._future.done()

    def enter_digit(self, digit: str) -> None:
        """Collect one more digit; extra digits beyond the code length are ignored."""
        if len(digit) != 1 or not digit.isdigit() or not digit.isascii():
            raise InvalidCodeError(f"Not a digit: {digit!r}")
        if len(self._digits) < CODE_LENGTH:
            self._digits.append(digit)

    def backspace(self) -> None:
        if self._digits:
            self._digits.pop()

    def submit(self, code: str | None = None) -> str:
        if self.done:
            raise SessionStateError("Challenge already resolved")
        code = validate_code(self.digits if code is None else code)
        self._digits = list(code)
        self.status = ChallengeStatus.SUBMITTED
        self._future.set_result(code)
        return code

    def cancel(self) -> None:
        if self.done:
            return
        self.status = ChallengeStatus.CANCELLED
        self._future.set_exception(PairingCancelledError("User cancelled PIN entry"))

    async def wait(self) -> str:
        return await self._future


class PairingPrompt:
    """Owns the at-most-one PairingChallenge of a session manager."""

    def __init__(self) -> None:
        self._challenge: PairingChallenge | None = None

    @property
    def pending(self) -> PairingChallenge | None:
        if self._challenge and not self._challenge.done:
            return self._challenge
        return None

    async def challenge(self) -> str:
        """
        Open a challenge and wait for it.

        Returns the submitted code; raises PairingCancelledError when the
        challenge is cancelled.
        """
        if self.pending:
            raise PairingBusyError("A pairing code is already being requested")

        challenge = PairingChallenge()
        self._challenge = challenge
        try:
            return await challenge.wait()
        finally:
            if self._challenge is challenge:
                self._challenge = None

    def _require_pending(self) -> PairingChallenge:
        challenge = self.pending
        if challenge is None:
            raise SessionStateError("No pairing code is being requested")
        return challenge

    def enter_digit(self, digit: str) -> str:
        """Add one digit to the pending challenge; returns the digits so far."""
        challenge = self._require_pending()
        challenge.enter_digit(digit)
        return challenge.digits

    def backspace(self) -> str:
        challenge = self._require_pending()
        challenge.backspace()
        return challenge.digits

    def submit(self, code: str | None = None) -> str:
        """Resolve with `code`, or with the digits entered so far when omitted."""
        code = self._require_pending().submit(code)
        logger.info("Pairing code submitted")
        return code

    def cancel(self) -> bool:
        """Cancel the outstanding challenge. Returns False if there was none."""
        challenge = self.pending
        if challenge is None:
            return False
        challenge.cancel()
        logger.info("Pairing code entry cancelled")
        return True
