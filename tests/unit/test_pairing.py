"""
Tests for signaling/pairing.py - the code prompt future
"""
import asyncio

import pytest

from errors import (
    InvalidCodeError,
    PairingBusyError,
    PairingCancelledError,
    SessionStateError,
)
from signaling.pairing import ChallengeStatus, PairingChallenge, PairingPrompt, validate_code


async def open_challenge(prompt: PairingPrompt) -> asyncio.Task:
    task = asyncio.create_task(prompt.challenge())
    await asyncio.sleep(0)
    assert prompt.pending is not None
    return task


class TestValidateCode:
    def test_valid(self):
        assert validate_code("0420") == "0420"

    def test_whitespace_stripped(self):
        assert validate_code(" 1234\n") == "1234"

    @pytest.mark.parametrize("code", ["", "123", "12345", "12a4", "12 34", "١٢٣٤", None])
    def test_invalid(self, code):
        with pytest.raises(InvalidCodeError):
            validate_code(code)

    def test_invalid_code_is_value_error(self):
        with pytest.raises(ValueError):
            validate_code("x")


class TestPairingPrompt:
    async def test_submit_resolves(self):
        prompt = PairingPrompt()
        task = await open_challenge(prompt)
        assert prompt.submit("7788") == "7788"
        assert await task == "7788"
        assert prompt.pending is None

    async def test_cancel_rejects(self):
        prompt = PairingPrompt()
        task = await open_challenge(prompt)
        assert prompt.cancel() is True
        with pytest.raises(PairingCancelledError):
            await task
        assert prompt.pending is None
        assert prompt.cancel() is False

    async def test_second_challenge_refused(self):
        prompt = PairingPrompt()
        task = await open_challenge(prompt)
        with pytest.raises(PairingBusyError):
            await prompt.challenge()
        prompt.submit("1111")
        assert await task == "1111"

    async def test_invalid_code_keeps_challenge_open(self):
        prompt = PairingPrompt()
        task = await open_challenge(prompt)
        with pytest.raises(InvalidCodeError):
            prompt.submit("12")
        assert prompt.pending is not None
        prompt.submit("1212")
        assert await task == "1212"

    async def test_submit_without_challenge(self):
        prompt = PairingPrompt()
        with pytest.raises(SessionStateError):
            prompt.submit("1234")

    async def test_digit_entry_through_prompt(self):
        prompt = PairingPrompt()
        task = await open_challenge(prompt)
        for digit in "905":
            prompt.enter_digit(digit)
        assert prompt.backspace() == "90"
        assert prompt.enter_digit("1") == "901"
        assert prompt.enter_digit("7") == "9017"
        prompt.submit()
        assert await task == "9017"

    async def test_digit_entry_without_challenge(self):
        prompt = PairingPrompt()
        with pytest.raises(SessionStateError):
            prompt.enter_digit("1")
        with pytest.raises(SessionStateError):
            prompt.backspace()

    async def test_new_challenge_after_resolution(self):
        prompt = PairingPrompt()
        first = await open_challenge(prompt)
        prompt.cancel()
        with pytest.raises(PairingCancelledError):
            await first
        second = await open_challenge(prompt)
        prompt.submit("2222")
        assert await second == "2222"


class TestPairingChallenge:
    async def test_digit_entry(self):
        challenge = PairingChallenge()
        for digit in "12345":
            challenge.enter_digit(digit)
        assert challenge.digits == "1234"

        challenge.backspace()
        challenge.enter_digit("9")
        assert challenge.submit() == "1239"
        assert challenge.status == ChallengeStatus.SUBMITTED
        assert await challenge.wait() == "1239"

    async def test_incomplete_digits_rejected(self):
        challenge = PairingChallenge()
        challenge.enter_digit("4")
        with pytest.raises(InvalidCodeError):
            challenge.submit()
        assert not challenge.done

    async def test_non_digit_rejected(self):
        challenge = PairingChallenge()
        with pytest.raises(InvalidCodeError):
            challenge.enter_digit("a")
        with pytest.raises(InvalidCodeError):
            challenge.enter_digit("12")
        assert challenge.digits == ""

    async def test_backspace_on_empty(self):
        challenge = PairingChallenge()
        challenge.backspace()
        assert challenge.digits == ""

    async def test_resolves_once(self):
        challenge = PairingChallenge()
        challenge.submit("5555")
        with pytest.raises(SessionStateError):
            challenge.submit("6666")
        challenge.cancel()
        assert challenge.status == ChallengeStatus.SUBMITTED
        assert await challenge.wait() == "5555"
