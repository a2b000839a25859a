"""Pydantic models for the relay control vocabulary."""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _Message(BaseModel):
    # Relays may add routing fields of their own; keep them on re-encode.
    model_config = ConfigDict(extra="allow")


class RegisterMessage(_Message):
    """Announces our display name to the relay."""
    type: Literal["register"] = "register"
    name: str


class BucketUpdateMessage(_Message):
    """Relay broadcast of every device currently registered."""
    type: Literal["bucket_update"] = "bucket_update"
    devices: list[str]


class OfferMessage(_Message):
    type: Literal["offer"] = "offer"
    sdp: str
    sender: str
    receiver: str


class AnswerMessage(_Message):
    type: Literal["answer"] = "answer"
    sdp: str
    code: str
    sender: str
    receiver: str


class IceCandidateMessage(_Message):
    """A trickled ICE candidate, addressed by `receiver` or by `to`."""
    type: Literal["ice_candidate"] = "ice_candidate"
    candidate: dict[str, Any]
    sender: str | None = None
    receiver: str | None = None
    to: str | None = None

    @model_validator(mode="after")
    def _check_address(self) -> "IceCandidateMessage":
        if not (self.receiver or self.to):
            raise ValueError("ice_candidate needs 'receiver' or 'to'")
        return self

    @property
    def target(self) -> str:
        return self.receiver or self.to or ""


class VerificationCodeMessage(_Message):
    """Pairing code pushed by the relay to the initiator for display."""
    type: Literal["verification_code"] = "verification_code"
    code: str
    sender: str
    receiver: str


class AuthErrorMessage(_Message):
    type: Literal["auth_error"] = "auth_error"
    reason: str
    sender: str = ""
    receiver: str = ""


class CloseMessage(_Message):
    type: Literal["close"] = "close"
    sender: str
    receiver: str


SignalMessage = Annotated[
    Union[
        RegisterMessage,
        BucketUpdateMessage,
        OfferMessage,
        AnswerMessage,
        IceCandidateMessage,
        VerificationCodeMessage,
        AuthErrorMessage,
        CloseMessage,
    ],
    Field(discriminator="type"),
]

MESSAGE_TYPES = frozenset({
    "register",
    "bucket_update",
    "offer",
    "answer",
    "ice_candidate",
    "verification_code",
    "auth_error",
    "close",
})
