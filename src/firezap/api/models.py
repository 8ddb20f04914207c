"""Pydantic models for control-surface payloads."""

from typing import Literal

from pydantic import BaseModel, Field


class SendMessageRequest(BaseModel):
    """Outbound text message payload."""

    to: str = Field(min_length=1)
    msg: str = Field(min_length=1)


class ValidateNumberRequest(BaseModel):
    """Phone number lookup payload."""

    number: str = Field(min_length=1)


class SubscriptionCommand(BaseModel):
    """Command sent by a client over the subscription channel."""

    type: Literal["subscribe", "unsubscribe", "ping"]
    session_id: str | None = Field(default=None, alias="sessionId")
