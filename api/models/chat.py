"""Pydantic models for the chat request body."""

import logging
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from providers.exceptions import InvalidRequestError

logger = logging.getLogger(__name__)


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatRequest(BaseModel):
    history: list[Message]
    prompt: str

    @classmethod
    def from_body(cls, body: Any) -> "ChatRequest":
        """Validate a decoded JSON body, raising InvalidRequestError (400)."""
        if not isinstance(body, dict):
            raise InvalidRequestError("Request body must be a JSON object")

        prompt = body.get("prompt")
        if not isinstance(prompt, str) or not prompt:
            raise InvalidRequestError("Missing or invalid prompt in request body")

        history = body.get("history")
        if not isinstance(history, list):
            raise InvalidRequestError("Missing or invalid history in request body")

        try:
            return cls(history=history, prompt=prompt)
        except ValidationError as e:
            logger.debug(f"History validation failed: {e}")
            raise InvalidRequestError("Missing or invalid history in request body") from e

    def conversation(self) -> tuple[dict[str, str], ...]:
        """History plus the new user turn, in upstream wire format."""
        return tuple(
            [message.to_wire() for message in self.history]
            + [{"role": "user", "content": self.prompt}]
        )
