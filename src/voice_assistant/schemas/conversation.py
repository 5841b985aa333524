"""Pydantic models for conversation history entries."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class ConversationMessage(BaseModel):
    """Represents a single role-tagged message in the running context."""

    role: Literal["system", "user", "assistant"]
    content: str

    def to_openai(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


__all__ = ["ConversationMessage"]
