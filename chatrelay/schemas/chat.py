from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """
    Body of ``POST /chat``.

    Every field is optional at the schema level so a missing field is
    reported as a 400 with the list of missing names rather than a 422.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: str | None = None
    prompt: str | None = None
    chat_id: str | None = Field(default=None, alias="chatId")
    user_id: str | None = Field(default=None, alias="userId")
    message_id: str | None = Field(default=None, alias="messageId")

    @classmethod
    def wire_name(cls, field_name: str) -> str:
        info = cls.model_fields.get(field_name)
        if info is not None and info.alias:
            return info.alias
        return field_name


class RetryRequest(ChatRequest):
    """Body of ``POST /chat/retry``; ``messageId`` names the message to regenerate."""


class ModelInfo(BaseModel):
    model: str
    provider: str
    has_file_upload: bool = False
    has_vision: bool = False
    has_thinking: bool = False
    has_pdf_manipulation: bool = False
    has_search: bool = False


class ModelsResponse(BaseModel):
    data: list[ModelInfo] = Field(default_factory=list)


__all__ = ["ChatRequest", "ModelInfo", "ModelsResponse", "RetryRequest"]
