"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from dataroom_rag.config.constants import MAX_DOCUMENTS_PER_REQUEST, MAX_FOLDERS_PER_REQUEST


class ChatMessageIn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = ""


class ChatRequest(BaseModel):
    messages: list[ChatMessageIn] = Field(min_length=1)
    dataroom_id: str = Field(min_length=1)
    viewer_id: str = Field(min_length=1)
    link_id: str = Field(min_length=1)
    query: str | None = None
    selected_doc_ids: list[str] = Field(default_factory=list, max_length=MAX_DOCUMENTS_PER_REQUEST)
    selected_folder_ids: list[str] = Field(default_factory=list, max_length=MAX_FOLDERS_PER_REQUEST)
    folder_doc_ids: list[str] = Field(default_factory=list, max_length=MAX_DOCUMENTS_PER_REQUEST)
    session_id: str | None = None

    @field_validator("selected_doc_ids", "folder_doc_ids")
    @classmethod
    def _no_blank_ids(cls, ids: list[str]) -> list[str]:
        if any(not i.strip() for i in ids):
            raise ValueError("Invalid document IDs provided")
        return ids

    @model_validator(mode="after")
    def _check_messages(self) -> "ChatRequest":
        if self.messages[-1].role != "user":
            raise ValueError("Last message must be from user")
        if len(self.selected_doc_ids) + len(self.folder_doc_ids) > MAX_DOCUMENTS_PER_REQUEST:
            raise ValueError(
                f"Requested document scope too large (max {MAX_DOCUMENTS_PER_REQUEST} docs)"
            )
        return self

    @property
    def question(self) -> str:
        """The explicit query, or the text of the last user message."""
        if self.query is not None:
            return self.query
        return self.messages[-1].content

    @property
    def history(self) -> list[ChatMessageIn]:
        return self.messages[:-1]


class ChatMetadataEvent(BaseModel):
    session_id: str | None
    kind: Literal["answer", "canned", "fallback"]


class MessageOut(BaseModel):
    id: str | None
    role: str
    content: str
    created_at: str
    metadata: dict | None = None


class SessionMessagesResponse(BaseModel):
    session_id: str
    messages: list[MessageOut]


class LastMessage(BaseModel):
    content: str
    role: str
    created_at: str


class SessionSummary(BaseModel):
    id: str
    title: str
    created_at: str
    updated_at: str
    message_count: int
    last_message: LastMessage | None = None


class Pagination(BaseModel):
    limit: int
    total: int
    has_next: bool
    next_cursor: str | None = None


class SessionListResponse(BaseModel):
    sessions: list[SessionSummary]
    pagination: Pagination


class HealthResponse(BaseModel):
    status: str
    chunk_count: int
    vector_index_size: int
