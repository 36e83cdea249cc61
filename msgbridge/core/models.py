"""Wire models for the outbound chat-completions request and the Messages response."""

from __future__ import annotations

from typing import Any, Literal, Union

from pydantic import BaseModel, Field


class TargetTextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class TargetImageURL(BaseModel):
    url: str | None = None


class TargetImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: TargetImageURL


TargetPart = Union[TargetTextPart, TargetImagePart]


class TargetMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: Union[str, list[TargetPart]]


class TargetFunction(BaseModel):
    name: str
    description: str | None = None
    parameters: dict[str, Any] | None = None


class TargetTool(BaseModel):
    type: Literal["function"] = "function"
    function: TargetFunction


class TargetRequest(BaseModel):
    model: str
    messages: list[TargetMessage] = Field(default_factory=list)
    max_tokens: int
    temperature: float | int
    top_p: float | int | None = None
    stream: bool = False
    tools: list[TargetTool] | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON body for the backend; unset optionals are left out entirely."""
        return self.model_dump(exclude_none=True)


class SourceTextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class SourceToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class SourceUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class SourceResponse(BaseModel):
    id: str
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    model: str
    content: list[Union[SourceTextBlock, SourceToolUseBlock]] = Field(default_factory=list)
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: SourceUsage = Field(default_factory=SourceUsage)
