import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PLACEHOLDER_CONTENT = {"thinking...", "..."}


class HistoryMessage(BaseModel):
    """One prior turn as the chat widget sends it."""

    role: str
    content: str | None = None
    loading: bool = False  # widget placeholder while a reply is pending

    def is_placeholder(self) -> bool:
        if self.loading or self.role not in ("user", "assistant"):
            return True
        content = (self.content or "").strip()
        return not content or content.lower() in PLACEHOLDER_CONTENT


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str | None = None
    conversation_history: list[HistoryMessage] | None = Field(
        default_factory=list, alias="conversationHistory"
    )


class ChatResponse(BaseModel):
    response: str


class ToolCallRequest(BaseModel):
    """A tool invocation decoded from the model's output. Arguments are untrusted."""

    id: str | None = None
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolCallResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    hint: str | None = None

    def to_content(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True), default=str)


class ConversationTurn(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str | None = None
    tool_call: ToolCallRequest | None = None
    tool_name: str | None = None
    tool_call_id: str | None = None

    def to_message(self) -> dict:
        """Render as an OpenAI chat message."""
        if self.role == "tool":
            return {
                "role": "tool",
                "tool_call_id": self.tool_call_id,
                "content": self.content or "",
            }
        if self.role == "assistant" and self.tool_call is not None:
            return {
                "role": "assistant",
                "content": self.content,
                "tool_calls": [
                    {
                        "id": self.tool_call.id,
                        "type": "function",
                        "function": {
                            "name": self.tool_call.name,
                            "arguments": json.dumps(self.tool_call.arguments),
                        },
                    }
                ],
            }
        return {"role": self.role, "content": self.content or ""}
