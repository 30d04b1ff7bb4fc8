import json
import logging
from dataclasses import dataclass

import openai

from app.config import settings
from app.schemas.chat import ToolCallRequest

logger = logging.getLogger(__name__)


@dataclass
class ModelReply:
    content: str | None = None
    tool_call: ToolCallRequest | None = None
    tokens_input: int = 0
    tokens_output: int = 0


def decode_arguments(raw: str | None) -> dict:
    """Parse a model-emitted argument string, tolerating garbage as ``{}``."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning("Discarding malformed tool arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ChatModelClient:
    """Thin wrapper over the OpenAI chat completions API with tool calling."""

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ):
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self.model = model or settings.chat_model
        self.temperature = (
            temperature if temperature is not None else settings.chat_temperature
        )
        self.max_tokens = max_tokens or settings.chat_max_tokens
        self.timeout = timeout or settings.chat_model_timeout

    async def complete(self, messages: list[dict], tools: list[dict] | None = None) -> ModelReply:
        """Run one completion. Only the first requested tool call is returned."""
        kwargs: dict = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "timeout": self.timeout,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
            kwargs["parallel_tool_calls"] = False

        response = await self._client.chat.completions.create(**kwargs)
        message = response.choices[0].message

        tool_call = None
        if message.tool_calls:
            first = message.tool_calls[0]
            if len(message.tool_calls) > 1:
                logger.warning(
                    "Model requested %d tool calls, only %s will run",
                    len(message.tool_calls),
                    first.function.name,
                )
            tool_call = ToolCallRequest(
                id=first.id,
                name=first.function.name,
                arguments=decode_arguments(first.function.arguments),
            )

        usage = response.usage
        return ModelReply(
            content=message.content,
            tool_call=tool_call,
            tokens_input=usage.prompt_tokens if usage else 0,
            tokens_output=usage.completion_tokens if usage else 0,
        )
