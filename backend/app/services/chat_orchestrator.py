"""Conversation orchestrator for the GoHighLevel assistant.

One chat turn runs as a bounded loop:

    model (tools on) -> tool -> model (tools on) -> tool -> ... -> model (tools off)

Tool calls are strictly sequential because later calls need identifiers
returned by earlier ones (find the contact, then fetch their tasks). After
``max_tool_rounds`` tool executions the model is asked once more with tools
disabled, which forces a written answer even if the tool chain is
incomplete.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.integrations.ghl_mcp import GHLMCPClient, MCPError
from app.integrations.openai_llm import ChatModelClient, ModelReply
from app.schemas.chat import ConversationTurn, HistoryMessage
from app.services.chat_prompts import (
    ERROR_REPLY,
    MCP_CONNECTION_REPLY,
    SYSTEM_PROMPT,
    finalize_reply,
)
from app.services.chat_tools import ToolExecutor, openai_tools
from app.services.contact_resolver import ContactResolver, ResolverConfig
from app.services.credentials import Credentials, missing_credentials_guidance

logger = logging.getLogger(__name__)

TraceHook = Callable[[str, dict], None]


def log_trace(event: str, payload: dict) -> None:
    logger.info("chat.%s %s", event, payload)


@dataclass(frozen=True)
class OrchestratorConfig:
    max_tool_rounds: int = 3
    turn_timeout: float | None = 180.0

    @classmethod
    def from_settings(cls) -> "OrchestratorConfig":
        return cls(
            max_tool_rounds=settings.chat_max_tool_rounds,
            turn_timeout=settings.chat_turn_timeout,
        )


def build_turns(
    user_message: str, history: Sequence[HistoryMessage]
) -> list[ConversationTurn]:
    turns = [ConversationTurn(role="system", content=SYSTEM_PROMPT)]
    for item in history:
        if item.is_placeholder():
            continue
        turns.append(ConversationTurn(role=item.role, content=item.content))
    turns.append(ConversationTurn(role="user", content=user_message))
    return turns


class ConversationOrchestrator:
    def __init__(
        self,
        model: ChatModelClient,
        executor: ToolExecutor,
        config: OrchestratorConfig | None = None,
        on_event: TraceHook | None = None,
    ):
        self.model = model
        self.executor = executor
        self.config = config or OrchestratorConfig.from_settings()
        self.on_event = on_event or log_trace

    async def run(self, user_message: str, history: Sequence[HistoryMessage] = ()) -> str:
        """Resolve one user message into a reply. Exceptions propagate."""
        turns = build_turns(user_message, history)
        tools = openai_tools()
        self.on_event("turn.started", {"history": len(turns) - 2})

        executed = 0
        for round_index in range(self.config.max_tool_rounds):
            reply = await self._complete(turns, tools, round_index)

            if reply.tool_call is None:
                if reply.content:
                    self.on_event("turn.completed", {"tool_calls": executed})
                    return finalize_reply(reply.content)
                break

            call = reply.tool_call
            if not call.id:
                call = call.model_copy(update={"id": f"call_{round_index}"})
            self.on_event(
                "tool.called",
                {"round": round_index + 1, "tool": call.name, "arguments": call.arguments},
            )
            result = await self.executor.execute(call)
            executed += 1
            self.on_event(
                "tool.completed",
                {"round": round_index + 1, "tool": call.name, "success": result.success},
            )

            turns.append(
                ConversationTurn(role="assistant", content=reply.content, tool_call=call)
            )
            turns.append(
                ConversationTurn(
                    role="tool",
                    content=result.to_content(),
                    tool_name=call.name,
                    tool_call_id=call.id,
                )
            )
        else:
            self.on_event("turn.budget_exhausted", {"tool_calls": executed})

        final = await self.model.complete([turn.to_message() for turn in turns])
        self.on_event("turn.completed", {"tool_calls": executed})
        return finalize_reply(final.content)

    async def handle_turn(
        self, user_message: str, history: Sequence[HistoryMessage] = ()
    ) -> str:
        """Like ``run`` but never raises; failures become a generic apology."""
        try:
            if self.config.turn_timeout:
                return await asyncio.wait_for(
                    self.run(user_message, history), timeout=self.config.turn_timeout
                )
            return await self.run(user_message, history)
        except Exception:
            logger.exception("Chat turn failed")
            return ERROR_REPLY

    async def _complete(
        self, turns: list[ConversationTurn], tools: list[dict], round_index: int
    ) -> ModelReply:
        reply = await self.model.complete([turn.to_message() for turn in turns], tools)
        self.on_event(
            "model.responded",
            {
                "round": round_index,
                "tool": reply.tool_call.name if reply.tool_call else None,
                "has_content": bool(reply.content),
            },
        )
        return reply


async def handle_turn(
    db: AsyncSession,
    user_message: str,
    history: Sequence[HistoryMessage],
    credentials: Credentials,
    *,
    config: OrchestratorConfig | None = None,
    on_event: TraceHook | None = None,
) -> str:
    """Run a chat turn for a caller: open the MCP session, wire collaborators, answer."""
    guidance = missing_credentials_guidance(credentials)
    if guidance:
        return guidance

    mcp = GHLMCPClient(credentials.mcp_token, credentials.location_id)
    try:
        await mcp.connect()
    except MCPError as exc:
        logger.error(
            "MCP connection failed for location %s: %s", credentials.location_id, exc
        )
        return MCP_CONNECTION_REPLY.format(error=exc)

    try:
        resolver = ContactResolver(
            db, credentials.location_id, mcp, ResolverConfig.from_settings()
        )
        orchestrator = ConversationOrchestrator(
            ChatModelClient(api_key=credentials.openai_api_key),
            ToolExecutor(mcp, resolver),
            config=config,
            on_event=on_event,
        )
        return await orchestrator.handle_turn(user_message, history)
    finally:
        await mcp.disconnect()
