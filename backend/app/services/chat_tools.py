import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from app.integrations.ghl_mcp import GHLMCPClient
from app.schemas.chat import ToolCallRequest, ToolCallResult
from app.services.contact_resolver import ContactResolver

logger = logging.getLogger(__name__)

RECONNECT_HINT = (
    "The GoHighLevel MCP integration may need to be reconnected. "
    "Please check your MCP token in the GoHighLevel settings."
)

CALENDAR_LIMITATION = (
    "GoHighLevel's calendar events API does not support filtering by contact "
    "ID. It only accepts userId, calendarId, or groupId, so these events are "
    "NOT filtered to the requested contact."
)

CALENDAR_SUGGESTION = (
    "Offer to list all calendar events in a date range, or suggest the "
    "GoHighLevel web interface to view contact-specific appointments."
)

APPOINTMENT_WINDOW_BEFORE = timedelta(days=30)
APPOINTMENT_WINDOW_AFTER = timedelta(days=90)


class ToolArgumentsError(ValueError):
    """Raw model arguments do not match the tool's parameter schema."""

    def __init__(self, tool: str, exc: ValidationError):
        self.tool = tool
        self.problems = [
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
            for err in exc.errors()
        ]
        super().__init__(f"Invalid arguments for {tool}: {'; '.join(self.problems)}")


# ---------------------------------------------------------------------------
# Typed arguments, one model per tool
# ---------------------------------------------------------------------------


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GetContactsArgs(ToolArguments):
    query: str | None = None
    limit: int | None = None


class ContactIdArgs(ToolArguments):
    contactId: str


class CreateContactArgs(ToolArguments):
    firstName: str
    email: str
    lastName: str | None = None
    phone: str | None = None


class SearchOpportunitiesArgs(ToolArguments):
    limit: int | None = None
    pipelineId: str | None = None


class NoArgs(ToolArguments):
    pass


class AddTagsArgs(ToolArguments):
    contactId: str
    tags: list[str]


class AppointmentsArgs(ToolArguments):
    contactId: str
    startDate: str | None = None
    endDate: str | None = None


class PaymentsArgs(ToolArguments):
    contactId: str | None = None
    status: str | None = None


class SendMessageArgs(ToolArguments):
    contactId: str
    message: str
    type: Literal["SMS", "Email"] = "SMS"


# ---------------------------------------------------------------------------
# Tool catalog (OpenAI function-calling JSON schema)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: dict

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def _contact_id_schema(description: str = "Contact ID") -> dict:
    return {
        "type": "object",
        "properties": {"contactId": {"type": "string", "description": description}},
        "required": ["contactId"],
    }


TOOL_CATALOG: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="get_contacts",
        description=(
            "Search and retrieve contacts from GoHighLevel by name, email, or phone"
        ),
        parameters={
            "type": "object",
            "properties": {
                "limit": {
                    "type": "number",
                    "description": "Number of contacts to retrieve (max 100)",
                },
                "query": {
                    "type": "string",
                    "description": (
                        "Search query for contacts (searches name, email, phone)"
                    ),
                },
            },
        },
    ),
    ToolDefinition(
        name="get_contact",
        description="Get details of a specific contact by ID",
        parameters=_contact_id_schema("The ID of the contact to retrieve"),
    ),
    ToolDefinition(
        name="create_contact",
        description="Create a new contact in GoHighLevel",
        parameters={
            "type": "object",
            "properties": {
                "firstName": {"type": "string", "description": "First name"},
                "lastName": {"type": "string", "description": "Last name"},
                "email": {"type": "string", "description": "Email address"},
                "phone": {"type": "string", "description": "Phone number"},
            },
            "required": ["firstName", "email"],
        },
    ),
    ToolDefinition(
        name="search_opportunities",
        description="Search for opportunities in GoHighLevel",
        parameters={
            "type": "object",
            "properties": {
                "limit": {
                    "type": "number",
                    "description": "Number of opportunities to retrieve",
                },
                "pipelineId": {
                    "type": "string",
                    "description": "Filter by pipeline ID",
                },
            },
        },
    ),
    ToolDefinition(
        name="get_pipelines",
        description="Get all sales pipelines from GoHighLevel",
        parameters={"type": "object", "properties": {}},
    ),
    ToolDefinition(
        name="add_tags_to_contact",
        description="Add tags to a contact",
        parameters={
            "type": "object",
            "properties": {
                "contactId": {"type": "string", "description": "Contact ID"},
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Tags to add",
                },
            },
            "required": ["contactId", "tags"],
        },
    ),
    ToolDefinition(
        name="get_contact_tasks",
        description="Get all tasks for a contact",
        parameters=_contact_id_schema(),
    ),
    ToolDefinition(
        name="search_conversations",
        description="Search conversations for a contact",
        parameters=_contact_id_schema(),
    ),
    ToolDefinition(
        name="get_contact_appointments",
        description="Get appointments for a contact",
        parameters={
            "type": "object",
            "properties": {
                "contactId": {"type": "string", "description": "Contact ID"},
                "startDate": {
                    "type": "string",
                    "description": "Start date (optional)",
                },
                "endDate": {"type": "string", "description": "End date (optional)"},
            },
            "required": ["contactId"],
        },
    ),
    ToolDefinition(
        name="get_payments",
        description="Get payment transactions",
        parameters={
            "type": "object",
            "properties": {
                "contactId": {
                    "type": "string",
                    "description": "Contact ID (optional)",
                },
                "status": {
                    "type": "string",
                    "description": "Payment status (optional)",
                },
            },
        },
    ),
    ToolDefinition(
        name="send_message",
        description="Send a message (SMS or Email) to a contact",
        parameters={
            "type": "object",
            "properties": {
                "contactId": {
                    "type": "string",
                    "description": "The ID of the contact to send the message to",
                },
                "message": {
                    "type": "string",
                    "description": "The message content to send",
                },
                "type": {
                    "type": "string",
                    "enum": ["SMS", "Email"],
                    "description": "Type of message to send (SMS or Email)",
                },
            },
            "required": ["contactId", "message"],
        },
    ),
)


def list_tools() -> list[ToolDefinition]:
    return list(TOOL_CATALOG)


def openai_tools() -> list[dict]:
    return [tool.to_openai() for tool in TOOL_CATALOG]


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HandlerFunc = Callable[["ToolExecutor", Any], Awaitable[Any]]


@dataclass(frozen=True)
class ToolHandler:
    arguments: type[ToolArguments]
    func: HandlerFunc


TOOL_HANDLERS: dict[str, ToolHandler] = {}


def tool_handler(name: str, arguments: type[ToolArguments]):
    def register(func: HandlerFunc) -> HandlerFunc:
        if name in TOOL_HANDLERS:
            raise RuntimeError(f"Duplicate handler for tool {name}")
        TOOL_HANDLERS[name] = ToolHandler(arguments=arguments, func=func)
        return func

    return register


def validate_registry() -> None:
    """Fail fast when the catalog and the handler registry disagree."""
    catalog = {tool.name for tool in TOOL_CATALOG}
    missing = catalog - TOOL_HANDLERS.keys()
    extra = TOOL_HANDLERS.keys() - catalog
    if missing or extra:
        raise RuntimeError(
            f"Tool registry mismatch: unhandled={sorted(missing)} "
            f"uncatalogued={sorted(extra)}"
        )


def parse_arguments(request: ToolCallRequest) -> ToolArguments:
    handler = TOOL_HANDLERS[request.name]
    try:
        return handler.arguments.model_validate(request.arguments)
    except ValidationError as exc:
        raise ToolArgumentsError(request.name, exc) from exc


class ToolExecutor:
    """Runs one tool call against the contact cache or the GoHighLevel MCP server.

    Never raises: every failure comes back as an unsuccessful ToolCallResult
    so the model can explain it to the user.
    """

    def __init__(
        self,
        mcp: GHLMCPClient,
        resolver: ContactResolver,
        now: Callable[[], datetime] | None = None,
    ):
        self.mcp = mcp
        self.resolver = resolver
        self.clock = now or (lambda: datetime.now(UTC))

    async def execute(self, request: ToolCallRequest) -> ToolCallResult:
        if request.name not in TOOL_HANDLERS:
            return ToolCallResult(
                success=False, error=f"Function {request.name} not implemented"
            )

        try:
            args = parse_arguments(request)
        except ToolArgumentsError as exc:
            logger.warning("Rejected %s call: %s", request.name, exc)
            return ToolCallResult(
                success=False,
                error=str(exc),
                hint="Fix the listed arguments and call the tool again.",
            )

        try:
            outcome = await TOOL_HANDLERS[request.name].func(self, args)
        except Exception as exc:
            logger.exception("Tool %s failed", request.name)
            return ToolCallResult(
                success=False, error=f"MCP Error: {exc}", hint=RECONNECT_HINT
            )

        if isinstance(outcome, ToolCallResult):
            return outcome
        if outcome in (None, [], {}):
            return ToolCallResult(
                success=True, data=outcome, hint="No matching records were found."
            )
        return ToolCallResult(success=True, data=outcome)


@tool_handler("get_contacts", GetContactsArgs)
async def _get_contacts(executor: ToolExecutor, args: GetContactsArgs) -> Any:
    return await executor.resolver.resolve(args.query, args.limit)


@tool_handler("get_contact", ContactIdArgs)
async def _get_contact(executor: ToolExecutor, args: ContactIdArgs) -> Any:
    return await executor.mcp.get_contact(args.contactId)


@tool_handler("create_contact", CreateContactArgs)
async def _create_contact(executor: ToolExecutor, args: CreateContactArgs) -> Any:
    return await executor.mcp.create_contact(args.model_dump(exclude_none=True))


@tool_handler("search_opportunities", SearchOpportunitiesArgs)
async def _search_opportunities(
    executor: ToolExecutor, args: SearchOpportunitiesArgs
) -> Any:
    return await executor.mcp.search_opportunity(args.model_dump(exclude_none=True))


@tool_handler("get_pipelines", NoArgs)
async def _get_pipelines(executor: ToolExecutor, _args: NoArgs) -> Any:
    return await executor.mcp.get_pipelines()


@tool_handler("add_tags_to_contact", AddTagsArgs)
async def _add_tags(executor: ToolExecutor, args: AddTagsArgs) -> Any:
    return await executor.mcp.add_tags(args.contactId, args.tags)


@tool_handler("get_contact_tasks", ContactIdArgs)
async def _get_contact_tasks(executor: ToolExecutor, args: ContactIdArgs) -> Any:
    return await executor.mcp.get_all_tasks(args.contactId)


@tool_handler("search_conversations", ContactIdArgs)
async def _search_conversations(
    _executor: ToolExecutor, args: ContactIdArgs
) -> ToolCallResult:
    return ToolCallResult(
        success=False,
        data={"contactId": args.contactId},
        error="Conversation search is not yet implemented",
        hint="Tell the user conversation history is not available here yet.",
    )


@tool_handler("get_contact_appointments", AppointmentsArgs)
async def _get_contact_appointments(
    executor: ToolExecutor, args: AppointmentsArgs
) -> ToolCallResult:
    now = executor.clock()
    start = args.startDate or (now - APPOINTMENT_WINDOW_BEFORE).isoformat()
    end = args.endDate or (now + APPOINTMENT_WINDOW_AFTER).isoformat()

    data: dict[str, Any] = {
        "limitation": CALENDAR_LIMITATION,
        "contactId": args.contactId,
        "window": {"startTime": start, "endTime": end},
    }
    try:
        data["events"] = await executor.mcp.get_calendar_events(start, end)
    except Exception as exc:
        logger.warning("Calendar events lookup failed: %s", exc)
        data["events"] = None
        data["eventsError"] = str(exc)
    return ToolCallResult(success=True, data=data, hint=CALENDAR_SUGGESTION)


@tool_handler("get_payments", PaymentsArgs)
async def _get_payments(executor: ToolExecutor, args: PaymentsArgs) -> Any:
    return await executor.mcp.list_transactions(
        {"contactId": args.contactId, "status": args.status}
    )


@tool_handler("send_message", SendMessageArgs)
async def _send_message(executor: ToolExecutor, args: SendMessageArgs) -> Any:
    logger.info("Sending %s to contact %s", args.type, args.contactId)
    return await executor.mcp.send_message(args.contactId, args.message, args.type)


validate_registry()
