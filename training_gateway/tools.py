"""Per-session tool table, served by an MCP server over streamable HTTP."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type
import json
import logging
import math
import re

import anyio
from anyio.abc import TaskStatus
import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.streamable_http import StreamableHTTPServerTransport
from mcp.shared.exceptions import McpError
from pydantic import BaseModel, ValidationError
from starlette.types import Receive, Scope, Send

from . import config
from .models import (
    ListExercisesInput,
    NoInput,
    ProgramRequest,
    RmMaxesInput,
    WeekSummaryInput,
    WorkoutSession,
)
from .planner import CatalogError, ProgramSynthesizer
from .providers import Providers
from .sessions import Session

logger = logging.getLogger(__name__)


DATE_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})", re.ASCII)


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_model: Type[BaseModel]
    handler: Callable[[Any], Awaitable[Any]]

    @property
    def input_schema(self) -> Dict[str, Any]:
        schema = self.input_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def describe(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


# --- pure helpers ---

def to_date_num(iso: Any) -> Optional[int]:
    """``YYYY-MM-DD`` as the integer ``YYYYMMDD``; None when it does not match."""
    if not isinstance(iso, str):
        return None
    m = DATE_RE.fullmatch(iso)
    if not m:
        return None
    return int(m.group(1) + m.group(2) + m.group(3))


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def summarize_sessions(sessions: List[WorkoutSession]) -> Dict[str, Any]:
    total_minutes = 0
    rpe_sum = 0.0
    rpe_count = 0
    for s in sessions:
        total_minutes += s.duration_min or 0
        if _is_number(s.perceived_exertion_rpe):
            rpe_sum += s.perceived_exertion_rpe
            rpe_count += 1
    avg = math.floor(rpe_sum / rpe_count * 10 + 0.5) / 10 if rpe_count else None
    return {
        "sessions_count": len(sessions),
        "total_minutes": total_minutes,
        "avg_session_rpe": avg,
    }


def sessions_in_range(sessions: List[WorkoutSession], start_date: str, end_date: str) -> List[WorkoutSession]:
    start, end = to_date_num(start_date), to_date_num(end_date)
    if start is None or end is None:
        return []
    picked = []
    for s in sessions:
        d = to_date_num(s.date)
        if d is not None and start <= d <= end:
            picked.append((d, s))
    picked.sort(key=lambda x: x[0], reverse=True)
    return [s for _, s in picked]


def text_result(payload: Any, is_error: bool = False) -> types.CallToolResult:
    text = payload if isinstance(payload, str) else json.dumps(payload, indent=2, ensure_ascii=False)
    return types.CallToolResult(content=[types.TextContent(type="text", text=text)], isError=is_error)


class ToolHandlerSet:
    """Tools, MCP server and transport owned by one session.

    The tools read ``session.identity`` on every call, so a rebind done by the
    router between two requests is seen by the next tool invocation.
    """

    def __init__(self, session: Session, providers: Providers, synthesizer: ProgramSynthesizer) -> None:
        self.session = session
        self.providers = providers
        self.synthesizer = synthesizer
        self.tools: Dict[str, ToolDefinition] = {t.name: t for t in self._build_tools()}

        self.server = Server(config.SERVER_NAME, version=config.SERVER_VERSION)
        self.server.list_tools()(self._list_tools)
        # registered directly so bad arguments surface as JSON-RPC errors, not isError results
        self.server.request_handlers[types.CallToolRequest] = self._handle_call_tool
        self.transport = StreamableHTTPServerTransport(
            mcp_session_id=session.id,
            is_json_response_enabled=config.MCP_JSON_RESPONSE,
        )

    def _build_tools(self) -> List[ToolDefinition]:
        return [
            ToolDefinition(
                "get_user_profile",
                "Get the current user's training profile (read-only).",
                NoInput,
                self.get_user_profile,
            ),
            ToolDefinition(
                "get_week_summary",
                "Return a compact weekly summary for the user (read-only).",
                WeekSummaryInput,
                self.get_week_summary,
            ),
            ToolDefinition(
                "list_exercises",
                "List available exercises (id, name, key, knee_friendly).",
                ListExercisesInput,
                self.list_exercises,
            ),
            ToolDefinition(
                "get_rm_maxes",
                "Get 1RM values for exercise IDs for the current user.",
                RmMaxesInput,
                self.get_rm_maxes,
            ),
            ToolDefinition(
                "create_program",
                "Create a weekly program from user input using exercise IDs and RM data. "
                "Returns program JSON + short summary text.",
                ProgramRequest,
                self.create_program,
            ),
        ]

    # --- tools ---
    async def get_user_profile(self, args: NoInput) -> Dict[str, Any]:
        profiles = self.providers.profiles
        user = await profiles.get_profile(self.session.identity)
        if user is None:
            user = await profiles.get_default_profile()
        return user.model_dump(exclude_none=True)

    async def get_week_summary(self, args: WeekSummaryInput) -> Dict[str, Any]:
        user_id = self.session.identity
        sessions = sessions_in_range(
            await self.providers.history.get_sessions(user_id), args.start_date, args.end_date
        )
        return {
            "user_id": user_id,
            "start_date": args.start_date,
            "end_date": args.end_date,
            "summary": summarize_sessions(sessions),
            "sessions": [
                {"date": s.date, "title": s.title, "rpe": s.perceived_exertion_rpe, "duration_min": s.duration_min}
                for s in sessions
            ],
        }

    async def list_exercises(self, args: ListExercisesInput) -> List[Dict[str, Any]]:
        entries = await self.providers.catalog.list_exercises()
        q = (args.query or "").strip().lower()
        if q:
            entries = [e for e in entries if q in f"{e.key} {e.name} {e.group}".lower()]
        return [e.model_dump() for e in entries]

    async def get_rm_maxes(self, args: RmMaxesInput) -> Dict[str, Any]:
        user_id = self.session.identity
        rms = await self.providers.rms.get_rms(user_id)
        out: Dict[str, Optional[float]] = {}
        for ex_id in args.exercise_ids:
            value = rms.get(ex_id)
            out[str(ex_id)] = value if value and value > 0 else None
        return {"user_id": user_id, "rms": out}

    async def create_program(self, args: ProgramRequest) -> Dict[str, Any]:
        user_id = self.session.identity
        catalog = await self.providers.catalog.list_exercises()
        rms = await self.providers.rms.get_rms(user_id)
        result = self.synthesizer.generate_program(user_id, args, catalog, rms)
        return {
            "user_id": user_id,
            "summary_text": result.summary_text,
            "program_json": result.program.model_dump(exclude_unset=True),
        }

    # --- protocol ---
    async def _list_tools(self) -> List[types.Tool]:
        return [t.describe() for t in self.tools.values()]

    async def _handle_call_tool(self, req: types.CallToolRequest) -> types.ServerResult:
        return types.ServerResult(await self.call_tool(req.params.name, req.params.arguments))

    async def call_tool(self, name: Any, arguments: Any) -> types.CallToolResult:
        tool = self.tools.get(name) if isinstance(name, str) else None
        if tool is None:
            raise McpError(types.ErrorData(code=types.INVALID_PARAMS, message=f"Tool {name} not found"))
        try:
            args = tool.input_model.model_validate(arguments if arguments is not None else {})
        except ValidationError as e:
            raise McpError(
                types.ErrorData(
                    code=types.INVALID_PARAMS,
                    message=f"Invalid arguments for tool {name}: {e.error_count()} validation error(s)",
                    data=json.loads(e.json(include_url=False)),
                )
            )
        try:
            payload = await tool.handler(args)
        except (CatalogError, LookupError) as e:
            logger.warning("Tool %s failed for session %s: %s", name, self.session.id, e)
            return text_result(str(e), is_error=True)
        return text_result(payload)

    async def serve(self, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        """Run the server on the transport's streams until the transport is terminated."""
        async with self.transport.connect() as (read_stream, write_stream):
            task_status.started()
            await self.server.run(read_stream, write_stream, self.server.create_initialization_options())

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.transport.handle_request(scope, receive, send)

    async def close(self) -> None:
        if not self.transport.is_terminated:
            await self.transport.terminate()


def make_handler_factory(
    providers: Providers, synthesizer: Optional[ProgramSynthesizer] = None
) -> Callable[[Session], ToolHandlerSet]:
    synthesizer = synthesizer or ProgramSynthesizer()

    def factory(session: Session) -> ToolHandlerSet:
        return ToolHandlerSet(session, providers, synthesizer)

    return factory
