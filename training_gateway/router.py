from typing import Any, Dict, Optional
import json
import logging

import mcp.types as types
from starlette.datastructures import Headers
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import Message, Receive, Scope, Send

from . import config
from .identity import resolve_identity
from .providers import ProfileProvider
from .sessions import SessionRegistry
from .transport import Reply

logger = logging.getLogger(__name__)


class RequestRouter:
    """ASGI entry point for every request on the tool endpoint.

    Resolves the caller's identity, finds or creates its session, rebinds the
    session when the identity changed, and hands the request to the session's
    handler set, which writes the reply.
    """

    def __init__(self, registry: SessionRegistry, profiles: ProfileProvider) -> None:
        self.registry = registry
        self.profiles = profiles

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        reply = Reply(send)
        try:
            if scope["method"] == "DELETE":
                await self.delete(scope, receive, reply)
            else:
                await self.handle(scope, receive, reply)
        except Exception as e:
            logger.exception("[MCP] error")
            if not reply.committed:
                await JSONResponse({"error": "mcp failed", "details": str(e)}, status_code=500)(scope, receive, reply)
            else:
                logger.warning("[MCP] reply already committed; closing without error body")
                await reply.abort()

    async def handle(self, scope: Scope, receive: Receive, reply: Reply) -> None:
        request = Request(scope, receive)
        if request.method == "POST":
            body = await request.body()
            try:
                message = json.loads(body, parse_constant=_reject_constant)
            except ValueError as e:
                error = rpc_error(types.PARSE_ERROR, f"Parse error: {e}")
                await JSONResponse(error, status_code=400)(scope, receive, reply)
                return
            if _has_invalid_id(message):
                # would otherwise pass as a notification and get no answer
                error = rpc_error(types.INVALID_REQUEST, "Invalid request id")
                await JSONResponse(error, status_code=400)(scope, receive, reply)
                return
            receive = _replay(body, receive)

        user_id = await resolve_identity(request.headers.get("authorization"), self.profiles)
        token = _session_token(request.headers)
        session = await self.registry.lookup_or_create(token, user_id)
        if session.identity != user_id:
            self.registry.rebind(session, user_id)

        created = session.id != token
        try:
            await session.handlers.handle_request(scope, receive, reply)
        finally:
            # a session whose first message was refused is unreachable
            if created and not reply.accepted:
                await self.registry.delete(session.id)

    async def delete(self, scope: Scope, receive: Receive, reply: Reply) -> None:
        token = _session_token(Headers(scope=scope))
        if token is None:
            await JSONResponse({"error": f"Missing {config.SESSION_HEADER}"}, status_code=400)(scope, receive, reply)
            return
        session = self.registry.lookup(token)
        if session is None:
            logger.info("[MCP] delete for unknown sessionId=%s ignored", token)
            await Response(status_code=204)(scope, receive, reply)
            return
        # the transport answers the DELETE and terminates itself
        await session.handlers.handle_request(scope, receive, reply)
        if reply.accepted:
            await self.registry.delete(token)


def rpc_error(code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": None, "error": {"code": code, "message": message}}


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _has_invalid_id(message: Any) -> bool:
    if not isinstance(message, dict) or "method" not in message or "id" not in message:
        return False
    msg_id = message["id"]
    return isinstance(msg_id, bool) or not isinstance(msg_id, (str, int))


def _replay(body: bytes, receive: Receive) -> Receive:
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def _session_token(headers: Headers) -> Optional[str]:
    token = headers.get(config.SESSION_HEADER)
    return token if token else None
