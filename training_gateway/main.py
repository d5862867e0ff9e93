from contextlib import asynccontextmanager
from typing import Any, Callable, Optional
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .planner import ProgramSynthesizer
from .providers import Providers, demo_providers
from .router import RequestRouter
from .sessions import Session, SessionRegistry, SessionStore
from .tools import make_handler_factory

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    providers: Optional[Providers] = None,
    store: Optional[SessionStore] = None,
    synthesizer: Optional[ProgramSynthesizer] = None,
    handler_factory: Optional[Callable[[Session], Any]] = None,
) -> FastAPI:
    providers = providers or demo_providers()
    registry = SessionRegistry(handler_factory or make_handler_factory(providers, synthesizer), store=store)
    router = RequestRouter(registry, providers.profiles)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s %s", config.SERVER_NAME, config.SERVER_VERSION)
        async with registry.run():
            yield
        logger.info("Shutting down %s", config.SERVER_NAME)

    app = FastAPI(title="Training Program MCP", version=config.SERVER_VERSION, lifespan=lifespan)
    app.state.registry = registry
    app.state.router = router

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[config.SESSION_HEADER],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        auth = "yes" if request.headers.get("authorization") else "no"
        sid = request.headers.get(config.SESSION_HEADER, "-")
        logger.info("[REQ] %s %s auth=%s %s=%s", request.method, request.url.path, auth, config.SESSION_HEADER, sid)
        response = await call_next(request)
        logger.info("[RES] %s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    @app.get("/")
    def index():
        return {"ok": True, "name": config.SERVER_NAME, "endpoint": "/mcp"}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # POST carries JSON-RPC, GET opens the server's SSE stream, DELETE ends the session
    app.add_route("/mcp", router, methods=["GET", "POST", "DELETE"])

    return app


app = create_app()
