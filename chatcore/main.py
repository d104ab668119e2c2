import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatcore.config import Settings, get_settings
from chatcore.database.connection import close_mongo_connection, connect_to_mongo
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.routers.chat import router as chat_router
from chatcore.routers.conversations import router as conversations_router
from chatcore.routers.presence import router as presence_router
from chatcore.services.coordinator import ChatCoordinator
from chatcore.utils.errors import ChatError


logger = logging.getLogger("chatcore.main")


# attributes every LogRecord carries; anything else was passed through extra=
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with extra={...} fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_FIELDS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(log_level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        handlers=[handler],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    owns_database = app.state.coordinator is None
    if owns_database:
        db = await connect_to_mongo()
        await ConversationRepository(db).ensure_indexes()
        await MessageRepository(db).ensure_indexes()
        app.state.coordinator = ChatCoordinator.from_database(db, typing_timeout=settings.TYPING_TIMEOUT_SECONDS)

    coordinator: ChatCoordinator = app.state.coordinator
    # sessions never survive a restart, so nobody is online yet
    await coordinator.startup()
    logger.info("Chat coordinator started")
    try:
        yield
    finally:
        await coordinator.shutdown()
        if owns_database:
            await close_mongo_connection()
        logger.info("Chat coordinator stopped")


def create_app(coordinator: Optional[ChatCoordinator] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)

    app = FastAPI(title="Chat realtime coordinator", lifespan=lifespan)
    app.state.settings = settings
    app.state.coordinator = coordinator

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(chat_router)
    app.include_router(conversations_router)
    app.include_router(presence_router)

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health", tags=["system"])
    async def health() -> Dict[str, object]:
        coordinator: ChatCoordinator = app.state.coordinator
        return {"status": "ok", "connections": len(coordinator.registry) if coordinator else 0}

    return app


app = create_app()
