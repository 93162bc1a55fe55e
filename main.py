"""
Persona RAG Service
Answers chat messages "as" a mentioned user, grounded in that user's own
message history via vector similarity search.
+ /chat: retrieval-augmented impersonation
+ /sync: incremental message -> embedding sync (also run on a cron schedule)
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from auth import API_KEY_HEADER, validate_api_key, validate_cron_secret
from config import load_settings, validate_environment
from errors import ConfigurationError, GenerationError, NotFoundError, PersonaError
from processors.chat import respond
from processors.retrieval import DEFAULT_MATCH_THRESHOLD
from services import Services, build_services

load_dotenv()


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    mentioned_username: Optional[str] = Field(None, alias="mentionedUsername")
    match_threshold: float = Field(DEFAULT_MATCH_THRESHOLD, alias="matchThreshold", ge=0.0, le=1.0)
    channel_id: Optional[str] = Field(None, alias="channelId")
    environment: Optional[str] = None


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str
    username: str
    avatar_url: str = Field("", alias="avatarUrl")


class SyncResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages_processed: int = Field(alias="messagesProcessed")
    total_batches: int = Field(alias="totalBatches")
    rows_inserted: int = Field(alias="rowsInserted")
    skipped_ids: List[str] = Field(alias="skippedIds")
    abandoned_ids: List[str] = Field(alias="abandonedIds")


def _detail(services: Services, error: Exception, generic: str) -> str:
    """Underlying message in development, generic text in production."""
    return generic if services.settings.is_production else str(error)


def _require_cron_auth(services: Services, authorization: Optional[str]) -> None:
    if not validate_cron_secret(authorization, services.settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        services: Pre-built services (tests); built from the environment
            at startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            # ConfigurationError here crashes startup, so nothing is routed
            app.state.services = build_services(load_settings())
        current = app.state.services

        print(f"[Startup] environment={current.settings.environment}")
        await current.restore_sync_state()

        if current.settings.sync_enabled:
            current.scheduler.start(current.settings.sync_schedule)
        else:
            print("[Startup] Sync scheduler disabled (SYNC_ENABLED=false)")

        yield

        await current.scheduler.stop()
        print("[Shutdown] Cleanup complete")

    app = FastAPI(title="Persona RAG Service", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/chat", response_model=ChatResponse)
    async def chat(
        body: ChatRequest,
        request: Request,
        x_api_key: Optional[str] = Header(None, alias=API_KEY_HEADER),
    ):
        """
        Reply to a message as the mentioned user.

        Status codes: 400 invalid environment, 401 bad API key, 404 unknown
        user or empty history, 500 generation/internal failure.
        """
        current: Services = request.app.state.services

        if not validate_api_key(x_api_key, current.settings.api_key):
            raise HTTPException(status_code=401, detail="Unauthorized - Invalid or missing API key")

        try:
            if body.environment is not None:
                validate_environment(body.environment)
                if body.environment != current.settings.environment:
                    raise ConfigurationError(
                        f"Environment {body.environment} is not served by this instance"
                    )

            reply = await respond(
                current,
                body.message,
                mentioned_username=body.mentioned_username,
                match_threshold=body.match_threshold,
                channel_id=body.channel_id,
            )
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except GenerationError as e:
            print(f"[Chat] username={body.mentioned_username} status=failed code={e.code} error={e}")
            raise HTTPException(
                status_code=500,
                detail={"code": e.code, "message": _detail(current, e, "Failed to generate response")},
            )
        except PersonaError as e:
            print(f"[Chat] username={body.mentioned_username} status=failed error={e}")
            raise HTTPException(
                status_code=500,
                detail={"code": "internal_error", "message": _detail(current, e, "Internal Server Error")},
            )

        return ChatResponse(content=reply.content, username=reply.username, avatar_url=reply.avatar_url)

    @app.post("/sync", response_model=SyncResponse)
    async def sync(request: Request, authorization: Optional[str] = Header(None)):
        """Run one sync now (cron trigger). Safe to call repeatedly."""
        current: Services = request.app.state.services
        _require_cron_auth(current, authorization)

        try:
            result = await current.scheduler.sync_now()
        except PersonaError as e:
            raise HTTPException(status_code=500, detail=_detail(current, e, "Internal server error"))

        return SyncResponse(
            messages_processed=result.messages_processed,
            total_batches=result.total_batches,
            rows_inserted=result.rows_inserted,
            skipped_ids=result.skipped_ids,
            abandoned_ids=result.abandoned_ids,
        )

    @app.get("/sync/status")
    async def sync_status(request: Request, authorization: Optional[str] = Header(None)):
        current: Services = request.app.state.services
        _require_cron_auth(current, authorization)

        return {
            "last_synced_at": current.sync_job.get_sync_state().last_synced_at.isoformat(),
            "phase": current.sync_job.phase,
            "scheduler_running": current.scheduler.running,
            "schedule": current.scheduler.schedule,
            "stats": current.scheduler.get_stats().model_dump(mode="json"),
        }

    @app.get("/health")
    async def health(request: Request):
        current: Services = request.app.state.services
        return {
            "status": "ok",
            "service": "persona-rag",
            "environment": current.settings.environment,
            "scheduler_running": current.scheduler.running,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app = create_app()
