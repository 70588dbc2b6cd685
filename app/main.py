from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.cache import CacheFacade, create_redis_client
from app.config import get_settings
from app.errors import register_exception_handlers
from app.routers import groups, health, messages
from app.scheduler import start_scheduler, stop_scheduler
from app.services.file_store import LocalFileStore
from app.services.notifications import create_notification_sink
from app.ws import ConnectionManager

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    redis_client = create_redis_client(settings.redis_url, settings.cache_timeout_seconds)
    app.state.cache = CacheFacade(
        redis_client,
        key_prefix=settings.cache_key_prefix,
        timeout=settings.cache_timeout_seconds,
        retry_after=settings.cache_retry_seconds,
    )
    app.state.connections = ConnectionManager(redis=redis_client)
    app.state.connections.start_listener()
    app.state.notifier = create_notification_sink(app.state.connections)
    app.state.file_store = LocalFileStore(settings.upload_dir)
    for subdir in ("voice", "images", "group_icons"):
        app.state.file_store.ensure_dir(subdir)
    start_scheduler(app.state.file_store)
    yield
    # Shutdown
    stop_scheduler()
    await app.state.notifier.drain()
    await app.state.connections.stop_listener()
    await app.state.cache.close()


app = FastAPI(
    title="Voice Messaging API",
    description="Direct and group voice/text messaging with read tracking",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(messages.router, prefix="/messages", tags=["Messages"])
app.include_router(groups.router, prefix="/groups", tags=["Groups"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
