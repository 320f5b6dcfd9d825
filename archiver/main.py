# archiver/main.py
import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
import discord
from fastapi import FastAPI
from .config import settings
from .database import SessionLocal, engine, init_models
from .controllers.archive_controller import Archiver
from .controllers.backlog_controller import BacklogCoordinator
from .routers import archive_router
from .services.discord_service import DiscordService
from .services.message_store import MessageStore

logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

async def start_pipeline(app: FastAPI, stack: AsyncExitStack):
    store = MessageStore(SessionLocal)
    try:
        await init_models()
        await store.ping()
    except Exception:
        logger.warning("WARNING: Message store is unavailable. Archiving will not work.", exc_info=True)
        return

    if not settings.discord_token:
        logger.warning("WARNING: No Discord token configured. Archiving will not work.")
        return

    discord_service = DiscordService(settings.discord_token)
    archiver = Archiver(store, discord_service)
    coordinator = BacklogCoordinator(archiver, discord_service, delay_ms=settings.backlog_delay_ms)
    # Attached before connecting so early events are queued, not lost
    discord_service.coordinator = coordinator

    try:
        await stack.enter_async_context(discord_service)
    except (discord.DiscordException, OSError):
        logger.warning("WARNING: Could not connect to Discord. Archiving will not work.", exc_info=True)
        return
    app.state.archiver = archiver
    app.state.coordinator = coordinator
    logger.info("Archiver component initialized.")

    backlog = asyncio.create_task(coordinator.run_backlog())
    stack.callback(backlog.cancel)

@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.archiver = None
    app.state.coordinator = None
    async with AsyncExitStack() as stack:
        await start_pipeline(app, stack)
        yield
    await engine.dispose()

app = FastAPI(
    title="Discord Message Archiver",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(archive_router.router, tags=["Archiver"])

@app.get("/")
def read_root():
    return {"message": "Archiver is running. Use the /archive endpoints."}
