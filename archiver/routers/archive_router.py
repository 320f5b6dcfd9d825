# archiver/routers/archive_router.py
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request
from archiver import schemas
from archiver.config import settings
from archiver.controllers.archive_controller import Archiver
from archiver.services.message_store import PersistenceError

router = APIRouter()

def get_archiver(request: Request) -> Archiver:
    archiver = getattr(request.app.state, "archiver", None)
    if archiver is None:
        raise HTTPException(status_code=503, detail="Archiving is not available.")
    return archiver

@router.post("/archive/channel", response_model=schemas.ArchiveResult)
async def archive_channel(body: schemas.ArchiveChannelRequest, archiver: Archiver = Depends(get_archiver)):
    # An unknown channel reaches the paginator as None and is rejected there
    channel = await archiver.source.resolve_channel(body.channel_id)
    return await archiver.archive_channel(channel, resume=body.resume)

@router.post("/archive/guild", response_model=schemas.ArchiveResult)
async def archive_guild(body: schemas.ArchiveGuildRequest, archiver: Archiver = Depends(get_archiver)):
    delay_ms = body.delay_ms if body.delay_ms is not None else settings.archive_delay_ms
    guild = archiver.source.get_guild(body.guild_id)
    return await archiver.archive_guild(guild, resume=body.resume, delay_ms=delay_ms)

@router.get("/status", response_model=schemas.StatusResponse)
async def status(request: Request):
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        return schemas.StatusResponse(enabled=False)
    return schemas.StatusResponse(
        enabled=True,
        state=coordinator.state.value,
        pending_events=len(coordinator.pending),
    )

@router.get("/channels", response_model=List[schemas.ChannelCursor])
async def channel_cursors(archiver: Archiver = Depends(get_archiver)):
    try:
        return await archiver.store.channel_cursors()
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
