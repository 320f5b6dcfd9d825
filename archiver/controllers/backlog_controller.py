# archiver/controllers/backlog_controller.py
from collections import deque
from enum import Enum
import asyncio
import logging
from archiver.controllers.archive_controller import Archiver
from archiver.schemas import ArchiveResult, EventKind, PendingEvent

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    INITIALIZING = "initializing"
    BACKLOG_IN_PROGRESS = "backlog_in_progress"
    DRAINING = "draining"
    LIVE = "live"


class BacklogCoordinator:
    """
    Startup reconciliation between stored history and the live event feed.

    Until the catch-up scans finish, live events are queued instead of
    processed. The queue is then replayed once in arrival order and every
    later event is dispatched directly.
    """

    def __init__(self, archiver: Archiver, source, delay_ms: int = 0):
        self.archiver = archiver
        self.source = source
        self.delay_ms = delay_ms
        self.state = SessionState.INITIALIZING
        self.pending = deque()

    @property
    def live(self) -> bool:
        return self.state == SessionState.LIVE

    async def submit(self, event: PendingEvent) -> ArchiveResult:
        if self.live:
            return await self.dispatch(event)
        self.pending.append(event)
        return ArchiveResult(success=True, message="Message added to queue.")

    async def dispatch(self, event: PendingEvent) -> ArchiveResult:
        if event.kind == EventKind.CREATED:
            result = await self.archiver.archive_single(event.message)
        elif event.kind == EventKind.EDITED:
            result = await self.archiver.message_edited(event.message)
        elif event.kind == EventKind.DELETED:
            result = await self.archiver.message_deleted(event.message.id)
        else:
            result = await self.archiver.reaction_changed(event.message, event.direction)

        if not result.success and not result.already_exists:
            logger.warning(f"Error handling {event.kind.value} event for message {event.message.id}: {result.message}")
        return result

    async def _catch_up(self, channel_id: str) -> ArchiveResult:
        channel = await self.source.resolve_channel(channel_id)
        if channel is None:
            logger.warning(f"Channel {channel_id} not found during backlog catchup. Skipping...")
            return ArchiveResult(success=False, message=f"Channel {channel_id} not found.")
        return await self.archiver.archive_channel(channel, resume=True, delay_ms=self.delay_ms)

    async def run_backlog(self):
        if self.state != SessionState.INITIALIZING:
            raise RuntimeError(f"Backlog already started (state: {self.state.value}).")
        self.state = SessionState.BACKLOG_IN_PROGRESS
        logger.info("Processing messages sent while the archiver was offline...")

        try:
            channel_ids = await self.archiver.store.distinct_channel_ids()
            logger.info(f"Found {len(channel_ids)} channels in database.")
            results = await asyncio.gather(
                *(self._catch_up(channel_id) for channel_id in channel_ids),
                return_exceptions=True,
            )
            for channel_id, result in zip(channel_ids, results):
                if isinstance(result, BaseException):
                    logger.error(f"Error during backlog catchup of channel {channel_id}", exc_info=result)
                elif not result.success:
                    logger.error(f"Error during backlog catchup: {result.message}")
                elif result.count:
                    logger.info(f"Backlog catchup: {result.count} messages archived in {result.channel}.")
        except Exception:
            logger.error("Error during backlog catchup", exc_info=True)
        logger.info("Backlog catchup complete.")

        await self.drain()

    async def drain(self):
        self.state = SessionState.DRAINING
        logger.info(f"Processing new message queue. {len(self.pending)} messages in queue.")
        # Events that arrive while draining join the end of the queue
        while self.pending:
            event = self.pending.popleft()
            try:
                await self.dispatch(event)
            except Exception:
                logger.error(f"Error processing queued event for message {event.message.id}", exc_info=True)
        self.state = SessionState.LIVE
        logger.info("Archiver is live.")
