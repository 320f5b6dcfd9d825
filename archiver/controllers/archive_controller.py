# archiver/controllers/archive_controller.py
from datetime import datetime, timezone
from typing import Optional
import asyncio
import logging
from archiver.models import MessageRecord
from archiver.schemas import (
    AnyMessage,
    ArchiveResult,
    ChannelHandle,
    ErrorKind,
    MessageSnapshot,
    ReactionDirection,
)
from archiver.services.discord_service import ResolutionError
from archiver.services.message_store import MessageStore, PersistenceError, RecordConflict

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def history_entry(timestamp: Optional[datetime], content: str) -> dict:
    stamp = to_utc(timestamp)
    return {"timestamp": stamp.isoformat() if stamp else None, "content": content}


def record_from_snapshot(message: MessageSnapshot) -> MessageRecord:
    return MessageRecord(
        id=message.id,
        content=message.content,
        author=message.author,
        channel_id=message.channel_id,
        guild_id=message.guild_id,
        original_timestamp=to_utc(message.created_at),
        content_history=[],
        attachments=list(message.attachments),
        embeds=list(message.embeds),
        mentions=list(message.mentions),
        reactions=[r.model_dump() for r in message.reactions],
        pinned=message.pinned,
        type=message.type,
        deleted_timestamp=None,
    )


class Archiver:
    """
    Archives messages into the store and keeps the archived records in step
    with edits, deletions and reactions.

    `source` is the platform adapter (see DiscordService): it provides history
    pages, message resolution and guild channel enumeration.
    """

    def __init__(self, store: MessageStore, source):
        self.store = store
        self.source = source

    async def archive_single(self, message: AnyMessage) -> ArchiveResult:
        try:
            snapshot = await self.source.resolve_message(message)
        except ResolutionError as e:
            logger.error(f"Error fetching partial message {message.id}: {e}")
            return ArchiveResult.failure(
                ErrorKind.RESOLUTION_FAILURE,
                f"Error fetching partial message {message.id}: {e}",
            )

        try:
            await self.store.insert(record_from_snapshot(snapshot))
        except RecordConflict:
            return ArchiveResult.failure(
                ErrorKind.ALREADY_EXISTS,
                "This message has already been archived.",
                already_exists=True,
            )
        except PersistenceError as e:
            return ArchiveResult.failure(ErrorKind.PERSISTENCE_FAILURE, str(e))

        return ArchiveResult(
            success=True,
            message=f"Message {snapshot.id} archived successfully.",
            count=1,
        )

    async def archive_channel(self, channel: Optional[ChannelHandle], resume: bool, delay_ms: int = 0) -> ArchiveResult:
        """
        Page through a channel's history and archive every message.

        Resume mode scans forwards from the newest stored message; full mode
        scans backwards from the present. The scan ends on the first page
        shorter than PAGE_SIZE.
        """
        if channel is None or not channel.text_based:
            return ArchiveResult.failure(ErrorKind.CHANNEL_TYPE_UNSUPPORTED, "Channel is not a text channel.")

        label = channel.label
        archived = 0
        last_id = None

        if resume:
            latest = await self.store.most_recent_by_channel(channel.id)
            if latest is not None:
                last_id = latest.id
            else:
                logger.info(f"No archived messages in {label} yet, scanning its full history.")
                resume = False

        logger.info(f"Archiving all messages in {label}...")

        while True:
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)

            try:
                if resume:
                    page = await self.source.fetch_page(channel, PAGE_SIZE, after=last_id)
                else:
                    page = await self.source.fetch_page(channel, PAGE_SIZE, before=last_id)
            except Exception as e:
                logger.error(f"Error fetching messages in {label}", exc_info=True)
                return ArchiveResult.failure(
                    ErrorKind.FETCH_FAILURE,
                    f"Error fetching messages in {label} after archiving {archived}: {e}",
                    count=archived,
                    channel=label,
                )

            if len(page) > 1:
                order = "reverse " if page[1].created_at < page[0].created_at else ""
                logger.debug(f"Fetched {len(page)} messages from {label} in {order}chronological order (cursor {last_id}).")

            for message in page:
                result = await self.archive_single(message)
                if result.count:
                    archived += result.count
                elif not result.success and not result.already_exists:
                    # Keep going; archive as much as possible
                    logger.warning(f"Error archiving message {message.id}: {result.message}")

            if len(page) < PAGE_SIZE:
                break
            last_id = page[-1].id

        return ArchiveResult(
            success=True,
            message=f"{archived} messages archived in {label}.",
            count=archived,
            channel=label,
        )

    async def archive_guild(self, guild, resume: bool, delay_ms: int = 0) -> ArchiveResult:
        if guild is None:
            return ArchiveResult.failure(ErrorKind.NOT_FOUND, "Guild not found.")

        channels = self.source.text_channels(guild)
        count = 0
        for channel in channels:
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000)
            result = await self.archive_channel(channel, resume)
            if not result.success:
                # Archived channels stay archived; a rerun resumes
                return result
            count += result.count or 0

        return ArchiveResult(
            success=True,
            message=f"Archived {count} messages in {len(channels)} channels.",
            count=count,
        )

    async def message_edited(self, message: AnyMessage) -> ArchiveResult:
        try:
            snapshot = await self.source.resolve_message(message)
        except ResolutionError as e:
            return ArchiveResult.failure(ErrorKind.RESOLUTION_FAILURE, f"Error fetching edited message {message.id}: {e}")

        try:
            existing = await self.store.find_by_id(snapshot.id)
        except PersistenceError as e:
            return ArchiveResult.failure(ErrorKind.PERSISTENCE_FAILURE, str(e))
        if existing is None:
            return await self.archive_single(snapshot)

        history = list(existing.content_history or [])
        if not history:
            history.append(history_entry(existing.original_timestamp, existing.content))
        history.append(history_entry(snapshot.edited_at or utcnow(), snapshot.content))

        try:
            await self.store.update(snapshot.id, content=snapshot.content, content_history=history)
        except PersistenceError as e:
            return ArchiveResult.failure(
                ErrorKind.PERSISTENCE_FAILURE,
                f"Error handling updated message {snapshot.id}: {e}",
            )
        return ArchiveResult(success=True, message="Message successfully updated.", count=1)

    async def message_deleted(self, message_id: str) -> ArchiveResult:
        try:
            existing = await self.store.find_by_id(message_id)
        except PersistenceError as e:
            return ArchiveResult.failure(ErrorKind.PERSISTENCE_FAILURE, str(e))
        if existing is None:
            return ArchiveResult.failure(ErrorKind.NOT_FOUND, "Message not found in database.")
        if existing.deleted_timestamp is not None:
            return ArchiveResult(success=True, message="Message was already marked as deleted.")

        # Discord sends no deletion time, so the observed time is recorded
        try:
            await self.store.update(message_id, deleted_timestamp=utcnow())
        except PersistenceError as e:
            return ArchiveResult.failure(
                ErrorKind.PERSISTENCE_FAILURE,
                f"Error handling deleted message {message_id}: {e}",
            )
        return ArchiveResult(success=True, message="Message successfully marked as deleted.")

    async def reaction_changed(self, message: AnyMessage, direction: Optional[ReactionDirection] = None) -> ArchiveResult:
        try:
            existing = await self.store.find_by_id(message.id)
        except PersistenceError as e:
            return ArchiveResult.failure(ErrorKind.PERSISTENCE_FAILURE, str(e))
        if existing is None:
            return await self.archive_single(message)

        # The event's cached reactions may be stale, so refetch and replace
        try:
            fresh = await self.source.fetch_message(message)
        except ResolutionError as e:
            return ArchiveResult.failure(ErrorKind.RESOLUTION_FAILURE, f"Error refreshing reactions for {message.id}: {e}")

        try:
            await self.store.update(message.id, reactions=[r.model_dump() for r in fresh.reactions])
        except PersistenceError as e:
            return ArchiveResult.failure(ErrorKind.PERSISTENCE_FAILURE, str(e))
        logger.debug(f"Reaction {direction.value if direction else 'change'} synced for message {message.id}.")
        return ArchiveResult(success=True, message="Message successfully updated.")
