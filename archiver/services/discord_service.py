# archiver/services/discord_service.py
from typing import List, Optional
import asyncio
import logging
import discord
from archiver.schemas import (
    AnyMessage,
    ChannelHandle,
    ChannelKind,
    EventKind,
    MessageReference,
    MessageSnapshot,
    PendingEvent,
    ReactionCount,
    ReactionDirection,
)

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """The platform could not produce a channel or message we asked for."""


def _unique(values) -> List[str]:
    seen = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def _emoji_name(emoji) -> str:
    return getattr(emoji, "name", None) or str(emoji)


def snapshot_from_message(message: discord.Message) -> MessageSnapshot:
    guild = message.guild
    author = message.author
    return MessageSnapshot(
        id=str(message.id),
        channel_id=str(message.channel.id),
        guild_id=str(guild.id) if guild else None,
        author=author.name if author else None,
        content=message.content or "",
        created_at=message.created_at,
        edited_at=message.edited_at,
        attachments=_unique(a.url for a in message.attachments),
        embeds=_unique(e.url for e in message.embeds),
        mentions=_unique(u.name for u in message.mentions),
        reactions=[
            ReactionCount(emoji_name=_emoji_name(r.emoji), count=r.count)
            for r in message.reactions
        ],
        pinned=message.pinned,
        type=message.type.name,
    )


def snapshot_from_payload(payload: discord.RawMessageUpdateEvent) -> Optional[MessageSnapshot]:
    """
    Build a snapshot from a raw edit payload, so each edit keeps the content it
    carried when it arrived. Returns None for partial payloads without content.
    """
    data = payload.data
    if "content" not in data or not data.get("timestamp"):
        return None
    author = data.get("author") or {}
    return MessageSnapshot(
        id=str(payload.message_id),
        channel_id=str(payload.channel_id),
        guild_id=str(payload.guild_id) if payload.guild_id else None,
        author=author.get("username"),
        content=data["content"] or "",
        created_at=discord.utils.parse_time(data["timestamp"]),
        edited_at=discord.utils.parse_time(data.get("edited_timestamp")),
        attachments=_unique(a.get("url") for a in data.get("attachments", [])),
        embeds=_unique(e.get("url") for e in data.get("embeds", [])),
        mentions=_unique(u.get("username") for u in data.get("mentions", [])),
        reactions=[
            ReactionCount(emoji_name=(r.get("emoji") or {}).get("name") or "", count=r.get("count", 0))
            for r in data.get("reactions", [])
        ],
        pinned=data.get("pinned", False),
        type=discord.enums.try_enum(discord.MessageType, data.get("type", 0)).name,
    )


def handle_from_channel(channel) -> ChannelHandle:
    if isinstance(channel, discord.Thread):
        kind, name = ChannelKind.THREAD, channel.name
    elif isinstance(channel, discord.DMChannel):
        recipient = channel.recipient
        kind, name = ChannelKind.DM, recipient.name if recipient else ""
    elif isinstance(channel, discord.abc.Messageable):
        kind, name = ChannelKind.TEXT, getattr(channel, "name", "") or ""
    else:
        kind, name = ChannelKind.OTHER, getattr(channel, "name", "") or ""
    return ChannelHandle(id=str(channel.id), name=name, kind=kind, raw=channel)


class DiscordService:
    """
    Platform adapter: history pages, channel and message resolution, and
    conversion of gateway events into pending events for the coordinator.
    """

    def __init__(self, token: str, coordinator=None):
        self.token = token
        self.coordinator = coordinator
        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True
        intents.reactions = True
        self.client = discord.Client(intents=intents)
        self._runner: Optional[asyncio.Task] = None

        for handler in (
            self.on_message,
            self.on_raw_message_edit,
            self.on_raw_message_delete,
            self.on_raw_reaction_add,
            self.on_raw_reaction_remove,
        ):
            self.client.event(handler)

    # --- Pages and resolution ---

    async def fetch_page(self, channel: ChannelHandle, limit: int, before: str = None, after: str = None) -> List[MessageSnapshot]:
        """
        One history request. Pages come back oldest-first when `after` is
        given and newest-first otherwise.
        """
        history = channel.raw.history(
            limit=limit,
            before=discord.Object(id=int(before)) if before else None,
            after=discord.Object(id=int(after)) if after else None,
        )
        return [snapshot_from_message(m) async for m in history]

    async def _channel(self, channel_id: str):
        channel = self.client.get_channel(int(channel_id))
        if channel is not None:
            return channel
        try:
            return await self.client.fetch_channel(int(channel_id))
        except (discord.NotFound, discord.Forbidden, discord.InvalidData):
            return None

    async def resolve_channel(self, channel_id: str) -> Optional[ChannelHandle]:
        channel = await self._channel(channel_id)
        if channel is None:
            return None
        return handle_from_channel(channel)

    async def fetch_message(self, message: AnyMessage) -> MessageSnapshot:
        """Always asks the platform, ignoring whatever content was cached."""
        channel = await self._channel(message.channel_id)
        if channel is None or not hasattr(channel, "fetch_message"):
            raise ResolutionError(f"Channel {message.channel_id} is not available.")
        try:
            fetched = await channel.fetch_message(int(message.id))
        except discord.HTTPException as e:
            raise ResolutionError(f"Error fetching message {message.id}: {e}") from e
        return snapshot_from_message(fetched)

    async def resolve_message(self, message: AnyMessage) -> MessageSnapshot:
        if isinstance(message, MessageSnapshot):
            return message
        logger.debug(f"Fetching partial message {message.id}...")
        return await self.fetch_message(message)

    def get_guild(self, guild_id: str):
        return self.client.get_guild(int(guild_id))

    def text_channels(self, guild) -> List[ChannelHandle]:
        channels = []
        for channel in guild.text_channels:
            channels.append(handle_from_channel(channel))
            for thread in channel.threads:
                channels.append(handle_from_channel(thread))
        return channels

    # --- Live events ---

    async def _submit(self, event: PendingEvent):
        if self.coordinator is None:
            return
        await self.coordinator.submit(event)

    async def on_message(self, message: discord.Message):
        await self._submit(PendingEvent(kind=EventKind.CREATED, message=snapshot_from_message(message)))

    async def on_raw_message_edit(self, payload: discord.RawMessageUpdateEvent):
        # Embed unfurls also arrive as edits, but without an edit timestamp
        if not payload.data.get("edited_timestamp"):
            return
        message = snapshot_from_payload(payload)
        if message is None:
            message = MessageReference(id=str(payload.message_id), channel_id=str(payload.channel_id))
        await self._submit(PendingEvent(kind=EventKind.EDITED, message=message))

    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent):
        ref = MessageReference(id=str(payload.message_id), channel_id=str(payload.channel_id))
        await self._submit(PendingEvent(kind=EventKind.DELETED, message=ref))

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        ref = MessageReference(id=str(payload.message_id), channel_id=str(payload.channel_id))
        await self._submit(PendingEvent(kind=EventKind.REACTION, message=ref, direction=ReactionDirection.ADD))

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent):
        ref = MessageReference(id=str(payload.message_id), channel_id=str(payload.channel_id))
        await self._submit(PendingEvent(kind=EventKind.REACTION, message=ref, direction=ReactionDirection.REMOVE))

    # --- Lifecycle ---

    async def __aenter__(self):
        try:
            await self.client.login(self.token)
            self._runner = asyncio.create_task(self.client.connect())

            logger.info("Waiting for the Discord gateway...")
            ready = asyncio.create_task(self.client.wait_until_ready())
            await asyncio.wait({self._runner, ready}, return_when=asyncio.FIRST_COMPLETED)
            if self._runner.done():
                ready.cancel()
                # Surfaces login/connection errors
                self._runner.result()
        except Exception:
            # __aexit__ is not called when entering fails
            await self.__aexit__(None, None, None)
            raise
        logger.info(f"Connected to Discord as {self.client.user} ({len(self.client.guilds)} guilds).")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if not self.client.is_closed():
            await self.client.close()
        if self._runner is not None:
            self._runner.cancel()
