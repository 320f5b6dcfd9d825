# archiver/services/message_store.py
from typing import List, Optional
from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from archiver.models import MessageRecord
from archiver.schemas import ChannelCursor

class StoreError(Exception):
    pass


class RecordConflict(StoreError):
    def __init__(self, identifier: str):
        super().__init__(f"Message {identifier} is already archived.")
        self.identifier = identifier


class PersistenceError(StoreError):
    pass


class MessageStore:
    """
    Persistence for archived messages.

    Every call opens its own session from the shared session factory, so the
    store can be used from concurrent tasks. The primary key on the message
    identifier is the only synchronization.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def ping(self):
        try:
            async with self.session_factory() as db:
                await db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Store is unreachable: {e}") from e

    async def insert(self, record: MessageRecord):
        identifier = record.id
        try:
            async with self.session_factory() as db:
                db.add(record)
                await db.commit()
        except IntegrityError as e:
            # Only a clash on the identifier counts as a conflict
            if await self.find_by_id(identifier) is not None:
                raise RecordConflict(identifier) from e
            raise PersistenceError(str(e.orig)) from e
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def find_by_id(self, identifier: str) -> Optional[MessageRecord]:
        try:
            async with self.session_factory() as db:
                return await db.get(MessageRecord, identifier)
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def update(self, identifier: str, **fields) -> bool:
        """Apply a partial update. Returns False when no such record exists."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    update(MessageRecord)
                    .where(MessageRecord.id == identifier)
                    .values(**fields)
                )
                await db.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def distinct_channel_ids(self) -> List[str]:
        try:
            async with self.session_factory() as db:
                rows = await db.execute(select(MessageRecord.channel_id).distinct())
                return [row[0] for row in rows.all()]
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def most_recent_by_channel(self, channel_id: str) -> Optional[MessageRecord]:
        try:
            async with self.session_factory() as db:
                rows = await db.execute(
                    select(MessageRecord)
                    .where(MessageRecord.channel_id == channel_id)
                    .order_by(MessageRecord.original_timestamp.desc(), MessageRecord.id.desc())
                    .limit(1)
                )
                return rows.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def channel_cursors(self) -> List[ChannelCursor]:
        cursors = []
        try:
            async with self.session_factory() as db:
                rows = await db.execute(
                    select(MessageRecord.channel_id, func.count(MessageRecord.id))
                    .group_by(MessageRecord.channel_id)
                    .order_by(MessageRecord.channel_id)
                )
                counts = rows.all()
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

        for channel_id, count in counts:
            latest = await self.most_recent_by_channel(channel_id)
            if latest is None:
                continue
            cursors.append(ChannelCursor(
                channel_id=channel_id,
                last_message_id=latest.id,
                last_timestamp=latest.original_timestamp,
                message_count=count,
            ))
        return cursors
