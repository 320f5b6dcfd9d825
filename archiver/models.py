# archiver/models.py
from sqlalchemy import Column, String, DateTime, Text, Boolean, JSON, func
from .database import Base

class MessageRecord(Base):
    """One archived message. Never removed, only flagged through deleted_timestamp."""
    __tablename__ = "archived_messages"
    id = Column(String, primary_key=True)
    content = Column(Text, default="")
    author = Column(String, nullable=True)
    channel_id = Column(String, index=True, nullable=False)
    guild_id = Column(String, nullable=True)
    original_timestamp = Column(DateTime, index=True)
    # Stays empty until the first edit
    content_history = Column(JSON, default=list)
    attachments = Column(JSON, default=list)
    embeds = Column(JSON, default=list)
    mentions = Column(JSON, default=list)
    reactions = Column(JSON, default=list)
    pinned = Column(Boolean, default=False)
    type = Column(String, default="default")
    deleted_timestamp = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, default=func.now())
