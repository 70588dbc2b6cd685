from sqlalchemy import (
    Column, String, Integer, Text, DateTime, Boolean, ForeignKey, Enum, JSON, Uuid, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
import uuid
import enum
from datetime import datetime
from typing import Optional
from app.database import Base


class MessageType(str, enum.Enum):
    VOICE = "voice"
    TEXT = "text"


class Message(Base):
    """A direct (group_id NULL) or group message.

    Receivers are the read-status rows ordered by ``position``; ``deletions`` is
    the set of parties who removed the message from their own view.
    """
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    message_type = Column(
        Enum(MessageType, name="message_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=MessageType.VOICE,
    )
    text_content = Column(Text, nullable=True)

    # Voice payload
    file_path = Column(String(255), nullable=True)
    original_filename = Column(String(255), nullable=True)
    file_size = Column(Integer, nullable=True)
    duration = Column(Integer, nullable=True)  # seconds
    mime_type = Column(String(100), nullable=True)
    attached_image = Column(String(255), nullable=True)
    transcript = Column(Text, nullable=True)

    # Opaque end-to-end encrypted payload (ciphertext + per-recipient wrapped keys)
    encrypted_content = Column(Text, nullable=True)
    encrypted_keys = Column(JSON, nullable=True)

    # Legacy soft-delete flag; visibility is decided by `deletions`
    is_deleted = Column(Boolean, default=False, nullable=False)

    # Foreign keys
    sender_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    group_id = Column(Uuid, ForeignKey("groups.id", ondelete="CASCADE"), nullable=True)

    __table_args__ = (
        Index("ix_messages_sender_sent_at", "sender_id", "sent_at"),
        Index("ix_messages_group_sent_at", "group_id", "sent_at"),
        Index("ix_messages_sent_at", "sent_at"),
    )

    # Relationships
    sender = relationship("User", back_populates="sent_messages")
    group = relationship("Group", back_populates="messages")
    read_statuses = relationship(
        "MessageReadStatus",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageReadStatus.position",
    )
    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageReaction.created_at",
    )
    deletions = relationship("MessageDeletion", back_populates="message", cascade="all, delete-orphan")

    @property
    def receiver_ids(self) -> list:
        return [rs.user_id for rs in self.read_statuses]

    @property
    def party_ids(self) -> set:
        return {self.sender_id, *self.receiver_ids}

    @property
    def deleted_by(self) -> set:
        return {d.user_id for d in self.deletions}

    @property
    def file_paths(self) -> list[str]:
        return [p for p in (self.file_path, self.attached_image) if p]

    def read_status_for(self, user_id) -> Optional["MessageReadStatus"]:
        for rs in self.read_statuses:
            if rs.user_id == user_id:
                return rs
        return None


class MessageReadStatus(Base):
    __tablename__ = "message_read_status"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime, nullable=True, default=None)

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="unique_message_read_status"),
    )

    message = relationship("Message", back_populates="read_statuses")


class MessageReaction(Base):
    __tablename__ = "message_reactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    username = Column(String(30), nullable=False)
    emoji = Column(String(32), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # At most one reaction per (user, emoji) on a message
    __table_args__ = (
        UniqueConstraint("message_id", "user_id", "emoji", name="unique_message_reaction"),
    )

    message = relationship("Message", back_populates="reactions")


class MessageDeletion(Base):
    """One row per party that deleted the message for themselves."""
    __tablename__ = "message_deletions"

    message_id = Column(Uuid, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id"), primary_key=True, index=True)
    deleted_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    message = relationship("Message", back_populates="deletions")
