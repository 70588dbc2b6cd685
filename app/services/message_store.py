"""Message lifecycle: send, read state, reactions and the two-tier deletion.

Every read-then-write on a message is done by the database: read marks are
conditional UPDATEs, reactions rely on a unique constraint, and the "has every
party deleted it?" decision is taken on the locked row inside one transaction.
"""
import logging
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import delete, exists, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.cache import CacheFacade
from app.errors import DuplicateReaction, Forbidden, InvalidInput, MessagingError, NotFound
from app.models.group import GroupMember
from app.models.message import (
    Message, MessageDeletion, MessageReaction, MessageReadStatus, MessageType,
)
from app.models.user import User
from app.schemas.message import MessagePayload
from app.services.file_store import LocalFileStore
from app.services.follow_gate import FollowGate
from app.services.notifications import NotificationSink

logger = logging.getLogger(__name__)

MAX_EMOJI_LENGTH = 32
NOTIFICATION_PREVIEW_LENGTH = 50


def message_load_options():
    return (
        selectinload(Message.sender),
        selectinload(Message.read_statuses),
        selectinload(Message.reactions),
        selectinload(Message.deletions),
    )


def visible_to(user_id: UUID):
    """SQL clause: the user has not deleted the message for themselves."""
    return ~exists().where(MessageDeletion.message_id == Message.id, MessageDeletion.user_id == user_id)


def addressed_to(user_id: UUID):
    """SQL clause: the user is one of the message's receivers."""
    return exists().where(MessageReadStatus.message_id == Message.id, MessageReadStatus.user_id == user_id)


def notification_preview(sender_name: str, payload: MessagePayload) -> str:
    if payload.encrypted_content:
        return f"{sender_name} sent you an encrypted message 🔒"
    if payload.message_type == MessageType.TEXT:
        return (payload.text_content or "").strip()[:NOTIFICATION_PREVIEW_LENGTH]
    return f"{sender_name} sent a voice message 🎤"


class MessageStore:
    def __init__(
        self,
        db: AsyncSession,
        cache: CacheFacade,
        follow_gate: FollowGate,
        notifier: NotificationSink,
        file_store: LocalFileStore,
    ):
        self.db = db
        self.cache = cache
        self.follow_gate = follow_gate
        self.notifier = notifier
        self.file_store = file_store

    # -- loading ---------------------------------------------------------

    async def _load(self, message_id: UUID, for_update: bool = False) -> Optional[Message]:
        stmt = select(Message).options(*message_load_options()).where(Message.id == message_id)
        if for_update:
            stmt = stmt.with_for_update(of=Message)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def is_group_member(self, group_id: UUID, user_id: UUID) -> bool:
        stmt = select(GroupMember.user_id).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _check_access(self, msg: Optional[Message], user_id: UUID) -> Message:
        """The message exists, the user has not deleted it and may see it."""
        if msg is None or user_id in msg.deleted_by:
            raise NotFound("Message not found")
        if msg.group_id is not None:
            if not await self.is_group_member(msg.group_id, user_id):
                raise Forbidden("You are not a member of this group")
        elif user_id not in msg.party_ids:
            raise Forbidden("You do not have access to this message")
        return msg

    async def get_message(self, message_id: UUID, viewer_id: UUID) -> Message:
        return await self._check_access(await self._load(message_id), viewer_id)

    # -- sending ---------------------------------------------------------

    async def _resolve_receivers(self, sender: User, receiver_ids: Iterable[UUID]) -> List[User]:
        ordered = list(dict.fromkeys(receiver_ids))
        if not ordered:
            raise InvalidInput("At least one receiver is required")
        if sender.id in ordered:
            raise InvalidInput("Cannot send a message to yourself")

        result = await self.db.execute(select(User).where(User.id.in_(ordered)))
        by_id = {u.id: u for u in result.scalars().all()}
        missing = [rid for rid in ordered if rid not in by_id]
        if missing:
            raise NotFound(f"Receiver not found: {missing[0]}")

        if await self.follow_gate.non_followers(sender.id, ordered):
            raise Forbidden("Messages can only be sent to your followers")
        return [by_id[rid] for rid in ordered]

    async def create_message(
        self,
        sender_id: UUID,
        receiver_ids: List[UUID],
        payload: MessagePayload,
        group_id: Optional[UUID] = None,
    ) -> Message:
        """Persist a message with one unread read-status row per receiver."""
        sender = await self.db.get(User, sender_id)
        msg = Message(
            sender=sender,
            group_id=group_id,
            message_type=payload.message_type,
            text_content=(payload.text_content or "").strip() or None,
            file_path=payload.file_path,
            original_filename=payload.original_filename,
            file_size=payload.file_size,
            duration=payload.duration,
            mime_type=payload.mime_type,
            attached_image=payload.attached_image,
            encrypted_content=payload.encrypted_content,
            encrypted_keys=payload.encrypted_keys,
            read_statuses=[
                MessageReadStatus(user_id=rid, position=i, is_read=False, read_at=None)
                for i, rid in enumerate(receiver_ids)
            ],
            reactions=[],
            deletions=[],
        )
        self.db.add(msg)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            await self.file_store.unlink_many(payload.stored_files)
            raise
        return msg

    async def send_direct(self, sender: User, receiver_ids: Iterable[UUID], payload: MessagePayload) -> Message:
        try:
            receivers = await self._resolve_receivers(sender, receiver_ids)
            if not payload.has_content():
                if payload.message_type == MessageType.VOICE:
                    raise InvalidInput("A voice file is required")
                raise InvalidInput("Message content is required")
        except MessagingError:
            # Nothing is persisted for a rejected send, uploads included
            await self.file_store.unlink_many(payload.stored_files)
            raise

        msg = await self.create_message(sender.id, [r.id for r in receivers], payload)
        logger.info(f"Message {msg.id} sent by {sender.id} to {len(receivers)} receiver(s)")

        await self.cache.invalidate_user_messages(sender.id, [r.id for r in receivers])
        self.notifier.notify(
            receivers,
            title=sender.username,
            body=notification_preview(sender.username, payload),
            data={"type": "message", "messageId": str(msg.id), "senderId": str(sender.id)},
        )
        return msg

    # -- read state ------------------------------------------------------

    async def mark_read(self, message_id: UUID, user_id: UUID) -> bool:
        """Mark the user's entry read. Returns False when it already was."""
        msg = await self._check_access(await self._load(message_id), user_id)
        if msg.read_status_for(user_id) is None:
            raise Forbidden("You are not a receiver of this message")

        stmt = (
            update(MessageReadStatus)
            .where(
                MessageReadStatus.message_id == message_id,
                MessageReadStatus.user_id == user_id,
                MessageReadStatus.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.utcnow())
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        changed = result.rowcount > 0
        if changed:
            await self.invalidate_for(msg)
        return changed

    async def mark_thread_read(self, viewer_id: UUID, partner_id: UUID) -> int:
        """Mark every unread direct message from partner to viewer as read."""
        from_partner = select(Message.id).where(
            Message.sender_id == partner_id,
            Message.group_id.is_(None),
            visible_to(viewer_id),
        )
        stmt = (
            update(MessageReadStatus)
            .where(
                MessageReadStatus.user_id == viewer_id,
                MessageReadStatus.is_read.is_(False),
                MessageReadStatus.message_id.in_(from_partner),
            )
            .values(is_read=True, read_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount:
            await self.cache.invalidate_user_messages(partner_id, [viewer_id])
        return result.rowcount

    # -- deletion --------------------------------------------------------

    async def delete_for_user(self, message_id: UUID, user_id: UUID) -> bool:
        """Remove the message from one party's view.

        Returns True when this call removed the last view and the message was
        physically deleted.
        """
        # Row lock serializes concurrent deletions of the same message
        msg = await self._load(message_id, for_update=True)
        if msg is None:
            raise NotFound("Message not found")

        parties = msg.party_ids
        if user_id not in parties:
            raise Forbidden("You are not allowed to delete this message")

        sender_id, receiver_ids, group_id = msg.sender_id, msg.receiver_ids, msg.group_id
        files = msg.file_paths

        already = await self.db.execute(
            select(MessageDeletion.user_id).where(
                MessageDeletion.message_id == message_id, MessageDeletion.user_id == user_id
            )
        )
        if already.scalar_one_or_none() is None:
            await self.db.execute(
                insert(MessageDeletion).values(message_id=message_id, user_id=user_id, deleted_at=datetime.utcnow())
            )
        await self.db.execute(update(Message).where(Message.id == message_id).values(is_deleted=True))

        # Coverage is decided from the persisted set, not the loaded copy
        result = await self.db.execute(select(MessageDeletion.user_id).where(MessageDeletion.message_id == message_id))
        deleted_by = set(result.scalars().all())
        physically_deleted = parties <= deleted_by

        if physically_deleted:
            await self.db.execute(delete(MessageReaction).where(MessageReaction.message_id == message_id))
            await self.db.execute(delete(MessageReadStatus).where(MessageReadStatus.message_id == message_id))
            await self.db.execute(delete(MessageDeletion).where(MessageDeletion.message_id == message_id))
            # 0 rows when a concurrent request got here first
            await self.db.execute(delete(Message).where(Message.id == message_id))
        await self.db.commit()

        if physically_deleted:
            logger.info(f"Message {message_id} deleted by every party, removing record and files")
            await self.file_store.unlink_many(files)
        else:
            logger.info(f"Message {message_id} hidden for {user_id}")

        if group_id is not None:
            await self.invalidate_group(group_id, parties)
        else:
            await self.cache.invalidate_user_messages(sender_id, receiver_ids)
        return physically_deleted

    # -- reactions -------------------------------------------------------

    async def add_reaction(self, message_id: UUID, user: User, emoji: str) -> None:
        emoji = (emoji or "").strip()
        if not emoji:
            raise InvalidInput("Emoji is required")
        if len(emoji) > MAX_EMOJI_LENGTH:
            raise InvalidInput("Emoji is too long")

        msg = await self._check_access(await self._load(message_id), user.id)
        # Kept as plain values: the session is expired if the insert is rolled back
        user_id, username = user.id, user.username

        self.db.add(MessageReaction(message_id=message_id, user_id=user_id, username=username, emoji=emoji))
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateReaction("You already reacted with this emoji")

        await self.invalidate_for(msg)

    async def remove_reaction(self, message_id: UUID, user_id: UUID, emoji: str) -> bool:
        msg = await self._load(message_id)
        if msg is None or user_id in msg.deleted_by:
            raise NotFound("Message not found")

        result = await self.db.execute(
            delete(MessageReaction).where(
                MessageReaction.message_id == message_id,
                MessageReaction.user_id == user_id,
                MessageReaction.emoji == emoji,
            )
        )
        await self.db.commit()

        removed = result.rowcount > 0
        if removed:
            await self.invalidate_for(msg)
        return removed

    # -- cache -----------------------------------------------------------

    async def invalidate_group(self, group_id: UUID, extra_ids: Iterable[UUID] = ()) -> None:
        result = await self.db.execute(select(GroupMember.user_id).where(GroupMember.group_id == group_id))
        member_ids = set(result.scalars().all()) | set(extra_ids)
        await self.cache.invalidate_group(member_ids)

    async def invalidate_for(self, msg: Message) -> None:
        if msg.group_id is not None:
            await self.invalidate_group(msg.group_id, msg.party_ids)
        else:
            await self.cache.invalidate_user_messages(msg.sender_id, msg.receiver_ids)
