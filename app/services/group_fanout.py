"""Group message delivery: one send fans out into per-member read state."""
import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from app.errors import Forbidden, InvalidInput, MessagingError, NotFound
from app.models.group import Group, GroupMember
from app.models.message import Message, MessageType
from app.models.user import User
from app.schemas.message import MessageDto, MessagePayload, PaginationDto
from app.services.message_store import MessageStore, message_load_options, notification_preview, visible_to
from app.services.presenters import make_message_dto
from app.services.thread_aggregator import clamp_page, make_pagination

logger = logging.getLogger(__name__)

GROUP_PAGE_SIZE = 30


class GroupFanout:
    def __init__(self, store: MessageStore):
        self.store = store
        self.db = store.db

    async def load_group(self, group_id: UUID, refresh: bool = False) -> Group:
        stmt = (
            select(Group)
            .options(
                selectinload(Group.admin),
                selectinload(Group.memberships).selectinload(GroupMember.user),
            )
            .where(Group.id == group_id)
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        group = (await self.db.execute(stmt)).scalar_one_or_none()
        if group is None:
            raise NotFound("Group not found")
        return group

    async def require_member(self, group_id: UUID, user_id: UUID) -> Group:
        group = await self.load_group(group_id)
        if not group.is_member(user_id):
            raise Forbidden("You are not a member of this group")
        return group

    async def send_group_message(self, sender: User, group_id: UUID, payload: MessagePayload) -> Message:
        try:
            group = await self.require_member(group_id, sender.id)
            if not payload.has_content():
                if payload.message_type == MessageType.VOICE:
                    raise InvalidInput("A voice file is required")
                raise InvalidInput("Message text is required")
        except MessagingError:
            await self.store.file_store.unlink_many(payload.stored_files)
            raise

        recipients: List[User] = [m.user for m in group.memberships if m.user_id != sender.id]
        msg = await self.store.create_message(
            sender.id, [u.id for u in recipients], payload, group_id=group.id
        )
        logger.info(f"Group message {msg.id} sent to group {group.id} ({len(recipients)} receiver(s))")

        await self.store.invalidate_group(group.id)
        if payload.message_type == MessageType.TEXT and not payload.encrypted_content:
            body = f"{sender.username}: {notification_preview(sender.username, payload)}"
        else:
            body = notification_preview(sender.username, payload)
        self.store.notifier.notify(
            recipients,
            title=group.name,
            body=body,
            data={"type": "group_message", "groupId": str(group.id), "messageId": str(msg.id)},
        )
        return msg

    async def list_group_messages(
        self,
        viewer_id: UUID,
        group_id: UUID,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[MessageDto], PaginationDto]:
        """One page of the conversation, oldest first within the page."""
        await self.require_member(group_id, viewer_id)
        page, limit = clamp_page(page, limit, default_limit=GROUP_PAGE_SIZE)

        conditions = [Message.group_id == group_id, visible_to(viewer_id)]
        total = (await self.db.execute(select(func.count(Message.id)).where(*conditions))).scalar_one()
        stmt = (
            select(Message)
            .options(*message_load_options())
            .where(*conditions)
            .order_by(Message.sent_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        newest_first = (await self.db.execute(stmt)).scalars().all()
        messages = [make_message_dto(m, viewer_id) for m in reversed(newest_first)]
        return messages, make_pagination(total, page, limit)

    async def mark_group_read(self, viewer_id: UUID, group_id: UUID, message_id: UUID) -> bool:
        await self.require_member(group_id, viewer_id)
        in_group = await self.db.execute(
            select(Message.id).where(Message.id == message_id, Message.group_id == group_id)
        )
        if in_group.scalar_one_or_none() is None:
            raise NotFound("Message not found")
        return await self.store.mark_read(message_id, viewer_id)
