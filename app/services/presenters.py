from typing import Optional
from uuid import UUID

from app.models.group import Group
from app.models.message import Message
from app.models.user import User
from app.schemas.group import GroupDto, GroupLastMessageDto, GroupSummaryDto
from app.schemas.message import (
    LastMessageDto, MessageDto, ReactionDto, ReadStatusDto, UserSummaryDto,
)


def make_user_summary(user: User) -> UserSummaryDto:
    return UserSummaryDto(
        id=user.id,
        username=user.username,
        handle=user.handle,
        profile_image=user.profile_image,
    )


def make_message_dto(msg: Message, viewer_id: UUID, partner_id: Optional[UUID] = None) -> MessageDto:
    """Render a message for one viewer.

    For the viewer's own message the read state is the partner's (when a
    partner is given) or "read by every receiver"; for a received message it is
    the viewer's own entry.
    """
    is_mine = msg.sender_id == viewer_id
    read_status = None
    if is_mine:
        read_status = [
            ReadStatusDto(user_id=rs.user_id, is_read=rs.is_read, read_at=rs.read_at)
            for rs in msg.read_statuses
        ]
        entry = msg.read_status_for(partner_id) if partner_id is not None else None
        if entry is not None:
            is_read, read_at = entry.is_read, entry.read_at
        else:
            is_read = bool(msg.read_statuses) and all(rs.is_read for rs in msg.read_statuses)
            read_at = max((rs.read_at for rs in msg.read_statuses if rs.read_at), default=None) if is_read else None
    else:
        entry = msg.read_status_for(viewer_id)
        is_read = entry.is_read if entry else False
        read_at = entry.read_at if entry else None

    return MessageDto(
        id=msg.id,
        sender=make_user_summary(msg.sender),
        receivers=msg.receiver_ids,
        group_id=msg.group_id,
        message_type=msg.message_type,
        text_content=msg.text_content,
        file_path=msg.file_path,
        original_filename=msg.original_filename,
        file_size=msg.file_size,
        duration=msg.duration,
        mime_type=msg.mime_type,
        attached_image=msg.attached_image,
        encrypted_content=msg.encrypted_content,
        encrypted_keys=msg.encrypted_keys,
        sent_at=msg.sent_at,
        is_mine=is_mine,
        is_read=is_read,
        read_at=read_at,
        read_status=read_status,
        reactions=[
            ReactionDto(emoji=r.emoji, user_id=r.user_id, username=r.username)
            for r in msg.reactions
        ],
    )


def make_last_message_dto(msg: Message, viewer_id: UUID) -> LastMessageDto:
    return LastMessageDto(
        id=msg.id,
        message_type=msg.message_type,
        text_content=msg.text_content,
        sender_id=msg.sender_id,
        sender_username=msg.sender.username if msg.sender else None,
        sent_at=msg.sent_at,
        is_mine=msg.sender_id == viewer_id,
    )


def make_group_dto(group: Group) -> GroupDto:
    members = [make_user_summary(m.user) for m in group.memberships]
    return GroupDto(
        id=group.id,
        name=group.name,
        description=group.description or "",
        icon_image=group.icon_image,
        admin=make_user_summary(group.admin),
        members=members,
        members_count=len(members),
        created_at=group.created_at,
        updated_at=group.updated_at,
    )


def make_group_summary_dto(
    group: Group,
    last_message: Optional[Message],
    unread_count: int,
    total_count: int,
) -> GroupSummaryDto:
    base = make_group_dto(group)
    last = None
    if last_message is not None:
        last = GroupLastMessageDto(
            message_type=last_message.message_type,
            text_content=last_message.text_content,
            sender_username=last_message.sender.username if last_message.sender else "Unknown",
            sent_at=last_message.sent_at,
        )
    return GroupSummaryDto(
        **base.model_dump(by_alias=True),
        last_message=last,
        unread_count=unread_count,
        total_count=total_count,
    )
