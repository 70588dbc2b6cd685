"""Group administration: creation, settings and membership."""
import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, select

from app.errors import AlreadyExists, Forbidden, InvalidInput, InvalidState, MessagingError, NotFound
from app.models.group import Group, GroupMember
from app.models.message import Message, MessageDeletion, MessageReaction, MessageReadStatus
from app.models.user import User
from app.services.group_fanout import GroupFanout

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 50
MAX_DESCRIPTION_LENGTH = 200


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise InvalidInput("Group name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidInput(f"Group name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _clean_description(description: Optional[str]) -> str:
    description = (description or "").strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidInput(f"Group description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    return description


class GroupService:
    def __init__(self, fanout: GroupFanout):
        self.fanout = fanout
        self.store = fanout.store
        self.db = fanout.db

    async def _require_admin(self, group_id: UUID, user_id: UUID, action: str) -> Group:
        group = await self.fanout.load_group(group_id)
        if group.admin_id != user_id:
            raise Forbidden(f"Only the group admin can {action}")
        return group

    async def get_group(self, group_id: UUID, viewer_id: UUID) -> Group:
        return await self.fanout.require_member(group_id, viewer_id)

    async def create_group(
        self,
        admin: User,
        name: Optional[str],
        description: Optional[str] = None,
        member_ids: Iterable[UUID] = (),
        icon_image: Optional[str] = None,
    ) -> Group:
        try:
            name = _clean_name(name)
            description = _clean_description(description)
            # The creator is always a member, listed first
            all_ids = list(dict.fromkeys([admin.id, *member_ids]))
            found = await self.db.execute(select(User.id).where(User.id.in_(all_ids)))
            missing = set(all_ids) - set(found.scalars().all())
            if missing:
                raise NotFound(f"User not found: {next(iter(missing))}")
        except MessagingError:
            await self.store.file_store.unlink(icon_image)
            raise

        group = Group(
            name=name,
            description=description,
            icon_image=icon_image,
            admin_id=admin.id,
            memberships=[GroupMember(user_id=uid) for uid in all_ids],
        )
        self.db.add(group)
        await self.db.commit()
        logger.info(f"Group {group.id} created by {admin.id} with {len(all_ids)} member(s)")

        await self.store.cache.invalidate_group(all_ids)
        return await self._reload(group.id)

    async def _reload(self, group_id: UUID) -> Group:
        return await self.fanout.load_group(group_id, refresh=True)

    async def update_group(
        self,
        group_id: UUID,
        user_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
        icon_image: Optional[str] = None,
    ) -> Group:
        try:
            group = await self._require_admin(group_id, user_id, "edit the group")
            if name is not None:
                group.name = _clean_name(name)
            if description is not None:
                group.description = _clean_description(description)
        except MessagingError:
            await self.store.file_store.unlink(icon_image)
            raise

        old_icon = None
        if icon_image:
            old_icon, group.icon_image = group.icon_image, icon_image
        member_ids = group.member_ids
        await self.db.commit()

        if old_icon:
            await self.store.file_store.unlink(old_icon)
        await self.store.cache.invalidate_group(member_ids)
        return await self._reload(group_id)

    async def delete_group(self, group_id: UUID, user_id: UUID) -> None:
        group = await self._require_admin(group_id, user_id, "delete the group")
        member_ids = group.member_ids

        result = await self.db.execute(
            select(Message.file_path, Message.attached_image).where(Message.group_id == group_id)
        )
        files = [p for row in result.all() for p in row if p]
        if group.icon_image:
            files.append(group.icon_image)

        message_ids = select(Message.id).where(Message.group_id == group_id)
        for model in (MessageReaction, MessageReadStatus, MessageDeletion):
            await self.db.execute(
                delete(model).where(model.message_id.in_(message_ids)).execution_options(synchronize_session=False)
            )
        await self.db.execute(delete(Message).where(Message.group_id == group_id))
        await self.db.execute(delete(GroupMember).where(GroupMember.group_id == group_id))
        await self.db.execute(delete(Group).where(Group.id == group_id))
        await self.db.commit()
        logger.info(f"Group {group_id} deleted by {user_id}")

        await self.store.file_store.unlink_many(files)
        await self.store.cache.invalidate_group(member_ids)

    async def add_member(self, group_id: UUID, admin_id: UUID, user_id: UUID) -> User:
        group = await self._require_admin(group_id, admin_id, "add members")
        if group.is_member(user_id):
            raise AlreadyExists("User is already a member of this group")
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")

        self.db.add(GroupMember(group_id=group_id, user_id=user_id))
        await self.db.commit()
        await self.store.cache.invalidate_group([*group.member_ids, user_id])
        return user

    async def remove_member(self, group_id: UUID, requester_id: UUID, user_id: UUID) -> None:
        group = await self.fanout.load_group(group_id)
        is_admin = group.admin_id == requester_id
        is_self = requester_id == user_id

        if not is_admin and not is_self:
            raise Forbidden("Only the group admin can remove other members")
        if user_id == group.admin_id:
            # Ownership transfer does not exist yet, so the admin can never leave
            raise InvalidState("The group admin cannot leave the group")
        if not group.is_member(user_id):
            raise NotFound("User is not a member of this group")

        member_ids = group.member_ids
        await self.db.execute(
            delete(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
        )
        await self.db.commit()
        await self.store.cache.invalidate_group(member_ids)
