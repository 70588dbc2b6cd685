"""Per-viewer conversation views derived from the flat message table."""
import logging
import math
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.cache import CacheFacade, TTL
from app.models.group import Group, GroupMember
from app.models.message import Message, MessageReadStatus
from app.models.user import User
from app.schemas.group import GroupSummaryDto
from app.schemas.message import MessageDto, PaginationDto, ThreadDto
from app.services.message_store import addressed_to, message_load_options, visible_to
from app.services.presenters import (
    make_group_summary_dto, make_last_message_dto, make_message_dto, make_user_summary,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def clamp_page(page: Optional[int], limit: Optional[int], default_limit: int = DEFAULT_PAGE_SIZE) -> Tuple[int, int]:
    page = max(1, page or 1)
    limit = min(MAX_PAGE_SIZE, max(1, limit or default_limit))
    return page, limit


def make_pagination(total: int, page: int, limit: int) -> PaginationDto:
    return PaginationDto(
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if limit else 0,
        has_next=page * limit < total,
    )


def thread_partner(msg: Message, viewer_id: UUID) -> Optional[UUID]:
    """The counterpart of a direct message as seen by ``viewer_id``.

    For the viewer's own message sent to several receivers this is the first
    receiver that is not the viewer, so multi-receiver sends collapse into a
    single thread.
    """
    if msg.sender_id != viewer_id:
        return msg.sender_id
    for rid in msg.receiver_ids:
        if rid != viewer_id:
            return rid
    return None


class ThreadAggregator:
    def __init__(self, db: AsyncSession, cache: CacheFacade):
        self.db = db
        self.cache = cache

    async def _users_by_id(self, ids) -> Dict[UUID, User]:
        if not ids:
            return {}
        result = await self.db.execute(select(User).where(User.id.in_(list(ids))))
        return {u.id: u for u in result.scalars().all()}

    # -- direct messages ---------------------------------------------------

    async def list_threads(self, viewer_id: UUID) -> List[ThreadDto]:
        cache_key = f"threads:{viewer_id}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return [ThreadDto.model_validate(t) for t in cached]

        stmt = (
            select(Message)
            .options(*message_load_options())
            .where(
                Message.group_id.is_(None),
                or_(Message.sender_id == viewer_id, addressed_to(viewer_id)),
                visible_to(viewer_id),
            )
            .order_by(Message.sent_at.desc())
        )
        result = await self.db.execute(stmt)
        messages = result.scalars().all()

        # Newest first, so the first message seen per partner is the last one sent
        buckets: Dict[UUID, dict] = {}
        for msg in messages:
            partner_id = thread_partner(msg, viewer_id)
            if partner_id is None:
                continue
            bucket = buckets.setdefault(partner_id, {"last": msg, "unread": 0, "total": 0})
            bucket["total"] += 1
            if msg.sender_id != viewer_id:
                entry = msg.read_status_for(viewer_id)
                if entry is not None and not entry.is_read:
                    bucket["unread"] += 1

        partners = await self._users_by_id(buckets.keys())
        threads = [
            ThreadDto(
                partner=make_user_summary(partners[pid]),
                last_message=make_last_message_dto(b["last"], viewer_id),
                unread_count=b["unread"],
                total_count=b["total"],
            )
            for pid, b in buckets.items()
            if pid in partners
        ]
        threads.sort(key=lambda t: t.last_message.sent_at, reverse=True)

        await self.cache.set(cache_key, [t.model_dump(mode="json", by_alias=True) for t in threads], TTL.THREADS)
        return threads

    async def get_thread_messages(self, viewer_id: UUID, partner_id: UUID) -> List[MessageDto]:
        cache_key = f"thread:{viewer_id}:{partner_id}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return [MessageDto.model_validate(m) for m in cached]

        stmt = (
            select(Message)
            .options(*message_load_options())
            .where(
                Message.group_id.is_(None),
                or_(
                    and_(Message.sender_id == viewer_id, addressed_to(partner_id)),
                    and_(Message.sender_id == partner_id, addressed_to(viewer_id)),
                ),
                visible_to(viewer_id),
            )
            .order_by(Message.sent_at.asc())
        )
        result = await self.db.execute(stmt)
        messages = [make_message_dto(m, viewer_id, partner_id) for m in result.scalars().all()]

        await self.cache.set(cache_key, [m.model_dump(mode="json", by_alias=True) for m in messages], TTL.THREAD_MSGS)
        return messages

    async def list_received(
        self,
        viewer_id: UUID,
        unread_only: bool = False,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[MessageDto], PaginationDto]:
        page, limit = clamp_page(page, limit)
        cache_key = f"received:{viewer_id}:u{int(unread_only)}:p{page}:l{limit}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return (
                [MessageDto.model_validate(m) for m in cached["messages"]],
                PaginationDto.model_validate(cached["pagination"]),
            )

        conditions = [Message.group_id.is_(None), visible_to(viewer_id)]
        if unread_only:
            conditions.append(
                Message.read_statuses.any(
                    and_(MessageReadStatus.user_id == viewer_id, MessageReadStatus.is_read.is_(False))
                )
            )
        else:
            conditions.append(addressed_to(viewer_id))

        total = (await self.db.execute(select(func.count(Message.id)).where(*conditions))).scalar_one()
        stmt = (
            select(Message)
            .options(*message_load_options())
            .where(*conditions)
            .order_by(Message.sent_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        messages = [make_message_dto(m, viewer_id) for m in result.scalars().all()]
        pagination = make_pagination(total, page, limit)

        await self.cache.set(
            cache_key,
            {
                "messages": [m.model_dump(mode="json", by_alias=True) for m in messages],
                "pagination": pagination.model_dump(mode="json", by_alias=True),
            },
            TTL.RECEIVED,
        )
        return messages, pagination

    async def list_sent(self, viewer_id: UUID) -> List[MessageDto]:
        stmt = (
            select(Message)
            .options(*message_load_options())
            .where(Message.group_id.is_(None), Message.sender_id == viewer_id, visible_to(viewer_id))
            .order_by(Message.sent_at.desc())
        )
        result = await self.db.execute(stmt)
        return [make_message_dto(m, viewer_id) for m in result.scalars().all()]

    # -- groups ------------------------------------------------------------

    async def list_group_threads(self, viewer_id: UUID) -> List[GroupSummaryDto]:
        cache_key = f"group_threads:{viewer_id}"
        cached = await self.cache.get(cache_key)
        if cached is not None:
            return [GroupSummaryDto.model_validate(g) for g in cached]

        stmt = (
            select(Group)
            .options(
                selectinload(Group.admin),
                selectinload(Group.memberships).selectinload(GroupMember.user),
            )
            .where(Group.memberships.any(GroupMember.user_id == viewer_id))
            .order_by(Group.updated_at.desc())
        )
        result = await self.db.execute(stmt)
        groups = result.scalars().all()

        summaries = []
        for group in groups:
            visible = [Message.group_id == group.id, visible_to(viewer_id)]
            last_stmt = (
                select(Message)
                .options(selectinload(Message.sender))
                .where(*visible)
                .order_by(Message.sent_at.desc())
                .limit(1)
            )
            last_message = (await self.db.execute(last_stmt)).scalar_one_or_none()
            total = (await self.db.execute(select(func.count(Message.id)).where(*visible))).scalar_one()
            unread = (
                await self.db.execute(
                    select(func.count(Message.id)).where(
                        *visible,
                        Message.read_statuses.any(
                            and_(MessageReadStatus.user_id == viewer_id, MessageReadStatus.is_read.is_(False))
                        ),
                    )
                )
            ).scalar_one()
            summaries.append(make_group_summary_dto(group, last_message, unread, total))

        # Most recent activity first; groups without messages fall back to their update time
        summaries.sort(
            key=lambda g: g.last_message.sent_at if g.last_message else g.updated_at,
            reverse=True,
        )

        await self.cache.set(cache_key, [g.model_dump(mode="json", by_alias=True) for g in summaries], TTL.GROUPS)
        return summaries
