from typing import Iterable, List
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.follower import Follower


class FollowGate:
    """Direct messages may only go to the sender's own followers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def non_followers(self, sender_id: UUID, receiver_ids: Iterable[UUID]) -> List[UUID]:
        """Receivers that do not follow the sender, in the given order."""
        receiver_ids = list(receiver_ids)
        if not receiver_ids:
            return []
        stmt = select(Follower.follower_id).where(
            Follower.user_id == sender_id,
            Follower.follower_id.in_(receiver_ids),
        )
        result = await self.db.execute(stmt)
        following = set(result.scalars().all())
        return [rid for rid in receiver_ids if rid not in following]
