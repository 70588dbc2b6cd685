from sqlalchemy import Column, DateTime, ForeignKey, UniqueConstraint, Uuid
import uuid
from datetime import datetime
from app.database import Base


class Follower(Base):
    """Follow edge: ``follower_id`` follows ``user_id``."""
    __tablename__ = "followers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    follower_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    followed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "follower_id", name="unique_follower"),
    )
