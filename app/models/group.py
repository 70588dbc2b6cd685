from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from app.database import Base


class Group(Base):
    """Messaging group. The admin is always one of the members."""
    __tablename__ = "groups"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False)
    description = Column(String(200), nullable=False, default="")
    icon_image = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Foreign keys
    admin_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    # Relationships
    admin = relationship("User", back_populates="administered_groups")
    memberships = relationship(
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupMember.joined_at",
    )
    messages = relationship("Message", back_populates="group")

    @property
    def member_ids(self) -> list:
        return [m.user_id for m in self.memberships]

    def is_member(self, user_id) -> bool:
        return any(m.user_id == user_id for m in self.memberships)


class GroupMember(Base):
    __tablename__ = "group_members"

    group_id = Column(Uuid, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    group = relationship("Group", back_populates="memberships")
    user = relationship("User")
