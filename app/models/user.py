from sqlalchemy import Column, String, DateTime, JSON, Uuid
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from app.database import Base


class User(Base):
    """Account row as seen by the messaging core (account CRUD lives elsewhere)."""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(30), unique=True, nullable=False, index=True)
    handle = Column(String(30), nullable=True, index=True)
    profile_image = Column(String(255), nullable=True)
    fcm_tokens = Column(JSON, nullable=False, default=list)  # Device tokens for push notifications
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    sent_messages = relationship("Message", back_populates="sender")
    administered_groups = relationship("Group", back_populates="admin")
