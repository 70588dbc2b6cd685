from app.models.user import User
from app.models.follower import Follower
from app.models.group import Group, GroupMember
from app.models.message import Message, MessageType, MessageReadStatus, MessageReaction, MessageDeletion

__all__ = [
	"User",
	"Follower",
	"Group",
	"GroupMember",
	"Message",
	"MessageType",
	"MessageReadStatus",
	"MessageReaction",
	"MessageDeletion",
]
