from pydantic import Field
from typing import List, Optional
from uuid import UUID
from datetime import datetime

from app.models.message import MessageType
from app.schemas.message import CamelModel, UserSummaryDto


class GroupDto(CamelModel):
    id: UUID = Field(alias="_id")
    name: str
    description: str = ""
    icon_image: Optional[str] = None
    admin: UserSummaryDto
    members: List[UserSummaryDto]
    members_count: int
    created_at: datetime
    updated_at: datetime


class GroupLastMessageDto(CamelModel):
    message_type: MessageType
    text_content: Optional[str] = None
    sender_username: str
    sent_at: datetime


class GroupSummaryDto(GroupDto):
    last_message: Optional[GroupLastMessageDto] = None
    unread_count: int = 0
    total_count: int = 0


# Requests

class AddMemberRequest(CamelModel):
    user_id: UUID


class GroupTextRequest(CamelModel):
    text_content: str


# Responses

class GroupListResponse(CamelModel):
    groups: List[GroupSummaryDto]


class GroupResponse(CamelModel):
    group: GroupDto


class GroupMutationResponse(CamelModel):
    message: str
    group: Optional[GroupDto] = None
