from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from uuid import UUID
from datetime import datetime

from app.models.message import MessageType


def to_camel(string: str) -> str:
    components = string.split('_')
    return components[0] + ''.join(x.title() for x in components[1:])


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        serialize_by_alias=True,
    )


class UserSummaryDto(CamelModel):
    id: UUID = Field(alias="_id")
    username: str
    handle: Optional[str] = None
    profile_image: Optional[str] = None


class ReactionDto(CamelModel):
    emoji: str
    user_id: UUID
    username: str


class ReadStatusDto(CamelModel):
    user_id: UUID
    is_read: bool
    read_at: Optional[datetime] = None


class MessageDto(CamelModel):
    id: UUID = Field(alias="_id")
    sender: UserSummaryDto
    receivers: List[UUID]
    group_id: Optional[UUID] = None
    message_type: MessageType
    text_content: Optional[str] = None
    file_path: Optional[str] = None
    original_filename: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[int] = None
    mime_type: Optional[str] = None
    attached_image: Optional[str] = None
    encrypted_content: Optional[str] = None
    encrypted_keys: Optional[Dict[str, str]] = None
    sent_at: datetime
    is_mine: bool
    # Own messages: the partner's read state (or "all receivers read" for
    # several receivers). Received messages: the viewer's read state.
    is_read: bool
    read_at: Optional[datetime] = None
    read_status: Optional[List[ReadStatusDto]] = None  # only on the viewer's own messages
    reactions: List[ReactionDto] = []


class LastMessageDto(CamelModel):
    id: UUID = Field(alias="_id")
    message_type: MessageType
    text_content: Optional[str] = None
    sender_id: UUID
    sender_username: Optional[str] = None
    sent_at: datetime
    is_mine: bool


class ThreadDto(CamelModel):
    partner: UserSummaryDto
    last_message: LastMessageDto
    unread_count: int = 0
    total_count: int = 0


class PaginationDto(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool


class MessagePayload(BaseModel):
    """Content of a message being sent (validated by the store)."""
    message_type: MessageType
    text_content: Optional[str] = None
    file_path: Optional[str] = None
    original_filename: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[int] = None
    mime_type: Optional[str] = None
    attached_image: Optional[str] = None
    encrypted_content: Optional[str] = None
    encrypted_keys: Optional[Dict[str, str]] = None

    @property
    def stored_files(self) -> List[str]:
        return [p for p in (self.file_path, self.attached_image) if p]

    def has_content(self) -> bool:
        if self.message_type == MessageType.VOICE:
            return bool(self.file_path)
        return bool((self.text_content or "").strip()) or bool(self.encrypted_content)


# Requests

class SendTextRequest(CamelModel):
    receivers: List[UUID] = []
    content: Optional[str] = None
    encrypted_content: Optional[str] = None
    encrypted_keys: Optional[Dict[str, str]] = None


class ReactionRequest(CamelModel):
    emoji: str


# Responses

class SendMessageResponse(CamelModel):
    message: str
    message_id: UUID


class SendTextResponse(CamelModel):
    success: bool = True
    data: MessageDto


class MessageListResponse(CamelModel):
    messages: List[MessageDto]
    pagination: Optional[PaginationDto] = None


class MessageResponse(CamelModel):
    message: MessageDto


class ThreadListResponse(CamelModel):
    threads: List[ThreadDto]


class SuccessResponse(CamelModel):
    success: bool = True


class MarkThreadReadResponse(CamelModel):
    success: bool = True
    updated: int


class DeleteMessageResponse(CamelModel):
    success: bool = True
    physically_deleted: bool
