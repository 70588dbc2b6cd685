from app.schemas.message import (
    MessageDto, ThreadDto, PaginationDto, MessagePayload, SendTextRequest, ReactionRequest,
)
from app.schemas.group import GroupDto, GroupSummaryDto, AddMemberRequest, GroupTextRequest
from app.schemas.auth import TokenData

__all__ = [
    "MessageDto", "ThreadDto", "PaginationDto", "MessagePayload", "SendTextRequest", "ReactionRequest",
    "GroupDto", "GroupSummaryDto", "AddMemberRequest", "GroupTextRequest",
    "TokenData",
]
