from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from app.config import get_settings
from app.dependencies import (
    get_current_user, get_file_store, get_group_fanout, get_group_service, get_thread_aggregator,
)
from app.models.message import MessageType
from app.models.user import User
from app.routers.messages import save_voice_upload
from app.schemas.group import (
    AddMemberRequest, GroupListResponse, GroupMutationResponse, GroupResponse, GroupTextRequest,
)
from app.schemas.message import MessageListResponse, MessagePayload, SendMessageResponse, SuccessResponse
from app.services.file_store import IMAGE_MIME_TYPES, LocalFileStore
from app.services.group_fanout import GroupFanout
from app.services.groups import GroupService
from app.services.presenters import make_group_dto
from app.services.thread_aggregator import ThreadAggregator
from app.utils.forms import mb_to_bytes, parse_uuid_list

router = APIRouter()
settings = get_settings()


async def save_icon(file_store: LocalFileStore, icon: Optional[UploadFile]) -> Optional[str]:
    if icon is None or not icon.filename:
        return None
    stored = await file_store.save(icon, IMAGE_MIME_TYPES, mb_to_bytes(settings.max_image_size_mb), "group_icons")
    return stored.path


@router.get("", response_model=GroupListResponse)
async def list_my_groups(
    current_user: User = Depends(get_current_user),
    aggregator: ThreadAggregator = Depends(get_thread_aggregator),
):
    """Groups of the current user, most recent activity first."""
    return GroupListResponse(groups=await aggregator.list_group_threads(current_user.id))


@router.post("", response_model=GroupMutationResponse, status_code=status.HTTP_201_CREATED)
async def create_group(
    name: str = Form(...),
    description: Optional[str] = Form(None),
    member_ids: Optional[str] = Form(None, alias="memberIds"),
    icon: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service),
    file_store: LocalFileStore = Depends(get_file_store),
):
    members = parse_uuid_list(member_ids, "memberIds")
    icon_path = await save_icon(file_store, icon)
    group = await service.create_group(current_user, name, description, members, icon_path)
    return GroupMutationResponse(message="Group created", group=make_group_dto(group))


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: UUID,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service),
):
    group = await service.get_group(group_id, current_user.id)
    return GroupResponse(group=make_group_dto(group))


@router.put("/{group_id}", response_model=GroupMutationResponse)
async def update_group(
    group_id: UUID,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    icon: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service),
    file_store: LocalFileStore = Depends(get_file_store),
):
    icon_path = await save_icon(file_store, icon)
    group = await service.update_group(group_id, current_user.id, name, description, icon_path)
    return GroupMutationResponse(message="Group updated", group=make_group_dto(group))


@router.delete("/{group_id}", response_model=GroupMutationResponse)
async def delete_group(
    group_id: UUID,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service),
):
    await service.delete_group(group_id, current_user.id)
    return GroupMutationResponse(message="Group deleted")


# -- members ---------------------------------------------------------------

@router.post("/{group_id}/members", response_model=GroupMutationResponse)
async def add_member(
    group_id: UUID,
    body: AddMemberRequest,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service),
):
    user = await service.add_member(group_id, current_user.id, body.user_id)
    return GroupMutationResponse(message=f"{user.username} was added to the group")


@router.delete("/{group_id}/members/{user_id}", response_model=GroupMutationResponse)
async def remove_member(
    group_id: UUID,
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service),
):
    await service.remove_member(group_id, current_user.id, user_id)
    if user_id == current_user.id:
        return GroupMutationResponse(message="You left the group")
    return GroupMutationResponse(message="Member removed from the group")


# -- messages --------------------------------------------------------------

@router.get("/{group_id}/messages", response_model=MessageListResponse)
async def get_group_messages(
    group_id: UUID,
    page: int = Query(1),
    limit: int = Query(30),
    current_user: User = Depends(get_current_user),
    fanout: GroupFanout = Depends(get_group_fanout),
):
    messages, pagination = await fanout.list_group_messages(current_user.id, group_id, page, limit)
    return MessageListResponse(messages=messages, pagination=pagination)


@router.post("/{group_id}/messages/text", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_group_text_message(
    group_id: UUID,
    body: GroupTextRequest,
    current_user: User = Depends(get_current_user),
    fanout: GroupFanout = Depends(get_group_fanout),
):
    payload = MessagePayload(message_type=MessageType.TEXT, text_content=body.text_content)
    msg = await fanout.send_group_message(current_user, group_id, payload)
    return SendMessageResponse(message="Message sent", message_id=msg.id)


@router.post("/{group_id}/messages/voice", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_group_voice_message(
    group_id: UUID,
    duration: Optional[int] = Form(None),
    voice: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    fanout: GroupFanout = Depends(get_group_fanout),
    file_store: LocalFileStore = Depends(get_file_store),
):
    payload = await save_voice_upload(file_store, voice, thumbnail, duration)
    msg = await fanout.send_group_message(current_user, group_id, payload)
    return SendMessageResponse(message="Voice message sent", message_id=msg.id)


@router.put("/{group_id}/messages/{message_id}/read", response_model=SuccessResponse)
async def mark_group_message_read(
    group_id: UUID,
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    fanout: GroupFanout = Depends(get_group_fanout),
):
    await fanout.mark_group_read(current_user.id, group_id, message_id)
    return SuccessResponse()
