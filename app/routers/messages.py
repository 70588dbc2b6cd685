from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, WebSocket, WebSocketDisconnect, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.dependencies import (
    get_current_user, get_file_store, get_message_store, get_thread_aggregator, get_user_from_token,
)
from app.errors import InvalidInput, MessagingError, NotFound
from app.models.message import MessageType
from app.models.user import User
from app.schemas.message import (
    DeleteMessageResponse, MarkThreadReadResponse, MessageListResponse, MessagePayload, MessageResponse,
    ReactionRequest, SendMessageResponse, SendTextRequest, SendTextResponse, SuccessResponse, ThreadListResponse,
)
from app.services.file_store import IMAGE_MIME_TYPES, VOICE_MIME_TYPES, LocalFileStore
from app.services.message_store import MessageStore
from app.services.presenters import make_message_dto
from app.services.thread_aggregator import ThreadAggregator
from app.utils.forms import mb_to_bytes, parse_uuid_list

router = APIRouter()
settings = get_settings()


async def save_voice_upload(
    file_store: LocalFileStore,
    voice: Optional[UploadFile],
    thumbnail: Optional[UploadFile] = None,
    duration: Optional[int] = None,
) -> MessagePayload:
    """Store a voice file (and optional thumbnail) and describe them as a payload."""
    if voice is None:
        raise InvalidInput("A voice file is required")
    stored = await file_store.save(voice, VOICE_MIME_TYPES, mb_to_bytes(settings.max_voice_size_mb), "voice")

    attached_image = None
    if thumbnail is not None and thumbnail.filename:
        try:
            image = await file_store.save(
                thumbnail, IMAGE_MIME_TYPES, mb_to_bytes(settings.max_image_size_mb), "images"
            )
        except MessagingError:
            await file_store.unlink(stored.path)
            raise
        attached_image = image.path

    return MessagePayload(
        message_type=MessageType.VOICE,
        file_path=stored.path,
        original_filename=stored.original_filename,
        file_size=stored.size,
        duration=duration or 0,
        mime_type=stored.mime_type,
        attached_image=attached_image,
    )


# -- sending ---------------------------------------------------------------

@router.post("/send", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_voice_message(
    receivers: str = Form(...),
    duration: Optional[int] = Form(None),
    voice: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    file_store: LocalFileStore = Depends(get_file_store),
):
    """Send a voice message to one or more followers."""
    receiver_ids = parse_uuid_list(receivers, "receivers")
    if not receiver_ids:
        raise InvalidInput("At least one receiver is required")

    payload = await save_voice_upload(file_store, voice, thumbnail, duration)
    msg = await store.send_direct(current_user, receiver_ids, payload)
    return SendMessageResponse(message="Voice message sent", message_id=msg.id)


@router.post("/send-text", response_model=SendTextResponse, status_code=status.HTTP_201_CREATED)
async def send_text_message(
    body: SendTextRequest,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    payload = MessagePayload(
        message_type=MessageType.TEXT,
        text_content=body.content,
        encrypted_content=body.encrypted_content,
        encrypted_keys=body.encrypted_keys,
    )
    msg = await store.send_direct(current_user, body.receivers, payload)
    return SendTextResponse(data=make_message_dto(msg, current_user.id))


# -- views -----------------------------------------------------------------

@router.get("/received", response_model=MessageListResponse)
async def get_received_messages(
    unread_only: bool = Query(False, alias="unreadOnly"),
    page: int = Query(1),
    limit: int = Query(50),
    current_user: User = Depends(get_current_user),
    aggregator: ThreadAggregator = Depends(get_thread_aggregator),
):
    messages, pagination = await aggregator.list_received(current_user.id, unread_only, page, limit)
    return MessageListResponse(messages=messages, pagination=pagination)


@router.get("/sent", response_model=MessageListResponse)
async def get_sent_messages(
    current_user: User = Depends(get_current_user),
    aggregator: ThreadAggregator = Depends(get_thread_aggregator),
):
    return MessageListResponse(messages=await aggregator.list_sent(current_user.id))


@router.get("/threads", response_model=ThreadListResponse)
async def get_threads(
    current_user: User = Depends(get_current_user),
    aggregator: ThreadAggregator = Depends(get_thread_aggregator),
):
    return ThreadListResponse(threads=await aggregator.list_threads(current_user.id))


@router.get("/thread/{partner_id}", response_model=MessageListResponse)
async def get_thread_messages(
    partner_id: UUID,
    current_user: User = Depends(get_current_user),
    aggregator: ThreadAggregator = Depends(get_thread_aggregator),
):
    return MessageListResponse(messages=await aggregator.get_thread_messages(current_user.id, partner_id))


@router.put("/thread/{partner_id}/read", response_model=MarkThreadReadResponse)
async def mark_thread_read(
    partner_id: UUID,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    updated = await store.mark_thread_read(current_user.id, partner_id)
    return MarkThreadReadResponse(updated=updated)


# -- websocket -------------------------------------------------------------

@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    """Realtime message events for the authenticated user (``?token=<jwt>``)."""
    await websocket.accept()
    user = await get_user_from_token(token, db)
    # Only the handshake needs the database; give the connection back to the pool
    await db.close()
    if user is None:
        await websocket.close(code=1008)
        return

    manager = websocket.app.state.connections
    user_id = str(user.id)
    await manager.connect(user_id, websocket)
    try:
        while True:
            # Clients only listen; incoming frames are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(user_id, websocket)


# -- single message --------------------------------------------------------

@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    msg = await store.get_message(message_id, current_user.id)
    return MessageResponse(message=make_message_dto(msg, current_user.id))


@router.get("/{message_id}/download")
async def download_voice(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    file_store: LocalFileStore = Depends(get_file_store),
):
    msg = await store.get_message(message_id, current_user.id)
    if not file_store.exists(msg.file_path):
        raise NotFound("Voice file not found")
    return FileResponse(msg.file_path, media_type=msg.mime_type, filename=msg.original_filename)


@router.put("/{message_id}/read", response_model=SuccessResponse)
async def mark_as_read(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    await store.mark_read(message_id, current_user.id)
    return SuccessResponse()


@router.delete("/{message_id}", response_model=DeleteMessageResponse)
async def delete_message(
    message_id: UUID,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    physically_deleted = await store.delete_for_user(message_id, current_user.id)
    return DeleteMessageResponse(physically_deleted=physically_deleted)


@router.post("/{message_id}/reactions", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
async def add_reaction(
    message_id: UUID,
    body: ReactionRequest,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    await store.add_reaction(message_id, current_user, body.emoji)
    return SuccessResponse()


@router.delete("/{message_id}/reactions/{emoji}", response_model=SuccessResponse)
async def remove_reaction(
    message_id: UUID,
    emoji: str,
    current_user: User = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    await store.remove_reaction(message_id, current_user.id, emoji)
    return SuccessResponse()
