from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import CacheFacade
from app.config import get_settings
from app.database import get_db
from app.models.user import User
from app.schemas.auth import TokenData
from app.services.file_store import LocalFileStore
from app.services.follow_gate import FollowGate
from app.services.group_fanout import GroupFanout
from app.services.groups import GroupService
from app.services.message_store import MessageStore
from app.services.notifications import NotificationSink
from app.services.thread_aggregator import ThreadAggregator

settings = get_settings()
security = HTTPBearer(auto_error=False)


def create_access_token(user_id: UUID, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a bearer token for a user (tokens are normally minted by the auth service)."""
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {"sub": str(user_id), "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> TokenData:
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    return TokenData(user_id=payload.get("sub"))


async def get_user_from_token(token: Optional[str], db: AsyncSession) -> Optional[User]:
    if not token:
        return None
    try:
        token_data = decode_access_token(token)
        user_id = UUID(token_data.user_id) if token_data.user_id else None
    except (JWTError, ValueError):
        return None
    if user_id is None:
        return None
    return await db.get(User, user_id)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user from JWT token"""
    user = await get_user_from_token(credentials.credentials if credentials else None, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


# Process-wide handles live on app.state, created in the lifespan

def get_cache(request: Request) -> CacheFacade:
    return request.app.state.cache


def get_notifier(request: Request) -> NotificationSink:
    return request.app.state.notifier


def get_file_store(request: Request) -> LocalFileStore:
    return request.app.state.file_store


def get_follow_gate(db: AsyncSession = Depends(get_db)) -> FollowGate:
    return FollowGate(db)


def get_message_store(
    db: AsyncSession = Depends(get_db),
    cache: CacheFacade = Depends(get_cache),
    follow_gate: FollowGate = Depends(get_follow_gate),
    notifier: NotificationSink = Depends(get_notifier),
    file_store: LocalFileStore = Depends(get_file_store),
) -> MessageStore:
    return MessageStore(db, cache, follow_gate, notifier, file_store)


def get_thread_aggregator(
    db: AsyncSession = Depends(get_db),
    cache: CacheFacade = Depends(get_cache),
) -> ThreadAggregator:
    return ThreadAggregator(db, cache)


def get_group_fanout(store: MessageStore = Depends(get_message_store)) -> GroupFanout:
    return GroupFanout(store)


def get_group_service(fanout: GroupFanout = Depends(get_group_fanout)) -> GroupService:
    return GroupService(fanout)
