"""
Scheduled housekeeping: removal of orphaned upload files.

A file becomes orphaned when the request that stored it died before the message
or group row was committed, or when removing a file after a physical delete
failed. Files younger than the grace period are left alone so that uploads of
in-flight requests are never touched.
"""
import asyncio
import logging
import time
from pathlib import Path
from typing import Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from app.config import get_settings
from app.database import async_session
from app.models.group import Group
from app.models.message import Message
from app.models.user import User
from app.services.file_store import LocalFileStore

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def referenced_paths(session_factory) -> Set[Path]:
    """Every upload path still referenced from the database."""
    async with session_factory() as db:
        queries = [
            select(Message.file_path).where(Message.file_path.isnot(None)),
            select(Message.attached_image).where(Message.attached_image.isnot(None)),
            select(Group.icon_image).where(Group.icon_image.isnot(None)),
            select(User.profile_image).where(User.profile_image.isnot(None)),
        ]
        paths = set()
        for stmt in queries:
            result = await db.execute(stmt)
            paths.update(Path(p).resolve() for p in result.scalars().all())
        return paths


def _candidate_files(root: Path, older_than: float) -> list[Path]:
    if not root.is_dir():
        return []
    return [p for p in root.rglob("*") if p.is_file() and p.stat().st_mtime < older_than]


async def sweep_orphaned_uploads(
    file_store: LocalFileStore,
    grace_minutes: int,
    session_factory=async_session,
    now: Optional[float] = None,
) -> int:
    """Delete upload files no row points at. Returns the number removed."""
    cutoff = (now if now is not None else time.time()) - grace_minutes * 60
    candidates = await asyncio.to_thread(_candidate_files, file_store.root, cutoff)
    if not candidates:
        return 0

    referenced = await referenced_paths(session_factory)
    removed = 0
    for path in candidates:
        if path.resolve() in referenced:
            continue
        if await file_store.unlink(str(path)):
            removed += 1

    if removed:
        logger.info(f"Orphan sweep removed {removed} file(s) from {file_store.root}")
    return removed


async def run_orphan_sweep(file_store: LocalFileStore, grace_minutes: int) -> None:
    try:
        await sweep_orphaned_uploads(file_store, grace_minutes)
    except Exception as e:
        logger.error(f"Orphan sweep failed: {e}")


def start_scheduler(file_store: LocalFileStore):
    """Start the scheduler with the periodic orphan sweep."""
    settings = get_settings()
    if not settings.orphan_sweep_enabled:
        logger.info("Orphan upload sweep disabled")
        return

    scheduler.add_job(
        run_orphan_sweep,
        IntervalTrigger(hours=settings.orphan_sweep_interval_hours),
        args=[file_store, settings.orphan_grace_minutes],
        id='orphan_upload_sweep',
        name='Remove upload files not referenced by any message or group',
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started - orphan sweep every {settings.orphan_sweep_interval_hours}h")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
