"""Run the orphaned upload sweep once, outside the API process.

Usage:
    cd voice-messaging-py
    python -m scripts.sweep_uploads [--grace-minutes 60]
"""
import argparse
import asyncio

from app.config import get_settings
from app.scheduler import sweep_orphaned_uploads
from app.services.file_store import LocalFileStore


async def main(grace_minutes: int):
    settings = get_settings()
    file_store = LocalFileStore(settings.upload_dir)
    removed = await sweep_orphaned_uploads(file_store, grace_minutes)
    print(f"Done. Removed {removed} orphaned file(s) from {file_store.root}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--grace-minutes", type=int, default=get_settings().orphan_grace_minutes)
    args = parser.parse_args()
    asyncio.run(main(args.grace_minutes))
