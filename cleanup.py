# cleanup.py
import os
import time
import asyncio
from pathlib import Path
from concurrent.futures import ThreadPoolExecutor

from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

from collabnotes.core.config import settings
from collabnotes.db.database import SessionLocal
from collabnotes.models.messages import MessageAttachment
from collabnotes.websocket.handlers import expire_typing

logger = logging.getLogger(__name__)

# Run blocking file work off the event loop
executor = ThreadPoolExecutor(max_workers=2)


def remove_orphaned_uploads_sync(upload_dir: str | Path | None = None, keep_days: int | None = None) -> int:
    """
    Delete upload files that no attachment row points at and that are older
    than the keep window. Runs in a worker thread.
    """
    upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
    keep_days = settings.UPLOAD_KEEP_DAYS if keep_days is None else keep_days
    if not upload_dir.is_dir():
        return 0

    db = SessionLocal()
    try:
        referenced = {key for (key,) in db.query(MessageAttachment.storage_key).all()}
    finally:
        db.close()

    now = time.time()
    deleted_count = 0
    for root, _, files in os.walk(upload_dir):
        for fname in files:
            # skip .gitkeep and friends
            if fname.startswith("."):
                continue
            fpath = Path(root) / fname
            key = fpath.relative_to(upload_dir).as_posix()
            if key in referenced or not fpath.is_file():
                continue
            if now - fpath.stat().st_mtime <= keep_days * 86400:
                continue
            try:
                fpath.unlink()
                deleted_count += 1
                logger.info(f"[cleanup] deleted {fpath}")
            except OSError as e:
                logger.error(f"[cleanup] failed to delete {fpath}: {e}")

    logger.info(f"[cleanup] done, {deleted_count} orphaned file(s) removed")
    return deleted_count


async def remove_orphaned_uploads():
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(executor, remove_orphaned_uploads_sync)
    except Exception as e:
        logger.error(f"[cleanup] job failed: {e}")


def create_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    # nightly at 02:30
    scheduler.add_job(remove_orphaned_uploads, "cron", hour=2, minute=30, id="remove_orphaned_uploads")
    scheduler.add_job(
        expire_typing,
        "interval",
        seconds=settings.TYPING_SWEEP_SECONDS,
        id="expire_typing",
        max_instances=1,
        coalesce=True,
    )
    return scheduler


def start_scheduler() -> AsyncIOScheduler:
    """Call from inside the running loop (app lifespan)."""
    scheduler = create_scheduler()
    scheduler.start()
    logger.info("[cleanup] scheduler started")
    return scheduler


def shutdown_scheduler(scheduler: AsyncIOScheduler):
    scheduler.shutdown(wait=False)
    executor.shutdown(wait=False)
    logger.info("[cleanup] scheduler stopped")
