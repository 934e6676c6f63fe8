# phrames/services/session_reaper.py
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger("phrames.sessions")

JOB_ID = "sessions-reap"


async def reap_expired_sessions(session_store) -> int:
    """Süresi dolmuş oturum dokümanlarını siler; silinen sayısını döner."""
    try:
        return await run_in_threadpool(session_store.purge_expired)
    except Exception:
        logger.exception("Session reaping failed")
        return 0


def build_scheduler(session_store, interval_minutes: int) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        reap_expired_sessions,
        "interval",
        minutes=interval_minutes,
        args=[session_store],
        id=JOB_ID,
        replace_existing=True,
    )
    return scheduler
