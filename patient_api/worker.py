"""
ARQ Background Worker
Runs the IronSail retry sweep for shipping orders stuck in retry_pending

Start with: arq patient_api.worker.WorkerSettings
"""

import logging
import os
from urllib.parse import urlparse

from arq.connections import RedisSettings
from arq.cron import cron

# Register every model before any session is opened
from . import models, models_billing, models_order  # noqa: F401
from .database import SessionLocal
from .domain.ironsail.retry_service import IronSailRetryService

logger = logging.getLogger(__name__)

RETRY_SWEEP_LIMIT = int(os.getenv("IRONSAIL_RETRY_SWEEP_LIMIT", "50"))


def get_redis_settings() -> RedisSettings:
    """Redis settings from REDIS_URL, else REDIS_HOST/PORT/PASSWORD"""
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        parsed = urlparse(redis_url)
        return RedisSettings(
            host=parsed.hostname or "localhost",
            port=parsed.port or 6379,
            password=parsed.password,
            ssl=parsed.scheme == "rediss",
            conn_timeout=15,
            conn_retry_delay=1,
        )
    return RedisSettings(
        host=os.getenv("REDIS_HOST", "localhost"),
        port=int(os.getenv("REDIS_PORT", "6379")),
        password=os.getenv("REDIS_PASSWORD"),
        ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
        conn_timeout=15,
        conn_retry_delay=1,
    )


async def retry_stuck_ironsail_orders_task(ctx):
    """
    Cron job: resubmit retry_pending IronSail orders of any age, never-retried
    and oldest attempts first.
    """
    db = SessionLocal()
    try:
        result = await IronSailRetryService(db).retry_stuck_orders(min_age_minutes=0, limit=RETRY_SWEEP_LIMIT)
        logger.info(f"✅ IronSail retry sweep finished: {result}")
        return result
    except Exception as e:
        logger.error(f"❌ IronSail retry sweep failed: {e}")
        raise
    finally:
        db.close()


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [retry_stuck_ironsail_orders_task]
    redis_settings = get_redis_settings()

    max_jobs = int(os.getenv("ARQ_MAX_JOBS", "10"))
    job_timeout = int(os.getenv("ARQ_JOB_TIMEOUT", "600"))
    keep_result = int(os.getenv("ARQ_KEEP_RESULT", "3600"))
    health_check_interval = 60
    max_tries = 1  # the sweep itself is the retry mechanism

    # Every two hours, on the hour
    cron_jobs = [
        cron(retry_stuck_ironsail_orders_task, hour=set(range(0, 24, 2)), minute=0),
    ]

    logger.info(f"🔧 ARQ Worker configured: max_jobs={max_jobs}, timeout={job_timeout}s")
