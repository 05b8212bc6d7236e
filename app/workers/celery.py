from celery import Celery

from app.config import REDIS_URL, USE_CELERY

# -------------------------------------------------
# LOCAL MODE (NO REDIS, NO WORKER)
# -------------------------------------------------
if not USE_CELERY:
    celery = Celery("recordgen_local")

    celery.conf.update(
        task_always_eager=True,
        task_eager_propagates=True,
    )

# -------------------------------------------------
# PRODUCTION MODE (REDIS + WORKER)
# -------------------------------------------------
else:
    celery = Celery(
        "recordgen_worker",
        broker=REDIS_URL,
        backend=REDIS_URL,
    )

    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_track_started=True,
        task_acks_late=True,
        worker_prefetch_multiplier=1,  # one job loop per worker slot
        task_default_queue="recordgen_queue",
    )

# -------------------------------------------------
# FORCE task registration
# -------------------------------------------------
import app.workers.generation_task  # noqa: F401,E402
