# digilib/celery_worker.py
from celery import Celery
from celery.signals import setup_logging

from digilib.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND, SWEEP_INTERVAL_SECONDS
from digilib.utils.logging import configure_logging

celery_app = Celery(
    "digilib",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

#taski importowane explicite, żeby worker je zarejestrował
celery_app.conf.imports = (
    "digilib.tasks.expire",
    "digilib.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "sweep-expired-every-minute": {
        "task": "digilib.tasks.expire.sweep_expired_task",
        "schedule": SWEEP_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    #ten sam format logów co api
    configure_logging()
