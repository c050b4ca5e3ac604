# digilib/tasks/expire.py
from typing import Dict

from sqlalchemy.orm import Session

from digilib.celery_worker import celery_app
from digilib.data.database import SessionLocal
from digilib.services.audit_service import DbAuditSink
from digilib.services.cart_service import CartService
from digilib.services.download_service import DownloadService
from digilib.services.otp_service import OtpService
from digilib.utils.clock import Clock, utcnow
from digilib.utils.logging import get_logger

logger = get_logger(__name__)


def run_sweep(db: Session, clock: Clock = utcnow) -> Dict[str, int]:
    """
    Aktywne czyszczenie: wygasłe wpisy koszyka, kody OTP i sesje.
    Poprawność nie zależy od sweepa, wszystko jest też sprawdzane leniwie.
    """
    cart = CartService(db, catalog=None, clock=clock)
    otp = OtpService(db, notifier=None, clock=clock)
    downloads = DownloadService(
        db,
        cart=cart,
        otp=otp,
        delivery=None,
        catalog=None,
        audit=DbAuditSink(db, clock=clock),
        clock=clock,
    )

    result = {
        "cart_entries": cart.sweep_expired(),
        "otp_challenges": otp.purge_expired(),
        "download_sessions": downloads.expire_overdue(),
    }
    logger.info(f"Sweep finished: {result}")
    return result


@celery_app.task(name="digilib.tasks.expire.sweep_expired_task")
def sweep_expired_task():
    logger.info("Sweep expired task started")

    db = SessionLocal()
    try:
        return run_sweep(db)
    finally:
        db.close()
