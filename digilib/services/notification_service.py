# digilib/services/notification_service.py
import smtplib
from email.message import EmailMessage
from typing import Any, Dict

from kombu.exceptions import OperationalError

from digilib.celery_worker import celery_app
from digilib.domain.errors import NotifierUnreachable
from digilib.utils.settings import SMTP_HOST, SMTP_PORT, SMTP_SENDER
from digilib.utils.logging import get_logger

logger = get_logger(__name__)

_SUBJECTS = {
    "item_download": "Kod weryfikacyjny pobierania książki",
    "cart_download": "Kod weryfikacyjny pobierania koszyka",
    "admin_recovery": "Kod odzyskiwania dostępu",
}


class NotificationService:
    """
    Serwis do wysyłania powiadomień.
    Używa Celery do asynchronicznego przetwarzania.
    """

    def send(self, recipient: str, purpose: str, payload: Dict[str, Any]) -> None:
        try:
            send_notification_task.delay(recipient, purpose, payload)
        except OperationalError as e:
            #broker niedostępny, kod nie dotrze do odbiorcy
            logger.error(f"Notification broker unreachable for {recipient} ({purpose}): {e}")
            raise NotifierUnreachable(str(e)) from e


def build_message(recipient: str, purpose: str, payload: Dict[str, Any]) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = SMTP_SENDER
    msg["To"] = recipient
    msg["Subject"] = _SUBJECTS.get(purpose, "Powiadomienie biblioteki cyfrowej")

    lines = [f"Twój kod weryfikacyjny: {payload.get('code')}"]
    if payload.get("expires_at"):
        lines.append(f"Kod jest ważny do: {payload['expires_at']} (UTC)")
    lines.append("Jeśli to nie Ty, zignoruj tę wiadomość.")
    msg.set_content("\n".join(lines))
    return msg


@celery_app.task(
    name="digilib.services.notification_service.send_notification_task",
    autoretry_for=(smtplib.SMTPException, OSError),
    retry_backoff=True,
    max_retries=3,
)
def send_notification_task(recipient: str, purpose: str, payload: Dict[str, Any]):
    """
    Bez SMTP_HOST (dev) tylko loguje wiadomość.
    """
    if not SMTP_HOST:
        logger.info(f"[NOTIFICATION] {purpose} -> {recipient}: {payload}")
        return {"recipient": recipient, "purpose": purpose, "status": "logged"}

    msg = build_message(recipient, purpose, payload)
    with smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=10) as smtp:
        smtp.starttls()
        smtp.send_message(msg)

    logger.info(f"[NOTIFICATION] {purpose} sent to {recipient}")
    return {"recipient": recipient, "purpose": purpose, "status": "sent"}
