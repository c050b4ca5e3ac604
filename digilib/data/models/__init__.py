#import wszystkich modeli żeby SQLAlchemy je zarejestrował w base metadata

from digilib.data.models.cart_entry import CartEntryModel
from digilib.data.models.otp_challenge import OtpChallengeModel
from digilib.data.models.download_session import DownloadSessionModel
from digilib.data.models.delivery_record import DeliveryRecordModel
from digilib.data.models.delivered_item import DeliveredItemModel
from digilib.data.models.audit_event import AuditEventModel

__all__ = [
    "CartEntryModel",
    "OtpChallengeModel",
    "DownloadSessionModel",
    "DeliveryRecordModel",
    "DeliveredItemModel",
    "AuditEventModel",
]
