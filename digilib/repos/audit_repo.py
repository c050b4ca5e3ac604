# digilib/repos/audit_repo.py
from sqlalchemy.orm import Session

from digilib.data.models.audit_event import AuditEventModel


class AuditRepo:
    def __init__(self, db: Session):
        self.db = db

    def append(self, event: AuditEventModel) -> AuditEventModel:
        #tylko insert, wpisów audytu nie modyfikujemy
        self.db.add(event)
        self.db.commit()
        return event
