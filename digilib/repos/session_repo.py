# digilib/repos/session_repo.py
from datetime import datetime
from typing import Any, Dict, Iterable, List

from sqlalchemy.orm import Session

from digilib.data.models.download_session import DownloadSessionModel
from digilib.domain.states import SessionState, TERMINAL_STATES


class SessionRepo:
    def __init__(self, db: Session):
        self.db = db

    def get(self, session_id: str) -> DownloadSessionModel | None:
        return self.db.get(DownloadSessionModel, session_id)

    def get_by_token(self, token: str) -> DownloadSessionModel | None:
        return (
            self.db.query(DownloadSessionModel)
            .filter(DownloadSessionModel.delivery_token == token)
            .first()
        )

    def create(self, session: DownloadSessionModel) -> DownloadSessionModel:
        self.db.add(session)
        self.db.flush()
        return session

    def transition(
        self,
        session_id: str,
        sources: Iterable[SessionState],
        target: SessionState,
        extra: Dict[str, Any] | None = None,
    ) -> int:
        """
        Compare-and-set na stanie sesji.
        update download_sessions set state = target where id = ? and state in (sources)
        """
        values: Dict[str, Any] = {"state": target.value}
        values.update(extra or {})
        return (
            self.db.query(DownloadSessionModel)
            .filter(
                DownloadSessionModel.id == session_id,
                DownloadSessionModel.state.in_([s.value for s in sources]),
            )
            .update(values, synchronize_session=False)
        )

    def consume_token(self, session_id: str, token: str, now: datetime) -> int:
        """Token jednorazowy: wygrywa tylko pierwszy update."""
        return (
            self.db.query(DownloadSessionModel)
            .filter(
                DownloadSessionModel.id == session_id,
                DownloadSessionModel.delivery_token == token,
                DownloadSessionModel.state == SessionState.TOKEN_ISSUED.value,
                DownloadSessionModel.token_used_at.is_(None),
                DownloadSessionModel.token_expires_at > now,
            )
            .update(
                {
                    "state": SessionState.DELIVERED.value,
                    "token_used_at": now,
                    "delivered_at": now,
                },
                synchronize_session=False,
            )
        )

    def live_ids_for_cart(self, session_key: str) -> List[str]:
        rows = (
            self.db.query(DownloadSessionModel.id)
            .filter(
                DownloadSessionModel.session_key == session_key,
                DownloadSessionModel.state.notin_([s.value for s in TERMINAL_STATES]),
            )
            .all()
        )
        return [r[0] for r in rows]

    def overdue_ids(self, now: datetime) -> List[str]:
        """Sesje nieterminalne po expires_at albo z wygasłym tokenem."""
        rows = (
            self.db.query(DownloadSessionModel.id)
            .filter(DownloadSessionModel.state.notin_([s.value for s in TERMINAL_STATES]))
            .filter(
                (DownloadSessionModel.expires_at <= now)
                | (
                    (DownloadSessionModel.state == SessionState.TOKEN_ISSUED.value)
                    & (DownloadSessionModel.token_expires_at <= now)
                )
            )
            .all()
        )
        return [r[0] for r in rows]

    def refresh(self, session: DownloadSessionModel) -> DownloadSessionModel:
        self.db.refresh(session)
        return session

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
