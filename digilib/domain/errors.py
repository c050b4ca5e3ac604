# digilib/domain/errors.py
from typing import Any, Dict


class DownloadError(Exception):
    """
    Bazowy wyjątek domeny pobierania.
    Handler w main.py zamienia go na odpowiedź json z odpowiednim statusem.
    """

    status_code = 400
    code = "download_error"
    message = "Błąd pobierania"

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(DownloadError):
    status_code = 400
    code = "validation_error"
    message = "Niepoprawne dane wejściowe"


class RateLimited(DownloadError):
    status_code = 429
    code = "rate_limited"
    message = "Zbyt wiele prób, spróbuj ponownie później"

    def __init__(self, message: str | None = None, retry_after: int = 0, **details: Any):
        self.retry_after = max(int(retry_after), 0)
        super().__init__(message, retry_after=self.retry_after, **details)

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class ChallengeExpired(DownloadError):
    status_code = 410
    code = "challenge_expired"
    message = "Kod weryfikacyjny lub sesja wygasły"


class ChallengeMismatch(DownloadError):
    status_code = 400
    code = "invalid_code"
    message = "Niepoprawny kod weryfikacyjny"


class SessionNotFound(DownloadError):
    status_code = 404
    code = "session_not_found"
    message = "Sesja pobierania nie istnieje"


class InvalidSessionState(DownloadError):
    status_code = 409
    code = "invalid_session_state"
    message = "Operacja niedozwolona w obecnym stanie sesji"


class TokenInvalid(DownloadError):
    status_code = 401
    code = "token_invalid"
    message = "Niepoprawny token pobierania"


class TokenExpired(DownloadError):
    status_code = 410
    code = "token_expired"
    message = "Token pobierania wygasł"


class TokenAlreadyUsed(DownloadError):
    status_code = 409
    code = "token_already_used"
    message = "Token pobierania został już wykorzystany"


class ItemUnavailable(DownloadError):
    status_code = 404
    code = "item_unavailable"
    message = "Pozycja niedostępna do pobrania"

    def __init__(self, message: str | None = None, item_id: int | None = None, reason: str = "not_found", **details: Any):
        self.item_id = item_id
        self.reason = reason
        super().__init__(message, item_id=item_id, reason=reason, **details)


class ItemNotInSession(DownloadError):
    status_code = 403
    code = "item_not_in_session"
    message = "Pozycja nie należy do tej sesji pobierania"


class NothingToDeliver(DownloadError):
    status_code = 404
    code = "nothing_to_deliver"
    message = "Żadna pozycja nie mogła zostać dodana do paczki"


class RangeNotSatisfiable(DownloadError):
    status_code = 416
    code = "range_not_satisfiable"
    message = "Żądany zakres bajtów jest poza plikiem"

    def __init__(self, size: int, message: str | None = None):
        self.size = size
        super().__init__(message, size=size)

    def headers(self) -> Dict[str, str]:
        return {"Content-Range": f"bytes */{self.size}"}


class TransientIOError(DownloadError):
    status_code = 503
    code = "storage_unavailable"
    message = "Błąd odczytu pliku, spróbuj ponownie"


class NotificationFailed(DownloadError):
    status_code = 502
    code = "notification_failed"
    message = "Nie udało się wysłać kodu weryfikacyjnego"


class CatalogUnavailable(DownloadError):
    status_code = 503
    code = "catalog_unavailable"
    message = "Katalog jest chwilowo niedostępny"


class NotifierUnreachable(Exception):
    """Rzucany przez notifier, silnik OTP zamienia go na NotificationFailed."""
