# digilib/domain/recipients.py
import re
from typing import Iterable

from digilib.domain.errors import ValidationError

_ADDRESS_RE = re.compile(r"^([^@\s]+)@([a-z0-9.-]+\.[a-z]{2,})$")
#numer studenta: 3-20 znaków alfanumerycznych
_LOCAL_PART_RE = re.compile(r"^[a-z0-9]{3,20}$")


def validate_recipient(address: str, allowed_domains: Iterable[str]) -> str:
    """
    Sprawdza adres uczelniany i zwraca jego znormalizowaną postać.
    Rzuca ValidationError gdy format lub domena są niepoprawne.
    """
    normalized = (address or "").strip().lower()

    match = _ADDRESS_RE.match(normalized)
    if not match:
        raise ValidationError("Niepoprawny format adresu email", field="recipient")

    local_part, domain = match.groups()
    domains = {d.lower() for d in allowed_domains}
    if domain not in domains:
        raise ValidationError(
            "Pobieranie dostępne tylko dla adresów uczelnianych",
            field="recipient",
            allowed_domains=sorted(domains),
        )

    if not _LOCAL_PART_RE.match(local_part):
        raise ValidationError("Niepoprawny identyfikator studenta w adresie", field="recipient")

    return normalized
