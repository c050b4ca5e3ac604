# digilib/utils/ranges.py
import re
from typing import Tuple

from digilib.domain.errors import RangeNotSatisfiable

#obsługujemy jeden zakres: a-b, a- albo -n
_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


def parse_byte_range(header: str | None, size: int) -> Tuple[int, int] | None:
    """
    Zwraca (start, end) włącznie albo None gdy nagłówka brak.
    Zakres wychodzący poza plik nie jest przycinany, tylko kończy się 416.
    """
    if header is None or not header.strip():
        return None

    match = _RANGE_RE.match(header.strip().replace(" ", ""))
    if not match:
        raise RangeNotSatisfiable(size, "Niepoprawny nagłówek Range")

    first, last = match.groups()

    if first == "" and last == "":
        raise RangeNotSatisfiable(size, "Niepoprawny nagłówek Range")

    if first == "":
        #sufiks: ostatnie n bajtów
        length = int(last)
        if length == 0 or length > size:
            raise RangeNotSatisfiable(size)
        return size - length, size - 1

    start = int(first)
    end = int(last) if last != "" else size - 1

    if start >= size or end >= size or start > end:
        raise RangeNotSatisfiable(size)

    return start, end
