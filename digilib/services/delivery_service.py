# digilib/services/delivery_service.py
import mimetypes
import re
import shutil
import tempfile
import zipfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import IO, Any, Dict, Iterator, List, Protocol

from digilib.domain.errors import (
    ItemUnavailable,
    NothingToDeliver,
    TransientIOError,
)
from digilib.services.catalog_client import CatalogItem
from digilib.utils.ranges import parse_byte_range
from digilib.utils.retry import storage_retry
from digilib.utils.settings import STORAGE_ROOT, DOWNLOAD_CHUNK_SIZE
from digilib.utils.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
MANIFEST_NAME = "MANIFEST.txt"
BUNDLE_COPY_SIZE = 256 * 1024


class Catalog(Protocol):
    def get_item(self, item_id: int) -> CatalogItem | None: ...


def safe_filename(title: str, author: str | None, extension: str) -> str:
    base = title[:50]
    if author:
        base = f"{base}_by_{author[:30]}"
    return _UNSAFE_CHARS.sub("_", base) + extension


@dataclass(frozen=True)
class ResolvedFile:
    item_id: int
    path: Path
    size: int
    filename: str
    media_type: str


@dataclass(frozen=True)
class Omission:
    item_id: int
    title: str
    reason: str


@dataclass
class PreparedDelivery:
    """
    Otwarty uchwyt gotowy do streamowania.
    stream() zawsze zamyka uchwyt, close() gdy stream nie wystartował.
    """

    handle: IO[bytes]
    status_code: int
    headers: Dict[str, str]
    media_type: str
    offset: int
    length: int
    mode: str
    item_ids: List[int]
    omitted: List[Omission] = field(default_factory=list)
    context: Dict[str, Any] = field(default_factory=dict)
    chunk_size: int = DOWNLOAD_CHUNK_SIZE

    def stream(self) -> Iterator[bytes]:
        remaining = self.length
        try:
            self.handle.seek(self.offset)
            while remaining > 0:
                chunk = self.handle.read(min(self.chunk_size, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk
        except OSError as e:
            #token już zużyty, nie ponawiamy
            logger.error(
                f"Streaming failed for session {self.context.get('session_id')} "
                f"item {self.context.get('item_id')}: {e}"
            )
            raise
        finally:
            self.close()

    def close(self) -> None:
        if not self.handle.closed:
            self.handle.close()


class DeliveryService:
    def __init__(
        self,
        catalog: Catalog,
        storage_root: str | None = None,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
    ):
        self.catalog = catalog
        self.storage_root = Path(storage_root or STORAGE_ROOT).resolve()
        self.chunk_size = chunk_size

    def _within_root(self, path: Path) -> bool:
        return path == self.storage_root or self.storage_root in path.parents

    def resolve(self, item_id: int) -> ResolvedFile:
        """
        Mapuje pozycję katalogu na lokalny plik.
        Zewnętrzne url nie są proxowane, taka pozycja jest niedostępna.
        """
        item = self.catalog.get_item(item_id)
        if item is None:
            raise ItemUnavailable(item_id=item_id, reason="not_found")

        ref = (item.file_ref or "").strip()
        if ref.lower().startswith(("http://", "https://")):
            raise ItemUnavailable("Pozycja jest hostowana zewnętrznie", item_id=item_id, reason="external_url")

        candidates = []
        if ref:
            candidates.append((self.storage_root / ref).resolve())
        candidates.append((self.storage_root / "uploads" / "books" / f"{item_id}.pdf").resolve())

        for path in candidates:
            if not self._within_root(path):
                logger.warning(f"File reference of item {item_id} escapes storage root: {ref}")
                continue
            try:
                if not path.is_file():
                    continue
                size = path.stat().st_size
            except OSError as e:
                logger.warning(f"Cannot stat file of item {item_id} at {path}: {e}")
                continue

            extension = path.suffix or ".pdf"
            media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
            return ResolvedFile(
                item_id=item_id,
                path=path,
                size=size,
                filename=safe_filename(item.title, item.author, extension),
                media_type=media_type,
            )

        raise ItemUnavailable("Plik pozycji nie istnieje", item_id=item_id, reason="file_missing")

    @storage_retry()
    def _open(self, path: Path) -> IO[bytes]:
        return open(path, "rb")

    def serve_single(
        self,
        item_id: int,
        range_header: str | None = None,
        context: Dict[str, Any] | None = None,
    ) -> PreparedDelivery:
        resolved = self.resolve(item_id)
        byte_range = parse_byte_range(range_header, resolved.size)

        try:
            handle = self._open(resolved.path)
        except FileNotFoundError:
            raise ItemUnavailable("Plik pozycji nie istnieje", item_id=item_id, reason="file_missing")
        except OSError as e:
            logger.error(f"Cannot open file of item {item_id} after retry: {e}")
            raise TransientIOError(item_id=item_id) from e

        headers = {
            "Accept-Ranges": "bytes",
            "Content-Disposition": f'attachment; filename="{resolved.filename}"',
            "Cache-Control": "no-store",
        }

        if byte_range is None:
            start, length, status = 0, resolved.size, 200
        else:
            start, end = byte_range
            length, status = end - start + 1, 206
            headers["Content-Range"] = f"bytes {start}-{end}/{resolved.size}"
        headers["Content-Length"] = str(length)

        return PreparedDelivery(
            handle=handle,
            status_code=status,
            headers=headers,
            media_type=resolved.media_type,
            offset=start,
            length=length,
            mode="single",
            item_ids=[item_id],
            context={**(context or {}), "item_id": item_id},
            chunk_size=self.chunk_size,
        )

    def serve_bundle(
        self,
        items: List[Dict[str, Any]],
        context: Dict[str, Any] | None = None,
        archive_name: str = "library_books.zip",
    ) -> PreparedDelivery:
        """
        Buduje zip w pliku tymczasowym.
        Pozycje które się nie rozwiązały trafiają do manifestu, nie przerywają paczki.
        """
        included: List[Dict[str, Any]] = []
        omitted: List[Omission] = []
        used_names: set = set()

        tmp = tempfile.TemporaryFile()
        try:
            with zipfile.ZipFile(tmp, "w", zipfile.ZIP_DEFLATED) as zf:
                for entry in items:
                    item_id = int(entry["item_id"])
                    title = entry.get("title") or f"Item {item_id}"

                    try:
                        resolved = self.resolve(item_id)
                    except ItemUnavailable as e:
                        omitted.append(Omission(item_id, title, e.reason))
                        continue

                    try:
                        source = self._open(resolved.path)
                    except FileNotFoundError:
                        omitted.append(Omission(item_id, title, "file_missing"))
                        continue
                    except OSError as e:
                        logger.error(f"Read failed for item {item_id} while bundling: {e}")
                        omitted.append(Omission(item_id, title, "read_error"))
                        continue

                    arcname = _unique_name(resolved.filename, used_names)
                    #kopiowanie kawałkami, plik nigdy nie trafia w całości do pamięci
                    with source, zf.open(arcname, "w", force_zip64=resolved.size >= zipfile.ZIP64_LIMIT) as dest:
                        try:
                            shutil.copyfileobj(source, dest, BUNDLE_COPY_SIZE)
                        except OSError as e:
                            logger.error(
                                f"Copy failed for session {(context or {}).get('session_id')} "
                                f"item {item_id} while bundling: {e}"
                            )
                            raise TransientIOError(item_id=item_id) from e
                    included.append({"item_id": item_id, "title": title, "filename": arcname})

                if not included:
                    raise NothingToDeliver(omitted=[asdict(o) for o in omitted])

                zf.writestr(MANIFEST_NAME, build_manifest(included, omitted))

            size = tmp.tell()
        except Exception:
            tmp.close()
            raise

        if omitted:
            logger.info(f"Bundle built with {len(included)} items, {len(omitted)} omitted")

        return PreparedDelivery(
            handle=tmp,
            status_code=200,
            headers={
                "Content-Length": str(size),
                "Content-Disposition": f'attachment; filename="{archive_name}"',
                "Cache-Control": "no-store",
            },
            media_type="application/zip",
            offset=0,
            length=size,
            mode="bundle",
            item_ids=[i["item_id"] for i in included],
            omitted=omitted,
            context=dict(context or {}),
            chunk_size=self.chunk_size,
        )


def _unique_name(name: str, used: set) -> str:
    candidate = name
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    counter = 2
    while candidate in used or candidate == MANIFEST_NAME:
        candidate = f"{stem}_{counter}.{ext}" if ext else f"{stem}_{counter}"
        counter += 1
    used.add(candidate)
    return candidate


def build_manifest(included: List[Dict[str, Any]], omitted: List[Omission]) -> str:
    lines = ["Digital Library download", "", f"Included ({len(included)}):"]
    for i in included:
        lines.append(f"  - [{i['item_id']}] {i['title']} -> {i['filename']}")

    if omitted:
        lines += ["", f"Omitted ({len(omitted)}):"]
        for o in omitted:
            lines.append(f"  - [{o.item_id}] {o.title}: {o.reason}")

    return "\n".join(lines) + "\n"
