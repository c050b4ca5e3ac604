# digilib/services/catalog_client.py
import requests
from requests import RequestException
from pydantic import BaseModel, ConfigDict

from digilib.domain.errors import CatalogUnavailable
from digilib.utils.retry import http_retry
from digilib.utils.settings import CATALOG_SERVICE_URL
from digilib.utils.logging import get_logger

logger = get_logger(__name__)


class CatalogItem(BaseModel):
    """Pozycja katalogu widziana przez pipeline pobierania."""

    id: int
    title: str
    author: str | None = None
    #ścieżka względem STORAGE_ROOT albo zewnetrzny url
    file_ref: str | None = None

    model_config = ConfigDict(extra="ignore")


class CatalogClient:
    def __init__(self, base_url: str | None = None, timeout: int = 2):
        self.base_url = (base_url or CATALOG_SERVICE_URL).rstrip("/")
        self.timeout = timeout

    @http_retry()
    def _fetch(self, item_id: int) -> dict | None:
        url = f"{self.base_url}/books/{item_id}"
        logger.info(f"CatalogClient GET {url}")

        resp = requests.get(url, timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def get_item(self, item_id: int) -> CatalogItem | None:
        try:
            data = self._fetch(item_id)
        except RequestException as e:
            logger.error(f"Catalog lookup failed for item {item_id}: {e}")
            raise CatalogUnavailable(item_id=item_id) from e

        if data is None:
            return None
        return CatalogItem.model_validate(data)
