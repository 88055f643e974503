"""Source Reader

Paginated access to the Xano table through the Metadata API, plus the
partial-update call used to write computed embeddings back upstream.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import SourceWriteError
from .models import FetchResult

logger = logging.getLogger(__name__)

# Fixed projection requested for every page.
SOURCE_FIELDS = [
    "id",
    "job_title",
    "company",
    "location",
    "location_bundesland",
    "location_zip",
    "job_date",
    "url",
    "website",
    "branche",
    "description",
    "berufsgruppe",
    "properties",
    "combined_embeddings",
]


class XanoSourceReader:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        workspace_id: str,
        table_id: int,
        per_page: int,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.per_page = per_page
        self._table_path = f"/workspace/{workspace_id}/table/{table_id}/content"
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "accept": "application/json",
            },
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def fetch(self, page: int) -> FetchResult:
        """Fetch one page of records.

        Never raises: a failed request is reported through ``FetchResult.error``
        with an empty record list.
        """
        params = {
            "page": page,
            "per_page": self.per_page,
            "fields": ",".join(SOURCE_FIELDS),
        }
        logger.info("Fetching records from Xano, page %d", page)
        try:
            response = self._client.get(self._table_path, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch records for page %d: %s", page, e)
            return FetchResult(page=page, error=f"{type(e).__name__}: {e}")

        items: List[Dict[str, Any]] = []
        if isinstance(data, dict):
            items = data.get("items") or []
        logger.info("✓ Fetched %d records from page %d", len(items), page)
        return FetchResult(page=page, records=items)

    def update_field(self, record_id: int | str, field: str, value: Any) -> None:
        """Write a single field back to one row via the bulk patch endpoint.

        Raises:
            SourceWriteError: If the request fails or is rejected
        """
        body = {"items": [{"row_id": record_id, "updates": {field: value}}]}
        try:
            response = self._client.patch(f"{self._table_path}/bulk/patch", json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceWriteError(
                f"Failed to update '{field}' for record {record_id}: {e}"
            ) from e
        logger.debug("Updated '%s' for record %s in Xano", field, record_id)
