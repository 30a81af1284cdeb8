"""
HoYoWiki content API client
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from wiki_ingest.core.config import settings
from wiki_ingest.core.exceptions import (
    ApiError,
    NetworkError,
    NotFoundError,
    ParsingError,
    RateLimitError,
)
from wiki_ingest.models.payload import RawPayload

logger = structlog.get_logger(__name__)


class HoyoWikiClient:
    """Fetches one entry page per call; retries are the caller's concern"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = (base_url or settings.HOYOWIKI_API_BASE).rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.REQUEST_TIMEOUT
        )

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": settings.USER_AGENT,
            "x-rpc-wiki_app": settings.HOYOWIKI_WIKI_APP,
        }

    async def fetch(self, page_id: Any, locale: str) -> RawPayload:
        """
        Get one entry page

        Args:
            page_id: Entry page id
            locale: Content language, e.g. ja-jp or en-us

        Returns:
            The response wrapped in a RawPayload

        Raises:
            NetworkError: Timeouts and transport failures
            NotFoundError: HTTP 404
            RateLimitError: HTTP 429
            ApiError: Other HTTP errors, a non-zero retcode or no data.page
            ParsingError: A body that is not JSON
        """
        url = f"{self.base_url}/entry_page"
        params = {"entry_page_id": str(page_id), "lang": locale}
        headers = {**self.headers, "x-rpc-language": locale}

        logger.debug("Fetching entry page", page_id=page_id, locale=locale)
        try:
            response = await self.client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise NetworkError(
                f"Request timeout for page {page_id}",
                details={"page_id": page_id, "locale": locale, "error": str(e)}
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Connection error for page {page_id}: {e}",
                details={"page_id": page_id, "locale": locale}
            ) from e

        if response.status_code == 404:
            raise NotFoundError(
                f"Entry page {page_id} not found",
                details={"page_id": page_id, "locale": locale}
            )
        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                f"Rate limited while fetching page {page_id}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if response.status_code >= 400:
            raise ApiError(
                f"HTTP {response.status_code} for page {page_id}",
                status_code=response.status_code,
                details={"page_id": page_id, "locale": locale}
            )

        try:
            document = response.json()
        except ValueError as e:
            raise ParsingError(
                f"Response body for page {page_id} is not JSON",
                error_code="RESPONSE_NOT_JSON",
                details={"page_id": page_id, "locale": locale}
            ) from e

        payload = RawPayload(document, locale=locale)
        if not isinstance(document, dict) or payload.retcode != 0:
            message = document.get("message") if isinstance(document, dict) else None
            raise ApiError(
                f"API returned retcode {payload.retcode} for page {page_id}: {message}",
                error_code="API_RETCODE",
                details={"page_id": page_id, "locale": locale, "retcode": payload.retcode}
            )
        if payload.page is None:
            raise ApiError(
                f"API response for page {page_id} has no data.page",
                error_code="API_EMPTY_PAGE",
                details={"page_id": page_id, "locale": locale}
            )

        logger.debug("Entry page fetched", page_id=page_id, locale=locale, name=payload.name)
        return payload

    async def close(self):
        """Close API connection"""
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    async def __aenter__(self) -> "HoyoWikiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
