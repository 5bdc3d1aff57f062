"""Shared HTTP plumbing for concert source connectors.

:class:`BaseHTTPConnector` owns the injected ``httpx.AsyncClient`` and the
source's :class:`RequestQueue`, and turns raw responses into either parsed
JSON or a typed error:

- transport failures and timeouts -> :class:`ProviderUnavailableError`
- 401 / 403 -> :class:`AuthenticationError`
- any other non-2xx -> :class:`ProviderHTTPError` (status + headers kept)
- undecodable body -> :class:`ResponseParsingError`

Subclasses implement the provider's endpoints and payload conversion.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx
import structlog

from gigz_ingest.interfaces.source_connector import ISourceConnector
from gigz_ingest.models.scraped import ScrapedConcert
from gigz_ingest.models.source import ConnectorStats, SourceConfig
from gigz_ingest.services.request_queue import RequestQueue
from gigz_ingest.utils.errors import (
    AuthenticationError,
    ProviderHTTPError,
    ProviderUnavailableError,
    ResponseParsingError,
)

logger = structlog.get_logger(logger_name=__name__)

_ERROR_BODY_PREVIEW = 200

# Payload shapes a converter may choke on; anything else is a bug.
CONVERSION_ERRORS: tuple[type[Exception], ...] = (KeyError, TypeError, ValueError, AttributeError)


class BaseHTTPConnector(ISourceConnector):
    """Base class for JSON-over-HTTP providers.

    Parameters
    ----------
    config:
        Source settings (base URL, API key, user agent, page delay, quota).
    http_client:
        Shared async client; the connector does not close it.
    queue:
        The source's request queue.
    sleep:
        Used for the courtesy delay between pages.  Injected for tests.
    """

    def __init__(
        self,
        config: SourceConfig,
        http_client: httpx.AsyncClient,
        queue: RequestQueue,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._http = http_client
        self._queue = queue
        self._sleep = sleep
        self._requests_made = 0
        self._records_converted = 0
        self._records_dropped = 0

    def get_provider_name(self) -> str:
        return self._config.name

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    def _default_headers(self) -> dict[str, str]:
        return {"User-Agent": self._config.user_agent, "Accept": "application/json"}

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        path: str,
        params: list[tuple[str, str]] | dict[str, str] | None = None,
        operation: str = "get",
    ) -> Any:
        """GET ``base_url + path`` through the request queue and decode JSON."""
        url = f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"

        async def _fetch() -> Any:
            return await self._fetch_json(url, params)

        return await self._queue.submit(_fetch, operation_name=operation)

    async def _fetch_json(
        self,
        url: str,
        params: list[tuple[str, str]] | dict[str, str] | None,
    ) -> Any:
        source = self._config.name
        try:
            response = await self._http.get(
                url, params=params, headers=self._default_headers()
            )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError(
                f"Request timeout: {exc}", provider_name=source
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                f"Network error: {exc}", provider_name=source
            ) from exc
        finally:
            self._requests_made += 1

        status = response.status_code
        if not response.is_success:
            detail = f"HTTP {status}: {response.reason_phrase}"
            body = response.text[:_ERROR_BODY_PREVIEW].strip()
            if body:
                detail = f"{detail} - {body}"
            error_cls = AuthenticationError if status in (401, 403) else ProviderHTTPError
            raise error_cls(
                status_code=status,
                message=detail,
                provider_name=source,
                headers=dict(response.headers),
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ResponseParsingError(
                f"Malformed JSON body: {exc}",
                provider_name=source,
                status_code=status,
            ) from exc

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _convert_items(
        self,
        items: list[dict[str, Any]],
        converter: Callable[[dict[str, Any]], ScrapedConcert],
    ) -> list[ScrapedConcert]:
        """Convert provider items, dropping (and logging) the ones that fail."""
        concerts: list[ScrapedConcert] = []
        for item in items:
            try:
                concerts.append(converter(item))
            except CONVERSION_ERRORS as exc:
                self._records_dropped += 1
                logger.warning(
                    "scraped_record_dropped",
                    source=self._config.name,
                    item_id=item.get("id") if isinstance(item, dict) else None,
                    error=str(exc)[:300],
                )
                continue
            self._records_converted += 1
        return concerts

    async def _page_pause(self) -> None:
        if self._config.page_delay > 0:
            await self._sleep(self._config.page_delay)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_stats(self) -> ConnectorStats:
        return ConnectorStats(
            source=self._config.name,
            requests_made=self._requests_made,
            records_converted=self._records_converted,
            records_dropped=self._records_dropped,
            queue=self._queue.get_stats(),
        )

    async def shutdown(self) -> None:
        await self._queue.shutdown()
        logger.info("connector_shutdown", source=self._config.name, **self._counters())

    def _counters(self) -> dict[str, int]:
        return {
            "requests_made": self._requests_made,
            "records_converted": self._records_converted,
            "records_dropped": self._records_dropped,
        }
