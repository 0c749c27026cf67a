"""
REST helpers for static Cloud9Trader reference data (instruments, historical prices).

Each call supports two styles: pass a callback to receive ``(error)`` or
``(None, body)``, or omit it to get the body back and have errors raised.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

import aiohttp

from .config import DEFAULT_HISTORICAL_PRICE_URL, DEFAULT_INSTRUMENTS_URL
from .errors import Cloud9HTTPError
from .models import Interval

logger = logging.getLogger(__name__)

DateLike = Union[datetime, date, str]


def to_utc_iso(value: DateLike) -> str:
    """
    Format a date as UTC ISO-8601 with milliseconds, e.g. 2020-01-01T00:00:00.000Z.

    Naive datetimes and ISO strings without an offset are taken as UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class ReferenceDataAPI:
    """HTTP client for the public instrument and price endpoints."""

    def __init__(
        self,
        instruments_url: str = DEFAULT_INSTRUMENTS_URL,
        historical_price_url: str = DEFAULT_HISTORICAL_PRICE_URL,
    ):
        self.instruments_url = instruments_url
        self.historical_price_url = historical_price_url
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=30, connect=10)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def fetch_instruments(self, callback: Optional[Callable] = None) -> Optional[Any]:
        """Fetch the full instrument list."""
        return await self._fetch_json(self.instruments_url, callback=callback)

    async def fetch_historical_price(
        self,
        instrument_id: str,
        interval: Interval,
        start_date: DateLike,
        end_date: Optional[DateLike] = None,
        callback: Optional[Callable] = None,
    ) -> Optional[Any]:
        """
        Fetch a historical price series.

        Args:
            instrument_id: Instrument identifier (e.g. 'EUR/USD')
            interval: Bar interval (e.g. 'M5', 'H1')
            start_date: Start of the range
            end_date: End of the range, open-ended if omitted
            callback: Optional callback receiving (error) or (None, body)
        """
        params = {
            "instrumentId": instrument_id,
            "interval": interval,
            "start": to_utc_iso(start_date),
            "end": to_utc_iso(end_date) if end_date else "",
        }
        return await self._fetch_json(self.historical_price_url, params=params, callback=callback)

    async def _fetch_json(
        self,
        url: str,
        params: Optional[Dict[str, str]] = None,
        callback: Optional[Callable] = None,
    ) -> Optional[Any]:
        try:
            session = await self._get_session()
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    text = await response.text()
                    raise Cloud9HTTPError(
                        f"GET {url} returned HTTP {response.status}",
                        status_code=response.status,
                        response_body=text,
                    )
                body = await response.json(content_type=None)
        except Cloud9HTTPError as e:
            logger.error(f"Reference data request failed: {e}")
            return self._fail(e, callback)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Reference data request to {url} failed: {e}")
            return self._fail(Cloud9HTTPError(f"GET {url} failed: {e}"), callback)

        if callback:
            callback(None, body)
            return None
        return body

    @staticmethod
    def _fail(error: Cloud9HTTPError, callback: Optional[Callable]) -> None:
        if callback:
            callback(error)
            return None
        raise error
