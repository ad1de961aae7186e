"""Google Sheets v4 values client for the tasks sheet."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote

import httpx

from .models import Task
from .parser import parse_rows, tasks_to_rows

logger = logging.getLogger(__name__)

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"


class SheetsAPIError(RuntimeError):
    """A non-2xx response (or transport failure) from the Sheets API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(SheetsAPIError):
    """HTTP 429 persisted past the retry budget."""


class GoogleSheetsClient:
    """Reads and overwrites one cell range of one spreadsheet."""

    def __init__(
        self,
        sheet_id: str,
        range_: str,
        api_key: str | None = None,
        access_token: str | None = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.sheet_id = sheet_id
        self.range = range_
        self.api_key = api_key
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self._row_count = 0
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    @property
    def values_url(self) -> str:
        return f"{SHEETS_API_URL}/{self.sheet_id}/values/{quote(self.range, safe='!:')}"

    def _params(self, **extra: str) -> dict[str, str]:
        params = dict(extra)
        if self.api_key:
            params["key"] = self.api_key
        return params

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def read_values(self) -> list[list[str]]:
        """Fetch the configured range, retrying 429s with exponential backoff."""
        attempt = 0
        while True:
            logger.debug("GET %s (attempt %d)", self.range, attempt + 1)
            try:
                resp = await self._client.get(self.values_url, params=self._params())
            except httpx.HTTPError as e:
                raise SheetsAPIError(f"Failed to read {self.range}: {e}") from e

            if resp.status_code == 429:
                if attempt >= self.max_retries:
                    raise RateLimitedError(
                        f"Rate limited reading {self.range} after {attempt + 1} attempts",
                        status_code=429,
                    )
                delay = self.backoff_base * (2**attempt)
                logger.warning(
                    "Rate limited reading %s; retrying in %.1fs (%d/%d)",
                    self.range, delay, attempt + 1, self.max_retries,
                )
                await asyncio.sleep(delay)
                attempt += 1
                continue

            _raise_for_status(resp, f"read {self.range}")
            values = _values_from(resp, self.range)
            self._row_count = len(values)
            return values

    async def fetch_tasks(self) -> list[Task]:
        values = await self.read_values()
        tasks = parse_rows(values)
        logger.debug("Read %d task rows from %s", len(tasks), self.range)
        return tasks

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def write_values(self, values: list[list[str]]) -> None:
        """Overwrite the whole configured range with values.

        The Sheets API only replaces the cells it is sent, so rows the sheet
        held at the last read or write are blanked out explicitly.
        """
        width = max((len(row) for row in values), default=0)
        padded = [list(row) + [""] * (width - len(row)) for row in values]
        padded.extend([""] * width for _ in range(self._row_count - len(values)))
        logger.debug("PUT %s (%d rows, %d blanked)", self.range, len(values), len(padded) - len(values))
        try:
            resp = await self._client.put(
                self.values_url,
                params=self._params(valueInputOption="RAW"),
                json={"range": self.range, "majorDimension": "ROWS", "values": padded},
            )
        except httpx.HTTPError as e:
            raise SheetsAPIError(f"Failed to write {self.range}: {e}") from e
        _raise_for_status(resp, f"write {self.range}")
        self._row_count = len(values)

    async def write_tasks(self, tasks: list[Task]) -> None:
        await self.write_values(tasks_to_rows(tasks))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def _values_from(resp: httpx.Response, range_: str) -> list[list[str]]:
    try:
        body = resp.json()
    except ValueError:
        raise SheetsAPIError(
            f"Failed to read {range_}: response is not JSON", status_code=resp.status_code
        ) from None
    values = body.get("values") if isinstance(body, dict) else None
    if not isinstance(body, dict) or not isinstance(values, (list, type(None))):
        raise SheetsAPIError(
            f"Failed to read {range_}: unexpected response shape", status_code=resp.status_code
        )
    return [list(row) for row in values or [] if isinstance(row, list)]


def _raise_for_status(resp: httpx.Response, action: str) -> None:
    if resp.is_success:
        return
    try:
        body = resp.json()
    except ValueError:
        detail = resp.text
    else:
        error = body.get("error") if isinstance(body, dict) else None
        detail = error.get("message", "") if isinstance(error, dict) else ""
    raise SheetsAPIError(
        f"Failed to {action}: HTTP {resp.status_code} {detail}".rstrip(),
        status_code=resp.status_code,
    )
