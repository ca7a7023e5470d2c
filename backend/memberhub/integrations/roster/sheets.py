"""
Google Sheets backed roster client (Sheets API v4 ``values`` endpoints).
"""

import asyncio
import aiohttp
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from memberhub.core.config import Settings
from memberhub.integrations.roster.client import BaseRosterClient, RosterHandshake, Row
from memberhub.integrations.roster.error_handler import (
    RosterError, RosterNetworkError, RosterNotFoundError, RosterRateLimitError,
    error_for_status
)


logger = logging.getLogger(__name__)


class SheetsRosterClient(BaseRosterClient):
    """Reads and appends member rows in a single spreadsheet.

    Without a spreadsheet id the client runs in mock mode: ``initialize``
    reports ``mock_mode`` and sync falls back to database-only runs.
    """

    def __init__(
        self,
        spreadsheet_id: str,
        access_token: str = "",
        api_key: str = "",
        base_url: str = "https://sheets.googleapis.com/v4",
        default_range: str = "A:Z",
        header_rows: int = 1,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None
    ):
        super().__init__(default_range=default_range, header_rows=header_rows)
        self.spreadsheet_id = spreadsheet_id
        self.access_token = access_token
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self._http_session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SheetsRosterClient":
        return cls(
            spreadsheet_id=settings.ROSTER_SPREADSHEET_ID,
            access_token=settings.ROSTER_ACCESS_TOKEN,
            api_key=settings.ROSTER_API_KEY,
            base_url=settings.ROSTER_API_BASE_URL,
            default_range=settings.ROSTER_RANGE,
            header_rows=settings.ROSTER_HEADER_ROWS,
            timeout=settings.ROSTER_TIMEOUT,
        )

    @property
    def mock_mode(self) -> bool:
        return not self.spreadsheet_id

    async def initialize(self) -> RosterHandshake:
        if self.mock_mode:
            logger.warning("No roster spreadsheet configured - roster client in mock mode")
            return RosterHandshake(
                success=False,
                mock_mode=True,
                message="No roster spreadsheet configured"
            )

        self._ensure_session()
        data = await self._request(
            'GET',
            f"/spreadsheets/{self.spreadsheet_id}",
            params={'fields': 'spreadsheetId,properties.title'},
            operation='initialize'
        )
        self._initialized = True

        title = data.get('properties', {}).get('title', self.spreadsheet_id)
        logger.info(f"Roster spreadsheet '{title}' is reachable")
        return RosterHandshake(success=True, message=title)

    async def read(self, range_: Optional[str] = None) -> List[Row]:
        range_ = range_ or self.default_range
        data = await self._request(
            'GET',
            f"/spreadsheets/{self.spreadsheet_id}/values/{quote(range_, safe='')}",
            operation='read'
        )
        rows = data.get('values', [])
        logger.info(f"Read {len(rows)} rows from roster range {range_}")
        return rows

    async def append(self, row: Row) -> None:
        await self._request(
            'POST',
            f"/spreadsheets/{self.spreadsheet_id}/values/{quote(self.default_range, safe='')}:append",
            params={'valueInputOption': 'USER_ENTERED', 'insertDataOption': 'INSERT_ROWS'},
            json={'values': [row]},
            operation='append'
        )

    async def update(self, range_: str, row: Row) -> None:
        await self._request(
            'PUT',
            f"/spreadsheets/{self.spreadsheet_id}/values/{quote(range_, safe='')}",
            params={'valueInputOption': 'USER_ENTERED'},
            json={'range': range_, 'values': [row]},
            operation='update'
        )

    async def close(self) -> None:
        if self._http_session and self._owns_session:
            await self._http_session.close()
            self._http_session = None
        await super().close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={
                    'User-Agent': 'MemberHub-RosterSync/1.0',
                    'Accept': 'application/json',
                }
            )
            self._owns_session = True
        return self._http_session

    def _auth(self, params: Optional[Dict[str, Any]]) -> tuple:
        params = dict(params or {})
        headers = {}
        if self.access_token:
            headers['Authorization'] = f"Bearer {self.access_token}"
        elif self.api_key:
            params['key'] = self.api_key
        return params, headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        operation: Optional[str] = None
    ) -> Dict[str, Any]:
        """Make an API request, translating failures into RosterError subclasses."""
        if self.mock_mode:
            raise RosterNotFoundError(
                "No roster spreadsheet configured",
                operation=operation
            )

        session = self._ensure_session()
        params, headers = self._auth(params)
        url = f"{self.base_url}{path}"

        try:
            async with session.request(
                method, url, params=params, json=json, headers=headers
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    message = f"Roster {operation or method} failed with HTTP {response.status}: {body[:200]}"
                    if response.status == 429:
                        raise RosterRateLimitError(
                            message,
                            retry_after=_parse_retry_after(response.headers.get('Retry-After')),
                            status_code=429,
                            operation=operation
                        )
                    raise error_for_status(response.status, message, operation=operation)

                if response.status == 204:
                    return {}
                return await response.json()

        except RosterError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RosterNetworkError(
                f"Roster {operation or method} network failure: {e}",
                operation=operation,
                original_exception=e
            )


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None
