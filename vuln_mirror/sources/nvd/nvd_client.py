"""
NVD CVE API 2.0 paged client

Pages through https://services.nvd.nist.gov/rest/json/cves/2.0 using
startIndex / resultsPerPage. The total number of results is only known after
the first response, so `has_next()` is True until a page has been seen.

RATE LIMITS:
- without API key: 5 requests per rolling 30 seconds
- with API key:    50 requests per rolling 30 seconds
The client waits a fixed delay between requests. There is no retry or backoff:
a failed page raises FetchException and ends the run.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from ...models import Source
from ..base.base_fetcher import BaseFeedClient
from .converter import parse_nvd_datetime

# Longest lastModStartDate..lastModEndDate range the API accepts
MAX_DATE_RANGE = timedelta(days=120)

DELAY_WITHOUT_API_KEY = 6.0
DELAY_WITH_API_KEY = 0.6


def format_nvd_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.000Z')


class NvdCveClient(BaseFeedClient):
    """Incremental reader of the NVD CVE API 2.0"""

    def __init__(self, endpoint: str, api_key: Optional[str] = None, last_modified_epoch: int = 0,
                 results_per_page: int = 2000, request_delay: Optional[float] = None,
                 timeout: int = 120, session=None):
        """
        Args:
            endpoint: CVE API URL
            api_key: NVD API key; without it the NVD throttles aggressively
            last_modified_epoch: Only CVEs modified since this epoch second; 0 mirrors everything
            results_per_page: Page size, at most 2000
            request_delay: Seconds between requests; defaults depend on the API key
            timeout: Seconds before a page request is abandoned
            session: aiohttp.ClientSession compatible object; created on first use if omitted
        """
        if request_delay is None:
            request_delay = DELAY_WITH_API_KEY if api_key else DELAY_WITHOUT_API_KEY
        super().__init__(Source.NVD.value.lower(), endpoint, api_key=api_key,
                         request_delay=request_delay, timeout=timeout)

        self.results_per_page = results_per_page
        self.last_modified_start: Optional[datetime] = None
        self.last_modified_end: Optional[datetime] = None

        if last_modified_epoch > 0:
            self.last_modified_start = datetime.fromtimestamp(last_modified_epoch, tz=timezone.utc)
            self.last_modified_end = self.last_modified_start + MAX_DATE_RANGE

        if not api_key:
            self.logger.warning("⚠️ No API key configured; Aggressive rate limiting to be expected")

        self._session = session
        self._owns_session = session is None
        self._start_index = 0
        self._total_results: Optional[int] = None

    @property
    def total_results(self) -> Optional[int]:
        return self._total_results

    def has_next(self) -> bool:
        return self._total_results is None or self._start_index < self._total_results

    def _get_auth_headers(self) -> Dict[str, str]:
        return {'apiKey': self.api_key} if self.api_key else {}

    def _params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            'startIndex': self._start_index,
            'resultsPerPage': self.results_per_page,
        }
        if self.last_modified_start is not None:
            params['lastModStartDate'] = format_nvd_datetime(self.last_modified_start)
            params['lastModEndDate'] = format_nvd_datetime(self.last_modified_end)
        return params

    def _get_session(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={'Accept': 'application/json'}
            )
        return self._session

    async def next(self) -> List[Dict[str, Any]]:
        if not self.has_next():
            return []

        await self._respect_rate_limit()

        params = self._params()
        session = self._get_session()
        self.logger.debug(f"📥 Requesting {self.endpoint} startIndex={params['startIndex']}")

        try:
            async with session.get(self.endpoint, params=params, headers=self._get_auth_headers()) as response:
                if response.status != 200:
                    raise self._fail(f"NVD API returned HTTP {response.status} at startIndex={params['startIndex']}",
                                     status_code=response.status, url=self.endpoint)
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise self._fail(f"NVD API request failed at startIndex={params['startIndex']}: {e!r}",
                             url=self.endpoint) from e

        if not isinstance(data, dict):
            raise self._fail("NVD API returned an unexpected payload", url=self.endpoint)

        items = data.get('vulnerabilities') or []
        try:
            self._total_results = int(data.get('totalResults', 0))
        except (TypeError, ValueError) as e:
            raise self._fail(f"NVD API returned an invalid totalResults: {data.get('totalResults')!r}",
                             url=self.endpoint) from e

        if items:
            self._start_index += len(items)
        else:
            # An empty page ends paging even if totalResults disagrees
            self._start_index = self._total_results

        for item in items:
            cve = item.get('cve') or {}
            self._observe_modified(parse_nvd_datetime(cve.get('lastModified')))

        self.logger.info(f"📊 Retrieved {min(self._start_index, self._total_results):,}"
                         f"/{self._total_results:,} CVEs")
        return items

    async def close(self):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
