"""
Base Feed Client for the Vulnerability Mirror

Abstract base class for paged vulnerability feeds. A feed is consumed one page
at a time: `has_next()` tells whether another page exists, `await next()`
retrieves and decodes it, and `last_updated` reports the newest modification
timestamp seen so far. A client is single use and cannot be rewound.
"""

import abc
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .exceptions import FetchException


class BaseFeedClient(abc.ABC):
    """Abstract base class for all paged feed clients"""

    def __init__(self, source_name: str, endpoint: str, api_key: Optional[str] = None,
                 request_delay: float = 1.0, timeout: int = 30):
        """
        Initialize feed client

        Args:
            source_name: Name of the vulnerability source, used for logging and errors
            endpoint: Base URL of the feed
            api_key: Optional API key, sent by `_get_auth_headers`
            request_delay: Minimum seconds between two page requests
            timeout: Seconds before a single page request is abandoned
        """
        self.source_name = source_name
        self.endpoint = endpoint
        self.api_key = api_key
        self.request_delay = request_delay
        self.timeout = timeout
        self.logger = logging.getLogger(f"fetcher.{source_name}")

        self._last_request_at: Optional[float] = None
        self._last_updated: Optional[datetime] = None

    @abc.abstractmethod
    def has_next(self) -> bool:
        """True while another page can be requested"""

    @abc.abstractmethod
    async def next(self) -> List[Dict[str, Any]]:
        """
        Retrieve the next page

        Returns:
            List of raw records of that page

        Raises:
            FetchException: If the page cannot be retrieved or decoded
        """

    @abc.abstractmethod
    def _get_auth_headers(self) -> Dict[str, str]:
        """Return authentication headers for API requests"""

    @property
    def last_updated(self) -> Optional[datetime]:
        """Newest modification time of any record returned so far, or None"""
        return self._last_updated

    def _observe_modified(self, modified: Optional[datetime]):
        if modified is not None and (self._last_updated is None or modified > self._last_updated):
            self._last_updated = modified

    async def _respect_rate_limit(self):
        """Sleep until `request_delay` has passed since the previous request"""
        loop = asyncio.get_running_loop()
        if self._last_request_at is not None:
            remaining = self.request_delay - (loop.time() - self._last_request_at)
            if remaining > 0:
                await asyncio.sleep(remaining)
        self._last_request_at = loop.time()

    def _fail(self, message: str, status_code: int = None, url: str = None) -> FetchException:
        self.logger.error(f"❌ {message}")
        return FetchException(message, source_name=self.source_name, status_code=status_code, url=url)

    async def close(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
