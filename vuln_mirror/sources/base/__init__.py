"""
Base infrastructure shared by feed clients.

Key Components:
- BaseFeedClient: paged, rate limited feed interface
- Exception hierarchy used across fetching, conversion and reconciliation
"""

from .base_fetcher import BaseFeedClient
from .exceptions import (ConfigException, FetchException, ParseException,
                         ReconciliationException, VulnSourceException)

__all__ = [
    'BaseFeedClient',
    'VulnSourceException',
    'FetchException',
    'ParseException',
    'ConfigException',
    'ReconciliationException',
]
