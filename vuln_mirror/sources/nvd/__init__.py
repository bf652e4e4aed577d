"""
NVD (National Vulnerability Database) CVE API 2.0 source

- NvdCveClient: paged, incremental API client
- converter: raw CVE records to Vulnerability / AffectedSoftware
"""

from .converter import convert, convert_configurations, convert_item
from .nvd_client import NvdCveClient

__all__ = [
    'NvdCveClient',
    'convert',
    'convert_configurations',
    'convert_item',
]
