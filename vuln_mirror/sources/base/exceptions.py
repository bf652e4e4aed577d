"""
Custom Exceptions for the Vulnerability Mirror

Purpose: Standardized error handling across feed clients, converters and stores
Usage: Feed clients, converters, reconcilers and the mirror task raise these
Related Files: sources/nvd/*, persistence/*, mirror_task.py

Exception Hierarchy:
- VulnSourceException (base)
  ├── FetchException (feed transport / decode errors, fatal for a run)
  ├── ParseException (a single raw record could not be converted)
  ├── ConfigException (missing endpoint, invalid settings)
  └── ReconciliationException (store contract violations during sync)
"""

class VulnSourceException(Exception):
    """Base exception for all vulnerability source operations"""

    def __init__(self, message: str, source_name: str = None, details: dict = None):
        self.source_name = source_name
        self.details = details or {}
        super().__init__(message)

    def __str__(self):
        if self.source_name:
            return f"[{self.source_name}] {super().__str__()}"
        return super().__str__()

class FetchException(VulnSourceException):
    """Raised when a feed page cannot be retrieved or decoded"""

    def __init__(self, message: str, source_name: str = None,
                 status_code: int = None, url: str = None, **kwargs):
        self.status_code = status_code
        self.url = url
        details = {'status_code': status_code, 'url': url, **kwargs}
        super().__init__(message, source_name, details)

class ParseException(VulnSourceException):
    """Raised when a raw feed record cannot be converted"""

    def __init__(self, message: str, source_name: str = None,
                 record_id: str = None, **kwargs):
        self.record_id = record_id
        details = {'record_id': record_id, **kwargs}
        super().__init__(message, source_name, details)

class ConfigException(VulnSourceException):
    """Raised when configuration is missing or invalid"""

    def __init__(self, message: str, source_name: str = None,
                 config_key: str = None, **kwargs):
        self.config_key = config_key
        details = {'config_key': config_key, **kwargs}
        super().__init__(message, source_name, details)

class ReconciliationException(VulnSourceException):
    """Raised when a store is asked to do something its contract forbids"""

    def __init__(self, message: str, source_name: str = None,
                 vuln_id: str = None, **kwargs):
        self.vuln_id = vuln_id
        details = {'vuln_id': vuln_id, **kwargs}
        super().__init__(message, source_name, details)
