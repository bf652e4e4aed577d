# Configuration for the mirror: settings (.env) and database connection parameters
from .database_config import (create_database_pool, get_database_config,
                              get_database_connection, get_database_url)
from .settings import Settings, resolve_api_key, settings

__all__ = [
    'Settings',
    'settings',
    'resolve_api_key',
    'get_database_config',
    'get_database_connection',
    'create_database_pool',
    'get_database_url',
]
