"""
Database Configuration Module

Resolves PostgreSQL connection parameters for an environment. Values come from
the mirror settings (.env) and are overridden by plain environment variables,
including environment specific password variables.
"""

import os
from typing import Any, Dict

import asyncpg

from ..sources.base.exceptions import ConfigException
from .settings import Settings

REQUIRED_FIELDS = ['host', 'port', 'database', 'user', 'password']

ENV_MAPPINGS = {
    'DB_HOST': 'host',
    'DB_PORT': 'port',
    'DB_NAME': 'database',
    'DB_USER': 'user',
    'DB_PASSWORD': 'password',
    'DB_POOL_SIZE': 'pool_size',
    'DB_MIN_CONNECTIONS': 'min_connections',
}

INTEGER_FIELDS = {'port', 'pool_size', 'min_connections'}


def get_database_config(environment: str = None, settings: Settings = None) -> Dict[str, Any]:
    """
    Get database configuration for specified environment

    Args:
        environment: Environment name (development, testing, container, production)
                    If None, the ENVIRONMENT setting is used
        settings: Settings to start from; loaded from the environment if omitted

    Returns:
        Dictionary with database connection parameters

    Raises:
        ConfigException: If required fields are missing or malformed
    """
    settings = settings or Settings()
    environment = environment or settings.ENVIRONMENT

    config: Dict[str, Any] = {
        'environment': environment,
        'host': settings.DB_HOST,
        'port': settings.DB_PORT,
        'database': settings.DB_NAME,
        'user': settings.DB_USER,
        'password': settings.DB_PASSWORD,
        'pool_size': settings.DB_POOL_SIZE,
    }

    for env_var, config_key in ENV_MAPPINGS.items():
        env_value = os.getenv(env_var)
        if env_value:
            if config_key in INTEGER_FIELDS:
                try:
                    config[config_key] = int(env_value)
                except ValueError:
                    raise ConfigException(f"{env_var} must be an integer, got {env_value!r}",
                                          config_key=env_var)
            else:
                config[config_key] = env_value

    # Fallback password variables, only consulted when DB_PASSWORD is unset
    if not config.get('password'):
        for env_var in (f'DB_PASSWORD_{environment.upper()}',
                        f'POSTGRES_PASSWORD_{environment.upper()}',
                        'POSTGRES_PASSWORD'):
            password = os.getenv(env_var)
            if password:
                config['password'] = password
                break

    missing_fields = [field for field in REQUIRED_FIELDS if not config.get(field)]
    if missing_fields:
        raise ConfigException(f"Missing required database configuration fields: {missing_fields}",
                              config_key=','.join(missing_fields))

    return config


async def get_database_connection(config: Dict[str, Any] = None, environment: str = None) -> asyncpg.Connection:
    """Open a single connection using provided config or environment"""
    if not config:
        config = get_database_config(environment)

    return await asyncpg.connect(
        host=config['host'],
        port=config['port'],
        database=config['database'],
        user=config['user'],
        password=config['password']
    )


async def create_database_pool(config: Dict[str, Any] = None, environment: str = None) -> asyncpg.Pool:
    """
    Create database connection pool

    Args:
        config: Database configuration dictionary
        environment: Environment name if config not provided

    Returns:
        AsyncPG connection pool
    """
    if not config:
        config = get_database_config(environment)

    max_size = config.get('pool_size', 10)
    min_size = min(config.get('min_connections', 1), max_size)

    return await asyncpg.create_pool(
        host=config['host'],
        port=config['port'],
        database=config['database'],
        user=config['user'],
        password=config['password'],
        min_size=min_size,
        max_size=max_size
    )


def get_database_url(config: Dict[str, Any] = None, environment: str = None, mask_password: bool = False) -> str:
    """PostgreSQL URL for log lines and tools that need connection strings"""
    if not config:
        config = get_database_config(environment)

    password = '***' if mask_password else config['password']
    return f"postgresql://{config['user']}:{password}@{config['host']}:{config['port']}/{config['database']}"
