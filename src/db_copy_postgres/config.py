"""
Connection settings for the source and target PostgreSQL servers.

Settings come from SOURCE_DB_* / TARGET_DB_* variables. The loader only
reads the mapping it is given; the CLI is responsible for seeding the
process environment from a .env file first.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# EndpointConfig attribute -> environment variable suffix
ENV_FIELDS = (
    ('host', 'HOST'),
    ('port', 'PORT'),
    ('user', 'USER'),
    ('password', 'PASSWORD'),
    ('dbname', 'NAME'),
)

DEFAULT_TRANSFER_MODE = 'full'


@dataclass(frozen=True)
class EndpointConfig:
    """Connection descriptor for one database"""
    host: str
    port: str
    user: str
    password: str = field(repr=False)
    dbname: str

    def describe(self) -> str:
        return f"{self.user}@{self.host}:{self.port}/{self.dbname}"


class TransferMode(Enum):
    """What to copy, and in how many dump/restore passes"""
    FULL = 'full'
    SCHEMA_ONLY = 'schema-only'
    DATA_ONLY = 'data-only'
    SCHEMA_THEN_DATA = 'schema-then-data'

    @property
    def passes(self) -> Tuple[Optional[str], ...]:
        """pg_dump restriction flag for each pipeline run, in order"""
        if self is TransferMode.SCHEMA_ONLY:
            return ('--schema-only',)
        if self is TransferMode.DATA_ONLY:
            return ('--data-only',)
        if self is TransferMode.SCHEMA_THEN_DATA:
            return ('--schema-only', '--data-only')
        return (None,)


def env_names(prefix: str) -> Tuple[str, ...]:
    """Environment variable names for one endpoint, e.g. SOURCE_DB_HOST"""
    return tuple(f"{prefix}_DB_{suffix}" for _, suffix in ENV_FIELDS)


# Never passed on to child processes, each one only gets its own PGPASSWORD
PASSWORD_ENV_NAMES = ('SOURCE_DB_PASSWORD', 'TARGET_DB_PASSWORD')


def load_endpoint(environ: Mapping[str, str], prefix: str) -> EndpointConfig:
    """Build one endpoint from PREFIX_DB_* variables

    Raises ConfigurationError listing every variable that is unset or empty.
    """
    values = {}
    missing = []
    for attr, suffix in ENV_FIELDS:
        name = f"{prefix}_DB_{suffix}"
        value = environ.get(name, '')
        if value == '':
            missing.append(name)
        values[attr] = value

    if missing:
        raise ConfigurationError(
            f"incomplete {prefix.lower()} database configuration: "
            f"missing {', '.join(missing)}"
        )

    return EndpointConfig(**values)


def load_config(environ: Mapping[str, str]) -> Tuple[EndpointConfig, EndpointConfig]:
    """Return (source, target) endpoint configurations

    The source endpoint is validated first, so a broken source is reported
    even when the target is broken too.
    """
    source = load_endpoint(environ, 'SOURCE')
    target = load_endpoint(environ, 'TARGET')
    logger.debug(f"Loaded source {source.describe()} and target {target.describe()}")
    return source, target


def load_transfer_mode(value: Optional[str]) -> TransferMode:
    """Parse a transfer mode name, falling back to the default when empty"""
    try:
        return TransferMode(value or DEFAULT_TRANSFER_MODE)
    except ValueError:
        choices = ', '.join(mode.value for mode in TransferMode)
        raise ConfigurationError(
            f"unknown transfer mode '{value}' (expected one of: {choices})"
        ) from None
