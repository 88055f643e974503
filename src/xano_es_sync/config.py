"""Configuration Module

Reads all sync settings from environment variables (optionally seeded from a
``.env`` file) into a validated ``SyncConfig``.

Environment variables:
  XANO_API_KEY, XANO_WORKSPACE_ID, XANO_META_BASE_URL: required source access
  XANO_TABLE_ID: source table id (default: 106)
  XANO_RECORDS_PER_PAGE: page size (default: 2000)
  SYNC_EXPECTED_TOTAL_RECORDS: record count used to size the page range (default: 644000)
  ELASTICSEARCH_URL, ELASTICSEARCH_INDEX: required destination
  OPENAI_API_KEY: required unless embeddings are skipped
  EMBEDDING_MODEL: default text-embedding-3-large
  EMBEDDING_DIMENSIONS: default 3072
  EMBEDDING_MAX_TOKENS: default 8192
  EMBEDDING_DELAY_SECONDS: pause after each embedding call (default: 0.2)
  HTTP_TIMEOUT_SECONDS: default 30
  SYNC_CHECKPOINT_FILE, SYNC_ERRORS_FILE: state file locations
  SYNC_MAX_EMPTY_PAGES: stop after N consecutive empty pages (default: unset)
  SYNC_HALT_ON_TRANSPORT_FAILURE: stop instead of advancing past a lost batch
  SYNC_SKIP_EMBEDDINGS: never call the embedding provider
"""

import logging
import math
import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_TABLE_ID = 106
DEFAULT_RECORDS_PER_PAGE = 2000
DEFAULT_EXPECTED_TOTAL_RECORDS = 644000
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-large"
DEFAULT_EMBEDDING_DIMENSIONS = 3072
DEFAULT_MAX_INPUT_TOKENS = 8192


class SyncConfig(BaseModel):
    xano_api_key: str
    xano_workspace_id: str
    xano_meta_base_url: str
    xano_table_id: int = DEFAULT_TABLE_ID
    records_per_page: int = Field(default=DEFAULT_RECORDS_PER_PAGE, gt=0)
    expected_total_records: int = Field(default=DEFAULT_EXPECTED_TOTAL_RECORDS, ge=0)

    elasticsearch_url: str
    elasticsearch_index: str

    openai_api_key: Optional[str] = None
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dimensions: int = Field(default=DEFAULT_EMBEDDING_DIMENSIONS, gt=0)
    max_input_tokens: int = Field(default=DEFAULT_MAX_INPUT_TOKENS, gt=0)
    embedding_delay_seconds: float = Field(default=0.2, ge=0)

    http_timeout_seconds: float = Field(default=30.0, gt=0)
    checkpoint_file: Path = Path("checkpoint.json")
    errors_file: Path = Path("errors.json")
    max_consecutive_empty_pages: Optional[int] = Field(default=None, gt=0)
    halt_on_transport_failure: bool = False
    skip_embeddings: bool = False

    @property
    def total_pages(self) -> int:
        """Static page count derived from the expected total record count."""
        return math.ceil(self.expected_total_records / self.records_per_page)


# env var -> SyncConfig field
_ENV_FIELDS = {
    "XANO_API_KEY": "xano_api_key",
    "XANO_WORKSPACE_ID": "xano_workspace_id",
    "XANO_META_BASE_URL": "xano_meta_base_url",
    "XANO_TABLE_ID": "xano_table_id",
    "XANO_RECORDS_PER_PAGE": "records_per_page",
    "SYNC_EXPECTED_TOTAL_RECORDS": "expected_total_records",
    "ELASTICSEARCH_URL": "elasticsearch_url",
    "ELASTICSEARCH_INDEX": "elasticsearch_index",
    "OPENAI_API_KEY": "openai_api_key",
    "EMBEDDING_MODEL": "embedding_model",
    "EMBEDDING_DIMENSIONS": "embedding_dimensions",
    "EMBEDDING_MAX_TOKENS": "max_input_tokens",
    "EMBEDDING_DELAY_SECONDS": "embedding_delay_seconds",
    "HTTP_TIMEOUT_SECONDS": "http_timeout_seconds",
    "SYNC_CHECKPOINT_FILE": "checkpoint_file",
    "SYNC_ERRORS_FILE": "errors_file",
    "SYNC_MAX_EMPTY_PAGES": "max_consecutive_empty_pages",
    "SYNC_HALT_ON_TRANSPORT_FAILURE": "halt_on_transport_failure",
    "SYNC_SKIP_EMBEDDINGS": "skip_embeddings",
}


def config_from_mapping(env: Mapping[str, str]) -> SyncConfig:
    """Build a SyncConfig from an environment-like mapping.

    Empty strings are treated as unset so defaults apply.

    Raises:
        ConfigError: If a required variable is missing or a value is invalid
    """
    values = {}
    for env_key, field_name in _ENV_FIELDS.items():
        raw = env.get(env_key)
        if raw is None or not raw.strip():
            continue
        values[field_name] = raw.strip()

    try:
        config = SyncConfig(**values)
    except ValidationError as e:
        field_to_env = {v: k for k, v in _ENV_FIELDS.items()}
        problems = []
        for err in e.errors():
            field_name = str(err["loc"][0]) if err["loc"] else "?"
            problems.append(f"{field_to_env.get(field_name, field_name)}: {err['msg']}")
        raise ConfigError("Invalid configuration: " + "; ".join(problems)) from e

    if not config.skip_embeddings and not config.openai_api_key:
        raise ConfigError(
            "Invalid configuration: OPENAI_API_KEY is required unless SYNC_SKIP_EMBEDDINGS is set"
        )
    return config


def load_config(env_file: Optional[Path] = None) -> SyncConfig:
    """Load configuration from the process environment.

    Values from ``env_file`` (or a ``.env`` in the working directory) are
    loaded first without overriding variables already set.
    """
    if env_file is not None:
        logger.debug("Loading environment from %s", env_file)
        load_dotenv(env_file)
    else:
        load_dotenv()
    return config_from_mapping(os.environ)
