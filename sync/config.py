"""Configuration for the event sync layer, read once from the environment."""
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from events.models import StorageMode
from sync.mode import parse_mode, select_mode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncConfig:
    """Settings for one session. The storage mode is fixed when this is built."""
    mode: StorageMode
    airtable_base_id: str = ''
    airtable_api_key: str = ''
    airtable_table_name: str = 'Calendar Events'
    cache_dir: str = '.calendar-cache'
    cache_table_name: Optional[str] = None
    collection_key: str = 'calendar_events'
    timeout_seconds: float = 10
    max_retries: int = 3
    log_level: str = 'INFO'

    @property
    def remote_configured(self) -> bool:
        return bool(self.airtable_base_id and self.airtable_api_key)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'SyncConfig':
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            SyncConfig with the storage mode already selected
        """
        env = os.environ if environ is None else environ

        base_id = env.get('AIRTABLE_BASE_ID', '').strip()
        api_key = env.get('AIRTABLE_API_KEY', '').strip()
        requested = env.get('STORAGE_MODE', '')
        override = parse_mode(requested)
        if requested and override is None:
            logger.warning(f"Ignoring unknown STORAGE_MODE value: {requested}")

        mode = select_mode(bool(base_id and api_key), override)
        if override is not None and mode is not override:
            logger.warning(
                f"STORAGE_MODE={override.value} requested without Airtable credentials, "
                f"using {mode.value}"
            )

        return cls(
            mode=mode,
            airtable_base_id=base_id,
            airtable_api_key=api_key,
            airtable_table_name=env.get('AIRTABLE_TABLE_NAME') or 'Calendar Events',
            cache_dir=env.get('CACHE_DIR') or '.calendar-cache',
            cache_table_name=env.get('CACHE_TABLE_NAME') or None,
            collection_key=env.get('COLLECTION_KEY') or 'calendar_events',
            timeout_seconds=float(env.get('TIMEOUT_SECONDS', '10')),
            max_retries=int(env.get('MAX_RETRIES', '3')),
            log_level=env.get('LOG_LEVEL', 'INFO')
        )
