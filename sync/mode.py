"""Selection of the storage mode for a session."""
from typing import Optional

from events.models import StorageMode

# Names accepted in configuration, including the legacy ones
MODE_ALIASES = {
    'local-only': StorageMode.LOCAL_ONLY,
    'local': StorageMode.LOCAL_ONLY,
    'localstorage': StorageMode.LOCAL_ONLY,
    'remote-only': StorageMode.REMOTE_ONLY,
    'remote': StorageMode.REMOTE_ONLY,
    'airtable': StorageMode.REMOTE_ONLY,
    'hybrid': StorageMode.HYBRID,
}


def parse_mode(value: Optional[str]) -> Optional[StorageMode]:
    """Map a configuration string to a StorageMode, or None if it names no mode."""
    if not value:
        return None
    return MODE_ALIASES.get(value.strip().lower())


def select_mode(remote_configured: bool, override: Optional[StorageMode] = None) -> StorageMode:
    """
    Decide where events live for this session.

    Without a remote endpoint the answer is always local-only, whatever the
    override asks for. With one, the override wins and hybrid is the default.
    """
    if not remote_configured:
        return StorageMode.LOCAL_ONLY
    if override is None:
        return StorageMode.HYBRID
    return override
