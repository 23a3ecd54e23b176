"""
Constants for the Trellis application.

Defaults, fixed names and messages. Configurable values are read from
.trellis/config.json at runtime through ConfigManager.
"""
from pathlib import Path
from typing import Any, Dict, Optional
import json

# =============================================================================
# Defaults
# Used whenever config.json is missing or leaves a key out.
# =============================================================================

DEFAULT_DATA_DIR = ".trellis"

# Edit lock defaults
DEFAULT_LOCK_STALE_MINUTES = 10

# Store defaults
DEFAULT_TRANSACTION_ATTEMPTS = 5

# Id generation defaults
DEFAULT_UID_LENGTH = 20
UID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"

# Tree defaults
DEFAULT_TREE_ROOT_LABEL = "Task Catalog"
TREE_ROOT_ID = "root"

# Display defaults
DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Collection names (not configurable)
COLLECTION_PROJECTS = "projects"
COLLECTION_PHASE_GROUPS = "phase_groups"
COLLECTION_PHASES = "phases"
COLLECTION_TASK_MASTERS = "task_masters"
COLLECTIONS = [
    COLLECTION_PROJECTS,
    COLLECTION_PHASE_GROUPS,
    COLLECTION_PHASES,
    COLLECTION_TASK_MASTERS,
]

# Id prefixes (not configurable)
GROUP_ID_PREFIX = "pg-"
PHASE_ID_PREFIX = "p-"
TASK_MASTER_ID_PREFIX = "tm-"

# Status constants (not configurable)
TASK_STATUS_NOT_STARTED = "not_started"
TASK_STATUS_IN_PROGRESS = "in_progress"
TASK_STATUS_COMPLETED = "completed"
VALID_TASK_STATUSES = [TASK_STATUS_NOT_STARTED, TASK_STATUS_IN_PROGRESS, TASK_STATUS_COMPLETED]
VALID_PROJECT_TYPES = ["construction", "general"]

# Validation error messages (not configurable)
VALIDATION_NAME_REQUIRED = "Name is required for all catalog entries."
VALIDATION_INVALID_STATUS = "Status must be one of: not_started, in_progress, completed."
VALIDATION_TASK_SOURCE = "A task needs either a task master id or an inline task name."


# =============================================================================
# Runtime config
# Values come from .trellis/config.json; anything absent uses the defaults above.
# =============================================================================

_active_config: Optional['ConfigManager'] = None


class ConfigManager:
    """
    Read-only view of a Trellis config.json with default fallbacks.

    The file is parsed lazily on first access and cached until reload().
    A missing or unreadable file behaves like an empty one. Writing the file
    is JsonStore's job (save_config); this class never touches the store.

    Usage:
        config = ConfigManager(data_dir=Path(".trellis"))
        stale = config.get_int('lock_stale_minutes', DEFAULT_LOCK_STALE_MINUTES)
    """

    def __init__(self, config_path: Optional[Path] = None, data_dir: Optional[Path] = None) -> None:
        """
        Args:
            config_path: Explicit config file. Wins over data_dir.
            data_dir: A .trellis/ directory holding config.json.
        """
        if config_path is None:
            config_path = (data_dir if data_dir is not None else Path(DEFAULT_DATA_DIR)) / "config.json"
        self._path = config_path
        self._values: Optional[Dict[str, Any]] = None

    def _values_or_load(self) -> Dict[str, Any]:
        if self._values is None:
            try:
                parsed = json.loads(self._path.read_text())
            except (OSError, ValueError):
                parsed = {}
            self._values = parsed if isinstance(parsed, dict) else {}
        return self._values

    def get(self, key: str, default: Any = None) -> Any:
        """Raw value for key, or default when the file does not set it."""
        return self._values_or_load().get(key, default)

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key)
        return default if value is None else int(value)

    def get_str(self, key: str, default: str) -> str:
        value = self.get(key)
        return default if value is None else str(value)

    def get_dict(self, key: str, default: dict) -> dict:
        value = self.get(key)
        return dict(value) if isinstance(value, dict) else default

    def reload(self) -> Dict[str, Any]:
        """Drop the cached values and read the file again."""
        self._values = None
        return self._values_or_load()

    @property
    def config_path(self) -> Path:
        return self._path


def get_config_manager(reset: bool = False) -> ConfigManager:
    """
    Return the process-wide ConfigManager, creating one over ./.trellis if needed.

    Args:
        reset: Discard the current instance first.
    """
    global _active_config
    if reset or _active_config is None:
        _active_config = ConfigManager()
    return _active_config


def set_config_manager(manager: ConfigManager) -> None:
    """Point the singleton at a specific config (used when --data-dir is given)."""
    global _active_config
    _active_config = manager


def reset_config_manager() -> None:
    """Forget the active ConfigManager; the next access builds a default one."""
    global _active_config
    _active_config = None


# Shortcuts over the active ConfigManager
def get_lock_stale_minutes() -> int:
    """Get the edit lock staleness threshold (minutes) from config or default."""
    return get_config_manager().get_int('lock_stale_minutes', DEFAULT_LOCK_STALE_MINUTES)


def get_transaction_attempts() -> int:
    """Get the number of optimistic transaction attempts from config or default."""
    return get_config_manager().get_int('transaction_attempts', DEFAULT_TRANSACTION_ATTEMPTS)


def get_uid_length() -> int:
    """Get generated id suffix length from config or default."""
    return get_config_manager().get_int('uid_length', DEFAULT_UID_LENGTH)


def get_tree_root_label() -> str:
    """Get the catalog tree root label from config or default."""
    return get_config_manager().get_str('tree_root_label', DEFAULT_TREE_ROOT_LABEL)


def get_timestamp_format() -> str:
    """Get the display timestamp format from config or default."""
    return get_config_manager().get_str('timestamp_format', DEFAULT_TIMESTAMP_FORMAT)


def get_user_names() -> Dict[str, str]:
    """Get the user id -> display name directory from config."""
    return get_config_manager().get_dict('user_names', {})
