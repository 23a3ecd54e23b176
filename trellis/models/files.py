"""
File models for Trellis.

Models representing the structure of JSON files in the .trellis/ directory.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from trellis.constants import (
    DEFAULT_LOCK_STALE_MINUTES,
    DEFAULT_TIMESTAMP_FORMAT,
    DEFAULT_TRANSACTION_ATTEMPTS,
    DEFAULT_TREE_ROOT_LABEL,
    DEFAULT_UID_LENGTH,
)


class CollectionFile(BaseModel):
    """Model for one <collection>.json file.

    Documents keyed by id, plus a per-document version counter used by
    optimistic transactions to detect concurrent writers.
    """

    documents: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    versions: Dict[str, int] = Field(default_factory=dict)


class ViewStateFile(BaseModel):
    """Model for view_state.json file.

    Remembers which catalog tree nodes the user expanded, so the set can be
    restored after a search is cleared.
    """

    expanded_ids: List[str] = Field(default_factory=list)


class ConfigFile(BaseModel):
    """Model for config.json file.

    Project settings and configuration.
    """

    schema_version: str = "0.1.0"

    # Lock settings
    lock_stale_minutes: int = DEFAULT_LOCK_STALE_MINUTES

    # Store settings
    transaction_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS
    uid_length: int = DEFAULT_UID_LENGTH

    # Display settings
    tree_root_label: str = DEFAULT_TREE_ROOT_LABEL
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT

    # User directory (id -> display name) for lock holder messages
    user_names: Dict[str, str] = Field(default_factory=dict)
