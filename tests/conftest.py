"""
Test fixtures for the Trellis test suite.

Provides:
- Temporary directory fixtures (isolated from any real .trellis/)
- A controllable clock
- Mock data builders for catalog and project records
- Store and state fixtures, plus a seeded sample catalog
"""

import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Generator, List, Optional

import pytest

from trellis.constants import (
    COLLECTION_PHASE_GROUPS,
    COLLECTION_PHASES,
    COLLECTION_PROJECTS,
    COLLECTION_TASK_MASTERS,
    ConfigManager,
    reset_config_manager,
    set_config_manager,
)
from trellis.managers.state import StateStore
from trellis.managers.storage_manager import JsonStore
from trellis.models.catalog import CatalogGroup, CatalogPhase, CatalogTaskMaster
from trellis.models.project import EditLock, Project, Task

BASE_TIME = datetime(2024, 4, 1, 9, 0, 0)


# =============================================================================
# Temporary Directory Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test isolation."""
    temp_path = Path(tempfile.mkdtemp(prefix="trellis_test_"))
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def data_dir(temp_dir: Path) -> Path:
    """Path of a .trellis/ directory inside the temp dir (created by JsonStore)."""
    return temp_dir / ".trellis"


@pytest.fixture(autouse=True)
def isolated_config(data_dir: Path) -> Generator[None, None, None]:
    """Read config from the test's data dir, never from the working directory."""
    set_config_manager(ConfigManager(data_dir=data_dir))
    yield
    reset_config_manager()


# =============================================================================
# Clock
# =============================================================================


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now = self.now + timedelta(minutes=minutes)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


# =============================================================================
# Mock Data Builders
# =============================================================================


class MockDataBuilder:
    """Helper class for building mock Trellis records for testing."""

    @staticmethod
    def create_group(
        id: str = "pg-1",
        name: str = "Test Group",
        parent_group_id: Optional[str] = None,
        memo: str = "",
    ) -> CatalogGroup:
        """Create a mock CatalogGroup for testing."""
        return CatalogGroup(
            id=id,
            name=name,
            parent_group_id=parent_group_id,
            memo=memo,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )

    @staticmethod
    def create_phase(
        id: str = "p-1",
        name: str = "Test Phase",
        parent_group_id: str = "pg-1",
    ) -> CatalogPhase:
        """Create a mock CatalogPhase for testing."""
        return CatalogPhase(
            id=id,
            name=name,
            parent_group_id=parent_group_id,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )

    @staticmethod
    def create_task_master(
        id: str = "tm-1",
        name: str = "Test Task",
        phase_id: str = "p-1",
        description: str = "",
    ) -> CatalogTaskMaster:
        """Create a mock CatalogTaskMaster for testing."""
        return CatalogTaskMaster(
            id=id,
            name=name,
            phase_id=phase_id,
            description=description,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )

    @staticmethod
    def create_task(
        project_id: str = "proj1",
        suffix: str = "t1",
        task_master_id: str = "",
        task_name: str = "",
        status: str = "not_started",
    ) -> Task:
        """Create a mock Task; ad-hoc unless task_master_id is given."""
        if not task_master_id and not task_name:
            task_name = "Ad-hoc task"
        return Task(
            id=f"{project_id}-{suffix}",
            project_id=project_id,
            task_master_id=task_master_id,
            task_name=task_name,
            status=status,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )

    @staticmethod
    def create_project(
        id: str = "proj1",
        name: str = "Test Project",
        tasks: Optional[List[Task]] = None,
        lock_holder: Optional[str] = None,
        lock_acquired_at: Optional[datetime] = None,
        is_completed: bool = False,
    ) -> Project:
        """Create a mock Project, optionally with an edit lock."""
        lock = None
        if lock_holder:
            lock = EditLock(holder_id=lock_holder, acquired_at=lock_acquired_at or BASE_TIME)
        return Project(
            id=id,
            name=name,
            tasks=tasks or [],
            lock=lock,
            is_completed=is_completed,
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )


@pytest.fixture
def mock_data() -> MockDataBuilder:
    """Provide mock data builder for test record creation."""
    return MockDataBuilder()


# =============================================================================
# Store / State Fixtures
# =============================================================================


_COLLECTION_BY_TYPE = {
    CatalogGroup: COLLECTION_PHASE_GROUPS,
    CatalogPhase: COLLECTION_PHASES,
    CatalogTaskMaster: COLLECTION_TASK_MASTERS,
    Project: COLLECTION_PROJECTS,
}


def seed(store: JsonStore, *records) -> None:
    """Write records straight into the store, bypassing the managers."""
    store.batch_write(
        [(_COLLECTION_BY_TYPE[type(r)], r.id, r.model_dump(mode="json")) for r in records]
    )


@pytest.fixture
def store(data_dir: Path) -> JsonStore:
    return JsonStore(data_dir)


@pytest.fixture
def state() -> StateStore:
    return StateStore()


@pytest.fixture
def sample_catalog(store: JsonStore, mock_data: MockDataBuilder) -> JsonStore:
    """Seed a nested catalog.

    Structure:
        pg-1 Site Work
        ├── p-1 Foundation
        │   ├── tm-1 Pour concrete
        │   └── tm-2 Cure slab
        └── pg-2 Utilities
            └── p-2 Plumbing
                └── tm-3 Lay pipes
        pg-3 Interior
        └── p-3 Finishing
            └── tm-4 Paint walls
    """
    seed(
        store,
        mock_data.create_group("pg-1", "Site Work"),
        mock_data.create_group("pg-2", "Utilities", parent_group_id="pg-1"),
        mock_data.create_group("pg-3", "Interior"),
        mock_data.create_phase("p-1", "Foundation", "pg-1"),
        mock_data.create_phase("p-2", "Plumbing", "pg-2"),
        mock_data.create_phase("p-3", "Finishing", "pg-3"),
        mock_data.create_task_master("tm-1", "Pour concrete", "p-1", description="Ready-mix"),
        mock_data.create_task_master("tm-2", "Cure slab", "p-1"),
        mock_data.create_task_master("tm-3", "Lay pipes", "p-2"),
        mock_data.create_task_master("tm-4", "Paint walls", "p-3"),
    )
    return store


@pytest.fixture
def add_records(store: JsonStore):
    """Return a function that seeds records into the test store."""
    def _add(*records) -> None:
        seed(store, *records)
    return _add
