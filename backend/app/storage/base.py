# storage/base.py
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional

from ..models.schemas import AnalysisStatus, GeneratedQueryRecord, Project, QueryRecord


class QueryStore(ABC):
    """Abstract base class that defines the interface for project/query storage."""

    @abstractmethod
    async def get_project(self, project_id: str) -> Project:
        """Fetch a project.

        Raises:
            ProjectNotFoundError: no project with this id
        """
        pass

    @abstractmethod
    async def update_project(self, project_id: str, **fields: Any) -> Project:
        """Apply a partial update to a project and return the updated copy."""
        pass

    @abstractmethod
    async def list_queries(
        self,
        project_id: str,
        statuses: Optional[Iterable[AnalysisStatus]] = None,
        ids: Optional[Iterable[str]] = None
    ) -> List[QueryRecord]:
        """Return a project's queries ordered by query_id, optionally filtered
        by analysis status and record id."""
        pass

    @abstractmethod
    async def update_query(self, record_id: str, **fields: Any) -> QueryRecord:
        """Apply a partial update to one query record.

        A `metadata` field replaces the stored metadata dict.
        """
        pass

    @abstractmethod
    async def insert_queries(
        self,
        project_id: str,
        queries: List[GeneratedQueryRecord]
    ) -> List[QueryRecord]:
        """Insert generated queries as pending records in one operation."""
        pass

    async def count_queries(
        self,
        project_id: str,
        statuses: Optional[Iterable[AnalysisStatus]] = None
    ) -> int:
        """Count a project's queries, optionally by analysis status."""
        return len(await self.list_queries(project_id, statuses=statuses))
