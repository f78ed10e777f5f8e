"""
In-process QueryStore used by default and in tests
Data lives only as long as the process.
"""

import logging
import uuid
from typing import Any, Dict, Iterable, List, Optional

from .base import QueryStore
from ..core.errors import ProjectNotFoundError
from ..models.schemas import AnalysisStatus, GeneratedQueryRecord, Project, QueryRecord

logger = logging.getLogger(__name__)


class InMemoryQueryStore(QueryStore):
    """Dict-backed store; records are copied in and out so callers can't mutate state"""

    def __init__(self):
        self._projects: Dict[str, Project] = {}
        self._queries: Dict[str, QueryRecord] = {}

    def add_project(self, project: Project) -> Project:
        self._projects[project.id] = project.model_copy(deep=True)
        return project

    def add_query(self, record: QueryRecord) -> QueryRecord:
        self._queries[record.id] = record.model_copy(deep=True)
        return record

    async def get_project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project.model_copy(deep=True)

    async def update_project(self, project_id: str, **fields: Any) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        updated = project.model_copy(update=fields, deep=True)
        self._projects[project_id] = updated
        return updated.model_copy(deep=True)

    async def list_queries(
        self,
        project_id: str,
        statuses: Optional[Iterable[AnalysisStatus]] = None,
        ids: Optional[Iterable[str]] = None
    ) -> List[QueryRecord]:
        wanted_statuses = {AnalysisStatus(s) for s in statuses} if statuses is not None else None
        wanted_ids = set(ids) if ids is not None else None

        records = [
            record for record in self._queries.values()
            if record.project_id == project_id
            and (wanted_statuses is None or record.analysis_status in wanted_statuses)
            and (wanted_ids is None or record.id in wanted_ids)
        ]
        records.sort(key=lambda r: r.query_id)
        return [r.model_copy(deep=True) for r in records]

    async def update_query(self, record_id: str, **fields: Any) -> QueryRecord:
        record = self._queries.get(record_id)
        if record is None:
            raise KeyError(f"Query not found: {record_id}")
        updated = record.model_copy(update=fields, deep=True)
        self._queries[record_id] = updated
        return updated.model_copy(deep=True)

    async def insert_queries(
        self,
        project_id: str,
        queries: List[GeneratedQueryRecord]
    ) -> List[QueryRecord]:
        if project_id not in self._projects:
            raise ProjectNotFoundError(project_id)

        inserted = []
        for query in queries:
            record = QueryRecord(
                id=str(uuid.uuid4()),
                project_id=project_id,
                query_id=query.query_id,
                query_text=query.query_text,
                query_type=query.query_type.value,
                query_category=query.query_category,
                query_format=query.query_format.value,
                target_audience=query.target_audience,
                analysis_status=AnalysisStatus.PENDING,
            )
            self._queries[record.id] = record
            inserted.append(record.model_copy(deep=True))

        logger.info(f"Inserted {len(inserted)} queries for project {project_id}")
        return inserted
