"""Galaxy records: the shared resources that collect sunshines and get placed."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from galaxy_workflow.errors import InputValidationError, NotFound
from galaxy_workflow.store import GALAXIES, DocumentStore

logger = logging.getLogger(__name__)


class GalaxyRecord(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    description: str = ""
    maintainer: str = Field(description="Participant id of the owner")
    project_link: str = ""
    tags: list[str] = Field(default_factory=list)
    sunshines: float = 0.0
    stars: float = 0.0
    x: float | None = None
    y: float | None = None
    ledger_id: str | None = None
    ledger_tx: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(tz=UTC).isoformat())


class GalaxyRegistry:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def create(
        self,
        *,
        name: str,
        maintainer: str,
        description: str = "",
        project_link: str = "",
        tags: list[str] | None = None,
    ) -> GalaxyRecord:
        if not name.strip():
            raise InputValidationError("Galaxy name must not be empty")
        if not maintainer.strip():
            raise InputValidationError("Galaxy maintainer must not be empty")

        record = GalaxyRecord(
            name=name.strip(),
            maintainer=maintainer.strip(),
            description=description,
            project_link=project_link,
            tags=list(tags or []),
        )
        with self._store.transaction() as tx:
            tx.insert(GALAXIES, record.id, record.model_dump(mode="json"))
        logger.info("Galaxy created", extra={"galaxy_id": record.id, "galaxy_name": record.name})
        return record

    def get(self, galaxy_id: str) -> GalaxyRecord:
        raw = self._store.get(GALAXIES, galaxy_id)
        if raw is None:
            raise NotFound(f"Galaxy {galaxy_id!r} not found")
        return GalaxyRecord.model_validate(raw)

    def find_by_name(self, name: str) -> GalaxyRecord | None:
        matches = self._store.find(GALAXIES, name=name.strip())
        return GalaxyRecord.model_validate(matches[0]) if matches else None

    def find_by_project_link(self, project_link: str, *, maintainer: str) -> GalaxyRecord | None:
        matches = self._store.find(GALAXIES, project_link=project_link, maintainer=maintainer)
        return GalaxyRecord.model_validate(matches[0]) if matches else None

    def attach_ledger_reference(
        self, galaxy_id: str, *, ledger_id: str, ledger_tx: str
    ) -> GalaxyRecord:
        with self._store.transaction() as tx:
            updated = tx.update(GALAXIES, galaxy_id, ledger_id=ledger_id, ledger_tx=ledger_tx)
        return GalaxyRecord.model_validate(updated)
