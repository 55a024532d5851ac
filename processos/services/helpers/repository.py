"""
Key-addressable store over a single model.

Services persist entities through ``Repository`` rather than reaching for
``Model.query.get(pk)`` so that every by-id lookup fails the same way:
a missing record raises NotFoundError with the model name attached.

Usage:
    runs = Repository(ProcessRun)
    run = runs.get(run_id)              # raises NotFoundError
    maybe = runs.get_or_none(run_id)    # None when absent
    runs.upsert(run)
    runs.delete(run_id)
"""

import logging

from sqlalchemy import select

from processos.core.exceptions import NotFoundError
from processos.models import db

logger = logging.getLogger(__name__)


class Repository:
    """get-all / get-by-id / upsert / delete over one model class."""

    def __init__(self, model, label: str | None = None):
        self.model = model
        self.label = label or model.__name__

    def all(self, **filters) -> list:
        stmt = select(self.model)
        for field, value in filters.items():
            if not hasattr(self.model, field):
                raise ValueError(f"{self.label} has no column '{field}'")
            stmt = stmt.where(getattr(self.model, field) == value)
        return list(db.session.execute(stmt).scalars())

    def get(self, pk):
        obj = db.session.get(self.model, pk) if pk is not None else None
        if obj is None:
            logger.debug("%s id=%s not found", self.label, pk)
            raise NotFoundError(resource=self.label, resource_id=pk)
        return obj

    def get_or_none(self, pk):
        try:
            return self.get(pk)
        except NotFoundError:
            return None

    def upsert(self, entity):
        """Stage ``entity`` (insert or update) and flush so ids are assigned."""
        db.session.add(entity)
        db.session.flush()
        return entity

    def delete(self, pk) -> None:
        db.session.delete(self.get(pk))
        db.session.flush()
