import logging
from sqlalchemy.orm import Session


class BaseService:
    """Shared plumbing for session-bound services."""

    def __init__(self, db: Session):
        self.db = db
        self._logger = logging.getLogger(self.__class__.__module__)

    def commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
