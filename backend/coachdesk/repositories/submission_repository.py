"""Replay submission persistence."""

from sqlalchemy.orm import Session

from ..models.submission import ReplaySubmission
from .base_repository import BaseRepository


class SubmissionRepository(BaseRepository[ReplaySubmission]):
    def __init__(self, db: Session):
        super().__init__(db, ReplaySubmission)
