from __future__ import annotations
import logging
from sqlalchemy.orm import Session

from .attempts import ProblemService
from .settings import settings

logger = logging.getLogger(__name__)


def purge_old_attempts(db: Session, days: int | None = None) -> int:
	"""Delete attempt rows older than the retention window. Zero or less keeps everything."""
	days = settings.attempt_retention_days if days is None else days
	if days <= 0:
		return 0
	removed = ProblemService(db).purge_older_than(days)
	if removed:
		logger.info("Purged %d attempt rows older than %d days", removed, days)
	return removed
