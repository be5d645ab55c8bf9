"""Attempt persistence: the best-effort recorder and the read queries over it."""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .db import SessionLocal
from .models import UserAttempt
from .schemas import (
	ExerciseReview,
	ExistingProblem,
	GenerationHistory,
	ModuleReview,
	ProblemInstance,
	RecentAttempt,
)

logger = logging.getLogger(__name__)

SYSTEM_GENERATED_USER = "system-generated"
GENERATED_ANSWER_MARKER = "__generated__"
UNKNOWN_MODULE = "unknown-module"
UNKNOWN_EXERCISE = "unknown-exercise"

_EXISTING_LIMIT = 50
_HISTORY_ROWS = 10
_RECENT_PER_EXERCISE = 10


@dataclass(frozen=True)
class AttemptRecord:
	user_id: str
	module_slug: str
	exercise_slug: str
	problem: ProblemInstance
	user_answer: Any
	correct: Optional[bool]
	feedback: str = ""


def _titleize(slug: str) -> str:
	return re.sub(r"[-_]+", " ", slug).title()


def _accuracy(correct: int, attempts: int) -> int:
	return round(correct / attempts * 100) if attempts else 0


def variation_seed(user_id: str, module_slug: str, exercise_slug: str) -> int:
	"""Stable 0..999 seed per learner/exercise (31-multiplier string hash)."""
	h = 0
	for ch in f"{user_id}-{module_slug}-{exercise_slug}":
		h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
	if h >= 0x80000000:
		h -= 0x100000000
	return abs(h) % 1000


class ProblemService:
	def __init__(self, db: Session) -> None:
		self.db = db

	def save_attempt(self, attempt: AttemptRecord) -> UserAttempt:
		row = UserAttempt(
			id=uuid.uuid4().hex,
			user_id=attempt.user_id,
			module_slug=attempt.module_slug,
			exercise_slug=attempt.exercise_slug,
			problem_id=attempt.problem.id,
			problem_data=json.dumps(attempt.problem.to_wire()),
			user_answer=json.dumps(attempt.user_answer),
			correct=attempt.correct,
			feedback=attempt.feedback or None,
		)
		self.db.add(row)
		self.db.commit()
		return row

	def get_stored_problem(self, problem_id: str) -> Optional[ProblemInstance]:
		row = (
			self.db.query(UserAttempt)
			.filter(UserAttempt.problem_id == problem_id)
			.order_by(UserAttempt.created_at.asc())
			.first()
		)
		if row is None:
			return None
		try:
			return ProblemInstance.model_validate(json.loads(row.problem_data))
		except (ValidationError, ValueError):
			logger.warning("Stored problem %s no longer validates; ignoring it", problem_id)
			return None

	def get_existing_problems(self, user_id: str, module_slug: str, exercise_slug: str) -> List[ExistingProblem]:
		"""Problems generated for an exercise, newest first, with the learner's attempt stats."""
		rows = (
			self.db.query(UserAttempt)
			.filter(
				UserAttempt.user_id.in_([user_id, SYSTEM_GENERATED_USER]),
				UserAttempt.module_slug == module_slug,
				UserAttempt.exercise_slug == exercise_slug,
			)
			.order_by(UserAttempt.created_at.desc())
			.all()
		)
		grouped: Dict[str, List[UserAttempt]] = {}
		for row in rows:
			grouped.setdefault(row.problem_id, []).append(row)

		problems: List[ExistingProblem] = []
		for problem_id, group in grouped.items():
			own = [r for r in group if r.user_id == user_id]
			problems.append(ExistingProblem(
				id=problem_id,
				problem=json.loads(group[0].problem_data),
				created_at=group[-1].created_at,
				attempt_count=len(own),
				is_attempted=bool(own),
				last_correct=own[0].correct if own else None,
			))
			if len(problems) >= _EXISTING_LIMIT:
				break
		return problems

	def get_module_review(self, user_id: str, module_slug: str) -> Optional[ModuleReview]:
		rows = (
			self.db.query(UserAttempt)
			.filter(UserAttempt.user_id == user_id, UserAttempt.module_slug == module_slug)
			.order_by(UserAttempt.created_at.desc())
			.all()
		)
		if not rows:
			return None
		exercises: Dict[str, ExerciseReview] = {}
		total_correct = 0
		for row in rows:
			review = exercises.setdefault(row.exercise_slug, ExerciseReview(title=_titleize(row.exercise_slug)))
			review.attempts += 1
			if row.correct:
				review.correct += 1
				total_correct += 1
			if review.last_attempt is None or row.created_at > review.last_attempt:
				review.last_attempt = row.created_at
			if len(review.recent_attempts) < _RECENT_PER_EXERCISE:
				review.recent_attempts.append(RecentAttempt(
					timestamp=row.created_at,
					correct=row.correct,
					user_answer=json.loads(row.user_answer) if row.user_answer else None,
					feedback=row.feedback,
				))
		for review in exercises.values():
			review.accuracy = _accuracy(review.correct, review.attempts)
		return ModuleReview(
			module_slug=module_slug,
			module_title=_titleize(module_slug),
			exercises=exercises,
			total_module_attempts=len(rows),
			overall_module_accuracy=_accuracy(total_correct, len(rows)),
		)

	def get_generation_history(self, user_id: str, module_slug: str, exercise_slug: str) -> GenerationHistory:
		rows = (
			self.db.query(UserAttempt)
			.filter(
				UserAttempt.user_id == user_id,
				UserAttempt.module_slug == module_slug,
				UserAttempt.exercise_slug == exercise_slug,
			)
			.order_by(UserAttempt.created_at.desc())
			.limit(_HISTORY_ROWS)
			.all()
		)
		scenarios: List[str] = []
		numbers: List[int] = []
		last_kind: Optional[str] = None
		for row in rows:
			problem = json.loads(row.problem_data)
			stem_text = " ".join(str(b.get("value", "")) for b in problem.get("stem", []) if isinstance(b, dict))
			if stem_text:
				scenarios.append(stem_text[:100])
			for value in (problem.get("engineState") or {}).values():
				if isinstance(value, int) and not isinstance(value, bool):
					numbers.append(value)
				elif isinstance(value, str) and value.isdigit():
					numbers.append(int(value))
			if last_kind is None and problem.get("kind"):
				last_kind = problem["kind"]
		return GenerationHistory(
			recent_scenarios=scenarios[:5],
			used_numbers=list(dict.fromkeys(numbers))[:10],
			last_problem_type=last_kind,
			variation_seed=variation_seed(user_id, module_slug, exercise_slug),
		)

	def purge_older_than(self, days: int) -> int:
		threshold = datetime.utcnow() - timedelta(days=days)
		res = self.db.execute(delete(UserAttempt).where(UserAttempt.created_at < threshold))
		self.db.commit()
		return res.rowcount or 0


def record_attempt(attempt: AttemptRecord) -> None:
	"""Persist one attempt row; failures are logged and never raised."""
	db = SessionLocal()
	try:
		ProblemService(db).save_attempt(attempt)
		logger.info(
			"Recorded attempt user=%s module=%s exercise=%s problem=%s correct=%s",
			attempt.user_id, attempt.module_slug, attempt.exercise_slug, attempt.problem.id, attempt.correct,
		)
	except Exception:
		# close() below discards the failed transaction
		logger.exception("Failed to record attempt for problem %s", attempt.problem.id)
	finally:
		db.close()
