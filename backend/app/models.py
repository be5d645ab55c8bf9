from __future__ import annotations
from datetime import datetime
from sqlalchemy import Boolean, Column, String, DateTime, Text, Index
from .db import Base


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserAttempt(Base):
	"""One graded answer, or a generation sentinel row (``correct`` is NULL)."""

	__tablename__ = "user_attempts"
	id = Column(String(32), primary_key=True)
	user_id = Column(String(128), nullable=False, index=True)
	module_slug = Column(String(256), nullable=False)
	exercise_slug = Column(String(256), nullable=False)
	problem_id = Column(String(128), nullable=False, index=True)
	problem_data = Column(Text, nullable=False)  # JSON string of the ProblemInstance
	user_answer = Column(Text, nullable=True)  # JSON string
	correct = Column(Boolean, nullable=True)
	feedback = Column(Text, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		Index("ix_user_attempts_exercise", "module_slug", "exercise_slug"),
	)


class ModuleRecord(Base):
	__tablename__ = "modules"
	slug = Column(String(256), primary_key=True)
	title = Column(String(512), nullable=True)
	generation_context = Column(Text, nullable=True)  # JSON string snapshot
	lessons = Column(Text, nullable=True)  # JSON array string
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
