from __future__ import annotations
import json
from typing import Optional

from sqlalchemy.orm import Session

from .models import ModuleRecord
from .schemas import GenerationContext, LessonRecord, ModuleOut, ModuleUpsertRequest, StructuredLesson


class ModuleService:
	"""Stores per-module generation context and lesson content for prompt enrichment."""

	def __init__(self, db: Session) -> None:
		self.db = db

	def upsert_module(self, slug: str, req: ModuleUpsertRequest) -> ModuleOut:
		row = self.db.get(ModuleRecord, slug)
		if row is None:
			row = ModuleRecord(slug=slug)
		row.title = req.title
		row.generation_context = (
			json.dumps(req.generation_context.to_wire()) if req.generation_context is not None else None
		)
		row.lessons = json.dumps([lesson.to_wire() for lesson in req.lessons])
		self.db.add(row)
		self.db.commit()
		return self._to_out(row)

	def get_module(self, slug: str) -> Optional[ModuleOut]:
		row = self.db.get(ModuleRecord, slug)
		return self._to_out(row) if row is not None else None

	def get_generation_context(self, slug: str) -> Optional[GenerationContext]:
		module = self.get_module(slug)
		return module.generation_context if module is not None else None

	def get_lesson_context(self, slug: str) -> Optional[StructuredLesson]:
		"""Structured content of the first lesson, or a stand-in built from its markdown."""
		module = self.get_module(slug)
		if module is None or not module.lessons:
			return None
		first = module.lessons[0]
		if first.structured_content is not None:
			return first.structured_content
		if first.content_md:
			return StructuredLesson(introduction=first.content_md, summary=first.content_md)
		return None

	@staticmethod
	def _to_out(row: ModuleRecord) -> ModuleOut:
		context = json.loads(row.generation_context) if row.generation_context else None
		lessons = json.loads(row.lessons) if row.lessons else []
		return ModuleOut(
			slug=row.slug,
			title=row.title,
			generation_context=GenerationContext.model_validate(context) if context else None,
			lessons=[LessonRecord.model_validate(lesson) for lesson in lessons],
		)
