from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .attempts import ProblemService
from .errors import GenerationContextRequiredError
from .gemini_client import GeminiClient
from .modules import ModuleService
from .normalizer import ProblemDraft, normalize_draft
from .prompts import build_generation_system_prompt, build_generation_user_prompt
from .schemas import (
	ExerciseSpec,
	GenerationContext,
	GenerationHistory,
	ModuleContext,
	ProblemInstance,
	StructuredLesson,
)

logger = logging.getLogger(__name__)


@dataclass
class GenerationInputs:
	context: Optional[GenerationContext] = None
	lesson: Optional[StructuredLesson] = None
	history: Optional[GenerationHistory] = None


def resolve_generation_inputs(
	db: Session,
	exercise: ExerciseSpec,
	module: Optional[ModuleContext] = None,
	user_id: Optional[str] = None,
) -> GenerationInputs:
	"""Look up module context, lesson content and learner history.

	Every lookup is best-effort: failures are logged and leave that input empty.
	"""
	inputs = GenerationInputs()
	slug = module.slug if module is not None else None
	if not slug:
		logger.debug("No module slug provided; generating without module context")
		return inputs
	try:
		modules = ModuleService(db)
		inputs.context = modules.get_generation_context(slug)
		inputs.lesson = modules.get_lesson_context(slug)
	except Exception:
		logger.warning("Failed to retrieve generation context for module %s", slug, exc_info=True)
	if user_id and exercise.slug:
		try:
			inputs.history = ProblemService(db).get_generation_history(user_id, slug, exercise.slug)
		except Exception:
			logger.warning("Failed to load generation history for %s/%s", slug, exercise.slug, exc_info=True)
	return inputs


async def generate_problem(
	llm: GeminiClient,
	exercise: ExerciseSpec,
	*,
	module: Optional[ModuleContext] = None,
	inputs: Optional[GenerationInputs] = None,
	require_context: bool = False,
) -> ProblemInstance:
	"""Build prompts, call the model once, and return the normalized problem.

	Raises ``GenerationContextRequiredError`` before calling the model when
	``require_context`` is set and no generation context was resolved.
	"""
	inputs = inputs or GenerationInputs()
	if require_context and inputs.context is None:
		raise GenerationContextRequiredError(module.slug if module is not None else None)

	system = build_generation_system_prompt(exercise.kind)
	user = build_generation_user_prompt(exercise, module, inputs.context, inputs.lesson, inputs.history)
	draft = await llm.evaluate(ProblemDraft, system=system, user=user)

	# Model-supplied ids are placeholders more often than not.
	draft = draft.model_copy(update={"id": uuid.uuid4().hex, "engine": "llm"})
	problem = normalize_draft(draft, kind=exercise.kind)
	logger.info("Generated %s problem %s for exercise %s", problem.kind.value, problem.id, exercise.slug)
	return problem
