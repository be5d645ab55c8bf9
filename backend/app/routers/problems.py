from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..attempts import (
	GENERATED_ANSWER_MARKER,
	SYSTEM_GENERATED_USER,
	UNKNOWN_EXERCISE,
	UNKNOWN_MODULE,
	AttemptRecord,
	ProblemService,
	record_attempt,
)
from ..db import get_db
from ..errors import EngineError, GenerationContextRequiredError
from ..gemini_client import get_llm
from ..generator import generate_problem, resolve_generation_inputs
from ..grading import grade_submission, needs_model
from ..schemas import GenerateRequest, GradeRequest, SaveGeneratedRequest
from ..settings import settings
from .auth import User, get_current_user, get_optional_user


router = APIRouter(prefix="/problems", tags=["problems"])
logger = logging.getLogger(__name__)


def _error(message: str, status_code: int = 400) -> JSONResponse:
	return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


@router.get("/ping")
def ping():
	return {"ok": True}


@router.post("/generate")
async def generate(
	body: Dict[str, Any] = Body(...),
	user: Optional[User] = Depends(get_optional_user),
	db: Session = Depends(get_db),
):
	try:
		req = GenerateRequest.model_validate(body)
		inputs = resolve_generation_inputs(db, req.exercise, req.module, user.username if user else None)
		require_context = req.require_context if req.require_context is not None else settings.require_generation_context
		if require_context and inputs.context is None:
			raise GenerationContextRequiredError(req.module.slug if req.module else None)
		llm = await get_llm()
		problem = await generate_problem(
			llm,
			req.exercise,
			module=req.module,
			inputs=inputs,
			require_context=require_context,
		)
	except (EngineError, ValidationError) as err:
		logger.warning("Problem generation failed: %s", err)
		return _error(str(err))
	return {"problem": problem.to_wire()}


@router.post("/grade")
async def grade(
	background_tasks: BackgroundTasks,
	body: Dict[str, Any] = Body(...),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	try:
		req = GradeRequest.model_validate(body)
		problem = req.problem
		try:
			stored = ProblemService(db).get_stored_problem(problem.id)
		except Exception:
			logger.warning("Stored problem lookup failed for %s", problem.id, exc_info=True)
			stored = None
		if stored is not None:
			problem = stored
		llm = await get_llm() if needs_model(problem.kind) else None
		result = await grade_submission(
			problem,
			req.submission,
			exercise=req.exercise,
			module=req.module,
			llm=llm,
		)
	except (EngineError, ValidationError) as err:
		logger.warning("Grading failed: %s", err)
		return _error(str(err))

	background_tasks.add_task(record_attempt, AttemptRecord(
		user_id=user.username,
		module_slug=(req.module.slug if req.module else None) or UNKNOWN_MODULE,
		exercise_slug=(req.exercise.slug if req.exercise else None) or UNKNOWN_EXERCISE,
		problem=problem,
		user_answer=req.submission.answer,
		correct=result.correct,
		feedback=result.feedback or "",
	))
	return result.to_wire()


@router.post("/save-generated")
async def save_generated(background_tasks: BackgroundTasks, body: Dict[str, Any] = Body(...)):
	missing = [key for key in ("problem", "exercise", "module") if not body.get(key)]
	if missing:
		return _error(f"Missing required fields: {', '.join(missing)}")
	try:
		req = SaveGeneratedRequest.model_validate(body)
	except ValidationError as err:
		return _error(str(err))
	background_tasks.add_task(record_attempt, AttemptRecord(
		user_id=SYSTEM_GENERATED_USER,
		module_slug=req.module.slug or UNKNOWN_MODULE,
		exercise_slug=req.exercise.slug or UNKNOWN_EXERCISE,
		problem=req.problem,
		user_answer=GENERATED_ANSWER_MARKER,
		correct=None,
		feedback="Generated problem saved for practice",
	))
	return {"ok": True}


@router.get("/existing")
def existing(
	module_slug: Optional[str] = Query(default=None, alias="moduleSlug"),
	exercise_slug: Optional[str] = Query(default=None, alias="exerciseSlug"),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if not module_slug or not exercise_slug:
		return _error("Missing required parameters: moduleSlug, exerciseSlug")
	problems = ProblemService(db).get_existing_problems(user.username, module_slug, exercise_slug)
	return {"problems": [p.to_wire() for p in problems]}


@router.get("/review/{module_slug}")
def review(module_slug: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	data = ProblemService(db).get_module_review(user.username, module_slug)
	if data is None:
		return _error("No review data found for this module", status_code=404)
	return data.to_wire()
