"""Kind-specific grading strategies and the dispatcher that selects one.

Five kinds are graded locally and deterministically. Only free-response is
sent to the language model, with the exercise rubric; its ``correct`` verdict
is returned unchanged. Matching and ordering results never carry the answer
key in ``expected``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from .errors import GradingInputError, UpstreamModelError
from .gemini_client import GeminiClient
from .prompts import build_grading_system_prompt, build_grading_user_prompt
from .schemas import ExerciseKind, ExerciseSpec, GradeResult, ModuleContext, ProblemInstance, Submission

logger = logging.getLogger(__name__)

NO_PROBLEM_MESSAGE = "No problem to grade. Generate first."


def _normalize_text(value: Any) -> str:
	return ("" if value is None else str(value)).strip().lower()


def _grade_multiple_choice(problem: ProblemInstance, answer: Any) -> GradeResult:
	if not isinstance(answer, str):
		raise GradingInputError("multiple-choice answers must be a choice id")
	key = problem.engine_state["correctChoiceId"]
	correct = answer == key
	return GradeResult(
		correct=correct,
		feedback="Correct! You've selected the right answer." if correct else "Incorrect. Review the question and try again.",
		expected=key,
		details={"studentChoice": answer, "correctChoiceId": key},
	)


def _as_bool_answer(answer: Any) -> bool:
	if isinstance(answer, Mapping):
		answer = answer.get("answer")
	if isinstance(answer, bool):
		return answer
	if isinstance(answer, str) and answer.strip().lower() in ("true", "false"):
		return answer.strip().lower() == "true"
	raise GradingInputError("true-false answers must be a boolean")


def _grade_true_false(problem: ProblemInstance, answer: Any) -> GradeResult:
	student = _as_bool_answer(answer)
	key = problem.engine_state["trueFalseAnswer"]
	correct = student == key
	return GradeResult(
		correct=correct,
		feedback="Correct! Your answer is right." if correct else f"Incorrect. The correct answer is {'True' if key else 'False'}.",
		expected=key,
		details={"studentAnswer": student, "correctAnswer": key},
	)


def _grade_fill_in_the_blank(problem: ProblemInstance, answer: Any) -> GradeResult:
	if not isinstance(answer, Mapping):
		raise GradingInputError("fill-in-the-blank answers must map blank ids to text")
	expected: Dict[str, str] = problem.engine_state["fillBlankAnswers"]
	blank_results: Dict[str, Dict[str, Any]] = {}
	for blank_id, key in expected.items():
		student = answer.get(blank_id)
		student = "" if student is None else str(student)
		blank_results[blank_id] = {
			"correct": _normalize_text(student) == _normalize_text(key),
			"expected": key,
			"student": student,
		}
	wrong = sum(1 for r in blank_results.values() if not r["correct"])
	return GradeResult(
		correct=wrong == 0,
		feedback=(
			"Excellent! All blanks are filled correctly." if wrong == 0
			else f"You have {wrong} incorrect answer(s). Review the concepts and try again."
		),
		expected=dict(expected),
		details={
			"blankResults": blank_results,
			"totalBlanks": len(expected),
			"correctBlanks": len(expected) - wrong,
		},
	)


def _grade_matching(problem: ProblemInstance, answer: Any) -> GradeResult:
	if not isinstance(answer, Mapping):
		raise GradingInputError("matching answers must map left items to right items")
	match_results: List[Dict[str, Any]] = []
	for pair in problem.matching_pairs or []:
		student = answer.get(pair.left_item, answer.get(pair.id))
		match_results.append({
			"pairId": pair.id,
			"leftItem": pair.left_item,
			"studentRight": student,
			"correct": student == pair.right_item,
		})
	wrong = sum(1 for r in match_results if not r["correct"])
	return GradeResult(
		correct=wrong == 0,
		feedback=(
			"Perfect! All matches are correct." if wrong == 0
			else f"You have {wrong} incorrect match(es). Review the concepts and try again."
		),
		details={
			"matchResults": match_results,
			"totalMatches": len(match_results),
			"correctMatches": len(match_results) - wrong,
		},
	)


def _grade_ordering(problem: ProblemInstance, answer: Any) -> GradeResult:
	if not isinstance(answer, list) or not all(isinstance(item, str) for item in answer):
		raise GradingInputError("ordering answers must be a list of item ids")
	key = problem.correct_order()
	in_place = sum(1 for student, expected in zip(answer, key) if student == expected)
	correct = len(answer) == len(key) and in_place == len(key)
	if correct:
		feedback = "Excellent! You've arranged the items in the correct logical sequence."
	elif in_place == 0:
		feedback = "The items are not in the correct order. Consider the logical sequence - which step would come first?"
	else:
		feedback = (
			f"You have {in_place} out of {len(key)} items in the correct position. "
			"Think about the logical flow between the steps."
		)
	return GradeResult(
		correct=correct,
		feedback=feedback,
		details={"correctPositions": in_place, "totalItems": len(key)},
	)


_LOCAL_GRADERS: Dict[ExerciseKind, Callable[[ProblemInstance, Any], GradeResult]] = {
	ExerciseKind.MULTIPLE_CHOICE: _grade_multiple_choice,
	ExerciseKind.TRUE_FALSE: _grade_true_false,
	ExerciseKind.FILL_IN_THE_BLANK: _grade_fill_in_the_blank,
	ExerciseKind.MATCHING: _grade_matching,
	ExerciseKind.ORDERING: _grade_ordering,
}
_MODEL_GRADED = frozenset({ExerciseKind.FREE_RESPONSE})

_unhandled = set(ExerciseKind) - set(_LOCAL_GRADERS) - _MODEL_GRADED
if _unhandled:
	raise RuntimeError(f"No grading strategy for kinds: {sorted(k.value for k in _unhandled)}")


def needs_model(kind: ExerciseKind) -> bool:
	return kind in _MODEL_GRADED


async def _grade_free_response(
	problem: ProblemInstance,
	submission: Submission,
	exercise: Optional[ExerciseSpec],
	module: Optional[ModuleContext],
	llm: Optional[GeminiClient],
) -> GradeResult:
	if llm is None:
		raise UpstreamModelError("free-response grading requires a language model client")
	return await llm.evaluate(
		GradeResult,
		system=build_grading_system_prompt(),
		user=build_grading_user_prompt(problem, submission, exercise, module),
	)


async def grade_submission(
	problem: Optional[ProblemInstance],
	submission: Submission,
	*,
	exercise: Optional[ExerciseSpec] = None,
	module: Optional[ModuleContext] = None,
	llm: Optional[GeminiClient] = None,
) -> GradeResult:
	if problem is None:
		raise GradingInputError(NO_PROBLEM_MESSAGE)
	if needs_model(problem.kind):
		result = await _grade_free_response(problem, submission, exercise, module, llm)
	else:
		result = _LOCAL_GRADERS[problem.kind](problem, submission.answer)
	logger.info("Graded %s problem %s: correct=%s", problem.kind.value, problem.id, result.correct)
	return result
