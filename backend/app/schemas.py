"""Canonical contracts for exercise generation and grading.

Everything downstream of the draft normalizer may assume these shapes. The
wire format is camelCase (``engineState``, ``matchingPairs`` ...); Python code
uses the snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
	"ExerciseKind",
	"ExerciseParams",
	"ExerciseSpec",
	"ModuleLesson",
	"ModuleContext",
	"RenderBlock",
	"Choice",
	"FillBlank",
	"MatchingPair",
	"TrueFalseData",
	"OrderingItem",
	"ProblemUI",
	"ProblemInstance",
	"Submission",
	"GradeResult",
	"GenerateRequest",
	"GradeRequest",
	"SaveGeneratedRequest",
	"ExistingProblem",
	"RecentAttempt",
	"ExerciseReview",
	"ModuleReview",
	"GenerationContext",
	"StructuredLesson",
	"LessonRecord",
	"ModuleUpsertRequest",
	"ModuleOut",
	"GenerationHistory",
	"KIND_PAYLOAD_FIELD",
]


class ExerciseKind(str, Enum):
	MULTIPLE_CHOICE = "multiple-choice"
	FREE_RESPONSE = "free-response"
	FILL_IN_THE_BLANK = "fill-in-the-blank"
	MATCHING = "matching"
	TRUE_FALSE = "true-false"
	ORDERING = "ordering"


class CamelModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	def to_wire(self) -> Dict[str, Any]:
		"""JSON-ready dict with camelCase keys and unset optionals omitted."""
		return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---- Authoring-time exercise definitions ----

_FLAT_PARAM_KEYS = (
	"promptTemplate", "prompt_template",
	"gradingRubric", "grading_rubric",
	"formatHints", "format_hints",
	"vars",
)


class ExerciseParams(CamelModel):
	model_config = ConfigDict(frozen=True)

	prompt_template: str = Field(min_length=1, description="Instruction the model follows to create one problem.")
	grading_rubric: str = Field(default="", description="Criterion used when grading free-response answers.")
	format_hints: Optional[str] = Field(default=None, description="Natural-language formatting guidance for the model.")
	vars: Dict[str, Any] = Field(default_factory=dict, description="Values interpolated into {{name}} placeholders.")


class ExerciseSpec(CamelModel):
	model_config = ConfigDict(frozen=True)

	kind: ExerciseKind
	engine: str = Field(default="llm", min_length=1)
	params: ExerciseParams
	seed: Optional[int] = None
	difficulty: Optional[Literal["intro", "easy", "medium", "hard"]] = None
	title: Optional[str] = None
	slug: Optional[str] = None

	@model_validator(mode="before")
	@classmethod
	def _lift_flat_params(cls, data: Any) -> Any:
		# Authors may write promptTemplate/gradingRubric/... at the top level.
		if not isinstance(data, dict) or "params" in data:
			return data
		lifted = dict(data)
		params: Dict[str, Any] = {}
		for key in _FLAT_PARAM_KEYS:
			if key in lifted:
				params[key] = lifted.pop(key)
		if params:
			lifted["params"] = params
		return lifted


class ModuleLesson(CamelModel):
	title: Optional[str] = None
	content_md: Optional[str] = None


class ModuleContext(CamelModel):
	slug: Optional[str] = None
	title: Optional[str] = None
	lessons: Optional[List[ModuleLesson]] = None


# ---- Renderable problem instance ----

class RenderBlock(CamelModel):
	type: Literal["md", "text", "formula"]
	value: str


class Choice(CamelModel):
	id: str
	label: str
	text: str


class FillBlank(CamelModel):
	id: str
	label: str
	position: int
	user_answer: Optional[str] = ""
	is_correct: Optional[bool] = False
	feedback: Optional[str] = ""
	hints: Optional[List[str]] = Field(default_factory=list)


class MatchingPair(CamelModel):
	id: str
	left_item: str
	right_item: str
	category: Optional[str] = None
	user_match: Optional[str] = None
	is_correct: Optional[bool] = None


class TrueFalseData(CamelModel):
	statement: str
	correct_answer: bool
	explanation: Optional[str] = None
	user_answer: Optional[bool] = None
	is_correct: Optional[bool] = None


class OrderingItem(CamelModel):
	id: str
	text: str
	correct_position: int
	category: Optional[str] = None
	user_position: Optional[int] = None
	is_correct: Optional[bool] = None


class ProblemUI(CamelModel):
	expected_format: Optional[str] = None
	placeholder: Optional[str] = None
	katex: Optional[bool] = None


# Which payload attribute each kind populates; free-response has none.
KIND_PAYLOAD_FIELD: Dict[ExerciseKind, str] = {
	ExerciseKind.MULTIPLE_CHOICE: "choices",
	ExerciseKind.FILL_IN_THE_BLANK: "blanks",
	ExerciseKind.MATCHING: "matching_pairs",
	ExerciseKind.TRUE_FALSE: "true_false_data",
	ExerciseKind.ORDERING: "ordering_items",
}


def _require_unique(values: List[str], what: str) -> None:
	seen: set[str] = set()
	for value in values:
		if value in seen:
			raise ValueError(f"duplicate {what}: {value!r}")
		seen.add(value)


def _check_multiple_choice(problem: "ProblemInstance") -> None:
	ids = [c.id for c in problem.choices or []]
	_require_unique(ids, "choice id")
	key = problem.engine_state.get("correctChoiceId")
	if not isinstance(key, str) or key not in ids:
		raise ValueError("engineState.correctChoiceId must name one of the choice ids")


def _check_fill_in_the_blank(problem: "ProblemInstance") -> None:
	ids = [b.id for b in problem.blanks or []]
	_require_unique(ids, "blank id")
	answers = problem.engine_state.get("fillBlankAnswers")
	if not isinstance(answers, dict) or not answers:
		raise ValueError("engineState.fillBlankAnswers must be a non-empty map of blank id to answer")
	for blank_id, answer in answers.items():
		if blank_id not in ids:
			raise ValueError(f"engineState.fillBlankAnswers references unknown blank {blank_id!r}")
		if not isinstance(answer, str):
			raise ValueError(f"answer for blank {blank_id!r} must be a string")


def _check_matching(problem: "ProblemInstance") -> None:
	pairs = problem.matching_pairs or []
	_require_unique([p.id for p in pairs], "pair id")
	_require_unique([p.left_item for p in pairs], "left item")


def _check_true_false(problem: "ProblemInstance") -> None:
	key = problem.engine_state.get("trueFalseAnswer")
	if not isinstance(key, bool):
		raise ValueError("engineState.trueFalseAnswer must be a boolean")
	if problem.true_false_data is not None and key != problem.true_false_data.correct_answer:
		raise ValueError("engineState.trueFalseAnswer disagrees with trueFalseData.correctAnswer")


def _check_ordering(problem: "ProblemInstance") -> None:
	items = problem.ordering_items or []
	_require_unique([i.id for i in items], "ordering item id")
	positions = [str(i.correct_position) for i in items]
	_require_unique(positions, "correctPosition")
	order = problem.engine_state.get("correctOrder")
	if order is None:
		return
	if not isinstance(order, list) or not all(isinstance(item_id, str) for item_id in order):
		raise ValueError("engineState.correctOrder must be a list of item ids")
	if order != problem.correct_order():
		raise ValueError("engineState.correctOrder disagrees with orderingItems[].correctPosition")


_CONSISTENCY_CHECKS: Dict[ExerciseKind, Callable[["ProblemInstance"], None]] = {
	ExerciseKind.MULTIPLE_CHOICE: _check_multiple_choice,
	ExerciseKind.FILL_IN_THE_BLANK: _check_fill_in_the_blank,
	ExerciseKind.MATCHING: _check_matching,
	ExerciseKind.TRUE_FALSE: _check_true_false,
	ExerciseKind.ORDERING: _check_ordering,
}


class ProblemInstance(CamelModel):
	model_config = ConfigDict(frozen=True)

	id: str = Field(min_length=1)
	engine: str = "llm"
	kind: ExerciseKind
	stem: List[RenderBlock] = Field(min_length=1)
	hints: Optional[List[RenderBlock]] = None
	choices: Optional[List[Choice]] = None
	blanks: Optional[List[FillBlank]] = None
	matching_pairs: Optional[List[MatchingPair]] = None
	true_false_data: Optional[TrueFalseData] = None
	ordering_items: Optional[List[OrderingItem]] = None
	# Answer key and other secrets; consulted only by the grading dispatcher.
	engine_state: Dict[str, Any] = Field(default_factory=dict)
	ui: Optional[ProblemUI] = None

	@model_validator(mode="after")
	def _check_payload_matches_kind(self) -> "ProblemInstance":
		expected = KIND_PAYLOAD_FIELD.get(self.kind)
		for field_name in KIND_PAYLOAD_FIELD.values():
			value = getattr(self, field_name)
			alias = to_camel(field_name)
			if field_name == expected:
				if not value:
					raise ValueError(f"{self.kind.value} problems require a non-empty '{alias}'")
			elif value is not None:
				raise ValueError(f"'{alias}' is not allowed on {self.kind.value} problems")
		check = _CONSISTENCY_CHECKS.get(self.kind)
		if check is not None:
			check(self)
		return self

	def correct_order(self) -> List[str]:
		items = sorted(self.ordering_items or [], key=lambda item: item.correct_position)
		return [item.id for item in items]


# ---- Submissions and grades ----

class Submission(CamelModel):
	answer: Union[bool, int, float, str, List[str], Dict[str, Any]]
	raw: Any = None


class GradeResult(CamelModel):
	correct: bool = Field(strict=True)
	feedback: Optional[str] = None
	expected: Any = None
	details: Optional[Dict[str, Any]] = None


# ---- Request envelopes ----

class GenerateRequest(CamelModel):
	exercise: ExerciseSpec
	module: Optional[ModuleContext] = None
	require_context: Optional[bool] = None


class GradeRequest(CamelModel):
	# always "llm" today; kept for forward compatibility
	engine: str = "llm"
	problem: ProblemInstance
	submission: Submission
	exercise: Optional[ExerciseSpec] = None
	module: Optional[ModuleContext] = None


class SaveGeneratedRequest(CamelModel):
	problem: ProblemInstance
	exercise: ExerciseSpec
	module: ModuleContext


# ---- Attempt history views ----

class ExistingProblem(CamelModel):
	id: str
	problem: Dict[str, Any]
	created_at: datetime
	attempt_count: int
	is_attempted: bool
	last_correct: Optional[bool] = None


class RecentAttempt(CamelModel):
	timestamp: datetime
	correct: Optional[bool] = None
	user_answer: Any = None
	feedback: Optional[str] = None


class ExerciseReview(CamelModel):
	title: str
	attempts: int = 0
	correct: int = 0
	accuracy: int = 0
	last_attempt: Optional[datetime] = None
	recent_attempts: List[RecentAttempt] = Field(default_factory=list)


class ModuleReview(CamelModel):
	module_slug: str
	module_title: str
	exercises: Dict[str, ExerciseReview]
	total_module_attempts: int
	overall_module_accuracy: int


class GenerationHistory(CamelModel):
	recent_scenarios: List[str] = Field(default_factory=list)
	used_numbers: List[int] = Field(default_factory=list)
	last_problem_type: Optional[str] = None
	variation_seed: int = 0


# ---- Module generation context ----

class GenerationContext(CamelModel):
	topic: str
	audience: Optional[str] = None
	goals: List[str] = Field(default_factory=list)
	constraints: List[str] = Field(default_factory=list)


class StructuredLesson(CamelModel):
	introduction: Optional[str] = None
	key_concepts: List[Dict[str, Any]] = Field(default_factory=list)
	step_by_step_examples: List[Dict[str, Any]] = Field(default_factory=list)
	real_world_applications: List[str] = Field(default_factory=list)
	summary: Optional[str] = None


class LessonRecord(CamelModel):
	title: Optional[str] = None
	content_md: Optional[str] = None
	structured_content: Optional[StructuredLesson] = None


class ModuleUpsertRequest(CamelModel):
	title: Optional[str] = None
	generation_context: Optional[GenerationContext] = None
	lessons: List[LessonRecord] = Field(default_factory=list)


class ModuleOut(ModuleUpsertRequest):
	slug: str
