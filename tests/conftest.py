import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="practice-engine-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["GEMINI_API_KEY"] = "test-key"
os.environ["OPENROUTER_API_KEY"] = ""
os.environ["REQUIRE_GENERATION_CONTEXT"] = "false"

from typing import Any, Dict, List

import pytest

from app import models  # noqa: F401
from app.db import Base, SessionLocal, engine
from app.schemas import ExerciseSpec, ModuleContext, ProblemInstance


SAMPLE_PROBLEMS: Dict[str, Dict[str, Any]] = {
	"multiple-choice": {
		"id": "p-mc",
		"engine": "llm",
		"kind": "multiple-choice",
		"stem": [{"type": "md", "value": "What is 2 + 2?"}],
		"choices": [
			{"id": "a", "label": "A", "text": "3"},
			{"id": "b", "label": "B", "text": "4"},
		],
		"engineState": {"correctChoiceId": "b"},
	},
	"true-false": {
		"id": "p-tf",
		"engine": "llm",
		"kind": "true-false",
		"stem": [{"type": "md", "value": "Decide whether the statement holds."}],
		"trueFalseData": {"statement": "Water boils at 100 C at sea level.", "correctAnswer": True},
		"engineState": {"trueFalseAnswer": True},
	},
	"fill-in-the-blank": {
		"id": "p-fib",
		"engine": "llm",
		"kind": "fill-in-the-blank",
		"stem": [{"type": "md", "value": "_____ is the capital of _____."}],
		"blanks": [
			{"id": "blank-1", "label": "_____", "position": 0},
			{"id": "blank-2", "label": "_____", "position": 1},
		],
		"engineState": {"fillBlankAnswers": {"blank-1": "Paris", "blank-2": "France"}},
	},
	"matching": {
		"id": "p-match",
		"engine": "llm",
		"kind": "matching",
		"stem": [{"type": "md", "value": "Match each formula to its common name."}],
		"matchingPairs": [
			{"id": "pair-1", "leftItem": "H2O", "rightItem": "Water"},
			{"id": "pair-2", "leftItem": "NaCl", "rightItem": "Salt"},
		],
		"engineState": {},
	},
	"ordering": {
		"id": "p-order",
		"engine": "llm",
		"kind": "ordering",
		"stem": [{"type": "md", "value": "Put the steps in order."}],
		"orderingItems": [
			{"id": "item-1", "text": "Boil water", "correctPosition": 0},
			{"id": "item-2", "text": "Add pasta", "correctPosition": 1},
			{"id": "item-3", "text": "Drain", "correctPosition": 2},
		],
		"engineState": {"correctOrder": ["item-1", "item-2", "item-3"]},
	},
	"free-response": {
		"id": "p-free",
		"engine": "llm",
		"kind": "free-response",
		"stem": [{"type": "md", "value": "Explain why the sky is blue."}],
		"engineState": {"referenceAnswer": "Rayleigh scattering of sunlight."},
	},
}


def problem_data(sample: str, /, **overrides: Any) -> Dict[str, Any]:
	data = dict(SAMPLE_PROBLEMS[sample])
	data.update(overrides)
	return data


class FakeLLM:
	"""Stands in for GeminiClient: replays queued JSON payloads and records prompts."""

	def __init__(self, *responses: Any) -> None:
		self.responses: List[Any] = list(responses)
		self.calls: List[Dict[str, Any]] = []

	async def evaluate(self, schema, *, system: str, user: str):
		self.calls.append({"schema": schema, "system": system, "user": user})
		response = self.responses.pop(0)
		if isinstance(response, Exception):
			raise response
		return schema.model_validate(response)


@pytest.fixture(autouse=True)
def fresh_db():
	Base.metadata.drop_all(bind=engine)
	Base.metadata.create_all(bind=engine)
	yield


@pytest.fixture
def db():
	session = SessionLocal()
	try:
		yield session
	finally:
		session.close()


@pytest.fixture
def make_problem():
	def _make(sample: str, /, **overrides: Any) -> ProblemInstance:
		return ProblemInstance.model_validate(problem_data(sample, **overrides))
	return _make


@pytest.fixture
def make_exercise():
	def _make(kind: str, **overrides: Any) -> ExerciseSpec:
		data: Dict[str, Any] = {
			"kind": kind,
			"slug": "ex-1",
			"title": "Exercise 1",
			"params": {
				"promptTemplate": "Write a {{difficulty}} problem about {{topic}}.",
				"gradingRubric": "Accept any answer that names the key mechanism.",
			},
			"difficulty": "easy",
		}
		data.update(overrides)
		return ExerciseSpec.model_validate(data)
	return _make


@pytest.fixture
def module_context() -> ModuleContext:
	return ModuleContext(slug="chem-101", title="Chemistry 101")
