import asyncio
import json

import httpx
import pytest

from app.client import PracticeClient
from app.errors import EngineError, GradingInputError
from app.grading import NO_PROBLEM_MESSAGE

from conftest import problem_data


def _run(handler, action):
	async def run():
		async with PracticeClient("http://engine.test", token="tok", transport=httpx.MockTransport(handler)) as client:
			return await action(client)
	return asyncio.run(run())


def test_generate_saves_the_problem_for_reuse(make_exercise, module_context):
	requests = []

	def handler(request: httpx.Request) -> httpx.Response:
		requests.append((request.url.path, json.loads(request.content), request.headers.get("authorization")))
		if request.url.path == "/problems/generate":
			return httpx.Response(200, json={"problem": problem_data("multiple-choice")})
		return httpx.Response(200, json={"ok": True})

	problem = _run(handler, lambda c: c.generate(make_exercise("multiple-choice"), module_context))

	assert problem.id == "p-mc"
	assert [path for path, _, _ in requests] == ["/problems/generate", "/problems/save-generated"]
	assert requests[0][1]["exercise"]["params"]["promptTemplate"].startswith("Write a")
	assert requests[1][1]["module"]["slug"] == "chem-101"
	assert requests[0][2] == "Bearer tok"


def test_failed_save_does_not_fail_generation(make_exercise, module_context):
	def handler(request: httpx.Request) -> httpx.Response:
		if request.url.path == "/problems/generate":
			return httpx.Response(200, json={"problem": problem_data("true-false")})
		return httpx.Response(500, json={"ok": False, "error": "storage offline"})

	problem = _run(handler, lambda c: c.generate(make_exercise("true-false"), module_context))
	assert problem.id == "p-tf"


def test_generation_error_is_raised(make_exercise):
	def handler(request: httpx.Request) -> httpx.Response:
		return httpx.Response(400, json={"ok": False, "error": "Language model did not return valid JSON"})

	with pytest.raises(EngineError, match="valid JSON"):
		_run(handler, lambda c: c.generate(make_exercise("matching")))


def test_grade_without_problem_makes_no_request():
	calls = []

	def handler(request: httpx.Request) -> httpx.Response:
		calls.append(request)
		return httpx.Response(200, json={})

	with pytest.raises(GradingInputError, match=NO_PROBLEM_MESSAGE):
		_run(handler, lambda c: c.grade(None, "b"))
	assert calls == []


def test_grade_posts_submission(make_problem):
	def handler(request: httpx.Request) -> httpx.Response:
		body = json.loads(request.content)
		assert body["submission"] == {"answer": ["item-2", "item-1", "item-3"]}
		assert body["problem"]["id"] == "p-order"
		return httpx.Response(200, json={"correct": False, "feedback": "Close.", "details": {"correctPositions": 1}})

	result = _run(handler, lambda c: c.grade(make_problem("ordering"), ["item-2", "item-1", "item-3"]))
	assert result.correct is False
	assert result.details == {"correctPositions": 1}


def test_load_existing(make_problem):
	def handler(request: httpx.Request) -> httpx.Response:
		assert request.url.params["moduleSlug"] == "chem-101"
		return httpx.Response(200, json={"problems": [{
			"id": "p-mc",
			"problem": problem_data("multiple-choice"),
			"createdAt": "2024-05-01T12:00:00",
			"attemptCount": 2,
			"isAttempted": True,
			"lastCorrect": True,
		}]})

	existing = _run(handler, lambda c: c.load_existing("chem-101", "ex-1"))
	assert existing[0].attempt_count == 2
	assert existing[0].last_correct is True
