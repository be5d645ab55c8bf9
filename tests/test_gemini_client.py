import asyncio
import json

import httpx
import pytest

from app import gemini_client
from app.errors import UpstreamModelError
from app.gemini_client import GeminiClient, extract_json_object, get_llm
from app.schemas import GradeResult
from app.settings import settings


def _gemini_reply(payload) -> httpx.Response:
	text = payload if isinstance(payload, str) else json.dumps(payload)
	return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _evaluate(client: GeminiClient):
	async def run():
		try:
			return await client.evaluate(GradeResult, system="grade", user="answer")
		finally:
			await client.aclose()
	return asyncio.run(run())


@pytest.fixture(autouse=True)
def no_fallback(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", None)


@pytest.mark.parametrize("text", [
	'{"correct": true}',
	'```json\n{"correct": true}\n```',
	'Here you go: {"correct": true} Hope that helps.',
])
def test_extract_json_object_tolerates_wrapping(text):
	assert extract_json_object(text) == {"correct": True}


def test_extract_json_object_rejects_prose():
	with pytest.raises(UpstreamModelError):
		extract_json_object("I cannot help with that.")


def test_evaluate_sends_json_mode_request():
	seen = {}

	def handler(request: httpx.Request) -> httpx.Response:
		seen["key"] = request.url.params.get("key")
		seen["body"] = json.loads(request.content)
		return _gemini_reply({"correct": True, "feedback": "Nice"})

	result = _evaluate(GeminiClient("k-1", transport=httpx.MockTransport(handler)))

	assert result == GradeResult(correct=True, feedback="Nice")
	assert seen["key"] == "k-1"
	assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"
	assert seen["body"]["systemInstruction"]["parts"][0]["text"] == "grade"


def test_evaluate_uses_first_element_of_an_array():
	transport = httpx.MockTransport(lambda request: _gemini_reply([{"correct": False}, {"correct": True}]))
	assert _evaluate(GeminiClient("k", transport=transport)).correct is False


def test_schema_mismatch_is_an_upstream_error():
	transport = httpx.MockTransport(lambda request: _gemini_reply({"correct": "maybe"}))
	with pytest.raises(UpstreamModelError):
		_evaluate(GeminiClient("k", transport=transport))


def test_http_failure_is_an_upstream_error():
	transport = httpx.MockTransport(lambda request: httpx.Response(503, text="overloaded"))
	with pytest.raises(UpstreamModelError):
		_evaluate(GeminiClient("k", transport=transport))


def test_openrouter_fallback_is_used_when_gemini_fails(monkeypatch):
	monkeypatch.setattr(settings, "openrouter_api_key", "or-key")
	hosts = []

	def handler(request: httpx.Request) -> httpx.Response:
		hosts.append(request.url.host)
		if request.url.host == "openrouter.ai":
			return httpx.Response(200, json={"choices": [{"message": {"content": '{"correct": true}'}}]})
		return httpx.Response(500, text="boom")

	result = _evaluate(GeminiClient("k", transport=httpx.MockTransport(handler)))

	assert result.correct is True
	assert hosts == ["generativelanguage.googleapis.com", "openrouter.ai"]


def test_missing_api_key_is_reported(monkeypatch):
	monkeypatch.setattr(settings, "gemini_api_key", None)
	monkeypatch.setattr(gemini_client, "_llm_task", None)
	with pytest.raises(ValueError):
		GeminiClient()
	with pytest.raises(UpstreamModelError):
		asyncio.run(get_llm())
	assert gemini_client._llm_task is None


def test_get_llm_builds_the_client_once(monkeypatch):
	built = []

	async def fake_build():
		await asyncio.sleep(0)
		built.append(object())
		return built[-1]

	monkeypatch.setattr(gemini_client, "_llm_task", None)
	monkeypatch.setattr(gemini_client, "_build_llm", fake_build)

	async def run():
		return await asyncio.gather(get_llm(), get_llm(), get_llm())

	first, second, third = asyncio.run(run())
	assert first is second is third
	assert len(built) == 1
