from __future__ import annotations
import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .errors import UpstreamModelError
from .settings import settings

logger = logging.getLogger(__name__)

_T = TypeVar("_T", bound=BaseModel)


def extract_json_object(text: str) -> Any:
	"""Parse model text as JSON, tolerating code fences and surrounding prose."""
	try:
		return json.loads(text)
	except Exception:
		pass
	code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
	if code_block:
		try:
			return json.loads(code_block.group(1))
		except Exception:
			pass
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last != -1 and last > first:
		try:
			return json.loads(text[first : last + 1])
		except Exception:
			pass
	raise UpstreamModelError("Language model did not return valid JSON")


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		timeout = settings.gemini_timeout_seconds
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=timeout, transport=transport)

	async def generate_json(self, *, system: str, user: str) -> str:
		"""Run one JSON-mode completion and return the raw response text."""
		payload: Dict[str, Any] = {
			"contents": [{"role": "user", "parts": [{"text": user}]}],
			"generationConfig": {
				"temperature": settings.gemini_temperature,
				"responseMimeType": "application/json",
				"maxOutputTokens": settings.gemini_max_output_tokens,
			},
		}
		if system:
			payload["systemInstruction"] = {"parts": [{"text": system}]}
		messages = [{"role": "user", "content": user}]
		if system:
			messages.insert(0, {"role": "system", "content": system})
		return await self._post_payload(payload, fallback_messages=messages)

	async def evaluate(self, schema: Type[_T], *, system: str, user: str) -> _T:
		"""Ask the model for JSON and validate it against ``schema``.

		Any transport failure, unparseable text or schema mismatch raises
		``UpstreamModelError``. There is no retry here.
		"""
		try:
			raw = await self.generate_json(system=system, user=user)
		except (httpx.HTTPError, RuntimeError) as err:
			raise UpstreamModelError(f"Language model call failed: {err}") from err
		data = extract_json_object(raw)
		if isinstance(data, list) and data and isinstance(data[0], dict):
			logger.warning("Model returned a JSON array; using its first element")
			data = data[0]
		try:
			return schema.model_validate(data)
		except ValidationError as err:
			raise UpstreamModelError(f"Language model output did not match {schema.__name__}: {err}") from err

	async def _post_payload(self, payload: Dict[str, Any], *, fallback_messages: List[Dict[str, str]]) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[Exception] = None
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPError as http_err:
			last_error = http_err
		if last_error is None:
			try:
				data = r.json()
				return data["candidates"][0]["content"]["parts"][0]["text"]
			except Exception:
				last_error = RuntimeError(f"Unexpected Gemini response: {r.text}")
		logger.warning("Gemini call failed: %s", last_error)
		if not self._fallback_enabled:
			raise last_error
		return await self._fallback_generate(fallback_messages, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, messages: List[Dict[str, str]], primary_error: Exception) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": messages,
			"temperature": settings.gemini_temperature,
			"response_format": {"type": "json_object"},
		}
		try:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except Exception as fallback_err:
			raise RuntimeError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err


# ---- Process-wide shared handle ----

_llm_task: Optional["asyncio.Future[GeminiClient]"] = None


async def _build_llm() -> GeminiClient:
	try:
		return GeminiClient()
	except ValueError as err:
		raise UpstreamModelError(str(err)) from err


async def get_llm() -> GeminiClient:
	"""Return the shared client, building it on first use.

	Concurrent first callers await the same construction; a failed build is
	forgotten so a later request can try again.
	"""
	global _llm_task
	# a handle built on another event loop cannot be awaited here
	if _llm_task is not None and _llm_task.get_loop() is not asyncio.get_running_loop():
		_llm_task = None
	if _llm_task is None:
		_llm_task = asyncio.ensure_future(_build_llm())
	task = _llm_task
	try:
		return await task
	except Exception:
		if _llm_task is task:
			_llm_task = None
		raise


async def close_llm() -> None:
	global _llm_task
	task, _llm_task = _llm_task, None
	if task is None:
		return
	try:
		client = await task
	except Exception:
		logger.debug("Shared model client was never built; nothing to close")
		return
	await client.aclose()
