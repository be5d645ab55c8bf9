"""Async client for the problem endpoints, following the page-side runner flow:
generate, save the generated problem for reuse, then grade submissions."""

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import EngineError, GradingInputError
from .grading import NO_PROBLEM_MESSAGE
from .schemas import ExerciseSpec, ExistingProblem, GradeResult, ModuleContext, ProblemInstance, Submission

logger = logging.getLogger(__name__)


class PracticeClient:
	def __init__(
		self,
		base_url: str,
		token: Optional[str] = None,
		*,
		timeout: float = 60.0,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		headers = {"Authorization": f"Bearer {token}"} if token else {}
		self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

	async def aclose(self) -> None:
		await self._client.aclose()

	async def __aenter__(self) -> "PracticeClient":
		return self

	async def __aexit__(self, *exc_info: Any) -> None:
		await self.aclose()

	async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
		r = await self._client.request(method, path, **kwargs)
		try:
			data = r.json()
		except ValueError:
			data = {}
		if r.is_error or (isinstance(data, dict) and data.get("ok") is False):
			message = data.get("error") or data.get("detail") if isinstance(data, dict) else None
			raise EngineError(message or f"Request failed with status {r.status_code}")
		return data

	async def generate(
		self,
		exercise: ExerciseSpec,
		module: Optional[ModuleContext] = None,
		*,
		require_context: Optional[bool] = None,
		save: bool = True,
	) -> ProblemInstance:
		body: Dict[str, Any] = {"exercise": exercise.to_wire()}
		if module is not None:
			body["module"] = module.to_wire()
		if require_context is not None:
			body["requireContext"] = require_context
		data = await self._request("POST", "/problems/generate", json=body)
		problem = ProblemInstance.model_validate(data["problem"])
		if save and module is not None:
			await self.save_generated(problem, exercise, module)
		return problem

	async def save_generated(self, problem: ProblemInstance, exercise: ExerciseSpec, module: ModuleContext) -> bool:
		"""Store a generated problem for later reuse. Failures only log."""
		try:
			await self._request("POST", "/problems/save-generated", json={
				"problem": problem.to_wire(),
				"exercise": exercise.to_wire(),
				"module": module.to_wire(),
			})
		except (EngineError, httpx.HTTPError) as err:
			logger.warning("Could not save generated problem %s: %s", problem.id, err)
			return False
		return True

	async def grade(
		self,
		problem: Optional[ProblemInstance],
		answer: Any,
		*,
		exercise: Optional[ExerciseSpec] = None,
		module: Optional[ModuleContext] = None,
	) -> GradeResult:
		if problem is None:
			raise GradingInputError(NO_PROBLEM_MESSAGE)
		body: Dict[str, Any] = {
			"engine": problem.engine,
			"problem": problem.to_wire(),
			"submission": Submission(answer=answer).to_wire(),
		}
		if exercise is not None:
			body["exercise"] = exercise.to_wire()
		if module is not None:
			body["module"] = module.to_wire()
		data = await self._request("POST", "/problems/grade", json=body)
		return GradeResult.model_validate(data)

	async def load_existing(self, module_slug: str, exercise_slug: str) -> List[ExistingProblem]:
		data = await self._request(
			"GET",
			"/problems/existing",
			params={"moduleSlug": module_slug, "exerciseSlug": exercise_slug},
		)
		return [ExistingProblem.model_validate(item) for item in data.get("problems", [])]
