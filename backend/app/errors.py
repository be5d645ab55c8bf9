"""Exceptions raised by the generation and grading engine.

Routes turn any ``EngineError`` into a 400 ``{"ok": false, "error": ...}``
payload. Persistence failures never surface here; the attempt recorder logs
and swallows them.
"""


class EngineError(Exception):
	"""Base class for engine failures that are reported to the caller."""


class UpstreamModelError(EngineError):
	"""The language model call failed or returned unusable output."""


class ContractViolationError(EngineError):
	"""A draft could not be reconciled with the canonical problem contract."""


class GenerationContextRequiredError(EngineError):
	"""Contextual generation was requested but no module context resolved."""

	def __init__(self, module_slug: str | None = None) -> None:
		self.module_slug = module_slug
		where = f" for module '{module_slug}'" if module_slug else ""
		super().__init__(
			f"Generation context is required{where}. "
			"This module may have been created before context capture was implemented."
		)


class GradingInputError(EngineError):
	"""The grading request cannot be evaluated (missing problem, wrong answer shape)."""
