"""Turn a loosely-shaped model draft into a canonical ``ProblemInstance``.

Two stages: ``ProblemDraft`` accepts whatever structure the model plausibly
returns, then the ``_coerce_*`` helpers fill defaults and rewrite aliases so
the strict contract in :mod:`app.schemas` can validate it. Validation failure
rejects the whole draft.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ContractViolationError
from .schemas import KIND_PAYLOAD_FIELD, ExerciseKind, ProblemInstance

logger = logging.getLogger(__name__)

BLANK_GLYPH = "_____"

_FORMULA_TYPES = {"latex", "formula"}
_BLOCK_VALUE_KEYS = ("value", "text", "content")


class ProblemDraft(BaseModel):
	"""Permissive acceptor for model output; only the stem is mandatory."""

	model_config = ConfigDict(extra="allow", populate_by_name=True)

	id: Optional[Any] = None
	engine: Optional[Any] = None
	kind: Optional[Any] = None
	stem: List[Any] = Field(min_length=1)
	hints: Optional[List[Any]] = None
	choices: Optional[List[Dict[str, Any]]] = None
	blanks: Optional[List[Dict[str, Any]]] = None
	matching_pairs: Optional[List[Dict[str, Any]]] = Field(default=None, alias="matchingPairs")
	true_false_data: Optional[Dict[str, Any]] = Field(default=None, alias="trueFalseData")
	ordering_items: Optional[List[Dict[str, Any]]] = Field(default=None, alias="orderingItems")
	engine_state: Optional[Dict[str, Any]] = Field(default=None, alias="engineState")
	ui: Optional[Dict[str, Any]] = None


def _is_number(value: Any) -> bool:
	return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_int(value: Any, default: int) -> int:
	if _is_number(value) and float(value).is_integer():
		return int(value)
	return default


def _as_str(value: Any, default: str = "") -> str:
	return value if isinstance(value, str) else default


def _keep_typed(source: Mapping[str, Any], target: Dict[str, Any], key: str, kind: type) -> None:
	"""Copy an optional learner-state field when it already has the canonical type."""
	value = source.get(key)
	if kind is int:
		if _is_number(value) and float(value).is_integer():
			target[key] = int(value)
	elif isinstance(value, kind):
		target[key] = value


def _alpha(index: int) -> str:
	return chr(65 + index)


def coerce_block(block: Any) -> Optional[Dict[str, str]]:
	"""Return a ``{type, value}`` block, or ``None`` when nothing usable is present."""
	if isinstance(block, str):
		return {"type": "md", "value": block}
	if not isinstance(block, Mapping):
		return None
	raw_type = block.get("type")
	raw_type = raw_type.lower() if isinstance(raw_type, str) else "md"
	if raw_type in _FORMULA_TYPES:
		block_type = "formula"
	elif raw_type == "text":
		# canonical type, kept as is
		block_type = "text"
	else:
		block_type = "md"
	for key in _BLOCK_VALUE_KEYS:
		value = block.get(key)
		if isinstance(value, str):
			return {"type": block_type, "value": value}
	return None


def coerce_blocks(blocks: Any) -> List[Dict[str, str]]:
	if not isinstance(blocks, list):
		return []
	coerced = (coerce_block(b) for b in blocks)
	return [b for b in coerced if b is not None]


def coerce_choices(choices: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
	return [
		{
			"id": c["id"] if isinstance(c.get("id"), str) else uuid.uuid4().hex,
			"label": c["label"] if isinstance(c.get("label"), str) else _alpha(i),
			"text": _as_str(c.get("text")),
		}
		for i, c in enumerate(choices)
	]


def coerce_blanks(blanks: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
	out = []
	for i, b in enumerate(blanks):
		hints = b.get("hints")
		out.append({
			"id": b["id"] if isinstance(b.get("id"), str) else f"blank-{i + 1}",
			"label": b["label"] if isinstance(b.get("label"), str) else BLANK_GLYPH,
			"position": _as_int(b.get("position"), i),
			"userAnswer": _as_str(b.get("userAnswer")),
			"isCorrect": b["isCorrect"] if isinstance(b.get("isCorrect"), bool) else False,
			"feedback": _as_str(b.get("feedback")),
			"hints": [h for h in hints if isinstance(h, str)] if isinstance(hints, list) else [],
		})
	return out


def coerce_matching_pairs(pairs: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
	out = []
	for i, p in enumerate(pairs):
		left = p.get("leftItem")
		right = p.get("rightItem")
		pair: Dict[str, Any] = {
			"id": p["id"] if isinstance(p.get("id"), str) else f"pair-{i + 1}",
			"leftItem": left if isinstance(left, str) else _as_str(p.get("left")),
			"rightItem": right if isinstance(right, str) else _as_str(p.get("right")),
		}
		_keep_typed(p, pair, "category", str)
		_keep_typed(p, pair, "userMatch", str)
		_keep_typed(p, pair, "isCorrect", bool)
		out.append(pair)
	return out


def coerce_true_false(data: Mapping[str, Any], engine_state: Dict[str, Any]) -> Dict[str, Any]:
	answer = data.get("correctAnswer")
	key = engine_state.get("trueFalseAnswer")
	if not isinstance(answer, bool):
		answer = key if isinstance(key, bool) else False
	if not isinstance(key, bool):
		engine_state["trueFalseAnswer"] = answer
	coerced: Dict[str, Any] = {"statement": _as_str(data.get("statement")), "correctAnswer": answer}
	for field, kind in (("explanation", str), ("userAnswer", bool), ("isCorrect", bool)):
		_keep_typed(data, coerced, field, kind)
	return coerced


def coerce_ordering_items(items: List[Mapping[str, Any]], engine_state: Mapping[str, Any]) -> List[Dict[str, Any]]:
	order = engine_state.get("correctOrder")
	order_index = {v: n for n, v in enumerate(order) if isinstance(v, str)} if isinstance(order, list) else {}
	out = []
	for i, item in enumerate(items):
		item_id = item["id"] if isinstance(item.get("id"), str) else f"item-{i + 1}"
		coerced: Dict[str, Any] = {
			"id": item_id,
			"text": _as_str(item.get("text")),
			"correctPosition": _as_int(item.get("correctPosition"), order_index.get(item_id, i)),
		}
		_keep_typed(item, coerced, "category", str)
		_keep_typed(item, coerced, "userPosition", int)
		_keep_typed(item, coerced, "isCorrect", bool)
		out.append(coerced)
	return out


def _coerce_fill_blank_answers(engine_state: Dict[str, Any]) -> None:
	answers = engine_state.get("fillBlankAnswers")
	if not isinstance(answers, Mapping):
		return
	engine_state["fillBlankAnswers"] = {
		str(k): (str(v) if _is_number(v) else v) for k, v in answers.items()
	}


def _resolve_choice_key(choices: List[Dict[str, Any]], engine_state: Dict[str, Any]) -> None:
	key = engine_state.get("correctChoiceId")
	if not isinstance(key, str) or any(c["id"] == key for c in choices):
		return
	for choice in choices:
		if choice["label"].strip().lower() == key.strip().lower():
			engine_state["correctChoiceId"] = choice["id"]
			return


def _resolve_kind(draft: ProblemDraft, kind: Union[ExerciseKind, str, None]) -> ExerciseKind:
	candidate = kind if kind is not None else draft.kind
	try:
		return ExerciseKind(candidate)
	except ValueError:
		raise ContractViolationError(f"Unknown exercise kind: {candidate!r}") from None


def normalize_draft(
	draft: Union[ProblemDraft, Mapping[str, Any]],
	*,
	kind: Union[ExerciseKind, str, None] = None,
) -> ProblemInstance:
	"""Coerce ``draft`` into a validated ``ProblemInstance``.

	``kind`` (normally the exercise's kind) wins over whatever the draft claims.
	Raises ``ContractViolationError`` when the draft cannot be reconciled.
	"""
	if not isinstance(draft, ProblemDraft):
		try:
			draft = ProblemDraft.model_validate(draft)
		except ValidationError as exc:
			raise ContractViolationError(f"Problem draft is malformed: {exc}") from exc

	resolved_kind = _resolve_kind(draft, kind)
	engine_state: Dict[str, Any] = dict(draft.engine_state or {})

	canonical: Dict[str, Any] = {
		"id": draft.id if isinstance(draft.id, str) and draft.id else uuid.uuid4().hex,
		"engine": draft.engine if isinstance(draft.engine, str) and draft.engine else "llm",
		"kind": resolved_kind.value,
		"stem": coerce_blocks(draft.stem),
	}
	hints = coerce_blocks(draft.hints)
	if hints:
		canonical["hints"] = hints
	if isinstance(draft.ui, dict):
		canonical["ui"] = draft.ui

	if resolved_kind is ExerciseKind.MULTIPLE_CHOICE and draft.choices is not None:
		choices = coerce_choices(draft.choices)
		_resolve_choice_key(choices, engine_state)
		canonical["choices"] = choices
	elif resolved_kind is ExerciseKind.FILL_IN_THE_BLANK:
		_coerce_fill_blank_answers(engine_state)
		blanks = draft.blanks
		if blanks is None and isinstance(engine_state.get("fillBlankAnswers"), dict):
			blanks = [{"id": blank_id} for blank_id in engine_state["fillBlankAnswers"]]
		if blanks is not None:
			canonical["blanks"] = coerce_blanks(blanks)
	elif resolved_kind is ExerciseKind.MATCHING and draft.matching_pairs is not None:
		canonical["matchingPairs"] = coerce_matching_pairs(draft.matching_pairs)
	elif resolved_kind is ExerciseKind.TRUE_FALSE and draft.true_false_data is not None:
		canonical["trueFalseData"] = coerce_true_false(draft.true_false_data, engine_state)
	elif resolved_kind is ExerciseKind.ORDERING and draft.ordering_items is not None:
		canonical["orderingItems"] = coerce_ordering_items(draft.ordering_items, engine_state)

	dropped = [
		name for k, name in KIND_PAYLOAD_FIELD.items()
		if k is not resolved_kind and getattr(draft, name)
	]
	if dropped:
		logger.debug("Dropping payloads %s from %s draft", dropped, resolved_kind.value)

	canonical["engineState"] = engine_state
	try:
		return ProblemInstance.model_validate(canonical)
	except ValidationError as exc:
		raise ContractViolationError(f"Generated problem failed validation: {exc}") from exc
