import pytest

from app.errors import ContractViolationError
from app.normalizer import BLANK_GLYPH, coerce_block, normalize_draft
from app.schemas import ExerciseKind

from conftest import problem_data


def test_string_stem_becomes_markdown_block():
	problem = normalize_draft(problem_data("multiple-choice", stem=["What is 2 + 2?"]))
	assert problem.stem[0].type == "md"
	assert problem.stem[0].value == "What is 2 + 2?"


def test_block_types_are_canonicalized():
	assert coerce_block({"type": "latex", "value": "x^2"}) == {"type": "formula", "value": "x^2"}
	assert coerce_block({"type": "text", "text": "plain"}) == {"type": "text", "value": "plain"}
	assert coerce_block({"type": "paragraph", "content": "body"}) == {"type": "md", "value": "body"}
	assert coerce_block({"type": "md"}) is None
	assert coerce_block(42) is None


def test_unusable_blocks_are_dropped_from_stem():
	problem = normalize_draft(problem_data("multiple-choice", stem=[{"type": "md"}, "Keep me"]))
	assert [b.value for b in problem.stem] == ["Keep me"]


def test_empty_stem_is_rejected():
	with pytest.raises(ContractViolationError):
		normalize_draft(problem_data("multiple-choice", stem=[]))
	with pytest.raises(ContractViolationError):
		normalize_draft(problem_data("multiple-choice", stem=[{"type": "md"}]))


def test_missing_choice_labels_are_lettered_in_order():
	draft = problem_data(
		"multiple-choice",
		choices=[{"id": f"c{i}", "text": str(i)} for i in range(4)],
		engineState={"correctChoiceId": "c2"},
	)
	problem = normalize_draft(draft)
	assert [c.label for c in problem.choices] == ["A", "B", "C", "D"]


def test_missing_choice_ids_are_generated_and_key_resolved_by_label():
	draft = problem_data(
		"multiple-choice",
		choices=[{"text": "3"}, {"text": "4"}],
		engineState={"correctChoiceId": "B"},
	)
	problem = normalize_draft(draft)
	ids = [c.id for c in problem.choices]
	assert len(set(ids)) == 2
	assert problem.engine_state["correctChoiceId"] == ids[1]


def test_blank_defaults_are_filled():
	draft = problem_data("fill-in-the-blank", blanks=[{}, {"id": "blank-2", "position": 5}])
	problem = normalize_draft(draft)
	first, second = problem.blanks
	assert first.id == "blank-1"
	assert first.label == BLANK_GLYPH
	assert first.position == 0
	assert first.user_answer == ""
	assert first.is_correct is False
	assert first.hints == []
	assert second.position == 5


def test_blanks_are_derived_from_answer_keys_when_absent():
	draft = problem_data("fill-in-the-blank", engineState={"fillBlankAnswers": {"blank-1": 42, "blank-2": "France"}})
	draft.pop("blanks")
	problem = normalize_draft(draft)
	assert [b.id for b in problem.blanks] == ["blank-1", "blank-2"]
	assert problem.engine_state["fillBlankAnswers"]["blank-1"] == "42"


def test_matching_pairs_accept_left_right_aliases():
	draft = problem_data("matching", matchingPairs=[{"left": "H2O", "right": "Water"}, {"left": "NaCl", "right": "Salt"}])
	problem = normalize_draft(draft)
	assert [(p.id, p.left_item, p.right_item) for p in problem.matching_pairs] == [
		("pair-1", "H2O", "Water"),
		("pair-2", "NaCl", "Salt"),
	]


def test_duplicate_left_items_are_rejected():
	draft = problem_data("matching", matchingPairs=[
		{"id": "pair-1", "leftItem": "H2O", "rightItem": "Water"},
		{"id": "pair-2", "leftItem": "H2O", "rightItem": "Ice"},
	])
	with pytest.raises(ContractViolationError):
		normalize_draft(draft)


def test_true_false_key_fills_missing_correct_answer():
	draft = problem_data("true-false", trueFalseData={"statement": "Fish can fly."}, engineState={"trueFalseAnswer": False})
	problem = normalize_draft(draft)
	assert problem.true_false_data.correct_answer is False
	assert problem.engine_state["trueFalseAnswer"] is False


def test_true_false_without_any_key_defaults_to_false():
	draft = problem_data("true-false", trueFalseData={"statement": "Fish can fly."}, engineState={})
	problem = normalize_draft(draft)
	assert problem.true_false_data.correct_answer is False
	assert problem.engine_state["trueFalseAnswer"] is False


def test_ordering_positions_follow_correct_order():
	draft = problem_data(
		"ordering",
		orderingItems=[{"id": "b", "text": "Second"}, {"id": "a", "text": "First"}],
		engineState={"correctOrder": ["a", "b"]},
	)
	problem = normalize_draft(draft)
	positions = {item.id: item.correct_position for item in problem.ordering_items}
	assert positions == {"a": 0, "b": 1}
	assert problem.correct_order() == ["a", "b"]


def test_exercise_kind_wins_and_foreign_payloads_are_dropped():
	draft = problem_data("true-false", kind="multiple-choice", choices=[{"id": "x", "text": "noise"}])
	problem = normalize_draft(draft, kind=ExerciseKind.TRUE_FALSE)
	assert problem.kind is ExerciseKind.TRUE_FALSE
	assert problem.choices is None
	assert problem.true_false_data is not None


def test_unknown_kind_is_rejected():
	with pytest.raises(ContractViolationError):
		normalize_draft(problem_data("multiple-choice", kind="essay"))


def test_answer_key_must_reference_a_choice():
	with pytest.raises(ContractViolationError):
		normalize_draft(problem_data("multiple-choice", engineState={"correctChoiceId": "z"}))


def test_missing_payload_is_rejected():
	draft = problem_data("ordering")
	draft.pop("orderingItems")
	with pytest.raises(ContractViolationError):
		normalize_draft(draft)


@pytest.mark.parametrize("kind", [k.value for k in ExerciseKind])
def test_normalizing_a_canonical_problem_is_a_no_op(kind):
	problem = normalize_draft(problem_data(kind))
	assert normalize_draft(problem.to_wire()) == problem


@pytest.mark.parametrize("kind", [k.value for k in ExerciseKind])
def test_canonical_instances_survive_normalization_unchanged(make_problem, kind):
	canonical = make_problem(kind)
	assert normalize_draft(canonical.to_wire()) == canonical


def test_learner_state_fields_are_kept():
	matching = normalize_draft(problem_data("matching", matchingPairs=[
		{"id": "pair-1", "leftItem": "H2O", "rightItem": "Water", "userMatch": "Salt", "isCorrect": False},
	]))
	assert matching.matching_pairs[0].user_match == "Salt"
	assert matching.matching_pairs[0].is_correct is False

	ordering = normalize_draft(problem_data("ordering", orderingItems=[
		{"id": "item-1", "text": "Boil water", "correctPosition": 0, "userPosition": 2, "isCorrect": False},
		{"id": "item-2", "text": "Add pasta", "correctPosition": 1},
		{"id": "item-3", "text": "Drain", "correctPosition": 2},
	]))
	assert ordering.ordering_items[0].user_position == 2
	assert ordering.ordering_items[1].user_position is None

	true_false = normalize_draft(problem_data("true-false", trueFalseData={
		"statement": "Water boils at 100 C at sea level.",
		"correctAnswer": True,
		"userAnswer": True,
		"isCorrect": True,
	}))
	assert true_false.true_false_data.user_answer is True
	assert true_false.true_false_data.explanation is None


@pytest.mark.parametrize("order", [7, True, "item-1", ["item-1", 2, "item-3"]])
def test_malformed_correct_order_is_a_contract_violation(order):
	with pytest.raises(ContractViolationError):
		normalize_draft(problem_data("ordering", engineState={"correctOrder": order}))
