from __future__ import annotations
import json
import re
from typing import Any, Dict, List, Optional

from .schemas import (
	ExerciseKind,
	ExerciseSpec,
	GenerationContext,
	GenerationHistory,
	ModuleContext,
	ProblemInstance,
	StructuredLesson,
	Submission,
)

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

_COMMON_RULES = [
	"CRITICAL: You MUST return exactly ONE JSON object, not an array.",
	"CRITICAL: The response must be a single JSON object with the exact structure specified in the user prompt.",
	'CRITICAL: For "stem" and "hints" arrays, each item MUST be: {"type": "md"|"formula", "value": "string"}',
	'CRITICAL: Use the key "value" exactly as specified.',
	"CRITICAL: Do not reveal solutions in the stem or hints; store canonical details in engineState.",
	"IMPORTANT: Create a completely unique problem. Use different numbers, scenarios, and contexts each time.",
]

_KIND_RULES: Dict[ExerciseKind, List[str]] = {
	ExerciseKind.MULTIPLE_CHOICE: [
		'IMPORTANT: Since this is a multiple-choice exercise, you MUST include a "choices" array with exactly 4 options labeled A, B, C, D.',
		'Each choice should have: { "id": "choice-a", "label": "A", "text": "choice text" }',
		"Include challenging distractors that test common misconceptions.",
		'CRITICAL: Store the correct choice ID in engineState as: { "correctChoiceId": "choice-a" }',
		"Only one choice should be correct. Make sure the correct choice matches the problem's answer.",
	],
	ExerciseKind.FILL_IN_THE_BLANK: [
		"IMPORTANT: Since this is a fill-in-the-blank exercise, create a sentence with 2-4 meaningful blanks.",
		"CRITICAL: Use exactly 5 underscores (_____) for each blank. Make all blanks the same length.",
		'CRITICAL: Return a blanks array: [{"id": "blank-1", "label": "_____", "position": 0}]',
		'CRITICAL: Store the correct answers in engineState as: { "fillBlankAnswers": {"blank-1": "answer1", "blank-2": "answer2"} }',
		'Example: "The capital of France is _____ and the capital of Germany is _____."',
	],
	ExerciseKind.MATCHING: [
		"IMPORTANT: Since this is a matching exercise, create 4-6 pairs of related concepts.",
		"Each pair should have a clear logical relationship. Make the connections meaningful.",
		'CRITICAL: Return a matchingPairs array with this exact structure: [{"leftItem": "concept1", "rightItem": "description1"}]',
		"Ensure all items can be uniquely matched; every leftItem must be distinct.",
	],
	ExerciseKind.TRUE_FALSE: [
		"IMPORTANT: Since this is a true/false exercise, create a clear, unambiguous statement.",
		"The statement should test a specific concept or fact. Avoid vague or complex statements.",
		'CRITICAL: Return trueFalseData as: {"statement": "...", "correctAnswer": true/false, "explanation": "..."}',
		'CRITICAL: Store the correct answer in engineState as: { "trueFalseAnswer": true/false }',
	],
	ExerciseKind.ORDERING: [
		"IMPORTANT: Since this is an ordering exercise, create 4-6 items that can be arranged in a logical sequence.",
		"The sequence should be chronological, procedural, hierarchical, or otherwise logical.",
		'CRITICAL: Return an orderingItems array with this exact structure: [{"id": "item-1", "text": "First step", "correctPosition": 0}]',
		'CRITICAL: Store the correct order in engineState as: { "correctOrder": ["item-1", "item-2", "item-3"] }',
		"List the items in a shuffled order; each item should be distinct and meaningful in the sequence.",
	],
	ExerciseKind.FREE_RESPONSE: [
		"IMPORTANT: Since this is a free-response exercise, ask an open question answerable in a few sentences.",
		"Store a model answer in engineState as: { \"referenceAnswer\": \"...\" }",
	],
}


def interpolate(template: str, values: Dict[str, Any]) -> str:
	"""Replace ``{{name}}`` placeholders; unknown names are left untouched."""

	def _sub(match: "re.Match[str]") -> str:
		name = match.group(1)
		if name not in values:
			return match.group(0)
		value = values[name]
		return value if isinstance(value, str) else json.dumps(value)

	return _PLACEHOLDER.sub(_sub, template)


def build_generation_system_prompt(kind: ExerciseKind) -> str:
	return "\n".join(_COMMON_RULES + _KIND_RULES[kind])


def _join(values: List[str]) -> str:
	return ", ".join(v for v in values if v)


def _context_variables(
	spec: ExerciseSpec,
	context: Optional[GenerationContext],
	lesson: Optional[StructuredLesson],
) -> Dict[str, Any]:
	variables: Dict[str, Any] = dict(spec.params.vars)
	if spec.difficulty:
		variables.setdefault("difficulty", spec.difficulty)
	if spec.seed is not None:
		variables.setdefault("seed", spec.seed)
	if context is not None:
		variables.update({
			"topic": context.topic,
			"audience": context.audience,
			"goals": _join(context.goals),
			"constraints": _join(context.constraints),
			"context": (
				f"This exercise is part of a {context.topic} module created for "
				f"{context.audience or 'general'} students. Learning goals include: {_join(context.goals) or 'n/a'}."
			),
		})
	if lesson is not None:
		concepts = _join([str(c.get("concept", "")) for c in lesson.key_concepts])
		variables.update({
			"lessonConcepts": concepts,
			"lessonExamples": _join([str(e.get("title", "")) for e in lesson.step_by_step_examples]),
			"lessonApplications": _join(lesson.real_world_applications),
			"lessonContext": (
				f"This exercise should incorporate concepts from the lesson: {lesson.introduction or ''}. "
				f"Key concepts include: {concepts}."
			),
		})
	return variables


def build_generation_user_prompt(
	spec: ExerciseSpec,
	module: Optional[ModuleContext] = None,
	context: Optional[GenerationContext] = None,
	lesson: Optional[StructuredLesson] = None,
	history: Optional[GenerationHistory] = None,
) -> str:
	variables = _context_variables(spec, context, lesson)
	kind = spec.kind.value
	lines: List[Optional[str]] = [
		"CRITICAL: The response must be a single JSON object with this exact structure:",
		"{",
		'  "engine": "llm",',
		f'  "kind": "{kind}",',
		'  "stem": [{"type": "md", "value": "Your problem text here"}, {"type": "formula", "value": "\\\\frac{x}{y}"}],',
		'  "engineState": {"key": "value"},',
		'  "hints": [{"type": "md", "value": "Hint text"}]',
		"}",
		"",
		f"Formatting hints: {spec.params.format_hints}" if spec.params.format_hints else None,
		f"Context: {variables['context']}" if "context" in variables else None,
		f"Lesson Context: {variables['lessonContext']}" if lesson is not None else None,
		f"Variables (JSON): {json.dumps(variables, indent=2, default=str)}",
		f"Module information: {json.dumps(module.to_wire(), indent=2)}" if module is not None else None,
		f"Lesson information: {json.dumps(lesson.to_wire(), indent=2)}" if lesson is not None else None,
		f"Difficulty: {spec.difficulty}" if spec.difficulty else None,
		f"Problem kind: {kind}",
	]
	if history is not None and (history.recent_scenarios or history.used_numbers):
		lines.extend([
			"",
			"Recently generated problems for this learner (do NOT repeat these scenarios):",
			*[f"- {scenario}" for scenario in history.recent_scenarios],
			f"Numbers already used: {history.used_numbers}" if history.used_numbers else None,
			f"Variation seed: {history.variation_seed}",
		])
	lines.extend([
		"",
		"IMPORTANT: Create a completely unique problem that fits the context above.",
		"IMPORTANT: Use the lesson concepts and examples to reinforce the learning objectives." if lesson is not None else None,
		"",
		f"Prompt to follow:\n{interpolate(spec.params.prompt_template, variables)}",
		"",
		"VALIDATION: Before responding, verify you are returning a single JSON object whose stem items use the \"value\" key.",
	])
	return "\n".join(line for line in lines if line is not None)


def build_grading_system_prompt() -> str:
	return "\n".join([
		"CRITICAL: You are a grading service. Return JSON only with this exact format:",
		"{",
		'  "correct": boolean,  // required: true if the answer meets the rubric, false otherwise',
		'  "feedback": string,  // brief explanation or encouragement',
		'  "details": object    // optional: additional grading details',
		"}",
		"CRITICAL: Do NOT return an array. Return exactly ONE JSON object.",
		"IMPORTANT: The 'correct' field must be either true or false, never null.",
		"",
		"FEEDBACK GUIDELINES:",
		"- Be encouraging and constructive",
		"- Point out what was done well",
		"- Gently correct misconceptions",
		"- Keep feedback concise (1-2 sentences)",
		"- Avoid revealing the complete solution unless the student got it completely wrong",
	])


def build_grading_user_prompt(
	problem: ProblemInstance,
	submission: Submission,
	spec: Optional[ExerciseSpec] = None,
	module: Optional[ModuleContext] = None,
) -> str:
	rubric = spec.params.grading_rubric if spec is not None and spec.params.grading_rubric else (
		"Grade according to the problem's canonical answer/state. Be concise."
	)
	lines = [
		"CRITICAL: You are grading one free-response exercise.",
		f"Module context (JSON): {json.dumps(module.to_wire(), indent=2)}" if module is not None else None,
		f"Rubric:\n{rubric}",
		f"Problem instance (JSON): {json.dumps(problem.to_wire(), indent=2)}",
		f"Student answer (JSON): {json.dumps(submission.answer)}",
		"",
		"Provide constructive feedback and grade based on completeness, accuracy, and understanding.",
		"Set correct=true if the answer demonstrates good understanding of the concept.",
		"CRITICAL: Return exactly ONE JSON object with the structure specified in the system prompt.",
	]
	return "\n".join(line for line in lines if line is not None)
