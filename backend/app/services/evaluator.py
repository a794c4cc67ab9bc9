"""Per-type answer evaluation.

Every question type is a frozen dataclass in the closed `QuestionSpec` union.
`evaluate` dispatches with `match` and ends in `assert_never`, so a type
checker flags any variant added to the union but not handled here.

Evaluation is pure: no I/O, no clock, no randomness. An absent answer is a
scoring outcome (incorrect, zero points), never an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union, assert_never

from app.models.assessment import Question, QuestionType


@dataclass(frozen=True)
class MultipleChoice:
    points: int
    correct: int | frozenset[int]

    @property
    def multiple(self) -> bool:
        return isinstance(self.correct, frozenset)


@dataclass(frozen=True)
class TrueFalse:
    points: int
    correct: bool


@dataclass(frozen=True)
class ShortAnswer:
    points: int
    accepted: tuple[str, ...]


@dataclass(frozen=True)
class FillBlank:
    points: int
    blanks: tuple[str, ...]


@dataclass(frozen=True)
class Essay:
    points: int


QuestionSpec = Union[MultipleChoice, TrueFalse, ShortAnswer, FillBlank, Essay]

MANUAL_ONLY_TYPES = frozenset({QuestionType.essay})


@dataclass(frozen=True)
class Evaluation:
    is_correct: bool | None
    points_earned: float
    requires_manual_grading: bool = False


def _normalize_text(value: str) -> str:
    return value.strip().casefold()


def _is_index(value: Any) -> bool:
    # bool is an int subclass; True must not select option 1.
    return isinstance(value, int) and not isinstance(value, bool)


def is_blank(answer: Any) -> bool:
    if answer is None:
        return True
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, (list, tuple, set, frozenset, dict)):
        return len(answer) == 0
    return False


def _build_spec(qtype: QuestionType, points: int, correct: Any) -> QuestionSpec:
    if points <= 0:
        raise ValueError("question points must be positive")

    if qtype == QuestionType.multiple_choice:
        if _is_index(correct):
            return MultipleChoice(points=points, correct=int(correct))
        if isinstance(correct, (list, tuple)) and correct and all(_is_index(x) for x in correct):
            return MultipleChoice(points=points, correct=frozenset(int(x) for x in correct))
        raise ValueError("multiple_choice expects an option index or a non-empty list of indices")

    if qtype == QuestionType.true_false:
        if not isinstance(correct, bool):
            raise ValueError("true_false expects a boolean")
        return TrueFalse(points=points, correct=correct)

    if qtype == QuestionType.short_answer:
        items = [correct] if isinstance(correct, str) else correct
        if not isinstance(items, (list, tuple)) or not items or not all(isinstance(x, str) for x in items):
            raise ValueError("short_answer expects a non-empty list of strings")
        return ShortAnswer(points=points, accepted=tuple(_normalize_text(x) for x in items))

    if qtype == QuestionType.fill_blank:
        if not isinstance(correct, (list, tuple)) or not correct or not all(isinstance(x, str) for x in correct):
            raise ValueError("fill_blank expects a non-empty list of strings")
        return FillBlank(points=points, blanks=tuple(_normalize_text(x) for x in correct))

    if qtype == QuestionType.essay:
        return Essay(points=points)

    raise ValueError(f"unsupported question type: {qtype}")


def spec_from_snapshot(item: dict[str, Any]) -> QuestionSpec:
    return _build_spec(QuestionType(item["type"]), int(item["points"]), item.get("correct_answers"))


def spec_from_question(question: Question) -> QuestionSpec:
    return _build_spec(question.type, int(question.points), question.correct_answers)


def _evaluate_multiple_choice(spec: MultipleChoice, answer: Any) -> bool:
    if spec.multiple:
        if not isinstance(answer, (list, tuple)) or not all(_is_index(x) for x in answer):
            return False
        return len(answer) == len(spec.correct) and frozenset(answer) == spec.correct
    return _is_index(answer) and answer == spec.correct


def _evaluate_fill_blank(spec: FillBlank, answer: Any) -> bool:
    if not isinstance(answer, (list, tuple)) or len(answer) != len(spec.blanks):
        return False
    return all(isinstance(a, str) and _normalize_text(a) == b for a, b in zip(answer, spec.blanks))


def evaluate(spec: QuestionSpec, answer: Any) -> Evaluation:
    if is_blank(answer):
        return Evaluation(is_correct=False, points_earned=0.0)

    match spec:
        case MultipleChoice():
            ok = _evaluate_multiple_choice(spec, answer)
        case TrueFalse():
            ok = isinstance(answer, bool) and answer == spec.correct
        case ShortAnswer():
            ok = isinstance(answer, str) and _normalize_text(answer) in spec.accepted
        case FillBlank():
            ok = _evaluate_fill_blank(spec, answer)
        case Essay():
            return Evaluation(is_correct=None, points_earned=0.0, requires_manual_grading=True)
        case _:
            assert_never(spec)

    return Evaluation(is_correct=ok, points_earned=float(spec.points) if ok else 0.0)


def snapshot_question(question: Question) -> dict[str, Any]:
    """Serializable copy of a question, validated, as stored on the attempt."""
    spec_from_question(question)
    return {
        "id": str(question.id),
        "type": question.type.value,
        "prompt": question.prompt,
        "points": int(question.points),
        "options": list(question.options) if question.options is not None else None,
        "correct_answers": question.correct_answers,
        "explanation": question.explanation,
    }


def public_question(item: dict[str, Any]) -> dict[str, Any]:
    spec = spec_from_snapshot(item)
    return {
        "id": item["id"],
        "type": item["type"],
        "prompt": item.get("prompt") or "",
        "points": int(item["points"]),
        "options": item.get("options"),
        "multiple": isinstance(spec, MultipleChoice) and spec.multiple,
        "blanks": len(spec.blanks) if isinstance(spec, FillBlank) else None,
    }
