import pytest

from app.services.evaluator import (
    Essay,
    FillBlank,
    MultipleChoice,
    ShortAnswer,
    TrueFalse,
    evaluate,
    public_question,
    spec_from_snapshot,
)


def _item(qtype: str, correct, points: int = 5, **extra) -> dict:
    return {"id": "q1", "type": qtype, "prompt": "?", "points": points, "correct_answers": correct, **extra}


def test_multiple_choice_single_index():
    spec = spec_from_snapshot(_item("multiple_choice", 2, options=["a", "b", "c"]))
    assert spec == MultipleChoice(points=5, correct=2)

    assert evaluate(spec, 2).is_correct is True
    assert evaluate(spec, 2).points_earned == 5.0
    assert evaluate(spec, 1).is_correct is False
    assert evaluate(spec, 1).points_earned == 0.0


def test_multiple_choice_bool_is_not_an_index():
    spec = spec_from_snapshot(_item("multiple_choice", 1))
    assert evaluate(spec, True).is_correct is False


def test_multiple_choice_multi_select_needs_exact_set():
    spec = spec_from_snapshot(_item("multiple_choice", [0, 2]))
    assert spec.multiple is True

    assert evaluate(spec, [2, 0]).is_correct is True
    assert evaluate(spec, [0]).is_correct is False
    assert evaluate(spec, [0, 1, 2]).is_correct is False
    assert evaluate(spec, [0, 0, 2]).is_correct is False
    # No partial credit.
    assert evaluate(spec, [0]).points_earned == 0.0


def test_true_false_requires_boolean():
    spec = spec_from_snapshot(_item("true_false", False))
    assert isinstance(spec, TrueFalse)
    assert evaluate(spec, False).is_correct is True
    assert evaluate(spec, "false").is_correct is False
    assert evaluate(spec, 0).is_correct is False


def test_short_answer_trims_and_ignores_case():
    spec = spec_from_snapshot(_item("short_answer", ["Photosynthesis", "photo synthesis"]))
    assert isinstance(spec, ShortAnswer)
    assert evaluate(spec, "  PHOTOSYNTHESIS ").is_correct is True
    assert evaluate(spec, "Photo Synthesis").is_correct is True
    assert evaluate(spec, "photosynthesi").is_correct is False


def test_short_answer_accepts_single_string_key():
    spec = spec_from_snapshot(_item("short_answer", "Paris"))
    assert evaluate(spec, "paris").is_correct is True


def test_fill_blank_every_blank_must_match():
    spec = spec_from_snapshot(_item("fill_blank", ["red", "blue"]))
    assert isinstance(spec, FillBlank)
    assert evaluate(spec, [" Red", "BLUE "]).is_correct is True
    assert evaluate(spec, ["red", "green"]).is_correct is False
    assert evaluate(spec, ["red"]).is_correct is False


def test_essay_requires_manual_grading():
    spec = spec_from_snapshot(_item("essay", None, points=10))
    assert spec == Essay(points=10)

    result = evaluate(spec, "A long considered answer.")
    assert result.is_correct is None
    assert result.points_earned == 0.0
    assert result.requires_manual_grading is True


@pytest.mark.parametrize("answer", [None, "", "   ", []])
def test_absent_answers_score_zero_without_raising(answer):
    for item in (
        _item("multiple_choice", 0),
        _item("true_false", True),
        _item("short_answer", ["x"]),
        _item("fill_blank", ["x"]),
        _item("essay", None),
    ):
        result = evaluate(spec_from_snapshot(item), answer)
        assert result.is_correct is False
        assert result.points_earned == 0.0
        assert result.requires_manual_grading is False


def test_wrong_answer_shape_is_incorrect_not_an_error():
    spec = spec_from_snapshot(_item("multiple_choice", [0, 1]))
    assert evaluate(spec, {"a": 1}).is_correct is False
    assert evaluate(spec_from_snapshot(_item("fill_blank", ["a"])), "a").is_correct is False


@pytest.mark.parametrize(
    "qtype,correct",
    [
        ("multiple_choice", "b"),
        ("multiple_choice", []),
        ("true_false", "yes"),
        ("short_answer", []),
        ("fill_blank", "a"),
    ],
)
def test_malformed_answer_keys_are_rejected(qtype, correct):
    with pytest.raises(ValueError):
        spec_from_snapshot(_item(qtype, correct))


def test_non_positive_points_rejected():
    with pytest.raises(ValueError):
        spec_from_snapshot(_item("true_false", True, points=0))


def test_public_question_hides_answer_key():
    item = _item("fill_blank", ["red", "blue"], explanation="colors")
    public = public_question(item)
    assert "correct_answers" not in public
    assert "explanation" not in public
    assert public["blanks"] == 2
    assert public["multiple"] is False

    mc = public_question(_item("multiple_choice", [0, 1], options=["a", "b", "c"]))
    assert mc["multiple"] is True
    assert mc["options"] == ["a", "b", "c"]
