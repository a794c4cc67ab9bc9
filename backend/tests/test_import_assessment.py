import importlib.util
import json
from pathlib import Path

import pytest

from app.models.assessment import Assessment, QuestionType

_SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "import_assessment.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("import_assessment", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _write(tmp_path, payload) -> Path:
    path = tmp_path / "assessment.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_import_and_reimport_replaces_questions(db, instructor, tmp_path):
    script = _load_script()
    payload = {
        "title": "Imported",
        "time_limit_minutes": 15,
        "questions": [
            {"type": "true_false", "prompt": "Yes?", "points": 1, "correct_answers": True},
            {"type": "short_answer", "prompt": "Name?", "points": 2, "correct_answers": ["x"]},
        ],
    }
    aid = script.import_assessment(_write(tmp_path, payload), instructor_name=instructor.name)

    payload["id"] = str(aid)
    payload["questions"] = payload["questions"][:1]
    script.import_assessment(_write(tmp_path, payload), instructor_name=instructor.name)

    db.expire_all()
    assessment = db.get(Assessment, aid)
    assert assessment.title == "Imported"
    assert assessment.instructor_id == instructor.id
    assert [q.type for q in assessment.questions] == [QuestionType.true_false]


def test_import_rejects_malformed_answer_key(instructor, tmp_path):
    script = _load_script()
    payload = {
        "title": "Broken",
        "questions": [{"type": "true_false", "prompt": "?", "points": 1, "correct_answers": "yes"}],
    }
    with pytest.raises(SystemExit):
        script.import_assessment(_write(tmp_path, payload), instructor_name=instructor.name)
