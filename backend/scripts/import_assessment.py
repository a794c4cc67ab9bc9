"""Load an assessment definition from a JSON file.

Usage:
    python scripts/import_assessment.py path/to/assessment.json --instructor alice

File layout:
    {
      "title": "...", "course_id": "<uuid>|null", "time_limit_minutes": 30,
      "passing_score_percent": 70, "max_attempts": 3, "shuffle_questions": false,
      "show_results": true, "show_correct_answers": false, "points_reward": 50,
      "questions": [
        {"type": "multiple_choice", "prompt": "...", "points": 2,
         "options": ["a", "b"], "correct_answers": 1, "explanation": "..."}
      ]
    }

Re-importing a file with the same `id` replaces the assessment's questions;
attempts already started keep their own snapshot.
"""

from __future__ import annotations

import argparse
import json
import os
import pathlib
import sys
import uuid

# Force /app into path for Docker compatibility
sys.path.append("/app")
# Also add current directory as fallback
sys.path.append(os.getcwd())

from sqlalchemy import delete, select

from app.db.session import SessionLocal
from app.models.assessment import Assessment, Question, QuestionType
from app.models.user import User, UserRole
from app.services.evaluator import spec_from_question

_FIELDS = (
    "title",
    "description",
    "time_limit_minutes",
    "passing_score_percent",
    "max_attempts",
    "shuffle_questions",
    "show_results",
    "show_correct_answers",
    "points_reward",
    "is_published",
)


def _build_questions(assessment_id: uuid.UUID, items: list[dict]) -> list[Question]:
    out: list[Question] = []
    for i, raw in enumerate(items):
        q = Question(
            assessment_id=assessment_id,
            order_index=i,
            type=QuestionType(str(raw["type"])),
            prompt=str(raw.get("prompt") or ""),
            points=int(raw.get("points") or 1),
            options=raw.get("options"),
            correct_answers=raw.get("correct_answers"),
            explanation=raw.get("explanation"),
        )
        try:
            spec_from_question(q)
        except ValueError as e:
            raise SystemExit(f"question {i + 1}: {e}") from e
        out.append(q)
    return out


def import_assessment(path: pathlib.Path, *, instructor_name: str) -> uuid.UUID:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not data.get("questions"):
        raise SystemExit("assessment has no questions")

    with SessionLocal() as db:
        instructor = db.scalar(select(User).where(User.name == instructor_name))
        if instructor is None or instructor.role not in {UserRole.instructor, UserRole.admin}:
            raise SystemExit(f"instructor not found: {instructor_name}")

        aid = uuid.UUID(str(data["id"])) if data.get("id") else uuid.uuid4()
        assessment = db.get(Assessment, aid)
        if assessment is None:
            assessment = Assessment(id=aid)
            db.add(assessment)

        for field in _FIELDS:
            if field in data:
                setattr(assessment, field, data[field])
        assessment.course_id = uuid.UUID(str(data["course_id"])) if data.get("course_id") else None
        assessment.instructor_id = instructor.id
        db.flush()

        db.execute(delete(Question).where(Question.assessment_id == aid))
        db.add_all(_build_questions(aid, list(data["questions"])))
        db.commit()

    return aid


def main() -> None:
    parser = argparse.ArgumentParser(description="Import an assessment from JSON")
    parser.add_argument("path", type=pathlib.Path)
    parser.add_argument("--instructor", required=True, help="name of the owning instructor")
    args = parser.parse_args()

    aid = import_assessment(args.path, instructor_name=args.instructor)
    print(f"imported assessment {aid}")


if __name__ == "__main__":
    main()
