import math
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Iterable, Optional


@dataclass
class ScoreCard:
    score: float
    correct_count: int
    wrong_count: int
    unanswered_count: int
    total_questions: int
    earned_points: int
    total_points: int

    def as_dict(self):
        return asdict(self)


def is_correct(student_answer: Optional[str], correct_answer: Optional[str]) -> bool:
    """Case-insensitive comparison of a submitted value against the stored key."""
    if student_answer is None or correct_answer is None:
        return False
    return student_answer.lower() == correct_answer.lower()


def is_answered(student_answer: Optional[str]) -> bool:
    return student_answer is not None and student_answer.strip() != ''


def score_answers(questions: Iterable, answers: Dict) -> ScoreCard:
    """Score one attempt in a single pass over the exam's questions.

    ``answers`` maps question id to a recorded answer exposing
    ``student_answer`` and ``is_correct``. The score is the share of points
    earned on a 0-100 scale.
    """
    correct = wrong = unanswered = 0
    earned_points = total_points = 0
    total_questions = 0

    for question in questions:
        total_questions += 1
        total_points += question.points
        answer = answers.get(question.id)
        if answer is None or not is_answered(answer.student_answer):
            unanswered += 1
        elif answer.is_correct:
            correct += 1
            earned_points += question.points
        else:
            wrong += 1

    score = (earned_points / total_points) * 100 if total_points else 0.0
    return ScoreCard(
        score=score,
        correct_count=correct,
        wrong_count=wrong,
        unanswered_count=unanswered,
        total_questions=total_questions,
        earned_points=earned_points,
        total_points=total_points,
    )


def remaining_seconds(duration_minutes: int, started_at: Optional[datetime], now: datetime) -> int:
    """Seconds left on an attempt anchored at ``started_at``, never below zero."""
    total = duration_minutes * 60
    if started_at is None:
        return total
    elapsed = math.floor((now - started_at).total_seconds())
    return max(0, total - max(0, elapsed))
