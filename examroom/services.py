import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Exists, OuterRef
from django.utils import timezone

from panel.models import Exam, ExamStudent, Question
from .exceptions import (
    AssignmentNotFound,
    ExamClosed,
    ExamHasNoQuestions,
    ExamNotActive,
    InvalidEntryToken,
    QuestionNotFound,
    ResultNotFound,
    SessionClosed,
)
from .grading import is_correct, remaining_seconds, score_answers
from .models import Answer, Result

logger = logging.getLogger(__name__)


@dataclass
class SessionSnapshot:
    exam: Exam
    assignment: ExamStudent
    questions: List[Question]
    answers: Dict[str, Optional[str]]
    started_at: datetime
    remaining_seconds: int
    finished: bool = False
    result: Optional[Result] = field(default=None)


def login_with_code(student_code):
    """Resolve an entry code to the assignment of an active exam."""
    code = (student_code or '').strip().upper()
    if not code:
        raise AssignmentNotFound('An entry code is required.')

    assignments = ExamStudent.objects.select_related('exam', 'student').filter(student_code=code)
    assignment = assignments.filter(exam__is_active=True).order_by('-created_at').first()
    if assignment is None:
        if assignments.exists():
            raise ExamNotActive('This exam is not active yet.')
        raise AssignmentNotFound()
    return assignment


def find_assignment(exam_id, student_code):
    try:
        return ExamStudent.objects.select_related('exam', 'student').get(
            exam_id=exam_id, student_code=(student_code or '').strip().upper()
        )
    except (ExamStudent.DoesNotExist, ValidationError, ValueError):
        raise AssignmentNotFound()


def assignment_from_token(token, exam_id):
    """Return the assignment an entry token grants for ``exam_id``."""
    if token.exam_id != str(exam_id):
        raise InvalidEntryToken()
    try:
        return ExamStudent.objects.select_related('exam', 'student').get(
            exam_id=exam_id,
            student_id=token.student_id,
            student_code=token.student_code,
        )
    except (ExamStudent.DoesNotExist, ValidationError, ValueError):
        raise InvalidEntryToken()


def ensure_available(exam, now):
    if not exam.is_active:
        raise ExamNotActive()
    if exam.end_date and now > exam.end_date:
        raise ExamClosed()


def anchor_start(assignment, now):
    """Record ``now`` as the attempt's start unless a start is already stored.

    The conditional update makes concurrent first loads agree on one start.
    """
    if assignment.started_at is None:
        updated = ExamStudent.objects.filter(
            pk=assignment.pk, started_at__isnull=True
        ).update(started_at=now)
        if updated:
            logger.info(f"Exam {assignment.exam_id} started for student {assignment.student_id}")
        assignment.refresh_from_db(fields=['started_at'])
    return assignment.started_at


def get_result(assignment):
    return Result.objects.filter(exam_id=assignment.exam_id, student_id=assignment.student_id).first()


def touch_activity(assignment, now):
    ExamStudent.objects.filter(pk=assignment.pk).update(last_activity=now)
    assignment.last_activity = now


def answer_deadline(exam, started_at):
    """Last moment an answer write is accepted for an attempt started at ``started_at``."""
    grace = max(settings.EXAM_ANSWER_GRACE_SECONDS, settings.EXAM_ANSWER_DEBOUNCE_SECONDS)
    return started_at + timedelta(minutes=exam.duration, seconds=grace)


def initialize_session(assignment, now=None):
    now = now or timezone.now()
    exam = assignment.exam

    # A submitted attempt stays viewable even after the exam is closed
    result = get_result(assignment)
    if result is None:
        ensure_available(exam, now)

    questions = list(exam.questions.all())
    if not questions and result is None:
        raise ExamHasNoQuestions()

    if result is None:
        started_at = anchor_start(assignment, now)
        touch_activity(assignment, now)
    else:
        started_at = assignment.started_at or result.created_at
    answers = {
        str(question_id): value
        for question_id, value in Answer.objects.filter(
            exam=exam, student_id=assignment.student_id
        ).values_list('question_id', 'student_answer')
    }

    return SessionSnapshot(
        exam=exam,
        assignment=assignment,
        questions=questions,
        answers=answers,
        started_at=started_at,
        remaining_seconds=remaining_seconds(exam.duration, started_at, now),
        finished=result is not None,
        result=result,
    )


def ensure_open(assignment, now):
    exam = assignment.exam
    if not exam.is_active:
        raise SessionClosed('The exam has been stopped by the administrator.')
    if get_result(assignment) is not None:
        raise SessionClosed('This exam has already been submitted.')
    started_at = anchor_start(assignment, now)
    if now > answer_deadline(exam, started_at):
        raise SessionClosed('Time is up for this exam.')


def record_answer(assignment, question_id, student_answer, now=None):
    """Upsert the student's answer to one question.

    The row is keyed on (exam, question, student) so resubmitting replaces
    the previous value instead of adding a second row.
    """
    now = now or timezone.now()
    ensure_open(assignment, now)

    try:
        question = assignment.exam.questions.get(pk=question_id)
    except (Question.DoesNotExist, ValidationError, ValueError):
        raise QuestionNotFound()

    if student_answer is not None:
        student_answer = str(student_answer)

    answer, created = Answer.objects.update_or_create(
        exam=assignment.exam,
        question=question,
        student_id=assignment.student_id,
        defaults={
            'student_answer': student_answer,
            'is_correct': is_correct(student_answer, question.correct_answer),
        },
    )
    touch_activity(assignment, now)
    logger.debug(
        f"Answer {'saved' if created else 'updated'} for question {question.pk} "
        f"by student {assignment.student_id}"
    )
    return answer


def finish_exam(assignment):
    """Score the persisted answers and store the result once.

    Returns ``(result, created)``; a second call returns the stored result.
    """
    exam = assignment.exam
    with transaction.atomic():
        existing = get_result(assignment)
        if existing is not None:
            return existing, False

        questions = list(exam.questions.all())
        answers = {
            answer.question_id: answer
            for answer in Answer.objects.filter(exam=exam, student_id=assignment.student_id)
        }
        card = score_answers(questions, answers)
        result, created = Result.objects.get_or_create(
            exam=exam,
            student_id=assignment.student_id,
            defaults={
                'score': card.score,
                'correct_count': card.correct_count,
                'wrong_count': card.wrong_count,
                'unanswered_count': card.unanswered_count,
                'total_questions': card.total_questions,
            },
        )

    if created:
        logger.info(
            f"Result recorded for student {assignment.student_id} on exam {exam.pk}: "
            f"{result.score:.1f} ({result.correct_count}/{result.total_questions})"
        )
    return result, created


def exam_status(assignment, now=None):
    now = now or timezone.now()
    exam = assignment.exam
    touch_activity(assignment, now)
    return {
        'is_active': exam.is_active,
        'remaining_seconds': remaining_seconds(exam.duration, assignment.started_at, now),
        'finished': get_result(assignment) is not None,
    }


def result_review(assignment):
    result = get_result(assignment)
    if result is None:
        raise ResultNotFound()

    exam = assignment.exam
    answers = {
        answer.question_id: answer
        for answer in Answer.objects.filter(exam=exam, student_id=assignment.student_id)
    }
    review = []
    for question in exam.questions.all():
        answer = answers.get(question.pk)
        review.append({
            'question_id': str(question.pk),
            'question_text': question.question_text,
            'question_type': question.question_type,
            'options': question.options,
            'points': question.points,
            'correct_answer': question.correct_answer,
            'student_answer': answer.student_answer if answer else None,
            'is_correct': bool(answer and answer.is_correct),
        })

    return {
        'exam_id': str(exam.pk),
        'exam_title': exam.title,
        'student': assignment.student.full_name,
        'score': result.score,
        'correct_count': result.correct_count,
        'wrong_count': result.wrong_count,
        'unanswered_count': result.unanswered_count,
        'total_questions': result.total_questions,
        'passing_grade': exam.passing_grade,
        'passed': result.score >= exam.passing_grade,
        'completed_at': result.created_at,
        'questions': review,
    }


def expired_without_result(now=None):
    """Assignments whose attempt is over (time up or exam stopped) but unscored."""
    now = now or timezone.now()
    scored = Result.objects.filter(exam=OuterRef('exam'), student=OuterRef('student'))
    pending = ExamStudent.objects.select_related('exam', 'student').filter(
        started_at__isnull=False
    ).annotate(scored=Exists(scored)).filter(scored=False)
    for assignment in pending:
        exam = assignment.exam
        if not exam.is_active or now > answer_deadline(exam, assignment.started_at):
            yield assignment


def reconcile_results(now=None):
    created_results = []
    for assignment in expired_without_result(now):
        result, created = finish_exam(assignment)
        if created:
            created_results.append(result)
    if created_results:
        logger.warning(f"Reconciled {len(created_results)} unscored exam attempts")
    return created_results
