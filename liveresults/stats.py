from collections import defaultdict

from examroom.grading import is_answered, score_answers
from examroom.models import Answer, Result

BUCKET_SIZE = 20
BUCKETS = [(low, low + BUCKET_SIZE) for low in range(0, 100, BUCKET_SIZE)]


def _rate(part, whole):
    return round(part / whole * 100, 2) if whole else 0.0


def compute_exam_stats(exam, questions, assignments, answers, results):
    """Aggregate the full state of one exam into the live dashboard payload.

    Everything is recomputed from the given rows on each call; nothing is
    updated incrementally.
    """
    questions = list(questions)
    assignments = list(assignments)
    results_by_student = {result.student_id: result for result in results}

    answers_by_student = defaultdict(dict)
    per_question = {question.id: {'correct': 0, 'wrong': 0} for question in questions}
    for answer in answers:
        answers_by_student[answer.student_id][answer.question_id] = answer
        if answer.question_id not in per_question or not is_answered(answer.student_answer):
            continue
        per_question[answer.question_id]['correct' if answer.is_correct else 'wrong'] += 1

    students = []
    for assignment in assignments:
        student = assignment.student
        own_answers = answers_by_student.get(student.id, {})
        card = score_answers(questions, own_answers)
        result = results_by_student.get(student.id)
        students.append({
            'student_id': str(student.id),
            'name': student.full_name,
            'student_code': assignment.student_code,
            'started_at': assignment.started_at,
            'answered': card.correct_count + card.wrong_count,
            'correct': card.correct_count,
            'score': round(result.score if result else card.score, 2),
            'finished': result is not None,
        })

    scores = [result.score for result in results_by_student.values()]
    distribution = [0] * len(BUCKETS)
    for score in scores:
        distribution[min(int(score // BUCKET_SIZE), len(BUCKETS) - 1)] += 1

    total_students = len(assignments)
    completed = len(scores)
    passed = sum(1 for score in scores if score >= exam.passing_grade)

    return {
        'exam': {
            'id': str(exam.pk),
            'title': exam.title,
            'is_active': exam.is_active,
            'duration': exam.duration,
            'passing_grade': exam.passing_grade,
        },
        'total_students': total_students,
        'started_students': sum(1 for student_answers in answers_by_student.values() if student_answers),
        'completed_students': completed,
        'completion_rate': _rate(completed, total_students),
        'average_score': round(sum(scores) / completed, 2) if completed else 0.0,
        'highest_score': round(max(scores), 2) if scores else 0.0,
        'lowest_score': round(min(scores), 2) if scores else 0.0,
        'pass_rate': _rate(passed, completed),
        'score_distribution': [
            {'range': f'{low}-{high}', 'count': count}
            for (low, high), count in zip(BUCKETS, distribution)
        ],
        'questions': [
            {
                'id': str(question.id),
                'question_text': question.question_text,
                'order': question.order,
                'correct': per_question[question.id]['correct'],
                'wrong': per_question[question.id]['wrong'],
                'error_rate': _rate(
                    per_question[question.id]['wrong'],
                    per_question[question.id]['correct'] + per_question[question.id]['wrong'],
                ),
            }
            for question in questions
        ],
        'students': students,
    }


def exam_stats(exam):
    return compute_exam_stats(
        exam,
        exam.questions.all(),
        exam.assignments.select_related('student'),
        Answer.objects.filter(exam=exam),
        Result.objects.filter(exam=exam),
    )
