import base64
import json
from datetime import timedelta
from io import StringIO
from unittest import mock

from django.conf import settings
from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from panel.models import Exam, ExamStudent, Question, Student
from . import services
from . import session as exam_session
from .backends import ExamBackend, LocalBackend
from .exceptions import (
    AssignmentNotFound,
    BackendError,
    ExamClosed,
    ExamHasNoQuestions,
    ExamNotActive,
    InvalidEntryToken,
    SessionClosed,
    error_for_reason,
)
from .management.commands.loadtest import LoadStats
from .grading import is_correct, remaining_seconds, score_answers
from .models import Answer, Result
from .scheduling import Handle, Scheduler
from .tokens import decode_entry_token, encode_entry_token


class ManualScheduler(Scheduler):
    """Runs scheduled callbacks only when the test advances its clock."""

    class Job(Handle):
        def __init__(self, due, callback, interval, seq):
            super().__init__()
            self.due = due
            self.callback = callback
            self.interval = interval
            self.seq = seq

    def __init__(self):
        self.now = 0.0
        self.jobs = []

    def _add(self, delay, callback, interval):
        job = self.Job(self.now + delay, callback, interval, len(self.jobs))
        self.jobs.append(job)
        return job

    def call_later(self, delay, callback):
        return self._add(delay, callback, None)

    def call_every(self, interval, callback):
        return self._add(interval, callback, interval)

    def pending(self):
        return [job for job in self.jobs if not job.cancelled]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [job for job in self.pending() if job.due <= target + 1e-9]
            if not due:
                break
            job = min(due, key=lambda j: (j.due, j.seq))
            self.now = job.due
            if job.interval:
                job.due += job.interval
            else:
                job.cancelled = True
            job.callback()
        self.now = target


def create_exam(is_active=True, duration=60, **kwargs):
    exam = Exam.objects.create(title='Geography', duration=duration, is_active=is_active, **kwargs)
    Question.objects.create(
        exam=exam, question_text='Capital of France?', question_type=Question.MULTIPLE_CHOICE,
        option_a='Paris', option_b='Rome', option_c='Berlin', option_d='Madrid',
        correct_answer='A', points=2, order=1,
    )
    Question.objects.create(
        exam=exam, question_text='The Nile is in Africa.', question_type=Question.TRUE_FALSE,
        correct_answer='true', points=1, order=2,
    )
    Question.objects.create(
        exam=exam, question_text='Capital of Turkey?', question_type=Question.FILL,
        correct_answer='Ankara', points=1, order=3,
    )
    return exam


def enrol(exam, name='Ayse', surname='Yilmaz', phone='05551234567'):
    student = Student.objects.create(name=name, surname=surname, phone=phone)
    return ExamStudent.objects.create(exam=exam, student=student)


class GradingTestCase(SimpleTestCase):
    def test_remaining_time_counts_down_from_start(self):
        t0 = timezone.now()
        for elapsed, expected in [(0, 3600), (1, 3599), (59.9, 3541), (3599, 1), (3600, 0), (5000, 0)]:
            self.assertEqual(remaining_seconds(60, t0, t0 + timedelta(seconds=elapsed)), expected)

    def test_remaining_time_without_start_is_full_duration(self):
        self.assertEqual(remaining_seconds(45, None, timezone.now()), 45 * 60)

    def test_correctness_ignores_case_only(self):
        self.assertTrue(is_correct('paris', 'Paris'))
        self.assertTrue(is_correct('TRUE', 'true'))
        self.assertFalse(is_correct(' paris', 'Paris'))
        self.assertFalse(is_correct(None, 'A'))

    def test_score_is_share_of_points(self):
        class Item:
            def __init__(self, id, points=1, student_answer=None, is_correct=False):
                self.id = id
                self.points = points
                self.student_answer = student_answer
                self.is_correct = is_correct

        questions = [Item(1, points=2), Item(2), Item(3)]
        answers = {1: Item(1, student_answer='A', is_correct=True), 2: Item(2, student_answer='false')}
        card = score_answers(questions, answers)

        self.assertEqual(card.score, 50.0)
        self.assertEqual((card.correct_count, card.wrong_count, card.unanswered_count), (1, 1, 1))
        self.assertEqual(card.total_questions, 3)

    def test_score_without_points_is_zero(self):
        self.assertEqual(score_answers([], {}).score, 0.0)


class EntryTokenTestCase(SimpleTestCase):
    def test_decode_reads_encoded_fields(self):
        raw = encode_entry_token('exam-1', 'student-1', 'ABC234', timestamp=1700000000000)
        token = decode_entry_token(raw)
        self.assertEqual(token.exam_id, 'exam-1')
        self.assertEqual(token.student_id, 'student-1')
        self.assertEqual(token.student_code, 'ABC234')
        self.assertEqual(token.timestamp, 1700000000000)

    def test_malformed_tokens_are_rejected(self):
        missing_key = base64.b64encode(json.dumps({'examId': 'x', 'studentId': 'y'}).encode()).decode()
        not_json = base64.b64encode(b'not json').decode()
        for raw in [None, '', '***', not_json, missing_key]:
            with self.assertRaises(InvalidEntryToken):
                decode_entry_token(raw)

    def test_errors_round_trip_through_reason(self):
        error = error_for_reason('exam_not_active', 'wait')
        self.assertIsInstance(error, ExamNotActive)
        self.assertEqual(error.message, 'wait')
        self.assertIsInstance(error_for_reason('unknown'), Exception)


class ServicesTestCase(TestCase):
    def setUp(self):
        self.exam = create_exam()
        self.assignment = enrol(self.exam)
        self.questions = list(self.exam.questions.all())
        self.t0 = timezone.now()

    def test_login_with_code_is_case_insensitive(self):
        assignment = services.login_with_code(f' {self.assignment.student_code.lower()} ')
        self.assertEqual(assignment.pk, self.assignment.pk)

    def test_login_with_unknown_or_inactive_code(self):
        with self.assertRaises(AssignmentNotFound):
            services.login_with_code('ZZZZZ1')
        self.exam.is_active = False
        self.exam.save()
        with self.assertRaises(ExamNotActive):
            services.login_with_code(self.assignment.student_code)

    def test_first_load_anchors_start(self):
        snapshot = services.initialize_session(self.assignment, now=self.t0)
        self.assertEqual(snapshot.remaining_seconds, 3600)
        self.assertEqual(snapshot.started_at, self.t0)

        later = services.initialize_session(self.assignment, now=self.t0 + timedelta(seconds=90))
        self.assertEqual(later.started_at, self.t0)
        self.assertEqual(later.remaining_seconds, 3510)

    def test_concurrent_first_loads_agree_on_start(self):
        stale = ExamStudent.objects.get(pk=self.assignment.pk)
        services.initialize_session(self.assignment, now=self.t0)
        snapshot = services.initialize_session(stale, now=self.t0 + timedelta(seconds=5))
        self.assertEqual(snapshot.started_at, self.t0)

    def test_initialize_rejects_unavailable_exams(self):
        self.exam.end_date = self.t0 - timedelta(minutes=1)
        self.exam.save()
        with self.assertRaises(ExamClosed):
            services.initialize_session(self.assignment, now=self.t0)

        self.exam.end_date = None
        self.exam.is_active = False
        self.exam.save()
        with self.assertRaises(ExamNotActive):
            services.initialize_session(self.assignment, now=self.t0)

        empty = Exam.objects.create(title='Empty', is_active=True)
        with self.assertRaises(ExamHasNoQuestions):
            services.initialize_session(enrol(empty, phone='05550000000'), now=self.t0)

    def test_record_answer_upserts(self):
        question = self.questions[0]
        services.record_answer(self.assignment, question.pk, 'B', now=self.t0)
        services.record_answer(self.assignment, question.pk, 'a', now=self.t0)

        answers = Answer.objects.filter(exam=self.exam, question=question, student=self.assignment.student)
        self.assertEqual(answers.count(), 1)
        self.assertEqual(answers.get().student_answer, 'a')
        self.assertTrue(answers.get().is_correct)

    def test_record_answer_rejected_when_closed(self):
        question = self.questions[0]
        services.initialize_session(self.assignment, now=self.t0)
        with self.assertRaises(SessionClosed):
            services.record_answer(self.assignment, question.pk, 'A', now=self.t0 + timedelta(minutes=61))

        services.finish_exam(self.assignment)
        with self.assertRaises(SessionClosed):
            services.record_answer(self.assignment, question.pk, 'A', now=self.t0)

    @override_settings(EXAM_ANSWER_GRACE_SECONDS=5)
    def test_answers_accepted_within_grace_after_time_up(self):
        question = self.questions[2]
        services.initialize_session(self.assignment, now=self.t0)
        services.record_answer(self.assignment, question.pk, 'Ankara', now=self.t0 + timedelta(minutes=60, seconds=3))
        self.assertTrue(Answer.objects.get(question=question).is_correct)

        with self.assertRaises(SessionClosed):
            services.record_answer(self.assignment, question.pk, 'Izmir', now=self.t0 + timedelta(minutes=60, seconds=6))

    @override_settings(EXAM_ANSWER_GRACE_SECONDS=0, EXAM_ANSWER_DEBOUNCE_SECONDS=0.6)
    def test_grace_covers_the_typing_debounce(self):
        services.initialize_session(self.assignment, now=self.t0)
        services.record_answer(
            self.assignment, self.questions[2].pk, 'Ankara',
            now=self.t0 + timedelta(minutes=60, milliseconds=500),
        )
        self.assertEqual(Answer.objects.count(), 1)

    def test_finished_attempt_loads_after_deactivation(self):
        services.initialize_session(self.assignment, now=self.t0)
        services.record_answer(self.assignment, self.questions[0].pk, 'A', now=self.t0)
        services.finish_exam(self.assignment)
        Exam.objects.filter(pk=self.exam.pk).update(is_active=False)

        assignment = services.find_assignment(self.exam.pk, self.assignment.student_code)
        snapshot = services.initialize_session(assignment, now=self.t0 + timedelta(minutes=5))
        self.assertTrue(snapshot.finished)
        self.assertEqual(snapshot.result.correct_count, 1)
        self.assertEqual(snapshot.started_at, self.t0)
        self.assertEqual(snapshot.answers, {str(self.questions[0].pk): 'A'})

    def test_session_activity_is_tracked(self):
        services.initialize_session(self.assignment, now=self.t0)
        self.assertEqual(ExamStudent.objects.get(pk=self.assignment.pk).last_activity, self.t0)

        later = self.t0 + timedelta(seconds=40)
        services.record_answer(self.assignment, self.questions[0].pk, 'A', now=later)
        self.assertEqual(ExamStudent.objects.get(pk=self.assignment.pk).last_activity, later)

        latest = self.t0 + timedelta(seconds=70)
        services.exam_status(self.assignment, now=latest)
        self.assertEqual(ExamStudent.objects.get(pk=self.assignment.pk).last_activity, latest)

    def test_finish_is_idempotent(self):
        services.record_answer(self.assignment, self.questions[0].pk, 'A', now=self.t0)
        services.record_answer(self.assignment, self.questions[1].pk, 'false', now=self.t0)

        result, created = services.finish_exam(self.assignment)
        again, created_again = services.finish_exam(self.assignment)

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(result.pk, again.pk)
        self.assertEqual(result.score, 50.0)
        self.assertEqual(result.unanswered_count, 1)
        self.assertEqual(Result.objects.count(), 1)

    def test_result_review_reports_pass(self):
        services.record_answer(self.assignment, self.questions[0].pk, 'A', now=self.t0)
        services.record_answer(self.assignment, self.questions[1].pk, 'TRUE', now=self.t0)
        services.finish_exam(self.assignment)

        review = services.result_review(self.assignment)
        self.assertEqual(review['score'], 75.0)
        self.assertTrue(review['passed'])
        self.assertEqual([item['is_correct'] for item in review['questions']], [True, True, False])

    def test_reconcile_scores_expired_attempts(self):
        services.initialize_session(self.assignment, now=self.t0 - timedelta(minutes=90))
        fresh = enrol(self.exam, name='Can', phone='05559876543')
        services.initialize_session(fresh, now=self.t0)

        created = services.reconcile_results(now=self.t0)
        self.assertEqual([r.student_id for r in created], [self.assignment.student_id])
        self.assertEqual(services.reconcile_results(now=self.t0), [])

    def test_reconcile_command(self):
        services.initialize_session(self.assignment, now=timezone.now() - timedelta(hours=2))
        call_command('reconcile_results', verbosity=0)
        self.assertTrue(Result.objects.filter(student=self.assignment.student).exists())


class FakeBackend(ExamBackend):
    def __init__(self, remaining=3600, finished=False):
        self.is_active = True
        self.remaining = remaining
        self.finished = finished
        self.saved = {}
        self.writes = []
        self.fail_writes = False
        self.finish_failures = 0
        self.finish_calls = 0

    def initialize(self):
        return {
            'exam': {'id': 'exam-1', 'title': 'Geography'},
            'student': 'Ayse Yilmaz',
            'questions': [
                {'id': 'q1', 'question_type': 'multiple_choice', 'question_text': '1', 'options': {}},
                {'id': 'q2', 'question_type': 'true_false', 'question_text': '2', 'options': {}},
                {'id': 'q3', 'question_type': 'fill', 'question_text': '3', 'options': {}},
            ],
            'answers': dict(self.saved),
            'remaining_seconds': self.remaining,
            'finished': self.finished,
            'result': {'score': 100.0} if self.finished else None,
        }

    def record_answer(self, question_id, answer):
        self.writes.append((question_id, answer))
        if self.fail_writes:
            raise BackendError('offline')
        self.saved[question_id] = answer

    def finish(self):
        self.finish_calls += 1
        if self.finish_calls <= self.finish_failures:
            raise BackendError('offline')
        return {'score': 50.0}

    def status(self):
        return {'is_active': self.is_active, 'remaining_seconds': self.remaining, 'finished': False}


class ExamSessionTestCase(SimpleTestCase):
    def make_session(self, backend=None, **kwargs):
        self.backend = backend or FakeBackend()
        self.scheduler = ManualScheduler()
        options = {'status_interval': 30, 'debounce_seconds': 0.6, 'finish_retries': 2}
        options.update(kwargs)
        session = exam_session.ExamSession(self.backend, self.scheduler, **options)
        session.start()
        return session

    def test_ticks_count_down(self):
        session = self.make_session()
        self.backend.remaining = 3590
        self.scheduler.advance(10)
        self.assertEqual(session.remaining, 3590)
        self.assertEqual(session.state, exam_session.ACTIVE)

    def test_expiry_finishes_exactly_once(self):
        session = self.make_session(FakeBackend(remaining=5), status_interval=1000)
        self.scheduler.advance(5)
        self.assertEqual(session.state, exam_session.FINISHED)
        self.scheduler.advance(60)
        session.finish()
        self.assertEqual(self.backend.finish_calls, 1)
        self.assertEqual(self.scheduler.pending(), [])

    def test_expired_on_load_finishes_immediately(self):
        session = self.make_session(FakeBackend(remaining=0))
        self.assertEqual(session.state, exam_session.FINISHED)
        self.assertEqual(self.backend.finish_calls, 1)

    def test_already_finished_attempt(self):
        session = self.make_session(FakeBackend(finished=True))
        self.assertEqual(session.state, exam_session.FINISHED)
        self.assertEqual(session.result, {'score': 100.0})
        session.finish()
        self.assertEqual(self.backend.finish_calls, 0)

    def test_deactivation_stops_within_one_poll(self):
        session = self.make_session()
        self.scheduler.advance(5)
        self.backend.is_active = False
        self.scheduler.advance(30)

        self.assertEqual(session.state, exam_session.STOPPED)
        self.assertEqual(self.scheduler.pending(), [])
        with self.assertRaises(SessionClosed):
            session.select_answer('q1', 'A')

    def test_select_answer_saves_and_advances(self):
        session = self.make_session()
        self.assertTrue(session.select_answer('q1', 'B'))
        self.assertEqual(session.current_index, 1)
        self.assertEqual(self.backend.saved, {'q1': 'B'})

    def test_failed_selection_rolls_back(self):
        session = self.make_session()
        session.select_answer('q1', 'B')
        session.go_to(0)
        self.backend.fail_writes = True

        self.assertFalse(session.select_answer('q1', 'C'))
        self.assertEqual(session.answers['q1'], 'B')
        self.assertEqual(session.current_index, 0)
        self.assertEqual(session.last_error, 'offline')

        self.assertFalse(session.select_answer('q2', 'true'))
        self.assertNotIn('q2', session.answers)

    def test_typing_is_debounced(self):
        session = self.make_session()
        for text in ['A', 'An', 'Ank']:
            session.type_answer('q3', text)
            self.scheduler.advance(0.3)
        self.assertEqual(self.backend.writes, [])

        self.scheduler.advance(0.6)
        self.assertEqual(self.backend.writes, [('q3', 'Ank')])
        self.assertFalse(session.has_unsaved_answers)

    def test_finish_flushes_pending_text(self):
        session = self.make_session()
        session.type_answer('q3', 'Ankara')
        session.finish()
        self.assertEqual(self.backend.writes, [('q3', 'Ankara')])
        self.assertEqual(session.state, exam_session.FINISHED)

    def test_finish_retries_then_fails(self):
        backend = FakeBackend()
        backend.finish_failures = 3
        session = self.make_session(backend)

        self.assertIsNone(session.finish())
        self.assertEqual(session.state, exam_session.SUBMIT_FAILED)
        self.assertEqual(backend.finish_calls, 3)

        session.finish()
        self.assertEqual(backend.finish_calls, 3)
        self.assertEqual(session.retry_finish(), {'score': 50.0})
        self.assertEqual(session.state, exam_session.FINISHED)

    def test_finish_succeeds_after_retry(self):
        backend = FakeBackend()
        backend.finish_failures = 1
        session = self.make_session(backend)
        self.assertEqual(session.finish(), {'score': 50.0})
        self.assertEqual(backend.finish_calls, 2)

    def test_not_started_exam(self):
        class Inactive(FakeBackend):
            def initialize(self):
                raise ExamNotActive()

        session = self.make_session(Inactive())
        self.assertEqual(session.state, exam_session.NOT_STARTED)
        self.assertEqual(self.scheduler.pending(), [])


class LocalSessionTestCase(TestCase):
    def test_hour_long_exam_finishes_once_at_time_up(self):
        exam = create_exam(duration=60)
        assignment = enrol(exam)
        scheduler = ManualScheduler()
        t0 = timezone.now()
        backend = LocalBackend(exam.pk, assignment.student_code, clock=lambda: t0 + timedelta(seconds=scheduler.now))
        session = exam_session.ExamSession(backend, scheduler, status_interval=30, finish_retries=0)

        self.assertEqual(session.start(), exam_session.ACTIVE)
        self.assertEqual(session.remaining, 3600)
        question = exam.questions.first()
        self.assertTrue(session.select_answer(question.pk, 'A'))

        scheduler.advance(3599)
        self.assertEqual(session.state, exam_session.ACTIVE)
        self.assertEqual(session.remaining, 1)

        scheduler.advance(1)
        self.assertEqual(session.remaining, 0)
        self.assertEqual(session.state, exam_session.FINISHED)
        scheduler.advance(120)

        result = Result.objects.get(exam=exam, student=assignment.student)
        self.assertEqual(Result.objects.count(), 1)
        self.assertEqual(result.correct_count, 1)
        self.assertEqual(session.result['score'], result.score)

    @override_settings(EXAM_ANSWER_GRACE_SECONDS=5)
    def test_text_typed_just_before_time_up_is_scored(self):
        exam = create_exam(duration=1)
        assignment = enrol(exam)
        scheduler = ManualScheduler()
        t0 = timezone.now()
        backend = LocalBackend(exam.pk, assignment.student_code, clock=lambda: t0 + timedelta(seconds=scheduler.now))
        session = exam_session.ExamSession(
            backend, scheduler, status_interval=30, debounce_seconds=0.6, finish_retries=0
        )
        session.start()
        fill = exam.questions.get(question_type=Question.FILL)

        scheduler.advance(59.7)
        session.type_answer(fill.pk, 'Ankara')
        scheduler.advance(0.3)

        self.assertEqual(session.state, exam_session.FINISHED)
        self.assertFalse(session.has_unsaved_answers)
        answer = Answer.objects.get(exam=exam, question=fill, student=assignment.student)
        self.assertEqual(answer.student_answer, 'Ankara')
        result = Result.objects.get(exam=exam, student=assignment.student)
        self.assertEqual(result.correct_count, 1)
        self.assertEqual(result.score, 25.0)

    def test_deactivated_exam_stops_session(self):
        exam = create_exam()
        assignment = enrol(exam)
        scheduler = ManualScheduler()
        session = exam_session.ExamSession(LocalBackend(exam.pk, assignment.student_code), scheduler, status_interval=30)
        session.start()

        Exam.objects.filter(pk=exam.pk).update(is_active=False)
        scheduler.advance(30)
        self.assertEqual(session.state, exam_session.STOPPED)


class ExamApiTestCase(APITestCase):
    def setUp(self):
        cache.clear()
        self.exam = create_exam()
        self.assignment = enrol(self.exam)
        self.questions = list(self.exam.questions.all())

    def login(self):
        return self.client.post(reverse('exam_login'), {'student-code': self.assignment.student_code.lower()})

    def exam_url(self, name):
        return reverse(name, args=[self.exam.pk])

    def test_login_sets_entry_token_cookie(self):
        response = self.login()
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['exam_id'], str(self.exam.pk))
        self.assertIn(f'/exam/{self.exam.pk}/', response.json()['redirect'])

        cookie = response.cookies[settings.EXAM_ENTRY_TOKEN_COOKIE]
        self.assertTrue(cookie['httponly'])
        self.assertEqual(cookie['max-age'], 10800)
        token = decode_entry_token(cookie.value)
        self.assertEqual(token.student_code, self.assignment.student_code)

    def test_login_errors(self):
        response = self.client.post(reverse('exam_login'), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.post(reverse('exam_login'), {'student-code': 'ZZZZZ1'})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        self.exam.is_active = False
        self.exam.save()
        response = self.login()
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.json()['reason'], 'exam_not_active')

    def test_endpoints_require_entry_token(self):
        for name in ['exam_session', 'exam_status', 'exam_result']:
            response = self.client.get(self.exam_url(name))
            self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
            self.assertEqual(response.json()['redirect'], '/exam/login/')

    def test_token_for_another_exam_is_rejected(self):
        self.login()
        other = create_exam()
        response = self.client.get(reverse('exam_session', args=[other.pk]))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_session_hides_correct_answers(self):
        self.login()
        response = self.client.get(self.exam_url('exam_session'), {'code': self.assignment.student_code})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        data = response.json()
        self.assertEqual(data['remaining_seconds'], 3600)
        self.assertEqual(len(data['questions']), 3)
        self.assertNotIn('correct_answer', data['questions'][0])
        self.assertFalse(data['finished'])

    def test_answer_finish_and_result(self):
        self.login()
        response = self.client.post(
            self.exam_url('exam_answer'),
            {'question_id': str(self.questions[0].pk), 'answer': 'A'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertNotIn('is_correct', response.json())

        response = self.client.post(self.exam_url('exam_finish'))
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.json()['score'], 50.0)
        self.assertTrue(response.json()['passed'])

        response = self.client.post(self.exam_url('exam_finish'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get(self.exam_url('exam_result'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['correct_count'], 1)

        response = self.client.post(
            self.exam_url('exam_answer'),
            {'question_id': str(self.questions[1].pk), 'answer': 'true'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_answer_rejected_after_time_up(self):
        self.login()
        ExamStudent.objects.filter(pk=self.assignment.pk).update(
            started_at=timezone.now() - timedelta(minutes=61)
        )
        response = self.client.post(
            self.exam_url('exam_answer'),
            {'question_id': str(self.questions[0].pk), 'answer': 'A'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.json()['reason'], 'session_closed')

    def test_status_reports_deactivation(self):
        self.login()
        self.client.get(self.exam_url('exam_session'))
        self.exam.is_active = False
        self.exam.save()

        response = self.client.get(self.exam_url('exam_status'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.json()['is_active'])
        self.assertFalse(response.json()['finished'])

    def test_finished_session_reloads_after_deactivation(self):
        self.login()
        self.client.get(self.exam_url('exam_session'))
        self.client.post(self.exam_url('exam_finish'))
        self.exam.is_active = False
        self.exam.save()

        response = self.client.get(self.exam_url('exam_session'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.json()['finished'])
        self.assertEqual(response.json()['result']['score'], 0.0)

    def test_result_before_finish_is_not_found(self):
        self.login()
        response = self.client.get(self.exam_url('exam_result'))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_logout_clears_cookie(self):
        self.login()
        response = self.client.post(reverse('exam_logout'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.cookies[settings.EXAM_ENTRY_TOKEN_COOKIE].value, '')


@mock.patch('examroom.management.commands.take_exam.ThreadScheduler', ManualScheduler)
class TakeExamCommandTestCase(TestCase):
    def setUp(self):
        self.exam = create_exam()
        self.assignment = enrol(self.exam)

    def take_exam(self, lines):
        out, err = StringIO(), StringIO()
        with mock.patch('builtins.input', side_effect=lines):
            call_command('take_exam', str(self.exam.pk), self.assignment.student_code.lower(), stdout=out, stderr=err)
        return out.getvalue(), err.getvalue()

    def test_answers_every_question_and_finishes(self):
        out, _ = self.take_exam(['a', 'TRUE', 'Ankara', ':f'])

        saved = dict(
            Answer.objects.filter(exam=self.exam).values_list('question__order', 'student_answer')
        )
        self.assertEqual(saved, {1: 'A', 2: 'true', 3: 'Ankara'})
        self.assertIn('Geography - Ayse Yilmaz', out)
        self.assertIn('Score: 100.0 - correct 3, wrong 0, unanswered 0', out)
        self.assertEqual(Result.objects.get(exam=self.exam).score, 100.0)

    def test_quitting_keeps_the_attempt_open(self):
        out, _ = self.take_exam([':g 3', 'Ank', ':q'])
        self.assertEqual(Answer.objects.get(exam=self.exam).student_answer, 'Ank')
        self.assertFalse(Result.objects.exists())
        self.assertNotIn('Score:', out)

    def test_failed_submit_is_retried_once(self):
        finish_exam = services.finish_exam
        calls = []

        def flaky_finish(assignment):
            calls.append(assignment.pk)
            if len(calls) <= settings.EXAM_FINISH_RETRIES + 1:
                raise DatabaseError('connection lost')
            return finish_exam(assignment)

        with mock.patch('examroom.services.finish_exam', side_effect=flaky_finish):
            out, _ = self.take_exam([':f'])

        self.assertEqual(len(calls), settings.EXAM_FINISH_RETRIES + 2)
        self.assertIn('Submitting failed, retrying once more', out)
        self.assertIn('Score: 0.0', out)

    def test_submit_failure_after_retry_is_reported(self):
        with mock.patch('examroom.services.finish_exam', side_effect=DatabaseError('connection lost')):
            with self.assertRaises(CommandError):
                self.take_exam([':f'])
        self.assertFalse(Result.objects.exists())

    def test_inactive_exam_is_refused(self):
        Exam.objects.filter(pk=self.exam.pk).update(is_active=False)
        with self.assertRaises(CommandError):
            self.take_exam([])


class LoadTestCommandTestCase(SimpleTestCase):
    def test_stats_summarise_requests(self):
        stats = LoadStats()
        stats.record(True, 10.0)
        stats.record(True, 30.0)
        stats.record(False, 20.0)
        stats.record_failed_login(2)

        self.assertEqual((stats.total, stats.succeeded, stats.failed), (5, 2, 3))
        self.assertEqual(stats.mean_latency, 20.0)
        self.assertEqual(stats.success_rate, 40.0)
        self.assertEqual(LoadStats().success_rate, 0.0)
        self.assertEqual(LoadStats().mean_latency, 0.0)

    def test_command_prints_summary(self):
        async def student(base_url, exam_id, code, requests_per_user, delay, stats):
            if code == 'ZZZZZ2':
                stats.record_failed_login(requests_per_user)
                return f'{code}: login failed with 404'
            for _ in range(requests_per_user):
                stats.record(True, 10.0)
            return None

        out, err = StringIO(), StringIO()
        with mock.patch('examroom.management.commands.loadtest.simulate_student', side_effect=student):
            call_command(
                'loadtest', 'exam-1', 'abc234', 'zzzzz2',
                users=3, requests=2, delay=0, stdout=out, stderr=err,
            )

        output = out.getvalue()
        self.assertIn('Only 2 codes for 3 students', output)
        self.assertIn('Total requests: 6', output)
        self.assertIn('Succeeded: 4', output)
        self.assertIn('Failed: 2', output)
        self.assertIn('Mean latency: 10.00ms', output)
        self.assertIn('Success rate: 66.67%', output)
        self.assertIn('ZZZZZ2: login failed with 404', err.getvalue())

    def test_command_rejects_empty_runs(self):
        with self.assertRaises(CommandError):
            call_command('loadtest', 'exam-1', 'abc234', users=0, stdout=StringIO())
