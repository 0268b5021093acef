import json

from django.contrib.auth.models import User
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from examroom import services
from examroom.scheduling import Handle, Scheduler
from panel.models import Exam, ExamStudent, Question, Student
from .dashboard import LiveDashboard
from .feed import INSERT, UPDATE, ChangeEvent, ChangeFeed
from .signals import get_feed
from .stats import compute_exam_stats, exam_stats


class IntervalScheduler(Scheduler):
    def __init__(self):
        self.jobs = []

    def call_every(self, interval, callback):
        handle = Handle()
        self.jobs.append((interval, callback, handle))
        return handle

    def fire(self):
        for _, callback, handle in self.jobs:
            if not handle.cancelled:
                callback()


def build_exam(students=3):
    exam = Exam.objects.create(title='History', is_active=True, passing_grade=50)
    questions = [
        Question.objects.create(
            exam=exam, question_text=f'Question {i}', question_type=Question.TRUE_FALSE,
            correct_answer='true', order=i,
        )
        for i in range(1, 3)
    ]
    assignments = [
        ExamStudent.objects.create(
            exam=exam,
            student=Student.objects.create(name=f'Student{i}', surname='Demir', phone=f'055500000{i:02d}'),
        )
        for i in range(students)
    ]
    return exam, questions, assignments


class ChangeFeedTestCase(SimpleTestCase):
    def event(self, table='answers', exam_id='e1'):
        return ChangeEvent(table=table, event_type=INSERT, exam_id=exam_id)

    def test_publish_reaches_matching_subscribers(self):
        feed = ChangeFeed()
        received = []
        feed.subscribe('answers', received.append, predicate=lambda e: e.exam_id == 'e1')
        feed.subscribe('results', received.append)

        self.assertEqual(feed.publish(self.event()), 1)
        feed.publish(self.event(exam_id='e2'))
        feed.publish(self.event(table='results', exam_id='e2'))
        self.assertEqual([(e.table, e.exam_id) for e in received], [('answers', 'e1'), ('results', 'e2')])

    def test_unsubscribe_stops_delivery(self):
        feed = ChangeFeed()
        received = []
        subscription = feed.subscribe('answers', received.append)
        subscription.unsubscribe()
        feed.publish(self.event())
        self.assertEqual(received, [])
        self.assertEqual(len(feed), 0)

    def test_failing_subscriber_does_not_block_others(self):
        feed = ChangeFeed()
        received = []

        def broken(event):
            raise RuntimeError('boom')

        feed.subscribe('answers', broken)
        feed.subscribe('answers', received.append)
        with self.assertLogs('liveresults.feed', level='ERROR'):
            feed.publish(self.event())
        self.assertEqual(len(received), 1)


class SignalTestCase(TestCase):
    def test_answer_and_result_writes_are_published(self):
        exam, questions, assignments = build_exam(students=1)
        events = []
        subscriptions = [
            get_feed().subscribe(table, events.append, predicate=lambda e: e.exam_id == str(exam.pk))
            for table in ('answers', 'results')
        ]
        try:
            with self.captureOnCommitCallbacks(execute=True):
                services.record_answer(assignments[0], questions[0].pk, 'true')
            with self.captureOnCommitCallbacks(execute=True):
                services.record_answer(assignments[0], questions[0].pk, 'false')
            with self.captureOnCommitCallbacks(execute=True):
                services.finish_exam(assignments[0])
        finally:
            for subscription in subscriptions:
                subscription.unsubscribe()

        self.assertEqual(
            [(e.table, e.event_type) for e in events],
            [('answers', INSERT), ('answers', UPDATE), ('results', INSERT)],
        )


class StatsTestCase(TestCase):
    def setUp(self):
        self.exam, self.questions, self.assignments = build_exam(students=4)
        now = timezone.now()
        # 100, 50 and 0; the fourth student never answers
        for assignment, answers in zip(self.assignments, [('true', 'true'), ('true', 'false'), ('false', 'false')]):
            for question, value in zip(self.questions, answers):
                services.record_answer(assignment, question.pk, value, now=now)
            services.finish_exam(assignment)

    def test_aggregates(self):
        stats = exam_stats(self.exam)

        self.assertEqual(stats['total_students'], 4)
        self.assertEqual(stats['started_students'], 3)
        self.assertEqual(stats['completed_students'], 3)
        self.assertEqual(stats['completion_rate'], 75.0)
        self.assertEqual(stats['average_score'], 50.0)
        self.assertEqual(stats['highest_score'], 100.0)
        self.assertEqual(stats['lowest_score'], 0.0)
        self.assertEqual(stats['pass_rate'], 66.67)
        self.assertEqual([b['count'] for b in stats['score_distribution']], [1, 0, 1, 0, 1])

        first, second = stats['questions']
        self.assertEqual((first['correct'], first['wrong']), (2, 1))
        self.assertEqual(second['error_rate'], 66.67)

        progress = {s['student_code']: s for s in stats['students']}
        idle = progress[self.assignments[3].student_code]
        self.assertEqual((idle['answered'], idle['score'], idle['finished']), (0, 0.0, False))

    def test_empty_exam(self):
        exam = Exam.objects.create(title='Empty')
        stats = compute_exam_stats(exam, [], [], [], [])
        self.assertEqual(stats['average_score'], 0.0)
        self.assertEqual(stats['completion_rate'], 0.0)


class LiveDashboardTestCase(SimpleTestCase):
    def test_recomputes_on_events_for_its_exam(self):
        feed = ChangeFeed()
        updates = []
        calls = []

        def loader(exam_id):
            calls.append(exam_id)
            return {'exam_id': exam_id, 'version': len(calls)}

        dashboard = LiveDashboard('e1', feed, updates.append, loader=loader)
        dashboard.start()
        feed.publish(ChangeEvent('answers', INSERT, 'e1'))
        feed.publish(ChangeEvent('answers', INSERT, 'e2'))
        feed.publish(ChangeEvent('results', INSERT, 'e1'))

        self.assertEqual([u['version'] for u in updates], [1, 2, 3])

        dashboard.stop()
        feed.publish(ChangeEvent('answers', INSERT, 'e1'))
        self.assertEqual(len(updates), 3)
        self.assertEqual(len(feed), 0)

    def test_periodic_refresh(self):
        scheduler = IntervalScheduler()
        updates = []
        dashboard = LiveDashboard('e1', ChangeFeed(), updates.append, scheduler=scheduler,
                                  refresh_interval=10, loader=lambda exam_id: {})
        dashboard.start()
        scheduler.fire()
        self.assertEqual(len(updates), 2)

        dashboard.stop()
        scheduler.fire()
        self.assertEqual(len(updates), 2)


class LiveResultsApiTestCase(APITestCase):
    def setUp(self):
        self.exam, self.questions, self.assignments = build_exam(students=2)
        self.admin = User.objects.create_superuser('admin', 'admin@example.com', 'password123')

    def test_requires_admin(self):
        response = self.client.get(reverse('live_results', args=[self.exam.pk]))
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_snapshot(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(reverse('live_results', args=[self.exam.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['total_students'], 2)

    def test_stream_sends_stats_on_connect(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(reverse('live_results_stream', args=[self.exam.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'text/event-stream')

        feed = get_feed()
        subscribers = len(feed)
        chunk = next(iter(response.streaming_content))
        if isinstance(chunk, bytes):
            chunk = chunk.decode('utf-8')
        event, data = chunk.strip().split('\n')
        self.assertEqual(event, 'event: stats')
        self.assertEqual(json.loads(data[len('data: '):])['total_students'], 2)
        self.assertEqual(len(feed), subscribers + 2)

        response.close()
        self.assertEqual(len(feed), subscribers)
