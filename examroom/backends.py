import logging

import requests
from django.db import DatabaseError
from django.utils import timezone

from . import services
from .exceptions import BackendError, InvalidEntryToken, error_for_reason
from .serializers import ResultSerializer, session_payload

logger = logging.getLogger(__name__)


class ExamBackend:
    """What an ``ExamSession`` needs from the server, for one student and exam.

    ``initialize`` returns the session payload, ``record_answer`` persists one
    answer, ``finish`` returns the score card and ``status`` returns
    ``{"is_active", "remaining_seconds", "finished"}``. Failures are raised
    as ``ExamError`` subclasses.
    """

    def initialize(self):
        raise NotImplementedError

    def record_answer(self, question_id, answer):
        raise NotImplementedError

    def finish(self):
        raise NotImplementedError

    def status(self):
        raise NotImplementedError


class LocalBackend(ExamBackend):
    """Calls the exam services in-process."""

    def __init__(self, exam_id, student_code, clock=None):
        self.exam_id = exam_id
        self.student_code = student_code
        self.clock = clock or timezone.now

    def _assignment(self):
        return services.find_assignment(self.exam_id, self.student_code)

    def _call(self, operation):
        try:
            return operation()
        except DatabaseError as e:
            logger.exception(f"Database error for exam {self.exam_id}")
            raise BackendError(str(e))

    def initialize(self):
        return self._call(lambda: session_payload(
            services.initialize_session(self._assignment(), now=self.clock())
        ))

    def record_answer(self, question_id, answer):
        self._call(lambda: services.record_answer(
            self._assignment(), question_id, answer, now=self.clock()
        ))

    def finish(self):
        def submit():
            result, _ = services.finish_exam(self._assignment())
            return dict(ResultSerializer(result).data)
        return self._call(submit)

    def status(self):
        return self._call(lambda: services.exam_status(self._assignment(), now=self.clock()))


class HttpBackend(ExamBackend):
    """Talks to a running server over the student-facing HTTP API."""

    def __init__(self, base_url, exam_id, student_code, session=None, timeout=10):
        self.base_url = base_url.rstrip('/')
        self.exam_id = exam_id
        self.student_code = student_code
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logged_in = False

    def _url(self, path):
        return f"{self.base_url}{path}"

    def _request(self, method, path, **kwargs):
        try:
            response = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise BackendError(f"Could not reach the exam server: {e}")

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            reason = body.get('reason')
            message = body.get('error')
            if reason:
                raise error_for_reason(reason, message)
            if response.status_code == 401:
                raise InvalidEntryToken(message)
            raise BackendError(message or f"Server responded with {response.status_code}")

        try:
            return response.json()
        except ValueError:
            raise BackendError('The exam server returned an invalid response.')

    def login(self):
        data = self._request('POST', '/exam/login/', json={'student-code': self.student_code})
        self.exam_id = data.get('exam_id', self.exam_id)
        self.logged_in = True
        return data

    def _exam_path(self, suffix):
        return f"/exam/{self.exam_id}/{suffix}/"

    def initialize(self):
        if not self.logged_in:
            self.login()
        return self._request('GET', self._exam_path('session'), params={'code': self.student_code})

    def record_answer(self, question_id, answer):
        self._request(
            'POST', self._exam_path('answers'),
            json={'question_id': str(question_id), 'answer': answer},
        )

    def finish(self):
        return self._request('POST', self._exam_path('finish'))

    def status(self):
        return self._request('GET', self._exam_path('status'))
