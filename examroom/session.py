import logging
import threading

from django.conf import settings

from .exceptions import ExamError, ExamNotActive, SessionClosed

logger = logging.getLogger(__name__)

LOADING = 'loading'
NOT_STARTED = 'not_started'
ACTIVE = 'active'
FINISHING = 'finishing'
FINISHED = 'finished'
SUBMIT_FAILED = 'submit_failed'
STOPPED = 'stopped'
ERROR = 'error'


class ExamSession:
    """One student's attempt as the exam page runs it.

    The session counts down locally once per ``tick_interval``, polls the
    backend for deactivation, saves answers and submits the attempt once when
    time runs out or the student finishes. Server time stays authoritative:
    every status poll resynchronises ``remaining``.
    """

    def __init__(self, backend, scheduler, tick_interval=1, status_interval=None,
                 debounce_seconds=None, finish_retries=None):
        self.backend = backend
        self.scheduler = scheduler
        self.tick_interval = tick_interval
        self.status_interval = (
            status_interval if status_interval is not None else settings.EXAM_STATUS_POLL_SECONDS
        )
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.EXAM_ANSWER_DEBOUNCE_SECONDS
        )
        self.finish_retries = (
            finish_retries if finish_retries is not None else settings.EXAM_FINISH_RETRIES
        )

        self.state = LOADING
        self.exam = {}
        self.student = ''
        self.questions = []
        self.answers = {}
        self.current_index = 0
        self.remaining = None
        self.result = None
        self.last_error = None

        self._lock = threading.RLock()
        self._timers = []
        self._pending = {}
        self._flush_handles = {}
        self._finish_started = False

    # Lifecycle

    def start(self):
        try:
            snapshot = self.backend.initialize()
        except ExamNotActive as e:
            self.state = NOT_STARTED
            self.last_error = e.message
            return self.state
        except ExamError as e:
            logger.warning(f"Exam session could not be loaded: {e.message}")
            self.state = ERROR
            self.last_error = e.message
            return self.state

        with self._lock:
            self.exam = snapshot['exam']
            self.student = snapshot.get('student', '')
            self.questions = list(snapshot['questions'])
            self.answers = {str(k): v for k, v in (snapshot.get('answers') or {}).items()}
            self.remaining = snapshot['remaining_seconds']
            if snapshot.get('finished'):
                self.state = FINISHED
                self.result = snapshot.get('result')
                self._finish_started = True
                return self.state
            self.state = ACTIVE

        if self.remaining <= 0:
            self._expire()
            return self.state

        self._timers = [
            self.scheduler.call_every(self.tick_interval, self._tick),
            self.scheduler.call_every(self.status_interval, self.poll_status),
        ]
        return self.state

    def close(self):
        with self._lock:
            self._cancel_timers()
            for handle in self._flush_handles.values():
                handle.cancel()
            self._flush_handles.clear()

    def _cancel_timers(self):
        for handle in self._timers:
            handle.cancel()
        self._timers = []

    def _ensure_active(self):
        if self.state != ACTIVE:
            raise SessionClosed(self.last_error or 'This exam session is no longer active.')

    # Countdown

    def _tick(self):
        with self._lock:
            if self.state != ACTIVE:
                return
            self.remaining = max(0, self.remaining - self.tick_interval)
            expired = self.remaining <= 0
        if expired:
            self._expire()

    def _expire(self):
        logger.info(f"Time is up for exam {self.exam.get('id')}")
        self.finish()

    def poll_status(self):
        if self.state != ACTIVE:
            return
        try:
            status = self.backend.status()
        except ExamError as e:
            # The next poll asks again
            logger.warning(f"Status check failed: {e.message}")
            return

        if not status.get('is_active', True):
            self._stop()
        elif status.get('finished'):
            with self._lock:
                self._cancel_timers()
                self._finish_started = True
                self.state = FINISHED
        else:
            with self._lock:
                self.remaining = status.get('remaining_seconds', self.remaining)
                expired = self.remaining <= 0
            if expired:
                self._expire()

    def _stop(self):
        with self._lock:
            logger.info(f"Exam {self.exam.get('id')} was stopped by the administrator")
            self.state = STOPPED
            self.last_error = 'The exam has been stopped by the administrator.'
            self.close()
            self._pending.clear()

    # Navigation

    @property
    def current_question(self):
        if not self.questions:
            return None
        return self.questions[self.current_index]

    def go_to(self, index):
        if not 0 <= index < len(self.questions):
            raise IndexError(f"Question {index} does not exist")
        self.current_index = index

    def next_question(self):
        if self.current_index < len(self.questions) - 1:
            self.current_index += 1

    def previous_question(self):
        if self.current_index > 0:
            self.current_index -= 1

    def answered_count(self):
        return sum(1 for value in self.answers.values() if value is not None and str(value).strip())

    def _index_of(self, question_id):
        for index, question in enumerate(self.questions):
            if str(question['id']) == str(question_id):
                return index
        raise KeyError(question_id)

    # Answers

    def select_answer(self, question_id, value):
        """Save a choice immediately and move on to the next question.

        Returns ``False`` when the write failed; the previous answer is
        restored in that case.
        """
        question_id = str(question_id)
        with self._lock:
            self._ensure_active()
            index = self._index_of(question_id)
            had_previous = question_id in self.answers
            previous = self.answers.get(question_id)
            self.answers[question_id] = value

        try:
            self.backend.record_answer(question_id, value)
        except ExamError as e:
            logger.warning(f"Answer to question {question_id} was not saved: {e.message}")
            with self._lock:
                if had_previous:
                    self.answers[question_id] = previous
                else:
                    self.answers.pop(question_id, None)
                self.last_error = e.message
            return False

        with self._lock:
            self.last_error = None
            if index < len(self.questions) - 1:
                self.current_index = index + 1
        return True

    def type_answer(self, question_id, text):
        """Buffer typed text; it is saved once typing pauses."""
        question_id = str(question_id)
        with self._lock:
            self._ensure_active()
            self._index_of(question_id)
            self.answers[question_id] = text
            self._pending[question_id] = text
            handle = self._flush_handles.pop(question_id, None)
            if handle is not None:
                handle.cancel()
            self._flush_handles[question_id] = self.scheduler.call_later(
                self.debounce_seconds, lambda: self._flush(question_id)
            )

    def _flush(self, question_id):
        with self._lock:
            self._flush_handles.pop(question_id, None)
            if question_id not in self._pending:
                return True
            text = self._pending.pop(question_id)

        try:
            self.backend.record_answer(question_id, text)
        except ExamError as e:
            logger.warning(f"Typed answer to question {question_id} was not saved: {e.message}")
            with self._lock:
                # Keep the text queued unless a newer keystroke replaced it
                self._pending.setdefault(question_id, text)
                self.last_error = e.message
            return False

        with self._lock:
            self.last_error = None
        return True

    def flush_pending(self):
        with self._lock:
            question_ids = list(self._pending)
            for question_id in question_ids:
                handle = self._flush_handles.pop(question_id, None)
                if handle is not None:
                    handle.cancel()
        return all([self._flush(question_id) for question_id in question_ids])

    @property
    def has_unsaved_answers(self):
        return bool(self._pending)

    # Submission

    def finish(self):
        """Submit the attempt. Only the first call submits; later calls return the result."""
        with self._lock:
            if self._finish_started or self.state != ACTIVE:
                return self.result
            self._finish_started = True
            self.state = FINISHING
            self._cancel_timers()

        self.flush_pending()
        return self._submit()

    def retry_finish(self):
        with self._lock:
            if self.state != SUBMIT_FAILED:
                return self.result
            self.state = FINISHING
        return self._submit()

    def _submit(self):
        attempts = 1 + max(0, self.finish_retries)
        for attempt in range(1, attempts + 1):
            try:
                result = self.backend.finish()
            except ExamError as e:
                logger.warning(f"Finish attempt {attempt}/{attempts} failed: {e.message}")
                self.last_error = e.message
                continue

            with self._lock:
                self.result = result
                self.state = FINISHED
                self.last_error = None
            return result

        logger.error(f"Could not submit exam {self.exam.get('id')} after {attempts} attempts")
        self.state = SUBMIT_FAILED
        return None
