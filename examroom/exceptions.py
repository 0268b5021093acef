class ExamError(Exception):
    """Base class for errors raised while taking an exam."""

    status_code = 400
    reason = 'exam_error'
    default_message = 'The exam request could not be processed.'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidEntryToken(ExamError):
    reason = 'invalid_token'
    status_code = 401
    default_message = 'Your exam session is invalid. Please log in with your entry code again.'


class AssignmentNotFound(ExamError):
    reason = 'assignment_not_found'
    status_code = 404
    default_message = 'No exam registration was found for this entry code.'


class ExamNotActive(ExamError):
    reason = 'exam_not_active'
    status_code = 403
    default_message = 'This exam has not been started yet. Please wait for your instructor.'


class ExamClosed(ExamError):
    reason = 'exam_closed'
    status_code = 403
    default_message = 'This exam is no longer available.'


class ExamHasNoQuestions(ExamError):
    reason = 'no_questions'
    status_code = 409
    default_message = 'No questions have been added to this exam yet.'


class SessionClosed(ExamError):
    reason = 'session_closed'
    status_code = 409
    default_message = 'This exam session is closed.'


class BackendError(ExamError):
    reason = 'backend_error'
    status_code = 502
    default_message = 'The exam server could not be reached.'


class QuestionNotFound(ExamError):
    reason = 'question_not_found'
    status_code = 404
    default_message = 'This question does not belong to the exam.'


class ResultNotFound(ExamError):
    reason = 'result_not_found'
    status_code = 404
    default_message = 'No result has been recorded for this exam yet.'


def error_for_reason(reason, message=None):
    """Rebuild the exception a server response describes by its ``reason``."""
    for cls in _all_subclasses(ExamError):
        if cls.reason == reason:
            return cls(message)
    return ExamError(message)


def _all_subclasses(cls):
    for subclass in cls.__subclasses__():
        yield subclass
        yield from _all_subclasses(subclass)
