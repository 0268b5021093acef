import base64
import binascii
import json
import time
from dataclasses import dataclass

from .exceptions import InvalidEntryToken

REQUIRED_KEYS = ('examId', 'studentId', 'studentCode')


@dataclass(frozen=True)
class EntryToken:
    exam_id: str
    student_id: str
    student_code: str
    timestamp: int


def encode_entry_token(exam_id, student_id, student_code, timestamp=None):
    payload = {
        'examId': str(exam_id),
        'studentId': str(student_id),
        'studentCode': student_code,
        'timestamp': int(time.time() * 1000) if timestamp is None else timestamp,
    }
    return base64.b64encode(json.dumps(payload).encode('utf-8')).decode('ascii')


def decode_entry_token(raw):
    if not raw:
        raise InvalidEntryToken()
    try:
        payload = json.loads(base64.b64decode(raw, validate=True).decode('utf-8'))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        raise InvalidEntryToken()

    if not isinstance(payload, dict) or any(not payload.get(key) for key in REQUIRED_KEYS):
        raise InvalidEntryToken()

    try:
        timestamp = int(payload.get('timestamp') or 0)
    except (TypeError, ValueError):
        raise InvalidEntryToken()

    return EntryToken(
        exam_id=str(payload['examId']),
        student_id=str(payload['studentId']),
        student_code=str(payload['studentCode']),
        timestamp=timestamp,
    )
