from rest_framework import serializers

from panel.models import Exam, Question
from .models import Result


class ExamInfoSerializer(serializers.ModelSerializer):
    class Meta:
        model = Exam
        fields = ['id', 'title', 'description', 'duration', 'passing_grade', 'start_date', 'end_date']


class StudentQuestionSerializer(serializers.ModelSerializer):
    # correct_answer is deliberately absent
    options = serializers.ReadOnlyField()

    class Meta:
        model = Question
        fields = ['id', 'question_text', 'question_type', 'options', 'points', 'order']


class ResultSerializer(serializers.ModelSerializer):
    class Meta:
        model = Result
        fields = [
            'score', 'correct_count', 'wrong_count', 'unanswered_count',
            'total_questions', 'created_at',
        ]


class LoginSerializer(serializers.Serializer):
    student_code = serializers.CharField(max_length=6, trim_whitespace=True)

    def to_internal_value(self, data):
        # The login form posts the field as "student-code"
        if hasattr(data, 'get') and 'student-code' in data and 'student_code' not in data:
            data = {'student_code': data.get('student-code')}
        return super().to_internal_value(data)


class AnswerSubmitSerializer(serializers.Serializer):
    question_id = serializers.UUIDField()
    answer = serializers.CharField(allow_blank=True, allow_null=True, trim_whitespace=False, max_length=500)


def session_payload(snapshot):
    """Serialize a ``SessionSnapshot`` for the exam page."""
    return {
        'exam': ExamInfoSerializer(snapshot.exam).data,
        'student': snapshot.assignment.student.full_name,
        'student_code': snapshot.assignment.student_code,
        'questions': StudentQuestionSerializer(snapshot.questions, many=True).data,
        'answers': snapshot.answers,
        'started_at': snapshot.started_at,
        'remaining_seconds': snapshot.remaining_seconds,
        'finished': snapshot.finished,
        'result': ResultSerializer(snapshot.result).data if snapshot.result else None,
    }
