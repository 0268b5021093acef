from django.db import transaction
from rest_framework import serializers

from .models import Department, Exam, ExamStudent, Question, Student, validate_question_fields


class DepartmentSerializer(serializers.ModelSerializer):
    student_count = serializers.SerializerMethodField()
    exam_count = serializers.SerializerMethodField()

    class Meta:
        model = Department
        fields = ['id', 'name', 'active', 'created_at', 'student_count', 'exam_count']

    def get_student_count(self, obj):
        count = getattr(obj, 'student_count', None)
        return obj.students.count() if count is None else count

    def get_exam_count(self, obj):
        count = getattr(obj, 'exam_count', None)
        return obj.exams.count() if count is None else count

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Department name is required.')
        return value


class StudentSerializer(serializers.ModelSerializer):
    department_name = serializers.CharField(source='department.name', read_only=True, default=None)

    class Meta:
        model = Student
        fields = [
            'id', 'name', 'surname', 'phone', 'department', 'department_name',
            'active', 'student_code', 'created_at',
        ]
        read_only_fields = ['student_code', 'created_at']

    def _required_text(self, value, label):
        value = (value or '').strip()
        if not value:
            raise serializers.ValidationError(f'{label} is required.')
        return value

    def validate_name(self, value):
        return self._required_text(value, 'Name')

    def validate_surname(self, value):
        return self._required_text(value, 'Surname')

    def validate_phone(self, value):
        return value.strip()


class QuestionSerializer(serializers.ModelSerializer):
    options = serializers.ReadOnlyField()

    class Meta:
        model = Question
        fields = [
            'id', 'exam', 'question_text', 'question_type', 'option_a', 'option_b',
            'option_c', 'option_d', 'options', 'correct_answer', 'points', 'order',
        ]

    def validate(self, attrs):
        instance = self.instance

        def current(name, default=None):
            if name in attrs:
                return attrs[name]
            return getattr(instance, name, default) if instance else default

        question_type = current('question_type', Question.MULTIPLE_CHOICE)
        options = {
            letter: current(f'option_{letter.lower()}', '')
            for letter in Question.OPTION_LETTERS
        }
        errors = validate_question_fields(
            question_type, current('correct_answer', ''), options, current('points', 1)
        )
        if errors:
            raise serializers.ValidationError(errors)

        if 'correct_answer' in attrs:
            answer = attrs['correct_answer'].strip()
            if question_type == Question.MULTIPLE_CHOICE:
                answer = answer.upper()
            elif question_type == Question.TRUE_FALSE:
                answer = answer.lower()
            attrs['correct_answer'] = answer
        return attrs


class NestedQuestionSerializer(QuestionSerializer):
    class Meta(QuestionSerializer.Meta):
        fields = [field for field in QuestionSerializer.Meta.fields if field != 'exam']


class ExamSerializer(serializers.ModelSerializer):
    department_name = serializers.CharField(source='department.name', read_only=True, default=None)
    question_count = serializers.SerializerMethodField()
    student_count = serializers.SerializerMethodField()
    questions = NestedQuestionSerializer(many=True, required=False, write_only=True)

    class Meta:
        model = Exam
        fields = [
            'id', 'title', 'description', 'department', 'department_name', 'start_date',
            'end_date', 'duration', 'passing_grade', 'is_active', 'created_at',
            'question_count', 'student_count', 'questions',
        ]
        read_only_fields = ['is_active', 'created_at']

    def get_question_count(self, obj):
        count = getattr(obj, 'question_count', None)
        return obj.questions.count() if count is None else count

    def get_student_count(self, obj):
        count = getattr(obj, 'student_count', None)
        return obj.assignments.count() if count is None else count

    def validate_title(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Exam title is required.')
        return value

    def validate(self, attrs):
        start_date = attrs.get('start_date', getattr(self.instance, 'start_date', None))
        end_date = attrs.get('end_date', getattr(self.instance, 'end_date', None))
        if start_date and end_date and end_date <= start_date:
            raise serializers.ValidationError({'end_date': 'End date must be after the start date.'})
        return attrs

    def create(self, validated_data):
        questions = validated_data.pop('questions', [])
        with transaction.atomic():
            exam = Exam.objects.create(**validated_data)
            for index, question in enumerate(questions, start=1):
                question.setdefault('order', index)
                Question.objects.create(exam=exam, **question)
        return exam

    def update(self, instance, validated_data):
        # Questions are edited through the questions endpoint
        validated_data.pop('questions', None)
        return super().update(instance, validated_data)


class AssignmentSerializer(serializers.ModelSerializer):
    student = StudentSerializer(read_only=True)
    finished = serializers.SerializerMethodField()

    class Meta:
        model = ExamStudent
        fields = ['id', 'student', 'student_code', 'started_at', 'last_activity', 'created_at', 'finished']

    def get_finished(self, obj):
        return obj.student.results.filter(exam_id=obj.exam_id).exists()


class StudentIdsSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)


class BulkStatusSerializer(StudentIdsSerializer):
    active = serializers.BooleanField()
