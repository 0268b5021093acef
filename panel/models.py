import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator, RegexValidator
from django.db import models

from .codes import unique_entry_code

phone_validator = RegexValidator(r'^\d{10,11}$', 'Enter a valid phone number (10 or 11 digits).')


def default_passing_grade():
    return settings.DEFAULT_PASSING_GRADE


class Department(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class Student(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    surname = models.CharField(max_length=100)
    phone = models.CharField(max_length=11, validators=[phone_validator])
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='students'
    )
    active = models.BooleanField(default=True)
    student_code = models.CharField(max_length=6, unique=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.name} {self.surname}"

    def save(self, *args, **kwargs):
        if not self.student_code:
            self.student_code = unique_entry_code(Student.objects.exclude(pk=self.pk))
        super().save(*args, **kwargs)


class Exam(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    department = models.ForeignKey(
        Department, null=True, blank=True, on_delete=models.SET_NULL, related_name='exams'
    )
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)
    duration = models.PositiveIntegerField(default=60, validators=[MinValueValidator(1)])
    passing_grade = models.PositiveIntegerField(
        default=default_passing_grade, validators=[MaxValueValidator(100)]
    )
    is_active = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return self.title

    def clean(self):
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValidationError({'end_date': 'End date must be after the start date.'})


class Question(models.Model):
    MULTIPLE_CHOICE = 'multiple_choice'
    TRUE_FALSE = 'true_false'
    FILL = 'fill'
    QUESTION_TYPES = [
        (MULTIPLE_CHOICE, 'Multiple choice'),
        (TRUE_FALSE, 'True / false'),
        (FILL, 'Fill in the blank'),
    ]
    OPTION_LETTERS = ('A', 'B', 'C', 'D')

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name='questions')
    question_text = models.TextField()
    question_type = models.CharField(max_length=20, choices=QUESTION_TYPES, default=MULTIPLE_CHOICE)
    option_a = models.CharField(max_length=500, blank=True, default='')
    option_b = models.CharField(max_length=500, blank=True, default='')
    option_c = models.CharField(max_length=500, blank=True, default='')
    option_d = models.CharField(max_length=500, blank=True, default='')
    correct_answer = models.CharField(max_length=500)
    points = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)])
    order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['order', 'created_at']

    def __str__(self):
        return self.question_text[:50]

    @property
    def options(self):
        return {
            letter: getattr(self, f'option_{letter.lower()}')
            for letter in self.OPTION_LETTERS
        }

    def clean(self):
        errors = validate_question_fields(
            self.question_type, self.correct_answer, self.options, self.points
        )
        if errors:
            raise ValidationError(errors)


def validate_question_fields(question_type, correct_answer, options, points):
    """Return a field -> message dict for a question that breaks the answer rules."""
    errors = {}
    correct_answer = (correct_answer or '').strip()
    if points is not None and points < 1:
        errors['points'] = 'Points must be a positive integer.'
    if question_type == Question.MULTIPLE_CHOICE:
        letter = correct_answer.upper()
        if letter not in Question.OPTION_LETTERS:
            errors['correct_answer'] = 'Correct answer must be one of A, B, C or D.'
        elif not (options.get(letter) or '').strip():
            errors['correct_answer'] = f'Option {letter} is empty.'
    elif question_type == Question.TRUE_FALSE:
        if correct_answer.lower() not in ('true', 'false'):
            errors['correct_answer'] = 'Correct answer must be "true" or "false".'
    elif not correct_answer:
        errors['correct_answer'] = 'Correct answer is required.'
    return errors


class ExamStudent(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    exam = models.ForeignKey(Exam, on_delete=models.CASCADE, related_name='assignments')
    student = models.ForeignKey(Student, on_delete=models.CASCADE, related_name='assignments')
    student_code = models.CharField(max_length=6, blank=True, db_index=True)
    # Authoritative start of the student's attempt; remaining time is derived from it
    started_at = models.DateTimeField(null=True, blank=True)
    last_activity = models.DateTimeField(null=True, blank=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['created_at']
        constraints = [
            models.UniqueConstraint(fields=['exam', 'student'], name='unique_exam_student'),
            models.UniqueConstraint(fields=['exam', 'student_code'], name='unique_exam_student_code'),
        ]

    def __str__(self):
        return f"{self.student} - {self.exam}"

    def save(self, *args, **kwargs):
        if not self.student_code:
            self.student_code = unique_entry_code(
                ExamStudent.objects.filter(exam_id=self.exam_id).exclude(pk=self.pk)
            )
        super().save(*args, **kwargs)
