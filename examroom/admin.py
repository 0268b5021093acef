from django.contrib import admin
from .models import Answer, Result


@admin.register(Answer)
class AnswerAdmin(admin.ModelAdmin):
    list_display = ('student', 'exam', 'question', 'student_answer', 'is_correct', 'updated_at')
    list_filter = ('exam', 'is_correct')
    search_fields = ('student__name', 'student__surname', 'student__student_code')


@admin.register(Result)
class ResultAdmin(admin.ModelAdmin):
    list_display = ('student', 'exam', 'score', 'correct_count', 'wrong_count', 'unanswered_count', 'created_at')
    list_filter = ('exam', 'created_at')
    search_fields = ('student__name', 'student__surname')
