from django.contrib import admin
from .models import Department, Exam, ExamStudent, Question, Student


class QuestionInline(admin.TabularInline):
    model = Question
    extra = 1


class ExamStudentInline(admin.TabularInline):
    model = ExamStudent
    extra = 0
    readonly_fields = ('student_code', 'started_at', 'last_activity')


@admin.register(Department)
class DepartmentAdmin(admin.ModelAdmin):
    list_display = ('name', 'active', 'created_at')
    search_fields = ('name',)


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('name', 'surname', 'phone', 'department', 'student_code', 'active')
    list_filter = ('active', 'department')
    search_fields = ('name', 'surname', 'phone', 'student_code')
    readonly_fields = ('student_code',)


@admin.register(Exam)
class ExamAdmin(admin.ModelAdmin):
    list_display = ('title', 'department', 'duration', 'passing_grade', 'is_active', 'created_at')
    list_filter = ('is_active', 'department')
    search_fields = ('title',)
    inlines = [QuestionInline, ExamStudentInline]
    actions = ['activate', 'deactivate']

    def activate(self, request, queryset):
        count = queryset.update(is_active=True)
        self.message_user(request, f"{count} exams activated.")

    def deactivate(self, request, queryset):
        count = queryset.update(is_active=False)
        self.message_user(request, f"{count} exams deactivated.")

    activate.short_description = 'Activate selected exams'
    deactivate.short_description = 'Deactivate selected exams'
