from django.apps import AppConfig


class ExamroomConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'examroom'
    verbose_name = 'Exam room'
