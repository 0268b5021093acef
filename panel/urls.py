from django.urls import include, path
from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register(r'departments', views.DepartmentViewSet, basename='department')
router.register(r'students', views.StudentViewSet, basename='student')
router.register(r'exams', views.ExamViewSet, basename='exam')
router.register(r'questions', views.QuestionViewSet, basename='question')

urlpatterns = [
    path('overview/', views.overview, name='panel_overview'),
    path('performance/', views.performance, name='panel_performance'),
    path('', include(router.urls)),
]
