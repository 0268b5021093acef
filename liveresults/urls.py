from django.urls import path
from . import views

urlpatterns = [
    path('<uuid:exam_id>/', views.snapshot, name='live_results'),
    path('<uuid:exam_id>/stream/', views.stream, name='live_results_stream'),
]
