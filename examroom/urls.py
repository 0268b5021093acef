from django.urls import path
from . import views

urlpatterns = [
    path('login/', views.login, name='exam_login'),
    path('logout/', views.logout, name='exam_logout'),
    path('<uuid:exam_id>/session/', views.session, name='exam_session'),
    path('<uuid:exam_id>/answers/', views.submit_answer, name='exam_answer'),
    path('<uuid:exam_id>/finish/', views.finish, name='exam_finish'),
    path('<uuid:exam_id>/result/', views.result, name='exam_result'),
    path('<uuid:exam_id>/status/', views.exam_status, name='exam_status'),
]
