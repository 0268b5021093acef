from django.urls import path
from . import views

urlpatterns = [
    path('signin/', views.signin, name='signin'),
    path('signout/', views.signout, name='signout'),
    path('refresh/', views.refresh, name='token_refresh'),
    path('me/', views.me, name='me'),
    path('change-password/', views.change_password, name='change_password'),
]
