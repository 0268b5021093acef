from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('auth/', include('authentication.urls')),
    path('panel/', include('panel.urls')),
    path('exam/', include('examroom.urls')),
    path('live-results/', include('liveresults.urls')),
]
