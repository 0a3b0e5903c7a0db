# config/urls.py

from django.urls import path, include

urlpatterns = [
    # API do board (JSON + SSE)
    path('board/', include('apps.board.urls')),
]
