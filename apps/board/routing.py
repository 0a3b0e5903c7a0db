# apps/board/routing.py

from django.urls import re_path
from . import consumers

# Rotas WebSocket da aplicação board
websocket_urlpatterns = [
    # Canal primário de tempo real de um board
    re_path(r'ws/boards/(?P<board_id>\d+)/$', consumers.BoardConsumer.as_asgi()),
]
