# apps/sync/routing.py

from django.urls import re_path
from . import consumers

# Rotas WebSocket da sincronização do quadro
websocket_urlpatterns = [
    re_path(r'ws/sync/$', consumers.BoardConsumer.as_asgi()),
]
