# config/asgi.py

import os
from django.core.asgi import get_asgi_application
from channels.routing import ProtocolTypeRouter, URLRouter
from channels.auth import AuthMiddlewareStack

# Configurar Django settings
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.development')

# Importar rotas de WebSocket depois de configurar Django
django_asgi_app = get_asgi_application()

from apps.core.middleware import TokenAuthMiddleware  # noqa: E402
from apps.sync.routing import websocket_urlpatterns  # noqa: E402

# Configuração ASGI
application = ProtocolTypeRouter({
    # HTTP tradicional (admin)
    "http": django_asgi_app,

    # WebSocket: sessão do Django ou ?token= assinado
    "websocket": AuthMiddlewareStack(
        TokenAuthMiddleware(URLRouter(websocket_urlpatterns))
    ),
})
