# apps/core/middleware.py

from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware

from .permissions import usuario_do_token


class TokenAuthMiddleware(BaseMiddleware):
    """
    Autenticação do handshake WebSocket por token assinado

    Roda dentro do AuthMiddlewareStack: se a sessão já autenticou o
    usuário nada muda; senão tenta o parâmetro ?token= da URL.
    """

    async def __call__(self, scope, receive, send):
        scope = dict(scope)
        user = scope.get('user')

        if user is None or not user.is_authenticated:
            query = parse_qs(scope.get('query_string', b'').decode())
            token = query.get('token', [None])[0]
            if token:
                scope['user'] = await database_sync_to_async(usuario_do_token)(token)

        return await super().__call__(scope, receive, send)
