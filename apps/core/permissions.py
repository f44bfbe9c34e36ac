# apps/core/permissions.py

"""
Oráculo de autorização do quadro

Duas perguntas apenas:
- a conexão está autenticada como qual usuário?
- o usuário é membro (pode editar) do quadro?
"""

from channels.db import database_sync_to_async
from django.conf import settings
from django.contrib.auth.models import AnonymousUser
from django.core import signing
from django.core.exceptions import ValidationError

TOKEN_SALT = 'apps.sync.token'


def gerar_token(usuario) -> str:
    """Token assinado para o handshake do WebSocket (?token=...)"""
    return signing.dumps({'uid': usuario.pk}, salt=TOKEN_SALT)


def usuario_do_token(token):
    """
    Valida o token e retorna o usuário

    Assinatura inválida, expirada ou usuário inativo -> AnonymousUser
    """
    from .models import Usuario

    try:
        data = signing.loads(token, salt=TOKEN_SALT, max_age=settings.SYNC_TOKEN_MAX_AGE)
    except signing.BadSignature:
        return AnonymousUser()

    try:
        return Usuario.objects.get(pk=data.get('uid'), is_active=True)
    except (Usuario.DoesNotExist, ValueError, TypeError):
        return AnonymousUser()


class BoardPermissions:
    """Oráculo padrão, sobre Usuario/Projeto"""

    @staticmethod
    def tem_acesso_board(user, board_id):
        """Verifica se o usuário é membro do quadro"""
        from .models import Projeto

        if user is None or not user.is_authenticated:
            return False

        try:
            projeto = Projeto.objects.get(pk=board_id)
        except (Projeto.DoesNotExist, ValueError, ValidationError):
            return False

        return projeto.eh_membro(user)

    async def authenticate(self, scope):
        """Usuário autenticado do handshake, ou None"""
        user = scope.get('user')
        if user is None or not user.is_authenticated:
            return None
        return user

    async def is_member(self, user, board_id):
        return await database_sync_to_async(self.tem_acesso_board)(user, board_id)
