# apps/sync/consumers.py

import json
import logging

from channels.generic.websocket import AsyncWebsocketConsumer
from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

from .exceptions import InvalidRequest, NotAMember, PersistenceFailure, SyncError
from .handlers import Origin, get_engine
from .intents import parse_request

logger = logging.getLogger(__name__)


class BoardConsumer(AsyncWebsocketConsumer):
    """
    Consumer WebSocket da sincronização do quadro

    Funcionalidades:
    - Autenticação do handshake antes de qualquer evento
    - Entrada/saída da sala do quadro (uma sala por conexão)
    - Mutações com broadcast otimista para os demais membros
    - Presença (user-joined / user-left), ping e resync sob demanda
    """

    async def connect(self):
        """
        Autentica o handshake; sem usuário a conexão é fechada
        """
        self.board_id = None
        self.engine = get_engine()
        self.authorization = import_string(settings.SYNC_AUTHORIZATION)()
        self.user = await self.authorization.authenticate(self.scope)

        if self.user is None:
            logger.warning("❌ Conexão WebSocket rejeitada - usuário não autenticado")
            await self.close()
            return

        await self.accept()
        logger.info(f"✅ WebSocket conectado - {self.user.username}")

    async def disconnect(self, close_code):
        """
        Sai da sala; persistências em andamento continuam
        """
        if getattr(self, 'board_id', None) is not None:
            await self.leave_room(self.board_id)

        if getattr(self, 'user', None) is not None:
            logger.info(f"🔌 WebSocket desconectado - {self.user.username}")

    async def receive(self, text_data=None, bytes_data=None):
        """
        Recebe um frame {"event", "requestId", "data"} e despacha
        """
        request_id = None
        try:
            message = json.loads(text_data or '')
            if isinstance(message, dict) and isinstance(message.get('requestId'), (str, int)):
                request_id = str(message['requestId'])

            intent = parse_request(message)
            await self.dispatch_intent(intent)

        except json.JSONDecodeError:
            logger.error(f"❌ JSON inválido recebido via WebSocket de {self.user.username}")
            await self.send_error(None, InvalidRequest('JSON inválido'))
        except SyncError as e:
            await self.send_error(request_id, e)
        except PersistenceFailure as e:
            logger.error(f"❌ Store indisponível para {self.user.username}: {e}")
            await self.send_error(request_id, SyncError(str(e)))
        except Exception:
            logger.exception("❌ Erro no WebSocket receive")

    async def dispatch_intent(self, intent):
        # Heartbeat
        if intent.event == 'ping':
            await self.send_event('pong', {'timestamp': self.get_timestamp()})
            return

        if intent.event == 'join-board':
            await self.join_room(intent.board_id)
            return

        if intent.event == 'leave-board':
            await self.leave_room(intent.board_id)
            return

        # Daqui em diante só vale para a sala em que a conexão está
        if intent.board_id != self.board_id:
            logger.warning(
                f"❌ {self.user.username} tentou {intent.event} no quadro {intent.board_id} "
                f"fora da sala ({self.board_id})"
            )
            raise NotAMember(f'Conexão não está na sala do quadro {intent.board_id}')

        # Sincronização de estado do quadro
        if intent.event == 'sync-board':
            layout, revision = await self.engine.store.resolve(self.board_id)
            await self.send_event('board-synced', {'layout': layout, 'revision': revision})
            return

        if not intent.is_mutation:
            raise InvalidRequest(f'Evento sem handler: {intent.event}')

        origin = Origin(
            channel_name=self.channel_name,
            user_id=str(self.user.pk),
            username=self.user.username,
        )
        await self.engine.handle(origin, intent)

        if intent.needs_ack:
            await self.send(text_data=json.dumps({'event': 'ack', 'requestId': intent.request_id}))

    # === Salas ===

    async def join_room(self, board_id):
        """
        Entra na sala do quadro se o usuário for membro

        Recusa não altera a sala atual. Entrar em outro quadro sai do
        anterior.
        """
        if not await self.authorization.is_member(self.user, board_id):
            logger.warning(f"❌ {self.user.username} sem acesso ao quadro {board_id}")
            raise NotAMember(f'Sem acesso ao quadro {board_id}')

        if self.board_id == board_id:
            return

        if self.board_id is not None:
            await self.leave_room(self.board_id)

        await self.engine.dispatcher.join(board_id, self.channel_name)
        self.board_id = board_id

        await self.engine.dispatcher.broadcast(
            board_id, 'user-joined', self.presence(), exclude=self.channel_name
        )
        logger.info(f"📋 {self.user.username} entrou no quadro {board_id}")

    async def leave_room(self, board_id):
        """Sai da sala; no-op se a conexão não estiver nela"""
        if self.board_id != board_id:
            return

        await self.engine.dispatcher.leave(board_id, self.channel_name)
        self.board_id = None

        await self.engine.dispatcher.broadcast(board_id, 'user-left', self.presence())
        logger.info(f"🚪 {self.user.username} saiu do quadro {board_id}")

    # === Handlers do channel layer ===

    async def room_event(self, event):
        """
        Repassa um broadcast da sala, exceto para quem o originou
        """
        if event.get('exclude') == self.channel_name:
            return
        await self.send_event(event['event'], event['data'])

    # === Métodos auxiliares ===

    async def send_event(self, name, data):
        await self.send(text_data=json.dumps({'event': name, 'data': data}))

    async def send_error(self, request_id, error):
        await self.send(text_data=json.dumps({
            'event': 'error',
            'requestId': request_id,
            'data': error.as_payload(),
        }))

    def presence(self):
        return {'userId': str(self.user.pk), 'username': self.user.username}

    def get_timestamp(self):
        """
        Retorna timestamp atual em formato ISO
        """
        return timezone.now().isoformat()
