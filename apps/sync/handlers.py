# apps/sync/handlers.py

"""
Handlers de mutação do quadro

Cada mutação passa por duas etapas:
1. calcular o novo estado e fazer o broadcast otimista para a sala;
2. aplicar a mesma mudança no store em background.

Se a etapa 2 falhar, gravar algo diferente do que foi enviado ou não
encontrar o alvo da mutação, a sala inteira recebe 'layout-resync' com
o layout autoritativo.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from channels.layers import get_channel_layer
from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

from . import ordering
from .broadcast import BroadcastDispatcher
from .ordering import BoardLayout, Column
from .persistence import LayoutStore, apply_with_retry

logger = logging.getLogger(__name__)


@dataclass
class Origin:
    """Conexão que originou a mutação"""

    channel_name: str
    user_id: Optional[str] = None
    username: str = ''


def _archive_all(column_id):
    def mutate(layout):
        drain = ordering.archive_all(layout, column_id)
        return drain.layout, drain.drained
    return mutate


def _delete_column(column_index):
    def mutate(layout):
        drain = ordering.delete_column(layout, column_index)
        return drain.layout, drain.drained
    return mutate


def _move_column(from_index, to_index):
    def mutate(layout):
        return ordering.move_column(layout, from_index, to_index), []
    return mutate


class MutationHandlers:
    """
    Um handler por tipo de mutação

    As tarefas de persistência ficam em self._pending e sobrevivem ao
    fechamento da conexão que as originou.
    """

    HANDLERS = {
        'add-task': 'add_task',
        'move-task': 'move_task',
        'add-list': 'add_list',
        'move-list': 'move_list',
        'rename-list': 'rename_list',
        'rename-board': 'rename_board',
        'archive-task': 'archive_task',
        'delete-task': 'delete_task',
        'archive-column': 'archive_column',
        'delete-list': 'delete_list',
    }

    def __init__(self, store: LayoutStore, dispatcher: BroadcastDispatcher):
        self.store = store
        self.dispatcher = dispatcher
        self._pending = set()

    async def handle(self, origin: Origin, intent):
        """Executa a etapa 1 da intenção e agenda a etapa 2"""
        handler = getattr(self, self.HANDLERS[intent.event])
        await handler(origin, str(intent.board_id), intent.data)

    # === Etapa 2: persistência assíncrona ===

    def _persist(self, board_id, description, coro):
        task = asyncio.ensure_future(self._run_persistence(board_id, description, coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run_persistence(self, board_id, description, coro):
        try:
            await coro
        except Exception:
            logger.exception(f"❌ Falha ao persistir {description} no quadro {board_id}")
            await self.resync(board_id)

    async def resync(self, board_id):
        """Reenvia o layout autoritativo para a sala inteira"""
        try:
            layout, revision = await self.store.resolve(board_id)
        except Exception:
            logger.exception(f"❌ Não foi possível ler o layout do quadro {board_id} para resync")
            return
        await self.dispatcher.broadcast(board_id, 'layout-resync', {'layout': layout, 'revision': revision})
        logger.warning(f"🔄 Layout do quadro {board_id} reenviado (rev {revision})")

    async def drain(self):
        """Aguarda todas as persistências em andamento"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _replace(self, board_id, mutate, broadcasted: BoardLayout):
        committed, drained = await apply_with_retry(self.store, board_id, mutate)
        if drained:
            await self.store.set_archived(drained, True)
        await self._reconcile(board_id, committed, broadcasted)

    async def _reconcile(self, board_id, committed: BoardLayout, broadcasted: BoardLayout):
        if committed.to_dict() != broadcasted.to_dict():
            logger.info(f"🔀 Layout gravado no quadro {board_id} difere do broadcast")
            await self.resync(board_id)

    async def _broadcast_layout(self, origin, board_id, layout):
        resolved = await self.store.resolve_layout(board_id, layout)
        await self.dispatcher.broadcast(
            board_id, 'layout-updated', {'layout': resolved}, exclude=origin.channel_name
        )

    # === Tarefas ===

    async def add_task(self, origin, board_id, data):
        now = timezone.now().isoformat()
        task = {
            'id': str(uuid.uuid4()),
            'title': data['title'],
            'description': '',
            'deadline': None,
            'comments': [],
            'labels': [],
            'users': [],
            'author': origin.username,
            'creatorId': origin.user_id,
            'boardId': board_id,
            'archived': False,
            'createdAt': now,
            'updatedAt': now,
        }
        column_id = data['columnId']

        await self.dispatcher.broadcast(
            board_id, 'task-added', {'task': task, 'columnId': column_id}, exclude=origin.channel_name
        )
        self._persist(board_id, 'add-task', self._store_new_task(board_id, column_id, task))

    async def _store_new_task(self, board_id, column_id, task):
        if not await self.store.insert_task(board_id, column_id, task):
            logger.warning(f"⚠️ Coluna {column_id} não existe mais no quadro {board_id}; tarefa descartada")
            await self.resync(board_id)

    async def move_task(self, origin, board_id, data):
        source, dest = data['source'], data['dest']
        layout, _ = await self.store.load(board_id)
        moved = ordering.move_task(layout, data['taskId'], source['column_id'], dest['column_id'], dest['index'])

        await self._broadcast_layout(origin, board_id, moved)
        self._persist(board_id, 'move-task', self._store_move(board_id, data, moved))

    async def _store_move(self, board_id, data, broadcasted):
        source, dest = data['source'], data['dest']
        committed = await self.store.move_task(
            board_id, data['taskId'], source['column_id'], dest['column_id'], dest['index']
        )
        await self._reconcile(board_id, committed, broadcasted)

    async def archive_task(self, origin, board_id, data):
        await self.dispatcher.broadcast(
            board_id,
            'task-archived',
            {'taskId': data['taskId'], 'columnId': data['columnId']},
            exclude=origin.channel_name
        )
        self._persist(board_id, 'archive-task', self._store_archive(board_id, data['columnId'], data['taskId']))

    async def _store_archive(self, board_id, column_id, task_id):
        archived = await self.store.archive_task(board_id, column_id, task_id)
        if archived is None:
            logger.info(f"🔀 Tarefa {task_id} já não estava em coluna alguma do quadro {board_id}")
            await self.resync(board_id)

    async def delete_task(self, origin, board_id, data):
        await self.dispatcher.broadcast(
            board_id, 'task-deleted', {'taskId': data['taskId']}, exclude=origin.channel_name
        )
        self._persist(board_id, 'delete-task', self._store_delete(board_id, data['taskId']))

    async def _store_delete(self, board_id, task_id):
        deleted = await self.store.delete_archived_task(board_id, task_id)
        if not deleted:
            logger.info(f"🔀 Tarefa {task_id} não estava no arquivo do quadro {board_id}")
            await self.resync(board_id)

    # === Colunas ===

    async def add_list(self, origin, board_id, data):
        column = Column(id=str(uuid.uuid4()), title=data['title'])
        await self.dispatcher.broadcast(
            board_id, 'list-added', {'column': column.to_dict()}, exclude=origin.channel_name
        )
        self._persist(board_id, 'add-list', self.store.push_column(board_id, column))

    async def move_list(self, origin, board_id, data):
        mutate = _move_column(data['fromIndex'], data['toIndex'])
        layout, _ = await self.store.load(board_id)
        moved, _ = mutate(layout)

        await self._broadcast_layout(origin, board_id, moved)
        self._persist(board_id, 'move-list', self._replace(board_id, mutate, moved))

    async def rename_list(self, origin, board_id, data):
        await self.dispatcher.broadcast(
            board_id,
            'list-renamed',
            {'columnIndex': data['columnIndex'], 'title': data['title']},
            exclude=origin.channel_name
        )
        self._persist(board_id, 'rename-list', self._store_column_title(
            board_id, data['columnIndex'], data['title']
        ))

    async def _store_column_title(self, board_id, column_index, title):
        if not await self.store.set_column_title(board_id, column_index, title):
            logger.info(f"🔀 Coluna {column_index} não existe no quadro {board_id}")
            await self.resync(board_id)

    async def rename_board(self, origin, board_id, data):
        await self.dispatcher.broadcast(
            board_id, 'board-renamed', {'title': data['title']}, exclude=origin.channel_name
        )
        self._persist(board_id, 'rename-board', self.store.set_board_title(board_id, data['title']))

    async def archive_column(self, origin, board_id, data):
        mutate = _archive_all(data['columnId'])
        layout, _ = await self.store.load(board_id)
        drained_layout, _ = mutate(layout)

        await self._broadcast_layout(origin, board_id, drained_layout)
        self._persist(board_id, 'archive-column', self._replace(board_id, mutate, drained_layout))

    async def delete_list(self, origin, board_id, data):
        mutate = _delete_column(data['columnIndex'])
        layout, _ = await self.store.load(board_id)
        remaining, _ = mutate(layout)

        await self._broadcast_layout(origin, board_id, remaining)
        self._persist(board_id, 'delete-list', self._replace(board_id, mutate, remaining))


@lru_cache(maxsize=None)
def get_engine() -> MutationHandlers:
    """Handlers do processo, com o store configurado em SYNC_LAYOUT_STORE"""
    store = import_string(settings.SYNC_LAYOUT_STORE)()
    return MutationHandlers(store, BroadcastDispatcher(get_channel_layer()))
