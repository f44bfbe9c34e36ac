# apps/sync/persistence.py

"""
Adaptadores de persistência do layout

Duas classes de operação:
- Atômicas (push/pull posicional, set de campo): aplicadas sob lock da
  linha e comutam entre si.
- Substituição do documento inteiro: só é segura com o token de revisão
  (compare-and-swap). Use apply_with_retry para reaplicar a intenção
  sobre uma leitura nova em caso de conflito.

Toda escrita que altera o layout incrementa a revisão.
"""

import logging
from typing import Callable, Dict, Iterable, Optional, Tuple

from channels.db import database_sync_to_async
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from . import ordering
from .exceptions import PersistenceFailure
from .ordering import BoardLayout, Column

logger = logging.getLogger(__name__)


class BoardNotFound(PersistenceFailure):
    """Quadro sem documento de layout"""


def resolve_layout(board_id, layout: BoardLayout, summaries: Dict[str, Dict]) -> Dict:
    """
    Expande os ids do layout em resumos de tarefa

    Ids sem documento (ainda não gravado ou já excluído) são omitidos.
    O flag 'archived' segue a posição no layout, não o documento.
    """
    def expand(task_ids, archived):
        return [
            dict(summaries[task_id], archived=archived)
            for task_id in task_ids if task_id in summaries
        ]

    return {
        'boardId': str(board_id),
        'columns': [
            {'id': column.id, 'title': column.title, 'tasks': expand(column.tasks, False)}
            for column in layout.columns
        ],
        'archived': expand(layout.archived, True),
    }


def _placed(layout: BoardLayout, column_id, task_id) -> bool:
    column = layout.column(column_id)
    return column is not None and task_id in column.tasks


class LayoutStore:
    """Interface do adaptador de persistência usado pelos handlers"""

    async def load(self, board_id) -> Tuple[BoardLayout, int]:
        """Retorna (layout, revisão)"""
        raise NotImplementedError

    async def replace(self, board_id, layout: BoardLayout, expected_revision: Optional[int] = None) -> bool:
        """
        Substitui o documento inteiro

        Com expected_revision só grava se a revisão não mudou e retorna
        False no conflito. Sem ela a escrita é incondicional e pode
        descartar mudanças concorrentes.
        """
        raise NotImplementedError

    async def push_task(self, board_id, column_id: str, task_id: str) -> bool:
        """Anexa o id ao final da coluna; True se a tarefa ficou na coluna"""
        raise NotImplementedError

    async def insert_task(self, board_id, column_id: str, task: Dict) -> bool:
        """
        Anexa o id à coluna e grava o documento na mesma operação

        Coluna inexistente: nada é gravado e retorna False. O documento
        nunca existe sem o id no layout, nem o contrário.
        """
        raise NotImplementedError

    async def move_task(self, board_id, task_id: str, from_column: str, to_column: str, to_index: int) -> BoardLayout:
        """Move sob lock; retorna o layout como ficou gravado"""
        raise NotImplementedError

    async def push_column(self, board_id, column: Column) -> None:
        raise NotImplementedError

    async def set_column_title(self, board_id, column_index: int, title: str) -> bool:
        """False se o índice não existe mais"""
        raise NotImplementedError

    async def set_board_title(self, board_id, title: str) -> None:
        raise NotImplementedError

    async def archive_task(self, board_id, column_id: str, task_id: str) -> Optional[str]:
        """Pull da coluna + push no arquivo + flag; retorna o id arquivado ou None"""
        raise NotImplementedError

    async def delete_archived_task(self, board_id, task_id: str) -> bool:
        """Pull do arquivo + exclusão do documento; False se não estava arquivada"""
        raise NotImplementedError

    async def set_archived(self, task_ids: Iterable[str], archived: bool = True) -> None:
        raise NotImplementedError

    async def task_summaries(self, task_ids: Iterable[str]) -> Dict[str, Dict]:
        raise NotImplementedError

    async def resolve_layout(self, board_id, layout: BoardLayout) -> Dict:
        summaries = await self.task_summaries(layout.task_ids())
        return resolve_layout(board_id, layout, summaries)

    async def resolve(self, board_id) -> Tuple[Dict, int]:
        """Layout autoritativo já expandido + revisão"""
        layout, revision = await self.load(board_id)
        return await self.resolve_layout(board_id, layout), revision


async def apply_with_retry(store: LayoutStore, board_id, mutate: Callable, max_attempts: Optional[int] = None):
    """
    Lê, aplica mutate e grava com compare-and-swap na revisão

    mutate(layout) -> (novo_layout, extra). Em conflito relê e reaplica.
    Retorna (layout gravado, extra da última aplicação).
    """
    attempts = max_attempts or settings.SYNC_REPLACE_MAX_RETRIES

    for attempt in range(1, attempts + 1):
        layout, revision = await store.load(board_id)
        new_layout, extra = mutate(layout)

        if new_layout.to_dict() == layout.to_dict():
            return new_layout, extra

        if await store.replace(board_id, new_layout, expected_revision=revision):
            return new_layout, extra

        logger.info(f"🔁 Conflito de revisão no quadro {board_id} (tentativa {attempt}/{attempts})")

    raise PersistenceFailure(f"Revisão do quadro {board_id} mudou {attempts} vezes seguidas")


class MemoryLayoutStore(LayoutStore):
    """
    Store em memória para desenvolvimento e testes

    Roda num único event loop e não faz await entre leitura e escrita,
    então cada operação atômica é de fato atômica.
    """

    def __init__(self):
        self._layouts: Dict[str, BoardLayout] = {}
        self._revisions: Dict[str, int] = {}
        self._titles: Dict[str, str] = {}
        self._tasks: Dict[str, Dict] = {}

    # === Helpers síncronos (setup e inspeção) ===

    def create_board(self, board_id, title='', columns=()):
        board_id = str(board_id)
        self._layouts[board_id] = BoardLayout(columns=[
            c if isinstance(c, Column) else Column.from_dict(c) for c in columns
        ])
        self._revisions[board_id] = 0
        self._titles[board_id] = title

    def layout(self, board_id) -> BoardLayout:
        return self._get(board_id).copy()

    def revision(self, board_id) -> int:
        self._get(board_id)
        return self._revisions[str(board_id)]

    def title(self, board_id) -> str:
        return self._titles[str(board_id)]

    def task(self, task_id) -> Optional[Dict]:
        task = self._tasks.get(str(task_id))
        return dict(task) if task else None

    def put_task(self, task: Dict) -> None:
        self._tasks[str(task['id'])] = dict(task)

    def _get(self, board_id) -> BoardLayout:
        try:
            return self._layouts[str(board_id)]
        except KeyError:
            raise BoardNotFound(f"Quadro {board_id} não encontrado")

    def _commit(self, board_id, layout: BoardLayout) -> None:
        if layout.to_dict() != self._get(board_id).to_dict():
            self._layouts[str(board_id)] = layout
            self._revisions[str(board_id)] += 1

    def _flag(self, task_ids, archived):
        now = timezone.now().isoformat()
        for task_id in task_ids:
            task = self._tasks.get(task_id)
            if task is not None:
                task['archived'] = archived
                task['updatedAt'] = now

    # === Interface ===

    async def load(self, board_id):
        return self._get(board_id).copy(), self._revisions[str(board_id)]

    async def replace(self, board_id, layout, expected_revision=None):
        self._get(board_id)
        if expected_revision is not None and expected_revision != self._revisions[str(board_id)]:
            return False
        self._layouts[str(board_id)] = layout.copy()
        self._revisions[str(board_id)] += 1
        return True

    async def push_task(self, board_id, column_id, task_id):
        layout = ordering.add_task(self._get(board_id), column_id, task_id)
        self._commit(board_id, layout)
        return _placed(layout, column_id, task_id)

    async def insert_task(self, board_id, column_id, task):
        layout = ordering.add_task(self._get(board_id), column_id, task['id'])
        if not _placed(layout, column_id, task['id']):
            return False
        self._commit(board_id, layout)
        self._tasks[task['id']] = dict(task, archived=False)
        return True

    async def move_task(self, board_id, task_id, from_column, to_column, to_index):
        layout = ordering.move_task(self._get(board_id), task_id, from_column, to_column, to_index)
        self._commit(board_id, layout)
        return layout.copy()

    async def push_column(self, board_id, column):
        self._commit(board_id, ordering.add_column(self._get(board_id), column))

    async def set_column_title(self, board_id, column_index, title):
        layout = self._get(board_id)
        if not 0 <= column_index < len(layout.columns):
            return False
        self._commit(board_id, ordering.rename_column(layout, column_index, title))
        return True

    async def set_board_title(self, board_id, title):
        self._get(board_id)
        self._titles[str(board_id)] = title

    async def archive_task(self, board_id, column_id, task_id):
        result = ordering.archive_task(self._get(board_id), column_id, task_id)
        if result.archived_task is None:
            return None
        self._commit(board_id, result.layout)
        self._flag([task_id], True)
        return task_id

    async def delete_archived_task(self, board_id, task_id):
        layout = self._get(board_id)
        if task_id not in layout.archived:
            return False
        self._commit(board_id, ordering.delete_archived_task(layout, task_id))
        self._tasks.pop(task_id, None)
        return True

    async def set_archived(self, task_ids, archived=True):
        self._flag(list(task_ids), archived)

    async def task_summaries(self, task_ids):
        return {
            task_id: dict(self._tasks[task_id])
            for task_id in task_ids if task_id in self._tasks
        }


class DjangoLayoutStore(LayoutStore):
    """
    Store sobre o ORM (modelos Lista, Tarefa e Projeto)

    Operações atômicas: transaction.atomic + select_for_update na Lista.
    Substituição: UPDATE ... WHERE revisao = esperada.
    """

    def _get_lista(self, board_id, for_update=False):
        from apps.core.models import Lista

        queryset = Lista.objects.select_for_update() if for_update else Lista.objects.all()
        try:
            return queryset.get(projeto_id=board_id)
        except (Lista.DoesNotExist, ValueError, ValidationError):
            raise BoardNotFound(f"Quadro {board_id} não encontrado")

    def _atomic_update(self, board_id, mutate) -> BoardLayout:
        with transaction.atomic():
            lista = self._get_lista(board_id, for_update=True)
            before = lista.get_layout()
            after = mutate(before)
            if after.to_dict() != before.to_dict():
                self._save_layout(lista, after)
            return after

    def _save_layout(self, lista, layout):
        lista.set_layout(layout)
        lista.revisao = F('revisao') + 1
        lista.save(update_fields=['colunas', 'arquivadas', 'revisao', 'atualizado_em'])

    @database_sync_to_async
    def load(self, board_id):
        lista = self._get_lista(board_id)
        return lista.get_layout(), lista.revisao

    @database_sync_to_async
    def replace(self, board_id, layout, expected_revision=None):
        from apps.core.models import Lista

        data = layout.to_dict()
        queryset = Lista.objects.filter(projeto_id=board_id)
        if expected_revision is not None:
            queryset = queryset.filter(revisao=expected_revision)
        try:
            updated = queryset.update(
                colunas=data['columns'],
                arquivadas=data['archived'],
                revisao=F('revisao') + 1,
                atualizado_em=timezone.now(),
            )
        except (ValueError, ValidationError):
            raise BoardNotFound(f"Quadro {board_id} não encontrado")
        return updated == 1

    @database_sync_to_async
    def push_task(self, board_id, column_id, task_id):
        layout = self._atomic_update(board_id, lambda current: ordering.add_task(current, column_id, task_id))
        return _placed(layout, column_id, task_id)

    @database_sync_to_async
    def insert_task(self, board_id, column_id, task):
        from apps.core.models import Tarefa

        with transaction.atomic():
            layout = self._atomic_update(board_id, lambda current: ordering.add_task(current, column_id, task['id']))
            if not _placed(layout, column_id, task['id']):
                return False

            Tarefa.objects.create(
                id=task['id'],
                titulo=task['title'],
                descricao=task.get('description', ''),
                prazo=parse_datetime(task['deadline']) if task.get('deadline') else None,
                comentarios=task.get('comments', []),
                etiquetas=task.get('labels', []),
                autor=task.get('author', ''),
                criado_por_id=task.get('creatorId'),
                projeto_id=board_id,
                arquivado=False,
                criado_em=parse_datetime(task['createdAt']),
                atualizado_em=parse_datetime(task['updatedAt']),
            )
        return True

    @database_sync_to_async
    def move_task(self, board_id, task_id, from_column, to_column, to_index):
        return self._atomic_update(
            board_id,
            lambda layout: ordering.move_task(layout, task_id, from_column, to_column, to_index)
        )

    @database_sync_to_async
    def push_column(self, board_id, column):
        self._atomic_update(board_id, lambda layout: ordering.add_column(layout, column))

    @database_sync_to_async
    def set_column_title(self, board_id, column_index, title):
        layout = self._atomic_update(board_id, lambda current: ordering.rename_column(current, column_index, title))
        return 0 <= column_index < len(layout.columns)

    @database_sync_to_async
    def set_board_title(self, board_id, title):
        from apps.core.models import Projeto

        try:
            Projeto.objects.filter(pk=board_id).update(titulo=title, atualizado_em=timezone.now())
        except (ValueError, ValidationError):
            raise BoardNotFound(f"Quadro {board_id} não encontrado")

    @database_sync_to_async
    def archive_task(self, board_id, column_id, task_id):
        from apps.core.models import Tarefa

        with transaction.atomic():
            lista = self._get_lista(board_id, for_update=True)
            result = ordering.archive_task(lista.get_layout(), column_id, task_id)
            if result.archived_task is None:
                return None
            self._save_layout(lista, result.layout)
            Tarefa.objects.filter(id=task_id).update(arquivado=True, atualizado_em=timezone.now())
        return task_id

    @database_sync_to_async
    def delete_archived_task(self, board_id, task_id):
        from apps.core.models import Tarefa

        with transaction.atomic():
            lista = self._get_lista(board_id, for_update=True)
            layout = lista.get_layout()
            if task_id not in layout.archived:
                return False
            self._save_layout(lista, ordering.delete_archived_task(layout, task_id))
            Tarefa.objects.filter(id=task_id, projeto_id=board_id).delete()
        return True

    @database_sync_to_async
    def set_archived(self, task_ids, archived=True):
        from apps.core.models import Tarefa

        Tarefa.objects.filter(id__in=list(task_ids)).update(
            arquivado=archived,
            atualizado_em=timezone.now()
        )

    @database_sync_to_async
    def task_summaries(self, task_ids):
        from apps.core.models import Tarefa

        task_ids = list(task_ids)
        if not task_ids:
            return {}
        tarefas = Tarefa.objects.filter(id__in=task_ids).prefetch_related('usuarios')
        return {str(tarefa.id): tarefa.to_summary() for tarefa in tarefas}
