"""
Testes dos adaptadores de persistência: operações atômicas, revisão e
substituição com compare-and-swap.
"""
import asyncio

import pytest
from asgiref.sync import async_to_sync

from apps.core.models import Lista, Projeto, Tarefa, Usuario
from apps.sync import ordering
from apps.sync.exceptions import PersistenceFailure
from apps.sync.ordering import BoardLayout, Column
from apps.sync.persistence import (
    BoardNotFound,
    DjangoLayoutStore,
    MemoryLayoutStore,
    apply_with_retry,
    resolve_layout,
)
from tests.fakes import YieldingStore


def make_store():
    store = MemoryLayoutStore()
    store.create_board('b1', title='Quadro', columns=[
        Column('todo', 'To Do', ['a', 'b']),
        Column('done', 'Done'),
    ])
    for task_id in 'abc':
        store.put_task({'id': task_id, 'title': task_id, 'archived': False})
    return store


class InterleavingStore(MemoryLayoutStore):
    """Executa uma escrita concorrente antes da primeira substituição"""

    def __init__(self, concurrent):
        super().__init__()
        self.concurrent = concurrent
        self.replace_calls = 0

    async def replace(self, board_id, layout, expected_revision=None):
        self.replace_calls += 1
        if self.concurrent is not None:
            concurrent, self.concurrent = self.concurrent, None
            await concurrent(self)
        return await super().replace(board_id, layout, expected_revision)


class AlwaysConflictingStore(MemoryLayoutStore):
    async def replace(self, board_id, layout, expected_revision=None):
        self.attempts = getattr(self, 'attempts', 0) + 1
        return False


def drain_todo(layout):
    drain = ordering.archive_all(layout, 'todo')
    return drain.layout, drain.drained


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# MemoryLayoutStore
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


async def test_atomic_ops_bump_revision_only_on_change():
    store = make_store()

    assert await store.push_task('b1', 'done', 'c') is True
    assert store.revision('b1') == 1

    # id já presente: nada muda
    assert await store.push_task('b1', 'todo', 'c') is False
    assert store.revision('b1') == 1

    await store.move_task('b1', 'a', 'todo', 'done', 0)
    assert store.layout('b1').column('done').tasks == ['a', 'c']
    assert store.revision('b1') == 2


async def test_push_task_to_missing_column():
    store = make_store()
    assert await store.push_task('b1', 'ghost', 'c') is False
    assert 'c' not in store.layout('b1').task_ids()


async def test_insert_task_writes_id_and_document_together():
    store = make_store()

    assert await store.insert_task('b1', 'done', {'id': 'n', 'title': 'Nova'}) is True
    assert store.layout('b1').column('done').tasks == ['n']
    assert store.task('n') == {'id': 'n', 'title': 'Nova', 'archived': False}
    assert store.revision('b1') == 1

    assert await store.insert_task('b1', 'ghost', {'id': 'm', 'title': 'Perdida'}) is False
    assert store.task('m') is None
    assert 'm' not in store.layout('b1').task_ids()
    assert store.revision('b1') == 1


async def test_move_task_returns_committed_layout():
    store = make_store()
    await store.push_task('b1', 'done', 'c')

    committed = await store.move_task('b1', 'a', 'todo', 'done', 1)

    assert committed.column('done').tasks == ['c', 'a']
    assert committed.to_dict() == store.layout('b1').to_dict()


async def test_archive_and_delete_task():
    store = make_store()

    assert await store.archive_task('b1', 'todo', 'a') == 'a'
    assert store.layout('b1').archived == ['a']
    assert store.task('a')['archived'] is True

    # 'b' ainda está numa coluna: delete não faz nada
    assert await store.delete_archived_task('b1', 'b') is False
    assert store.task('b') is not None

    assert await store.delete_archived_task('b1', 'a') is True
    assert store.layout('b1').archived == []
    assert store.task('a') is None


async def test_archive_task_not_in_columns_returns_none():
    store = make_store()
    assert await store.archive_task('b1', 'todo', 'zzz') is None
    assert store.revision('b1') == 0


async def test_unknown_board():
    store = make_store()
    with pytest.raises(BoardNotFound):
        await store.load('nope')
    with pytest.raises(PersistenceFailure):
        await store.push_column('nope', Column('x', 'X'))


async def test_set_titles():
    store = make_store()
    assert await store.set_column_title('b1', 1, 'Feito') is True
    assert await store.set_column_title('b1', 2, 'Nada') is False
    assert await store.set_column_title('b1', -1, 'Nada') is False
    await store.set_board_title('b1', 'Sprint 3')
    assert store.layout('b1').columns[1].title == 'Feito'
    assert store.title('b1') == 'Sprint 3'


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Substituição com revisão
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


async def test_replace_rejects_stale_revision():
    store = make_store()
    layout, revision = await store.load('b1')
    await store.push_task('b1', 'done', 'c')

    assert await store.replace('b1', layout, expected_revision=revision) is False
    assert 'c' in store.layout('b1').task_ids()


async def test_unconditional_replace_loses_concurrent_write():
    """Sem o token de revisão a escrita concorrente é descartada"""
    store = make_store()
    layout, _ = await store.load('b1')
    drained, _ = drain_todo(layout)

    await store.push_task('b1', 'todo', 'c')
    await store.replace('b1', drained)

    assert 'c' not in store.layout('b1').task_ids()


async def test_apply_with_retry_keeps_concurrent_write():
    async def add_c(store):
        await store.push_task('b1', 'todo', 'c')

    store = InterleavingStore(add_c)
    store.create_board('b1', columns=[Column('todo', 'To Do', ['a', 'b']), Column('done', 'Done')])

    committed, drained = await apply_with_retry(store, 'b1', drain_todo)

    assert store.replace_calls == 2
    assert drained == ['a', 'b', 'c']
    assert committed.archived == ['a', 'b', 'c']
    assert store.layout('b1').to_dict() == committed.to_dict()
    assert ordering.find_duplicates(committed) == []


async def test_concurrent_add_tasks_with_unconditional_replace_lose_one():
    """Dois add-task gravados por leitura + substituição sem revisão"""
    store = YieldingStore()
    store.create_board('b1', columns=[Column('todo', 'To Do')])

    async def add(task_id):
        layout, _ = await store.load('b1')
        await store.replace('b1', ordering.add_task(layout, 'todo', task_id))

    await asyncio.gather(add('x'), add('y'))

    assert store.layout('b1').column('todo').tasks == ['y']


async def test_concurrent_add_tasks_with_revision_keep_both():
    store = YieldingStore()
    store.create_board('b1', columns=[Column('todo', 'To Do')])

    def add(task_id):
        return lambda layout: (ordering.add_task(layout, 'todo', task_id), None)

    await asyncio.gather(
        apply_with_retry(store, 'b1', add('x')),
        apply_with_retry(store, 'b1', add('y')),
    )

    assert store.layout('b1').column('todo').tasks == ['x', 'y']
    assert store.revision('b1') == 2


async def test_apply_with_retry_skips_noop_writes():
    store = make_store()
    committed, extra = await apply_with_retry(store, 'b1', lambda layout: (layout, None))
    assert store.revision('b1') == 0
    assert extra is None


async def test_apply_with_retry_gives_up():
    store = AlwaysConflictingStore()
    store.create_board('b1', columns=[Column('todo', 'To Do', ['a'])])

    with pytest.raises(PersistenceFailure):
        await apply_with_retry(store, 'b1', drain_todo, max_attempts=3)
    assert store.attempts == 3


def test_apply_with_retry_uses_configured_attempts(settings):
    settings.SYNC_REPLACE_MAX_RETRIES = 2
    store = AlwaysConflictingStore()
    store.create_board('b1', columns=[Column('todo', 'To Do', ['a'])])

    with pytest.raises(PersistenceFailure):
        async_to_sync(apply_with_retry)(store, 'b1', drain_todo)
    assert store.attempts == 2


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Resolução
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_resolve_layout_skips_missing_and_forces_flag():
    layout = BoardLayout(columns=[Column('todo', 'To Do', ['a', 'ghost'])], archived=['b'])
    summaries = {
        'a': {'id': 'a', 'archived': True},
        'b': {'id': 'b', 'archived': False},
    }

    resolved = resolve_layout(7, layout, summaries)

    assert resolved['boardId'] == '7'
    assert resolved['columns'] == [
        {'id': 'todo', 'title': 'To Do', 'tasks': [{'id': 'a', 'archived': False}]}
    ]
    assert resolved['archived'] == [{'id': 'b', 'archived': True}]
    assert summaries['a']['archived'] is True


async def test_store_resolve_returns_revision():
    store = make_store()
    await store.archive_task('b1', 'todo', 'b')

    resolved, revision = await store.resolve('b1')

    assert revision == 1
    assert [t['id'] for t in resolved['columns'][0]['tasks']] == ['a']
    assert [t['id'] for t in resolved['archived']] == ['b']


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# DjangoLayoutStore
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.fixture
def projeto(transactional_db):
    dono = Usuario.objects.create_user('dono', password='x')
    projeto = Projeto.objects.create(titulo='Quadro ORM', criado_por=dono)
    projeto.membros.add(dono)
    return projeto


@pytest.fixture
def django_store():
    return DjangoLayoutStore()


def column_ids(projeto):
    return [column['id'] for column in Lista.objects.get(projeto=projeto).colunas]


@pytest.mark.django_db(transaction=True)
def test_new_board_gets_default_columns(projeto):
    lista = Lista.objects.get(projeto=projeto)
    assert [column['title'] for column in lista.colunas] == ['To Do', 'Doing', 'Done']
    assert lista.arquivadas == []
    assert lista.revisao == 0


@pytest.mark.django_db(transaction=True)
def test_django_store_task_lifecycle(projeto, django_store):
    todo, doing, _ = column_ids(projeto)
    task = {
        'id': '6f1c1d2e-0000-4000-8000-000000000001',
        'title': 'Escrever testes',
        'author': 'dono',
        'creatorId': str(projeto.criado_por_id),
        'deadline': None,
        'createdAt': '2026-01-01T10:00:00+00:00',
        'updatedAt': '2026-01-01T10:00:00+00:00',
    }

    assert async_to_sync(django_store.insert_task)(projeto.pk, todo, task) is True
    assert Tarefa.objects.get(pk=task['id']).arquivado is False
    committed = async_to_sync(django_store.move_task)(projeto.pk, task['id'], todo, doing, 5)
    assert committed.column(doing).tasks == [task['id']]

    layout, revision = async_to_sync(django_store.load)(projeto.pk)
    assert layout.column(doing).tasks == [task['id']]
    assert revision == 2

    assert async_to_sync(django_store.archive_task)(projeto.pk, doing, task['id']) == task['id']
    assert Tarefa.objects.get(pk=task['id']).arquivado is True

    resolved, _ = async_to_sync(django_store.resolve)(projeto.pk)
    assert resolved['archived'][0]['title'] == 'Escrever testes'
    assert resolved['archived'][0]['archived'] is True

    assert async_to_sync(django_store.delete_archived_task)(projeto.pk, task['id']) is True
    assert not Tarefa.objects.filter(pk=task['id']).exists()
    assert Lista.objects.get(projeto=projeto).arquivadas == []


@pytest.mark.django_db(transaction=True)
def test_django_store_insert_into_missing_column(projeto, django_store):
    task = {
        'id': '6f1c1d2e-0000-4000-8000-000000000002',
        'title': 'Sem coluna',
        'createdAt': '2026-01-01T10:00:00+00:00',
        'updatedAt': '2026-01-01T10:00:00+00:00',
    }

    assert async_to_sync(django_store.insert_task)(projeto.pk, 'ghost', task) is False
    assert not Tarefa.objects.filter(pk=task['id']).exists()
    assert Lista.objects.get(projeto=projeto).revisao == 0


@pytest.mark.django_db(transaction=True)
def test_django_store_replace_is_revision_guarded(projeto, django_store):
    layout, revision = async_to_sync(django_store.load)(projeto.pk)
    async_to_sync(django_store.push_column)(projeto.pk, Column('qa', 'QA'))

    moved = ordering.move_column(layout, 0, 2)
    assert async_to_sync(django_store.replace)(projeto.pk, moved, revision) is False
    assert column_ids(projeto)[-1] == 'qa'

    committed, _ = async_to_sync(apply_with_retry)(
        django_store, projeto.pk, lambda current: (ordering.move_column(current, 0, 3), [])
    )
    assert column_ids(projeto) == [column.id for column in committed.columns]
    assert Lista.objects.get(projeto=projeto).revisao == 2


@pytest.mark.django_db(transaction=True)
def test_django_store_titles(projeto, django_store):
    assert async_to_sync(django_store.set_column_title)(projeto.pk, 0, 'Backlog') is True
    assert async_to_sync(django_store.set_column_title)(projeto.pk, 9, 'Nada') is False
    async_to_sync(django_store.set_board_title)(projeto.pk, 'Renomeado')

    projeto.refresh_from_db()
    assert projeto.titulo == 'Renomeado'
    assert Lista.objects.get(projeto=projeto).colunas[0]['title'] == 'Backlog'


@pytest.mark.django_db(transaction=True)
def test_django_store_unknown_board(django_store):
    with pytest.raises(BoardNotFound):
        async_to_sync(django_store.load)(9999)
    with pytest.raises(BoardNotFound):
        async_to_sync(django_store.load)('not-a-number')
