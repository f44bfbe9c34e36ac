# tests/conftest.py

import pytest
from channels.layers import channel_layers

from apps.sync.handlers import MutationHandlers, get_engine
from apps.sync.broadcast import BroadcastDispatcher
from apps.sync.ordering import Column
from apps.sync.persistence import MemoryLayoutStore
from tests.fakes import FakeUser, StaticAuthorization

BOARD_ID = '1'


@pytest.fixture(autouse=True)
def fresh_engine():
    """Channel layer e engine novos a cada teste (um event loop por teste)"""
    channel_layers.backends.clear()
    get_engine.cache_clear()
    yield
    channel_layers.backends.clear()
    get_engine.cache_clear()


@pytest.fixture
def engine():
    return get_engine()


@pytest.fixture
def store(engine):
    """MemoryLayoutStore do engine com um quadro de três colunas"""
    engine.store.create_board(BOARD_ID, title='Sprint', columns=[
        Column('todo', 'To Do'),
        Column('doing', 'Doing'),
        Column('done', 'Done'),
    ])
    return engine.store


class RecordingDispatcher(BroadcastDispatcher):
    """Guarda os broadcasts em vez de enviá-los ao channel layer"""

    def __init__(self):
        super().__init__(channel_layer=None)
        self.sent = []

    async def join(self, board_id, channel_name):
        pass

    async def leave(self, board_id, channel_name):
        pass

    async def broadcast(self, board_id, event, payload, exclude=None):
        self.sent.append((board_id, event, payload, exclude))

    def events(self):
        return [event for _, event, _, _ in self.sent]


@pytest.fixture
def recorder():
    return RecordingDispatcher()


@pytest.fixture
def handlers(recorder):
    """Handlers isolados: store em memória e dispatcher que grava"""
    memory = MemoryLayoutStore()
    memory.create_board(BOARD_ID, title='Sprint', columns=[
        Column('todo', 'To Do', ['t1', 't2', 't3']),
        Column('doing', 'Doing', ['t4']),
        Column('done', 'Done'),
    ])
    for task_id in ['t1', 't2', 't3', 't4']:
        memory.put_task({'id': task_id, 'title': task_id.upper(), 'archived': False})
    return MutationHandlers(memory, recorder)


@pytest.fixture
def alice():
    return FakeUser(pk=1, username='alice')


@pytest.fixture
def bob():
    return FakeUser(pk=2, username='bob')


@pytest.fixture
def members(monkeypatch, alice, bob):
    monkeypatch.setattr(StaticAuthorization, 'MEMBERS', {BOARD_ID: {alice.pk, bob.pk}, '2': {alice.pk}})
    return StaticAuthorization.MEMBERS
