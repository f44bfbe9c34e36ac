# apps/sync/intents.py

"""
Validação das mensagens recebidas pelo WebSocket

Cada evento é uma variante com seu próprio formulário Django; payload
malformado é rejeitado na borda com InvalidRequest.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from django import forms
from django.core.validators import RegexValidator

from .exceptions import InvalidRequest


identificador = RegexValidator(
    r'^[\w.-]{1,64}$',
    'Identificador inválido (use letras, números, "_", "-" ou ".")'
)


class PositionField(forms.Field):
    """Campo composto {columnId, index} usado no move-task"""

    default_error_messages = {
        'invalid': 'Informe um objeto com columnId e index.',
    }

    def to_python(self, value):
        if value in self.empty_values:
            return None
        if not isinstance(value, dict):
            raise forms.ValidationError(self.error_messages['invalid'], code='invalid')

        column_id = value.get('columnId')
        index = value.get('index')
        if not isinstance(column_id, str) or not column_id:
            raise forms.ValidationError(self.error_messages['invalid'], code='invalid')
        identificador(column_id)
        if isinstance(index, bool) or not isinstance(index, int):
            raise forms.ValidationError(self.error_messages['invalid'], code='invalid')

        return {'column_id': column_id, 'index': index}


class BoardForm(forms.Form):
    """Base: todo evento de quadro traz boardId"""

    boardId = forms.CharField(max_length=64, validators=[identificador])


class AddTaskForm(BoardForm):
    columnId = forms.CharField(max_length=64, validators=[identificador])
    title = forms.CharField(max_length=200)


class MoveTaskForm(BoardForm):
    taskId = forms.CharField(max_length=64, validators=[identificador])
    source = PositionField()
    dest = PositionField()


class AddListForm(BoardForm):
    title = forms.CharField(max_length=100)


class MoveListForm(BoardForm):
    fromIndex = forms.IntegerField()
    toIndex = forms.IntegerField()


class RenameListForm(BoardForm):
    columnIndex = forms.IntegerField()
    title = forms.CharField(max_length=100)


class RenameBoardForm(BoardForm):
    title = forms.CharField(max_length=200)


class ArchiveTaskForm(BoardForm):
    taskId = forms.CharField(max_length=64, validators=[identificador])
    columnId = forms.CharField(max_length=64, validators=[identificador])


class DeleteTaskForm(BoardForm):
    taskId = forms.CharField(max_length=64, validators=[identificador])


class ArchiveColumnForm(BoardForm):
    columnId = forms.CharField(max_length=64, validators=[identificador])


class DeleteListForm(BoardForm):
    columnIndex = forms.IntegerField()


class PingForm(forms.Form):
    pass


# Evento -> formulário
REQUEST_FORMS = {
    'join-board': BoardForm,
    'leave-board': BoardForm,
    'sync-board': BoardForm,
    'ping': PingForm,
    'add-task': AddTaskForm,
    'move-task': MoveTaskForm,
    'add-list': AddListForm,
    'move-list': MoveListForm,
    'rename-list': RenameListForm,
    'rename-board': RenameBoardForm,
    'archive-task': ArchiveTaskForm,
    'delete-task': DeleteTaskForm,
    'archive-column': ArchiveColumnForm,
    'delete-list': DeleteListForm,
}

# Eventos que alteram o quadro (exigem sala)
MUTATIONS = frozenset({
    'add-task', 'move-task', 'add-list', 'move-list', 'rename-list',
    'rename-board', 'archive-task', 'delete-task', 'archive-column',
    'delete-list',
})

# Eventos confirmados ao originador antes da persistência
ACKNOWLEDGED = frozenset({
    'add-task', 'add-list', 'rename-list', 'rename-board', 'delete-task',
})


@dataclass
class Intent:
    """Uma requisição validada do cliente"""

    event: str
    data: Dict = field(default_factory=dict)
    request_id: Optional[str] = None

    @property
    def board_id(self) -> Optional[str]:
        return self.data.get('boardId')

    @property
    def is_mutation(self) -> bool:
        return self.event in MUTATIONS

    @property
    def needs_ack(self) -> bool:
        return self.event in ACKNOWLEDGED


def parse_request(message) -> Intent:
    """
    Converte um frame JSON já decodificado em Intent

    Formato: {"event": str, "requestId": str opcional, "data": {...}}
    """
    if not isinstance(message, dict):
        raise InvalidRequest('Frame deve ser um objeto JSON')

    request_id = message.get('requestId')
    if request_id is not None and not isinstance(request_id, (str, int)):
        raise InvalidRequest('requestId inválido')
    request_id = str(request_id) if request_id is not None else None

    event = message.get('event')
    form_class = REQUEST_FORMS.get(event)
    if form_class is None:
        raise InvalidRequest(f'Evento desconhecido: {event}')

    payload = message.get('data') or {}
    if not isinstance(payload, dict):
        raise InvalidRequest('data deve ser um objeto JSON')

    form = form_class(data=payload)
    if not form.is_valid():
        raise InvalidRequest(
            f'Payload inválido para {event}',
            errors={name: [str(e) for e in errs] for name, errs in form.errors.items()},
        )

    return Intent(event=event, data=form.cleaned_data, request_id=request_id)
