# apps/sync/ordering.py

"""
Modelo de ordenação do quadro

Funções puras sobre o layout (colunas ordenadas de tarefas + arquivo).
Nenhuma função aqui faz I/O nem altera o layout recebido: todas devolvem
uma cópia nova.

Invariante central: cada id de tarefa aparece em no máximo UMA coluna
ou no arquivo, nunca nos dois, nunca em dois lugares.
"""

import copy
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple


@dataclass
class Column:
    """Coluna (lista) do quadro: id, título e sequência de ids de tarefa"""

    id: str
    title: str
    tasks: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {'id': self.id, 'title': self.title, 'tasks': list(self.tasks)}

    @classmethod
    def from_dict(cls, data: Dict) -> 'Column':
        return cls(
            id=str(data['id']),
            title=data.get('title', ''),
            tasks=[str(task_id) for task_id in data.get('tasks', [])],
        )


@dataclass
class BoardLayout:
    """Documento de layout: colunas em ordem + arquivo de tarefas"""

    columns: List[Column] = field(default_factory=list)
    archived: List[str] = field(default_factory=list)

    def copy(self) -> 'BoardLayout':
        return copy.deepcopy(self)

    def to_dict(self) -> Dict:
        return {
            'columns': [column.to_dict() for column in self.columns],
            'archived': list(self.archived),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'BoardLayout':
        return cls(
            columns=[Column.from_dict(c) for c in data.get('columns', [])],
            archived=[str(task_id) for task_id in data.get('archived', [])],
        )

    def column_index(self, column_id: str) -> Optional[int]:
        for idx, column in enumerate(self.columns):
            if column.id == column_id:
                return idx
        return None

    def column(self, column_id: str) -> Optional[Column]:
        idx = self.column_index(column_id)
        return self.columns[idx] if idx is not None else None

    def locate(self, task_id: str) -> Optional[Tuple[int, int]]:
        """Retorna (índice da coluna, posição) da tarefa, ou None"""
        for col_idx, column in enumerate(self.columns):
            if task_id in column.tasks:
                return col_idx, column.tasks.index(task_id)
        return None

    def task_ids(self) -> List[str]:
        """Todos os ids do layout: colunas em ordem, depois o arquivo"""
        ids = [task_id for column in self.columns for task_id in column.tasks]
        return ids + list(self.archived)


@dataclass
class ArchiveResult:
    """Layout novo + instrução de flag para o documento da tarefa"""

    layout: BoardLayout
    archived_task: Optional[str] = None


@dataclass
class DrainResult:
    """Layout novo + ids drenados para o arquivo (em ordem)"""

    layout: BoardLayout
    drained: List[str] = field(default_factory=list)


def clamp(position: int, length: int) -> int:
    """Limita position ao intervalo [0, length]"""
    return max(0, min(position, length))


# === Operações sobre a sequência de uma coluna ===

def insert_task(tasks: List[str], position: int, task_id: str) -> List[str]:
    """
    Insere task_id na posição indicada

    Posições fora do intervalo são limitadas, nunca geram erro.
    """
    result = list(tasks)
    result.insert(clamp(position, len(result)), task_id)
    return result


def remove_task(tasks: List[str], task_id: str) -> List[str]:
    """Remove a primeira ocorrência; no-op se ausente"""
    result = list(tasks)
    if task_id in result:
        result.remove(task_id)
    return result


# === Operações sobre o layout ===

def add_task(layout: BoardLayout, column_id: str, task_id: str) -> BoardLayout:
    """Anexa uma tarefa nova ao final da coluna"""
    result = layout.copy()
    column = result.column(column_id)
    if column is None or task_id in result.task_ids():
        return result
    column.tasks = insert_task(column.tasks, len(column.tasks), task_id)
    return result


def move_task(layout: BoardLayout, task_id: str, from_column: str,
              to_column: str, to_index: int) -> BoardLayout:
    """
    Move uma tarefa (remove e depois insere)

    O índice de destino é sempre relativo à sequência já sem a tarefa.
    Se a tarefa não está em from_column, usa a coluna onde ela estiver;
    se não está em coluna nenhuma (arquivada/excluída) ou o destino não
    existe, nada muda.
    """
    result = layout.copy()
    destination = result.column(to_column)
    if destination is None:
        return result

    source = result.column(from_column)
    if source is None or task_id not in source.tasks:
        location = result.locate(task_id)
        if location is None:
            return result
        source = result.columns[location[0]]

    source.tasks = remove_task(source.tasks, task_id)
    destination.tasks = insert_task(destination.tasks, to_index, task_id)
    return result


def add_column(layout: BoardLayout, column: Column) -> BoardLayout:
    result = layout.copy()
    if result.column(column.id) is None:
        result.columns.append(Column(column.id, column.title, list(column.tasks)))
    return result


def rename_column(layout: BoardLayout, column_index: int, title: str) -> BoardLayout:
    result = layout.copy()
    if 0 <= column_index < len(result.columns):
        result.columns[column_index].title = title
    return result


def move_column(layout: BoardLayout, from_index: int, to_index: int) -> BoardLayout:
    """Extrai a coluna em from_index e reinsere em to_index (limitado)"""
    result = layout.copy()
    if not 0 <= from_index < len(result.columns):
        return result
    column = result.columns.pop(from_index)
    result.columns.insert(clamp(to_index, len(result.columns)), column)
    return result


def archive_task(layout: BoardLayout, column_id: str, task_id: str) -> ArchiveResult:
    """
    Move a tarefa da coluna para o arquivo

    Com coluna desatualizada procura a tarefa nas demais colunas. Se ela
    não está em coluna alguma, nada é arquivado (archived_task=None).
    """
    result = layout.copy()
    column = result.column(column_id)
    if column is None or task_id not in column.tasks:
        location = result.locate(task_id)
        if location is None:
            return ArchiveResult(result)
        column = result.columns[location[0]]

    column.tasks = remove_task(column.tasks, task_id)
    result.archived.append(task_id)
    return ArchiveResult(result, task_id)


def archive_all(layout: BoardLayout, column_id: str) -> DrainResult:
    """Drena a coluna inteira para o arquivo, preservando a ordem"""
    result = layout.copy()
    column = result.column(column_id)
    if column is None:
        return DrainResult(result)

    drained = list(column.tasks)
    column.tasks = []
    result.archived.extend(drained)
    return DrainResult(result, drained)


def delete_column(layout: BoardLayout, column_index: int) -> DrainResult:
    """archive_all na coluna e em seguida remove a coluna do layout"""
    if not 0 <= column_index < len(layout.columns):
        return DrainResult(layout.copy())

    drain = archive_all(layout, layout.columns[column_index].id)
    drain.layout.columns.pop(column_index)
    return drain


def delete_archived_task(layout: BoardLayout, task_id: str) -> BoardLayout:
    """Remove o id apenas do arquivo; no-op se ausente"""
    result = layout.copy()
    result.archived = remove_task(result.archived, task_id)
    return result


def find_duplicates(layout: BoardLayout) -> List[str]:
    """Ids que violam a partição (aparecem em mais de um lugar)"""
    counts = Counter(layout.task_ids())
    return sorted(task_id for task_id, total in counts.items() if total > 1)


def find_missing(layout: BoardLayout, known_ids: Iterable[str]) -> List[str]:
    """Ids de tarefas do quadro que não aparecem nem em coluna nem no arquivo"""
    placed = set(layout.task_ids())
    return sorted(str(task_id) for task_id in known_ids if str(task_id) not in placed)
