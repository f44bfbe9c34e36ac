# apps/core/models.py

import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.utils import timezone

from apps.sync.ordering import BoardLayout


class Usuario(AbstractUser):
    """
    Modelo de usuário customizado

    A autorização do quadro é binária: membro do projeto pode editar,
    não-membro não pode.
    """

    telefone = models.CharField(max_length=20, blank=True)

    # === METADADOS ===
    criado_em = models.DateTimeField(auto_now_add=True)
    atualizado_em = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'usuario'

    def __str__(self):
        return self.get_full_name() or self.username


class Projeto(models.Model):
    """Quadro compartilhado (projeto) e seus membros"""

    titulo = models.CharField(max_length=200)
    descricao = models.TextField(blank=True)
    criado_por = models.ForeignKey(
        Usuario,
        on_delete=models.PROTECT,
        related_name='projetos_criados'
    )
    membros = models.ManyToManyField(
        Usuario,
        related_name='projetos_membro'
    )
    criado_em = models.DateTimeField(auto_now_add=True)
    atualizado_em = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'projeto'
        ordering = ['-criado_em']

    def __str__(self):
        return self.titulo

    def eh_membro(self, usuario):
        """Verifica se o usuário pode editar o quadro"""
        if not usuario.is_authenticated:
            return False
        return self.membros.filter(id=usuario.id).exists()


class Lista(models.Model):
    """
    Documento de layout do quadro (um por projeto)

    Fonte única da ordenação: colunas em ordem com seus ids de tarefa e o
    arquivo de tarefas. 'revisao' cresce a cada escrita e serve de token
    de concorrência otimista para substituições do documento inteiro.
    """

    projeto = models.OneToOneField(
        Projeto,
        on_delete=models.CASCADE,
        related_name='lista'
    )
    colunas = models.JSONField(default=list, blank=True)
    arquivadas = models.JSONField(default=list, blank=True)
    revisao = models.PositiveIntegerField(default=0)
    atualizado_em = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'lista'

    def __str__(self):
        return f"Layout de {self.projeto.titulo} (rev {self.revisao})"

    def get_layout(self) -> BoardLayout:
        return BoardLayout.from_dict({'columns': self.colunas, 'archived': self.arquivadas})

    def set_layout(self, layout: BoardLayout):
        data = layout.to_dict()
        self.colunas = data['columns']
        self.arquivadas = data['archived']


class Tarefa(models.Model):
    """Tarefa do quadro; a posição dela vive na Lista, não aqui"""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    titulo = models.CharField(max_length=200)
    descricao = models.TextField(blank=True)
    prazo = models.DateTimeField(null=True, blank=True)
    comentarios = models.JSONField(default=list, blank=True)
    etiquetas = models.JSONField(default=list, blank=True)
    usuarios = models.ManyToManyField(
        Usuario,
        blank=True,
        related_name='tarefas_atribuidas'
    )
    autor = models.CharField(max_length=150, blank=True)
    criado_por = models.ForeignKey(
        Usuario,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='tarefas_criadas'
    )
    projeto = models.ForeignKey(
        Projeto,
        on_delete=models.CASCADE,
        related_name='tarefas'
    )
    arquivado = models.BooleanField(default=False)
    criado_em = models.DateTimeField(default=timezone.now)
    atualizado_em = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'tarefa'
        ordering = ['criado_em']

    def __str__(self):
        return self.titulo

    def to_summary(self):
        """Resumo serializável enviado aos clientes"""
        return {
            'id': str(self.id),
            'title': self.titulo,
            'description': self.descricao,
            'deadline': self.prazo.isoformat() if self.prazo else None,
            'comments': list(self.comentarios),
            'labels': list(self.etiquetas),
            'users': [str(u.pk) for u in self.usuarios.all()],
            'author': self.autor,
            'creatorId': str(self.criado_por_id) if self.criado_por_id else None,
            'boardId': str(self.projeto_id),
            'archived': self.arquivado,
            'createdAt': self.criado_em.isoformat(),
            'updatedAt': self.atualizado_em.isoformat(),
        }
