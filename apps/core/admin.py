# apps/core/admin.py

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import Usuario, Projeto, Lista, Tarefa


@admin.register(Usuario)
class UsuarioAdmin(BaseUserAdmin):
    """Admin customizado para o modelo Usuario"""

    list_display = [
        'username', 'email', 'get_full_name', 'is_active', 'date_joined'
    ]
    list_filter = ['is_staff', 'is_active', 'date_joined']
    search_fields = ['username', 'first_name', 'last_name', 'email']
    ordering = ['-date_joined']

    fieldsets = BaseUserAdmin.fieldsets + (
        ('Informações Adicionais', {
            'fields': ('telefone',)
        }),
    )

    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Informações Adicionais', {
            'fields': ('telefone',)
        }),
    )


class ListaInline(admin.StackedInline):
    model = Lista
    can_delete = False
    readonly_fields = ['revisao', 'atualizado_em']


@admin.register(Projeto)
class ProjetoAdmin(admin.ModelAdmin):
    """Admin para os quadros e seus membros"""

    list_display = [
        'titulo', 'criado_por', 'membros_count', 'tarefas_count', 'criado_em'
    ]
    list_filter = ['criado_em', 'criado_por']
    search_fields = ['titulo', 'descricao']
    filter_horizontal = ['membros']
    readonly_fields = ['criado_em', 'atualizado_em']
    inlines = [ListaInline]

    fieldsets = (
        ('Informações Básicas', {
            'fields': ('titulo', 'descricao')
        }),
        ('Equipe', {
            'fields': ('criado_por', 'membros')
        }),
        ('Datas', {
            'fields': ('criado_em', 'atualizado_em'),
            'classes': ('collapse',)
        })
    )

    def membros_count(self, obj):
        """Conta quantidade de membros"""
        return obj.membros.count()

    membros_count.short_description = 'Membros'

    def tarefas_count(self, obj):
        return obj.tarefas.count()

    tarefas_count.short_description = 'Tarefas'


@admin.register(Lista)
class ListaAdmin(admin.ModelAdmin):
    """
    Documento de layout. A revisão é só leitura: editar pelo admin
    passa pelo save normal e não deve mexer no token de concorrência.
    """

    list_display = ['projeto', 'colunas_count', 'arquivadas_count', 'revisao', 'atualizado_em']
    search_fields = ['projeto__titulo']
    readonly_fields = ['revisao', 'atualizado_em']

    def colunas_count(self, obj):
        return len(obj.colunas)

    colunas_count.short_description = 'Colunas'

    def arquivadas_count(self, obj):
        return len(obj.arquivadas)

    arquivadas_count.short_description = 'Arquivadas'


@admin.register(Tarefa)
class TarefaAdmin(admin.ModelAdmin):
    """Admin para as tarefas (a posição fica na Lista)"""

    list_display = ['titulo', 'projeto', 'autor', 'prazo', 'arquivado', 'criado_em']
    list_filter = ['arquivado', 'projeto', 'criado_em']
    search_fields = ['titulo', 'descricao', 'autor']
    filter_horizontal = ['usuarios']
    readonly_fields = ['id', 'criado_em', 'atualizado_em']
    date_hierarchy = 'criado_em'
