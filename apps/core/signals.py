# apps/core/signals.py

import logging
import uuid

from django.conf import settings
from django.db.models.signals import post_save
from django.dispatch import receiver

from apps.sync.ordering import BoardLayout, Column
from .models import Projeto, Lista

logger = logging.getLogger(__name__)


@receiver(post_save, sender=Projeto)
def criar_layout_padrao(sender, instance, created, **kwargs):
    """
    Cria o documento de layout quando um novo quadro é criado,
    com as colunas de SYNC_DEFAULT_COLUMNS
    """
    if not created or Lista.objects.filter(projeto=instance).exists():
        return

    layout = BoardLayout(columns=[
        Column(id=str(uuid.uuid4()), title=titulo)
        for titulo in settings.SYNC_DEFAULT_COLUMNS
    ])
    lista = Lista(projeto=instance)
    lista.set_layout(layout)
    lista.save()
    logger.info(f"📋 Layout criado para o quadro {instance.pk} com {len(layout.columns)} colunas")
