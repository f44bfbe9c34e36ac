# apps/core/management/commands/verificar_quadros.py

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.core.models import Lista, Tarefa
from apps.sync.ordering import find_duplicates, find_missing


class Command(BaseCommand):
    help = 'Verifica a partição dos layouts, tarefas fora do layout e o flag de arquivamento'

    def add_arguments(self, parser):
        parser.add_argument(
            '--corrigir',
            action='store_true',
            help='Realinha Tarefa.arquivado com a posição da tarefa no layout',
        )

    def handle(self, *args, **options):
        corrigir = options['corrigir']
        self.stdout.write('🔍 Verificando layouts dos quadros...')

        problemas = 0
        corrigidas = 0

        for lista in Lista.objects.select_related('projeto').order_by('projeto_id'):
            layout = lista.get_layout()
            nome = f'{lista.projeto.titulo} (#{lista.projeto_id}, rev {lista.revisao})'

            duplicadas = find_duplicates(layout)
            if duplicadas:
                problemas += len(duplicadas)
                self.stdout.write(self.style.ERROR(
                    f'  ❌ {nome}: tarefas em mais de um lugar: {", ".join(duplicadas)}'
                ))

            tarefas_do_quadro = Tarefa.objects.filter(projeto_id=lista.projeto_id).values_list('id', flat=True)
            orfas = find_missing(layout, tarefas_do_quadro)
            if orfas:
                problemas += len(orfas)
                self.stdout.write(self.style.ERROR(
                    f"  ❌ {nome}: tarefas fora do layout: {', '.join(orfas)}"
                ))

            em_colunas = [task_id for column in layout.columns for task_id in column.tasks]
            divergentes = {
                True: self._divergentes(layout.archived, arquivado=False),
                False: self._divergentes(em_colunas, arquivado=True),
            }

            for arquivado, ids in divergentes.items():
                if not ids:
                    continue
                problemas += len(ids)
                estado = 'no arquivo' if arquivado else 'em colunas'
                self.stdout.write(self.style.WARNING(
                    f'  ⚠️  {nome}: {len(ids)} tarefa(s) {estado} com flag arquivado={not arquivado}'
                ))
                if corrigir:
                    corrigidas += Tarefa.objects.filter(id__in=ids).update(
                        arquivado=arquivado,
                        atualizado_em=timezone.now()
                    )

            if not duplicadas and not orfas and not any(divergentes.values()):
                self.stdout.write(f'  ✅ {nome}')

        if not problemas:
            self.stdout.write(self.style.SUCCESS('\n✅ Todos os layouts estão consistentes'))
            return

        self.stdout.write(self.style.WARNING(f'\n⚠️  {problemas} problema(s) encontrado(s)'))
        if corrigir:
            self.stdout.write(self.style.SUCCESS(f'🔧 {corrigidas} tarefa(s) corrigida(s)'))
        else:
            self.stdout.write('💡 Execute com --corrigir para realinhar os flags')

    def _divergentes(self, task_ids, arquivado):
        if not task_ids:
            return []
        return [
            str(task_id) for task_id in
            Tarefa.objects.filter(id__in=task_ids, arquivado=arquivado).values_list('id', flat=True)
        ]
