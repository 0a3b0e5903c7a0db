# apps/core/management/commands/check_positions.py

from django.core.management.base import BaseCommand
from django.db import transaction

from apps.board.positions import COLUMNS, TASKS
from apps.core.models import Board, Column


class Command(BaseCommand):
    help = 'Verifica se as posições de colunas e tarefas são densas (0..n-1) e, com --fix, rebalanceia'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fix',
            action='store_true',
            help='Rebalanceia os pais com posições inconsistentes',
        )

    def handle(self, *args, **options):
        fix = options['fix']
        problems = 0

        self.stdout.write('🔍 Verificando posições...')

        for collection, parents in ((COLUMNS, Board.objects.all()), (TASKS, Column.objects.all())):
            for parent in parents.order_by('pk'):
                if collection.is_dense(parent.pk):
                    continue

                problems += 1
                positions = collection.positions(parent.pk)
                self.stdout.write(self.style.WARNING(
                    f'⚠️  {collection.parent_model.__name__} {parent.pk}: posições {positions}'
                ))

                if fix:
                    with transaction.atomic():
                        collection.lock_parents(parent.pk)
                        changed = collection.rebalance(parent.pk)
                    self.stdout.write(f'   🔧 {changed} itens reposicionados')

        if not problems:
            self.stdout.write(self.style.SUCCESS('✅ Todas as posições estão consistentes'))
        elif fix:
            self.stdout.write(self.style.SUCCESS(f'✅ {problems} pais rebalanceados'))
        else:
            self.stdout.write(self.style.ERROR(f'❌ {problems} pais com posições inconsistentes (use --fix)'))
