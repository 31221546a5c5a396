"""
Management command to print the estimated catalog size of every source.

Usage:
    python manage.py source_totals
    python manage.py source_totals --refresh
    python manage.py source_totals --source=heyzo
"""

from django.core.management.base import BaseCommand, CommandError

from ingestion.services.totals import get_totals_estimator


class Command(BaseCommand):
    """Show per-source totals from the estimator."""

    help = 'Show estimated catalog sizes per source'

    def add_arguments(self, parser):
        parser.add_argument('--refresh', action='store_true', help='Ignore cached values')
        parser.add_argument('--source', help='Only this source slug')

    def handle(self, *args, **options):
        estimator = get_totals_estimator()
        try:
            if options['source']:
                results = [estimator.get_total(options['source'].lower(), force_refresh=options['refresh'])]
            else:
                results = estimator.get_all(force_refresh=options['refresh'])
        except ValueError as e:
            raise CommandError(str(e))

        grand_total = 0
        for result in results:
            total = f'{result.total:,}' if result.total is not None else '-'
            line = f'{result.source:<16} {total:>12}  {result.origin} [{result.state.value}]'
            if result.error:
                self.stdout.write(self.style.WARNING(f'{line}  error: {result.error}'))
            else:
                self.stdout.write(line)
            grand_total += result.total or 0

        self.stdout.write(self.style.SUCCESS(f'Total: {grand_total:,}'))
