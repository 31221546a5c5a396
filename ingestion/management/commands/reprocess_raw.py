"""
Management command to re-derive canonical records from stored captures.

No network access; useful after a parser or validator fix.

Usage:
    python manage.py reprocess_raw mgs
    python manage.py reprocess_raw duga --unprocessed --limit=500
"""

from django.core.management.base import BaseCommand, CommandError

from ingestion.exceptions import ConfigurationError
from ingestion.models import CatalogSource
from ingestion.services.pipeline import reprocess_raw_responses


class Command(BaseCommand):
    """Replay RawResponse captures through the parser and resolver."""

    help = 'Reprocess stored raw responses for one source'

    def add_arguments(self, parser):
        parser.add_argument('slug', help='CatalogSource slug')
        parser.add_argument(
            '--unprocessed',
            action='store_true',
            help='Only captures that were never processed',
        )
        parser.add_argument('--limit', type=int, help='Maximum captures to replay')
        parser.add_argument('--enrich', action='store_true', help='Store performer readings and aliases')

    def handle(self, *args, **options):
        slug = options['slug'].lower()
        try:
            source = CatalogSource.objects.get(slug=slug)
        except CatalogSource.DoesNotExist:
            raise CommandError(f'Unknown source: {slug}')

        try:
            stats = reprocess_raw_responses(
                source,
                only_unprocessed=options['unprocessed'],
                limit=options['limit'],
                enable_enrichment=options['enrich'],
            )
        except ConfigurationError as e:
            raise CommandError(f'Configuration error: {e}')

        self.stdout.write(
            self.style.SUCCESS(
                f'Reprocessed {stats.fetched} captures for {slug}: '
                f'{stats.new_products} new, {stats.updated_products} updated, '
                f'{stats.skipped_invalid} invalid, {stats.not_products} not products, {stats.errors} errors'
            )
        )
