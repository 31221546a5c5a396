"""
Management command to run one ingestion batch for a source.

Usage:
    python manage.py ingest_source duga --limit=200
    python manage.py ingest_source mgs --offset=60 --limit=30
    python manage.py ingest_source heyzo --start-id=3400 --end-id=3300
    python manage.py ingest_source caribbeancom --start-id=010124_001 --force --enrich
"""

import json
import logging

from django.core.management.base import BaseCommand, CommandError

from ingestion.exceptions import ConfigurationError
from ingestion.models import CatalogSource
from ingestion.services.pipeline import IngestionOptions, IngestionRunner

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Run one ingestion batch synchronously."""

    help = 'Ingest products from one catalog source'

    def add_arguments(self, parser):
        parser.add_argument('slug', help='CatalogSource slug (e.g. duga, mgs, heyzo)')
        parser.add_argument('--limit', type=int, default=100, help='Maximum items (default: 100)')
        parser.add_argument('--offset', type=int, default=0, help='Items to skip from the newest')
        parser.add_argument('--start-id', help='First source-local id of an id range')
        parser.add_argument('--end-id', help='Last source-local id of the range')
        parser.add_argument(
            '--force',
            action='store_true',
            help='Reprocess items even when their content is unchanged',
        )
        parser.add_argument(
            '--enrich',
            action='store_true',
            help='Store performer readings and aliases',
        )
        parser.add_argument('--delay', type=float, help="Override the source's delay between items")
        parser.add_argument('--json', action='store_true', help='Print the statistics as JSON')

    def handle(self, *args, **options):
        slug = options['slug'].lower()
        try:
            source = CatalogSource.objects.get(slug=slug)
        except CatalogSource.DoesNotExist:
            raise CommandError(f'Unknown source: {slug}. Run seed_sources first.')

        ingestion_options = IngestionOptions(
            limit=options['limit'],
            offset=options['offset'],
            start_id=options['start_id'],
            end_id=options['end_id'],
            force_reprocess=options['force'],
            enable_enrichment=options['enrich'],
            delay_seconds=options['delay'],
        )

        self.stdout.write(f'Ingesting {source.name} ({source.kind})...')
        runner = IngestionRunner(source, ingestion_options)
        try:
            stats = runner.run()
        except ConfigurationError as e:
            raise CommandError(f'Configuration error: {e}')

        summary = stats.to_dict()
        if options['json']:
            self.stdout.write(json.dumps(summary, ensure_ascii=False))
            return

        for key, value in summary.items():
            self.stdout.write(f'  {key}: {value}')
        self.stdout.write(
            self.style.SUCCESS(
                f'Run {runner.ingestion_run.id} {runner.ingestion_run.status}: '
                f'{stats.new_products} new, {stats.updated_products} updated, {stats.errors} errors'
            )
        )
