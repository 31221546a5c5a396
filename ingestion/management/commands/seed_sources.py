"""
Management command to create CatalogSource rows for the registered sources.

Usage:
    python manage.py seed_sources
    python manage.py seed_sources --update
"""

from django.core.management.base import BaseCommand

from ingestion.sources import seed_sources


class Command(BaseCommand):
    """Seed CatalogSource rows from ingestion.sources.SOURCE_DEFINITIONS."""

    help = 'Create or update CatalogSource rows for every known source'

    def add_arguments(self, parser):
        parser.add_argument(
            '--update',
            action='store_true',
            help='Overwrite settings of existing rows with the registry defaults',
        )

    def handle(self, *args, **options):
        counts = seed_sources(update=options['update'])
        self.stdout.write(
            self.style.SUCCESS(
                f"Sources seeded: {counts['created']} created, "
                f"{counts['updated']} updated, {counts['unchanged']} unchanged"
            )
        )
