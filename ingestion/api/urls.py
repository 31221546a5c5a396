"""
URL configuration for the read API (mounted at /api/v1/).
"""

from django.urls import path

from ingestion.api.views import (
    get_performer,
    get_product,
    get_run,
    list_performers,
    list_products,
    list_runs,
    list_sources,
    source_totals,
)

app_name = 'ingestion_api'

urlpatterns = [
    path('products/', list_products, name='list_products'),
    path('products/<str:normalized_id>/', get_product, name='get_product'),
    path('performers/', list_performers, name='list_performers'),
    path('performers/<int:performer_id>/', get_performer, name='get_performer'),
    path('sources/', list_sources, name='list_sources'),
    path('sources/totals/', source_totals, name='source_totals'),
    path('runs/', list_runs, name='list_runs'),
    path('runs/<uuid:run_id>/', get_run, name='get_run'),
]
