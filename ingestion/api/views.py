"""
Read API over the canonical store.

Endpoints:
- GET /api/v1/products/                 - Product list (source, performer, q filters)
- GET /api/v1/products/<normalized_id>/ - Product detail
- GET /api/v1/performers/               - Performer list (q filter)
- GET /api/v1/performers/<id>/          - Performer detail with products
- GET /api/v1/sources/                  - Sources with their last run
- GET /api/v1/sources/totals/           - Estimated catalog size per source
- GET /api/v1/runs/                     - Ingestion runs (source, status filters)
- GET /api/v1/runs/<id>/                - Ingestion run detail

All endpoints require authentication and are throttled.
"""

import logging

from django.db.models import Q
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ingestion.api.serializers import (
    performer_to_dict,
    product_detail,
    product_summary,
    run_to_dict,
    source_to_dict,
)
from ingestion.api.throttling import ReadThrottle, TotalsRefreshThrottle
from ingestion.models import CanonicalProduct, CatalogSource, IngestionRun, Performer
from ingestion.services.totals import get_totals_estimator

logger = logging.getLogger(__name__)


def _paginated(request, queryset, render):
    paginator = PageNumberPagination()
    page = paginator.paginate_queryset(queryset, request)
    return paginator.get_paginated_response([render(item) for item in page])


# ============================================================
# Products
# ============================================================

@extend_schema(
    tags=['Products'],
    summary='List canonical products',
    parameters=[
        OpenApiParameter('source', OpenApiTypes.STR, description='Only products listed by this source slug'),
        OpenApiParameter('performer', OpenApiTypes.STR, description='Performer name or alias'),
        OpenApiParameter('q', OpenApiTypes.STR, description='Title substring'),
    ],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ReadThrottle])
def list_products(request):
    """List products, newest first."""
    products = CanonicalProduct.objects.prefetch_related('sources__source', 'performers')

    source = request.query_params.get('source')
    if source:
        products = products.filter(sources__source__slug=source.lower())

    performer = request.query_params.get('performer')
    if performer:
        key = Performer.make_key(performer)
        products = products.filter(
            Q(performers__name_key=key) | Q(performers__aliases__alias_key=key)
        )

    query = request.query_params.get('q')
    if query:
        products = products.filter(title__icontains=query)

    return _paginated(request, products.distinct().order_by('-created_at'), product_summary)


@extend_schema(tags=['Products'], summary='Get product detail')
@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ReadThrottle])
def get_product(request, normalized_id):
    """Product with its listings, images, videos, performers, categories and active sales."""
    product = (
        CanonicalProduct.objects.prefetch_related(
            'sources__source', 'images', 'videos', 'performers', 'categories'
        )
        .filter(normalized_id=normalized_id.lower())
        .first()
    )
    if product is None:
        return Response({'error': 'Product not found'}, status=status.HTTP_404_NOT_FOUND)
    return Response(product_detail(product))


# ============================================================
# Performers
# ============================================================

@extend_schema(
    tags=['Performers'],
    summary='List performers',
    parameters=[OpenApiParameter('q', OpenApiTypes.STR, description='Name substring')],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ReadThrottle])
def list_performers(request):
    performers = Performer.objects.prefetch_related('aliases')
    query = request.query_params.get('q')
    if query:
        performers = performers.filter(
            Q(name__icontains=query) | Q(reading__icontains=query) | Q(aliases__alias__icontains=query)
        ).distinct()
    return _paginated(request, performers.order_by('name'), performer_to_dict)


@extend_schema(tags=['Performers'], summary='Get performer detail')
@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ReadThrottle])
def get_performer(request, performer_id):
    performer = Performer.objects.prefetch_related('aliases').filter(id=performer_id).first()
    if performer is None:
        return Response({'error': 'Performer not found'}, status=status.HTTP_404_NOT_FOUND)
    return Response(performer_to_dict(performer, with_products=True))


# ============================================================
# Sources and runs
# ============================================================

@extend_schema(tags=['Sources'], summary='List catalog sources with their last run')
@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ReadThrottle])
def list_sources(request):
    sources = []
    for source in CatalogSource.objects.order_by('name'):
        last_run = source.runs.order_by('-created_at').first()
        sources.append(source_to_dict(source, last_run))
    return Response({'sources': sources, 'count': len(sources)})


@extend_schema(
    tags=['Sources'],
    summary='Estimated catalog size per source',
    description='''
    Totals are cached for INGEST_TOTALS_CACHE_TTL seconds. A failed probe
    returns the last known value (state "stale") or the source's fallback
    estimate (state "failed"); it never returns an error.
    ''',
    parameters=[
        OpenApiParameter('refresh', OpenApiTypes.BOOL, description='Bypass the cache (throttled)'),
        OpenApiParameter('source', OpenApiTypes.STR, description='Only this source slug'),
    ],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([TotalsRefreshThrottle])
def source_totals(request):
    force_refresh = request.query_params.get('refresh', '').lower() in ('1', 'true', 'yes')
    estimator = get_totals_estimator()

    slug = request.query_params.get('source')
    if slug:
        try:
            results = [estimator.get_total(slug.lower(), force_refresh=force_refresh)]
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_404_NOT_FOUND)
    else:
        results = estimator.get_all(force_refresh=force_refresh)

    return Response({
        'totals': [result.to_dict() for result in results],
        'grand_total': sum(result.total or 0 for result in results),
    })


@extend_schema(
    tags=['Runs'],
    summary='List ingestion runs',
    parameters=[
        OpenApiParameter('source', OpenApiTypes.STR, description='Source slug'),
        OpenApiParameter('status', OpenApiTypes.STR, description='Run status'),
    ],
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ReadThrottle])
def list_runs(request):
    runs = IngestionRun.objects.select_related('source')
    source = request.query_params.get('source')
    if source:
        runs = runs.filter(source__slug=source.lower())
    run_status = request.query_params.get('status')
    if run_status:
        runs = runs.filter(status=run_status)
    return _paginated(request, runs.order_by('-created_at'), run_to_dict)


@extend_schema(tags=['Runs'], summary='Get ingestion run detail')
@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ReadThrottle])
def get_run(request, run_id):
    run = IngestionRun.objects.select_related('source').filter(id=run_id).first()
    if run is None:
        return Response({'error': 'Run not found'}, status=status.HTTP_404_NOT_FOUND)
    return Response(run_to_dict(run))
