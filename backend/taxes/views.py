from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
import logging
from .cache import get_active_taxes
from .engine import calculate_taxes, calculate_total_tax, calculate_final_price, build_tax_preview, to_text
from .filters import TaxFilter
from .models import Tax
from .serializers import (
    TaxSerializer, TaxCalculationContextSerializer, TaxCalculationSummarySerializer,
    TaxPreviewSerializer,
)
from .utils import (
    build_tax_ordering, get_tax_statistics, export_taxes_to_csv, get_rule_options,
    DEFAULT_PAGE_SIZE,
)
from backend.core.utils import build_page, create_audit_log

logger = logging.getLogger(__name__)

AUDITED_FIELDS = ['name', 'rate', 'type', 'status', 'description', 'product_type']


def _audit_snapshot(tax):
    snapshot = {field: getattr(tax, field) for field in AUDITED_FIELDS}
    snapshot['rate'] = to_text(tax.rate)
    snapshot['rules_count'] = tax.rules.count()
    snapshot['assignments_count'] = tax.assignments.count()
    return snapshot


def _filtered_taxes(request):
    queryset = Tax.objects.with_conditions()
    queryset = TaxFilter(request.query_params, queryset=queryset).qs
    return queryset.order_by(*build_tax_ordering(
        request.query_params.get('sort_by'),
        request.query_params.get('sort_order'),
    ))


def _taxes_for_calculation(context):
    """Taxes to evaluate: the requested ids (in that order) or every active tax"""
    tax_ids = context.get('tax_ids')
    if not tax_ids:
        return get_active_taxes()
    taxes_by_id = {tax.id: tax for tax in Tax.objects.filter(id__in=tax_ids).with_conditions()}
    return [taxes_by_id[tax_id] for tax_id in dict.fromkeys(tax_ids) if tax_id in taxes_by_id]


# Tax views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def tax_list_create(request):
    """List taxes (search, type/status filters, sorting, pagination) or create a new tax"""
    if request.method == 'GET':
        return Response(build_page(request, _filtered_taxes(request), TaxSerializer, DEFAULT_PAGE_SIZE))
    else:  # POST
        serializer = TaxSerializer(data=request.data)
        if serializer.is_valid():
            tax = serializer.save()
            logger.info(f"Tax created: {tax.name} (ID: {tax.id})")
            create_audit_log(
                request=request,
                action='create',
                model_name='Tax',
                object_id=str(tax.id),
                object_name=tax.name,
                changes=_audit_snapshot(tax)
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def tax_detail(request, pk):
    """Retrieve, update or delete a tax"""
    tax = get_object_or_404(Tax, pk=pk)

    if request.method == 'GET':
        serializer = TaxSerializer(tax)
        return Response(serializer.data)
    elif request.method in ('PUT', 'PATCH'):
        old_data = _audit_snapshot(tax)
        serializer = TaxSerializer(tax, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            tax = serializer.save()
            new_data = _audit_snapshot(tax)
            changes = {k: {'old': old_data.get(k), 'new': new_data.get(k)} for k in old_data if old_data.get(k) != new_data.get(k)}
            logger.info(f"Tax updated: {tax.name} (ID: {tax.id})")
            create_audit_log(
                request=request,
                action='update',
                model_name='Tax',
                object_id=str(tax.id),
                object_name=tax.name,
                changes=changes
            )
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        tax_id = str(tax.id)
        tax_name = tax.name
        tax.delete()
        logger.info(f"Tax deleted: {tax_name} (ID: {tax_id})")
        create_audit_log(
            request=request,
            action='delete',
            model_name='Tax',
            object_id=tax_id,
            object_name=tax_name,
            changes={'name': tax_name}
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def tax_calculate(request):
    """Evaluate taxes against a transaction context and return per-tax results with totals"""
    context_serializer = TaxCalculationContextSerializer(data=request.data)
    if not context_serializer.is_valid():
        return Response(context_serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    context = context_serializer.validated_data

    results = calculate_taxes(_taxes_for_calculation(context), context)
    summary = {
        'base_price': context['base_price'],
        'results': results,
        'total_tax': calculate_total_tax(results),
        'final_price': calculate_final_price(context['base_price'], results),
    }
    return Response(TaxCalculationSummarySerializer(summary).data)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def tax_preview(request):
    """Tax preview for a product: applicable taxes, total tax and final price"""
    context_serializer = TaxCalculationContextSerializer(data=request.data)
    if not context_serializer.is_valid():
        return Response(context_serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    context = context_serializer.validated_data

    results = calculate_taxes(_taxes_for_calculation(context), context)
    preview = build_tax_preview(context['base_price'], results, context.get('product_name', ''))
    return Response(TaxPreviewSerializer(preview).data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def tax_statistics(request):
    """Tax counts by status, type and configuration"""
    return Response(get_tax_statistics(Tax.objects.all()))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def tax_export(request):
    """Download the (filtered) tax list as CSV"""
    content = export_taxes_to_csv(_filtered_taxes(request))
    response = HttpResponse(content, content_type='text/csv; charset=utf-8')
    response['Content-Disposition'] = 'attachment; filename="taxes.csv"'
    return response


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def tax_rule_options(request):
    """Condition fields, operators and target types for building rules and assignments"""
    return Response(get_rule_options())
