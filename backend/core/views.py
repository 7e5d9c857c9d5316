from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from .models import AuditLog
from .serializers import AuditLogSerializer
from .utils import build_page

AUDIT_LOG_PAGE_SIZE = 50

# query parameter -> queryset lookup
AUDIT_LOG_FILTERS = {
    'action': 'action',
    'model': 'model_name',
    'object_id': 'object_id',
}


def _parse_moment(value):
    """ISO date or datetime from a query parameter, None when blank or malformed"""
    try:
        moment = parse_datetime(value)
    except ValueError:
        return None
    if moment is not None and timezone.is_naive(moment):
        moment = timezone.make_aware(moment)
    return moment


def _visible_audit_logs(user):
    queryset = AuditLog.objects.select_related('user')
    if user.is_staff:
        return queryset
    return queryset.filter(user=user)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def audit_log_list(request):
    """Paginated audit trail, newest first. Staff see every entry, others only their own."""
    queryset = _visible_audit_logs(request.user)

    lookups = {
        lookup: request.query_params[param]
        for param, lookup in AUDIT_LOG_FILTERS.items()
        if request.query_params.get(param)
    }
    for param, lookup in (('date_from', 'created_at__gte'), ('date_to', 'created_at__lte')):
        moment = _parse_moment(request.query_params.get(param) or '')
        if moment:
            lookups[lookup] = moment

    queryset = queryset.filter(**lookups).order_by('-created_at', '-id')
    return Response(build_page(request, queryset, AuditLogSerializer, AUDIT_LOG_PAGE_SIZE))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def audit_log_detail(request, pk):
    audit_log = get_object_or_404(AuditLog.objects.select_related('user'), pk=pk)
    if not _visible_audit_logs(request.user).filter(pk=audit_log.pk).exists():
        return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
    return Response(AuditLogSerializer(audit_log).data)
