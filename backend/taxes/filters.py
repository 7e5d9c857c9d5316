import django_filters
from django.db.models import Q
from .models import Tax


class TaxFilter(django_filters.FilterSet):
    """Filter for the tax list; 'all' disables the type and status filters"""

    search = django_filters.CharFilter(method='filter_search', label='Search')
    type = django_filters.CharFilter(method='filter_choice', label='Type')
    status = django_filters.CharFilter(method='filter_choice', label='Status')

    class Meta:
        model = Tax
        fields = ['search', 'type', 'status']

    def filter_search(self, queryset, name, value):
        """Case-insensitive match on name or description"""
        value = value.strip()
        if not value:
            return queryset
        return queryset.filter(Q(name__icontains=value) | Q(description__icontains=value))

    def filter_choice(self, queryset, name, value):
        if not value or value == 'all':
            return queryset
        return queryset.filter(**{name: value})
