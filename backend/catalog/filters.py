import django_filters
from django.db.models import Q
from .models import Item


class ItemFilter(django_filters.FilterSet):
    """Filter for the item catalog"""

    search = django_filters.CharFilter(method='filter_search', label='Search')
    active = django_filters.CharFilter(method='filter_active', label='Active')
    unit = django_filters.CharFilter(field_name='unit', lookup_expr='iexact')

    class Meta:
        model = Item
        fields = ['search', 'active', 'unit']

    def filter_search(self, queryset, name, value):
        """Match every word against name, SKU or description"""
        if not value:
            return queryset
        for word in value.split():
            queryset = queryset.filter(
                Q(name__icontains=word) | Q(sku__icontains=word) | Q(description__icontains=word)
            )
        return queryset

    def filter_active(self, queryset, name, value):
        if value is None or value == '':
            return queryset
        return queryset.filter(is_active=str(value).lower() in ('true', '1', 'yes'))
