from rest_framework import serializers
from .models import Item


class ItemSerializer(serializers.ModelSerializer):
    sellPrice = serializers.DecimalField(source='sell_price', max_digits=18, decimal_places=4, min_value=0, required=False)
    costPrice = serializers.DecimalField(source='cost_price', max_digits=18, decimal_places=4, min_value=0, required=False)
    isActive = serializers.BooleanField(source='is_active', required=False)

    class Meta:
        model = Item
        fields = ['id', 'sku', 'name', 'description', 'unit', 'sellPrice', 'costPrice', 'isActive', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_sku(self, value):
        company_id = self.context.get('company_id')
        queryset = Item.objects.filter(company_id=company_id, sku=value)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError('An item with this SKU already exists.')
        return value
