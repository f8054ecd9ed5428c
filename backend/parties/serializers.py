from rest_framework import serializers
from .models import Customer, Supplier


class CustomerSerializer(serializers.ModelSerializer):
    paymentTermsDays = serializers.IntegerField(source='payment_terms_days', required=False, min_value=0)
    taxId = serializers.CharField(source='tax_id', required=False, allow_blank=True)
    creditLimit = serializers.DecimalField(source='credit_limit', max_digits=12, decimal_places=2, required=False)
    isActive = serializers.BooleanField(source='is_active', required=False)

    class Meta:
        model = Customer
        fields = [
            'id', 'name', 'taxId', 'phone', 'email', 'address',
            'paymentTermsDays', 'creditLimit', 'isActive', 'created_at', 'updated_at'
        ]
        read_only_fields = ['created_at', 'updated_at']


class SupplierSerializer(serializers.ModelSerializer):
    paymentTermsDays = serializers.IntegerField(source='payment_terms_days', required=False, min_value=0)
    contactPerson = serializers.CharField(source='contact_person', required=False, allow_blank=True)
    isActive = serializers.BooleanField(source='is_active', required=False)

    class Meta:
        model = Supplier
        fields = [
            'id', 'name', 'code', 'phone', 'email', 'address', 'contactPerson',
            'paymentTermsDays', 'isActive', 'created_at', 'updated_at'
        ]
        read_only_fields = ['created_at', 'updated_at']
