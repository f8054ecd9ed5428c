from rest_framework import serializers
from .models import User, Company, AuditLog


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'phone', 'is_active', 'is_staff', 'is_superuser', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class CompanySerializer(serializers.ModelSerializer):
    taxId = serializers.CharField(source='tax_id', required=False, allow_blank=True)
    vatRate = serializers.DecimalField(
        source='vat_rate', max_digits=5, decimal_places=2, min_value=0, max_value=100,
        required=False, allow_null=True
    )
    isActive = serializers.BooleanField(source='is_active', read_only=True)

    class Meta:
        model = Company
        fields = ['id', 'name', 'taxId', 'address', 'vatRate', 'currency', 'isActive', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class AuditLogSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = AuditLog
        fields = ['id', 'user', 'company', 'action', 'model_name', 'object_id', 'object_name',
                  'object_reference', 'changes', 'ip_address', 'created_at']
