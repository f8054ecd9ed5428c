from rest_framework import serializers


class CustomerStatementParamsSerializer(serializers.Serializer):
    """Query parameters of the customer statement"""
    dateFrom = serializers.DateField()
    dateTo = serializers.DateField()
    includeZero = serializers.BooleanField(default=True)
