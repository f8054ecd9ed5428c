from rest_framework import serializers

from . import state_machine
from .models import DocumentLine, PaymentRecord, SalesDocument

# camelCase API keys of a line mapped to the engine's argument names
LINE_INPUT_FIELDS = {
    'itemId': 'item_id',
    'description': 'description',
    'quantity': 'quantity',
    'unitPrice': 'unit_price',
    'discountPercent': 'discount_percent',
    'taxRate': 'tax_rate',
}


def line_inputs(raw_lines):
    """Translate API line objects to engine line dicts; anything else is passed through for validation"""
    if not isinstance(raw_lines, list):
        return raw_lines
    lines = []
    for raw in raw_lines:
        if not isinstance(raw, dict):
            lines.append(raw)
            continue
        lines.append({LINE_INPUT_FIELDS[key]: value for key, value in raw.items() if key in LINE_INPUT_FIELDS})
    return lines


class DocumentLineSerializer(serializers.ModelSerializer):
    lineNumber = serializers.IntegerField(source='line_number', read_only=True)
    itemId = serializers.IntegerField(source='item_id', read_only=True)
    itemSku = serializers.CharField(source='item.sku', read_only=True)
    unitPrice = serializers.DecimalField(source='unit_price', max_digits=18, decimal_places=4, read_only=True)
    discountPercent = serializers.DecimalField(source='discount_percent', max_digits=5, decimal_places=2, read_only=True)
    taxRate = serializers.DecimalField(source='tax_rate', max_digits=5, decimal_places=2, read_only=True)
    discountAmount = serializers.DecimalField(source='discount_amount', max_digits=18, decimal_places=2, read_only=True)
    lineSubtotal = serializers.DecimalField(source='line_subtotal', max_digits=18, decimal_places=2, read_only=True)
    lineTax = serializers.DecimalField(source='line_tax', max_digits=18, decimal_places=2, read_only=True)
    lineTotal = serializers.DecimalField(source='line_total', max_digits=18, decimal_places=2, read_only=True)

    class Meta:
        model = DocumentLine
        fields = [
            'id', 'lineNumber', 'itemId', 'itemSku', 'description', 'quantity', 'unitPrice',
            'discountPercent', 'taxRate', 'discountAmount', 'lineSubtotal', 'lineTax', 'lineTotal'
        ]
        read_only_fields = fields


def _money(source):
    return serializers.DecimalField(source=source, max_digits=18, decimal_places=2, read_only=True)


class SalesDocumentSerializer(serializers.ModelSerializer):
    type = serializers.CharField(source='document_type', read_only=True)
    customerId = serializers.IntegerField(source='customer_id', read_only=True)
    customerName = serializers.CharField(source='customer.name', read_only=True, default=None)
    supplierId = serializers.IntegerField(source='supplier_id', read_only=True)
    supplierName = serializers.CharField(source='supplier.name', read_only=True, default=None)
    documentDate = serializers.DateField(source='document_date', read_only=True)
    dueDate = serializers.DateField(source='due_date', read_only=True)
    lines = DocumentLineSerializer(many=True, read_only=True)
    subTotal = _money('sub_total')
    discountAmount = _money('discount_amount')
    vatAmount = _money('vat_amount')
    totalAmount = _money('total_amount')
    paidAmount = _money('paid_amount')
    remainingAmount = _money('remaining_amount')
    sourceDocumentId = serializers.UUIDField(source='source_document_id', read_only=True)
    sourceDocumentType = serializers.CharField(source='source_document_type', read_only=True)
    sourceDocumentNumber = serializers.CharField(source='source_document.number', read_only=True, default=None)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)
    canEdit = serializers.SerializerMethodField()
    canCancel = serializers.SerializerMethodField()
    canConvert = serializers.SerializerMethodField()
    canGenerateReceipt = serializers.SerializerMethodField()

    class Meta:
        model = SalesDocument
        fields = [
            'id', 'type', 'number', 'status', 'customerId', 'customerName', 'supplierId', 'supplierName',
            'documentDate', 'dueDate', 'currency', 'lines', 'notes',
            'subTotal', 'discountAmount', 'vatAmount', 'totalAmount', 'paidAmount', 'remainingAmount',
            'sourceDocumentId', 'sourceDocumentType', 'sourceDocumentNumber', 'version',
            'createdAt', 'updatedAt', 'canEdit', 'canCancel', 'canConvert', 'canGenerateReceipt'
        ]
        read_only_fields = fields

    def _unreceipted(self, obj):
        if not hasattr(obj, '_unreceipted_cache'):
            obj._unreceipted_cache = obj.unreceipted_amount()
        return obj._unreceipted_cache

    def get_canEdit(self, obj):
        return state_machine.can_edit(obj)

    def get_canCancel(self, obj):
        return state_machine.can_cancel(obj)

    def get_canConvert(self, obj):
        return state_machine.can_convert(obj, unreceipted_amount=self._unreceipted(obj))

    def get_canGenerateReceipt(self, obj):
        return state_machine.can_generate_receipt(obj, self._unreceipted(obj))


class DocumentCreateSerializer(serializers.Serializer):
    """Header of a new document; type, party and line values are checked by the engine"""
    type = serializers.CharField()
    customerId = serializers.IntegerField(required=False, allow_null=True)
    supplierId = serializers.IntegerField(required=False, allow_null=True)
    documentDate = serializers.DateField(required=False, allow_null=True)
    dueDate = serializers.DateField(required=False, allow_null=True)
    currency = serializers.CharField(max_length=3, required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    paymentMethod = serializers.CharField(required=False, allow_null=True)
    referenceNumber = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    lines = serializers.JSONField(required=False)


class DocumentHeaderSerializer(serializers.Serializer):
    """Partial header update; identity fields are rejected by the engine, not dropped"""
    documentDate = serializers.DateField(required=False)
    dueDate = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    customerId = serializers.IntegerField(required=False)
    supplierId = serializers.IntegerField(required=False)
    version = serializers.IntegerField(required=False, allow_null=True)

    FIELD_MAP = {
        'documentDate': 'document_date',
        'dueDate': 'due_date',
        'notes': 'notes',
        'customerId': 'customer_id',
        'supplierId': 'supplier_id',
    }
    IMMUTABLE_KEYS = {
        'type': 'type',
        'currency': 'currency',
        'number': 'number',
        'sourceDocumentId': 'source_document_id',
        'sourceDocumentType': 'source_document_type',
        'paidAmount': 'paid_amount',
        'totalAmount': 'total_amount',
        'status': 'status',
    }

    def changes(self, raw_data):
        """Engine-side change dict, keeping immutable keys so they fail loudly"""
        changes = {self.FIELD_MAP[key]: value for key, value in self.validated_data.items() if key in self.FIELD_MAP}
        for key, field in self.IMMUTABLE_KEYS.items():
            if key in raw_data:
                changes[field] = raw_data[key]
        return changes


class PaymentRecordSerializer(serializers.ModelSerializer):
    documentId = serializers.UUIDField(source='document_id', read_only=True)
    referenceNumber = serializers.CharField(source='reference_number', read_only=True)
    reversesId = serializers.IntegerField(source='reverses_id', read_only=True)
    receiptId = serializers.UUIDField(source='receipt_id', read_only=True)
    isReversed = serializers.SerializerMethodField()
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = PaymentRecord
        fields = [
            'id', 'documentId', 'amount', 'method', 'date', 'referenceNumber', 'notes',
            'reversesId', 'receiptId', 'isReversed', 'createdAt'
        ]
        read_only_fields = fields

    def get_isReversed(self, obj):
        return PaymentRecord.objects.filter(reverses_id=obj.pk).exists()


class ChainEntrySerializer(serializers.ModelSerializer):
    type = serializers.CharField(source='document_type', read_only=True)
    documentDate = serializers.DateField(source='document_date', read_only=True)
    totalAmount = _money('total_amount')
    sourceDocumentId = serializers.UUIDField(source='source_document_id', read_only=True)

    class Meta:
        model = SalesDocument
        fields = ['id', 'type', 'number', 'status', 'documentDate', 'totalAmount', 'sourceDocumentId']
        read_only_fields = fields
