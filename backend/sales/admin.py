from django.contrib import admin
from .models import DocumentLine, DocumentSequence, PaymentRecord, SalesDocument


class DocumentLineInline(admin.TabularInline):
    model = DocumentLine
    extra = 0
    readonly_fields = ['discount_amount', 'line_subtotal', 'line_tax', 'line_total']


class PaymentRecordInline(admin.TabularInline):
    model = PaymentRecord
    fk_name = 'document'
    extra = 0
    can_delete = False
    readonly_fields = ['amount', 'method', 'date', 'reference_number', 'reverses', 'receipt', 'created_by', 'created_at']

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(SalesDocument)
class SalesDocumentAdmin(admin.ModelAdmin):
    list_display = ['number', 'document_type', 'status', 'company', 'customer', 'document_date', 'total_amount', 'paid_amount']
    list_filter = ['document_type', 'status', 'company', 'document_date']
    search_fields = ['number', 'customer__name', 'supplier__name']
    readonly_fields = [
        'id', 'number', 'document_type', 'currency', 'sub_total', 'discount_amount', 'vat_amount',
        'total_amount', 'paid_amount', 'source_document', 'source_document_type', 'version',
        'created_by', 'created_at', 'updated_at', 'cancelled_at'
    ]
    inlines = [DocumentLineInline, PaymentRecordInline]
    ordering = ['-document_date']
    date_hierarchy = 'document_date'


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    list_display = ['id', 'document', 'amount', 'method', 'date', 'reverses', 'receipt', 'created_at']
    list_filter = ['method', 'date']
    search_fields = ['document__number', 'reference_number']
    readonly_fields = [field.name for field in PaymentRecord._meta.fields]

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(DocumentSequence)
class DocumentSequenceAdmin(admin.ModelAdmin):
    list_display = ['company', 'document_type', 'year', 'last_number']
    list_filter = ['document_type', 'year']
