import uuid
from decimal import Decimal

from django.db import models
from django.db.models import DEFERRED, Sum

from backend.catalog.models import Item
from backend.core.models import Company, User
from backend.parties.models import Customer, Supplier

from .calculator import compute_line, round_money
from .choices import DocumentStatus, DocumentType, PaymentMethod
from .exceptions import InvalidDocumentError

# Fields that can never change once a document row exists
IMMUTABLE_FIELDS = ('document_type', 'currency', 'number', 'company_id', 'source_document_id', 'source_document_type')


class SalesDocument(models.Model):
    """Quote, order, delivery note, invoice, tax invoice receipt, receipt or purchase invoice"""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name='documents')
    document_type = models.CharField(max_length=30, choices=DocumentType.choices)
    number = models.CharField(max_length=50)
    status = models.CharField(max_length=30, choices=DocumentStatus.choices)
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, null=True, blank=True, related_name='documents')
    supplier = models.ForeignKey(Supplier, on_delete=models.PROTECT, null=True, blank=True, related_name='documents')
    document_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)
    currency = models.CharField(max_length=3, default='ILS')
    notes = models.TextField(blank=True)
    sub_total = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))
    discount_amount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))
    vat_amount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))
    total_amount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))
    paid_amount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))
    source_document = models.ForeignKey(
        'self', on_delete=models.PROTECT, null=True, blank=True, related_name='derived_documents'
    )
    source_document_type = models.CharField(max_length=30, choices=DocumentType.choices, blank=True)
    version = models.PositiveIntegerField(default=1)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='sales_documents')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return self.number

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_values = dict(zip(field_names, values))
        return instance

    @property
    def remaining_amount(self):
        return self.total_amount - self.paid_amount

    @property
    def party(self):
        return self.supplier if self.document_type == DocumentType.PURCHASE_INVOICE else self.customer

    @property
    def is_fully_paid(self):
        return self.total_amount > Decimal('0.00') and self.paid_amount >= self.total_amount

    def unreceipted_amount(self):
        """Money received on this document that no Receipt covers yet"""
        total = self.payments.filter(receipt__isnull=True, reversed_by__isnull=True, amount__gt=0).aggregate(
            total=Sum('amount')
        )['total']
        return total or Decimal('0.00')

    def apply_totals(self, totals):
        self.sub_total = totals.sub_total
        self.discount_amount = totals.discount_amount
        self.vat_amount = totals.vat_amount
        self.total_amount = totals.total_amount

    def check_immutable_fields(self):
        """Reject any change to identity, type, currency or provenance of a stored row"""
        loaded = getattr(self, '_loaded_values', None)
        if not loaded:
            return
        for field in IMMUTABLE_FIELDS:
            if loaded.get(field, DEFERRED) is DEFERRED:
                continue
            if loaded[field] != getattr(self, field):
                raise InvalidDocumentError(
                    f"{field} cannot be changed after creation",
                    field=field,
                    documentId=self.pk,
                )

    def save(self, *args, **kwargs):
        self.check_immutable_fields()
        if self.paid_amount < Decimal('0.00') or self.paid_amount > self.total_amount:
            raise InvalidDocumentError(
                "paidAmount must stay between 0 and totalAmount",
                paidAmount=self.paid_amount,
                totalAmount=self.total_amount,
            )
        super().save(*args, **kwargs)
        self._loaded_values = {field: getattr(self, field) for field in IMMUTABLE_FIELDS}

    class Meta:
        db_table = 'sales_documents'
        ordering = ['-document_date', '-created_at']
        constraints = [
            models.UniqueConstraint(fields=['company', 'document_type', 'number'], name='uniq_document_number_per_type'),
        ]
        indexes = [
            models.Index(fields=['company', 'document_type', 'status'], name='idx_doc_company_type_status'),
            models.Index(fields=['company', '-document_date'], name='idx_doc_company_date'),
            models.Index(fields=['source_document', 'document_type'], name='idx_doc_source_type'),
        ]


class DocumentLine(models.Model):
    """One priced row on a document; derived amounts are recomputed on every save"""
    document = models.ForeignKey(SalesDocument, on_delete=models.CASCADE, related_name='lines')
    line_number = models.PositiveIntegerField(default=1)
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name='document_lines')
    description = models.CharField(max_length=500, blank=True)
    quantity = models.DecimalField(max_digits=18, decimal_places=4)
    unit_price = models.DecimalField(max_digits=18, decimal_places=4)
    discount_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('0.00'))
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal('17.00'))
    discount_amount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))
    line_subtotal = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))
    line_tax = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))
    line_total = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal('0.00'))

    def recompute(self):
        amounts = compute_line(self.quantity, self.unit_price, self.discount_percent, self.tax_rate)
        self.discount_amount = round_money(amounts.discount_amount)
        self.line_subtotal = round_money(amounts.line_subtotal)
        self.line_tax = round_money(amounts.line_tax)
        self.line_total = round_money(amounts.line_total)
        return amounts

    def save(self, *args, **kwargs):
        self.recompute()
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'document_lines'
        ordering = ['line_number', 'id']


class PaymentRecord(models.Model):
    """Immutable payment (positive) or reversal (negative) against a document"""
    document = models.ForeignKey(SalesDocument, on_delete=models.PROTECT, related_name='payments')
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    date = models.DateField()
    reference_number = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    reverses = models.OneToOneField(
        'self', on_delete=models.PROTECT, null=True, blank=True, related_name='reversed_by'
    )
    receipt = models.ForeignKey(
        SalesDocument, on_delete=models.SET_NULL, null=True, blank=True, related_name='covered_payments'
    )
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='payment_records')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.document.number} - {self.method} - {self.amount}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            # Only the covering receipt may be attached after creation
            update_fields = kwargs.get('update_fields')
            if not update_fields or set(update_fields) - {'receipt'}:
                raise InvalidDocumentError("Payment records are immutable", paymentId=self.pk)
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'payment_records'
        ordering = ['date', 'id']


class DocumentSequence(models.Model):
    """Per-tenant, per-type, per-year counter behind document numbers"""
    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name='document_sequences')
    document_type = models.CharField(max_length=30, choices=DocumentType.choices)
    year = models.PositiveIntegerField()
    last_number = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'document_sequences'
        constraints = [
            models.UniqueConstraint(fields=['company', 'document_type', 'year'], name='uniq_sequence_per_type_year'),
        ]
