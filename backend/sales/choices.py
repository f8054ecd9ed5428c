from django.db import models


class DocumentType(models.TextChoices):
    QUOTE = 'Quote', 'Quote'
    SALES_ORDER = 'SalesOrder', 'Sales Order'
    DELIVERY_NOTE = 'DeliveryNote', 'Delivery Note'
    INVOICE = 'Invoice', 'Invoice'
    PURCHASE_INVOICE = 'PurchaseInvoice', 'Purchase Invoice'
    TAX_INVOICE_RECEIPT = 'TaxInvoiceReceipt', 'Tax Invoice Receipt'
    RECEIPT = 'Receipt', 'Receipt'


class DocumentStatus(models.TextChoices):
    DRAFT = 'Draft', 'Draft'
    SENT = 'Sent', 'Sent'
    ACCEPTED = 'Accepted', 'Accepted'
    REJECTED = 'Rejected', 'Rejected'
    EXPIRED = 'Expired', 'Expired'
    CONVERTED = 'Converted', 'Converted'
    CONFIRMED = 'Confirmed', 'Confirmed'
    PARTIALLY_SHIPPED = 'PartiallyShipped', 'Partially Shipped'
    SHIPPED = 'Shipped', 'Shipped'
    COMPLETED = 'Completed', 'Completed'
    PREPARED = 'Prepared', 'Prepared'
    IN_TRANSIT = 'InTransit', 'In Transit'
    DELIVERED = 'Delivered', 'Delivered'
    RETURNED = 'Returned', 'Returned'
    OVERDUE = 'Overdue', 'Overdue'
    PAID = 'Paid', 'Paid'
    RECEIVED = 'Received', 'Received'
    APPROVED = 'Approved', 'Approved'
    ISSUED = 'Issued', 'Issued'
    CANCELLED = 'Cancelled', 'Cancelled'


class PaymentMethod(models.TextChoices):
    CASH = 'Cash', 'Cash'
    CREDIT_CARD = 'CreditCard', 'Credit Card'
    BANK_TRANSFER = 'BankTransfer', 'Bank Transfer'
    CHECK = 'Check', 'Check'
    OTHER = 'Other', 'Other'


# Number prefixes per document type, e.g. QU-2025-0001
NUMBER_PREFIXES = {
    DocumentType.QUOTE: 'QU',
    DocumentType.SALES_ORDER: 'SO',
    DocumentType.DELIVERY_NOTE: 'DN',
    DocumentType.INVOICE: 'INV',
    DocumentType.PURCHASE_INVOICE: 'PI',
    DocumentType.TAX_INVOICE_RECEIPT: 'TIR',
    DocumentType.RECEIPT: 'RCP',
}

SALES_TYPES = [
    DocumentType.QUOTE,
    DocumentType.SALES_ORDER,
    DocumentType.DELIVERY_NOTE,
    DocumentType.INVOICE,
    DocumentType.TAX_INVOICE_RECEIPT,
    DocumentType.RECEIPT,
]
