# Generated manually
import django.db.models.deletion
import uuid
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models

DOCUMENT_TYPES = [
    ('Quote', 'Quote'),
    ('SalesOrder', 'Sales Order'),
    ('DeliveryNote', 'Delivery Note'),
    ('Invoice', 'Invoice'),
    ('PurchaseInvoice', 'Purchase Invoice'),
    ('TaxInvoiceReceipt', 'Tax Invoice Receipt'),
    ('Receipt', 'Receipt'),
]

DOCUMENT_STATUSES = [
    ('Draft', 'Draft'),
    ('Sent', 'Sent'),
    ('Accepted', 'Accepted'),
    ('Rejected', 'Rejected'),
    ('Expired', 'Expired'),
    ('Converted', 'Converted'),
    ('Confirmed', 'Confirmed'),
    ('PartiallyShipped', 'Partially Shipped'),
    ('Shipped', 'Shipped'),
    ('Completed', 'Completed'),
    ('Prepared', 'Prepared'),
    ('InTransit', 'In Transit'),
    ('Delivered', 'Delivered'),
    ('Returned', 'Returned'),
    ('Overdue', 'Overdue'),
    ('Paid', 'Paid'),
    ('Received', 'Received'),
    ('Approved', 'Approved'),
    ('Issued', 'Issued'),
    ('Cancelled', 'Cancelled'),
]

PAYMENT_METHODS = [
    ('Cash', 'Cash'),
    ('CreditCard', 'Credit Card'),
    ('BankTransfer', 'Bank Transfer'),
    ('Check', 'Check'),
    ('Other', 'Other'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('core', '0001_initial'),
        ('parties', '0001_initial'),
        ('catalog', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='SalesDocument',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('document_type', models.CharField(choices=DOCUMENT_TYPES, max_length=30)),
                ('number', models.CharField(max_length=50)),
                ('status', models.CharField(choices=DOCUMENT_STATUSES, max_length=30)),
                ('document_date', models.DateField()),
                ('due_date', models.DateField(blank=True, null=True)),
                ('currency', models.CharField(default='ILS', max_length=3)),
                ('notes', models.TextField(blank=True)),
                ('sub_total', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('discount_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('vat_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('total_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('paid_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('source_document_type', models.CharField(blank=True, choices=DOCUMENT_TYPES, max_length=30)),
                ('version', models.PositiveIntegerField(default=1)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='documents', to='core.company')),
                ('created_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='sales_documents', to=settings.AUTH_USER_MODEL)),
                ('customer', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='documents', to='parties.customer')),
                ('source_document', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='derived_documents', to='sales.salesdocument')),
                ('supplier', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='documents', to='parties.supplier')),
            ],
            options={
                'db_table': 'sales_documents',
                'ordering': ['-document_date', '-created_at'],
                'indexes': [
                    models.Index(fields=['company', 'document_type', 'status'], name='idx_doc_company_type_status'),
                    models.Index(fields=['company', '-document_date'], name='idx_doc_company_date'),
                    models.Index(fields=['source_document', 'document_type'], name='idx_doc_source_type'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('company', 'document_type', 'number'), name='uniq_document_number_per_type'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DocumentLine',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('line_number', models.PositiveIntegerField(default=1)),
                ('description', models.CharField(blank=True, max_length=500)),
                ('quantity', models.DecimalField(decimal_places=4, max_digits=18)),
                ('unit_price', models.DecimalField(decimal_places=4, max_digits=18)),
                ('discount_percent', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=5)),
                ('tax_rate', models.DecimalField(decimal_places=2, default=Decimal('17.00'), max_digits=5)),
                ('discount_amount', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('line_subtotal', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('line_tax', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('line_total', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=18)),
                ('document', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='lines', to='sales.salesdocument')),
                ('item', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='document_lines', to='catalog.item')),
            ],
            options={
                'db_table': 'document_lines',
                'ordering': ['line_number', 'id'],
            },
        ),
        migrations.CreateModel(
            name='PaymentRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('amount', models.DecimalField(decimal_places=2, max_digits=18)),
                ('method', models.CharField(choices=PAYMENT_METHODS, max_length=20)),
                ('date', models.DateField()),
                ('reference_number', models.CharField(blank=True, max_length=100)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('created_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='payment_records', to=settings.AUTH_USER_MODEL)),
                ('document', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='payments', to='sales.salesdocument')),
                ('receipt', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='covered_payments', to='sales.salesdocument')),
                ('reverses', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='reversed_by', to='sales.paymentrecord')),
            ],
            options={
                'db_table': 'payment_records',
                'ordering': ['date', 'id'],
            },
        ),
        migrations.CreateModel(
            name='DocumentSequence',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('document_type', models.CharField(choices=DOCUMENT_TYPES, max_length=30)),
                ('year', models.PositiveIntegerField()),
                ('last_number', models.PositiveIntegerField(default=0)),
                ('company', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='document_sequences', to='core.company')),
            ],
            options={
                'db_table': 'document_sequences',
                'constraints': [
                    models.UniqueConstraint(fields=('company', 'document_type', 'year'), name='uniq_sequence_per_type_year'),
                ],
            },
        ),
    ]
