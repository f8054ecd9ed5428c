from django.db import models
from decimal import Decimal
from backend.core.models import Company


class Item(models.Model):
    """Sellable catalog item; supplies default price and description to document lines"""
    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name='items')
    sku = models.CharField(max_length=100, db_index=True)
    name = models.CharField(max_length=200, db_index=True)
    description = models.TextField(blank=True)
    unit = models.CharField(max_length=20, default='unit')
    sell_price = models.DecimalField(max_digits=18, decimal_places=4, default=Decimal('0.00'))
    cost_price = models.DecimalField(max_digits=18, decimal_places=4, default=Decimal('0.00'))
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.sku})"

    class Meta:
        db_table = 'items'
        ordering = ['name']
        constraints = [
            models.UniqueConstraint(fields=['company', 'sku'], name='uniq_item_sku_per_company'),
        ]
