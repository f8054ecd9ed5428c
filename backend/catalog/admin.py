from django.contrib import admin
from .models import Item


@admin.register(Item)
class ItemAdmin(admin.ModelAdmin):
    list_display = ['sku', 'name', 'company', 'unit', 'sell_price', 'cost_price', 'is_active', 'updated_at']
    list_filter = ['is_active', 'company', 'unit']
    search_fields = ['sku', 'name', 'description']
    ordering = ['name']
