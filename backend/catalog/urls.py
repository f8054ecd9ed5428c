from django.urls import path
from .views import item_list_create, item_detail

urlpatterns = [
    path('items/', item_list_create, name='item-list-create'),
    path('items/<int:pk>/', item_detail, name='item-detail'),
]
