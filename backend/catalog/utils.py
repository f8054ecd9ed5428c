from backend.sales.exceptions import InvalidLineError, NotFoundError

from .models import Item


def _as_pk(item_id):
    if isinstance(item_id, bool):
        return None
    try:
        return int(item_id)
    except (TypeError, ValueError):
        return None


def get_items(tenant, item_ids):
    """Fetch the tenant's items by id in one query, rejecting absent or unknown ids"""
    for index, item_id in enumerate(item_ids, start=1):
        if item_id is None or item_id == '':
            raise InvalidLineError("itemId is required", field='itemId', lineNumber=index)
    wanted = {_as_pk(item_id) for item_id in item_ids} - {None}
    items = Item.objects.filter(company_id=tenant.company_id, pk__in=wanted).in_bulk()
    missing = [item_id for item_id in item_ids if items.get(_as_pk(item_id)) is None]
    if missing:
        raise NotFoundError(f"Item {missing[0]} not found", resource='Item', id=missing[0])
    return {item_id: items[_as_pk(item_id)] for item_id in item_ids}
