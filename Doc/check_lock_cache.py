"""
Check that the configured cache can hold document command locks.

Run this after pointing REDIS_URL at the shared cache:
    python Doc/check_lock_cache.py
Every API worker must see the same cache, otherwise two workers can run
commands on one document at the same time.
"""
import os
import sys
import uuid

import django

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'backend.config.settings')
django.setup()

from django.conf import settings
from django.core.cache import cache

from backend.sales.exceptions import DocumentLockedError
from backend.sales.locking import CONVERT, EDIT, document_lock, held_operation

print("=" * 60)
print("Document lock cache check")
print("=" * 60)

print(f"\n1. Cache Backend: {settings.CACHES['default']['BACKEND']}")
print(f"2. Cache Location: {settings.CACHES['default'].get('LOCATION', 'N/A')}")
print(f"3. Lock timeout: {settings.SALES_LOCK_TIMEOUT}s, wait: {settings.SALES_LOCK_WAIT}s")

if 'locmem' in settings.CACHES['default']['BACKEND'].lower():
    print("⚠️  Local-memory cache: locks are per process, set REDIS_URL for production")

print("\n4. Lock round trip:")
print("-" * 60)

document_id = uuid.uuid4()
failed = False
try:
    with document_lock(document_id, CONVERT):
        if held_operation(document_id) == CONVERT:
            print("✅ Lock acquired and visible")
        else:
            print("❌ Lock not visible in the cache")
            failed = True
        try:
            with document_lock(document_id, EDIT):
                print("❌ Edit got the lock during a conversion")
                failed = True
        except DocumentLockedError:
            print("✅ Edit refused while conversion holds the lock")
    if held_operation(document_id) is None:
        print("✅ Lock released")
    else:
        print("❌ Lock still held after the block")
        failed = True
finally:
    cache.delete(f'sales:doclock:{document_id}')

print("\n" + "=" * 60)
if failed:
    print("❌ Lock check failed. Check REDIS_URL and that Redis is reachable.")
    sys.exit(1)
print("✅ Document locks work with this cache")
print("=" * 60)
