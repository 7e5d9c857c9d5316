"""
Cache invalidation signals
Automatically invalidate the active taxes cache when a tax, rule or assignment changes.
Invalidation runs after the surrounding transaction commits so a concurrent
reader cannot put the pre-commit definitions back in the cache.
"""
from django.db import transaction
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver
import logging
import threading
from contextlib import contextmanager
from .cache import invalidate_tax_cache
from .models import Tax, TaxRule, TaxAssignment

logger = logging.getLogger(__name__)

# Thread-local storage to track signal suspension
_thread_locals = threading.local()


@contextmanager
def suspend_cache_signals():
    """
    Context manager to temporarily suspend cache invalidation signals.
    Used while a tax and its rules/assignments are written together;
    the cache is invalidated once, after commit, when the block exits.
    """
    previous = is_suspended()
    try:
        _thread_locals.suspended = True
        yield
    finally:
        _thread_locals.suspended = previous
        if not previous:
            transaction.on_commit(invalidate_tax_cache)


def is_suspended():
    return getattr(_thread_locals, 'suspended', False)


@receiver([post_save, post_delete], sender=Tax)
@receiver([post_save, post_delete], sender=TaxRule)
@receiver([post_save, post_delete], sender=TaxAssignment)
def invalidate_tax_cache_on_change(sender, instance, **kwargs):
    if is_suspended():
        return
    logger.debug(f"{sender.__name__} {instance.pk} changed, invalidating tax cache after commit")
    transaction.on_commit(invalidate_tax_cache)
