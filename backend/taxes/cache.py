"""
Cached read side of the tax store
Active tax definitions (with rules and assignments) are cached for the
calculation endpoints and invalidated by signals whenever they change.
"""
from django.conf import settings
from django.core.cache import cache
import logging
from .models import Tax

logger = logging.getLogger(__name__)

ACTIVE_TAXES_CACHE_KEY = 'taxes:active'


def get_active_taxes():
    """Active taxes with prefetched rules and assignments, served from cache when possible"""
    try:
        cached_taxes = cache.get(ACTIVE_TAXES_CACHE_KEY)
    except Exception as e:
        logger.warning(f"Cache lookup failed for {ACTIVE_TAXES_CACHE_KEY}: {str(e)}")
        cached_taxes = None

    if cached_taxes is not None:
        logger.debug(f"Cache HIT for {ACTIVE_TAXES_CACHE_KEY}")
        return cached_taxes

    logger.debug(f"Cache MISS for {ACTIVE_TAXES_CACHE_KEY}")
    taxes = list(Tax.objects.active().with_conditions())
    try:
        cache.set(ACTIVE_TAXES_CACHE_KEY, taxes, getattr(settings, 'TAX_CACHE_TTL', 300))
    except Exception as e:
        logger.warning(f"Could not cache active taxes: {str(e)}")
    return taxes


def invalidate_tax_cache():
    try:
        cache.delete(ACTIVE_TAXES_CACHE_KEY)
        logger.info("Invalidated active taxes cache")
    except Exception as e:
        logger.warning(f"Error invalidating active taxes cache: {e}")
