"""API routers."""

from . import billing
from . import events
from . import generation
from . import health
from . import referrals

__all__ = ['billing', 'events', 'generation', 'health', 'referrals']
