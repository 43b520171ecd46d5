"""
Retention module - recording purge and expiration statistics
"""

from .cleanup import RetentionScheduler
