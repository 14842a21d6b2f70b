"""
Utility modules for the practice monitor.
"""

from .text import normalize_postcode, html_to_text, to_slug, truncate
from .time_utils import utcnow, uk_date_key

__all__ = ['normalize_postcode', 'html_to_text', 'to_slug', 'truncate', 'utcnow', 'uk_date_key']
