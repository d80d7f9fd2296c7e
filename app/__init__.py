"""Client analytics dashboard: GA4 daily metrics sync"""

__version__ = "1.0.0"
