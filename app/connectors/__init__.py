"""Data connectors for the client analytics dashboard"""

from app.connectors.base_connector import BaseConnector
from app.connectors.ga4_connector import GA4Connector, MetricsResult

__all__ = [
    "BaseConnector",
    "GA4Connector",
    "MetricsResult",
]
