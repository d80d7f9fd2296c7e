"""Database models for the client analytics dashboard"""

from app.models.client import Client
from app.models.daily_metric import DailyMetric, METRIC_FIELDS
from app.models.sync_log import SyncLog, SYNC_STATUSES
