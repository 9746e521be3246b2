"""CampusDesk service layer -- scoping, paging, lifecycle, stats and delivery.

The Gemini triage client (:mod:`src.services.triage`), the EmailJS client
(:mod:`src.services.email`) and the Firestore store backend are imported
from their own modules so that ``import src.services`` stays free of the
GCP SDKs.
"""

from __future__ import annotations

from src.services.access_scope import AccessScope, RoleResolver, scope_for
from src.services.cache import CacheManager, InMemoryCacheBackend, RedisCacheBackend
from src.services.complaints import BulkResult, ComplaintService, ListResult, OperationResult
from src.services.eligibility import Decision, EligibilityRules, EligibilityWindows, can_escalate, can_reopen
from src.services.errors import (
    AccessDenied,
    CampusDeskError,
    ComplaintNotFound,
    EligibilityError,
    InvalidCursor,
    ScopeNotReady,
    StoreError,
    TransientStoreError,
)
from src.services.notifications import EventChannel, NotificationDispatcher, NotificationWorker
from src.services.paging import ComplaintFeed, FeedState, PagedQueryEngine, QueryPage
from src.services.stats import AnalyticsSummary, ComplaintStats, StatsAggregator

__all__ = [
    "AccessDenied",
    "AccessScope",
    "AnalyticsSummary",
    "BulkResult",
    "CacheManager",
    "CampusDeskError",
    "ComplaintFeed",
    "ComplaintNotFound",
    "ComplaintService",
    "ComplaintStats",
    "Decision",
    "EligibilityError",
    "EligibilityRules",
    "EligibilityWindows",
    "EventChannel",
    "FeedState",
    "InMemoryCacheBackend",
    "InvalidCursor",
    "ListResult",
    "NotificationDispatcher",
    "NotificationWorker",
    "OperationResult",
    "PagedQueryEngine",
    "QueryPage",
    "RedisCacheBackend",
    "RoleResolver",
    "ScopeNotReady",
    "StatsAggregator",
    "StoreError",
    "TransientStoreError",
    "can_escalate",
    "can_reopen",
    "scope_for",
]
