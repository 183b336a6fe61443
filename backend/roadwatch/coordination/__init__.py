"""
Coordination Package

Per-intersection coordination aggregation, dynamic flow-rate
estimation and on-demand coordination queries.
"""

from .aggregator import CoordinationAggregator, IntersectionView, find_similar_ids
from .flow_estimator import DynamicFlowEstimator, trimmed_mean
from .query_service import LISTING_STATUSES, CoordinationQueryService

__all__ = [
    "CoordinationAggregator",
    "IntersectionView",
    "find_similar_ids",
    "DynamicFlowEstimator",
    "trimmed_mean",
    "LISTING_STATUSES",
    "CoordinationQueryService",
]
