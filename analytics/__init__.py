from analytics.analyzer import analyze_responses
from analytics.change_feed import ChangeFeedError, LocalChangeFeed
from analytics.connection import ConnectionState, MultiSurveyMonitor, RealTimeMetricsClient
from analytics.devices import DeviceCategory, KeywordDeviceClassifier
from analytics.models import (
    AnalyticsUpdate,
    ChangeEvent,
    RealTimeMetrics,
    ResponseAnalysis,
    ResponseRecord,
    SurveySchema,
)
from analytics.realtime import RealTimeAnalytics
from analytics.reports import ResponseReportService
from analytics.store import SqlResponseStore, StoreError, SurveyNotFoundError
from analytics.rest_store import RestResponseStore

__all__ = [
    'analyze_responses',
    'ChangeFeedError',
    'LocalChangeFeed',
    'ConnectionState',
    'MultiSurveyMonitor',
    'RealTimeMetricsClient',
    'DeviceCategory',
    'KeywordDeviceClassifier',
    'AnalyticsUpdate',
    'ChangeEvent',
    'RealTimeMetrics',
    'ResponseAnalysis',
    'ResponseRecord',
    'SurveySchema',
    'RealTimeAnalytics',
    'ResponseReportService',
    'SqlResponseStore',
    'StoreError',
    'SurveyNotFoundError',
    'RestResponseStore',
]
