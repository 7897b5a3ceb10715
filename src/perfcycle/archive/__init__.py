"""HR records archive and reporting."""

from perfcycle.archive.base import HRArchive
from perfcycle.archive.http import HttpHRArchive
from perfcycle.archive.records import HRRecordBuilder, HRReviewRecord, record_id_for
from perfcycle.archive.reports import (
    CycleReport,
    PerformanceTrends,
    RatingBand,
    cycle_report,
    employee_history,
    export_cycle_csv,
    performance_trends,
    rating_band,
)

__all__ = [
    "CycleReport",
    "HRArchive",
    "HRRecordBuilder",
    "HRReviewRecord",
    "HttpHRArchive",
    "PerformanceTrends",
    "RatingBand",
    "cycle_report",
    "employee_history",
    "export_cycle_csv",
    "performance_trends",
    "rating_band",
    "record_id_for",
]
