"""
Data models for the LicitaBR service.
"""

from .notice import Notice, parse_notice_id
from .risk import RiskAssessment, RiskLevel

__all__ = [
    "Notice",
    "parse_notice_id",
    "RiskAssessment",
    "RiskLevel",
]
