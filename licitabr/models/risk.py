"""
Risk assessment model produced by the keyword risk analyzer.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List


class RiskLevel(Enum):
    """Risk level for participating in a notice"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class RiskAssessment:
    """Result of scoring a notice's free text"""
    risk_level: RiskLevel
    risk_score: int
    risk_factors: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    analysis_timestamp: str = ""
    confidence_level: float = 0.85
    source: str = "SIBAL AI Risk Analyzer"
    notice_id: str = "unknown"
    sentiment_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        return data
