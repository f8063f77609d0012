"""
Keyword risk analyzer for procurement notices.

Scores a notice's free text against an ordered set of regex rules, adds a
naive sentiment adjustment from fixed word lists and maps the clamped score
to a three-level risk label.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from ..models.risk import RiskAssessment, RiskLevel

BASE_SCORE = 15
MIN_SCORE = 0
MAX_SCORE = 100

HIGH_RISK_THRESHOLD = 70
MEDIUM_RISK_THRESHOLD = 40

SENTIMENT_WEIGHT = 5
POSITIVE_WORDS = ("oportunidade", "inovação", "modernização", "eficiência")
NEGATIVE_WORDS = ("risco", "problema", "dificuldade", "limitação")

DEFAULT_FACTOR = "Análise padrão - fatores de risco baixos"


class MissingContentError(ValueError):
    """Raised when there is no notice text to analyze"""
    pass


@dataclass(frozen=True)
class RiskRule:
    """A keyword pattern and what a match contributes"""
    pattern: re.Pattern
    points: int
    factor: str
    recommendation: str


def _rule(pattern: str, points: int, factor: str, recommendation: str) -> RiskRule:
    return RiskRule(re.compile(pattern, re.IGNORECASE), points, factor, recommendation)


RISK_RULES: Tuple[RiskRule, ...] = (
    _rule(
        r"urgente|emergencial|calamidade|estado.*emergência", 40,
        "Situação de urgência ou emergência identificada",
        "Verificar documentação de emergência e prazos reduzidos",
    ),
    _rule(
        r"complexo|complexa|alta.*complexidade|sofisticado|avançado", 35,
        "Alta complexidade técnica do projeto",
        "Formar equipe técnica especializada e considerar parcerias",
    ),
    _rule(
        r"prazo.*curto|15.*dias|30.*dias|cronograma.*apertado", 30,
        "Prazo de execução muito restrito",
        "Avaliar viabilidade do cronograma e recursos necessários",
    ),
    _rule(
        r"inteligência.*artificial|machine.*learning|blockchain|iot|5g", 25,
        "Tecnologias emergentes ou inovadoras",
        "Garantir expertise em tecnologias de ponta",
    ),
    _rule(
        r"infraestrutura.*crítica|segurança.*nacional|dados.*sensíveis", 35,
        "Infraestrutura crítica ou dados sensíveis",
        "Implementar medidas de segurança rigorosas",
    ),
    _rule(
        r"milhões|bilhões|valor.*elevado|grande.*porte", 20,
        "Projeto de alto valor financeiro",
        "Análise financeira detalhada e garantias adequadas",
    ),
    _rule(
        r"documentação.*extensa|requisitos.*rigorosos|certificações", 15,
        "Documentação e certificações extensas",
        "Preparar documentação completa e certificações",
    ),
    _rule(
        r"integração.*sistemas|interoperabilidade|múltiplas.*plataformas", 25,
        "Integração complexa entre sistemas",
        "Mapear todas as integrações e dependências",
    ),
    _rule(
        r"lgpd|gdpr|compliance|auditoria|regulamentação", 20,
        "Requisitos de compliance e regulamentação",
        "Garantir conformidade com todas as regulamentações",
    ),
)

# (exclusive lower bound, recommendations), checked in order
SCORE_BAND_RECOMMENDATIONS: Tuple[Tuple[int, Tuple[str, str]], ...] = (
    (80, (
        "Risco muito alto - Considerar não participação ou parceria estratégica",
        "Análise jurídica e técnica detalhada obrigatória",
    )),
    (60, (
        "Alto risco - Preparação extensiva necessária",
        "Considerar parceria ou consórcio",
    )),
    (40, (
        "Risco moderado - Preparação cuidadosa requerida",
        "Análise detalhada de requisitos",
    )),
)
LOW_RISK_RECOMMENDATIONS = (
    "Baixo risco - Procedimentos padrão aplicáveis",
    "Oportunidade interessante para participação",
)


def sentiment_score(content: str) -> int:
    """+5 per positive word present, -5 per negative word present"""
    lowered = content.lower()
    score = sum(SENTIMENT_WEIGHT for word in POSITIVE_WORDS if word in lowered)
    score -= sum(SENTIMENT_WEIGHT for word in NEGATIVE_WORDS if word in lowered)
    return score


def clamp_score(score: int) -> int:
    return max(MIN_SCORE, min(score, MAX_SCORE))


def risk_level_for(score: int) -> RiskLevel:
    if score >= HIGH_RISK_THRESHOLD:
        return RiskLevel.HIGH
    if score >= MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def band_recommendations(score: int) -> Tuple[str, ...]:
    for lower_bound, recommendations in SCORE_BAND_RECOMMENDATIONS:
        if score > lower_bound:
            return recommendations
    return LOW_RISK_RECOMMENDATIONS


def _dedupe(items: List[str]) -> List[str]:
    return list(dict.fromkeys(items))


def analyze_risk(content: Optional[str], notice_id: Optional[str] = None,
                 now: Optional[datetime] = None) -> RiskAssessment:
    """
    Score the free text of a notice.

    Args:
        content: Notice text (title, description, edital body)
        notice_id: Identifier echoed back in the assessment
        now: Timestamp recorded as the analysis time

    Returns:
        RiskAssessment with a score clamped to [0, 100]
    """
    if content is None or not str(content).strip():
        raise MissingContentError("Conteúdo do edital é obrigatório")
    content = str(content)

    score = BASE_SCORE
    factors: List[str] = []
    recommendations: List[str] = []

    for rule in RISK_RULES:
        if rule.pattern.search(content):
            score += rule.points
            factors.append(rule.factor)
            recommendations.append(rule.recommendation)

    sentiment = sentiment_score(content)
    score += sentiment

    recommendations.extend(band_recommendations(score))

    final_score = clamp_score(score)
    timestamp = (now or datetime.now(timezone.utc)).isoformat()

    return RiskAssessment(
        risk_level=risk_level_for(final_score),
        risk_score=final_score,
        risk_factors=factors or [DEFAULT_FACTOR],
        recommendations=_dedupe(recommendations),
        analysis_timestamp=timestamp,
        notice_id=notice_id or "unknown",
        sentiment_score=sentiment,
    )
