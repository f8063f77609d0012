"""
Unit tests for the keyword risk analyzer.
"""

import pytest

from licitabr.models.risk import RiskLevel
from licitabr.services.risk_analyzer import (
    BASE_SCORE,
    DEFAULT_FACTOR,
    LOW_RISK_RECOMMENDATIONS,
    MissingContentError,
    analyze_risk,
    band_recommendations,
    clamp_score,
    risk_level_for,
    sentiment_score,
)


class TestScoring:
    """Rule matching and score computation."""

    def test_plain_text_scores_base(self):
        result = analyze_risk("Aquisição de material de expediente")

        assert result.risk_score == BASE_SCORE
        assert result.risk_level == RiskLevel.LOW
        assert result.risk_factors == [DEFAULT_FACTOR]
        assert result.recommendations == list(LOW_RISK_RECOMMENDATIONS)

    def test_short_deadline_rule(self):
        result = analyze_risk("Fornecimento de gasolina, entrega em 15 dias.")

        assert result.risk_score == 45
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.risk_factors == ["Prazo de execução muito restrito"]
        assert result.recommendations[0] == "Avaliar viabilidade do cronograma e recursos necessários"
        assert "Risco moderado - Preparação cuidadosa requerida" in result.recommendations

    def test_matching_is_case_insensitive(self):
        result = analyze_risk("CONTRATAÇÃO EMERGENCIAL")

        assert result.risk_score == 55
        assert "Situação de urgência ou emergência identificada" in result.risk_factors

    def test_each_rule_counts_once(self):
        result = analyze_risk("urgente urgente urgente")

        assert result.risk_score == 55

    def test_factors_follow_rule_order(self):
        result = analyze_risk("Adequação à LGPD de sistema urgente")

        assert result.risk_factors == [
            "Situação de urgência ou emergência identificada",
            "Requisitos de compliance e regulamentação",
        ]

    def test_score_is_clamped_to_100(self):
        text = ("Sistema de gestão hospitalar com inteligência artificial. Implantação de solução "
                "complexa com integração de sistemas legados, dados sensíveis e conformidade com a LGPD.")

        result = analyze_risk(text)

        assert result.risk_score == 100
        assert result.risk_level == RiskLevel.HIGH
        assert "Risco muito alto - Considerar não participação ou parceria estratégica" in result.recommendations

    def test_score_is_clamped_to_0(self):
        result = analyze_risk("risco, problema, dificuldade e limitação")

        assert result.sentiment_score == -20
        assert result.risk_score == 0
        assert result.risk_level == RiskLevel.LOW

    def test_positive_sentiment_raises_score(self):
        result = analyze_risk("Oportunidade de modernização e eficiência")

        assert result.sentiment_score == 15
        assert result.risk_score == BASE_SCORE + 15

    def test_recommendations_are_unique(self):
        result = analyze_risk("urgente complexo milhões lgpd certificações")

        assert len(result.recommendations) == len(set(result.recommendations))

    @pytest.mark.parametrize("content", [None, "", "   \n\t"])
    def test_missing_content_raises(self, content):
        with pytest.raises(MissingContentError):
            analyze_risk(content)

    def test_missing_content_is_value_error(self):
        assert issubclass(MissingContentError, ValueError)

    def test_is_deterministic_for_fixed_time(self, fixed_now):
        first = analyze_risk("Obra de grande porte", notice_id="abc", now=fixed_now)
        second = analyze_risk("Obra de grande porte", notice_id="abc", now=fixed_now)

        assert first.to_dict() == second.to_dict()
        assert first.analysis_timestamp == fixed_now.isoformat()


class TestAssessmentShape:
    """Serialized assessment fields."""

    def test_to_dict(self, fixed_now):
        data = analyze_risk("Serviço avançado", notice_id="00394460000141-1-000123/2024", now=fixed_now).to_dict()

        assert data["risk_level"] == "medium"
        assert data["risk_score"] == 50
        assert data["notice_id"] == "00394460000141-1-000123/2024"
        assert data["confidence_level"] == 0.85
        assert data["source"] == "SIBAL AI Risk Analyzer"

    def test_notice_id_defaults_to_unknown(self):
        assert analyze_risk("texto").notice_id == "unknown"


class TestHelpers:
    """Scoring helper functions."""

    @pytest.mark.parametrize("score,expected", [(-30, 0), (0, 0), (55, 55), (100, 100), (180, 100)])
    def test_clamp_score(self, score, expected):
        assert clamp_score(score) == expected

    @pytest.mark.parametrize("score,expected", [
        (0, RiskLevel.LOW),
        (39, RiskLevel.LOW),
        (40, RiskLevel.MEDIUM),
        (69, RiskLevel.MEDIUM),
        (70, RiskLevel.HIGH),
        (100, RiskLevel.HIGH),
    ])
    def test_risk_level_thresholds(self, score, expected):
        assert risk_level_for(score) == expected

    def test_band_boundaries_are_exclusive(self):
        assert band_recommendations(80)[0].startswith("Alto risco")
        assert band_recommendations(81)[0].startswith("Risco muito alto")
        assert band_recommendations(40) == LOW_RISK_RECOMMENDATIONS

    def test_sentiment_counts_each_word_once(self):
        assert sentiment_score("risco risco risco") == -5
