"""
Unit tests for the notice summarizer.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from licitabr.models.notice import Notice
from licitabr.services.chat_service import ChatCompletion, ChatConfigurationError, ChatProviderError
from licitabr.services.summarizer import (
    SUMMARY_SYSTEM_PROMPT,
    build_summary_prompt,
    extract_json_object,
    fallback_summary,
    format_brl,
    normalize_summary,
    summarize_notice,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_notice(**overrides):
    fields = dict(
        id="00394460000141-1-000001/2025",
        title="Aquisição de Combustíveis",
        description="Fornecimento de gasolina e etanol para a frota da secretaria de saúde.",
        org="Prefeitura Municipal de Campinas",
        status="Aberto",
        deadline=NOW + timedelta(days=2, hours=-1),
        value=1500000.0,
        modality="Pregão Eletrônico",
        url="https://pncp.gov.br/app/editais/00394460000141/2025/1",
        published_at=NOW - timedelta(days=10),
    )
    fields.update(overrides)
    return Notice(**fields)


def make_relay(content=None, error=None):
    relay = MagicMock()
    if error is not None:
        relay.complete = AsyncMock(side_effect=error)
    else:
        relay.complete = AsyncMock(return_value=ChatCompletion(content=content, model="llama-3.1-8b-instant"))
    return relay


LLM_SUMMARY = {
    "executive_summary": "Pregão para fornecimento de combustíveis à frota da saúde.",
    "key_requirements": ["Registro na ANP"],
    "financial_info": {"estimated_value": 1500000, "guarantee_required": False},
    "evaluation_criteria": {"technical_weight": 0, "price_weight": 100, "criteria_details": ["Menor preço"]},
}


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        (1500000.0, "1.500.000,00"),
        (320000.5, "320.000,50"),
        (0.0, "0,00"),
        (None, "não informado"),
    ])
    def test_format_brl(self, value, expected):
        assert format_brl(value) == expected

    def test_prompt_carries_notice_fields_and_focus(self):
        prompt = build_summary_prompt(make_notice(), focus_areas=["garantias", "prazos"])

        assert "Título: Aquisição de Combustíveis" in prompt
        assert "Valor Estimado: R$ 1.500.000,00" in prompt
        assert "Foque especialmente em: garantias, prazos" in prompt

    def test_prompt_without_focus(self):
        assert "Foque especialmente" not in build_summary_prompt(make_notice())

    def test_extract_json_object(self):
        text = f"Segue o resumo:\n```json\n{json.dumps(LLM_SUMMARY, ensure_ascii=False)}\n```"

        assert extract_json_object(text) == LLM_SUMMARY

    @pytest.mark.parametrize("text", ["", "sem json", "{quebrado", "[1, 2]"])
    def test_extract_json_object_without_object(self, text):
        assert extract_json_object(text) is None

    def test_fallback_summary(self):
        summary = fallback_summary(make_notice(), NOW)

        assert summary["executive_summary"].startswith(
            "Licitação do Prefeitura Municipal de Campinas na modalidade Pregão Eletrônico"
        )
        assert "(2 dias restantes)" in summary["executive_summary"]
        assert summary["financial_info"]["estimated_value"] == 1500000.0
        assert summary["deadlines"][0]["type"] == "Entrega de Propostas"

    def test_fallback_without_deadline(self):
        summary = fallback_summary(make_notice(deadline=None), NOW)

        assert "não informado" in summary["executive_summary"]
        assert "dias restantes" not in summary["executive_summary"]

    def test_normalize_fills_missing_sections(self):
        summary = normalize_summary({"executive_summary": "Resumo"}, make_notice())

        assert summary["financial_info"] == {
            "estimated_value": 1500000.0,
            "payment_terms": "Conforme edital",
            "guarantee_required": True,
            "guarantee_percentage": 5,
        }
        assert summary["competitive_landscape"]["estimated_participants"] == 5
        assert summary["participation_requirements"]["legal_requirements"] == []

    def test_normalize_keeps_explicit_false(self):
        summary = normalize_summary(LLM_SUMMARY, make_notice())

        assert summary["financial_info"]["guarantee_required"] is False


@pytest.mark.asyncio
class TestSummarizeNotice:

    async def test_uses_llm_json(self):
        relay = make_relay(content=json.dumps(LLM_SUMMARY))

        summary = await summarize_notice(make_notice(), relay, focus_areas=["preço"], now=NOW)

        assert summary["source"] == "llm"
        assert summary["executive_summary"] == LLM_SUMMARY["executive_summary"]
        assert summary["key_requirements"] == ["Registro na ANP"]
        assert summary["notice_id"] == "00394460000141-1-000001/2025"
        assert summary["generated_at"] == NOW.isoformat()

        args, kwargs = relay.complete.call_args
        assert args[0][0]["role"] == "user"
        assert "preço" in args[0][0]["content"]
        assert kwargs["system_prompt"] == SUMMARY_SYSTEM_PROMPT
        assert kwargs["temperature"] == 0.2

    @pytest.mark.parametrize("error", [
        ChatConfigurationError("GROQ_API_KEY não configurada", provider="groq"),
        ChatProviderError("Limite de requisições excedido", 429),
    ])
    async def test_falls_back_when_llm_fails(self, error):
        summary = await summarize_notice(make_notice(), make_relay(error=error), now=NOW)

        assert summary["source"] == "fallback"
        assert "(2 dias restantes)" in summary["executive_summary"]

    async def test_falls_back_on_answer_without_json(self):
        summary = await summarize_notice(make_notice(), make_relay(content="Não consigo resumir."), now=NOW)

        assert summary["source"] == "fallback"
        assert summary["competitive_landscape"]["estimated_participants"] == 8
