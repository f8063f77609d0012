"""
Notice summarizer

Builds a structured executive summary of a procurement notice with the chat
relay, falling back to a heuristic summary when the LLM is unavailable or
does not return usable JSON.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models.notice import Notice
from ..utils.logger import get_logger
from .chat_service import ChatError, ChatRelay

logger = get_logger("summarizer")

SUMMARY_SYSTEM_PROMPT = (
    "Você é um especialista em licitações públicas com vasta experiência em análise de editais. "
    "Gere resumos detalhados e estruturados em JSON válido, focando em aspectos práticos para "
    "empresas interessadas em participar."
)

SUMMARY_TEMPERATURE = 0.2
SUMMARY_MAX_TOKENS = 3000

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def format_brl(value: Optional[float]) -> str:
    """Format a value as Brazilian currency, e.g. 1.500.000,00"""
    if value is None:
        return "não informado"
    formatted = f"{value:,.2f}"
    return formatted.replace(",", "_").replace(".", ",").replace("_", ".")


def build_summary_prompt(notice: Notice, focus_areas: Optional[List[str]] = None) -> str:
    focus = f"\nFoque especialmente em: {', '.join(focus_areas)}" if focus_areas else ""
    deadline = notice.deadline.isoformat() if notice.deadline else "não informado"
    published = notice.published_at.isoformat() if notice.published_at else "não informado"

    return f"""Analise detalhadamente o seguinte edital de licitação e gere um resumo executivo completo:

Título: {notice.title}
Descrição: {notice.description}
Órgão: {notice.org}
Modalidade: {notice.modality}
Valor Estimado: R$ {format_brl(notice.value)}
Data de Publicação: {published}
Prazo de Entrega: {deadline}
Status: {notice.status}
URL: {notice.url}
{focus}

Gere um resumo estruturado em JSON com:

1. executive_summary: Resumo executivo em 2-3 parágrafos
2. key_requirements: Array com principais requisitos
3. technical_specifications: Array com especificações técnicas
4. deadlines: Array com prazos importantes (type, date, description)
5. financial_info: Informações financeiras (estimated_value, payment_terms, guarantee_required, guarantee_percentage)
6. participation_requirements: Requisitos para participação (legal, technical, financial, experience)
7. evaluation_criteria: Critérios de avaliação (technical_weight, price_weight, criteria_details)
8. risks_and_opportunities: Riscos e oportunidades (opportunities, risks, recommendations)
9. competitive_landscape: Análise competitiva (estimated_participants, market_analysis, success_factors)

Seja detalhado e preciso na análise."""


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the outermost JSON object embedded in an LLM answer, if any"""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def fallback_summary(notice: Notice, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Heuristic summary built only from the notice fields"""
    now = now or datetime.now(timezone.utc)
    days = notice.days_until_deadline(now)
    deadline = notice.deadline.isoformat() if notice.deadline else None
    remaining = f" ({days} dias restantes)" if days is not None else ""

    return {
        "executive_summary": (
            f"Licitação do {notice.org or 'órgão não informado'} na modalidade "
            f"{notice.modality or 'não informada'} com valor estimado de R$ {format_brl(notice.value)}. "
            f"Prazo para entrega de propostas: {deadline or 'não informado'}{remaining}. "
            f"{notice.description}"
        ).strip(),
        "key_requirements": [
            "Documentação de habilitação completa",
            "Proposta técnica detalhada",
            "Proposta comercial",
            "Garantia de participação (se exigida)",
        ],
        "technical_specifications": [
            "Especificações conforme edital",
            "Padrões de qualidade exigidos",
            "Normas técnicas aplicáveis",
        ],
        "deadlines": [
            {
                "type": "Entrega de Propostas",
                "date": deadline,
                "description": "Prazo final para entrega da documentação",
            },
            {
                "type": "Publicação",
                "date": notice.published_at.isoformat() if notice.published_at else None,
                "description": "Data de publicação no PNCP",
            },
        ],
        "financial_info": {
            "estimated_value": notice.value or 0,
            "payment_terms": "Conforme edital",
            "guarantee_required": True,
            "guarantee_percentage": 5,
        },
        "participation_requirements": {
            "legal_requirements": ["CNPJ ativo", "Regularidade fiscal", "Certidões negativas"],
            "technical_requirements": ["Capacidade técnica comprovada", "Atestados de capacidade"],
            "financial_requirements": ["Balanço patrimonial", "Índices de liquidez"],
            "experience_requirements": ["Experiência no ramo", "Atestados de execução"],
        },
        "evaluation_criteria": {
            "technical_weight": 70,
            "price_weight": 30,
            "criteria_details": ["Menor preço", "Melhor técnica", "Qualificação da equipe"],
        },
        "risks_and_opportunities": {
            "opportunities": [
                "Contrato de longo prazo",
                "Possibilidade de renovação",
                "Referência para novos contratos",
            ],
            "risks": ["Prazo apertado", "Alta concorrência", "Especificações complexas"],
            "recommendations": [
                "Analisar edital detalhadamente",
                "Preparar documentação com antecedência",
                "Verificar capacidade de execução",
            ],
        },
        "competitive_landscape": {
            "estimated_participants": 8,
            "market_analysis": "Mercado competitivo com empresas estabelecidas",
            "success_factors": ["Preço competitivo", "Experiência comprovada", "Qualidade técnica"],
        },
    }


def _section(summary: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = summary.get(key)
    return value if isinstance(value, dict) else {}


def normalize_summary(summary: Dict[str, Any], notice: Notice) -> Dict[str, Any]:
    """Fill every field the summary is expected to carry"""
    financial = _section(summary, "financial_info")
    participation = _section(summary, "participation_requirements")
    evaluation = _section(summary, "evaluation_criteria")
    risks = _section(summary, "risks_and_opportunities")
    competition = _section(summary, "competitive_landscape")

    guarantee_required = financial.get("guarantee_required")

    return {
        "executive_summary": summary.get("executive_summary") or f"Resumo do edital {notice.title}",
        "key_requirements": summary.get("key_requirements") or [],
        "technical_specifications": summary.get("technical_specifications") or [],
        "deadlines": summary.get("deadlines") or [],
        "financial_info": {
            "estimated_value": financial.get("estimated_value") or notice.value or 0,
            "payment_terms": financial.get("payment_terms") or "Conforme edital",
            "guarantee_required": True if guarantee_required is None else guarantee_required,
            "guarantee_percentage": financial.get("guarantee_percentage") or 5,
        },
        "participation_requirements": {
            "legal_requirements": participation.get("legal_requirements") or [],
            "technical_requirements": participation.get("technical_requirements") or [],
            "financial_requirements": participation.get("financial_requirements") or [],
            "experience_requirements": participation.get("experience_requirements") or [],
        },
        "evaluation_criteria": {
            "technical_weight": evaluation.get("technical_weight") or 70,
            "price_weight": evaluation.get("price_weight") or 30,
            "criteria_details": evaluation.get("criteria_details") or [],
        },
        "risks_and_opportunities": {
            "opportunities": risks.get("opportunities") or [],
            "risks": risks.get("risks") or [],
            "recommendations": risks.get("recommendations") or [],
        },
        "competitive_landscape": {
            "estimated_participants": competition.get("estimated_participants") or 5,
            "market_analysis": competition.get("market_analysis") or "Análise não disponível",
            "success_factors": competition.get("success_factors") or [],
        },
    }


async def summarize_notice(notice: Notice, relay: ChatRelay, focus_areas: Optional[List[str]] = None,
                           now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Summarize a notice with the LLM, or heuristically when that fails.

    Args:
        notice: Notice to summarize
        relay: Chat relay used for the LLM call
        focus_areas: Topics the summary should emphasize
        now: Reference time for deadline arithmetic and the generation timestamp

    Returns:
        Summary dict with every section filled, plus notice_id, source
        ("llm" or "fallback") and generated_at
    """
    now = now or datetime.now(timezone.utc)
    prompt = build_summary_prompt(notice, focus_areas)
    source = "llm"

    try:
        completion = await relay.complete(
            [{"role": "user", "content": prompt}],
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            temperature=SUMMARY_TEMPERATURE,
            max_tokens=SUMMARY_MAX_TOKENS,
        )
        summary = extract_json_object(completion.content)
        if summary is None:
            logger.warning(f"LLM summary for {notice.id} carried no JSON object; using fallback")
    except ChatError as e:
        logger.warning(f"LLM summary for {notice.id} unavailable ({e}); using fallback")
        summary = None

    if summary is None:
        summary = fallback_summary(notice, now)
        source = "fallback"

    result = normalize_summary(summary, notice)
    result["notice_id"] = notice.id
    result["source"] = source
    result["generated_at"] = now.isoformat()
    return result
