"""
Pytest configuration and shared fixtures for LicitaBR tests.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from licitabr.core.config import config
from licitabr.rpc.dispatcher import McpDispatcher
from licitabr.rpc.tools import create_tool_registry
from licitabr.services.chat_service import ChatConfigurationError
from licitabr.services.notice_source import MockNoticeSource

FIXED_NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now():
    """Reference time used by the mock notices and the tool clock."""
    return FIXED_NOW


@pytest.fixture
def mock_source(fixed_now):
    """Bundled sample notices with deadlines relative to fixed_now."""
    return MockNoticeSource(now=fixed_now)


@pytest.fixture
def chat_relay():
    """Chat relay without a provider key; tests replace complete to simulate the LLM."""
    relay = MagicMock()
    relay.complete = AsyncMock(side_effect=ChatConfigurationError("GROQ_API_KEY não configurada", provider="groq"))
    relay.close = AsyncMock()
    return relay


@pytest.fixture
def tool_registry(mock_source, fixed_now, chat_relay):
    return create_tool_registry(source=mock_source, clock=lambda: fixed_now, chat_relay=chat_relay)


@pytest.fixture
def dispatcher(tool_registry):
    return McpDispatcher(registry=tool_registry)


@pytest.fixture
def open_security(monkeypatch):
    """Run with authentication disabled."""
    monkeypatch.setattr(config.security, "api_key", None)
    monkeypatch.setattr(config.security, "jwt_secret", None)
    monkeypatch.setattr(config.security, "jwt_audience", None)


@pytest.fixture
def sample_search_item():
    """PNCP /api/search item as returned for editais."""
    return {
        "id": "6047183",
        "index": "contratacoes",
        "doc_type": "edital",
        "title": "Aquisição de material de expediente",
        "description": "Registro de preços para aquisição de material de expediente para as escolas municipais.",
        "item_url": "/compras/00394460000141/2024/123",
        "numero_controle_pncp": "00394460000141-1-000123/2024",
        "orgao_cnpj": "00394460000141",
        "orgao_nome": "MINISTERIO DA FAZENDA",
        "ano": "2024",
        "numero_sequencial": "123",
        "uf": "DF",
        "municipio_nome": "Brasília",
        "modalidade_licitacao_nome": "Pregão - Eletrônico",
        "situacao_nome": "Divulgada no PNCP",
        "valor_global": 125000.5,
        "data_publicacao_pncp": "2024-05-02T09:15:00",
        "data_fim_vigencia": "2024-05-20T10:00:00",
    }


@pytest.fixture
def sample_compra():
    """PNCP consulta v1 compra document."""
    return {
        "numeroControlePNCP": "00394460000141-1-000123/2024",
        "anoCompra": 2024,
        "sequencialCompra": 123,
        "objetoCompra": "Aquisição de material de expediente",
        "informacaoComplementar": "Entrega parcelada conforme termo de referência.",
        "orgaoEntidade": {"cnpj": "00394460000141", "razaoSocial": "MINISTERIO DA FAZENDA"},
        "unidadeOrgao": {"ufSigla": "DF", "municipioNome": "Brasília"},
        "situacaoCompraNome": "Divulgada no PNCP",
        "modalidadeNome": "Pregão - Eletrônico",
        "valorTotalEstimado": 125000.5,
        "dataPublicacaoPncp": "2024-05-02T09:15:00",
        "dataEncerramentoProposta": "2024-05-20T10:00:00",
        "linkSistemaOrigem": "https://www.gov.br/compras/edital/123",
    }
