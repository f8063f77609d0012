"""
Notice sources used by the MCP tools.

PNCPNoticeSource reads live data from the PNCP API; MockNoticeSource serves a
small bundled sample for local development and demos.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..core.config import config
from ..models.notice import Notice
from .pncp_service import PNCPService


class NoticeSource:
    """Read-only access to procurement notices"""

    name: str = "base"

    async def search(self, query: Optional[str] = None, limit: int = 10, page: int = 1,
                     uf: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
        """Return {"notices": [Notice], "total": int}"""
        raise NotImplementedError

    async def get(self, notice_id: str) -> Optional[Notice]:
        raise NotImplementedError

    async def close(self):
        pass


class PNCPNoticeSource(NoticeSource):
    name = "pncp"

    def __init__(self, service: PNCPService = None):
        self.service = service or PNCPService()

    async def search(self, query: Optional[str] = None, limit: int = 10, page: int = 1,
                     uf: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
        result = await self.service.search_notices(
            query=query,
            page=page,
            page_size=limit,
            status=status or "recebendo_proposta",
            uf=uf,
        )
        return {"notices": result["notices"][:limit], "total": result["total"]}

    async def get(self, notice_id: str) -> Optional[Notice]:
        try:
            return await self.service.get_notice_details(notice_id)
        except ValueError:
            # Not a PNCP control number, so PNCP cannot know it
            return None

    async def close(self):
        await self.service.close()


# (id, title, description, org, status, deadline offset in days, value, modality, uf, municipality)
_SAMPLE_NOTICES = [
    ("00394460000141-1-000001/2025", "Aquisição de Combustíveis",
     "Fornecimento de gasolina e etanol para a frota da secretaria de saúde, entrega em 15 dias.",
     "Prefeitura Municipal de Campinas", "Aberto", 2, 1500000.0, "Pregão Eletrônico", "SP", "Campinas"),
    ("00394460000141-1-000002/2025", "Fornecimento de Diesel para Frota Municipal",
     "Contratação de fornecimento contínuo de óleo diesel S10 para a frota municipal.",
     "Prefeitura Municipal de Campinas", "Em andamento", 6, 2300000.0, "Pregão Eletrônico", "SP", "Campinas"),
    ("26989715000102-1-000045/2025", "Sistema de gestão hospitalar com inteligência artificial",
     "Implantação de solução complexa com integração de sistemas legados, dados sensíveis de pacientes "
     "e conformidade com a LGPD.",
     "Secretaria de Estado da Saúde", "Aberto", 12, 8750000.0, "Concorrência Eletrônica", "MG", "Belo Horizonte"),
    ("18715615000160-1-000310/2025", "Aquisição emergencial de medicamentos",
     "Compra emergencial de medicamentos para atendimento de estado de emergência decretado.",
     "Fundo Municipal de Saúde de Recife", "Aberto", 1, 640000.0, "Dispensa", "PE", "Recife"),
    ("00530493000171-1-000077/2025", "Modernização do parque de impressão",
     "Oportunidade de modernização e eficiência com outsourcing de impressão departamental.",
     "Tribunal Regional Federal", "Aberto", 25, 320000.0, "Pregão Eletrônico", "DF", "Brasília"),
    ("46395000000139-1-000012/2024", "Reforma da escola municipal",
     "Serviços de engenharia para reforma predial da escola municipal.",
     "Prefeitura Municipal de São Paulo", "Encerrado", -3, 950000.0, "Concorrência Presencial", "SP", "São Paulo"),
]


class MockNoticeSource(NoticeSource):
    name = "mock"

    def __init__(self, now: Optional[datetime] = None, notices: Optional[List[Notice]] = None):
        reference = now or datetime.now(timezone.utc)
        if notices is not None:
            self.notices = list(notices)
        else:
            self.notices = [
                Notice(
                    id=notice_id,
                    title=title,
                    description=description,
                    org=org,
                    status=status,
                    deadline=reference + timedelta(days=offset, hours=-1),
                    value=value,
                    modality=modality,
                    uf=uf,
                    municipality=municipality,
                    url=f"https://pncp.gov.br/app/editais/{notice_id}",
                    published_at=reference - timedelta(days=10),
                )
                for (notice_id, title, description, org, status, offset, value,
                     modality, uf, municipality) in _SAMPLE_NOTICES
            ]

    async def search(self, query: Optional[str] = None, limit: int = 10, page: int = 1,
                     uf: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
        matches = self.notices
        if query and query.strip():
            term = query.strip().lower()
            matches = [n for n in matches if term in n.title.lower() or term in n.description.lower()]
        if uf:
            matches = [n for n in matches if n.uf.upper() == uf.upper()]
        if status:
            matches = [n for n in matches if n.status.lower() == status.lower()]

        start = (max(1, page) - 1) * limit
        return {"notices": matches[start:start + limit], "total": len(matches)}

    async def get(self, notice_id: str) -> Optional[Notice]:
        for notice in self.notices:
            if notice.id == notice_id:
                return notice
        return None


def create_notice_source(kind: Optional[str] = None) -> NoticeSource:
    """Build the notice source selected by configuration"""
    kind = (kind or config.pncp.notice_source).lower()
    if kind == "mock":
        return MockNoticeSource()
    if kind == "pncp":
        return PNCPNoticeSource()
    raise ValueError(f"Unknown notice source: {kind}")
