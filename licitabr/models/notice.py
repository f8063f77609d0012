"""
Notice data model for PNCP procurement records (editais).
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

PNCP_APP_URL = "https://pncp.gov.br/app/editais"

# 00394460000141-1-000123/2024
_NOTICE_ID_RE = re.compile(r"^(\d{14})-\d+-(\d+)/(\d{4})$")


def parse_notice_id(notice_id: str) -> Tuple[str, int, int]:
    """
    Split a PNCP control number into its components.

    Args:
        notice_id: numero de controle PNCP (CNPJ-1-SEQUENCIAL/ANO)

    Returns:
        Tuple of (cnpj, ano, sequencial)
    """
    match = _NOTICE_ID_RE.match((notice_id or "").strip())
    if not match:
        raise ValueError(f"Invalid PNCP notice id: {notice_id!r}")
    cnpj, sequencial, ano = match.groups()
    return cnpj, int(ano), int(sequencial)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse PNCP ISO timestamps, which may come with or without timezone"""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.strptime(text[:10], "%Y-%m-%d")
            except ValueError:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_value(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class Notice:
    """Procurement notice as published on PNCP"""

    id: str = ""
    title: str = ""
    description: str = ""
    org: str = ""
    status: str = ""
    deadline: Optional[datetime] = None
    value: Optional[float] = None

    modality: str = ""
    uf: str = ""
    municipality: str = ""
    org_cnpj: str = ""
    url: str = ""
    published_at: Optional[datetime] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_search_item(cls, item: Dict[str, Any]) -> 'Notice':
        """Create a notice from a PNCP /api/search item"""
        item_url = item.get("item_url") or ""
        url = ""
        if item_url.startswith("/compras/"):
            url = f"{PNCP_APP_URL}/{item_url[len('/compras/'):]}"
        elif item.get("orgao_cnpj") and item.get("ano") and item.get("numero_sequencial"):
            url = f"{PNCP_APP_URL}/{item['orgao_cnpj']}/{item['ano']}/{item['numero_sequencial']}"

        return cls(
            id=item.get("numero_controle_pncp") or str(item.get("id") or ""),
            title=item.get("title") or "",
            description=item.get("description") or "",
            org=item.get("orgao_nome") or "",
            status=item.get("situacao_nome") or "",
            deadline=parse_datetime(item.get("data_fim_vigencia")),
            value=_parse_value(item.get("valor_global")),
            modality=item.get("modalidade_licitacao_nome") or "",
            uf=item.get("uf") or "",
            municipality=item.get("municipio_nome") or "",
            org_cnpj=item.get("orgao_cnpj") or "",
            url=url,
            published_at=parse_datetime(item.get("data_publicacao_pncp")),
        )

    @classmethod
    def from_compra(cls, data: Dict[str, Any]) -> 'Notice':
        """Create a notice from a PNCP consulta v1 compra document"""
        orgao = data.get("orgaoEntidade") or {}
        unidade = data.get("unidadeOrgao") or {}
        cnpj = orgao.get("cnpj") or ""
        ano = data.get("anoCompra")
        sequencial = data.get("sequencialCompra")

        url = ""
        if cnpj and ano and sequencial:
            url = f"{PNCP_APP_URL}/{cnpj}/{ano}/{sequencial}"

        extra = {}
        if data.get("itens"):
            extra["itens"] = data["itens"]
        if data.get("linkSistemaOrigem"):
            extra["link_sistema_origem"] = data["linkSistemaOrigem"]

        return cls(
            id=data.get("numeroControlePNCP") or "",
            title=data.get("objetoCompra") or "",
            description=data.get("informacaoComplementar") or "",
            org=orgao.get("razaoSocial") or "",
            status=data.get("situacaoCompraNome") or "",
            deadline=parse_datetime(data.get("dataEncerramentoProposta")),
            value=_parse_value(data.get("valorTotalEstimado")),
            modality=data.get("modalidadeNome") or "",
            uf=unidade.get("ufSigla") or "",
            municipality=unidade.get("municipioNome") or "",
            org_cnpj=cnpj,
            url=url,
            published_at=parse_datetime(data.get("dataPublicacaoPncp")),
            extra=extra,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notice':
        """Create a notice from its to_dict() representation"""
        return cls(
            id=data.get("id", ""),
            title=data.get("title", ""),
            description=data.get("description", ""),
            org=data.get("org", ""),
            status=data.get("status", ""),
            deadline=parse_datetime(data.get("deadline")),
            value=_parse_value(data.get("value")),
            modality=data.get("modality", ""),
            uf=data.get("uf", ""),
            municipality=data.get("municipality", ""),
            org_cnpj=data.get("org_cnpj", ""),
            url=data.get("url", ""),
            published_at=parse_datetime(data.get("published_at")),
            extra=dict(data.get("extra") or {}),
        )

    @property
    def text(self) -> str:
        """Free text used for keyword analysis"""
        return "\n".join(part for part in (self.title, self.description) if part)

    def days_until_deadline(self, now: Optional[datetime] = None) -> Optional[int]:
        if self.deadline is None:
            return None
        now = now or datetime.now(timezone.utc)
        return math.ceil((self.deadline - now).total_seconds() / 86400)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "org": self.org,
            "status": self.status,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "value": self.value,
            "modality": self.modality,
            "uf": self.uf,
            "municipality": self.municipality,
            "org_cnpj": self.org_cnpj,
            "url": self.url,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }
        if self.extra:
            data["extra"] = self.extra
        return data
