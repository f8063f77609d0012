"""
MCP tools for procurement notice monitoring.

Each tool declares a JSON Schema for its arguments and an async handler that
reads notices from a NoticeSource. Handlers return JSON-serializable dicts and
signal caller-visible failures with ToolError.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from jsonschema import Draft7Validator

from ..models.notice import Notice
from ..services import summarizer
from ..services.chat_service import ChatRelay
from ..services.notice_source import NoticeSource, create_notice_source
from ..services.pncp_service import PNCPAPIError
from ..services.risk_analyzer import MissingContentError, analyze_risk
from ..utils.logger import get_logger

logger = get_logger("rpc.tools")

# Upper bound on the candidates pulled from the source before client-side filtering
FETCH_CANDIDATES = 100

URGENCY_ORDER = {"crítica": 4, "alta": 3, "média": 2, "baixa": 1}
CLOSED_STATUSES = ("encerrad", "revogad", "anulad", "suspens", "fracassad", "desert")


class ToolError(Exception):
    """A tool could not produce its result; reported to the caller as isError"""
    pass


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass
class Tool:
    name: str
    description: str
    input_schema: Dict[str, Any]
    handler: ToolHandler

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }

    def validate(self, arguments: Dict[str, Any]):
        """Raise ToolError with the first schema violation"""
        errors = sorted(Draft7Validator(self.input_schema).iter_errors(arguments), key=lambda e: list(e.path))
        if errors:
            error = errors[0]
            location = ".".join(str(part) for part in error.path)
            prefix = f"Parâmetro inválido '{location}': " if location else "Parâmetros inválidos: "
            raise ToolError(prefix + error.message)


def _apply_defaults(schema: Dict[str, Any], arguments: Dict[str, Any]) -> Dict[str, Any]:
    resolved = dict(arguments)
    for key, prop in (schema.get("properties") or {}).items():
        if key not in resolved and "default" in prop:
            resolved[key] = prop["default"]
    return resolved


class ToolRegistry:
    """Named tools sharing a notice source, a chat relay and a clock"""

    def __init__(self, source: NoticeSource = None, clock: Callable[[], datetime] = None,
                 chat_relay: ChatRelay = None):
        self.source = source or create_notice_source()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._chat_relay = chat_relay
        self._tools: Dict[str, Tool] = {}

    @property
    def chat_relay(self) -> ChatRelay:
        if self._chat_relay is None:
            self._chat_relay = ChatRelay()
        return self._chat_relay

    def register(self, tool: Tool):
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> List[Tool]:
        return list(self._tools.values())

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """
        Validate arguments and run a tool.

        Raises:
            KeyError: unknown tool
            ToolError: invalid arguments or a failure the caller should see
        """
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(name)

        arguments = arguments if arguments is not None else {}
        if not isinstance(arguments, dict):
            raise ToolError("Parâmetros inválidos: arguments deve ser um objeto")
        tool.validate(arguments)

        try:
            return await tool.handler(_apply_defaults(tool.input_schema, arguments))
        except PNCPAPIError as e:
            logger.error(f"Tool {name} failed on PNCP: {e}")
            raise ToolError(f"Erro ao consultar o PNCP: {e}")

    async def close(self):
        await self.source.close()
        if self._chat_relay is not None:
            await self._chat_relay.close()


# Tool handlers

def _now(registry: ToolRegistry) -> datetime:
    return registry.clock()


async def search_notices(registry: ToolRegistry, args: Dict[str, Any]) -> Dict[str, Any]:
    result = await registry.source.search(
        query=args["query"],
        limit=args["limit"],
        page=args["page"],
        uf=args.get("uf"),
        status=args.get("status"),
    )
    notices = result["notices"]
    logger.info(f"search_notices '{args['query']}' returned {len(notices)} of {result['total']}")
    return {
        "query": args["query"],
        "total": result["total"],
        "notices": [notice.to_dict() for notice in notices],
    }


async def get_notice_details(registry: ToolRegistry, args: Dict[str, Any]) -> Dict[str, Any]:
    notice = await registry.source.get(args["noticeId"])
    if notice is None:
        raise ToolError(f"Edital {args['noticeId']} não encontrado")
    return notice.to_dict()


def deadline_urgency(days: Optional[int]) -> str:
    if days is not None and days <= 3:
        return "alta"
    if days is not None and days <= 7:
        return "média"
    return "baixa"


def _matches_filters(notice: Notice, args: Dict[str, Any]) -> bool:
    if args.get("organ") and args["organ"].lower() not in notice.org.lower():
        return False
    if args.get("modality") and args["modality"].lower() != notice.modality.lower():
        return False
    if args.get("min_value") is not None and (notice.value is None or notice.value < args["min_value"]):
        return False
    if args.get("max_value") is not None and (notice.value is None or notice.value > args["max_value"]):
        return False
    return True


async def fetch_notices(registry: ToolRegistry, args: Dict[str, Any]) -> Dict[str, Any]:
    now = _now(registry)
    limit = args["limit"]

    result = await registry.source.search(query=args.get("query"), limit=FETCH_CANDIDATES)
    matches = [notice for notice in result["notices"] if _matches_filters(notice, args)]

    enriched = []
    for notice in matches[:limit]:
        days = notice.days_until_deadline(now)
        data = notice.to_dict()
        data["days_until_deadline"] = days
        data["urgency_level"] = deadline_urgency(days)
        data["is_expired"] = days is not None and days < 0
        enriched.append(data)

    values = [item["value"] or 0 for item in enriched]
    statistics = {
        "total_value": sum(values),
        "avg_value": sum(values) / len(values) if values else 0,
        "modalities": list(dict.fromkeys(item["modality"] for item in enriched)),
        "organs": list(dict.fromkeys(item["org"] for item in enriched)),
        "urgent_count": sum(1 for item in enriched if item["urgency_level"] == "alta"),
        "expired_count": sum(1 for item in enriched if item["is_expired"]),
    }

    filters_applied = {
        key: args[key]
        for key in ("query", "organ", "modality", "min_value", "max_value")
        if args.get(key) is not None
    }
    filters_applied["limit"] = limit

    return {
        "notices": enriched,
        "total": len(matches),
        "filters_applied": filters_applied,
        "statistics": statistics,
        "search_metadata": {
            "execution_time": now.isoformat(),
            "results_count": len(enriched),
            "has_more": len(matches) > limit,
        },
    }


async def risk_classifier(registry: ToolRegistry, args: Dict[str, Any]) -> Dict[str, Any]:
    notice_id = args.get("notice_id")
    content = args.get("content")

    if not (content and content.strip()):
        if not notice_id:
            raise ToolError("Informe notice_id ou content para a análise de risco")
        notice = await registry.source.get(notice_id)
        if notice is None:
            raise ToolError(f"Edital {notice_id} não encontrado")
        content = notice.text

    try:
        assessment = analyze_risk(content, notice_id=notice_id, now=_now(registry))
    except MissingContentError as e:
        raise ToolError(str(e))
    return assessment.to_dict()


async def summarize_notice(registry: ToolRegistry, args: Dict[str, Any]) -> Dict[str, Any]:
    notice = await registry.source.get(args["notice_id"])
    if notice is None:
        raise ToolError(f"Edital {args['notice_id']} não encontrado")
    return await summarizer.summarize_notice(
        notice, registry.chat_relay, focus_areas=args.get("focus_areas"), now=_now(registry)
    )


def alert_urgency(days: int) -> str:
    if days <= 0:
        return "crítica"
    if days <= 2:
        return "alta"
    if days <= 5:
        return "média"
    return "baixa"


def alert_status(days: int) -> str:
    if days < 0:
        return "overdue"
    if days == 0:
        return "today"
    return "upcoming"


def actions_required(days: int) -> List[str]:
    if days <= 0:
        return ["URGENTE: Prazo vencido - verificar possibilidade de recurso"]
    if days == 1:
        return [
            "CRÍTICO: Finalizar e entregar proposta hoje",
            "Verificar documentação completa",
            "Confirmar forma de entrega",
        ]
    if days <= 3:
        return [
            "Revisar proposta técnica",
            "Finalizar proposta comercial",
            "Preparar documentação de habilitação",
        ]
    if days <= 7:
        return [
            "Elaborar proposta técnica",
            "Calcular custos e preços",
            "Reunir documentação necessária",
        ]
    return [
        "Analisar edital detalhadamente",
        "Avaliar viabilidade de participação",
        "Formar equipe de elaboração",
    ]


def _is_open(notice: Notice) -> bool:
    status = notice.status.lower()
    return not any(marker in status for marker in CLOSED_STATUSES)


async def monitor_deadlines(registry: ToolRegistry, args: Dict[str, Any]) -> Dict[str, Any]:
    now = _now(registry)
    days_ahead = args["days_ahead"]

    result = await registry.source.search(limit=FETCH_CANDIDATES)

    alerts = []
    for notice in result["notices"]:
        days = notice.days_until_deadline(now)
        if days is None or days < 0 or days > days_ahead or not _is_open(notice):
            continue
        alerts.append({
            "notice_id": notice.id,
            "notice_title": notice.title,
            "organ": notice.org,
            "deadline_type": "Entrega de Propostas",
            "deadline_date": notice.deadline.isoformat(),
            "days_remaining": days,
            "urgency_level": alert_urgency(days),
            "status": "overdue" if notice.deadline < now else alert_status(days),
            "estimated_value": notice.value,
            "actions_required": actions_required(days),
        })

    alerts.sort(key=lambda alert: (-URGENCY_ORDER[alert["urgency_level"]], alert["days_remaining"]))

    summary = {
        "today": sum(1 for alert in alerts if alert["status"] == "today"),
        "this_week": sum(1 for alert in alerts if 0 < alert["days_remaining"] <= 7),
        "next_week": sum(1 for alert in alerts if 7 < alert["days_remaining"] <= 14),
        "overdue": sum(1 for alert in alerts if alert["status"] == "overdue"),
    }

    return {
        "monitoring_date": now.isoformat(),
        "days_ahead": days_ahead,
        "total_deadlines": len(alerts),
        "critical_deadlines": sum(
            1 for alert in alerts if alert["urgency_level"] == "crítica" or alert["days_remaining"] <= 2
        ),
        "alerts": alerts,
        "summary": summary,
    }


TOOL_DEFINITIONS = (
    (
        "search_notices",
        "Buscar editais de licitação no PNCP por termo",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Termo de busca"},
                "limit": {"type": "integer", "description": "Limite de resultados", "minimum": 1,
                          "maximum": 100, "default": 10},
                "page": {"type": "integer", "description": "Página", "minimum": 1, "default": 1},
                "uf": {"type": "string", "description": "Sigla da UF", "minLength": 2, "maxLength": 2},
                "status": {"type": "string", "description": "Situação do edital"},
            },
            "required": ["query"],
        },
        search_notices,
    ),
    (
        "get_notice_details",
        "Obter detalhes de um edital pelo número de controle PNCP",
        {
            "type": "object",
            "properties": {
                "noticeId": {"type": "string", "description": "ID do edital", "minLength": 1},
            },
            "required": ["noticeId"],
        },
        get_notice_details,
    ),
    (
        "fetch_notices",
        "Listar editais com filtros, urgência de prazo e estatísticas",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Termo de busca"},
                "organ": {"type": "string", "description": "Órgão (busca parcial)"},
                "modality": {"type": "string", "description": "Modalidade de licitação"},
                "min_value": {"type": "number", "description": "Valor estimado mínimo", "minimum": 0},
                "max_value": {"type": "number", "description": "Valor estimado máximo", "minimum": 0},
                "limit": {"type": "integer", "description": "Limite de resultados", "minimum": 1,
                          "maximum": 100, "default": 20},
            },
        },
        fetch_notices,
    ),
    (
        "risk_classifier",
        "Classificar o risco de participação em um edital",
        {
            "type": "object",
            "properties": {
                "notice_id": {"type": "string", "description": "ID do edital"},
                "content": {"type": "string", "description": "Texto do edital a analisar"},
            },
        },
        risk_classifier,
    ),
    (
        "summarize_notice",
        "Gerar resumo inteligente e estruturado de um edital",
        {
            "type": "object",
            "properties": {
                "notice_id": {"type": "string", "description": "ID do edital", "minLength": 1},
                "focus_areas": {
                    "type": "array",
                    "description": "Aspectos a destacar no resumo",
                    "items": {"type": "string"},
                },
            },
            "required": ["notice_id"],
        },
        summarize_notice,
    ),
    (
        "monitor_deadlines",
        "Monitorar prazos de entrega de propostas dos próximos dias",
        {
            "type": "object",
            "properties": {
                "days_ahead": {"type": "integer", "description": "Janela em dias", "minimum": 1,
                               "maximum": 90, "default": 7},
            },
        },
        monitor_deadlines,
    ),
)


def create_tool_registry(source: NoticeSource = None, clock: Callable[[], datetime] = None,
                         chat_relay: ChatRelay = None) -> ToolRegistry:
    """Registry with every notice monitoring tool bound to one source"""
    registry = ToolRegistry(source=source, clock=clock, chat_relay=chat_relay)
    for name, description, schema, handler in TOOL_DEFINITIONS:
        registry.register(Tool(
            name=name,
            description=description,
            input_schema=schema,
            handler=_bind(handler, registry),
        ))
    return registry


def _bind(handler: Callable[[ToolRegistry, Dict[str, Any]], Awaitable[Any]], registry: ToolRegistry) -> ToolHandler:
    async def run(arguments: Dict[str, Any]) -> Any:
        return await handler(registry, arguments)
    return run
