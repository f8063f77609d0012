"""
FastAPI server for the LicitaBR / SIBAL platform.
Provides the PNCP proxy, risk analysis, MCP JSON-RPC endpoints, the chat relay
and operational endpoints (health, capabilities, metrics).
"""

import hmac
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import jwt
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import BaseModel, Field

from ..core.config import config
from ..rpc.dispatcher import McpDispatcher
from ..services.chat_service import ChatError, ChatProvider, ChatRelay
from ..services.pncp_service import PNCPAPIError, PNCPService
from ..services.risk_analyzer import MissingContentError, analyze_risk
from ..utils.logger import get_logger, with_correlation_id
from ..utils.metrics import CONTENT_TYPE_LATEST, record_proxy_request, render_metrics

# Initialize FastAPI app
app = FastAPI(
    title="SIBAL Risk Analyzer API",
    description="REST API for PNCP procurement monitoring, risk analysis and MCP tools",
    version=config.server.version,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.server.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Security
security = HTTPBearer(auto_error=False)
logger = get_logger("api_server")

_pncp_service: Optional[PNCPService] = None
_dispatcher: Optional[McpDispatcher] = None
_chat_relays: Dict[str, ChatRelay] = {}


# Pydantic models
class RiskAnalysisRequest(BaseModel):
    content: Optional[str] = None
    notice_id: Optional[str] = None
    analysis_type: Optional[str] = None


class ChatRequest(BaseModel):
    messages: List[Dict[str, Any]]
    model: Optional[str] = None
    provider: Optional[str] = None
    system_prompt: Optional[str] = None
    context: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1, le=8192)
    stream: bool = False


# Service providers, overridable with app.dependency_overrides
def get_pncp_service() -> PNCPService:
    global _pncp_service
    if _pncp_service is None:
        _pncp_service = PNCPService()
    return _pncp_service


def get_dispatcher() -> McpDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = McpDispatcher()
    return _dispatcher


def chat_relay_for(provider: Optional[str] = None) -> ChatRelay:
    name = (provider or config.llm.default_provider).lower()
    if name not in _chat_relays:
        _chat_relays[name] = ChatRelay(ChatProvider.from_config(name))
    return _chat_relays[name]


def get_chat_relay_factory() -> Callable[[Optional[str]], ChatRelay]:
    return chat_relay_for


# Authentication dependency
async def get_current_user(request: Request,
                           credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)):
    """Accept the configured API key or a Supabase JWT; open when neither is configured"""
    api_key = config.security.api_key
    jwt_secret = config.security.jwt_secret

    if not api_key and not jwt_secret:
        return {"user_id": "anonymous", "auth": "none"}

    provided_key = request.headers.get("api-key") or request.query_params.get("apiKey")
    if api_key and provided_key:
        if hmac.compare_digest(provided_key, api_key):
            return {"user_id": "api-key", "auth": "api_key"}
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required")

    token = credentials.credentials
    if api_key and hmac.compare_digest(token, api_key):
        return {"user_id": "api-key", "auth": "api_key"}

    if not jwt_secret:
        raise HTTPException(status_code=401, detail="Invalid API key")

    try:
        if config.security.jwt_audience:
            payload = jwt.decode(token, jwt_secret, algorithms=[config.security.jwt_algorithm],
                                 audience=config.security.jwt_audience)
        else:
            payload = jwt.decode(token, jwt_secret, algorithms=[config.security.jwt_algorithm],
                                 options={"verify_aud": False})
    except InvalidTokenError as e:
        logger.warning(f"Invalid JWT token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: missing user ID")

    return {
        "user_id": user_id,
        "email": payload.get("email"),
        "role": payload.get("role"),
        "auth": "jwt",
    }


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Tag every log line of a request with its X-Request-ID"""
    with with_correlation_id(request.headers.get("X-Request-ID")) as correlation_id:
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response


# Health check endpoints
@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": config.server.version
    }


@app.get("/api/health")
async def api_health():
    return {
        "status": "ok",
        "service": config.server.service_name,
        "version": config.server.version,
        "environment": config.environment,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/api/capabilities")
async def capabilities(dispatcher: McpDispatcher = Depends(get_dispatcher)):
    """List the services and MCP tools this server exposes"""
    return {
        "services": [
            {
                "name": "Risk Analysis",
                "endpoint": "/api/analyze-risk",
                "description": "Análise inteligente de risco para editais de licitação",
                "methods": ["POST"]
            },
            {
                "name": "PNCP Proxy",
                "endpoint": "/api/pncp/{path}",
                "description": "Proxy para a API pública do PNCP",
                "methods": ["GET"]
            },
            {
                "name": "MCP",
                "endpoint": "/mcp",
                "description": "Servidor MCP (JSON-RPC 2.0) com ferramentas de licitação",
                "methods": ["POST"]
            },
            {
                "name": "Chat",
                "endpoint": "/api/chat",
                "description": "Assistente de licitações via LLM",
                "methods": ["POST"]
            }
        ],
        "tools": [tool.name for tool in dispatcher.registry.list_tools()],
        "features": [
            "Análise de padrões de risco",
            "Detecção de complexidade técnica",
            "Avaliação de prazos críticos",
            "Identificação de tecnologias emergentes",
            "Análise de compliance",
            "Recomendações inteligentes"
        ]
    }


# Risk analysis
@app.post("/api/analyze-risk")
async def analyze_risk_endpoint(request: RiskAnalysisRequest):
    """Score a notice's text for participation risk"""
    try:
        assessment = analyze_risk(request.content, notice_id=request.notice_id)
    except MissingContentError as e:
        return JSONResponse(status_code=400, content={"error": str(e), "code": "MISSING_CONTENT"})
    except Exception as e:
        logger.error(f"Risk analysis error: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Erro interno na análise de risco", "code": "ANALYSIS_ERROR", "message": str(e)}
        )

    return {
        "success": True,
        "analysis": assessment.to_dict(),
        "metadata": {
            "analysis_type": request.analysis_type or "comprehensive",
            "processed_at": datetime.now(timezone.utc).isoformat(),
            "content_length": len(request.content)
        }
    }


# PNCP proxy
@app.get("/api/pncp/{path:path}")
async def pncp_proxy(path: str, request: Request, pncp: PNCPService = Depends(get_pncp_service)):
    """Forward a GET request to the PNCP API"""
    try:
        status, body = await pncp.forward(path, dict(request.query_params))
    except PNCPAPIError as e:
        logger.error(f"PNCP proxy error: {e}")
        record_proxy_request(500)
        return JSONResponse(status_code=500, content={"error": "Erro interno do servidor proxy"})

    record_proxy_request(status)
    if status == 204 or body is None:
        return Response(status_code=status)
    return JSONResponse(status_code=status, content=body)


# MCP endpoints
@app.post("/mcp")
@app.post("/webhook/mcp")
async def mcp_endpoint(request: Request,
                       dispatcher: McpDispatcher = Depends(get_dispatcher),
                       user: dict = Depends(get_current_user)):
    """JSON-RPC 2.0 endpoint for MCP clients and the N8N webhook workflow"""
    body = await request.body()
    response = await dispatcher.handle_text(body)
    if response is None:
        return Response(status_code=204)
    return JSONResponse(content=response)


# Chat relay
@app.post("/api/chat")
async def chat(request: ChatRequest,
               relay_for: Callable[[Optional[str]], ChatRelay] = Depends(get_chat_relay_factory),
               user: dict = Depends(get_current_user)):
    """Relay a conversation to the configured LLM provider"""
    try:
        relay = relay_for(request.provider)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    options = dict(
        model=request.model,
        temperature=request.temperature,
        max_tokens=request.max_tokens,
        system_prompt=request.system_prompt,
        context=request.context,
    )

    if request.stream:
        return await _stream_chat(relay, request.messages, options)

    try:
        completion = await relay.complete(request.messages, **options)
    except ChatError as e:
        logger.error(f"Chat error: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {
        "response": completion.content,
        "success": True,
        "model": completion.model,
        "usage": completion.usage
    }


async def _stream_chat(relay: ChatRelay, messages: List[Dict[str, Any]], options: Dict[str, Any]):
    deltas = relay.stream(messages, **options)

    # Pull the first delta here so provider errors still map to an HTTP status
    try:
        first = await deltas.__anext__()
    except StopAsyncIteration:
        first = None
    except ChatError as e:
        logger.error(f"Chat stream error: {e}")
        raise HTTPException(status_code=e.status_code, detail=str(e))

    async def events() -> AsyncIterator[str]:
        if first is not None:
            yield f"data: {json.dumps({'content': first}, ensure_ascii=False)}\n\n"
            try:
                async for delta in deltas:
                    yield f"data: {json.dumps({'content': delta}, ensure_ascii=False)}\n\n"
            except ChatError as e:
                logger.error(f"Chat stream interrupted: {e}")
                yield f"data: {json.dumps({'error': str(e)}, ensure_ascii=False)}\n\n"
        yield "data: [DONE]\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")


# Metrics
@app.get("/metrics")
async def metrics():
    """Prometheus metrics"""
    return Response(content=render_metrics(), media_type=CONTENT_TYPE_LATEST)


# Startup event
@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {config.server.service_name} API server ({config.environment})...")
    if not config.security.api_key and not config.security.jwt_secret:
        logger.warning("MCP_API_KEY and SUPABASE_JWT_SECRET are unset; MCP and chat endpoints are open")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    global _pncp_service, _dispatcher
    logger.info(f"Shutting down {config.server.service_name} API server...")
    if _pncp_service is not None:
        await _pncp_service.close()
        _pncp_service = None
    if _dispatcher is not None:
        await _dispatcher.close()
        _dispatcher = None
    for relay in _chat_relays.values():
        await relay.close()
    _chat_relays.clear()


def main():
    uvicorn.run(
        "licitabr.api.server:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.environment == "development",
        log_level=config.monitoring.log_level.lower()
    )


if __name__ == "__main__":
    main()
