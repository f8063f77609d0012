"""
PNCP API Service

Client for the public Portal Nacional de Contratações Públicas API: notice
search, notice details and a transparent passthrough used by the HTTP proxy.
Handles retries with exponential backoff and caches successful lookups.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from ..core.config import config
from ..models.notice import Notice, parse_notice_id
from ..utils.logger import get_logger

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class PNCPAPIError(Exception):
    """PNCP API error"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitExceededError(PNCPAPIError):
    """Rate limit exceeded error"""
    pass


@dataclass
class PNCPAPIConfig:
    """PNCP API configuration"""

    base_url: str = "https://pncp.gov.br/api"
    user_agent: str = "SIBAL-LicitaTracker/1.0"
    timeout_seconds: int = 30
    max_retries: int = 3
    retry_delay: float = 1.0
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 1000
    page_size: int = 20

    @classmethod
    def from_config(cls) -> 'PNCPAPIConfig':
        """Load configuration from the global settings"""
        return cls(
            base_url=config.pncp.base_url,
            user_agent=config.pncp.user_agent,
            timeout_seconds=config.pncp.timeout_seconds,
            max_retries=config.pncp.max_retries,
            retry_delay=config.pncp.retry_delay,
            cache_ttl_seconds=config.pncp.cache_ttl_seconds,
            cache_max_entries=config.pncp.cache_max_entries,
            page_size=config.pncp.page_size,
        )


class PNCPService:
    """
    PNCP public API service.

    Provides notice search and details for the MCP tools, plus raw request
    forwarding for the browser-facing proxy.
    """

    def __init__(self, api_config: PNCPAPIConfig = None):
        self.config = api_config or PNCPAPIConfig.from_config()
        self.logger = get_logger("pncp_service")

        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._session:
            await self._session.close()
            self._session = None

    async def forward(self, path: str, params: Optional[Dict[str, Any]] = None) -> Tuple[int, Any]:
        """
        Forward a GET request to the PNCP API unchanged.

        Args:
            path: Path below the API base URL (e.g. "consulta/v1/contratacoes/publicacao")
            params: Query string parameters

        Returns:
            Tuple of (HTTP status, JSON body); non-2xx responses carry an error body
        """
        status, reason, body = await self._request(path, params=params, retries=0)

        if not 200 <= status < 300:
            self.logger.error(f"PNCP proxy upstream error: {status} {reason}")
            return status, {"error": f"Erro {status}: {reason}"}

        if isinstance(body, dict):
            self.logger.info(
                "PNCP proxy response received",
                extra={
                    "status": status,
                    "total": (body.get("meta") or {}).get("total", body.get("total", "N/A")),
                    "items": len(body.get("data") or body.get("items") or []),
                }
            )
        return status, body

    async def search_notices(self, query: Optional[str] = None, page: int = 1,
                             page_size: Optional[int] = None, status: Optional[str] = "recebendo_proposta",
                             uf: Optional[str] = None) -> Dict[str, Any]:
        """
        Search published editais.

        Args:
            query: Free text search term
            page: 1-based page number
            page_size: Results per page
            status: PNCP status filter (recebendo_proposta, encerradas, ...)
            uf: State abbreviation

        Returns:
            Dict with notices, total and page
        """
        params = {
            "tipos_documento": "edital",
            "ordenacao": "-data",
            "pagina": max(1, int(page)),
            "tam_pagina": page_size or self.config.page_size,
        }
        if status:
            params["status"] = status
        if query and query.strip():
            params["q"] = query.strip()
        if uf:
            params["uf"] = uf.upper()

        cache_key = self._get_cache_key("search", params)
        cached_result = self._get_cached_result(cache_key)
        if cached_result is not None:
            return cached_result

        status_code, reason, body = await self._request("search/", params=params)
        if status_code == 429:
            raise RateLimitExceededError("PNCP rate limit exceeded", status=429)
        if status_code != 200 or not isinstance(body, dict):
            raise PNCPAPIError(f"PNCP search failed: {status_code} {reason}", status=status_code)

        notices = [Notice.from_search_item(item) for item in body.get("items") or []]
        result = {
            "notices": notices,
            "total": int(body.get("total") or len(notices)),
            "page": params["pagina"],
        }

        self.logger.info(f"PNCP search returned {len(notices)} notices (total {result['total']})",
                         extra={"query": query, "page": params["pagina"]})

        self._cache_result(cache_key, result)
        return result

    async def get_notice_details(self, notice_id: str, include_items: bool = True) -> Optional[Notice]:
        """
        Get a notice by its PNCP control number.

        Args:
            notice_id: numero de controle PNCP
            include_items: Also load the itens of the compra

        Returns:
            Notice or None if PNCP does not know it
        """
        cnpj, ano, sequencial = parse_notice_id(notice_id)

        cache_key = self._get_cache_key("notice", notice_id)
        cached_result = self._get_cached_result(cache_key)
        if cached_result is not None:
            return cached_result

        path = f"consulta/v1/orgaos/{cnpj}/compras/{ano}/{sequencial}"
        status_code, reason, body = await self._request(path)

        if status_code in (204, 404):
            return None
        if status_code == 429:
            raise RateLimitExceededError("PNCP rate limit exceeded", status=429)
        if status_code != 200 or not isinstance(body, dict):
            raise PNCPAPIError(f"PNCP detail lookup failed for {notice_id}: {status_code} {reason}",
                               status=status_code)

        if include_items:
            body["itens"] = await self._get_notice_items(cnpj, ano, sequencial)

        notice = Notice.from_compra(body)
        if not notice.id:
            notice.id = notice_id

        self._cache_result(cache_key, notice)
        return notice

    async def _get_notice_items(self, cnpj: str, ano: int, sequencial: int) -> List[Dict[str, Any]]:
        path = f"pncp/v1/orgaos/{cnpj}/compras/{ano}/{sequencial}/itens"
        try:
            status_code, reason, body = await self._request(path, retries=0)
        except PNCPAPIError as e:
            self.logger.warning(f"Could not load itens for {cnpj}/{ano}/{sequencial}: {e}")
            return []
        if status_code != 200 or not isinstance(body, list):
            self.logger.warning(f"Could not load itens for {cnpj}/{ano}/{sequencial}: {status_code} {reason}")
            return []
        return body

    # Private methods

    async def _ensure_session(self):
        """Ensure HTTP session is available"""
        if not self._session:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "User-Agent": self.config.user_agent,
                }
            )

    async def _request(self, path: str, params: Optional[Dict[str, Any]] = None,
                       retries: Optional[int] = None) -> Tuple[int, str, Any]:
        """GET a PNCP path with retries; returns (status, reason, parsed body)"""

        await self._ensure_session()

        url = f"{self.config.base_url}/{path.lstrip('/')}"
        query = {k: str(v) for k, v in (params or {}).items() if v is not None and v != ""}
        max_retries = self.config.max_retries if retries is None else retries

        attempt = 0
        while True:
            try:
                self.logger.debug(f"GET {url}", extra={"params": query, "attempt": attempt})
                async with self._session.get(url, params=query) as response:
                    raw = await response.text()
                    status = response.status
                    reason = response.reason or ""

                if status in RETRYABLE_STATUSES and attempt < max_retries:
                    await self._backoff(attempt, f"HTTP {status}")
                    attempt += 1
                    continue

                return status, reason, self._parse_body(raw)

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt < max_retries:
                    await self._backoff(attempt, str(e) or type(e).__name__)
                    attempt += 1
                    continue
                self.logger.error(f"PNCP request failed: {url}: {e}")
                raise PNCPAPIError(f"PNCP request failed: {e}")

    async def _backoff(self, attempt: int, cause: str):
        delay = self.config.retry_delay * (2 ** attempt)
        self.logger.warning(f"PNCP request retry {attempt + 1}/{self.config.max_retries} in {delay:.1f}s ({cause})")
        await asyncio.sleep(delay)

    @staticmethod
    def _parse_body(raw: str) -> Any:
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    def _get_cache_key(self, kind: str, value: Any) -> str:
        return f"{kind}:{json.dumps(value, sort_keys=True, default=str)}"

    def _get_cached_result(self, cache_key: str) -> Optional[Any]:
        entry = self._cache.get(cache_key)
        if not entry:
            return None
        expires_at, value = entry
        if time.monotonic() > expires_at:
            del self._cache[cache_key]
            return None
        return value

    def _cache_result(self, cache_key: str, value: Any):
        now = time.monotonic()
        self._cache[cache_key] = (now + self.config.cache_ttl_seconds, value)

        if len(self._cache) > self.config.cache_max_entries:
            for key in [key for key, (expires_at, _) in self._cache.items() if expires_at < now]:
                del self._cache[key]

            # Still full: drop the entries closest to expiry (the oldest)
            overflow = len(self._cache) - self.config.cache_max_entries
            if overflow > 0:
                oldest = sorted(self._cache.items(), key=lambda item: item[1][0])[:overflow]
                for key, _ in oldest:
                    del self._cache[key]

    def clear_cache(self):
        self._cache.clear()
