"""
Unit tests for the PNCP API service.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from licitabr.services.pncp_service import (
    PNCPAPIConfig,
    PNCPAPIError,
    PNCPService,
    RateLimitExceededError,
)


class FakeResponse:
    """Minimal aiohttp response usable as an async context manager."""

    def __init__(self, status, body="", reason="OK"):
        self.status = status
        self.reason = reason
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


def make_service(**overrides):
    settings = dict(base_url="https://pncp.test/api", retry_delay=0.01, max_retries=2)
    settings.update(overrides)
    return PNCPService(PNCPAPIConfig(**settings))


@pytest.mark.asyncio
class TestSearchNotices:

    async def test_maps_items_and_params(self, sample_search_item):
        service = make_service()
        service._request = AsyncMock(return_value=(200, "OK", {"items": [sample_search_item], "total": 37}))

        result = await service.search_notices(query=" expediente ", page=2, page_size=5, uf="df")

        assert result["total"] == 37
        assert result["page"] == 2
        assert result["notices"][0].id == "00394460000141-1-000123/2024"

        path, = service._request.call_args.args
        params = service._request.call_args.kwargs["params"]
        assert path == "search/"
        assert params == {
            "tipos_documento": "edital",
            "ordenacao": "-data",
            "pagina": 2,
            "tam_pagina": 5,
            "status": "recebendo_proposta",
            "q": "expediente",
            "uf": "DF",
        }

    async def test_results_are_cached(self, sample_search_item):
        service = make_service()
        service._request = AsyncMock(return_value=(200, "OK", {"items": [sample_search_item], "total": 1}))

        await service.search_notices(query="expediente")
        await service.search_notices(query="expediente")

        assert service._request.await_count == 1

        service.clear_cache()
        await service.search_notices(query="expediente")
        assert service._request.await_count == 2

    async def test_cache_is_bounded(self):
        service = make_service(cache_max_entries=3)

        with patch("licitabr.services.pncp_service.time.monotonic", side_effect=[1.0, 2.0, 3.0, 4.0, 5.0]):
            for page in range(1, 6):
                service._cache_result(f"search:{page}", {"page": page})

        assert list(service._cache) == ["search:3", "search:4", "search:5"]

    async def test_cache_drops_expired_entries_first(self):
        service = make_service(cache_max_entries=3, cache_ttl_seconds=10)

        with patch("licitabr.services.pncp_service.time.monotonic", side_effect=[0.0, 5.0, 20.0, 21.0]):
            for key in ("a", "b", "c", "d"):
                service._cache_result(key, key)

        assert set(service._cache) == {"c", "d"}

    async def test_rate_limit(self):
        service = make_service()
        service._request = AsyncMock(return_value=(429, "Too Many Requests", None))

        with pytest.raises(RateLimitExceededError):
            await service.search_notices(query="diesel")

    async def test_upstream_error(self):
        service = make_service()
        service._request = AsyncMock(return_value=(500, "Internal Server Error", "boom"))

        with pytest.raises(PNCPAPIError) as exc_info:
            await service.search_notices(query="diesel")

        assert exc_info.value.status == 500


@pytest.mark.asyncio
class TestNoticeDetails:

    async def test_loads_compra_and_itens(self, sample_compra):
        service = make_service()
        service._request = AsyncMock(side_effect=[
            (200, "OK", sample_compra),
            (200, "OK", [{"numeroItem": 1, "descricao": "Caneta"}]),
        ])

        notice = await service.get_notice_details("00394460000141-1-000123/2024")

        assert notice.title == "Aquisição de material de expediente"
        assert notice.extra["itens"] == [{"numeroItem": 1, "descricao": "Caneta"}]
        first_path = service._request.await_args_list[0].args[0]
        second_path = service._request.await_args_list[1].args[0]
        assert first_path == "consulta/v1/orgaos/00394460000141/compras/2024/123"
        assert second_path == "pncp/v1/orgaos/00394460000141/compras/2024/123/itens"

    async def test_itens_failure_is_not_fatal(self, sample_compra):
        service = make_service()
        service._request = AsyncMock(side_effect=[
            (200, "OK", sample_compra),
            PNCPAPIError("timeout"),
        ])

        notice = await service.get_notice_details("00394460000141-1-000123/2024")

        assert notice is not None
        assert "itens" not in notice.extra

    @pytest.mark.parametrize("status", [204, 404])
    async def test_not_found(self, status):
        service = make_service()
        service._request = AsyncMock(return_value=(status, "Not Found", None))

        assert await service.get_notice_details("00394460000141-1-000999/2024") is None

    async def test_malformed_id(self):
        service = make_service()
        service._request = AsyncMock()

        with pytest.raises(ValueError):
            await service.get_notice_details("not-an-id")
        service._request.assert_not_awaited()


@pytest.mark.asyncio
class TestForward:

    async def test_passthrough(self):
        service = make_service()
        body = {"data": [{"numeroControlePNCP": "x"}], "totalRegistros": 1}
        service._request = AsyncMock(return_value=(200, "OK", body))

        status, result = await service.forward("consulta/v1/contratacoes/publicacao", {"pagina": "1"})

        assert status == 200
        assert result == body
        assert service._request.call_args.kwargs["retries"] == 0

    async def test_upstream_error_body(self):
        service = make_service()
        service._request = AsyncMock(return_value=(404, "Not Found", None))

        status, result = await service.forward("consulta/v1/nada")

        assert status == 404
        assert result == {"error": "Erro 404: Not Found"}


@pytest.mark.asyncio
class TestRequest:

    async def test_retries_retryable_status(self):
        service = make_service()
        service._session = MagicMock()
        service._session.get.side_effect = [
            FakeResponse(503, reason="Service Unavailable"),
            FakeResponse(200, body='{"items": []}'),
        ]

        with patch("licitabr.services.pncp_service.asyncio.sleep", new=AsyncMock()) as sleep:
            status, reason, body = await service._request("search/", params={"q": "x", "uf": None})

        assert (status, body) == (200, {"items": []})
        assert service._session.get.call_count == 2
        sleep.assert_awaited_once_with(0.01)
        assert service._session.get.call_args.kwargs["params"] == {"q": "x"}

    async def test_gives_up_after_max_retries(self):
        service = make_service(max_retries=1)
        service._session = MagicMock()
        service._session.get.side_effect = aiohttp.ClientConnectionError("refused")

        with patch("licitabr.services.pncp_service.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(PNCPAPIError):
                await service._request("search/")

        assert service._session.get.call_count == 2

    async def test_returns_last_retryable_status(self):
        service = make_service(max_retries=1)
        service._session = MagicMock()
        service._session.get.side_effect = [FakeResponse(429), FakeResponse(429, reason="Too Many Requests")]

        with patch("licitabr.services.pncp_service.asyncio.sleep", new=AsyncMock()):
            status, reason, body = await service._request("search/")

        assert status == 429
        assert body is None
