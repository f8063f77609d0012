"""
Unit tests for the PNCP notice model.
"""

from datetime import datetime, timedelta, timezone

import pytest

from licitabr.models.notice import Notice, parse_datetime, parse_notice_id


class TestParseNoticeId:

    def test_valid_id(self):
        assert parse_notice_id("00394460000141-1-000123/2024") == ("00394460000141", 2024, 123)

    def test_strips_whitespace(self):
        assert parse_notice_id(" 26989715000102-1-000045/2025 ") == ("26989715000102", 2025, 45)

    @pytest.mark.parametrize("notice_id", [
        "",
        "123",
        "0039446000014-1-000123/2024",
        "00394460000141-1-000123",
        "00394460000141-1-abc/2024",
    ])
    def test_malformed_ids_raise(self, notice_id):
        with pytest.raises(ValueError):
            parse_notice_id(notice_id)


class TestParseDatetime:

    def test_naive_timestamps_become_utc(self):
        assert parse_datetime("2024-05-20T10:00:00") == datetime(2024, 5, 20, 10, 0, tzinfo=timezone.utc)

    def test_zulu_suffix(self):
        assert parse_datetime("2024-05-20T10:00:00Z").tzinfo is not None

    def test_date_prefix_fallback(self):
        assert parse_datetime("2024-05-20 lixo") == datetime(2024, 5, 20, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "não informado"])
    def test_unparseable_is_none(self, value):
        assert parse_datetime(value) is None


class TestNotice:

    def test_from_search_item(self, sample_search_item):
        notice = Notice.from_search_item(sample_search_item)

        assert notice.id == "00394460000141-1-000123/2024"
        assert notice.title == "Aquisição de material de expediente"
        assert notice.org == "MINISTERIO DA FAZENDA"
        assert notice.status == "Divulgada no PNCP"
        assert notice.value == 125000.5
        assert notice.uf == "DF"
        assert notice.url == "https://pncp.gov.br/app/editais/00394460000141/2024/123"
        assert notice.deadline == datetime(2024, 5, 20, 10, 0, tzinfo=timezone.utc)

    def test_from_search_item_builds_url_from_parts(self, sample_search_item):
        del sample_search_item["item_url"]

        notice = Notice.from_search_item(sample_search_item)

        assert notice.url == "https://pncp.gov.br/app/editais/00394460000141/2024/123"

    def test_from_compra(self, sample_compra):
        sample_compra["itens"] = [{"numeroItem": 1, "descricao": "Caneta"}]

        notice = Notice.from_compra(sample_compra)

        assert notice.id == "00394460000141-1-000123/2024"
        assert notice.description == "Entrega parcelada conforme termo de referência."
        assert notice.org_cnpj == "00394460000141"
        assert notice.municipality == "Brasília"
        assert notice.modality == "Pregão - Eletrônico"
        assert notice.extra["itens"][0]["descricao"] == "Caneta"
        assert notice.extra["link_sistema_origem"] == "https://www.gov.br/compras/edital/123"

    def test_missing_value_is_none(self, sample_compra):
        sample_compra["valorTotalEstimado"] = None

        assert Notice.from_compra(sample_compra).value is None

    def test_dict_round_trip(self, sample_compra):
        notice = Notice.from_compra(sample_compra)

        assert Notice.from_dict(notice.to_dict()) == notice

    def test_text_joins_title_and_description(self):
        notice = Notice(title="Obra", description="Reforma urgente")

        assert notice.text == "Obra\nReforma urgente"

    @pytest.mark.parametrize("delta,expected", [
        (timedelta(days=2, hours=-1), 2),
        (timedelta(hours=1), 1),
        (timedelta(hours=-1), 0),
        (timedelta(days=-3, hours=-1), -3),
    ])
    def test_days_until_deadline_rounds_up(self, fixed_now, delta, expected):
        notice = Notice(deadline=fixed_now + delta)

        assert notice.days_until_deadline(fixed_now) == expected

    def test_days_until_deadline_without_deadline(self, fixed_now):
        assert Notice().days_until_deadline(fixed_now) is None
