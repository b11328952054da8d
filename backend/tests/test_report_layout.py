from __future__ import annotations

from config import Settings
from layout.report_layout import LIST_FIELDS, estimate_pages, prepare_report_data


def test_list_fields_are_always_lists():
    data = prepare_report_data({"modulos": None, "idiomas": "inglés", "referencias": [{"nombre": "A"}]}, Settings())
    for name in LIST_FIELDS:
        assert isinstance(data[name], list)
    assert data["idiomas"] == []
    assert data["referencias"] == [{"nombre": "A"}]


def test_long_qualitative_text_suggests_landscape():
    data = {"informe": {"motivoPresentacion": "a" * 3000, "valoracion": "b" * 2500, "otro": "c" * 9000}}
    layout = prepare_report_data(data, Settings())["__layout"]
    assert layout["totalChars"] == 5500
    assert layout["totalItems"] == 0
    assert layout["isLandscape"] is True
    assert layout["estimatedPages"] == 2


def test_many_items_suggest_landscape():
    data = {"competencias": [{"nombre": f"c{i}"} for i in range(51)]}
    layout = prepare_report_data(data, Settings())["__layout"]
    assert layout["totalItems"] == 51
    assert layout["isLandscape"] is True
    assert layout["estimatedPages"] == 2


def test_small_report_stays_portrait():
    data = {"informe": {"potencial": "Alto"}, "formaciones": [{}, {}]}
    layout = prepare_report_data(data, Settings())["__layout"]
    assert layout == {
        "isLandscape": False,
        "totalChars": 4,
        "totalItems": 2,
        "estimatedPages": 1,
        "fase2": layout["fase2"],
    }


def test_existing_calculations_are_preserved():
    calculations = {"performed": True, "pageCount": 3}
    data = prepare_report_data({"__layout": {"calculations": calculations}}, Settings())
    assert data["__layout"]["calculations"] is calculations


def test_non_dict_informe_counts_nothing():
    layout = prepare_report_data({"informe": "texto"}, Settings())["__layout"]
    assert layout["totalChars"] == 0


def test_fase2_flags_follow_settings():
    settings = Settings(phantom_enabled=False, diagnostics_enabled=True)
    fase2 = prepare_report_data({}, settings)["__layout"]["fase2"]
    assert fase2["enabled"] is True
    assert fase2["calculationRequested"] is False
    assert fase2["phantomRenderEnabled"] is False
    assert fase2["diagnosticsEnabled"] is True
    assert fase2["timestamp"]


def test_estimate_pages():
    assert estimate_pages(0, 0) == 0
    assert estimate_pages(3000, 0) == 1
    assert estimate_pages(3001, 0) == 2
    assert estimate_pages(0, 30) == 1
