import json

import pytest

from services.llm_json import (
    INCOMPLETE,
    MALFORMED,
    IncompleteJSONError,
    MalformedJSONError,
    decode_llm_json,
    find_json_span,
    repair_json_text,
)


REPORT = {
    "hook_frameworks": [{"framework": "Pregunta directa", "description": "Abre con una duda"}],
    "positioning_analysis": "Todos compiten por precio.",
    "market_sophistication_level": "Alto",
    "recommended_content_angles": [],
    "storytelling_structures": [{"structure": "Antes / después", "description": "Contraste"}],
}


@pytest.mark.parametrize(
    "value",
    [
        REPORT,
        {},
        [],
        [[1, [2, {"a": None}]], "texto", 3.5],
        "",
        "solo texto",
        0,
        -12.25,
        True,
        None,
    ],
)
def test_decodes_any_serialized_json_value(value):
    assert decode_llm_json(json.dumps(value, ensure_ascii=False)) == value


def test_decodes_fenced_json_with_prose():
    text = "Claro, aquí está el análisis:\n```json\n" + json.dumps(REPORT) + "\n```\nEspero que ayude."
    assert decode_llm_json(text) == REPORT


def test_decodes_top_level_array():
    text = 'Result: [{"creator": "a", "views": 10}, {"creator": "b", "views": 5}] done'
    assert decode_llm_json(text) == [{"creator": "a", "views": 10}, {"creator": "b", "views": 5}]


def test_braces_inside_strings_do_not_close_the_value():
    text = 'noise {"title": "uses } and ] inside", "n": 1} trailing {'
    assert decode_llm_json(text) == {"title": "uses } and ] inside", "n": 1}


def test_repairs_trailing_commas_and_smart_quotes():
    text = "{“executive_summary”: “ok”, \"market_gaps\": [1, 2,],}"
    assert decode_llm_json(text) == {"executive_summary": "ok", "market_gaps": [1, 2]}


def test_truncated_output_is_incomplete():
    full = json.dumps(REPORT)
    with pytest.raises(IncompleteJSONError) as exc_info:
        decode_llm_json(full[: len(full) // 2])
    assert exc_info.value.kind == INCOMPLETE


def test_empty_output_is_incomplete():
    with pytest.raises(IncompleteJSONError):
        decode_llm_json("   ")


def test_output_without_json_is_malformed():
    with pytest.raises(MalformedJSONError) as exc_info:
        decode_llm_json("I cannot help with that request.")
    assert exc_info.value.kind == MALFORMED


def test_balanced_but_invalid_output_is_malformed():
    with pytest.raises(MalformedJSONError) as exc_info:
        decode_llm_json("{'executive_summary': 'single quotes', value: nope}")
    assert str(exc_info.value).startswith("JSON output is malformed")
    assert exc_info.value.raw_text


def test_find_json_span_reports_unbalanced_value():
    assert find_json_span('{"a": [1, 2') is None
    assert find_json_span('xx {"a": 1} yy') == (3, 11)


def test_repair_json_text_leaves_valid_json_alone():
    text = '{"a": [1, 2], "b": "x, y"}'
    assert repair_json_text(text) == text


def test_raw_newlines_inside_strings_are_tolerated():
    text = '{"video_analysis": "• Gancho: pregunta directa\n• Cierre: llamada a la acción",\n "views": 10}'
    assert decode_llm_json(text) == {
        "video_analysis": "• Gancho: pregunta directa\n• Cierre: llamada a la acción",
        "views": 10,
    }
