import json

from visual_planner.llm import repair


def test_strip_fences():
    assert repair.strip_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'
    assert repair.strip_fences("```\n{}\n```  ") == "{}"
    assert repair.strip_fences('  {"a": 1}  ') == '{"a": 1}'


def test_trailing_commas_removed():
    assert repair.repair_json('{"a": [1, 2,], }') == '{"a": [1, 2]}'


def test_stray_dash_before_closing_bracket_removed():
    assert repair.repair_json('{"a": "x" -}') == '{"a": "x" }'
    assert repair.repair_json('["x" - ]') == '["x" ]'


def test_truncated_array_is_closed_after_last_object():
    raw = '[{"index": 0, "mediaType": "BROLL"}, {"index": 1, "mediaType": "IMA'
    repaired = repair.repair_json(raw)
    assert repaired == '[{"index": 0, "mediaType": "BROLL"}]'
    assert json.loads(repaired) == [{"index": 0, "mediaType": "BROLL"}]


def test_clean_json_response_combines_steps():
    raw = '```json\n[\n  {"index": 0, "prompt": "dunes",},\n  {"index": 1, "prompt": "sea"},\n]\n```'
    assert json.loads(repair.clean_json_response(raw)) == [
        {"index": 0, "prompt": "dunes"},
        {"index": 1, "prompt": "sea"},
    ]


def test_load_json_returns_none_for_prose():
    assert repair.load_json("Sure! Here are some keywords.") is None
    assert repair.load_json("") is None


def test_extract_phrases_prefers_quoted_substrings():
    text = 'Try "desert sand dunes", "ok", "starry night sky" and more'
    assert repair.extract_phrases(text) == ["desert sand dunes", "starry night sky"]


def test_extract_phrases_splits_and_caps_at_six():
    text = "ocean waves, sunset clouds; mountain landscape\nforest canopy, a, city skyline, river delta, old bridge"
    assert repair.extract_phrases(text) == [
        "ocean waves",
        "sunset clouds",
        "mountain landscape",
        "forest canopy",
        "city skyline",
        "river delta",
    ]


def test_extract_phrases_drops_overlong_fragments():
    long_fragment = "x" * 60
    assert repair.extract_phrases(f"{long_fragment}, [storm clouds]") == ["storm clouds"]


def test_decode_reports_stage():
    def strict(data):
        return data if isinstance(data, dict) and "layers" in data else None

    def flat(data):
        return {"flat": data} if isinstance(data, list) else None

    def fallback(text):
        return {"text": repair.extract_phrases(text)}

    assert repair.decode('{"layers": 1}', strict, flat, fallback).stage == "strict"

    result = repair.decode('["a", "b",]', strict, flat, fallback)
    assert result.stage == "flat"
    assert result.value == {"flat": ["a", "b"]}

    result = repair.decode("```\nocean waves, calm lake\n```", strict, flat, fallback)
    assert result.stage == "text"
    assert result.value == {"text": ["ocean waves", "calm lake"]}
