import json
from pathlib import Path

import pytest

from bundlemap.errors import ParseError
from bundlemap.services.normalizer import EXPECTED_ENTRY, load_stats, normalize_stats


def test_single_object_yields_one_compilation(single_chunk_stats) -> None:
    result = normalize_stats(single_chunk_stats)

    assert len(result.compilations) == 1
    compilation = result.compilations[0]
    assert compilation.index == 0
    assert compilation.family == 0
    assert compilation.parent is None
    assert len(compilation.modules) == 1
    assert result.skipped == []


def test_top_level_array_keeps_config_order(array_config_stats) -> None:
    result = normalize_stats(array_config_stats)

    assert [c.name for c in result.compilations] == ["config-1", "config-2"]
    assert [c.family for c in result.compilations] == [0, 1]


def test_children_array_is_treated_like_top_level_array(array_config_stats) -> None:
    """An object holding every compilation in `children` is a multi-config payload."""
    from_array = normalize_stats(array_config_stats)
    from_children = normalize_stats({"children": array_config_stats})

    assert [c.name for c in from_children.compilations] == [c.name for c in from_array.compilations]
    assert [c.assets for c in from_children.compilations] == [c.assets for c in from_array.compilations]
    assert [c.family for c in from_children.compilations] == [0, 1]


def test_child_compilations_follow_their_parent(worker_stats) -> None:
    result = normalize_stats(worker_stats)

    parent, child = result.compilations
    assert parent.children == (1,)
    assert child.parent == 0
    assert child.family == parent.family
    assert child.assets_by_chunk_name == {"main": "bundle.worker.js"}


def test_broken_entries_are_skipped_in_multi_entry_payload(array_config_stats) -> None:
    payload = [array_config_stats[0], "not a compilation", {"foo": 1}, array_config_stats[1]]

    result = normalize_stats(payload)

    assert [c.name for c in result.compilations] == ["config-1", "config-2"]
    assert [e.entry for e in result.skipped] == ["[1]", "[2]"]
    assert all(isinstance(e, ParseError) for e in result.skipped)
    # Surviving entries keep their position in the payload as family.
    assert [c.family for c in result.compilations] == [0, 3]


def test_broken_child_compilation_is_skipped(worker_stats) -> None:
    worker_stats["children"].append({"chunks": "nope"})

    result = normalize_stats(worker_stats)

    assert len(result.compilations) == 2
    assert len(result.skipped) == 1
    assert result.skipped[0].entry == "children[1]"
    assert result.compilations[0].children == (1,)


def test_invalid_single_payload_is_fatal() -> None:
    with pytest.raises(ParseError) as excinfo:
        normalize_stats({"version": "5.0.0"})

    assert excinfo.value.entry == "root"
    assert "chunks" in excinfo.value.expected


def test_non_array_structure_key_is_fatal() -> None:
    with pytest.raises(ParseError) as excinfo:
        normalize_stats({"assets": [], "chunks": {"0": {}}})

    assert excinfo.value.expected == "'chunks' to be an array"


def test_null_structure_keys_are_fatal() -> None:
    with pytest.raises(ParseError) as excinfo:
        normalize_stats({"chunks": None, "modules": None, "assets": None})

    assert excinfo.value.entry == "root"
    assert excinfo.value.expected == EXPECTED_ENTRY


def test_null_structure_keys_skip_entry_of_multi_entry_payload(array_config_stats) -> None:
    result = normalize_stats([array_config_stats[0], {"chunks": None, "assets": None}])

    assert [c.name for c in result.compilations] == ["config-1"]
    assert [e.entry for e in result.skipped] == ["[1]"]


def test_one_array_key_is_enough_next_to_nulls() -> None:
    result = normalize_stats({"chunks": None, "modules": [], "assets": None})

    assert len(result.compilations) == 1


def test_scalar_payload_is_fatal() -> None:
    with pytest.raises(ParseError):
        normalize_stats(42)


def test_multi_entry_payload_without_any_valid_entry_is_fatal() -> None:
    with pytest.raises(ParseError) as excinfo:
        normalize_stats([1, {"foo": "bar"}])

    assert excinfo.value.entry == "[0]"


def test_empty_array_is_fatal() -> None:
    with pytest.raises(ParseError):
        normalize_stats([])


def test_parse_error_message_names_entry_and_expectation() -> None:
    with pytest.raises(ParseError) as excinfo:
        normalize_stats("stats")

    assert "expected=" in str(excinfo.value)


def test_load_stats_reads_json(tmp_path: Path, single_chunk_stats) -> None:
    stats_file = tmp_path / "stats.json"
    stats_file.write_text(json.dumps(single_chunk_stats), encoding="utf-8")

    assert load_stats(stats_file) == single_chunk_stats


def test_load_stats_rejects_invalid_json(tmp_path: Path) -> None:
    stats_file = tmp_path / "stats.json"
    stats_file.write_text("{not json", encoding="utf-8")

    with pytest.raises(ParseError) as excinfo:
        load_stats(stats_file)

    assert "not valid JSON" in excinfo.value.message


def test_load_stats_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ParseError):
        load_stats(tmp_path / "missing.json")
