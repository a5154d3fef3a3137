import json
import logging
from pathlib import Path

import pytest

from bundlemap.errors import ParseError
from bundlemap.services.analysis import analyze_stats, analyze_stats_file
from bundlemap.services.bundle_parser import parse_bundle_source
from bundlemap.services.sizes import byte_length
from bundlemap.services.sources import BundleSourceProvider, StatsSourceProvider

WEBPACK4_BUNDLE = (
    "!function(e){var t={};function n(r){return e[r].call(t,n)}n(0)}"
    '([function(e,t,n){n(1)},function(e,t){console.log("hi")}]);'
)

WEBPACK5_BUNDLE = """(() => {
  var __webpack_modules__ = ({
    "./src/a.js": ((module) => { module.exports = "a"; })
  });
  function __webpack_require__(id) { return __webpack_modules__[id](id); }
  console.log(__webpack_require__("./src/a.js"));
})();
"""


def _walk(items):
    for item in items:
        yield item
        yield from _walk(item.get("groups", []))


def _assert_group_sums(items) -> None:
    for item in _walk(items):
        if item.get("concatenated") or "groups" not in item:
            continue
        children = item["groups"]
        assert item["statSize"] == sum(c["statSize"] for c in children), item["label"]
        for key in ("parsedSize", "gzipSize"):
            present = [c[key] for c in children if key in c]
            if present:
                assert item[key] == sum(present), item["label"]
            else:
                assert key not in item, item["label"]


def test_single_chunk_single_module(single_chunk_stats) -> None:
    report = analyze_stats(single_chunk_stats)

    assert report.to_chart_data() == [
        {
            "label": "bundle.js",
            "isAsset": True,
            "statSize": 141,
            "groups": [
                {
                    "label": "src",
                    "path": "./src",
                    "statSize": 141,
                    "groups": [
                        {"label": "index.js", "id": 0, "path": "./src/index.js", "statSize": 141},
                    ],
                }
            ],
        }
    ]


def test_array_config_reports_every_config_in_order(array_config_stats) -> None:
    report = analyze_stats(array_config_stats)

    assert [root.label for root in report.chart_data] == ["config-1-main.js", "config-2-main.js"]
    assert [root.stat_size for root in report.chart_data] == [30, 40]


def test_children_array_shape_matches_array_shape(array_config_stats) -> None:
    from_array = analyze_stats(array_config_stats).to_chart_data()
    from_children = analyze_stats({"children": array_config_stats}).to_chart_data()

    assert from_children == from_array


def test_same_file_in_two_configs_is_reported_twice(array_config_stats) -> None:
    array_config_stats[1]["assets"][0]["name"] = "config-1-main.js"

    report = analyze_stats(array_config_stats)

    assert [root.label for root in report.chart_data] == ["config-1-main.js", "config-1-main.js"]


def test_missing_module_is_reported_as_placeholder() -> None:
    payload = {
        "assets": [{"name": "bundle.js", "size": 30, "chunks": [0]}],
        "chunks": [{"id": 0, "size": 24, "modules": [7]}],
    }

    (root,) = analyze_stats(payload).to_chart_data()

    assert root["statSize"] == 24
    assert "parsedSize" not in root
    assert root["groups"][0]["statSize"] == 24


def test_worker_child_compilation_becomes_its_own_root(worker_stats) -> None:
    report = analyze_stats(worker_stats)

    assert [root.label for root in report.chart_data] == ["bundle.js", "bundle.worker.js"]
    worker = report.chart_data[1]
    assert worker.stat_size == 64


def test_worker_resolved_through_parent_is_not_duplicated(worker_stats) -> None:
    worker_stats["assets"][1]["chunks"] = [7]

    report = analyze_stats(worker_stats)

    assert [root.label for root in report.chart_data] == ["bundle.js", "bundle.worker.js"]
    assert report.chart_data[1].stat_size == 64


def test_shared_module_is_counted_in_every_chunk(module_record) -> None:
    payload = {
        "assets": [
            {"name": "a.js", "size": 1, "chunks": [0]},
            {"name": "b.js", "size": 1, "chunks": [1]},
        ],
        "chunks": [{"id": 0}, {"id": 1}],
        "modules": [module_record(0, "./src/shared.js", 25, chunks=[0, 1])],
    }

    report = analyze_stats(payload)

    assert [root.stat_size for root in report.chart_data] == [25, 25]


def test_malformed_module_does_not_affect_siblings(module_record) -> None:
    payload = {
        "assets": [{"name": "main.js", "size": 100, "chunks": [0]}],
        "chunks": [{"id": 0}],
        "modules": [
            module_record(0, "./src/a.js", 10),
            {"id": 1, "name": "./src/b.js", "size": "twenty", "chunks": [0]},
            module_record(2, "./src/c.js", 30),
        ],
    }

    (root,) = analyze_stats(payload).chart_data

    assert root.stat_size == 40
    (src,) = root.children
    assert [c.label for c in src.children] == ["a.js", "c.js"]


def test_chunk_with_only_malformed_modules_reports_zero(single_chunk_stats) -> None:
    single_chunk_stats["chunks"] = [{"id": 0, "modules": [{"id": 1, "name": "./src/a.js", "size": "big"}]}]
    single_chunk_stats["modules"] = []

    report = analyze_stats(single_chunk_stats).to_chart_data()

    (root,) = report
    assert root["label"] == "bundle.js"
    assert root["statSize"] == 0
    assert root["groups"] == []
    _assert_group_sums(report)


def test_chunk_with_empty_module_list_ignores_asset_size() -> None:
    payload = {
        "assets": [{"name": "main.js", "size": 512, "chunks": [0]}],
        "chunks": [{"id": 0, "modules": []}],
    }

    report = analyze_stats(payload).to_chart_data()

    assert report[0]["statSize"] == 0
    _assert_group_sums(report)


def test_file_with_unknown_chunks_is_reported_empty() -> None:
    payload = {
        "assets": [{"name": "lost.js", "size": 24, "chunks": [5]}],
        "chunks": [],
    }

    (root,) = analyze_stats(payload).to_chart_data()

    assert root == {"label": "lost.js", "isAsset": True, "statSize": 0, "groups": []}


def test_broken_config_is_skipped_and_reported(array_config_stats) -> None:
    report = analyze_stats([array_config_stats[0], {"hello": "world"}])

    assert [root.label for root in report.chart_data] == ["config-1-main.js"]
    assert [e.entry for e in report.skipped] == ["[1]"]


def test_unparseable_payload_raises() -> None:
    with pytest.raises(ParseError):
        analyze_stats({"hello": "world"})


def test_stat_size_from_source_counts_utf8_bytes() -> None:
    payload = {
        "assets": [{"name": "main.js", "size": 1, "chunks": [0]}],
        "chunks": [{"id": 0}],
        "modules": [{"id": 0, "name": "./src/é.js", "source": "ééé", "chunks": [0]}],
    }

    (root,) = analyze_stats(payload, StatsSourceProvider()).chart_data

    assert root.stat_size == 6
    assert root.parsed_size == 6


def test_analysis_is_repeatable(module_record) -> None:
    payload = {
        "assets": [{"name": "main.js", "size": 1, "chunks": [0]}],
        "chunks": [{"id": 0}],
        "modules": [
            module_record(i, f"./src/dir{i % 3}/m{i}.js", 10 + i, source=f"m({i});" * (i + 1))
            for i in range(30)
        ],
    }

    first = analyze_stats(payload, StatsSourceProvider(), max_workers=8).to_chart_data()
    second = analyze_stats(payload, StatsSourceProvider(), max_workers=2).to_chart_data()

    assert json.dumps(first) == json.dumps(second)
    _assert_group_sums(first)


def test_concatenated_member_sizes_do_not_change_umbrella(module_record) -> None:
    def payload(member_size):
        return {
            "assets": [{"name": "main.js", "size": 1, "chunks": [0]}],
            "chunks": [{"id": 0}],
            "modules": [
                module_record(
                    0,
                    "./src/index.js + 1 modules",
                    100,
                    modules=[{"name": "./src/util.js", "size": member_size}],
                )
            ],
        }

    small = analyze_stats(payload(10)).chart_data[0]
    large = analyze_stats(payload(90)).chart_data[0]

    assert small.stat_size == large.stat_size == 100


def test_exclude_patterns(worker_stats) -> None:
    report = analyze_stats(worker_stats, exclude=["*.worker.js"])

    assert [root.label for root in report.chart_data] == ["bundle.js"]


def test_bundle_sizes_are_measured_from_emitted_files(tmp_path: Path, module_record) -> None:
    (tmp_path / "bundle.js").write_text(WEBPACK4_BUNDLE, encoding="utf-8")
    stats = {
        "assets": [{"name": "bundle.js", "size": len(WEBPACK4_BUNDLE), "chunks": [0]}],
        "chunks": [{"id": 0}],
        "modules": [
            module_record(0, "./src/index.js", 40),
            module_record(1, "./src/hi.js", 50),
        ],
    }
    stats_path = tmp_path / "stats.json"
    stats_path.write_text(json.dumps(stats), encoding="utf-8")

    (root,) = analyze_stats_file(stats_path, bundle_dir=tmp_path).to_chart_data()

    leaves = {leaf["label"]: leaf for leaf in _walk([root]) if "groups" not in leaf}
    assert leaves["index.js"]["parsedSize"] == len("function(e,t,n){n(1)}")
    assert leaves["hi.js"]["parsedSize"] == len('function(e,t){console.log("hi")}')
    assert root["statSize"] == 90
    assert root["parsedSize"] == 53
    _assert_group_sums([root])


def test_webpack5_entry_module_gets_runtime_code(tmp_path: Path) -> None:
    (tmp_path / "main.js").write_text(WEBPACK5_BUNDLE, encoding="utf-8")
    payload = {
        "assets": [{"name": "main.js", "size": 200, "chunks": [0]}],
        "chunks": [{"id": 0}],
        "modules": [
            {"id": "./src/a.js", "name": "./src/a.js", "size": 30, "chunks": [0], "depth": 1},
            {"id": "./src/index.js", "name": "./src/index.js", "size": 60, "chunks": [0], "depth": 0},
        ],
    }

    (root,) = analyze_stats(payload, BundleSourceProvider(tmp_path)).chart_data

    (src,) = root.children
    index = next(c for c in src.children if c.label == "index.js")
    runtime = parse_bundle_source(WEBPACK5_BUNDLE).runtime_src
    assert index.parsed_size == byte_length(runtime)


def test_missing_bundles_only_report_stat_sizes(tmp_path: Path, single_chunk_stats, caplog) -> None:
    stats_path = tmp_path / "stats.json"
    stats_path.write_text(json.dumps(single_chunk_stats), encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        report = analyze_stats_file(stats_path, bundle_dir=tmp_path)

    assert report.chart_data[0].stat_size == 141
    assert report.chart_data[0].parsed_size is None
    assert "No bundles were parsed" in caplog.text
