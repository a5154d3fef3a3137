import html
import json
from datetime import datetime
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Optional, Sequence, Union

from bundlemap.config import REPORT_TITLE_PREFIX
from bundlemap.models import Node

STATIC_REPORT_TEMPLATE = Template(
    """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>$title</title>
  <style>
    body { font: 14px/1.4 sans-serif; margin: 1.5em; }
    details { margin-left: 1.2em; }
    summary { cursor: pointer; }
    .size { color: #666; margin-left: 0.6em; }
  </style>
</head>
<body>
  <h1>$title</h1>
  <div id="report"></div>
  <script>
    window.chartData = $chart_data;
  </script>
  <script>
    (function () {
      function kb(bytes) {
        return bytes === undefined ? "n/a" : (bytes / 1024).toFixed(2) + " KB";
      }
      function render(item) {
        var details = document.createElement("details");
        var summary = document.createElement("summary");
        summary.textContent = item.label;
        var sizes = document.createElement("span");
        sizes.className = "size";
        sizes.textContent = "stat " + kb(item.statSize) + ", parsed " + kb(item.parsedSize) +
          ", gzip " + kb(item.gzipSize);
        summary.appendChild(sizes);
        details.appendChild(summary);
        (item.groups || []).forEach(function (child) {
          details.appendChild(render(child));
        });
        return details;
      }
      var root = document.getElementById("report");
      window.chartData.forEach(function (item) {
        root.appendChild(render(item));
      });
    })();
  </script>
</body>
</html>
"""
)


def chart_data(nodes: Sequence[Node]) -> List[Dict[str, Any]]:
    return [node.to_chart_data() for node in nodes]


def chart_data_to_json(nodes: Sequence[Node], indent: Optional[int] = None) -> str:
    return json.dumps(chart_data(nodes), indent=indent, ensure_ascii=False)


def default_title(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{REPORT_TITLE_PREFIX} [{now.day} {now:%b %Y} at {now:%H:%M}]"


def render_static_report(nodes: Sequence[Node], title: Optional[str] = None) -> str:
    # "<" is escaped so module names can't close the script tag.
    data = chart_data_to_json(nodes).replace("<", "\\u003c")
    return STATIC_REPORT_TEMPLATE.substitute(
        title=html.escape(title or default_title()),
        chart_data=data,
    )


def write_json_report(nodes: Sequence[Node], report_path: Union[str, Path]) -> Path:
    path = Path(report_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(chart_data_to_json(nodes, indent=2))
    return path


def write_static_report(
    nodes: Sequence[Node],
    report_path: Union[str, Path],
    title: Optional[str] = None,
) -> Path:
    path = Path(report_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_static_report(nodes, title))
    return path
