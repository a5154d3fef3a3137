import logging
import re
from typing import Dict, Pattern, Tuple

# Emitted files that are reported. Query strings (`main.js?v=3`) are removed
# before matching.
FILENAME_EXTENSIONS: Pattern[str] = re.compile(r"\.(js|mjs|cjs)$", re.IGNORECASE)
FILENAME_QUERY: Pattern[str] = re.compile(r"\?.*$")

# Keys that make an object look like a compilation.
STATS_STRUCTURE_KEYS: Tuple[str, ...] = ("chunks", "modules", "assets")

MULTI_MODULE_PREFIX = "multi "
RUNTIME_MODULE_TYPE = "runtime"
CONCATENATED_SUFFIX = " (concatenated)"
ENTRY_MODULES_NAME = "./entry modules"

# gzip-size uses level 9; mtime is pinned so output bytes never change.
GZIP_COMPRESSION_LEVEL = 9

SOURCE_READ_WORKERS = 8

REPORT_MODES: Tuple[str, ...] = ("static", "json")
DEFAULT_REPORT_FILENAMES: Dict[str, str] = {
    "static": "report.html",
    "json": "report.json",
}
REPORT_TITLE_PREFIX = "bundlemap"

LOG_LEVELS: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "silent": logging.CRITICAL + 10,
}
