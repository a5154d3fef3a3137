import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

from bundlemap.config import STATS_STRUCTURE_KEYS
from bundlemap.errors import ParseError
from bundlemap.models import CompilationResult

logger = logging.getLogger(__name__)

EXPECTED_ENTRY = "an object with a 'chunks', 'modules' or 'assets' array"
ROOT_LOCATION = "root"


@dataclass
class NormalizedStats:
    compilations: List[CompilationResult] = field(default_factory=list)
    skipped: List[ParseError] = field(default_factory=list)


def load_stats(path: Union[str, Path]) -> Any:
    """Read a stats file from disk and decode it as JSON."""
    stats_path = Path(path)
    try:
        with stats_path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except OSError as e:
        raise ParseError(
            f"Couldn't read stats file {stats_path}: {e.strerror or e}",
            expected="a readable JSON file",
        ) from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(
            f"Stats file {stats_path} is not valid JSON: {e}",
            expected="a JSON document",
        ) from e


def _child_location(location: str, i: int) -> str:
    if location == ROOT_LOCATION:
        return f"children[{i}]"
    return f"{location}.children[{i}]"


def _own_structure(entry: Mapping) -> bool:
    return any(entry.get(key) for key in STATS_STRUCTURE_KEYS)


def _is_multi_config(payload: Mapping) -> bool:
    # `webpack --json` with an array config (or some plugins) puts every
    # compilation in `children` and leaves the root empty.
    children = payload.get("children")
    return isinstance(children, list) and bool(children) and not _own_structure(payload)


def _validate_entry(entry: Any, location: str) -> Mapping:
    if not isinstance(entry, Mapping):
        raise ParseError(
            f"Stats entry {location} is a {type(entry).__name__}, not an object",
            entry=location,
            expected=EXPECTED_ENTRY,
        )

    for key in STATS_STRUCTURE_KEYS:
        value = entry.get(key)
        if value is not None and not isinstance(value, list):
            raise ParseError(
                f"'{key}' of stats entry {location} must be an array",
                entry=location,
                expected=f"'{key}' to be an array",
            )

    # null counts as absent
    if not any(isinstance(entry.get(key), list) for key in STATS_STRUCTURE_KEYS):
        raise ParseError(
            f"Stats entry {location} has no chunks, modules or assets",
            entry=location,
            expected=EXPECTED_ENTRY,
        )

    return entry


class _Normalizer:
    def __init__(self) -> None:
        self.result = NormalizedStats()

    def add_entry(self, entry: Any, location: str, family: int, fatal: bool) -> None:
        try:
            self._expand(entry, location, family=family, parent=None)
        except ParseError as e:
            if fatal:
                raise
            logger.warning("Skipping stats entry %s: %s", location, e)
            self.result.skipped.append(e)

    def _expand(
        self,
        entry: Any,
        location: str,
        family: int,
        parent: Optional[int],
    ) -> int:
        checked = _validate_entry(entry, location)

        index = len(self.result.compilations)
        # Reserve the slot so children land right after their parent.
        self.result.compilations.append(None)  # type: ignore[arg-type]

        child_indices: List[int] = []
        raw_children = checked.get("children")
        if isinstance(raw_children, list):
            for i, child in enumerate(raw_children):
                child_location = _child_location(location, i)
                try:
                    child_indices.append(
                        self._expand(child, child_location, family=family, parent=index)
                    )
                except ParseError as e:
                    logger.warning("Skipping child compilation %s: %s", child_location, e)
                    self.result.skipped.append(e)

        by_chunk_name = checked.get("assetsByChunkName")
        name = checked.get("name")
        self.result.compilations[index] = CompilationResult(
            index=index,
            family=family,
            name=name if isinstance(name, str) else None,
            parent=parent,
            children=tuple(child_indices),
            chunks=tuple(checked.get("chunks") or ()),
            modules=tuple(checked.get("modules") or ()),
            assets=tuple(checked.get("assets") or ()),
            assets_by_chunk_name=dict(by_chunk_name) if isinstance(by_chunk_name, Mapping) else {},
        )
        return index


def normalize_stats(payload: Any) -> NormalizedStats:
    """
    Turn any supported stats payload shape into an ordered list of compilations.

    Supported shapes:
    - a single compilation object (optionally with child compilations);
    - an object whose compilations all live in ``children``;
    - a top-level array of compilation objects.

    The last two are multi-entry payloads: a broken entry is skipped and
    reported in ``skipped``. A broken single-object payload, or a multi-entry
    payload where nothing survives, raises ParseError.
    """
    normalizer = _Normalizer()

    if isinstance(payload, list):
        entries = [(f"[{i}]", entry) for i, entry in enumerate(payload)]
    elif isinstance(payload, Mapping) and _is_multi_config(payload):
        entries = [(f"children[{i}]", entry) for i, entry in enumerate(payload["children"])]
    elif isinstance(payload, Mapping):
        normalizer.add_entry(payload, ROOT_LOCATION, family=0, fatal=True)
        return normalizer.result
    else:
        raise ParseError(
            f"Stats payload is a {type(payload).__name__}",
            expected="a JSON object or array",
        )

    if not entries:
        raise ParseError("Stats payload contains no compilations", expected=EXPECTED_ENTRY)

    for family, (location, entry) in enumerate(entries):
        normalizer.add_entry(entry, location, family=family, fatal=False)

    if not normalizer.result.compilations:
        raise normalizer.result.skipped[0]

    return normalizer.result
