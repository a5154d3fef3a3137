"""
Work out which modules end up in which emitted file.

Every record is validated on its own and resolves to one of three variants:

- ``Resolved``: a valid module (with its concatenated members resolved too);
- ``Placeholder``: stands in for modules that a chunk references but that are
  missing from the payload, carrying only the size the chunk declared;
- ``SkippedMalformed``: a record with the wrong shape. It is logged and left
  out; its siblings are unaffected.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from pathspec import PathSpec
from pydantic import ValidationError

from bundlemap.config import FILENAME_EXTENSIONS, FILENAME_QUERY
from bundlemap.models import CompilationResult, StatsAsset, StatsChunk, StatsModule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolved:
    module: StatsModule
    members: Tuple["Resolved", ...] = ()


@dataclass(frozen=True)
class Placeholder:
    label: str
    stat_size: int
    references: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SkippedMalformed:
    reason: str
    record: Any = None


Resolution = Union[Resolved, Placeholder, SkippedMalformed]


@dataclass(frozen=True)
class EmittedUnit:
    """One emitted JavaScript file and the chunks it was generated from."""

    label: str
    chunk_keys: Tuple[str, ...]


@dataclass(frozen=True)
class ResolvedChunk:
    label: str
    compilation_index: int
    entries: Tuple[Union[Resolved, Placeholder], ...]
    skipped: Tuple[SkippedMalformed, ...] = ()

    @property
    def modules(self) -> List[StatsModule]:
        return [entry.module for entry in self.entries if isinstance(entry, Resolved)]


def _is_reference(record: Any) -> bool:
    # bool is an int subclass but never a module id
    return isinstance(record, (int, str)) and not isinstance(record, bool)


def _describe_error(error: ValidationError) -> str:
    first = error.errors()[0]
    where = ".".join(str(p) for p in first.get("loc", ())) or "record"
    return f"{where}: {first.get('msg')}"


def resolve_module(record: Any) -> Union[Resolved, SkippedMalformed]:
    """Validate one module record and, recursively, its concatenated members."""
    try:
        module = StatsModule.model_validate(record)
    except ValidationError as e:
        return SkippedMalformed(_describe_error(e), record)

    members: List[Resolved] = []
    for raw_member in module.modules or ():
        member = resolve_module(raw_member)
        if isinstance(member, SkippedMalformed):
            logger.warning(
                "Skipping malformed member of concatenated module %s: %s",
                module.display_name,
                member.reason,
            )
            continue
        members.append(member)

    return Resolved(module, tuple(members))


def _parse_records(model, raw_records: Iterable[Any], kind: str) -> List[Any]:
    parsed = []
    for raw in raw_records:
        try:
            parsed.append(model.model_validate(raw))
        except ValidationError as e:
            logger.warning("Skipping malformed %s record: %s", kind, _describe_error(e))
    return parsed


def _parse_chunk(raw: Any) -> Optional[StatsChunk]:
    """Validate a chunk record, dropping only the fields that are malformed."""
    try:
        return StatsChunk.model_validate(raw)
    except ValidationError as e:
        error = e

    bad_fields = {err["loc"][0] for err in error.errors() if err.get("loc")}
    if not isinstance(raw, Mapping) or not bad_fields or "id" in bad_fields:
        logger.warning("Skipping malformed chunk record: %s", _describe_error(error))
        return None

    chunk = StatsChunk.model_validate({k: v for k, v in raw.items() if k not in bad_fields})
    logger.warning(
        "Ignoring malformed %s of chunk %s: %s",
        ", ".join(sorted(str(f) for f in bad_fields)),
        chunk.key,
        _describe_error(error),
    )
    return chunk


def _parse_chunks(raw_records: Iterable[Any]) -> List[StatsChunk]:
    return [chunk for chunk in map(_parse_chunk, raw_records) if chunk is not None]


def _clean_asset_name(name: str) -> str:
    # webpack supports `[name].js?[hash]` filenames
    return FILENAME_QUERY.sub("", name)


def emitted_units(compilation: CompilationResult) -> List[EmittedUnit]:
    """
    List the JavaScript files a compilation emitted, in payload order.

    Assets are the primary source. Compilations without any asset records fall
    back to the ``files`` of their chunks.
    """
    units: List[EmittedUnit] = []
    seen: Set[str] = set()

    if compilation.assets:
        for asset in _parse_records(StatsAsset, compilation.assets, "asset"):
            if asset.type is not None and asset.type != "asset":
                continue
            name = _clean_asset_name(asset.name)
            if not FILENAME_EXTENSIONS.search(name) or not asset.chunks or name in seen:
                continue
            seen.add(name)
            units.append(EmittedUnit(name, tuple(str(c) for c in asset.chunks)))
        return units

    for chunk in _parse_chunks(compilation.chunks):
        for file_name in chunk.files:
            name = _clean_asset_name(file_name)
            if not FILENAME_EXTENSIONS.search(name) or name in seen:
                continue
            seen.add(name)
            units.append(EmittedUnit(name, (chunk.key,)))
    return units


class _CompilationIndex:
    """Lookup tables for one compilation, built once per resolution."""

    def __init__(self, compilation: CompilationResult):
        self.compilation = compilation
        self.chunks: Dict[str, StatsChunk] = {}
        for chunk in _parse_chunks(compilation.chunks):
            self.chunks.setdefault(chunk.key, chunk)

        self.flat: List[Union[Resolved, SkippedMalformed]] = [
            resolve_module(raw) for raw in compilation.modules
        ]
        self.by_id: Dict[str, Resolved] = {}
        self.flat_chunk_keys: Set[str] = set()
        for item in self.flat:
            if isinstance(item, Resolved):
                if item.module.key is not None:
                    self.by_id.setdefault(item.module.key, item)
                self.flat_chunk_keys.update(item.module.chunk_keys())

    def knows_chunk(self, key: str) -> bool:
        return key in self.chunks or key in self.flat_chunk_keys


class _UnitCollector:
    def __init__(self, label: str):
        self.label = label
        self.entries: List[Union[Resolved, Placeholder]] = []
        self.skipped: List[SkippedMalformed] = []
        self._seen_ids: Set[str] = set()

    def add(self, item: Union[Resolved, SkippedMalformed]) -> Optional[Resolved]:
        if isinstance(item, SkippedMalformed):
            logger.warning("Skipping malformed module record in %s: %s", self.label, item.reason)
            self.skipped.append(item)
            return None
        key = item.module.key
        if key is not None:
            if key in self._seen_ids:
                return None
            self._seen_ids.add(key)
        self.entries.append(item)
        return item

    @property
    def resolved_count(self) -> int:
        return sum(1 for entry in self.entries if isinstance(entry, Resolved))


def _resolve_unit(index: _CompilationIndex, unit: EmittedUnit) -> ResolvedChunk:
    collector = _UnitCollector(unit.label)
    unit_keys = set(unit.chunk_keys)

    # Modules nested inside chunk records.
    for chunk_key in unit.chunk_keys:
        chunk = index.chunks.get(chunk_key)
        if chunk is None or chunk.modules is None:
            continue

        missing: List[str] = []
        resolved_size = 0
        for raw in chunk.modules:
            if _is_reference(raw):
                target = index.by_id.get(str(raw))
                if target is None:
                    missing.append(str(raw))
                    continue
                item: Union[Resolved, SkippedMalformed] = target
            else:
                item = resolve_module(raw)
            added = collector.add(item)
            if added is not None and added.module.size is not None:
                resolved_size += added.module.size

        if missing:
            logger.info(
                "Chunk %s of %s references unknown modules: %s",
                chunk.key,
                unit.label,
                ", ".join(missing),
            )
            if chunk.size:
                remainder = max(chunk.size - resolved_size, 0)
                if remainder:
                    collector.entries.append(
                        Placeholder(
                            label=f"(missing modules: {', '.join(missing)})",
                            stat_size=remainder,
                            references=tuple(missing),
                        )
                    )

    # Modules from the flat list that declare membership in the unit's chunks.
    for item in index.flat:
        if isinstance(item, SkippedMalformed):
            continue
        if unit_keys.intersection(item.module.chunk_keys()):
            collector.add(item)

    # Missing chunks declare no size; the file is still reported, empty.
    unknown = [key for key in unit.chunk_keys if not index.knows_chunk(key)]
    if unknown and not collector.resolved_count:
        logger.info("%s references unknown chunks: %s", unit.label, ", ".join(unknown))

    return ResolvedChunk(
        label=unit.label,
        compilation_index=index.compilation.index,
        entries=tuple(collector.entries),
        skipped=tuple(collector.skipped),
    )


def _child_unit(child: CompilationResult, label: str) -> Optional[EmittedUnit]:
    for unit in emitted_units(child):
        if unit.label == label:
            return unit
    # The child may only list the file under assetsByChunkName; take every chunk.
    chunk_keys = tuple(chunk.key for chunk in _parse_chunks(child.chunks))
    return EmittedUnit(label, chunk_keys) if chunk_keys else None


def _find_child_owner(
    label: str, children: Sequence[CompilationResult]
) -> Optional[CompilationResult]:
    for child in children:
        names = {_clean_asset_name(name) for name in child.emitted_file_names()}
        if label in names:
            return child
    return None


def resolve_compilation(
    compilation: CompilationResult,
    children: Sequence[CompilationResult] = (),
    exclude: Optional[PathSpec] = None,
) -> List[ResolvedChunk]:
    """
    Resolve the member modules of every file emitted by ``compilation``.

    ``children`` are the compilation's child compilations (worker bundles and
    the like). They are consulted only for files whose chunks this
    compilation doesn't describe itself.
    """
    index = _CompilationIndex(compilation)
    child_indexes: Dict[int, _CompilationIndex] = {}
    resolved: List[ResolvedChunk] = []

    for unit in emitted_units(compilation):
        if exclude is not None and exclude.match_file(unit.label):
            logger.debug("Excluding %s", unit.label)
            continue

        target_index, target_unit = index, unit
        if children and not any(index.knows_chunk(key) for key in unit.chunk_keys):
            owner = _find_child_owner(unit.label, children)
            child_unit = _child_unit(owner, unit.label) if owner is not None else None
            if child_unit is not None:
                if owner.index not in child_indexes:
                    child_indexes[owner.index] = _CompilationIndex(owner)
                target_index = child_indexes[owner.index]
                target_unit = EmittedUnit(unit.label, child_unit.chunk_keys)

        resolved.append(_resolve_unit(target_index, target_unit))

    return resolved
