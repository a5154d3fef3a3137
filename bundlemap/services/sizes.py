import concurrent.futures
import gzip
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from bundlemap.config import ENTRY_MODULES_NAME, GZIP_COMPRESSION_LEVEL, SOURCE_READ_WORKERS
from bundlemap.models import StatsModule
from bundlemap.services.resolver import Placeholder, Resolved, ResolvedChunk
from bundlemap.services.sources import SourceProvider

logger = logging.getLogger(__name__)

# (chunk position, module position path)
SourceKey = Tuple[int, Tuple[int, ...]]


@dataclass(frozen=True)
class SizeTriplet:
    stat_size: int
    parsed_size: Optional[int] = None
    gzip_size: Optional[int] = None


@dataclass(frozen=True)
class SizedModule:
    module: StatsModule
    sizes: SizeTriplet
    members: Tuple["SizedModule", ...] = ()


@dataclass(frozen=True)
class SizedPlaceholder:
    placeholder: Placeholder
    sizes: SizeTriplet


SizedEntry = Union[SizedModule, SizedPlaceholder]


@dataclass(frozen=True)
class SizedChunk:
    label: str
    entries: Tuple[SizedEntry, ...]


def sum_optional(values: Iterable[Optional[int]]) -> Optional[int]:
    """Sum the present values; ``None`` only when every value is absent."""
    total: Optional[int] = None
    for value in values:
        if value is None:
            continue
        total = value if total is None else total + value
    return total


def add_sizes(a: SizeTriplet, b: SizeTriplet) -> SizeTriplet:
    return SizeTriplet(
        stat_size=a.stat_size + b.stat_size,
        parsed_size=sum_optional((a.parsed_size, b.parsed_size)),
        gzip_size=sum_optional((a.gzip_size, b.gzip_size)),
    )


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def gzip_size(text: str) -> int:
    data = text.encode("utf-8")
    return len(gzip.compress(data, compresslevel=GZIP_COMPRESSION_LEVEL, mtime=0))


def declared_size(module: StatsModule) -> int:
    if module.size is not None:
        return module.size
    # The resolver only lets modules through with a size or a source.
    return byte_length(module.source or "")


def measure(module: StatsModule, source: Optional[str]) -> SizeTriplet:
    if source is None:
        return SizeTriplet(declared_size(module))
    return SizeTriplet(declared_size(module), byte_length(source), gzip_size(source))


def _iter_modules(
    resolved: Resolved, path: Tuple[int, ...]
) -> Iterator[Tuple[Tuple[int, ...], StatsModule]]:
    yield path, resolved.module
    for i, member in enumerate(resolved.members):
        yield from _iter_modules(member, path + (i,))


def collect_sources(
    chunks: Sequence[ResolvedChunk],
    provider: SourceProvider,
    max_workers: int = SOURCE_READ_WORKERS,
) -> Dict[SourceKey, str]:
    """
    Fetch the emitted source of every resolved module, concurrently.

    Results come back in completion order and are merged by key, so the
    caller sees the same mapping whatever order the reads finish in. A read
    that raises only costs that module its parsed/gzip sizes.
    """
    jobs: List[Tuple[SourceKey, StatsModule, str]] = []
    for chunk_pos, chunk in enumerate(chunks):
        for entry_pos, entry in enumerate(chunk.entries):
            if not isinstance(entry, Resolved):
                continue
            for path, module in _iter_modules(entry, (entry_pos,)):
                jobs.append(((chunk_pos, path), module, chunk.label))

    sources: Dict[SourceKey, str] = {}
    if not jobs:
        return sources

    with concurrent.futures.ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        future_to_job = {
            executor.submit(provider.get_module_source, module, asset_name): (key, module, asset_name)
            for key, module, asset_name in jobs
        }
        for future in concurrent.futures.as_completed(future_to_job):
            key, module, asset_name = future_to_job[future]
            try:
                source = future.result()
            except Exception as exc:
                logger.warning(
                    "Couldn't read source of %s in %s: %s",
                    module.display_name,
                    asset_name,
                    exc,
                )
                continue
            if source is not None:
                sources[key] = source

    return sources


def _size_resolved(
    resolved: Resolved,
    key_prefix: int,
    path: Tuple[int, ...],
    sources: Dict[SourceKey, str],
) -> SizedModule:
    members = tuple(
        _size_resolved(member, key_prefix, path + (i,), sources)
        for i, member in enumerate(resolved.members)
    )
    source = sources.get((key_prefix, path))
    return SizedModule(resolved.module, measure(resolved.module, source), members)


def _attach_entry_sources(
    entries: List[SizedEntry], runtime_source: Optional[str]
) -> List[SizedEntry]:
    """
    Give the bundle's runtime code to the entry modules it really belongs to.

    webpack 5 inlines entry modules into the runtime scope, so the bundle
    parser can't find them as separate functions. One such entry receives
    the runtime source. Several are grouped under a synthetic concatenated
    module placed first.
    """
    if runtime_source is None:
        return entries

    unparsed = [
        entry
        for entry in entries
        if isinstance(entry, SizedModule)
        and entry.module.is_entry
        and entry.sizes.parsed_size is None
    ]
    if not unparsed:
        return entries

    if len(unparsed) == 1:
        only = unparsed[0]
        sized = SizedModule(only.module, measure(only.module, runtime_source), only.members)
        return [sized if entry is only else entry for entry in entries]

    synthetic = StatsModule(
        identifier=ENTRY_MODULES_NAME,
        name=ENTRY_MODULES_NAME,
        size=sum(entry.sizes.stat_size for entry in unparsed),
        modules=[],
    )
    umbrella = SizedModule(synthetic, measure(synthetic, runtime_source), tuple(unparsed))
    rest = [entry for entry in entries if not any(entry is u for u in unparsed)]
    return [umbrella] + rest


def size_chunks(
    chunks: Sequence[ResolvedChunk],
    provider: Optional[SourceProvider] = None,
    max_workers: int = SOURCE_READ_WORKERS,
) -> List[SizedChunk]:
    """Compute stat/parsed/gzip sizes for every module of every chunk."""
    sources = collect_sources(chunks, provider, max_workers) if provider is not None else {}
    get_runtime_source = getattr(provider, "get_runtime_source", None)

    sized_chunks: List[SizedChunk] = []
    for chunk_pos, chunk in enumerate(chunks):
        entries: List[SizedEntry] = []
        for entry_pos, entry in enumerate(chunk.entries):
            if isinstance(entry, Placeholder):
                entries.append(SizedPlaceholder(entry, SizeTriplet(entry.stat_size)))
            else:
                entries.append(_size_resolved(entry, chunk_pos, (entry_pos,), sources))

        if get_runtime_source is not None:
            entries = _attach_entry_sources(entries, get_runtime_source(chunk.label))

        sized_chunks.append(SizedChunk(chunk.label, tuple(entries)))

    return sized_chunks
