import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from pathspec import PathSpec

from bundlemap.config import SOURCE_READ_WORKERS
from bundlemap.errors import ParseError
from bundlemap.models import CompilationResult, Node
from bundlemap.services.normalizer import load_stats, normalize_stats
from bundlemap.services.resolver import resolve_compilation
from bundlemap.services.sizes import size_chunks
from bundlemap.services.sources import BundleSourceProvider, SourceProvider
from bundlemap.services.tree_builder import build_tree

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    chart_data: List[Node] = field(default_factory=list)
    # Entries of a multi-entry payload that couldn't be parsed.
    skipped: List[ParseError] = field(default_factory=list)

    def to_chart_data(self) -> List[Dict[str, Any]]:
        return [node.to_chart_data() for node in self.chart_data]


def compile_exclude(patterns: Sequence[str]) -> Optional[PathSpec]:
    if not patterns:
        return None
    return PathSpec.from_lines("gitwildmatch", patterns)


def analyze_compilation(
    compilation: CompilationResult,
    children: Sequence[CompilationResult] = (),
    source_provider: Optional[SourceProvider] = None,
    exclude: Optional[PathSpec] = None,
    max_workers: int = SOURCE_READ_WORKERS,
) -> List[Node]:
    """Resolve, size and build the trees of one compilation's emitted files."""
    resolved = resolve_compilation(compilation, children, exclude=exclude)
    sized = size_chunks(resolved, source_provider, max_workers=max_workers)
    return build_tree(sized)


def analyze_stats(
    payload: Any,
    source_provider: Optional[SourceProvider] = None,
    exclude: Sequence[str] = (),
    max_workers: int = SOURCE_READ_WORKERS,
) -> AnalysisReport:
    """
    Turn a stats payload into chart data: one root group per emitted file.

    Roots keep the payload's order (configs, then compilations, then assets).
    Within one top-level entry a file is reported once, by the first
    compilation that emits it.
    """
    normalized = normalize_stats(payload)
    compilations = normalized.compilations
    exclude_spec = compile_exclude(exclude)

    report = AnalysisReport(skipped=list(normalized.skipped))
    seen_labels: Dict[int, Set[str]] = {}

    for compilation in compilations:
        children = [compilations[i] for i in compilation.children]
        roots = analyze_compilation(
            compilation,
            children,
            source_provider=source_provider,
            exclude=exclude_spec,
            max_workers=max_workers,
        )

        seen = seen_labels.setdefault(compilation.family, set())
        for root in roots:
            if root.label in seen:
                logger.debug("%s already reported by a parent compilation", root.label)
                continue
            seen.add(root.label)
            report.chart_data.append(root)

    logger.info(
        "Built %d report groups from %d compilations",
        len(report.chart_data),
        len(compilations),
    )
    return report


def analyze_stats_file(
    stats_path: Union[str, Path],
    bundle_dir: Optional[Union[str, Path]] = None,
    exclude: Sequence[str] = (),
    max_workers: int = SOURCE_READ_WORKERS,
) -> AnalysisReport:
    """
    Analyze a stats file, reading emitted bundles from ``bundle_dir`` if given.

    Without a bundle directory only declared (stat) sizes are reported.
    """
    payload = load_stats(stats_path)
    provider = BundleSourceProvider(bundle_dir) if bundle_dir is not None else None
    report = analyze_stats(payload, provider, exclude=exclude, max_workers=max_workers)

    if provider is not None and report.chart_data and not provider.parsed_assets:
        logger.warning(
            "No bundles were parsed. Only original module sizes from the stats file are shown."
        )
    return report
