import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Union

from bundlemap.models import StatsModule
from bundlemap.services.bundle_parser import ParsedBundle, parse_bundle

logger = logging.getLogger(__name__)


class SourceProvider(Protocol):
    """
    Anything that can hand back the emitted source of a module.

    Returning ``None`` means "source unavailable"; the module then simply has
    no parsed/gzip size. Providers may additionally implement
    ``get_runtime_source(asset_name)`` returning the bundle code that belongs
    to no module.
    """

    def get_module_source(self, module: StatsModule, asset_name: str) -> Optional[str]:
        ...


class StatsSourceProvider:
    """Uses the ``source`` webpack embeds in stats generated with ``source: true``."""

    def get_module_source(self, module: StatsModule, asset_name: str) -> Optional[str]:
        return module.source


class BundleSourceProvider:
    """
    Reads emitted bundles from ``bundle_dir`` and cuts module sources out of them.

    Each asset is parsed at most once, even when many threads ask for its
    modules at the same time.
    """

    def __init__(self, bundle_dir: Union[str, Path]):
        self.bundle_dir = Path(bundle_dir)
        self._bundles: Dict[str, Optional[ParsedBundle]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, asset_name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(asset_name, threading.Lock())

    def get_bundle(self, asset_name: str) -> Optional[ParsedBundle]:
        with self._lock_for(asset_name):
            if asset_name not in self._bundles:
                self._bundles[asset_name] = self._parse(asset_name)
            return self._bundles[asset_name]

    def _parse(self, asset_name: str) -> Optional[ParsedBundle]:
        asset_path = self.bundle_dir / asset_name
        try:
            bundle = parse_bundle(asset_path)
        except FileNotFoundError:
            logger.warning('Error parsing bundle asset "%s": no such file', asset_path)
            return None
        except (OSError, ValueError) as e:
            logger.warning('Error parsing bundle asset "%s": %s', asset_path, e)
            return None

        if not bundle.modules:
            logger.info("No modules found in %s", asset_path)
        return bundle

    @property
    def parsed_assets(self) -> List[str]:
        return [name for name, bundle in self._bundles.items() if bundle is not None]

    def get_module_source(self, module: StatsModule, asset_name: str) -> Optional[str]:
        bundle = self.get_bundle(asset_name)
        if bundle is None or module.key is None:
            return None
        return bundle.modules.get(module.key)

    def get_runtime_source(self, asset_name: str) -> Optional[str]:
        bundle = self.get_bundle(asset_name)
        if bundle is None or not bundle.modules:
            return None
        return bundle.runtime_src
