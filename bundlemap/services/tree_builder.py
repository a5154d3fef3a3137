from typing import Dict, List, Optional, Sequence, Tuple, Union

from bundlemap.config import CONCATENATED_SUFFIX
from bundlemap.models import Node, StatsModule
from bundlemap.services.sizes import (
    SizedChunk,
    SizedEntry,
    SizedModule,
    SizedPlaceholder,
    sum_optional,
)


class _Folder:
    """Mutable folder used while the tree is assembled; frozen into a Node at the end."""

    def __init__(self, label: str, path: Optional[str]):
        self.label = label
        self.path = path
        # Folders and leaves live in separate key spaces so a file and a
        # directory with the same name never overwrite each other.
        self.children: Dict[Tuple[str, str], Union["_Folder", Node]] = {}

    def folder(self, name: str, path: str) -> "_Folder":
        key = ("folder", name)
        child = self.children.get(key)
        if child is None:
            child = _Folder(name, path)
            self.children[key] = child
        return child

    def add_leaf(self, node: Node) -> None:
        key = ("leaf", node.label)
        existing = self.children.get(key)
        self.children[key] = node if existing is None else _merge_leaves(existing, node)

    def collapse(self) -> None:
        # a -> b -> c with nothing else along the way becomes "a/b/c"
        while len(self.children) == 1:
            (only,) = self.children.values()
            if not isinstance(only, _Folder):
                break
            self.label = f"{self.label}/{only.label}"
            self.path = only.path
            self.children = only.children


def _merge_leaves(a: Node, b: Node) -> Node:
    return Node(
        label=a.label,
        kind=a.kind,
        path=a.path,
        module_id=a.module_id,
        stat_size=a.stat_size + b.stat_size,
        parsed_size=sum_optional((a.parsed_size, b.parsed_size)),
        gzip_size=sum_optional((a.gzip_size, b.gzip_size)),
        children=list(a.children) + list(b.children),
    )


def module_path_parts(module: StatsModule) -> Optional[List[str]]:
    """
    Split a module's name into folder segments plus file name.

    Loaders (``style-loader!css-loader!./a.css``) are dropped, the leading
    ``.`` goes away and ``~`` stands for ``node_modules``. Returns None for
    modules without a usable path: runtime modules, ``multi`` entries and
    names without any ``/`` (externals, for instance).
    """
    if module.is_runtime or module.is_multi:
        return None
    name = module.name or module.identifier
    if not name:
        return None

    raw_path = name.split("!")[-1]
    if "/" not in raw_path:
        return None

    parts = [part for part in raw_path.split("/") if part]
    if parts and parts[0] == ".":
        parts = parts[1:]
    parts = ["node_modules" if part == "~" else part for part in parts]
    return parts or None


def _join(base: str, parts: Sequence[str]) -> str:
    return "/".join([base, *parts])


def _module_node(sized: SizedModule, file_name: str, path: Optional[str]) -> Node:
    module = sized.module
    sizes = sized.sizes

    if not module.is_concatenated:
        return Node(
            label=file_name,
            kind="module",
            path=path,
            module_id=module.id,
            stat_size=sizes.stat_size,
            parsed_size=sizes.parsed_size,
            gzip_size=sizes.gzip_size,
        )

    content = _Folder(file_name, path)
    for member in sized.members:
        _add_entry(content, member, base=path or file_name)

    # The umbrella keeps its own declared sizes; its members are reported
    # next to it, never summed into it.
    return Node(
        label=f"{file_name}{CONCATENATED_SUFFIX}",
        kind="concatenated",
        path=path,
        module_id=module.id,
        stat_size=sizes.stat_size,
        parsed_size=sizes.parsed_size,
        gzip_size=sizes.gzip_size,
        children=_freeze_children(content),
    )


def _add_entry(folder: _Folder, entry: SizedEntry, base: str) -> None:
    if isinstance(entry, SizedPlaceholder):
        folder.add_leaf(
            Node(
                label=entry.placeholder.label,
                kind="placeholder",
                stat_size=entry.sizes.stat_size,
            )
        )
        return

    parts = module_path_parts(entry.module)
    if parts is None:
        folder.add_leaf(_module_node(entry, entry.module.display_name, None))
        return

    current = folder
    for i, part in enumerate(parts[:-1]):
        current = current.folder(part, _join(base, parts[: i + 1]))
    current.add_leaf(_module_node(entry, parts[-1], _join(base, parts)))


def _freeze(folder: _Folder) -> Node:
    folder.collapse()
    children = _freeze_children(folder)
    return Node(
        label=folder.label,
        kind="folder",
        path=folder.path,
        stat_size=sum(child.stat_size for child in children),
        parsed_size=sum_optional(child.parsed_size for child in children),
        gzip_size=sum_optional(child.gzip_size for child in children),
        children=children,
    )


def _freeze_children(folder: _Folder) -> List[Node]:
    return [
        _freeze(child) if isinstance(child, _Folder) else child
        for child in folder.children.values()
    ]


def build_chunk_tree(chunk: SizedChunk) -> Node:
    """
    Fold a chunk's sized modules into a folder hierarchy rooted at the chunk.

    Group sizes are aggregated bottom-up in the same pass that freezes the
    tree: statSize is the plain sum of the children, parsedSize and gzipSize
    sum only the children that have them and stay absent if none does.
    """
    root = _Folder(chunk.label, None)
    for entry in chunk.entries:
        _add_entry(root, entry, base=".")

    children = _freeze_children(root)
    return Node(
        label=chunk.label,
        kind="chunk",
        stat_size=sum(child.stat_size for child in children),
        parsed_size=sum_optional(child.parsed_size for child in children),
        gzip_size=sum_optional(child.gzip_size for child in children),
        children=children,
    )


def build_tree(chunks: Sequence[SizedChunk]) -> List[Node]:
    return [build_chunk_tree(chunk) for chunk in chunks]
