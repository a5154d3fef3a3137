from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, StrictInt, StrictStr, model_validator

from bundlemap.config import MULTI_MODULE_PREFIX, RUNTIME_MODULE_TYPE

RecordId = Union[StrictInt, StrictStr]
Size = Annotated[int, Field(strict=True, ge=0)]


class StatsModule(BaseModel):
    """A module record, either from the flat ``modules`` list or nested in a chunk."""

    id: Optional[RecordId] = None
    identifier: Optional[str] = None
    name: Optional[str] = None
    size: Optional[Size] = None
    chunks: List[RecordId] = Field(default_factory=list)
    # Members of a scope-hoisted (concatenated) module. Kept raw so that one
    # bad member doesn't invalidate the whole group.
    modules: Optional[List[Any]] = None
    source: Optional[str] = None
    depth: Optional[int] = None
    module_type: Optional[str] = Field(default=None, alias="moduleType")

    model_config = {
        "populate_by_name": True,
        "frozen": True,
    }

    @model_validator(mode="after")
    def _check_identity_and_size(self) -> "StatsModule":
        if self.id is None and not self.name and not self.identifier:
            raise ValueError("module has no id, name or identifier")
        if self.size is None and self.source is None:
            raise ValueError("module has neither a declared size nor a source")
        return self

    @property
    def key(self) -> Optional[str]:
        return None if self.id is None else str(self.id)

    @property
    def display_name(self) -> str:
        return self.name or self.identifier or str(self.id)

    @property
    def is_runtime(self) -> bool:
        return self.module_type == RUNTIME_MODULE_TYPE

    @property
    def is_multi(self) -> bool:
        return bool(self.identifier) and self.identifier.startswith(MULTI_MODULE_PREFIX)

    @property
    def is_entry(self) -> bool:
        return self.depth == 0

    @property
    def is_concatenated(self) -> bool:
        return self.modules is not None

    def chunk_keys(self) -> Tuple[str, ...]:
        return tuple(str(c) for c in self.chunks)


class StatsChunk(BaseModel):
    id: RecordId
    names: List[str] = Field(default_factory=list)
    files: List[str] = Field(default_factory=list)
    size: Optional[Size] = None
    modules: Optional[List[Any]] = None

    model_config = {"frozen": True}

    @property
    def key(self) -> str:
        return str(self.id)


class StatsAsset(BaseModel):
    name: str
    size: Optional[Size] = None
    chunks: List[RecordId] = Field(default_factory=list)
    # webpack 5 tags assets; anything but "asset" (e.g. "hidden assets") is ignored
    type: Optional[str] = None

    model_config = {"frozen": True}


@dataclass(frozen=True)
class CompilationResult:
    """One compilation of a stats payload, in normalized form.

    Records are kept exactly as they appear in the payload; they are
    validated one by one during resolution.
    """

    index: int
    family: int
    name: Optional[str] = None
    parent: Optional[int] = None
    children: Tuple[int, ...] = ()
    chunks: Tuple[Any, ...] = ()
    modules: Tuple[Any, ...] = ()
    assets: Tuple[Any, ...] = ()
    assets_by_chunk_name: Dict[str, Any] = field(default_factory=dict)

    def emitted_file_names(self) -> List[str]:
        names: List[str] = []
        for value in self.assets_by_chunk_name.values():
            if isinstance(value, str):
                names.append(value)
            elif isinstance(value, list):
                names.extend(v for v in value if isinstance(v, str))
        for asset in self.assets:
            if isinstance(asset, dict) and isinstance(asset.get("name"), str):
                names.append(asset["name"])
        return names


GROUP_KINDS = {"chunk", "folder"}


class Node(BaseModel):
    label: str
    kind: str  # "chunk", "folder", "module", "concatenated", "placeholder"
    path: Optional[str] = None
    module_id: Optional[RecordId] = Field(default=None, alias="id")
    stat_size: int = Field(default=0, alias="statSize")
    parsed_size: Optional[int] = Field(default=None, alias="parsedSize")
    gzip_size: Optional[int] = Field(default=None, alias="gzipSize")
    children: List["Node"] = Field(default_factory=list, alias="groups")

    model_config = {
        "populate_by_name": True,
        "frozen": True,
    }

    @property
    def is_group(self) -> bool:
        return self.kind in GROUP_KINDS

    def to_chart_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"label": self.label}
        if self.module_id is not None:
            data["id"] = self.module_id
        if self.path is not None:
            data["path"] = self.path
        data["statSize"] = self.stat_size
        if self.parsed_size is not None:
            data["parsedSize"] = self.parsed_size
        if self.gzip_size is not None:
            data["gzipSize"] = self.gzip_size
        if self.kind == "chunk":
            data["isAsset"] = True
        if self.kind == "concatenated":
            data["concatenated"] = True
        if self.is_group or self.children:
            data["groups"] = [child.to_chart_data() for child in self.children]
        return data
