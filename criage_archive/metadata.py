"""Package metadata records.

The record embedded in every archive is :class:`PackageMetadata`, stored as
JSON under ``.criage-metadata.json``. Field names on the wire are camelCase;
each dataclass field carries its wire key (and whether it is dropped when
empty) in its ``metadata``. The same mapping reads ``criage.yaml`` manifests.
"""

from __future__ import annotations

import dataclasses
import datetime as _dt
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .constants import CREATED_BY
from .errors import MetadataCorrupt


def _key(name: str, *, omitempty: bool = False, nested=None, many: bool = False):
    return {"key": name, "omitempty": omitempty, "nested": nested, "many": many}


def _to_dict(obj) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in dataclasses.fields(obj):
        spec = f.metadata
        value = getattr(obj, f.name)
        if spec.get("omitempty") and not value:
            continue
        if value is not None and spec.get("nested") is not None:
            if spec.get("many"):
                value = [_to_dict(v) for v in value]
            else:
                value = _to_dict(value)
        elif isinstance(value, (list, dict)):
            value = type(value)(value)
        out[spec["key"]] = value
    return out


def _from_dict(cls, data: Any):
    if not isinstance(data, dict):
        raise MetadataCorrupt(f"expected a mapping for {cls.__name__}, got {type(data).__name__}")
    kwargs: Dict[str, Any] = {}
    for f in dataclasses.fields(cls):
        spec = f.metadata
        if spec["key"] not in data:
            continue
        value = data[spec["key"]]
        nested = spec.get("nested")
        if value is not None and nested is not None:
            if spec.get("many"):
                if not isinstance(value, list):
                    raise MetadataCorrupt(f"{cls.__name__}.{spec['key']} must be a list")
                value = [_from_dict(nested, v) for v in value]
            else:
                value = _from_dict(nested, value)
        kwargs[f.name] = value
    return cls(**kwargs)


@dataclass
class PackageHooks:
    pre_install: List[str] = field(default_factory=list, metadata=_key("preInstall", omitempty=True))
    post_install: List[str] = field(default_factory=list, metadata=_key("postInstall", omitempty=True))
    pre_remove: List[str] = field(default_factory=list, metadata=_key("preRemove", omitempty=True))
    post_remove: List[str] = field(default_factory=list, metadata=_key("postRemove", omitempty=True))
    pre_update: List[str] = field(default_factory=list, metadata=_key("preUpdate", omitempty=True))
    post_update: List[str] = field(default_factory=list, metadata=_key("postUpdate", omitempty=True))


@dataclass
class PackageManifest:
    name: str = field(default="", metadata=_key("name"))
    version: str = field(default="", metadata=_key("version"))
    description: str = field(default="", metadata=_key("description"))
    author: str = field(default="", metadata=_key("author"))
    license: str = field(default="", metadata=_key("license"))
    homepage: str = field(default="", metadata=_key("homepage", omitempty=True))
    repository: str = field(default="", metadata=_key("repository", omitempty=True))
    keywords: List[str] = field(default_factory=list, metadata=_key("keywords", omitempty=True))
    dependencies: Dict[str, str] = field(default_factory=dict, metadata=_key("dependencies", omitempty=True))
    dev_dependencies: Dict[str, str] = field(default_factory=dict, metadata=_key("devDependencies", omitempty=True))
    scripts: Dict[str, str] = field(default_factory=dict, metadata=_key("scripts", omitempty=True))
    files: List[str] = field(default_factory=list, metadata=_key("files", omitempty=True))
    exclude: List[str] = field(default_factory=list, metadata=_key("exclude", omitempty=True))
    arch: List[str] = field(default_factory=list, metadata=_key("arch", omitempty=True))
    os: List[str] = field(default_factory=list, metadata=_key("os", omitempty=True))
    min_version: str = field(default="", metadata=_key("minVersion", omitempty=True))
    hooks: Optional[PackageHooks] = field(default=None, metadata=_key("hooks", omitempty=True, nested=PackageHooks))
    metadata: Dict[str, Any] = field(default_factory=dict, metadata=_key("metadata", omitempty=True))

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "PackageManifest":
        return _from_dict(cls, data)


@dataclass
class CompressionConfig:
    format: str = field(default="", metadata=_key("format"))
    level: int = field(default=0, metadata=_key("level"))


@dataclass
class BuildTarget:
    os: str = field(default="", metadata=_key("os"))
    arch: str = field(default="", metadata=_key("arch"))


@dataclass
class BuildManifest:
    name: str = field(default="", metadata=_key("name"))
    version: str = field(default="", metadata=_key("version"))
    build_script: str = field(default="", metadata=_key("buildScript", omitempty=True))
    output_dir: str = field(default="", metadata=_key("outputDir"))
    include_files: List[str] = field(default_factory=list, metadata=_key("includeFiles"))
    exclude_files: List[str] = field(default_factory=list, metadata=_key("excludeFiles", omitempty=True))
    compression: CompressionConfig = field(
        default_factory=CompressionConfig, metadata=_key("compression", nested=CompressionConfig)
    )
    targets: List[BuildTarget] = field(default_factory=list, metadata=_key("targets", nested=BuildTarget, many=True))
    environment: Dict[str, str] = field(default_factory=dict, metadata=_key("environment", omitempty=True))

    def to_dict(self) -> Dict[str, Any]:
        return _to_dict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "BuildManifest":
        return _from_dict(cls, data)


_FRACTION_RE = re.compile(r"\.(\d+)")


def format_timestamp(ts: _dt.datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=_dt.timezone.utc)
    text = ts.isoformat()
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def parse_timestamp(text: str) -> _dt.datetime:
    """Parse an RFC 3339 timestamp (``Z`` suffix, up to nanosecond digits)."""
    if not isinstance(text, str):
        raise MetadataCorrupt(f"createdAt must be a string, got {type(text).__name__}")
    value = text.strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    # datetime keeps microseconds only
    value = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    try:
        ts = _dt.datetime.fromisoformat(value)
    except ValueError as exc:
        raise MetadataCorrupt(f"invalid createdAt timestamp: {text!r}") from exc
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=_dt.timezone.utc)
    return ts


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


@dataclass
class PackageMetadata:
    """The record stored as the reserved first entry of every archive."""

    package: Optional[PackageManifest] = None
    build: Optional[BuildManifest] = None
    compression_type: str = ""
    created_at: _dt.datetime = field(default_factory=_utcnow)
    created_by: str = CREATED_BY
    version: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.package is not None:
            out["package"] = self.package.to_dict()
        if self.build is not None:
            out["build"] = self.build.to_dict()
        out["compressionType"] = self.compression_type
        out["createdAt"] = format_timestamp(self.created_at)
        out["createdBy"] = self.created_by
        out["version"] = self.version
        return out

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Any) -> "PackageMetadata":
        if not isinstance(data, dict):
            raise MetadataCorrupt("metadata document must be a JSON object")
        md = cls(
            compression_type=str(data.get("compressionType") or ""),
            created_by=str(data.get("createdBy") or ""),
            version=str(data.get("version") or ""),
        )
        if data.get("package") is not None:
            md.package = PackageManifest.from_dict(data["package"])
        if data.get("build") is not None:
            md.build = BuildManifest.from_dict(data["build"])
        if data.get("createdAt"):
            md.created_at = parse_timestamp(data["createdAt"])
        return md

    @classmethod
    def from_json(cls, raw: bytes) -> "PackageMetadata":
        try:
            data = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MetadataCorrupt(f"metadata entry is not valid JSON: {exc}") from exc
        try:
            return cls.from_dict(data)
        except TypeError as exc:
            raise MetadataCorrupt(f"metadata entry has unexpected fields: {exc}") from exc


def load_manifest(path) -> PackageManifest:
    """Parse a ``criage.yaml`` package manifest."""
    with open(path, "r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise MetadataCorrupt(f"invalid manifest {path}: {exc}") from exc
    if data is None:
        data = {}
    return PackageManifest.from_dict(data)
