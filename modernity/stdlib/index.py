"""Index of standard-library items built from the pre-expanded std, core and alloc dumps."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from tree_sitter import Node

from ..errors import MalformedExpansion, MissingExpansionFile
from ..logging import get_logger
from ..models import Definition, ExpandedLibraryUnit
from ..stores.index_cache import IndexCache
from ..syntax.rust import (
    RustParser,
    first_error,
    node_text,
    path_segments,
    preceding_attributes,
    use_entries,
)

logger = get_logger("stdlib")

EXPANSION_CRATES: Tuple[str, ...] = ("std", "core", "alloc")
PRELUDE_PATH: Tuple[str, ...] = ("std", "prelude", "v1")
INDEX_SIGNATURE = "modernity-std-index/2"
MAX_ALIAS_HOPS = 32
MACRO_SUFFIX = "!"

_CACHE_KEY = "std-index"
_STABLE_RE = re.compile(r"#\s*\[\s*stable\s*\((?P<args>.*)\)\s*\]", re.DOTALL)
_SINCE_RE = re.compile(r'since\s*=\s*"(?P<since>[^"]*)"')

ItemPath = Tuple[str, ...]


def expansion_path(expansions_dir: Path, crate: str) -> Path:
    return expansions_dir / f"expanded-{crate}.rs"


class _Item:
    """A node of the module tree; ``kind`` is None for path segments never defined."""

    __slots__ = ("kind", "since", "public", "macro_source", "children")

    def __init__(self) -> None:
        self.kind: Optional[str] = None
        self.since: Optional[str] = None
        self.public = False
        self.macro_source: Optional[str] = None
        self.children: Dict[str, "_Item"] = {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.kind is not None:
            payload["k"] = self.kind
        if self.since is not None:
            payload["s"] = self.since
        if self.public:
            payload["p"] = True
        if self.macro_source is not None:
            payload["m"] = self.macro_source
        if self.children:
            payload["c"] = {name: child.to_payload() for name, child in self.children.items()}
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "_Item":
        item = cls()
        item.kind = payload.get("k")
        item.since = payload.get("s")
        item.public = bool(payload.get("p", False))
        item.macro_source = payload.get("m")
        for name, child in (payload.get("c") or {}).items():
            item.children[name] = cls.from_payload(child)
        return item


@dataclass(frozen=True)
class Alias:
    """A ``use`` re-export; ``local`` is None for glob imports."""

    local: Optional[str]
    target: ItemPath


class StdIndex:
    """Read-only lookup of standard-library definitions by qualified name."""

    def __init__(
        self,
        root: _Item,
        aliases: Dict[ItemPath, Tuple[Alias, ...]],
        units: Sequence[ExpandedLibraryUnit],
    ) -> None:
        self._root = root
        self._aliases = aliases
        self.units: Tuple[ExpandedLibraryUnit, ...] = tuple(units)

    @classmethod
    def load(
        cls,
        expansions_dir: Path,
        *,
        cache: IndexCache | None = None,
        parser: RustParser | None = None,
    ) -> "StdIndex":
        """Load the std, core and alloc expansion artifacts from ``expansions_dir``."""
        paths = {crate: expansion_path(expansions_dir, crate) for crate in EXPANSION_CRATES}
        for path in paths.values():
            if not path.is_file():
                raise MissingExpansionFile(path)

        digests = {crate: _hash_file(path) for crate, path in paths.items()}
        fingerprint = hashlib.sha256(
            "".join(f"{crate}:{digests[crate]}\n" for crate in EXPANSION_CRATES).encode("utf-8")
        ).hexdigest()

        if cache is not None:
            payload = cache.get(_CACHE_KEY, signature=INDEX_SIGNATURE, fingerprint=fingerprint)
            if payload is not None:
                try:
                    index = cls.from_payload(payload, paths)
                except (KeyError, TypeError, ValueError):
                    logger.debug("Ignoring unreadable std index cache entry")
                else:
                    logger.debug("Loaded std index from cache %s", cache.path)
                    return index

        parser = parser or RustParser()
        builder = _IndexBuilder()
        units: List[ExpandedLibraryUnit] = []
        for crate in EXPANSION_CRATES:
            path = paths[crate]
            count = builder.add_unit(crate, path, parser)
            units.append(
                ExpandedLibraryUnit(origin=crate, path=path, fingerprint=digests[crate], definitions=count)
            )
            logger.info("Indexed %d definitions from %s", count, path.name)

        index = cls(builder.root, builder.frozen_aliases(), units)
        if cache is not None:
            cache.store(_CACHE_KEY, signature=INDEX_SIGNATURE, fingerprint=fingerprint, payload=index.to_payload())
            cache.persist()
        return index

    # ------------------------------------------------------------------
    # Lookup

    def resolve(self, qualified_name: str) -> Optional[Definition]:
        """Resolve a ``::``-separated path, following re-exports."""
        segments = path_segments(qualified_name)
        if not segments:
            return None
        return self.resolve_path(tuple(segments))

    def resolve_path(self, segments: Sequence[str], scope: ItemPath = ()) -> Optional[Definition]:
        found = self._locate(tuple(segments), tuple(scope), 0, set())
        if found is None:
            return None
        path, item = found
        if item.kind is None:
            return None
        return _definition(path, item)

    def resolve_macro(self, name: str) -> Optional[Definition]:
        """Resolve a macro by name; bare names are looked up in std, then core, then alloc."""
        segments = path_segments(name)
        if not segments:
            return None
        candidates: List[ItemPath] = []
        macro = segments[-1] + MACRO_SUFFIX
        if len(segments) == 1:
            candidates.extend((crate, macro) for crate in EXPANSION_CRATES)
        else:
            candidates.append(tuple(segments[:-1]) + (macro,))
        for candidate in candidates:
            definition = self.resolve_path(candidate)
            if definition is not None and definition.kind == "macro":
                return definition
        return None

    def __contains__(self, qualified_name: object) -> bool:
        return isinstance(qualified_name, str) and self.resolve(qualified_name) is not None

    def _item_at(self, path: ItemPath) -> Optional[_Item]:
        item = self._root
        for segment in path:
            child = item.children.get(segment)
            if child is None:
                return None
            item = child
        return item

    def _locate(
        self, segments: ItemPath, scope: ItemPath, hops: int, seen: Set[Tuple[ItemPath, str]]
    ) -> Optional[Tuple[ItemPath, _Item]]:
        if hops > MAX_ALIAS_HOPS:
            return None
        if not segments:
            item = self._item_at(scope)
            return (scope, item) if item is not None else None
        first = segments[0]
        if first == "crate":
            return self._descend(scope[:1], segments[1:], hops, seen)
        if first in ("self", "super"):
            return self._descend(scope, segments, hops, seen)
        if first in self._root.children and first in EXPANSION_CRATES:
            return self._descend((), segments, hops, seen)
        for base in _unique((scope, scope[:1], ())):
            found = self._descend(base, segments, hops, seen)
            if found is not None:
                return found
        return None

    def _descend(
        self, base: ItemPath, segments: ItemPath, hops: int, seen: Set[Tuple[ItemPath, str]]
    ) -> Optional[Tuple[ItemPath, _Item]]:
        item = self._item_at(base)
        if item is None:
            return None
        path = base
        for segment in segments:
            if segment == "self":
                continue
            if segment == "super":
                path = path[:-1]
                item = self._item_at(path)
                if item is None:
                    return None
                continue
            child = item.children.get(segment)
            if child is not None:
                path = path + (segment,)
                item = child
                continue
            found = self._follow_alias(path, segment, hops + 1, seen)
            if found is None:
                return None
            path, item = found
        return path, item

    def _follow_alias(
        self, module: ItemPath, name: str, hops: int, seen: Set[Tuple[ItemPath, str]]
    ) -> Optional[Tuple[ItemPath, _Item]]:
        if hops > MAX_ALIAS_HOPS or (module, name) in seen:
            return None
        seen.add((module, name))
        aliases = self._aliases.get(module, ())
        # Macros live in their own namespace but are re-exported by plain `use`.
        bare = name[: -len(MACRO_SUFFIX)] if name.endswith(MACRO_SUFFIX) else name
        for alias in aliases:
            if alias.local == bare:
                target = alias.target if bare == name else alias.target[:-1] + (alias.target[-1] + MACRO_SUFFIX,)
                found = self._locate(target, module, hops, seen)
                if found is not None:
                    return found
        for alias in aliases:
            if alias.local is not None:
                continue
            target = self._locate(alias.target, module, hops, seen)
            if target is None:
                continue
            found = self._descend(target[0], (name,), hops, seen)
            if found is not None:
                return found
        return None

    # ------------------------------------------------------------------
    # Cache payloads

    def to_payload(self) -> Dict[str, Any]:
        return {
            "items": self._root.to_payload(),
            "aliases": [
                {"module": list(module), "local": alias.local, "target": list(alias.target)}
                for module, entries in sorted(self._aliases.items())
                for alias in entries
            ],
            "units": [
                {"origin": unit.origin, "fingerprint": unit.fingerprint, "definitions": unit.definitions}
                for unit in self.units
            ],
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], paths: Dict[str, Path]) -> "StdIndex":
        root = _Item.from_payload(payload["items"])
        grouped: Dict[ItemPath, List[Alias]] = {}
        for raw in payload["aliases"]:
            module = tuple(raw["module"])
            grouped.setdefault(module, []).append(Alias(local=raw["local"], target=tuple(raw["target"])))
        units = [
            ExpandedLibraryUnit(
                origin=raw["origin"],
                path=paths[raw["origin"]],
                fingerprint=raw["fingerprint"],
                definitions=int(raw["definitions"]),
            )
            for raw in payload["units"]
        ]
        return cls(root, {module: tuple(entries) for module, entries in grouped.items()}, units)


class _IndexBuilder:
    """Registers items and re-exports found while walking expansion artifacts."""

    def __init__(self) -> None:
        self.root = _Item()
        self._aliases: Dict[ItemPath, List[Alias]] = {}
        self._count = 0
        self._add_alias((), Alias(local=None, target=PRELUDE_PATH))

    def add_unit(self, crate: str, path: Path, parser: RustParser) -> int:
        raw = path.read_bytes()
        try:
            raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedExpansion(path, f"not valid UTF-8 ({exc.reason} at byte {exc.start})") from exc
        tree = parser.parse(raw)
        position = first_error(tree.root_node)
        if position is not None:
            logger.warning(
                "%s has syntax errors (first at line %d, column %d); affected items are skipped",
                path.name,
                position[0],
                position[1],
            )
        self._count = 0
        self._ensure((crate,)).kind = "crate"
        self._visit_items(tree.root_node, (crate,), crate)
        if self._count == 0:
            raise MalformedExpansion(path, "no items could be extracted")
        return self._count

    def frozen_aliases(self) -> Dict[ItemPath, Tuple[Alias, ...]]:
        return {module: tuple(entries) for module, entries in self._aliases.items()}

    def _visit_items(self, container: Node, module: ItemPath, crate: str) -> None:
        for child in container.named_children:
            if child.is_error:
                continue
            kind = child.type
            if kind in ("function_item", "function_signature_item"):
                self._register_named(child, module, "fn")
            elif kind in ("struct_item", "union_item", "type_item", "const_item", "static_item"):
                self._register_named(child, module, kind[: -len("_item")])
            elif kind == "enum_item":
                self._visit_enum(child, module)
            elif kind == "trait_item":
                self._visit_trait(child, module)
            elif kind == "impl_item":
                self._visit_impl(child, module)
            elif kind == "mod_item":
                name = node_text(child.child_by_field_name("name"))
                body = child.child_by_field_name("body")
                if not name:
                    continue
                self._register(module + (name,), "mod", child)
                if body is not None:
                    self._visit_items(body, module + (name,), crate)
            elif kind == "macro_definition":
                self._visit_macro(child, module, crate)
            elif kind == "use_declaration":
                for entry in use_entries(child.child_by_field_name("argument")):
                    if not entry.segments:
                        continue
                    if entry.glob:
                        self._add_alias(module, Alias(local=None, target=entry.segments))
                    elif entry.local:
                        self._add_alias(module, Alias(local=entry.local, target=entry.segments))
            elif kind == "extern_crate_declaration":
                name = node_text(child.child_by_field_name("name"))
                alias = node_text(child.child_by_field_name("alias")) or name
                if name and alias and alias != "_":
                    self._add_alias(module, Alias(local=alias, target=(name,)))

    def _visit_enum(self, node: Node, module: ItemPath) -> None:
        path = self._register_named(node, module, "enum")
        body = node.child_by_field_name("body")
        if path is None or body is None:
            return
        for variant in body.named_children:
            if variant.type != "enum_variant":
                continue
            name = node_text(variant.child_by_field_name("name"))
            if name:
                self._register(path + (name,), "variant", variant, public=True)

    def _visit_trait(self, node: Node, module: ItemPath) -> None:
        path = self._register_named(node, module, "trait")
        body = node.child_by_field_name("body")
        if path is None or body is None:
            return
        for member in body.named_children:
            kind = _member_kind(member)
            if kind is None:
                continue
            name = node_text(member.child_by_field_name("name"))
            if name:
                self._register(path + (name,), kind, member, public=True)

    def _visit_impl(self, node: Node, module: ItemPath) -> None:
        # Trait impls add no new paths.
        if node.child_by_field_name("trait") is not None:
            return
        segments = path_segments(node_text(node.child_by_field_name("type")))
        body = node.child_by_field_name("body")
        if not segments or body is None:
            return
        target = module + tuple(segments)
        for member in body.named_children:
            kind = _member_kind(member)
            if kind is None:
                continue
            name = node_text(member.child_by_field_name("name"))
            if name:
                self._register(target + (name,), kind, member)

    def _visit_macro(self, node: Node, module: ItemPath, crate: str) -> None:
        name = node_text(node.child_by_field_name("name"))
        if name.startswith("r#"):
            name = name[2:]
        if not name:
            return
        attributes = preceding_attributes(node)
        exported = any("macro_export" in attribute for attribute in attributes)
        name += MACRO_SUFFIX
        path = (crate, name) if exported else module + (name,)
        self._register(path, "macro", node, public=exported, macro_source=node_text(node))

    def _register_named(self, node: Node, module: ItemPath, kind: str) -> Optional[ItemPath]:
        name = node_text(node.child_by_field_name("name"))
        if not name:
            return None
        path = module + (name,)
        self._register(path, kind, node)
        return path

    def _register(
        self,
        path: ItemPath,
        kind: str,
        node: Node,
        *,
        public: Optional[bool] = None,
        macro_source: Optional[str] = None,
    ) -> None:
        item = self._ensure(path)
        item.kind = kind
        since = _stable_since(preceding_attributes(node))
        if since is not None:
            item.since = since
        item.public = item.public or (public if public is not None else _is_public(node))
        if macro_source is not None:
            item.macro_source = macro_source
        self._count += 1

    def _ensure(self, path: ItemPath) -> _Item:
        item = self.root
        for segment in path:
            child = item.children.get(segment)
            if child is None:
                child = _Item()
                item.children[segment] = child
            item = child
        return item

    def _add_alias(self, module: ItemPath, alias: Alias) -> None:
        entries = self._aliases.setdefault(module, [])
        if alias not in entries:
            entries.append(alias)


def _member_kind(node: Node) -> Optional[str]:
    kind = node.type
    if kind in ("function_item", "function_signature_item"):
        return "fn"
    if kind == "const_item":
        return "const"
    if kind in ("type_item", "associated_type"):
        return "type"
    return None


def _is_public(node: Node) -> bool:
    for child in node.children:
        if child.type == "visibility_modifier":
            return node_text(child).strip() == "pub"
    return False


def _stable_since(attributes: Iterable[str]) -> Optional[str]:
    for attribute in attributes:
        match = _STABLE_RE.search(attribute)
        if match is None:
            continue
        since = _SINCE_RE.search(match.group("args"))
        if since is not None:
            return since.group("since")
    return None


def _definition(path: ItemPath, item: _Item) -> Definition:
    return Definition(
        qualified_name="::".join(path),
        kind=item.kind or "",
        since=item.since,
        public=item.public,
        origin=path[0],
        macro_source=item.macro_source,
    )


def _unique(paths: Iterable[ItemPath]) -> List[ItemPath]:
    result: List[ItemPath] = []
    for path in paths:
        if path not in result:
            result.append(path)
    return result


def _hash_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


__all__ = ["Alias", "EXPANSION_CRATES", "INDEX_SIGNATURE", "MACRO_SUFFIX", "PRELUDE_PATH", "StdIndex", "expansion_path"]
