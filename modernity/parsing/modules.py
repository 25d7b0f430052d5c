"""Crate manifest reading and module-graph discovery."""

from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from tree_sitter import Node

from ..logging import get_logger
from ..syntax.rust import node_text, preceding_attributes

logger = get_logger("parsing.modules")

_PATH_ATTRIBUTE_RE = re.compile(r'#\s*\[\s*path\s*=\s*"(?P<path>[^"]+)"\s*\]')


@dataclass(frozen=True)
class ModuleDeclaration:
    """An out-of-line ``mod name;`` with the files it may live in, in priority order."""

    name: str
    candidates: Tuple[Path, ...]
    explicit_path: bool = False


def read_manifest(source_root: Path) -> Optional[Dict[str, Any]]:
    """Load ``Cargo.toml`` from the source root; None when absent or unreadable."""
    manifest_path = source_root / "Cargo.toml"
    if not manifest_path.is_file():
        return None
    try:
        return tomllib.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        logger.debug("Ignoring unreadable manifest %s: %s", manifest_path, exc)
        return None


def crate_root(source_root: Path, manifest: Optional[Dict[str, Any]]) -> Optional[Path]:
    """Locate the crate root file: ``[lib] path``, then ``src/lib.rs``, then ``src/main.rs``."""
    candidates: List[Path] = []
    lib = manifest.get("lib") if isinstance(manifest, dict) else None
    if isinstance(lib, dict) and isinstance(lib.get("path"), str):
        candidates.append(source_root / lib["path"])
    candidates.append(source_root / "src" / "lib.rs")
    candidates.append(source_root / "src" / "main.rs")
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def module_directory(file_path: Path, *, is_root: bool) -> Path:
    """Directory in which ``mod x;`` declared by ``file_path`` is looked up."""
    if is_root or file_path.name == "mod.rs":
        return file_path.parent
    return file_path.parent / file_path.stem


def declared_modules(root: Node, file_path: Path, directory: Path) -> List[ModuleDeclaration]:
    """Collect out-of-line module declarations, descending into inline ``mod`` blocks."""
    declarations: List[ModuleDeclaration] = []
    _collect(root, file_path.parent, directory, declarations)
    return declarations


def _collect(container: Node, path_base: Path, directory: Path, declarations: List[ModuleDeclaration]) -> None:
    for child in container.named_children:
        if child.type != "mod_item":
            continue
        name = node_text(child.child_by_field_name("name"))
        if name.startswith("r#"):
            name = name[2:]
        if not name:
            continue
        explicit = _path_attribute(child)
        body = child.child_by_field_name("body")
        if body is not None:
            nested = directory / name
            if explicit is not None:
                nested = path_base / explicit
            _collect(body, nested, nested, declarations)
            continue
        if explicit is not None:
            declarations.append(ModuleDeclaration(name=name, candidates=(path_base / explicit,), explicit_path=True))
            continue
        candidates = (directory / f"{name}.rs", directory / name / "mod.rs")
        declarations.append(ModuleDeclaration(name=name, candidates=candidates))


def _path_attribute(node: Node) -> Optional[str]:
    for attribute in preceding_attributes(node):
        match = _PATH_ATTRIBUTE_RE.search(attribute)
        if match:
            return match.group("path")
    return None


__all__ = ["ModuleDeclaration", "crate_root", "declared_modules", "module_directory", "read_manifest"]
