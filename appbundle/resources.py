"""
appbundle — resource collection

Expands manifest resource declarations into concrete (source, destination)
copies. Globs are expanded here, never at package time.
"""

import glob
import os
from dataclasses import dataclass
from pathlib import Path, PurePath, PurePosixPath

from .common import warn
from .errors import ResourceNotFound

GLOB_CHARS = "*?["


@dataclass(frozen=True)
class ResourceDeclaration:
    """One manifest entry: a path or glob, optionally mapped to a destination.

    Plain entries (mapped=False) keep their project-relative layout. Mapped
    entries land at `dest`, or at the source's base name when dest is None.
    """
    source: str
    dest: str = None
    mapped: bool = False


@dataclass(frozen=True)
class ResourceMapping:
    source: Path
    dest: PurePosixPath


@dataclass
class ResourceCollection:
    mappings: list
    warnings: list


def is_glob(pattern: str) -> bool:
    return any(c in pattern for c in GLOB_CHARS)


def resource_relpath(path: PurePath) -> PurePosixPath:
    """Destination for a resource declared without one.

    Keeps the declared layout; leading roots are dropped and `..` components
    become `_up_` so nothing escapes the resource root.
    """
    parts = []
    for part in path.parts:
        if part == path.anchor or part in ("", "."):
            continue
        parts.append("_up_" if part == ".." else part)
    return PurePosixPath(*parts)


def _absolute(path: Path) -> Path:
    return Path(os.path.normpath(path.absolute()))


def _walk(directory: Path) -> list:
    return sorted(p for p in directory.rglob("*") if p.is_file())


def _matches(pattern: str, root: Path, warnings: list) -> list:
    """[(absolute path, path as declared)] for one pattern."""
    if is_glob(pattern):
        found = sorted(glob.glob(pattern, root_dir=root, recursive=True))
        if not found:
            warnings.append(warn(f"Glob pattern matched no files: {pattern}"))
        return [(_absolute(root / m), m) for m in found]
    path = root / pattern
    if not path.exists():
        raise ResourceNotFound(path)
    return [(_absolute(path), pattern)]


def expand_paths(patterns, project_dir: Path):
    """Expand paths/globs to existing files. Returns (paths, warnings)."""
    warnings = []
    paths = []
    for pattern in patterns:
        for path, _ in _matches(pattern, Path(project_dir), warnings):
            if path.is_dir():
                paths.extend(_walk(path))
            else:
                paths.append(path)
    return paths, warnings


def _expand(decl: ResourceDeclaration, root: Path, warnings: list):
    globbed = is_glob(decl.source)
    for path, declared in _matches(decl.source, root, warnings):
        if not decl.mapped:
            base = resource_relpath(PurePath(declared))
        elif decl.dest is None:
            base = PurePosixPath(path.name)
        elif globbed:
            base = resource_relpath(PurePosixPath(decl.dest)) / path.name
        else:
            base = resource_relpath(PurePosixPath(decl.dest))
        if path.is_dir():
            for f in _walk(path):
                yield f, base / f.relative_to(path).as_posix()
        else:
            yield path, base


def collect_resources(declarations, project_dir: Path) -> ResourceCollection:
    """Expand declarations into an ordered list of ResourceMappings.

    Directories are included recursively. On a destination collision the
    last declaration wins and takes the later position in the list.
    """
    root = Path(project_dir)
    warnings = []
    collected = {}
    for decl in declarations:
        for src, dest in _expand(decl, root, warnings):
            collected.pop(dest, None)
            collected[dest] = src
    mappings = [ResourceMapping(src, dest) for dest, src in collected.items()]
    return ResourceCollection(mappings, warnings)
