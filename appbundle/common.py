"""
appbundle — shared helpers

Console output, the native-tool boundary, file helpers and the staging area
every packager assembles its artifact in.
"""

import enum
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from .errors import BundleError, FilesystemError, PackagingToolFailed, PackagingToolUnavailable


# ─── Console ─────────────────────────────────────────────────────────────────

def log(msg: str):
    print(f"  {msg}", flush=True)


def warn(msg: str) -> str:
    """Print a non-fatal warning and return it so callers can record it."""
    print(f"  WARNING: {msg}", flush=True)
    return msg


def print_bundling(filename: str):
    print(f"\n{'='*60}")
    print(f"  Bundling {filename}")
    print(f"{'='*60}")


def print_finished(paths: list):
    noun = "bundle" if len(paths) == 1 else "bundles"
    print(f"\n{'='*60}")
    print(f"  Finished {len(paths)} {noun} at:")
    for path in paths:
        print(f"    {path}")
    print(f"{'='*60}\n")


# ─── Native tools ────────────────────────────────────────────────────────────

def run(cmd, cwd=None):
    """Run a native tool and return the completed process.

    Output is captured and decoded as UTF-8, with undecodable bytes replaced
    by U+FFFD. A non-zero exit raises PackagingToolFailed carrying the tool's
    stderr. Packagers receive this function as ctx.runner.
    """
    cmd = [str(c) for c in cmd]
    tool = cmd[0]
    print(f"  $ {' '.join(cmd)}", flush=True)
    if shutil.which(tool) is None:
        raise PackagingToolUnavailable(tool)
    try:
        result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True,
                                encoding="utf-8", errors="replace")
    except FileNotFoundError:
        raise PackagingToolUnavailable(tool)
    if result.returncode != 0:
        raise PackagingToolFailed(tool, result.returncode, result.stderr)
    return result


# ─── Files ───────────────────────────────────────────────────────────────────

def copy_file(src: Path, dest: Path):
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)
    except OSError as e:
        raise FilesystemError("copy", f"{src} -> {dest}", e)


def copy_tree(src: Path, dest: Path):
    try:
        shutil.copytree(src, dest, symlinks=True, dirs_exist_ok=True)
    except OSError as e:
        raise FilesystemError("copy", f"{src} -> {dest}", e)


def write_file(path: Path, data):
    """Create parent directories as needed and write str or bytes to path."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, bytes):
            path.write_bytes(data)
        else:
            path.write_text(data, encoding="utf-8")
    except OSError as e:
        raise FilesystemError("write", path, e)


def make_executable(path: Path):
    mode = path.stat().st_mode
    path.chmod(mode | 0o111)


# ─── Staging ─────────────────────────────────────────────────────────────────

class StageState(enum.Enum):
    STAGING = "staging"
    POPULATED = "populated"
    FINALIZED = "finalized"
    FAILED = "failed"


class StagingArea:
    """Exclusively-owned temporary tree an artifact is assembled in.

    Created inside the output directory so finalization is a rename on the
    same filesystem. STAGING -> POPULATED -> FINALIZED on success; any
    exception moves to FAILED and the tree is discarded unless keep_on_failure
    is set. The previous artifact at the output location is only replaced by
    finalize().
    """

    def __init__(self, out_dir: Path, keep_on_failure=False):
        self.out_dir = Path(out_dir)
        self.keep_on_failure = keep_on_failure
        self.path = None
        self.state = None

    def __enter__(self):
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
            self.path = Path(tempfile.mkdtemp(prefix=".staging-", dir=self.out_dir))
        except OSError as e:
            raise FilesystemError("create staging directory in", self.out_dir, e)
        self.state = StageState.STAGING
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.state = StageState.FAILED
            if self.keep_on_failure:
                log(f"Staging directory kept for inspection: {self.path}")
            else:
                shutil.rmtree(self.path, ignore_errors=True)
            if isinstance(exc, OSError) and not isinstance(exc, BundleError):
                raise FilesystemError("assemble bundle in", self.path, exc) from exc
            return False
        if self.state is not StageState.FINALIZED:
            self.state = StageState.FAILED
            shutil.rmtree(self.path, ignore_errors=True)
            raise BundleError(f"Staging area {self.path} was never finalized")
        shutil.rmtree(self.path, ignore_errors=True)
        return False

    def populated(self):
        if self.state is not StageState.STAGING:
            raise BundleError(f"Cannot mark staging area populated from state {self.state.value}")
        self.state = StageState.POPULATED

    def finalize(self, produced: Path) -> Path:
        """Move the finished artifact into the output directory and return its path."""
        if self.state is not StageState.POPULATED:
            raise BundleError(f"Cannot finalize staging area from state {self.state.value}")
        dest = self.out_dir / produced.name
        previous = None
        try:
            if dest.is_dir() and not dest.is_symlink():
                # Directories can't be replaced in one rename; park the old one
                # inside the staging tree so it goes away with it.
                previous = self.path / f".previous-{dest.name}"
                os.replace(dest, previous)
            try:
                os.replace(produced, dest)
            except OSError:
                if previous is not None:
                    os.replace(previous, dest)
                raise
        except OSError as e:
            raise FilesystemError("finalize", dest, e)
        self.state = StageState.FINALIZED
        return dest


# ─── Packager input ──────────────────────────────────────────────────────────

@dataclass
class BundleContext:
    """Everything a packager reads. Packagers own only ctx.out_dir."""
    spec: object
    binary_path: Path
    project_dir: Path
    out_dir: Path
    resources: list = field(default_factory=list)
    icon_files: list = field(default_factory=list)
    arch: str = ""
    profile: str = "debug"
    runner: Callable = run
    keep_staging: bool = False
