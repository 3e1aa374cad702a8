"""
appbundle — Bundle pipeline

Compiles the binary with cargo, resolves bundle.yaml against Cargo.toml,
collects resources and converts icons side by side, then hands everything to
the packager for the selected format.

Settings resolve CLI options > bundle.yaml > Cargo.toml > defaults.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from . import deb, ios, msi, osx
from .common import BundleContext, log, print_finished, run
from .errors import ResourceNotFound, UnsupportedFormat
from .icons import convert_icons, load_icon_set
from .resources import collect_resources, expand_paths
from .settings import (
    PackageFormat, load_manifest, load_project, resolve_bundle_spec, target_arch, target_os,
)

PACKAGERS = {
    PackageFormat.OSX: osx.bundle_project,
    PackageFormat.IOS: ios.bundle_project,
    PackageFormat.DEB: deb.bundle_project,
    PackageFormat.MSI: msi.bundle_project,
}

OUT_SUBDIRS = {
    PackageFormat.OSX: "osx",
    PackageFormat.IOS: "ios",
    PackageFormat.DEB: "deb",
    PackageFormat.MSI: "msi",
}


@dataclass
class BuildOptions:
    format: PackageFormat = None
    bin: str = None
    example: str = None
    release: bool = False
    profile: str = None
    target: str = None
    features: str = None
    all_features: bool = False
    no_default_features: bool = False
    no_build: bool = False
    keep_staging: bool = False
    target_dir: Path = None

    @property
    def profile_name(self) -> str:
        return self.profile or ("release" if self.release else "debug")


@dataclass
class BuildResult:
    artifact: Path
    format: PackageFormat
    warnings: list = field(default_factory=list)
    icon_records: list = field(default_factory=list)


# ─── Format & paths ──────────────────────────────────────────────────────────

def package_format(options: BuildOptions) -> PackageFormat:
    """Explicit --format, else the native format of the target (or host) OS."""
    fmt = options.format or PackageFormat.for_os(target_os(options.target))
    if fmt not in PACKAGERS:
        raise UnsupportedFormat(f"{fmt.value} bundles are not yet supported.")
    return fmt


def profile_dir(profile: str) -> str:
    if profile in ("dev", "test", "debug"):
        return "debug"
    if profile == "bench":
        return "release"
    return profile


def target_dir(project_dir: Path, options: BuildOptions) -> Path:
    base = Path(options.target_dir or os.environ.get("CARGO_TARGET_DIR") or "target")
    if not base.is_absolute():
        base = project_dir / base
    if options.target:
        base = base / options.target
    return base / profile_dir(options.profile_name)


def binary_path(project_dir: Path, options: BuildOptions, binary_name: str) -> Path:
    out = target_dir(project_dir, options)
    if options.example:
        out = out / "examples"
    if target_os(options.target) == "windows":
        binary_name += ".exe"
    return out / binary_name


# ─── Steps ───────────────────────────────────────────────────────────────────

def cargo_build_command(options: BuildOptions) -> list:
    cmd = ["cargo", "build"]
    if options.profile:
        cmd += ["--profile", options.profile]
    elif options.release:
        cmd.append("--release")
    if options.target:
        cmd += ["--target", options.target]
    if options.example:
        cmd += ["--example", options.example]
    elif options.bin:
        cmd += ["--bin", options.bin]
    if options.features:
        cmd += ["--features", options.features]
    if options.all_features:
        cmd.append("--all-features")
    if options.no_default_features:
        cmd.append("--no-default-features")
    return cmd


def prepare_icons(patterns, project_dir: Path, fmt: PackageFormat):
    """Expand icon globs, decode sources and convert for fmt."""
    paths, warnings = expand_paths(patterns, project_dir)
    output = convert_icons(load_icon_set(paths), fmt)
    output.warnings[:0] = warnings
    return output


def bundle(project_dir: Path, options: BuildOptions = None, runner=run) -> BuildResult:
    """Build one bundle and return where it landed."""
    options = options or BuildOptions()
    project_dir = Path(project_dir).resolve()
    fmt = package_format(options)

    # ── 1. Binary ────────────────────────────────────────────────────────────

    project = load_project(project_dir, options.example or options.bin)
    if not options.no_build:
        runner(cargo_build_command(options), cwd=project_dir)
    binary = binary_path(project_dir, options, project.binary_name)
    if not binary.exists():
        raise ResourceNotFound(binary, "Binary")
    log(f"Binary: {binary}")

    # ── 2. Manifest ──────────────────────────────────────────────────────────

    spec = resolve_bundle_spec(project, load_manifest(project_dir))
    log(f"Bundle: {spec.name} v{spec.version} ({spec.identifier})")

    # ── 3. Resources & icons ─────────────────────────────────────────────────
    # Disjoint inputs and outputs; the packager waits for both.

    with ThreadPoolExecutor(max_workers=2) as pool:
        resources_job = pool.submit(collect_resources, spec.resources, project_dir)
        icons_job = pool.submit(prepare_icons, spec.icon, project_dir, fmt)
        collection = resources_job.result()
        icons = icons_job.result()

    # ── 4. Package ───────────────────────────────────────────────────────────

    ctx = BundleContext(
        spec=spec,
        binary_path=binary,
        project_dir=project_dir,
        out_dir=target_dir(project_dir, options) / "bundle" / OUT_SUBDIRS[fmt],
        resources=collection.mappings,
        icon_files=icons.files,
        arch=target_arch(options.target),
        profile=options.profile_name,
        runner=runner,
        keep_staging=options.keep_staging,
    )
    artifact = PACKAGERS[fmt](ctx)
    print_finished([artifact])
    return BuildResult(artifact, fmt, collection.warnings + icons.warnings, icons.records)
