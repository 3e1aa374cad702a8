"""
appbundle — macOS .app packager

An OSX bundle is laid out like:

  Foobar.app/
    Contents/
      Info.plist      app metadata
      MacOS/          the main executable
      Resources/      icon and bundled resources
      Frameworks/     private frameworks and dylibs
"""

import plistlib
from pathlib import Path

from .common import StagingArea, copy_file, copy_tree, log, make_executable, print_bundling, write_file
from .errors import InvalidFieldValue, ResourceNotFound

FRAMEWORK_SEARCH_DIRS = [
    Path("~/Library/Frameworks").expanduser(),
    Path("/Library/Frameworks"),
    Path("/Network/Library/Frameworks"),
]


def info_plist(spec, icon_file: str = None) -> bytes:
    plist = {
        "CFBundleDevelopmentRegion": "English",
        "CFBundleDisplayName": spec.name,
        "CFBundleExecutable": spec.binary_name,
        "CFBundleIdentifier": spec.identifier,
        "CFBundleInfoDictionaryVersion": "6.0",
        "CFBundleName": spec.name,
        "CFBundlePackageType": "APPL",
        "CFBundleShortVersionString": spec.version,
        "CFBundleVersion": spec.version,
        "CSResourcesFileMapped": True,
        "LSRequiresCarbon": True,
        "NSHighResolutionCapable": True,
    }
    if icon_file:
        plist["CFBundleIconFile"] = icon_file
    if spec.copyright:
        plist["NSHumanReadableCopyright"] = spec.copyright
    if spec.category:
        plist["LSApplicationCategoryType"] = spec.category.apple_uti
    if spec.osx.minimum_system_version:
        plist["LSMinimumSystemVersion"] = spec.osx.minimum_system_version
    if spec.osx.url_schemes:
        plist["CFBundleURLTypes"] = [{
            "CFBundleURLName": spec.identifier,
            "CFBundleURLSchemes": list(spec.osx.url_schemes),
        }]
    return plistlib.dumps(plist, sort_keys=True)


def _locate_framework(entry: str, project_dir: Path) -> Path:
    """Find a framework by path (.framework / .dylib) or by name in the system dirs."""
    if entry.endswith((".framework", ".dylib")):
        path = Path(entry).expanduser()
        if not path.is_absolute():
            path = project_dir / path
        if not path.exists():
            raise ResourceNotFound(path, "Framework")
        return path
    if "/" in entry:
        raise InvalidFieldValue("osx_frameworks", f"{entry!r} should end in .framework or .dylib")
    for search_dir in FRAMEWORK_SEARCH_DIRS:
        candidate = search_dir / f"{entry}.framework"
        if candidate.exists():
            return candidate
    raise ResourceNotFound(f"{entry}.framework", "Framework")


def copy_frameworks(frameworks, project_dir: Path, dest_dir: Path) -> int:
    """Copy declared frameworks into dest_dir. Returns how many were copied."""
    for entry in frameworks:
        src = _locate_framework(entry, project_dir)
        if src.is_dir():
            copy_tree(src, dest_dir / src.name)
        else:
            copy_file(src, dest_dir / src.name)
        log(f"Framework: {src.name}")
    return len(frameworks)


def bundle_project(ctx) -> Path:
    spec = ctx.spec
    app_name = f"{spec.name}.app"
    print_bundling(app_name)

    with StagingArea(ctx.out_dir, ctx.keep_staging) as stage:
        bundle_path = stage.path / app_name
        contents = bundle_path / "Contents"
        macos_dir = contents / "MacOS"
        resources_dir = contents / "Resources"
        frameworks_dir = contents / "Frameworks"
        for d in (macos_dir, resources_dir, frameworks_dir):
            d.mkdir(parents=True, exist_ok=True)

        # ── 1. Icon ──────────────────────────────────────────────────────────

        icon_file = None
        for icon in ctx.icon_files:
            write_file(resources_dir / icon.name, icon.data)
            icon_file = icon.name
            log(f"Icon: {icon.name}")

        # ── 2. Info.plist ────────────────────────────────────────────────────

        write_file(contents / "Info.plist", info_plist(spec, icon_file))
        log(f"Info.plist: {spec.name} ({spec.identifier})")

        # ── 3. Resources ─────────────────────────────────────────────────────

        for mapping in ctx.resources:
            copy_file(mapping.source, resources_dir / mapping.dest)
        if ctx.resources:
            log(f"Resources: {len(ctx.resources)} file(s)")

        # ── 4. Executable ────────────────────────────────────────────────────

        binary = macos_dir / spec.binary_name
        copy_file(ctx.binary_path, binary)
        make_executable(binary)

        # ── 5. Frameworks ────────────────────────────────────────────────────

        copied = copy_frameworks(spec.osx.frameworks, ctx.project_dir, frameworks_dir)

        stage.populated()
        if copied:
            ctx.runner(["install_name_tool", "-add_rpath",
                        "@executable_path/../Frameworks", binary])
        return stage.finalize(bundle_path)
