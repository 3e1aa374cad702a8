"""
appbundle — iOS .app packager

An iOS bundle is flat:

  Foobar.app/
    foobar            the main executable
    Info.plist        app metadata
    icon_*.png        icons listed under CFBundleIconFiles
    Resources/        bundled resources

The result is what a simulator or device install step consumes; installing
and launching are left to that external service.
"""

import plistlib
from pathlib import Path

from .common import StagingArea, copy_file, log, make_executable, print_bundling, write_file


def info_plist(spec, icon_files) -> bytes:
    plist = {
        "CFBundleDevelopmentRegion": "en",
        "CFBundleDisplayName": spec.name,
        "CFBundleExecutable": spec.binary_name,
        "CFBundleIdentifier": spec.identifier,
        "CFBundleInfoDictionaryVersion": "6.0",
        "CFBundleName": spec.name,
        "CFBundlePackageType": "APPL",
        "CFBundleShortVersionString": spec.version,
        "CFBundleVersion": spec.version,
        # True for every iOS app, iPad-only ones included.
        "LSRequiresIPhoneOS": True,
    }
    if icon_files:
        plist["CFBundleIconFiles"] = list(icon_files)
    if spec.copyright:
        plist["NSHumanReadableCopyright"] = spec.copyright
    if spec.osx.url_schemes:
        plist["CFBundleURLTypes"] = [{
            "CFBundleURLName": spec.identifier,
            "CFBundleURLSchemes": list(spec.osx.url_schemes),
        }]
    return plistlib.dumps(plist, sort_keys=True)


def bundle_project(ctx) -> Path:
    spec = ctx.spec
    app_name = f"{spec.name}.app"
    print_bundling(app_name)

    with StagingArea(ctx.out_dir, ctx.keep_staging) as stage:
        bundle_dir = stage.path / app_name
        bundle_dir.mkdir(parents=True)

        for mapping in ctx.resources:
            copy_file(mapping.source, bundle_dir / "Resources" / mapping.dest)

        icon_names = []
        for icon in ctx.icon_files:
            write_file(bundle_dir / icon.name, icon.data)
            icon_names.append(icon.name)
        if icon_names:
            log(f"Icons: {len(icon_names)} file(s)")

        write_file(bundle_dir / "Info.plist", info_plist(spec, icon_names))
        log(f"Info.plist: {spec.name} ({spec.identifier})")

        binary = bundle_dir / spec.binary_name
        copy_file(ctx.binary_path, binary)
        make_executable(binary)

        stage.populated()
        return stage.finalize(bundle_dir)
