"""
appbundle — Windows MSI packager

Generates a WiX v4 installer definition (installer.wxs) and an SDK-style
project (installer.wixproj) in the staging area, then builds the MSI with
`dotnet build`. The UpgradeCode is derived from the bundle identifier so
every release of the same app upgrades the previous one.

DLLs sitting next to the binary are installed beside it. The installer shows
the WixUI_InstallDir dialogs with License.rtf, taken from Cargo's
`license-file`, a conventional LICENSE file in the project, or a one-line
MIT notice.
"""

import hashlib
import re
import uuid
import xml.etree.ElementTree as ET
from pathlib import Path, PurePosixPath

from .common import StagingArea, copy_file, log, print_bundling, write_file
from .errors import PackagingToolFailed, ResourceNotFound

WIX_NAMESPACE = "http://wixtoolset.org/schemas/v4/wxs"
WIX_UI_NAMESPACE = "http://wixtoolset.org/schemas/v4/wxs/ui"
WIX_VERSION = "6.0.2"
WIX_SDK = f"WixToolset.Sdk/{WIX_VERSION}"
WIX_UI_EXTENSION = "WixToolset.UI.wixext"

LICENSE_FILES = (
    "License_MIT.md", "License_Apache.md", "LICENSE", "LICENSE_MIT", "LICENSE_APACHE",
    "LICENSE.txt", "LICENSE-MIT", "LICENSE-APACHE", "COPYING",
)
DEFAULT_LICENSE = "This software is licensed under the MIT License."

# Namespace for v5 UUIDs derived from bundle identifiers. Never change it:
# doing so breaks upgrades of every installed product.
UUID_NAMESPACE = uuid.UUID(bytes=bytes([
    0xfd, 0x85, 0x95, 0xa8, 0x17, 0xa3, 0x47, 0x4e,
    0xa6, 0x16, 0x76, 0x14, 0x8d, 0xfa, 0x0c, 0x7b,
]))


def stable_guid(*parts: str) -> str:
    return str(uuid.uuid5(UUID_NAMESPACE, "".join(parts))).upper()


def product_guid(identifier: str) -> str:
    return stable_guid(identifier)


def output_name(spec) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "-", spec.name).strip("-") or spec.binary_name


def msi_version(version: str) -> str:
    """MSI accepts up to four numeric fields; drop pre-release/build suffixes."""
    m = re.match(r"\d+(\.\d+){0,3}", version or "")
    return m.group(0) if m else "0.0.0"


def _wix_id(prefix: str, path: PurePosixPath) -> str:
    # Ids are limited to 72 chars of [A-Za-z0-9_.].
    return f"{prefix}_{hashlib.sha1(path.as_posix().encode()).hexdigest()[:16]}"


def _sub(parent, tag, **attrs):
    return ET.SubElement(parent, tag, {k: v for k, v in attrs.items() if v is not None})


# ─── License ─────────────────────────────────────────────────────────────────

def find_license(spec, project_dir: Path) -> str:
    """Text shown on the installer's license page."""
    if spec.license_file:
        path = Path(project_dir) / spec.license_file
        if not path.is_file():
            raise ResourceNotFound(path, "License file")
        return path.read_text(encoding="utf-8", errors="replace")
    for name in LICENSE_FILES:
        path = Path(project_dir) / name
        if path.is_file():
            return path.read_text(encoding="utf-8", errors="replace")
    return DEFAULT_LICENSE


def license_rtf(text: str) -> str:
    out = []
    for ch in text.replace("\r\n", "\n"):
        if ch in "\\{}":
            out.append("\\" + ch)
        elif ch == "\n":
            out.append("\\par\n")
        elif ord(ch) < 0x80:
            out.append(ch)
        else:
            # \uN takes signed 16-bit UTF-16 code units, each followed by a fallback char.
            units = ch.encode("utf-16-le")
            for i in range(0, len(units), 2):
                unit = int.from_bytes(units[i:i + 2], "little", signed=True)
                out.append(f"\\u{unit}?")
    return "{\\rtf1\\ansi\\deff0\n{\\fonttbl{\\f0 Arial;}}\n\\fs20\n" + "".join(out) + "\n}\n"


# ─── Payload ─────────────────────────────────────────────────────────────────

def find_dlls(binary: Path) -> list:
    """DLLs built or copied next to the executable, by name."""
    return sorted((p for p in Path(binary).parent.iterdir()
                   if p.is_file() and p.suffix.lower() == ".dll"),
                  key=lambda p: p.name.lower())


# ─── Installer definition ────────────────────────────────────────────────────

def generate_wxs(spec, binary: Path, resources, icon: Path = None, dlls=(),
                 license_file: Path = None) -> str:
    """resources: [(staged source path, destination relative to the install dir)]"""
    manufacturer = spec.authors_comma_separated or spec.name
    exe_name = f"{spec.binary_name}.exe"
    icon_id = "AppIcon.ico" if icon is not None else None
    registry_key = f"Software\\{manufacturer}\\{spec.name}"

    wix = ET.Element("Wix", {"xmlns": WIX_NAMESPACE, "xmlns:ui": WIX_UI_NAMESPACE})
    package = _sub(wix, "Package", Name=spec.name, Manufacturer=manufacturer,
                   Version=msi_version(spec.version), UpgradeCode=product_guid(spec.identifier),
                   Language="1033", Scope="perMachine")
    _sub(package, "MajorUpgrade",
         DowngradeErrorMessage=f"A newer version of {spec.name} is already installed.")
    _sub(package, "MediaTemplate", EmbedCab="yes")
    if icon is not None:
        _sub(package, "Icon", Id=icon_id, SourceFile=str(icon))
        _sub(package, "Property", Id="ARPPRODUCTICON", Value=icon_id)
    if spec.homepage:
        _sub(package, "Property", Id="ARPURLINFOABOUT", Value=spec.homepage)

    # ── Install folder ───────────────────────────────────────────────────────

    component_ids = ["MainExecutable"]
    program_files = _sub(package, "StandardDirectory", Id="ProgramFiles6432Folder")
    install_dir = _sub(program_files, "Directory", Id="INSTALLFOLDER", Name=spec.name)
    main = _sub(install_dir, "Component", Id="MainExecutable")
    _sub(main, "File", Id="MainExecutableFile", Name=exe_name, Source=str(binary), KeyPath="yes")

    for dll in dlls:
        component_id = _wix_id("Dll", PurePosixPath(dll.name.lower()))
        component = _sub(install_dir, "Component", Id=component_id)
        _sub(component, "File", Name=dll.name, Source=str(dll), KeyPath="yes")
        component_ids.append(component_id)

    directories = {PurePosixPath("."): install_dir}
    for source, dest in resources:
        parent = directories[PurePosixPath(".")]
        for depth in range(1, len(dest.parts)):
            sub_path = PurePosixPath(*dest.parts[:depth])
            if sub_path not in directories:
                directories[sub_path] = _sub(parent, "Directory", Id=_wix_id("Dir", sub_path),
                                             Name=dest.parts[depth - 1])
            parent = directories[sub_path]
        component_id = _wix_id("Res", dest)
        component = _sub(parent, "Component", Id=component_id)
        _sub(component, "File", Name=dest.name, Source=str(source), KeyPath="yes")
        component_ids.append(component_id)

    # ── Shortcuts ────────────────────────────────────────────────────────────

    program_menu = _sub(package, "StandardDirectory", Id="ProgramMenuFolder")
    menu_dir = _sub(program_menu, "Directory", Id="ApplicationProgramsFolder", Name=spec.name)
    shortcut = _sub(menu_dir, "Component", Id="ApplicationShortcut",
                    Guid=stable_guid(spec.identifier, "ProgramMenuFolder"))
    _sub(shortcut, "Shortcut", Id="ApplicationStartMenuShortcut", Name=spec.name,
         Description=spec.short_description or None, Target="[#MainExecutableFile]",
         WorkingDirectory="INSTALLFOLDER", Icon=icon_id)
    _sub(shortcut, "RemoveFolder", Id="RemoveApplicationProgramsFolder", On="uninstall")
    _sub(shortcut, "RegistryValue", Root="HKCU", Key=registry_key,
         Name="installed", Type="integer", Value="1", KeyPath="yes")
    component_ids.append("ApplicationShortcut")

    desktop = _sub(package, "StandardDirectory", Id="DesktopFolder")
    desktop_shortcut = _sub(desktop, "Component", Id="DesktopFolderShortcut",
                            Guid=stable_guid(spec.identifier, "DesktopFolderShortcut"))
    _sub(desktop_shortcut, "Shortcut", Id="DesktopShortcut", Name=spec.name,
         Description=spec.short_description or None, Target="[#MainExecutableFile]",
         WorkingDirectory="INSTALLFOLDER", Icon=icon_id)
    _sub(desktop_shortcut, "RegistryValue", Root="HKCU", Key=registry_key,
         Name="desktopShortcut", Type="integer", Value="1", KeyPath="yes")
    component_ids.append("DesktopFolderShortcut")

    feature = _sub(package, "Feature", Id="ProductFeature", Title=spec.name, Level="1")
    for component_id in component_ids:
        _sub(feature, "ComponentRef", Id=component_id)

    # ── Installer UI ─────────────────────────────────────────────────────────

    if license_file is not None:
        _sub(package, "ui:WixUI", Id="WixUI_InstallDir")
        _sub(package, "Property", Id="WIXUI_INSTALLDIR", Value="INSTALLFOLDER")
        _sub(package, "Property", Id="WIXUI_EXITDIALOGOPTIONALCHECKBOXTEXT", Value=f"Launch {spec.name}")
        _sub(package, "Property", Id="WIXUI_EXITDIALOGOPTIONALCHECKBOX", Value="1")
        _sub(package, "CustomAction", Id="LaunchApplication", Directory="INSTALLFOLDER",
             ExeCommand="[#MainExecutableFile]", Execute="immediate", Return="asyncNoWait")
        ui = _sub(package, "UI")
        _sub(ui, "Publish", Dialog="ExitDialog", Control="Finish", Event="DoAction",
             Value="LaunchApplication", Condition="WIXUI_EXITDIALOGOPTIONALCHECKBOX = 1 and NOT Installed")
        _sub(package, "WixVariable", Id="WixUILicenseRtf", Value=str(license_file))

    ET.indent(wix, space="  ")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(wix, encoding="unicode") + "\n"


def generate_wixproj(spec) -> str:
    project = ET.Element("Project", Sdk=WIX_SDK)
    group = _sub(project, "PropertyGroup")
    _sub(group, "OutputName").text = output_name(spec)
    items = _sub(project, "ItemGroup")
    _sub(items, "PackageReference", Include=WIX_UI_EXTENSION, Version=WIX_VERSION)
    ET.indent(project, space="  ")
    return ET.tostring(project, encoding="unicode") + "\n"


def bundle_project(ctx) -> Path:
    spec = ctx.spec
    name = output_name(spec)
    print_bundling(f"{name}.msi")
    configuration = "Release" if ctx.profile == "release" else "Debug"

    with StagingArea(ctx.out_dir, ctx.keep_staging) as stage:
        work = stage.path
        payload = work / "payload"

        # ── 1. Payload ───────────────────────────────────────────────────────

        binary = payload / f"{spec.binary_name}.exe"
        copy_file(ctx.binary_path, binary)
        dlls = []
        for dll in find_dlls(ctx.binary_path):
            dlls.append(payload / dll.name)
            copy_file(dll, dlls[-1])
        if dlls:
            log(f"DLLs: {', '.join(d.name for d in dlls)}")
        staged = []
        for mapping in ctx.resources:
            target = payload / "resources" / mapping.dest
            copy_file(mapping.source, target)
            staged.append((target, mapping.dest))

        icon = None
        for generated in ctx.icon_files:
            icon = work / generated.name
            write_file(icon, generated.data)

        license_file = work / "License.rtf"
        write_file(license_file, license_rtf(find_license(spec, ctx.project_dir)))

        # ── 2. Installer definition ──────────────────────────────────────────

        write_file(work / "installer.wxs", generate_wxs(spec, binary, staged, icon, dlls, license_file))
        write_file(work / "installer.wixproj", generate_wixproj(spec))
        log(f"Installer: {spec.name} (UpgradeCode {product_guid(spec.identifier)})")

        stage.populated()
        ctx.runner(["dotnet", "build", work / "installer.wixproj", "-c", configuration], cwd=work)
        produced = work / "bin" / configuration / f"{name}.msi"
        if not produced.exists():
            raise PackagingToolFailed("dotnet", 0, f"expected installer was not produced: {produced}")
        return stage.finalize(produced)
