"""
appbundle — Debian package packager

The staging tree handed to dpkg-deb looks like:

  foobar_1.2.3_amd64/
    DEBIAN/control                                  package metadata
    DEBIAN/md5sums                                  checksums of the files below
    usr/bin/foobar                                  the executable
    usr/lib/foobar/...                              bundle resources
    usr/share/applications/foobar.desktop           desktop entry
    usr/share/icons/hicolor/NxN/apps/foobar.png     icon
"""

import hashlib
import re
from pathlib import Path

from .common import StagingArea, copy_file, log, make_executable, print_bundling, write_file

DEB_ARCHES = {
    "x86": "i386",
    "x86_64": "amd64",
    # 32-bit ARM is packaged as armhf; armel is not supported.
    "arm": "armhf",
    "aarch64": "arm64",
}


def debian_arch(arch: str) -> str:
    return DEB_ARCHES.get(arch, arch)


def _debian_name(text: str) -> str:
    # Lowercase letters, digits, "+", "-" and "."; must start alphanumeric.
    return re.sub(r"[^a-z0-9+.-]+", "-", text.lower()).lstrip("+-.").rstrip("-")


def package_name(spec) -> str:
    return _debian_name(spec.name) or _debian_name(spec.binary_name) or "app"


def generate_desktop_file(spec, has_icon: bool) -> str:
    # https://specifications.freedesktop.org/desktop-entry-spec/latest/
    exec_line = spec.binary_name
    if spec.linux.exec_args:
        exec_line += f" {spec.linux.exec_args}"
    lines = ["[Desktop Entry]"]
    if spec.category:
        lines.append(f"Categories={spec.category.desktop_categories}")
    if spec.short_description:
        lines.append(f"Comment={spec.short_description}")
    lines.append(f"Exec={exec_line}")
    if has_icon:
        lines.append(f"Icon={spec.binary_name}")
    lines.append(f"Name={spec.name}")
    lines.append(f"Terminal={'true' if spec.linux.use_terminal else 'false'}")
    lines.append("Type=Application")
    if spec.linux.mime_types:
        lines.append("MimeType=" + "".join(f"{m};" for m in spec.linux.mime_types))
    return "\n".join(lines) + "\n"


def generate_control_file(spec, arch: str, installed_size_kib: int) -> str:
    # https://www.debian.org/doc/debian-policy/ch-controlfields.html
    lines = [
        f"Package: {package_name(spec)}",
        f"Version: {spec.version}",
        f"Architecture: {arch}",
        f"Installed-Size: {installed_size_kib}",
        f"Maintainer: {spec.authors_comma_separated}",
    ]
    if spec.homepage:
        lines.append(f"Homepage: {spec.homepage}")
    if spec.deb.depends:
        lines.append(f"Depends: {', '.join(spec.deb.depends)}")
    short = spec.short_description.strip() or "(none)"
    long = spec.long_description.strip() or "(none)"
    lines.append(f"Description: {short}")
    for line in long.splitlines():
        line = line.strip()
        lines.append(f" {line}" if line else " .")
    return "\n".join(lines) + "\n"


def _data_files(root: Path) -> list:
    return sorted(p for p in root.rglob("*")
                  if p.is_file() and p.relative_to(root).parts[0] != "DEBIAN")


def installed_size_kib(root: Path) -> int:
    total = sum(p.stat().st_size for p in _data_files(root))
    return (total + 1023) // 1024


def generate_md5sums(root: Path) -> str:
    lines = []
    for path in _data_files(root):
        digest = hashlib.md5(path.read_bytes()).hexdigest()
        lines.append(f"{digest}  {path.relative_to(root).as_posix()}")
    return "".join(f"{line}\n" for line in lines)


def bundle_project(ctx) -> Path:
    spec = ctx.spec
    arch = debian_arch(ctx.arch)
    base_name = f"{package_name(spec)}_{spec.version}_{arch}"
    print_bundling(f"{base_name}.deb")

    with StagingArea(ctx.out_dir, ctx.keep_staging) as stage:
        root = stage.path / base_name

        # ── 1. Executable ────────────────────────────────────────────────────

        binary = root / "usr" / "bin" / spec.binary_name
        copy_file(ctx.binary_path, binary)
        make_executable(binary)

        # ── 2. Resources ─────────────────────────────────────────────────────

        resource_root = root / "usr" / "lib" / spec.binary_name
        for mapping in ctx.resources:
            copy_file(mapping.source, resource_root / mapping.dest)
        if ctx.resources:
            log(f"Resources: {len(ctx.resources)} file(s) -> /usr/lib/{spec.binary_name}")

        # ── 3. Icon & desktop entry ──────────────────────────────────────────

        hicolor = root / "usr" / "share" / "icons" / "hicolor"
        for icon in ctx.icon_files:
            size = f"{icon.pixels}x{icon.pixels}"
            write_file(hicolor / size / "apps" / f"{spec.binary_name}.png", icon.data)
            log(f"Icon: {size}")
        desktop = root / "usr" / "share" / "applications" / f"{spec.binary_name}.desktop"
        write_file(desktop, generate_desktop_file(spec, bool(ctx.icon_files)))

        # ── 4. Control files ─────────────────────────────────────────────────

        control = generate_control_file(spec, arch, installed_size_kib(root))
        md5sums = generate_md5sums(root)
        write_file(root / "DEBIAN" / "control", control)
        write_file(root / "DEBIAN" / "md5sums", md5sums)
        log(f"Control: {package_name(spec)} {spec.version} ({arch})")

        stage.populated()
        deb_path = stage.path / f"{base_name}.deb"
        ctx.runner(["dpkg-deb", "--root-owner-group", "--build", root, deb_path])
        return stage.finalize(deb_path)
