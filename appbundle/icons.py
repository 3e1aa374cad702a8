"""
appbundle — icon conversion

Turns the manifest's icon images into what each target needs:

  osx   AppIcon.icns with 16..512 pt at 1x and 2x
  ios   icon_<pt>x<pt>[@Nx].png files listed in Info.plist
  deb   one hicolor PNG, the largest standard size the sources can fill
  msi   AppIcon.ico with 16..256 px frames

For every required size the converter prefers a source with the exact pixel
size (and matching @Nx scale); those pass through unscaled. Otherwise the
largest source is resized with a fixed LANCZOS filter, so identical inputs
give identical bytes. Upscaling is allowed but reported as a warning, as is
a non-square source, which is cropped to its centred square first.
"""

import io
import re
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from .common import warn
from .errors import ResourceNotFound, UnsupportedIconFormat
from .settings import PackageFormat

RESAMPLE = Image.Resampling.LANCZOS


@dataclass(frozen=True)
class IconSize:
    points: int
    scale: int = 1

    @property
    def pixels(self) -> int:
        return self.points * self.scale

    @property
    def suffix(self) -> str:
        return "" if self.scale == 1 else f"@{self.scale}x"


def _sizes(points, scales):
    return tuple(IconSize(p, s) for p in points for s in scales)


REQUIRED_SIZES = {
    PackageFormat.OSX: _sizes((16, 32, 128, 256, 512), (1, 2)),
    PackageFormat.IOS: _sizes((20, 29, 40, 60), (2, 3)) + _sizes((76,), (1, 2)) + (IconSize(1024),),
    PackageFormat.DEB: _sizes((16, 24, 32, 48, 64, 128, 256, 512), (1,)),
    PackageFormat.MSI: _sizes((16, 24, 32, 48, 64, 128, 256), (1,)),
}


@dataclass(frozen=True)
class IconSource:
    path: Path
    scale: int
    size: tuple

    @property
    def pixels(self) -> int:
        return min(self.size)


@dataclass(frozen=True)
class IconSet:
    sources: tuple = ()

    def largest(self) -> IconSource:
        return max(self.sources, key=lambda s: s.pixels)


@dataclass(frozen=True)
class IconRecord:
    """How one required resolution was produced."""
    size: IconSize
    source: Path
    synthesized: bool
    upscaled: bool = False


@dataclass(frozen=True)
class GeneratedIcon:
    name: str
    data: bytes
    pixels: int = 0


@dataclass
class IconOutput:
    files: list
    records: list
    warnings: list


def declared_scale(path: Path) -> int:
    """2 for `icon@2x.png`, 3 for `icon@3x.png`, otherwise 1."""
    m = re.search(r"@(\d+)x$", Path(path).stem)
    return int(m.group(1)) if m else 1


def _open(path: Path) -> Image.Image:
    try:
        with Image.open(path) as img:
            img.load()
            return img.copy()
    except FileNotFoundError:
        raise ResourceNotFound(path, "Icon")
    except (OSError, ValueError, SyntaxError) as e:
        raise UnsupportedIconFormat(path, str(e))


def load_icon_set(paths) -> IconSet:
    sources = []
    for path in paths:
        img = _open(Path(path))
        sources.append(IconSource(Path(path), declared_scale(path), img.size))
    return IconSet(tuple(sources))


# ─── Selection & rendering ───────────────────────────────────────────────────

def select_source(icon_set: IconSet, size: IconSize):
    """Returns (source, exact). Exact sources are used without scaling."""
    want = (size.pixels, size.pixels)
    exact = [s for s in icon_set.sources if s.size == want]
    for source in exact:
        if source.scale == size.scale:
            return source, True
    if exact:
        return exact[0], True
    return icon_set.largest(), False


class _Renderer:
    """Plans and renders required sizes for one conversion, caching decodes."""

    def __init__(self, icon_set: IconSet):
        self.icon_set = icon_set
        self.records = []
        self._decoded = {}
        self._cropped = []

    def image(self, source: IconSource) -> Image.Image:
        if source.path not in self._decoded:
            img = _open(source.path)
            if img.width != img.height:
                img = _center_square(img)
                self._cropped.append(source)
            self._decoded[source.path] = img
        return self._decoded[source.path]

    def render(self, size: IconSize):
        """Returns (image, source, exact) for one required size."""
        source, exact = select_source(self.icon_set, size)
        self.records.append(IconRecord(size, source.path, synthesized=not exact,
                                       upscaled=not exact and source.pixels < size.pixels))
        img = self.image(source)
        if exact:
            return img, source, True
        resized = img.convert("RGBA").resize((size.pixels, size.pixels), RESAMPLE)
        return resized, source, False

    def png_bytes(self, size: IconSize) -> bytes:
        img, source, exact = self.render(size)
        if exact and source.path.suffix.lower() == ".png":
            return source.path.read_bytes()
        return _encode(img, "PNG")

    def warnings(self) -> list:
        found = []
        for source in self._cropped:
            width, height = source.size
            found.append(warn(f"Icon {source.path.name} is {width}x{height}, not square; "
                              f"cropped to the centred {source.pixels}x{source.pixels}"))
        upscaled = [r for r in self.records if r.upscaled]
        if upscaled:
            source = self.icon_set.largest()
            pixels = ", ".join(str(p) for p in sorted({r.size.pixels for r in upscaled}))
            found.append(warn(f"Icon {source.path.name} ({source.pixels}px) upscaled to {pixels}px; "
                              f"provide a larger source for sharp results"))
        return found


def _center_square(img: Image.Image) -> Image.Image:
    side = min(img.size)
    left = (img.width - side) // 2
    top = (img.height - side) // 2
    return img.crop((left, top, left + side, top + side))


def _encode(img: Image.Image, fmt: str, **params) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt, **params)
    return buf.getvalue()


def _container_frames(renderer: _Renderer, sizes) -> list:
    """One RGB(A) frame per distinct pixel size, smallest first."""
    frames = {}
    for size in sizes:
        img, _, _ = renderer.render(size)
        if size.pixels in frames:
            continue
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA")
        frames[size.pixels] = img
    return [frames[p] for p in sorted(frames)]


def _passthrough(icon_set: IconSet, suffix: str):
    for source in icon_set.sources:
        if source.path.suffix.lower() == suffix:
            return source
    return None


# ─── Per-format conversion ───────────────────────────────────────────────────

def _icns(icon_set: IconSet) -> IconOutput:
    existing = _passthrough(icon_set, ".icns")
    if existing:
        return IconOutput([GeneratedIcon("AppIcon.icns", existing.path.read_bytes())], [], [])
    renderer = _Renderer(icon_set)
    frames = _container_frames(renderer, REQUIRED_SIZES[PackageFormat.OSX])
    data = _encode(frames[-1], "ICNS", append_images=frames[:-1])
    return IconOutput([GeneratedIcon("AppIcon.icns", data, frames[-1].width)],
                      renderer.records, renderer.warnings())


def _ico(icon_set: IconSet) -> IconOutput:
    existing = _passthrough(icon_set, ".ico")
    if existing:
        return IconOutput([GeneratedIcon("AppIcon.ico", existing.path.read_bytes())], [], [])
    renderer = _Renderer(icon_set)
    frames = _container_frames(renderer, REQUIRED_SIZES[PackageFormat.MSI])
    data = _encode(frames[-1], "ICO", sizes=[f.size for f in frames], append_images=frames[:-1])
    return IconOutput([GeneratedIcon("AppIcon.ico", data, frames[-1].width)],
                      renderer.records, renderer.warnings())


def _ios_pngs(icon_set: IconSet) -> IconOutput:
    renderer = _Renderer(icon_set)
    files = []
    for size in REQUIRED_SIZES[PackageFormat.IOS]:
        name = f"icon_{size.points}x{size.points}{size.suffix}.png"
        files.append(GeneratedIcon(name, renderer.png_bytes(size), size.pixels))
    return IconOutput(files, renderer.records, renderer.warnings())


def _linux_png(icon_set: IconSet) -> IconOutput:
    table = REQUIRED_SIZES[PackageFormat.DEB]
    available = icon_set.largest().pixels
    fitting = [s for s in table if s.pixels <= available]
    size = fitting[-1] if fitting else table[0]
    renderer = _Renderer(icon_set)
    data = renderer.png_bytes(size)
    return IconOutput([GeneratedIcon(f"{size.pixels}x{size.pixels}.png", data, size.pixels)],
                      renderer.records, renderer.warnings())


_CONVERTERS = {
    PackageFormat.OSX: _icns,
    PackageFormat.IOS: _ios_pngs,
    PackageFormat.DEB: _linux_png,
    PackageFormat.MSI: _ico,
}


def convert_icons(icon_set: IconSet, fmt: PackageFormat) -> IconOutput:
    if not icon_set.sources or fmt not in _CONVERTERS:
        return IconOutput([], [], [])
    return _CONVERTERS[fmt](icon_set)
