"""
appbundle — manifest resolution

Reads project metadata (Cargo.toml [package]) and the bundle manifest
(bundle.yaml) and resolves them, once, into an immutable BundleSpec.

Precedence for every optional field: manifest > project metadata > empty.
"""

import enum
import platform
import re
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .errors import InvalidFieldValue, MissingRequiredField, ResourceNotFound, UnsupportedFormat
from .resources import ResourceDeclaration

MANIFEST_NAME = "bundle.yaml"
PROJECT_FILE = "Cargo.toml"

# Reverse-DNS segments; anything else (notably / and \) is unsafe in paths.
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*(\.[A-Za-z0-9_-]+)*$")


# ─── Formats & targets ───────────────────────────────────────────────────────

class PackageFormat(enum.Enum):
    OSX = "osx"
    IOS = "ios"
    DEB = "deb"
    MSI = "msi"
    RPM = "rpm"

    @classmethod
    def parse(cls, value: str) -> "PackageFormat":
        try:
            return cls(value.lower())
        except ValueError:
            raise UnsupportedFormat(f"Unsupported bundle format: {value}")

    @classmethod
    def for_os(cls, os_name: str) -> "PackageFormat":
        native = {
            "macos": cls.OSX,
            "ios": cls.IOS,
            "linux": cls.DEB,
            "windows": cls.MSI,
        }
        if os_name not in native:
            raise UnsupportedFormat(f"Native {os_name} bundles not yet supported.")
        return native[os_name]


def target_os(triple: str = None) -> str:
    """OS name for a target triple, or for the host when no triple is given."""
    if triple:
        parts = triple.lower().split("-")
        for marker, name in (("darwin", "macos"), ("ios", "ios"), ("android", "android"),
                             ("linux", "linux"), ("windows", "windows")):
            if marker in parts:
                return name
        return parts[-1]
    if sys.platform == "darwin":
        return "macos"
    if sys.platform.startswith("win"):
        return "windows"
    return sys.platform.rstrip("0123456789")


def target_arch(triple: str = None) -> str:
    """Architecture (x86, x86_64, arm, aarch64, ...) for a triple or the host."""
    arch = triple.split("-")[0] if triple else platform.machine()
    arch = arch.lower()
    if arch in ("amd64", "x64"):
        return "x86_64"
    if arch == "arm64":
        return "aarch64"
    if re.fullmatch(r"i[3-6]86", arch):
        return "x86"
    if arch.startswith("armv") or arch == "arm":
        return "arm"
    return arch


# ─── Categories ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AppCategory:
    name: str
    apple_uti: str
    desktop_categories: str


_CATEGORIES = [
    AppCategory("Business", "public.app-category.business", "Office;"),
    AppCategory("Developer Tool", "public.app-category.developer-tools", "Development;"),
    AppCategory("Education", "public.app-category.education", "Education;"),
    AppCategory("Entertainment", "public.app-category.entertainment", "AudioVideo;"),
    AppCategory("Finance", "public.app-category.finance", "Office;Finance;"),
    AppCategory("Game", "public.app-category.games", "Game;"),
    AppCategory("Graphics and Design", "public.app-category.graphics-design", "Graphics;"),
    AppCategory("Healthcare and Fitness", "public.app-category.healthcare-fitness", "Utility;"),
    AppCategory("Lifestyle", "public.app-category.lifestyle", "Utility;"),
    AppCategory("Medical", "public.app-category.medical", "Science;MedicalSoftware;"),
    AppCategory("Music", "public.app-category.music", "AudioVideo;Audio;"),
    AppCategory("News", "public.app-category.news", "Network;News;"),
    AppCategory("Photography", "public.app-category.photography", "Graphics;Photography;"),
    AppCategory("Productivity", "public.app-category.productivity", "Office;"),
    AppCategory("Reference", "public.app-category.reference", "Education;"),
    AppCategory("Social Networking", "public.app-category.social-networking", "Network;"),
    AppCategory("Sports", "public.app-category.sports", "Game;SportsGame;"),
    AppCategory("Travel", "public.app-category.travel", "Education;"),
    AppCategory("Utility", "public.app-category.utilities", "Utility;"),
    AppCategory("Video", "public.app-category.video", "AudioVideo;Video;"),
    AppCategory("Weather", "public.app-category.weather", "Science;"),
]


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def parse_category(value: str) -> AppCategory:
    """Accepts a display name ("Developer Tool") or an Apple UTI."""
    wanted = _slug(value.removeprefix("public.app-category."))
    for category in _CATEGORIES:
        if wanted in (_slug(category.name), _slug(category.apple_uti.removeprefix("public.app-category."))):
            return category
    raise InvalidFieldValue("category", f"unknown category {value!r}")


# ─── Data model ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProjectMetadata:
    binary_name: str
    version: str = ""
    description: str = ""
    authors: tuple = ()
    homepage: str = ""
    license_file: str = ""


@dataclass(frozen=True)
class LinuxSettings:
    mime_types: tuple = ()
    exec_args: str = ""
    use_terminal: bool = False


@dataclass(frozen=True)
class DebSettings:
    depends: tuple = ()


@dataclass(frozen=True)
class OsxSettings:
    frameworks: tuple = ()
    minimum_system_version: str = ""
    url_schemes: tuple = ()


@dataclass(frozen=True)
class BundleSpec:
    name: str
    identifier: str
    binary_name: str
    version: str = ""
    icon: tuple = ()
    resources: tuple = ()
    copyright: str = ""
    category: AppCategory = None
    short_description: str = ""
    long_description: str = ""
    script: str = ""
    authors: tuple = ()
    homepage: str = ""
    license_file: str = ""
    linux: LinuxSettings = field(default_factory=LinuxSettings)
    deb: DebSettings = field(default_factory=DebSettings)
    osx: OsxSettings = field(default_factory=OsxSettings)

    @property
    def authors_comma_separated(self) -> str:
        return ", ".join(self.authors)


# ─── Loading ─────────────────────────────────────────────────────────────────

def load_project(project_dir: Path, binary_name: str = None) -> ProjectMetadata:
    """Read [package] from Cargo.toml. binary_name overrides the package name."""
    path = Path(project_dir) / PROJECT_FILE
    if not path.exists():
        raise ResourceNotFound(path, "Project file")
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise InvalidFieldValue(PROJECT_FILE, str(e))

    package = data.get("package")
    if not isinstance(package, dict) or not package.get("name"):
        raise MissingRequiredField("package.name")

    def text(key):
        # Workspace-inherited values ({workspace = true}) are not resolved here.
        value = package.get(key)
        return value if isinstance(value, str) else ""

    authors = package.get("authors")
    return ProjectMetadata(
        binary_name=binary_name or package["name"],
        version=text("version"),
        description=text("description"),
        authors=tuple(a for a in authors if isinstance(a, str)) if isinstance(authors, list) else (),
        homepage=text("homepage"),
        license_file=text("license-file"),
    )


def load_manifest(project_dir: Path) -> dict:
    """Load bundle.yaml. Returns an empty overlay if absent."""
    path = Path(project_dir) / MANIFEST_NAME
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise InvalidFieldValue(MANIFEST_NAME, str(e))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidFieldValue(MANIFEST_NAME, "top level must be a mapping")
    return data


# ─── Resolution ──────────────────────────────────────────────────────────────

def _string(manifest: dict, key: str, default: str = "") -> str:
    value = manifest.get(key)
    if value is None or value == "":
        return default or ""
    if isinstance(value, float):
        # YAML reads 1.10 as 1.1
        raise InvalidFieldValue(key, f"{value!r} was read as a number; quote it")
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidFieldValue(key, "expected a string")
    return str(value)


def _string_list(manifest: dict, key: str) -> tuple:
    value = manifest.get(key)
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidFieldValue(key, "expected a list of strings")
    return tuple(value)


def _bool(manifest: dict, key: str) -> bool:
    value = manifest.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise InvalidFieldValue(key, "expected true or false")
    return value


def _exec_args(manifest: dict) -> str:
    value = manifest.get("linux_exec_args")
    if isinstance(value, list):
        return " ".join(_string_list(manifest, "linux_exec_args"))
    return _string(manifest, "linux_exec_args")


def _resources(manifest: dict) -> tuple:
    value = manifest.get("resources")
    if value is None:
        return ()
    if isinstance(value, dict):
        # Table form: {source: destination}
        return tuple(ResourceDeclaration(str(src), str(dst) if dst else None, mapped=True)
                     for src, dst in value.items())
    if not isinstance(value, list):
        raise InvalidFieldValue("resources", "expected a list or a from/to table")
    result = []
    for entry in value:
        if isinstance(entry, str):
            result.append(ResourceDeclaration(entry))
        elif isinstance(entry, dict) and isinstance(entry.get("from"), str):
            to = entry.get("to")
            if to is not None and not isinstance(to, str):
                raise InvalidFieldValue("resources", f"'to' must be a string in {entry!r}")
            result.append(ResourceDeclaration(entry["from"], to or None, mapped=True))
        else:
            raise InvalidFieldValue("resources", f"unrecognised entry {entry!r}")
    return tuple(result)


def _identifier(manifest: dict) -> str:
    value = manifest.get("identifier")
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingRequiredField("identifier")
    if not isinstance(value, str):
        raise InvalidFieldValue("identifier", "expected a string")
    if "/" in value or "\\" in value:
        raise InvalidFieldValue("identifier", f"{value!r} contains a path separator")
    if not _IDENTIFIER_RE.match(value):
        raise InvalidFieldValue("identifier", f"{value!r} is not a reverse-DNS identifier")
    return value


def _name(manifest: dict, default: str) -> str:
    value = _string(manifest, "name", default)
    if "/" in value or "\\" in value or value.strip(".") == "":
        raise InvalidFieldValue("name", f"{value!r} cannot be used as a file name")
    return value


def _category(manifest: dict):
    value = _string(manifest, "category")
    return parse_category(value) if value else None


def resolve_bundle_spec(project: ProjectMetadata, manifest: dict) -> BundleSpec:
    """Resolve every field exactly once. No side effects."""
    return BundleSpec(
        name=_name(manifest, project.binary_name),
        identifier=_identifier(manifest),
        binary_name=project.binary_name,
        version=_string(manifest, "version", project.version),
        icon=_string_list(manifest, "icon"),
        resources=_resources(manifest),
        copyright=_string(manifest, "copyright"),
        category=_category(manifest),
        short_description=_string(manifest, "short_description", project.description),
        long_description=_string(manifest, "long_description", project.description),
        script=_string(manifest, "script"),
        authors=project.authors,
        homepage=project.homepage,
        license_file=project.license_file,
        linux=LinuxSettings(
            mime_types=_string_list(manifest, "linux_mime_types"),
            exec_args=_exec_args(manifest),
            use_terminal=_bool(manifest, "linux_use_terminal"),
        ),
        deb=DebSettings(depends=_string_list(manifest, "deb_depends")),
        osx=OsxSettings(
            frameworks=_string_list(manifest, "osx_frameworks"),
            minimum_system_version=_string(manifest, "osx_minimum_system_version"),
            url_schemes=_string_list(manifest, "osx_url_schemes"),
        ),
    )
