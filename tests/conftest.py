import re
from pathlib import Path

import pytest
import yaml
from PIL import Image

from appbundle.errors import PackagingToolFailed, PackagingToolUnavailable

LINUX_TARGET = "x86_64-unknown-linux-gnu"

CARGO_TOML = """\
[package]
name = "demo"
version = "0.3.1"
description = "A demo application"
authors = ["Acme Developers <dev@acme.test>"]
homepage = "https://acme.test/demo"
"""


# ─── Fake native tools ───────────────────────────────────────────────────────

class FakeRunner:
    """Stands in for common.run. Records every command and fakes the outputs
    dpkg-deb and dotnet would produce, so packagers can finalize."""

    def __init__(self, fail=(), missing=()):
        self.commands = []
        self.snapshots = {}
        self.fail = set(fail)
        self.missing = set(missing)

    def __call__(self, cmd, cwd=None):
        cmd = [str(c) for c in cmd]
        tool = cmd[0]
        self.commands.append(cmd)
        if tool in self.missing:
            raise PackagingToolUnavailable(tool)
        if tool in self.fail:
            raise PackagingToolFailed(tool, 2, f"{tool}: simulated failure")
        if tool == "dpkg-deb":
            self._dpkg_deb(Path(cmd[-2]), Path(cmd[-1]))
        elif tool == "dotnet":
            self._dotnet(Path(cmd[2]), cmd[-1])

    def tools(self):
        return [c[0] for c in self.commands]

    def _snapshot(self, root: Path) -> dict:
        return {p.relative_to(root).as_posix(): p.read_bytes()
                for p in sorted(root.rglob("*")) if p.is_file()}

    def _dpkg_deb(self, root: Path, deb_path: Path):
        tree = self._snapshot(root)
        self.snapshots[deb_path.name] = tree
        deb_path.write_bytes(b"".join(name.encode() + b"\0" + data for name, data in tree.items()))

    def _dotnet(self, wixproj: Path, configuration: str):
        work = wixproj.parent
        name = re.search(r"<OutputName>(.*)</OutputName>", wixproj.read_text()).group(1)
        self.snapshots[f"{name}.msi"] = self._snapshot(work)
        out = work / "bin" / configuration / f"{name}.msi"
        out.parent.mkdir(parents=True)
        out.write_bytes((work / "installer.wxs").read_bytes())


# ─── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def make_png():
    def write_png(path: Path, size: int, color=(200, 40, 40, 255)) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        img = Image.new("RGBA", (size, size), color)
        # A diagonal keeps resized output sensitive to the filter.
        for i in range(size):
            img.putpixel((i, i), (20, 20, 220, 255))
        img.save(path, format="PNG")
        return path
    return write_png


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "demo"
    root.mkdir()
    (root / "Cargo.toml").write_text(CARGO_TOML)
    (root / "bundle.yaml").write_text("identifier: com.acme.demo\n")
    return root


@pytest.fixture
def write_manifest(project):
    def write(data: dict):
        (project / "bundle.yaml").write_text(yaml.safe_dump(data, sort_keys=False))
    return write


@pytest.fixture
def write_binary(project):
    def write(target=LINUX_TARGET, profile="debug", name="demo") -> Path:
        path = project / "target" / target / profile / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x7fELF fake demo binary\n")
        path.chmod(0o755)
        return path
    return write


@pytest.fixture(autouse=True)
def isolated_target_dir(monkeypatch):
    monkeypatch.delenv("CARGO_TARGET_DIR", raising=False)
