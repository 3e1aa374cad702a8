import hashlib

import pytest

from appbundle.deb import debian_arch, generate_control_file, generate_desktop_file, package_name
from appbundle.errors import PackagingToolFailed, PackagingToolUnavailable
from appbundle.package import BuildOptions, bundle
from appbundle.settings import PackageFormat, ProjectMetadata, resolve_bundle_spec

from conftest import LINUX_TARGET, FakeRunner

PROJECT = ProjectMetadata(binary_name="demo", version="0.3.1", description="A demo application",
                          authors=("Acme Developers <dev@acme.test>",), homepage="https://acme.test")

OPTIONS = BuildOptions(format=PackageFormat.DEB, target=LINUX_TARGET, no_build=True)


@pytest.fixture
def demo(project, write_manifest, write_binary, make_png):
    """The com.acme.demo project: one icon, one resource."""
    write_manifest({"identifier": "com.acme.demo", "icon": ["icon.png"],
                    "resources": ["assets/logo.png"]})
    write_binary()
    make_png(project / "icon.png", 256)
    make_png(project / "assets" / "logo.png", 64)
    return project


def out_dir(project):
    return project / "target" / LINUX_TARGET / "debug" / "bundle" / "deb"


# ─── Scenario ────────────────────────────────────────────────────────────────

def test_demo_scenario(demo, runner):
    result = bundle(demo, OPTIONS, runner=runner)

    assert result.artifact == out_dir(demo) / "demo_0.3.1_amd64.deb"
    assert result.artifact.exists()
    assert result.warnings == []
    tree = runner.snapshots["demo_0.3.1_amd64.deb"]

    control = tree["DEBIAN/control"].decode()
    assert "Package: demo\n" in control
    assert "Version: 0.3.1\n" in control
    assert "Architecture: amd64\n" in control
    assert "Maintainer: Acme Developers <dev@acme.test>\n" in control
    assert "Description: A demo application\n" in control

    desktop = tree["usr/share/applications/demo.desktop"].decode()
    assert "Icon=demo\n" in desktop
    assert "Exec=demo\n" in desktop
    assert tree["usr/share/icons/hicolor/256x256/apps/demo.png"] == (demo / "icon.png").read_bytes()

    assert tree["usr/lib/demo/assets/logo.png"] == (demo / "assets" / "logo.png").read_bytes()
    assert tree["usr/bin/demo"] == b"\x7fELF fake demo binary\n"


def test_md5sums_cover_data_files(demo, runner):
    bundle(demo, OPTIONS, runner=runner)
    tree = runner.snapshots["demo_0.3.1_amd64.deb"]
    lines = tree["DEBIAN/md5sums"].decode().splitlines()
    listed = {line.split("  ", 1)[1]: line.split("  ", 1)[0] for line in lines}
    assert set(listed) == {name for name in tree if not name.startswith("DEBIAN/")}
    assert listed["usr/bin/demo"] == hashlib.md5(tree["usr/bin/demo"]).hexdigest()


def test_dpkg_deb_invocation(demo, runner):
    bundle(demo, OPTIONS, runner=runner)
    [cmd] = runner.commands
    assert cmd[:3] == ["dpkg-deb", "--root-owner-group", "--build"]
    assert cmd[-1].endswith("demo_0.3.1_amd64.deb")


def test_empty_glob_still_finalizes(project, write_manifest, write_binary, runner):
    write_manifest({"identifier": "com.acme.demo", "resources": ["missing/*.txt"]})
    write_binary()
    result = bundle(project, OPTIONS, runner=runner)
    assert result.artifact.exists()
    assert result.warnings == ["Glob pattern matched no files: missing/*.txt"]
    tree = runner.snapshots["demo_0.3.1_amd64.deb"]
    assert "Icon=" not in tree["usr/share/applications/demo.desktop"].decode()


def test_repackaging_is_byte_identical(demo):
    first, second = FakeRunner(), FakeRunner()
    a = bundle(demo, OPTIONS, runner=first).artifact.read_bytes()
    b = bundle(demo, OPTIONS, runner=second).artifact.read_bytes()
    assert a == b
    assert first.snapshots == second.snapshots


# ─── Failures ────────────────────────────────────────────────────────────────

def test_missing_dpkg_deb(demo, tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path / "empty"))
    with pytest.raises(PackagingToolUnavailable) as exc:
        bundle(demo, OPTIONS)
    assert exc.value.tool == "dpkg-deb"
    assert [p.name for p in out_dir(demo).iterdir()] == []


def test_failure_keeps_previous_artifact(demo, runner):
    artifact = bundle(demo, OPTIONS, runner=runner).artifact
    before = artifact.read_bytes()
    with pytest.raises(PackagingToolFailed) as exc:
        bundle(demo, OPTIONS, runner=FakeRunner(fail={"dpkg-deb"}))
    assert "simulated failure" in str(exc.value)
    assert artifact.read_bytes() == before
    assert [p.name for p in out_dir(demo).iterdir()] == [artifact.name]


def test_failure_keeps_staging_on_request(demo):
    options = BuildOptions(format=PackageFormat.DEB, target=LINUX_TARGET, no_build=True,
                           keep_staging=True)
    with pytest.raises(PackagingToolFailed):
        bundle(demo, options, runner=FakeRunner(fail={"dpkg-deb"}))
    [kept] = list(out_dir(demo).iterdir())
    assert kept.name.startswith(".staging-")
    assert (kept / "demo_0.3.1_amd64" / "DEBIAN" / "control").exists()


# ─── Control & desktop files ─────────────────────────────────────────────────

def test_depends_preserves_declared_order():
    forward = ["libgtk-3-0 (>= 3.22)", "libc6", "zlib1g"]
    for depends in (forward, list(reversed(forward))):
        spec = resolve_bundle_spec(PROJECT, {"identifier": "com.acme.demo", "deb_depends": depends})
        control = generate_control_file(spec, "amd64", 12)
        assert f"Depends: {', '.join(depends)}\n" in control


def test_control_long_description():
    spec = resolve_bundle_spec(PROJECT, {
        "identifier": "com.acme.demo",
        "name": "Demo App",
        "short_description": "Short",
        "long_description": "First paragraph.\n\nSecond paragraph.",
    })
    control = generate_control_file(spec, "arm64", 3)
    assert control.startswith("Package: demo-app\n")
    assert "Installed-Size: 3\n" in control
    assert "Homepage: https://acme.test\n" in control
    assert control.endswith("Description: Short\n First paragraph.\n .\n Second paragraph.\n")


def test_control_without_descriptions():
    spec = resolve_bundle_spec(ProjectMetadata(binary_name="demo"), {"identifier": "com.acme.demo"})
    control = generate_control_file(spec, "amd64", 1)
    assert control.endswith("Description: (none)\n (none)\n")
    assert "Depends:" not in control


def test_desktop_file_fields():
    spec = resolve_bundle_spec(PROJECT, {
        "identifier": "com.acme.demo",
        "name": "Demo App",
        "category": "Developer Tool",
        "linux_exec_args": "%f",
        "linux_use_terminal": True,
        "linux_mime_types": ["text/plain", "text/markdown"],
    })
    assert generate_desktop_file(spec, has_icon=True) == (
        "[Desktop Entry]\n"
        "Categories=Development;\n"
        "Comment=A demo application\n"
        "Exec=demo %f\n"
        "Icon=demo\n"
        "Name=Demo App\n"
        "Terminal=true\n"
        "Type=Application\n"
        "MimeType=text/plain;text/markdown;\n"
    )


def test_names_and_arches():
    spec = resolve_bundle_spec(PROJECT, {"identifier": "com.acme.demo", "name": "My Great App"})
    assert package_name(spec) == "my-great-app"
    assert debian_arch("x86_64") == "amd64"
    assert debian_arch("x86") == "i386"
    assert debian_arch("arm") == "armhf"
    assert debian_arch("aarch64") == "arm64"


@pytest.mark.parametrize("name, expected", [
    ("my_tool", "my-tool"),
    ("Demo App (Beta)", "demo-app-beta"),
    ("_Hidden__App_", "hidden-app"),
    ("C++ Studio", "c++-studio"),
    ("Café 2.0", "caf-2.0"),
    ("日本", "demo"),
])
def test_package_name_is_debian_safe(name, expected):
    spec = resolve_bundle_spec(PROJECT, {"identifier": "com.acme.demo", "name": name})
    assert package_name(spec) == expected


def test_underscore_name_reaches_control_and_filename(project, write_manifest, write_binary, runner):
    write_manifest({"identifier": "com.acme.demo", "name": "my_tool"})
    write_binary()
    result = bundle(project, BuildOptions(format=PackageFormat.DEB, target=LINUX_TARGET, no_build=True),
                    runner=runner)
    assert result.artifact.name == "my-tool_0.3.1_amd64.deb"
    control = runner.snapshots["my-tool_0.3.1_amd64.deb"]["DEBIAN/control"].decode()
    assert "Package: my-tool\n" in control
