import plistlib

from appbundle.icons import REQUIRED_SIZES
from appbundle.package import BuildOptions, bundle
from appbundle.settings import PackageFormat

IOS_TARGET = "aarch64-apple-ios"


def test_ios_bundle(project, write_manifest, write_binary, make_png, runner):
    write_manifest({"identifier": "com.acme.demo", "name": "Demo", "icon": ["icon.png"],
                    "resources": [{"from": "assets/logo.png", "to": "images/logo.png"}]})
    write_binary(target=IOS_TARGET)
    make_png(project / "icon.png", 1024)
    make_png(project / "assets" / "logo.png", 64)

    options = BuildOptions(format=PackageFormat.IOS, target=IOS_TARGET, no_build=True)
    result = bundle(project, options, runner=runner)
    app = result.artifact

    assert app.name == "Demo.app"
    assert (app / "demo").read_bytes() == b"\x7fELF fake demo binary\n"
    assert (app / "Resources" / "images" / "logo.png").exists()
    assert not (app / "Contents").exists()

    plist = plistlib.loads((app / "Info.plist").read_bytes())
    assert plist["CFBundleIdentifier"] == "com.acme.demo"
    assert plist["LSRequiresIPhoneOS"] is True
    icon_files = plist["CFBundleIconFiles"]
    assert len(icon_files) == len(REQUIRED_SIZES[PackageFormat.IOS])
    for name in icon_files:
        assert (app / name).is_file()
    assert (app / "icon_1024x1024.png").read_bytes() == (project / "icon.png").read_bytes()
    assert len(result.icon_records) == len(icon_files)
    assert runner.commands == []


def test_ios_without_icons(project, write_binary, runner):
    write_binary(target=IOS_TARGET)
    options = BuildOptions(format=PackageFormat.IOS, target=IOS_TARGET, no_build=True)
    app = bundle(project, options, runner=runner).artifact
    plist = plistlib.loads((app / "Info.plist").read_bytes())
    assert "CFBundleIconFiles" not in plist
    assert plist["CFBundleName"] == "demo"
