#!/usr/bin/env python3
"""
appbundle — Build CLI

Bundles a cargo project's binary into a platform-native package. Reads
Cargo.toml for project metadata and bundle.yaml for bundle config.

Usage:
  appbundle [project_dir] [--format osx|ios|deb|msi] [--release] [--target TRIPLE]
  appbundle [project_dir] --bin NAME --no-build --keep-staging
"""

import argparse
import sys
from pathlib import Path

from . import __version__
from .errors import BundleError
from .package import BuildOptions, bundle
from .settings import PackageFormat


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="appbundle",
                                     description="Bundle a compiled binary into an app package")
    parser.add_argument("project_dir", nargs="?", default=".",
                        help="Directory containing Cargo.toml (default: current directory)")
    parser.add_argument("-f", "--format", metavar="FORMAT",
                        help="Package format: osx, ios, deb, msi (default: native for the target)")

    which = parser.add_mutually_exclusive_group()
    which.add_argument("--bin", help="Bundle the named binary")
    which.add_argument("--example", help="Bundle the named example")

    profile = parser.add_mutually_exclusive_group()
    profile.add_argument("--release", action="store_true", help="Build in release mode")
    profile.add_argument("--profile", help="Build with the named profile")

    parser.add_argument("--target", help="Target triple to build for")
    parser.add_argument("--features", help="Space or comma separated list of features")
    parser.add_argument("--all-features", action="store_true", help="Activate all features")
    parser.add_argument("--no-default-features", action="store_true",
                        help="Do not activate the default feature")
    parser.add_argument("--no-build", action="store_true",
                        help="Bundle an already-built binary without running cargo")
    parser.add_argument("--keep-staging", action="store_true",
                        help="Keep the staging directory when packaging fails")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    project_dir = Path(args.project_dir).resolve()

    if not project_dir.is_dir():
        print(f"ERROR: Project directory not found: {project_dir}")
        sys.exit(1)

    options = BuildOptions(
        bin=args.bin,
        example=args.example,
        release=args.release,
        profile=args.profile,
        target=args.target,
        features=args.features,
        all_features=args.all_features,
        no_default_features=args.no_default_features,
        no_build=args.no_build,
        keep_staging=args.keep_staging,
    )

    try:
        if args.format:
            options.format = PackageFormat.parse(args.format)
        result = bundle(project_dir, options)
    except BundleError as e:
        print(f"ERROR: {e}")
        sys.exit(e.exit_code)

    if result.warnings:
        print(f"  {len(result.warnings)} warning(s)")
    return 0


if __name__ == "__main__":
    main()
