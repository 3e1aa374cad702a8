"""Bundle compiled binaries into macOS/iOS apps, Debian packages and MSI installers."""

__version__ = "0.1.0"
