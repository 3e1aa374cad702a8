"""
appbundle — error kinds

Library code raises these; only the CLI turns them into exit codes.
"""


class BundleError(RuntimeError):
    exit_code = 1


class MissingRequiredField(BundleError):
    exit_code = 2

    def __init__(self, field: str):
        super().__init__(f"Missing required manifest field: {field}")
        self.field = field


class InvalidFieldValue(BundleError):
    exit_code = 2

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid value for manifest field '{field}': {reason}")
        self.field = field


class ResourceNotFound(BundleError):
    exit_code = 3

    def __init__(self, path, what="Resource"):
        super().__init__(f"{what} not found: {path}")
        self.path = path


class UnsupportedIconFormat(BundleError):
    exit_code = 4

    def __init__(self, path, reason=""):
        msg = f"Unsupported icon format: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)
        self.path = path


class PackagingToolUnavailable(BundleError):
    exit_code = 5

    def __init__(self, tool: str):
        super().__init__(f"Packaging tool not found on PATH: {tool}")
        self.tool = tool


class PackagingToolFailed(BundleError):
    exit_code = 6

    def __init__(self, tool: str, returncode: int, stderr: str = ""):
        msg = f"{tool} failed with exit status {returncode}"
        if stderr:
            msg += f":\n{stderr}"
        super().__init__(msg)
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr


class FilesystemError(BundleError):
    exit_code = 7

    def __init__(self, action: str, path, cause: OSError = None):
        msg = f"Failed to {action}: {path}"
        if cause is not None:
            msg += f" ({cause.strerror or cause})"
        super().__init__(msg)
        self.path = path


class UnsupportedFormat(BundleError):
    exit_code = 8
