"""
Custom Exceptions for Tile Assembly.

Provides a hierarchy of exceptions for the failure modes of the
tile assembly pipeline: external tool invocation, per-tile decoding,
grid validation and output encoding.
"""


class AssemblyError(Exception):
    """
    Base exception for tile assembly failures.

    All assembly-specific exceptions inherit from this class,
    allowing for broad exception handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the failure
    """

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class ExternalToolError(AssemblyError):
    """
    An external tool could not be run or exited with an error.

    Raised when the container info/extraction tool fails. This is fatal
    for the whole conversion.

    Attributes:
        command: The command line that was executed
        returncode: Exit status (None if the tool could not be started)
        output: Diagnostic output captured from the tool
    """

    def __init__(
        self,
        command: list,
        returncode: int = None,
        output: str = "",
        reason: str = None,
    ):
        tool = command[0] if command else "tool"
        message = f"{tool} failed"
        if reason:
            message = f"{tool} failed: {reason}"
        elif returncode is not None:
            message = f"{tool} exited with status {returncode}"
        details = {"returncode": returncode}
        if output:
            details["output"] = output.strip()
        super().__init__(message, details)
        self.command = list(command)
        self.returncode = returncode
        self.output = output


class DecodeError(AssemblyError):
    """
    A single tile failed to decode.

    Recorded by the compositor and raised once all workers finished.

    Attributes:
        source: Description of the tile source (path or byte count)
        reason: Why decoding failed
        diagnostics: Output of the decoding tool, if any
        tile_index: Position of the tile in the source list (set by the compositor)
    """

    def __init__(self, source: str, reason: str, diagnostics: str = ""):
        message = f"Failed to decode tile {source}: {reason}"
        details = {}
        if diagnostics:
            details["diagnostics"] = diagnostics.strip()
        super().__init__(message, details)
        self.source = source
        self.reason = reason
        self.diagnostics = diagnostics
        self.tile_index = None


class GridValidationError(AssemblyError):
    """
    The grid descriptor cannot be used to assemble an image.

    Attributes:
        grid: Dictionary form of the offending grid descriptor
        reason: Explanation of the problem
    """

    def __init__(self, reason: str, grid: dict = None):
        message = f"Invalid tile grid: {reason}"
        super().__init__(message, {"grid": grid} if grid else None)
        self.reason = reason
        self.grid = grid or {}


class UnsupportedFormatError(AssemblyError):
    """
    The destination extension does not map to a known output format.

    Attributes:
        extension: The rejected extension
        supported: Extensions that would have been accepted
    """

    def __init__(self, extension: str, supported: list = None):
        shown = extension or "(none)"
        message = f"Unsupported destination file extension: {shown}"
        details = {"supported": supported or []}
        super().__init__(message, details)
        self.extension = extension
        self.supported = supported or []


class OutputWriteError(AssemblyError, OSError):
    """
    The destination could not be created or written.

    Attributes:
        path: Destination path
        original_error: The underlying OS error
    """

    def __init__(self, path: str, original_error: Exception = None):
        message = f"Cannot write destination file: {path}"
        if original_error:
            message = f"{message} - {original_error}"
        AssemblyError.__init__(self, message, {"path": path})
        self.path = path
        self.original_error = original_error
