class ScannerError(Exception):
    """Base class for application-specific errors."""
    pass

class ConfigError(ScannerError):
    """Errors related to configuration loading or validation."""
    pass

class FileAccessError(ScannerError):
    """A single file or directory could not be read or stat'ed."""
    def __init__(self, path, message: str = ""):
        self.path = path
        super().__init__(f"{path}: {message}" if message else str(path))

class NfoParseError(ScannerError):
    """An NFO sidecar is not well-formed XML."""
    def __init__(self, path, message: str = ""):
        self.path = path
        super().__init__(f"{path}: {message}" if message else str(path))

class StoreError(ScannerError):
    """Errors raised by an item store backend."""
    pass
