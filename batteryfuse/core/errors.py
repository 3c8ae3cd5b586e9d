"""Domain-specific errors for batteryfuse."""


class BatteryFuseError(Exception):
    """Base error for batteryfuse."""


class ConfigLoadError(BatteryFuseError):
    """Raised when the configuration file cannot be read."""


class ConfigValidationError(BatteryFuseError):
    """Raised when the configuration file does not conform to schema."""


class FieldMapLoadError(BatteryFuseError):
    """Raised when loading field map sources fails."""


class FieldMapValidationError(BatteryFuseError):
    """Raised when a field map file does not conform to schema or semantics."""


class ProbeError(BatteryFuseError):
    """Base probe error."""


class ProbeUnavailableError(ProbeError):
    """Raised when a probe source cannot be reached (missing tool, non-zero exit)."""


class ProbeParseError(ProbeError):
    """Raised when probe output cannot be parsed."""


class LiveReaderError(BatteryFuseError):
    """Base live reader error."""


class LiveReaderUnavailableError(LiveReaderError):
    """Raised when the wireless stack cannot be used at all."""


class ConnectionListError(BatteryFuseError):
    """Raised when listing connected devices fails."""
