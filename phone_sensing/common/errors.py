"""Domain errors and failure typing."""


class SensingError(Exception):
    """Base class for sensing failures."""

    error_code = "SENSING_ERROR"


class ConfigError(SensingError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class PersistenceError(SensingError):
    """Raised when the key-value store cannot be written or read back."""

    error_code = "PERSISTENCE_ERROR"


class ProviderError(SensingError):
    """Raised when a location or log provider cannot serve a request."""

    error_code = "PROVIDER_ERROR"


class SinkError(SensingError):
    """Raised when a measurement cannot be handed to the sink."""

    error_code = "SINK_ERROR"
