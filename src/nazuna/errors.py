"""Exception types raised by the Nazuna runtime."""


class NazunaError(Exception):
    """Base class for Nazuna errors."""


class StartupError(NazunaError):
    """Required runtime directories or files could not be prepared."""


class BootstrapInputError(NazunaError):
    """The operator supplied invalid input during interactive pairing."""


class ConnectorError(NazunaError):
    """The configured protocol connector could not be resolved."""
