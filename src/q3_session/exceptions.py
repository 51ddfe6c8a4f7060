class ConfigError(ValueError):
    """Raised when a server configuration value is malformed"""


class AuthError(Exception):
    """Raised when the game server refuses the RCon password"""


class TransportError(Exception):
    """Raised when the game server is unreachable or does not reply"""


class ProtocolError(Exception):
    """Raised when a game log line does not match its expected format"""


class ResourceError(Exception):
    """Raised when the game log (local or remote) can't be opened or read"""
