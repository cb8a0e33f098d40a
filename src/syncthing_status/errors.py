"""Error taxonomy shared by the client, driver and output sink."""


class ApiError(Exception):
    """A request against the Syncthing daemon failed."""


class Unreachable(ApiError):
    """Transport failure: connection refused, timeout, or a non-auth HTTP error."""


class AuthFailed(ApiError):
    """The daemon rejected the API key (HTTP 401 or 403)."""


class Malformed(ApiError):
    """The daemon answered with a body that cannot be decoded or lacks required fields."""


class OutputFailed(Exception):
    """The rendered summary could not be delivered to the status-bar host."""


class DaemonUnreachable(Exception):
    """The first bootstrap never succeeded within the configured startup attempts."""
