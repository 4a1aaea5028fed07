class AIUsageError(Exception):
    """
    base class for every error raised by aiusage.
    """


class ConfigError(AIUsageError):
    """
    raised when persisted configuration cannot be read or written.
    """


class ProtocolError(AIUsageError):
    """
    raised when the device authorization flow ends in a terminal
    failure. These are never retried.
    """


class DeviceFlowExpiredError(ProtocolError):
    pass


class AccessDeniedError(ProtocolError):
    pass


class DeviceFlowCancelledError(ProtocolError):
    pass


class DeviceFlowTimeoutError(ProtocolError):
    """
    raised when the polling loop gives up after its maximum number
    of attempts without reaching a terminal state.
    """


class ProviderError(AIUsageError):
    """
    failure inside a single provider fetch. Providers recover these
    into degraded usage records, so they never reach callers.
    """


class CliError(ProviderError):
    pass
