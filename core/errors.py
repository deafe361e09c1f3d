"""Exception types raised by the command router.

ValidationError is raised synchronously to whoever registered a handler or
supplied a configuration. RoutingError is raised while handling a single event
and ends up with the bot-level error handler. SessionExpired and
TransportError come out of the transport and are reported to the
library-level error handler.
"""


class CommandRouterError(Exception):
    """Base class for all errors raised by this package."""


class ValidationError(CommandRouterError, ValueError):
    """Bad registration arguments or configuration values."""


class RoutingError(CommandRouterError):
    """An event could not be routed to a handler.

    Attributes:
        event: The event that failed routing, if known
    """

    def __init__(self, message: str, event=None) -> None:
        super().__init__(message)
        self.event = event


class TransportError(CommandRouterError):
    """The chat platform returned an error the router cannot act on."""


class SessionExpired(TransportError):
    """The poll cursor key has lapsed and must be bootstrapped again."""
