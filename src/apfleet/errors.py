"""Exception types raised inside the controller.

Only local failures are modelled as exceptions. Nothing here crosses the
datagram boundary: handlers catch, log and drop.
"""


class ApfleetError(Exception):
    """Base class for controller errors."""


class ConfigValidationError(ApfleetError):
    """An effective configuration document has the wrong shape."""


class MessageDecodeError(ApfleetError):
    """A datagram is not a JSON object with a recognized type."""
