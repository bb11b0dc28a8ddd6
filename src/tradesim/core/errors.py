"""
Error taxonomy shared by every engine component.

All of these are recoverable: callers report the message and carry on. The
HTTP layer maps each family to a status code.
"""


class TradeSimError(Exception):
    """Base class for domain errors raised by the engines."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TradeSimError):
    """Malformed input: self-loop route, out-of-range rate, bad quantity."""


class AuthorizationError(TradeSimError):
    """The actor lacks authority over a territory, route or caravan."""


class StateError(TradeSimError):
    """The operation is not valid for the current lifecycle state."""


class ResourceError(TradeSimError):
    """Insufficient gold, energy, inventory or capacity."""


class CapacityError(ResourceError):
    pass


class InventoryError(ResourceError):
    pass


class InsufficientInventoryError(InventoryError):
    pass


class InsufficientFundsError(ResourceError):
    pass


class InsufficientEnergyError(ResourceError):
    pass


class NotFoundError(TradeSimError):
    """A referenced route, caravan, tariff, actor or location does not exist."""


class ConfigError(Exception):
    """Raised when the balance configuration file is malformed."""
    pass
