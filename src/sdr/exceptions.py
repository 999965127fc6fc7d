"""Errors raised by the simulation core."""


class InvalidConfigurationError(ValueError):
    """A component was configured with values it cannot work with."""


class InvalidArgumentError(ValueError):
    """A call received a tensor of the wrong size or an out-of-range index.

    Raised before the receiving component mutates any of its state.
    """
