"""Exception definitions for the Adaptive Heat Pump integration."""


class AdaptiveHeatPumpError(Exception):
    """Base exception for all adaptive heat pump errors."""


class ParameterValidationError(AdaptiveHeatPumpError, ValueError):
    """Raised when a parameter update is rejected."""


class PriceDataError(AdaptiveHeatPumpError, ValueError):
    """Raised when an external price series holds no usable entry."""
