from storage_dispatch.common.jit_overload import njit


class ValidationError(Exception):
    """Raised when the configuration or unit data fail validation."""


class ForecastError(ValueError):
    """Raised when a forecast array violates the input contract (empty, non-finite, wrong length)."""


class SolverContextError(RuntimeError):
    """Raised when a model is requested from a solver context that has been closed."""


@njit
def raise_forecast_length_error():
    raise ValueError("Forecast is shorter than the PlannedSchedule horizon.")
