from typing import Iterable, Union

import numpy as np
from numpy.typing import NDArray

from storage_dispatch.common.exceptions import ForecastError

SIGNALS = ("price", "load")


class HorizonForecast:
    """
    Hourly price or residual-load forecast for one horizon solve.

    The values are stored in a read-only float64 array so that nothing downstream can modify the
    forecast while a solve is running. njit code receives a writable copy through `as_array`.

    Attributes:
    -------
    values (NDArray[np.float64]): Read-only forecast values, one per hour.
    first_hour (int): Hour of year of the first value.
    signal (str): Either 'price' (EUR/MWh) or 'load' (residual load, MW).
    """

    def __init__(
        self,
        values: Union[Iterable[float], NDArray[np.float64]],
        first_hour: int = 0,
        signal: str = "price",
    ) -> None:
        """
        Initialise a HorizonForecast.

        Raises:
        -------
        ForecastError: If the values are empty, not one-dimensional or contain non-finite entries, if
            first_hour is negative, or if the signal is unknown.
        """
        try:
            array = np.array(values, dtype=np.float64, copy=True)
        except (TypeError, ValueError) as e:
            raise ForecastError(f"Forecast values cannot be converted to float: {e}") from e

        if array.ndim != 1:
            raise ForecastError(f"Forecast must be one-dimensional, got shape {array.shape}.")
        if array.size == 0:
            raise ForecastError("Forecast must contain at least one hour.")
        if not np.all(np.isfinite(array)):
            raise ForecastError("Forecast contains NaN or infinite values.")
        if first_hour < 0:
            raise ForecastError(f"first_hour must be >= 0, got {first_hour}.")
        if signal not in SIGNALS:
            raise ForecastError(f"Unknown forecast signal '{signal}'. Expected one of {SIGNALS}.")

        array.setflags(write=False)
        self.values = array
        self.first_hour = int(first_hour)
        self.signal = signal

    def __len__(self) -> int:
        return self.values.size

    def __repr__(self) -> str:
        return f"HorizonForecast({self.signal!r}, first_hour={self.first_hour}, hours={len(self)})"

    def as_array(self) -> NDArray[np.float64]:
        return self.values.copy()

    def head(self, hours: int) -> "HorizonForecast":
        """Forecast restricted to the leading `hours` hours."""
        return HorizonForecast(self.values[:hours], self.first_hour, self.signal)

    def require_length(self, hours: int) -> None:
        """
        Raises:
        -------
        ForecastError: If the forecast covers fewer than `hours` hours.
        """
        if len(self) < hours:
            raise ForecastError(f"Forecast covers {len(self)} hours but {hours} hours are required.")


def as_forecast(values, first_hour: int = 0, signal: str = "price") -> HorizonForecast:
    """Wrap raw values in a HorizonForecast, passing existing forecasts through unchanged."""
    if isinstance(values, HorizonForecast):
        return values
    return HorizonForecast(values, first_hour, signal)
