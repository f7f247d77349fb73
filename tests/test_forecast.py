import numpy as np
import pytest

from storage_dispatch.common.exceptions import ForecastError
from storage_dispatch.system.forecast import HorizonForecast, as_forecast


@pytest.mark.parametrize(
    "values",
    [
        [],
        [1.0, np.nan, 3.0],
        [1.0, np.inf],
        [[1.0, 2.0], [3.0, 4.0]],
        ["a", "b"],
    ],
)
def test_malformed_forecast(values):
    with pytest.raises(ForecastError):
        HorizonForecast(values)


def test_invalid_metadata():
    with pytest.raises(ForecastError):
        HorizonForecast([1.0], first_hour=-1)
    with pytest.raises(ForecastError):
        HorizonForecast([1.0], signal="wind")


def test_forecast_is_read_only():
    source = np.array([1.0, 2.0, 3.0])
    forecast = HorizonForecast(source)
    source[0] = 100.0

    assert forecast.values[0] == 1.0
    with pytest.raises(ValueError):
        forecast.values[0] = 5.0
    copy = forecast.as_array()
    copy[0] = 5.0
    assert forecast.values[0] == 1.0


def test_head_and_length():
    forecast = HorizonForecast(np.arange(10.0), first_hour=24, signal="load")
    head = forecast.head(4)

    assert len(head) == 4
    assert head.first_hour == 24
    assert head.signal == "load"
    forecast.require_length(10)
    with pytest.raises(ForecastError):
        forecast.require_length(11)


def test_as_forecast_passes_through():
    forecast = HorizonForecast([1.0, 2.0])
    assert as_forecast(forecast, 5, "load") is forecast
    wrapped = as_forecast([1.0, 2.0], 5, "load")
    assert wrapped.first_hour == 5
    assert wrapped.signal == "load"
