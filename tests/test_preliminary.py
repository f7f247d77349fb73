import numpy as np
import pytest

from storage_dispatch.common.constants import PRICE_LIMIT_CHARGE_INIT, PRICE_LIMIT_DISCHARGE_INIT
from storage_dispatch.optimisation.preliminary import (
    PreliminaryDispatchPlanner,
    plan_load_smoothing,
    plan_price_based,
    price_limits,
)
from storage_dispatch.system.forecast import HorizonForecast


def test_flat_prices_leave_unit_idle(make_unit):
    unit = make_unit(charge_efficiency=0.9, discharge_efficiency=0.9)
    forecast = HorizonForecast(np.full(24, 50.0))

    operation = PreliminaryDispatchPlanner().plan(unit, forecast)

    assert np.all(operation == 0.0)


def test_flat_prices_keep_initial_limits():
    charge_limit, discharge_limit = price_limits(np.full(24, 50.0), 0.8)
    assert charge_limit == PRICE_LIMIT_CHARGE_INIT
    assert discharge_limit == PRICE_LIMIT_DISCHARGE_INIT


def test_low_and_high_prices():
    prices = np.array([10.0] * 12 + [100.0] * 12)

    charge_limit, discharge_limit = price_limits(prices, 0.75)
    operation = plan_price_based(prices, 5.0, 8.0, 0.75)

    assert charge_limit == 10.0
    assert discharge_limit == 100.0
    np.testing.assert_array_equal(operation[:12], np.full(12, 5.0))
    np.testing.assert_array_equal(operation[12:], np.full(12, -8.0))


def test_unprofitable_spread_after_losses():
    # 40 > 0.5 * 60, so the round trip does not pay off
    prices = np.array([40.0, 60.0, 40.0, 60.0])
    operation = plan_price_based(prices, 5.0, 5.0, 0.5)
    assert np.all(operation == 0.0)


def test_negative_prices_only():
    prices = np.array([-20.0, -10.0, -5.0, -1.0])
    charge_limit, discharge_limit = price_limits(prices, 0.8)
    assert charge_limit == PRICE_LIMIT_CHARGE_INIT
    assert discharge_limit == PRICE_LIMIT_DISCHARGE_INIT


def test_plan_is_idempotent(make_unit):
    rng = np.random.default_rng(3)
    unit = make_unit(charge_capacity=7.0, discharge_capacity=9.0, charge_efficiency=0.85, discharge_efficiency=0.9)
    forecast = HorizonForecast(rng.uniform(-20.0, 150.0, 72))
    planner = PreliminaryDispatchPlanner()

    first = planner.plan(unit, forecast)
    second = planner.plan(unit, forecast)

    np.testing.assert_array_equal(first, second)
    assert np.all(first <= unit.charge_capacity)
    assert np.all(first >= -unit.discharge_capacity)


def test_plan_does_not_modify_forecast(make_unit):
    values = np.array([10.0, 100.0, 10.0, 100.0])
    forecast = HorizonForecast(values)
    PreliminaryDispatchPlanner().plan(make_unit(), forecast)
    np.testing.assert_array_equal(forecast.values, values)


@pytest.mark.parametrize(
    "load_band, expected",
    [
        (0.0, [37.5, -62.5, -162.5, 100.0]),
        (100.0, [0.0, -12.5, -112.5, 100.0]),
    ],
)
def test_load_smoothing(load_band, expected):
    residual_load = np.array([100.0, 200.0, 300.0, -50.0])
    operation = plan_load_smoothing(residual_load, 100.0, 1000.0, load_band)
    np.testing.assert_allclose(operation, expected)


def test_load_smoothing_respects_capacity():
    residual_load = np.array([0.0, 1000.0])
    operation = plan_load_smoothing(residual_load, 50.0, 80.0, 0.0)
    np.testing.assert_allclose(operation, [50.0, -80.0])


def test_planner_dispatches_on_signal(make_unit):
    unit = make_unit(charge_capacity=100.0, discharge_capacity=1000.0)
    forecast = HorizonForecast([100.0, 200.0, 300.0, -50.0], signal="load")

    operation = PreliminaryDispatchPlanner(load_band=100.0).plan(unit, forecast)

    np.testing.assert_allclose(operation, [0.0, -12.5, -112.5, 100.0])


def test_full_capacity_in_low_and_high_hours(make_unit):
    unit = make_unit(charge_capacity=50.0, discharge_capacity=50.0, charge_efficiency=0.9, discharge_efficiency=0.9)
    forecast = HorizonForecast([10.0] * 12 + [100.0] * 12)

    operation = PreliminaryDispatchPlanner().plan(unit, forecast)

    np.testing.assert_array_equal(operation, [50.0] * 12 + [-50.0] * 12)
