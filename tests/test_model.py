import os

import numpy as np
import pytest

from storage_dispatch.common.constants import FEASIBLE
from storage_dispatch.common.exceptions import ForecastError, ValidationError
from storage_dispatch.model import Model
from storage_dispatch.system.forecast import HorizonForecast
from storage_dispatch.system.parameters import EngineConfig

PRICES = np.tile(np.array([10.0] * 12 + [100.0] * 12), 3)


def pumped_portfolio(make_unit):
    return [
        make_unit(idx=1, name="a", volume_max=40.0, storage_level=10.0, charge_efficiency=0.9, discharge_efficiency=0.9),
        make_unit(
            idx=2,
            name="b",
            charge_capacity=5.0,
            discharge_capacity=5.0,
            volume_max=30.0,
            storage_level=5.0,
            charge_efficiency=0.8,
            discharge_efficiency=0.85,
            order=1,
        ),
    ]


@pytest.fixture
def heuristic_model(make_unit, test_logger):
    config = EngineConfig({"horizon_hours": 48, "commit_hours": 24})
    model = Model.from_units(pumped_portfolio(make_unit), config, logger=test_logger)
    yield model
    model.close()


def test_schedule_day(heuristic_model):
    plan = heuristic_model.schedule_day(PRICES[:48])

    assert plan.hours == 24
    assert len(plan.commitments) == 2
    assert plan.statuses() == {"a": "feasible", "b": "feasible"}
    np.testing.assert_allclose(plan.operation, sum(c.operation for c in plan.commitments))
    for commitment in plan.commitments:
        unit = commitment.unit
        assert np.all(commitment.storage_level <= unit.volume_max * (1 + 1e-4))
        assert np.all(commitment.storage_level >= -unit.volume_max * 1e-4)
        assert unit.storage_level == pytest.approx(min(max(commitment.storage_level[-1], 0.0), unit.volume_max))
    assert all(0 <= bid.hour < 24 for bid in plan.bids)
    assert any(bid.comment.startswith("pumped_") for bid in plan.bids)


def test_evaluate_day_accepting_everything(heuristic_model):
    plan = heuristic_model.schedule_day(PRICES[:48])
    levels = heuristic_model.storage_levels()

    ledger = heuristic_model.evaluate_day(plan.operation, PRICES[:24])

    assert ledger.resolved
    assert heuristic_model.storage_levels() == levels
    assert heuristic_model.current_plan is None
    with pytest.raises(RuntimeError):
        heuristic_model.evaluate_day(plan.operation)


def test_evaluate_day_partial_acceptance(heuristic_model):
    plan = heuristic_model.schedule_day(PRICES[:48])
    accepted = plan.operation.copy()
    charging = np.flatnonzero(accepted > 1.0)
    accepted[charging] -= 1.0

    ledger = heuristic_model.evaluate_day(accepted)

    np.testing.assert_allclose(ledger.deviation[charging], 1.0)
    for t in charging:
        absorbed = sum(assigned[t] for assigned in ledger.assigned.values())
        assert absorbed + ledger.unresolved.get(t, 0.0) == pytest.approx(1.0, abs=0.011)


def test_consecutive_days_carry_levels(heuristic_model):
    for day in range(2):
        first_hour = 24 * day
        plan = heuristic_model.schedule_day(PRICES[first_hour : first_hour + 48], first_hour=first_hour)
        assert plan.first_hour == first_hour
        heuristic_model.evaluate_day(plan.operation)
    for unit in heuristic_model.pumped_units:
        assert 0.0 <= unit.storage_level <= unit.volume_max


def test_short_forecast_rejected(heuristic_model):
    with pytest.raises(ForecastError):
        heuristic_model.schedule_day(PRICES[:12])


def test_forecast_shorter_than_horizon_is_accepted(heuristic_model):
    plan = heuristic_model.schedule_day(PRICES[:30])
    assert plan.hours == 24


def test_optimisation_requires_price_forecast(make_unit, test_logger):
    config = EngineConfig({"dispatch_method": "optimisation", "horizon_hours": 48})
    with Model.from_units(pumped_portfolio(make_unit), config, logger=test_logger) as model:
        with pytest.raises(ForecastError):
            model.schedule_day(HorizonForecast(PRICES[:48], signal="load"))


def test_optimisation_path(make_unit, test_logger):
    config = EngineConfig({"dispatch_method": "optimisation", "horizon_hours": 48, "extreme_bids": False})
    with Model.from_units(pumped_portfolio(make_unit), config, logger=test_logger) as model:
        plan = model.schedule_day(PRICES[:48])
        assert model.context.active_models == 0
    assert not model.context.is_open

    assert all(c.status == FEASIBLE for c in plan.commitments)
    assert all(b.comment.startswith("pumped_") and not b.comment.endswith("extreme") for b in plan.bids)
    # Cheap hours charge, expensive hours discharge
    assert np.all(plan.operation[:12] >= -1e-6)
    assert plan.operation[12:].sum() < 0.0


def test_parallel_units_match_sequential(make_unit, test_logger):
    results = []
    for workers in (1, 2):
        config = EngineConfig({"horizon_hours": 48, "workers": workers})
        with Model.from_units(pumped_portfolio(make_unit), config, logger=test_logger) as model:
            results.append(model.schedule_day(PRICES[:48]).operation)
    np.testing.assert_allclose(results[0], results[1])


def test_seasonal_units_bid_from_yearly_plan(make_unit, two_week_reference, test_logger):
    lake = make_unit(idx=7, name="lake", unit_type="seasonal", charge_capacity=0.0, volume_max=200.0)
    units = pumped_portfolio(make_unit) + [lake]
    config = EngineConfig({"horizon_hours": 48, "seasonal_passes": 2})

    with Model.from_units(units, config, two_week_reference, logger=test_logger) as model:
        prices = np.tile(PRICES[:24], 14)
        plans = model.plan_seasonal_year(prices, 2018)
        assert list(plans) == [7]
        assert lake.storage_level == pytest.approx(100.0)

        plan = model.schedule_day(prices[:48])
        assert plan.seasonal_bids
        assert all(b.unit_id == 7 and b.volume < 0 for b in plan.seasonal_bids)

        planned = plans[7].planned[:24]
        model.evaluate_day(plan.operation, accepted_seasonal={7: planned})
        np.testing.assert_allclose(plans[7].post_market_levels[:24], plans[7].pre_market_levels[:24])


def test_seasonal_units_require_reference(make_unit, test_logger):
    lake = make_unit(unit_type="seasonal", charge_capacity=0.0)
    with pytest.raises(ValidationError):
        Model.from_units([lake], logger=test_logger)


def test_empty_portfolio(test_logger):
    with pytest.raises(ValidationError):
        Model.from_units([], logger=test_logger)


def test_model_from_config_directory(config_directory, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)

    with Model(config_directory, logging_flag=False) as model:
        assert [u.name for u in model.pumped_units] == ["PumpA", "PumpB"]
        assert model.config.horizon_hours == 48
        plan = model.schedule_day(PRICES[:48])
        assert len(plan.commitments) == 2

    assert os.path.isfile(os.path.join("results", "temp", "log.txt"))


def test_invalid_config_directory(tmp_path, config_writer, monkeypatch):
    directory = config_writer(tmp_path, config={"horizon_hours": -4})
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ValidationError):
        Model(directory, logging_flag=False)
