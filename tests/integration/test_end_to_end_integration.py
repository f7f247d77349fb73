import os

import numpy as np
import pytest

from storage_dispatch.common.constants import FEASIBLE, HOURS_PER_DAY, HOURS_PER_YEAR
from storage_dispatch.model import Model

CONFIG_DIRECTORY = os.path.join(os.path.dirname(os.path.dirname(__file__)), "inputs", "test_week_config")


@pytest.mark.slow
def test_end_to_end_integration(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    rng = np.random.default_rng(0)
    hours = np.arange(HOURS_PER_YEAR + 2 * HOURS_PER_DAY)
    prices = 45 + 20 * np.sin(2 * np.pi * (hours - 8) / HOURS_PER_DAY) + rng.normal(0, 4, hours.size)

    with Model(config_directory=CONFIG_DIRECTORY, logging_flag=False) as model:
        plans = model.plan_seasonal_year(prices[:HOURS_PER_YEAR], year=2018)
        assert len(plans) == 1

        for day in range(3):
            first_hour = day * HOURS_PER_DAY
            plan = model.schedule_day(prices[first_hour : first_hour + 72], first_hour=first_hour)
            assert all(c.status == FEASIBLE for c in plan.commitments)
            assert plan.seasonal_bids

            accepted_seasonal = {
                unit_id: accumulator.planned[first_hour : first_hour + plan.hours]
                for unit_id, accumulator in plans.items()
            }
            ledger = model.evaluate_day(plan.operation, prices[first_hour : first_hour + plan.hours], accepted_seasonal)
            assert ledger.resolved

        for unit in model.units:
            assert 0.0 <= unit.storage_level <= unit.volume_max
