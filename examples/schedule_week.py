"""
An example is provided for building a Model instance from the default `inputs/config` files and scheduling one week
of day-ahead markets. The seasonal unit is planned once for the whole year, the pumped units are scheduled day by
day over a 72 hour rolling horizon. The market result is simulated by accepting every bid, so the reconciliation
has nothing to redistribute.

Alternative configuration directories can be provided as an argument to the Model instantiation.
"""

import time

import numpy as np

from storage_dispatch.common.constants import HOURS_PER_DAY, HOURS_PER_YEAR
from storage_dispatch.model import Model

rng = np.random.default_rng(42)
hours = np.arange(HOURS_PER_YEAR + 2 * HOURS_PER_DAY)
prices = 45 + 20 * np.sin(2 * np.pi * (hours - 8) / HOURS_PER_DAY) + rng.normal(0, 4, hours.size)

start_time = time.time()
model = Model()
model_build_time = time.time()
print(model)
print(f"Model build time: {model_build_time - start_time:.4f} seconds")

with model:
    model.plan_seasonal_year(prices[:HOURS_PER_YEAR], year=2018)
    for day in range(7):
        first_hour = day * HOURS_PER_DAY
        plan = model.schedule_day(prices[first_hour : first_hour + 72], first_hour=first_hour)
        accepted_seasonal = {
            unit_id: accumulator.planned[first_hour : first_hour + plan.hours]
            for unit_id, accumulator in model.seasonal_plans.items()
        }
        ledger = model.evaluate_day(plan.operation, prices[first_hour : first_hour + plan.hours], accepted_seasonal)
        print(f"Day {day}: {len(plan.all_bids)} bids, statuses {plan.statuses()}, resolved {ledger.resolved}")

end_time = time.time()
print(model.storage_levels())
print(f"Model solve time: {end_time - model_build_time:.4f} seconds")
