import logging
from typing import List, Optional, Tuple

import numpy as np
import pyomo.environ as pyo
from numpy.typing import NDArray

from storage_dispatch.common.constants import (
    HOURS_PER_WEEK,
    SEASONAL_DEVIATION,
    SEASONAL_PASSES,
    SEASONAL_SLACK_MAX,
)
from storage_dispatch.common.logging import get_logger
from storage_dispatch.optimisation.solver import SolveResult, SolverContext
from storage_dispatch.system.components import StorageUnit_InstanceType
from storage_dispatch.system.forecast import HorizonForecast
from storage_dispatch.system.reference import HistoricalReference


def week_count(hours: int) -> int:
    return max(1, hours // HOURS_PER_WEEK)


def week_of_hour(hours: int) -> NDArray[np.int64]:
    """Week bucket of every hour. Hours past the last full week belong to the last week."""
    return np.minimum(np.arange(hours) // HOURS_PER_WEEK, week_count(hours) - 1)


class SeasonalAccumulator:
    """
    Explicit accumulator threaded through the passes of the seasonal multi-pass release.

    Every pass sees the release planned by the previous passes as a fixed outflow and adds its own release on
    top. The accumulator also carries the weekly level trajectory of the last pass and the hourly pre- and
    post-market levels derived from it.

    Attributes:
    -------
    hours (int): Length of the planning horizon.
    passes (int): Number of passes.
    planned (NDArray[np.float64]): Cumulative planned release per hour (positive = production), units of MWh.
    pass_release (NDArray[np.float64]): Release added by each pass, shape (passes, hours).
    weekly_levels (NDArray[np.float64]): Reservoir level at the start of each week, weeks + 1 values.
    pre_market_levels (NDArray[np.float64]): Hourly interpolation of weekly_levels.
    post_market_levels (NDArray[np.float64]): Hourly levels corrected for the accepted volumes. NaN until the
        hour has been cleared.
    completed_passes (int): Number of passes already added.
    """

    def __init__(self, hours: int, passes: int) -> None:
        self.hours = int(hours)
        self.passes = int(passes)
        self.planned = np.zeros(self.hours, dtype=np.float64)
        self.pass_release = np.zeros((self.passes, self.hours), dtype=np.float64)
        self.weekly_levels = np.zeros(week_count(self.hours) + 1, dtype=np.float64)
        self.pre_market_levels = np.zeros(self.hours, dtype=np.float64)
        self.post_market_levels = np.full(self.hours, np.nan, dtype=np.float64)
        self.completed_passes = 0

    def __repr__(self) -> str:
        return (
            f"SeasonalAccumulator(hours={self.hours}, passes={self.completed_passes}/{self.passes}, "
            f"planned={self.planned.sum():.1f})"
        )

    def add_pass(self, pass_index: int, release: NDArray[np.float64], weekly_levels: NDArray[np.float64]) -> None:
        release = np.maximum(np.asarray(release, dtype=np.float64), 0.0)
        self.pass_release[pass_index] = release
        self.planned += release
        self.weekly_levels = np.asarray(weekly_levels, dtype=np.float64).copy()
        self.completed_passes += 1

    def operation(self) -> NDArray[np.float64]:
        """Planned operation in the signed convention, i.e. the negated cumulative release."""
        return -self.planned

    def interpolate_levels(self) -> NDArray[np.float64]:
        """
        Hourly pre-market level, interpolated linearly from the start level of each week to the start level of the
        next week.
        """
        weeks = week_of_hour(self.hours)
        levels = np.empty(self.hours, dtype=np.float64)
        for w in range(self.weekly_levels.size - 1):
            hours_in_week = np.flatnonzero(weeks == w)
            if hours_in_week.size == 0:
                continue
            step = (self.weekly_levels[w + 1] - self.weekly_levels[w]) / hours_in_week.size
            levels[hours_in_week] = self.weekly_levels[w] + step * np.arange(1, hours_in_week.size + 1)
        self.pre_market_levels = levels
        return levels

    def track_post_market(self, first_hour: int, accepted_release: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Accumulate the difference between planned and accepted release into a post-market level per hour.

        Parameters:
        -------
        first_hour (int): Hour of the horizon at which the cleared period starts.
        accepted_release (NDArray[np.float64]): Accepted production per hour of the cleared period (positive).

        Returns:
        -------
        NDArray[np.float64]: Post-market levels of the cleared period.
        """
        accepted_release = np.asarray(accepted_release, dtype=np.float64)
        hours = np.arange(first_hour, first_hour + accepted_release.size) % self.hours
        correction = 0.0
        previous = (first_hour - 1) % self.hours
        if first_hour > 0 and not np.isnan(self.post_market_levels[previous]):
            correction = self.post_market_levels[previous] - self.pre_market_levels[previous]
        for i, hour in enumerate(hours):
            correction += self.planned[hour] - accepted_release[i]
            self.post_market_levels[hour] = self.pre_market_levels[hour] + correction
        return self.post_market_levels[hours]


def build_seasonal_model(
    model: pyo.ConcreteModel,
    unit: StorageUnit_InstanceType,
    prices: NDArray[np.float64],
    accumulator: SeasonalAccumulator,
    pass_index: int,
    reference_levels: NDArray[np.float64],
    reference_production: NDArray[np.float64],
    deviation: float,
    penalty: float,
) -> pyo.ConcreteModel:
    """
    Add the sets, variables, constraints and objective of one seasonal pass to an empty model.

    Hourly variables: release in [0, discharge_capacity / passes] and a minimum-production penalty in
    [0, minimum_production], where the minimum production only applies in the last pass. Weekly variables:
    the level at the start of each week, bounded by the historical band [hist * (1 - deviation),
    hist * (1 + deviation)] clipped to [0, volume_max], and positive and negative slacks on every weekly
    balance. The balance of week w reads

        level[w + 1] + slack_pos[w] - slack_neg[w] = level[w] - (release + planned) / efficiency
            + share * production_hist[w] / efficiency + max(0, share * (hist[w + 1] - hist[w]))

    with share = (pass_index + 1) / passes. The objective maximises price * release minus the minimum-production
    penalty minus penalty * share times the slacks.

    Returns:
    -------
    pyo.ConcreteModel: The populated model.
    """
    hours = prices.shape[0]
    weeks = week_count(hours)
    passes = accumulator.passes
    share = (pass_index + 1) / passes
    efficiency = float(unit.discharge_efficiency)
    volume_max = float(unit.volume_max)
    price = prices.tolist()

    minimum = float(unit.minimum_production) if pass_index == passes - 1 else 0.0
    required = np.maximum(minimum - accumulator.planned, 0.0).tolist()

    upper = np.minimum(reference_levels * (1.0 + deviation), volume_max)
    lower = np.minimum(np.maximum(reference_levels * (1.0 - deviation), 0.0), upper)

    week_idx = week_of_hour(hours)
    hours_of_week = [np.flatnonzero(week_idx == w).tolist() for w in range(weeks)]
    planned_by_week = np.bincount(week_idx, weights=accumulator.planned, minlength=weeks)
    inflow = share * reference_production / efficiency + np.maximum(
        share * (reference_levels[1:] - reference_levels[:-1]), 0.0
    )
    balance_rhs = (inflow - planned_by_week / efficiency).tolist()

    model.t = pyo.RangeSet(0, hours - 1)
    model.w = pyo.RangeSet(0, weeks - 1)
    model.w_level = pyo.RangeSet(0, weeks)

    model.release = pyo.Var(model.t, bounds=(0.0, float(unit.discharge_capacity) / passes))
    model.minimum_production_penalty = pyo.Var(model.t, bounds=(0.0, minimum))
    model.storage_level_week = pyo.Var(model.w_level, bounds=lambda m, w: (float(lower[w]), float(upper[w])))
    model.storage_level_slack_pos = pyo.Var(model.w, bounds=(0.0, SEASONAL_SLACK_MAX))
    model.storage_level_slack_neg = pyo.Var(model.w, bounds=(0.0, SEASONAL_SLACK_MAX))

    if minimum > 0.0:

        def minimum_production_rule(m, t):
            return m.release[t] + m.minimum_production_penalty[t] >= required[t]

        model.minimum_production = pyo.Constraint(model.t, rule=minimum_production_rule)

    model.initial_level = pyo.Constraint(
        expr=model.storage_level_week[0] == float(np.clip(reference_levels[0], 0.0, volume_max))
    )

    def storage_level_weekly_rule(m, w):
        released = pyo.quicksum(m.release[t] for t in hours_of_week[w])
        return (
            m.storage_level_week[w + 1]
            - m.storage_level_week[w]
            + m.storage_level_slack_pos[w]
            - m.storage_level_slack_neg[w]
            + released / efficiency
            == balance_rhs[w]
        )

    model.storage_level_weekly = pyo.Constraint(model.w, rule=storage_level_weekly_rule)

    def value_rule(m):
        revenue = pyo.quicksum(price[t] * m.release[t] for t in m.t)
        shortfall = pyo.quicksum(m.minimum_production_penalty[t] for t in m.t)
        slack = pyo.quicksum(m.storage_level_slack_pos[w] + m.storage_level_slack_neg[w] for w in m.w)
        return revenue - shortfall - penalty * share * slack

    model.objective = pyo.Objective(rule=value_rule, sense=pyo.maximize)
    return model


class SeasonalScheduler:
    """
    Multi-pass release planner for seasonal reservoirs. Each pass solves a linear program over the whole planning
    horizon in which a growing share of the historical inflow is available, and stacks the additional release on
    top of the release planned by the previous passes. The release of each pass later becomes one point of the
    bid ladder, priced higher for later passes.

    Attributes:
    -------
    context (SolverContext): Shared solver context.
    reference (HistoricalReference): Historical weekly production and level series.
    passes (int): Number of passes.
    deviation (float): Relative half-width of the historical level band.
    penalty (float): Penalty per MWh of level outside the band, scaled by the pass share.
    """

    def __init__(
        self,
        context: SolverContext,
        reference: HistoricalReference,
        passes: int = SEASONAL_PASSES,
        deviation: float = SEASONAL_DEVIATION,
        penalty: float = 1e6,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.context = context
        self.reference = reference
        self.passes = int(passes)
        self.deviation = float(deviation)
        self.penalty = float(penalty)
        self.logger = get_logger(logger)

    def solve_pass(
        self,
        unit: StorageUnit_InstanceType,
        forecast: HorizonForecast,
        accumulator: SeasonalAccumulator,
        pass_index: int,
        year: int,
    ) -> Tuple[SeasonalAccumulator, SolveResult]:
        """
        Solve one pass and add its release to the accumulator.

        A non-optimal solve is logged with an LP dump; the returned release is still applied when the solver
        provided one, otherwise the pass adds nothing.

        Returns:
        -------
        Tuple[SeasonalAccumulator, SolveResult]: The updated accumulator and the solver result of the pass.
        """
        prices = forecast.as_array()
        hours = prices.shape[0]
        weeks = week_count(hours)
        reference_year = self.reference.resolve_year(year)
        levels = self.reference.weekly_levels(reference_year, weeks)
        production = self.reference.weekly_production(reference_year, weeks)

        with self.context.lock:
            model = self.context.new_model(f"seasonal_{unit.id}_{year}_pass_{pass_index}")
            try:
                build_seasonal_model(
                    model, unit, prices, accumulator, pass_index, levels, production, self.deviation, self.penalty
                )
                result = self.context.solve(model)
                if not result.optimal:
                    self.context.dump_model(model, result)
            finally:
                self.context.dispose_model(model)

        if result.has_solution:
            accumulator.add_pass(pass_index, result.values["release"], result.values["storage_level_week"])
        else:
            accumulator.add_pass(pass_index, np.zeros(hours), accumulator.weekly_levels)

        self.logger.debug(
            "Seasonal unit %s year %d pass %d/%d (%s): release %.1f MWh, cumulative %.1f MWh",
            unit.name,
            year,
            pass_index + 1,
            self.passes,
            result.status_name,
            accumulator.pass_release[pass_index].sum(),
            accumulator.planned.sum(),
        )
        return accumulator, result

    def plan(self, unit: StorageUnit_InstanceType, forecast: HorizonForecast, year: int) -> SeasonalAccumulator:
        """
        Run all passes for a unit over the planning horizon (typically the full year).

        Parameters:
        -------
        unit (StorageUnit_InstanceType): A seasonal unit.
        forecast (HorizonForecast): Price forecast over the planning horizon.
        year (int): Simulated year, used to select the historical reference.

        Returns:
        -------
        SeasonalAccumulator: Cumulative release, per-pass release and the level trajectories.
        """
        if not self.reference.has_year(year) and not self.reference.has_year(self.reference.fallback_year):
            raise KeyError(f"No historical reference for year {year} or fallback year {self.reference.fallback_year}.")

        accumulator = SeasonalAccumulator(len(forecast), self.passes)
        results: List[SolveResult] = []
        for pass_index in range(self.passes):
            accumulator, result = self.solve_pass(unit, forecast, accumulator, pass_index, year)
            results.append(result)
        accumulator.interpolate_levels()

        non_optimal = sum(1 for r in results if not r.optimal)
        if non_optimal:
            self.logger.error(
                "Seasonal unit %s year %d: %d of %d passes non-optimal", unit.name, year, non_optimal, self.passes
            )
        self.logger.info(
            "Seasonal unit %s year %d planned %.1f MWh release in %d passes",
            unit.name,
            year,
            accumulator.planned.sum(),
            self.passes,
        )
        return accumulator
