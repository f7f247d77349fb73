import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from storage_dispatch.common.constants import FEASIBLE, HOURS_PER_DAY, STATUS_NAMES
from storage_dispatch.common.exceptions import ForecastError, ValidationError
from storage_dispatch.common.logging import get_logger
from storage_dispatch.constructors.unit_cons import construct_StorageUnit_list
from storage_dispatch.fast_methods import schedule_m, storage_m
from storage_dispatch.io.validate import ModelData
from storage_dispatch.optimisation.bidding import BidTranslator
from storage_dispatch.optimisation.preliminary import PreliminaryDispatchPlanner
from storage_dispatch.optimisation.pumped import OptimalScheduler
from storage_dispatch.optimisation.reconciliation import (
    PortfolioReconciler,
    ReconciliationLedger,
    UnitCommitment,
    find_marginal_bids,
)
from storage_dispatch.optimisation.repair import FeasibilityRepairEngine
from storage_dispatch.optimisation.seasonal import SeasonalAccumulator, SeasonalScheduler
from storage_dispatch.optimisation.solver import SolverContext
from storage_dispatch.system.bids import Bid
from storage_dispatch.system.components import PlannedSchedule, StorageUnit_InstanceType
from storage_dispatch.system.forecast import HorizonForecast, as_forecast
from storage_dispatch.system.parameters import EngineConfig
from storage_dispatch.system.reference import HistoricalReference


class DayPlan:
    """
    Result of scheduling one commit period of the portfolio.

    Attributes:
    -------
    first_hour (int): Hour of year of the first committed hour.
    commitments (List[UnitCommitment]): Committed schedules of the pumped units, in portfolio order.
    operation (NDArray[np.float64]): Summed committed operation of the pumped units per hour.
    bids (List[Bid]): Portfolio bids of the pumped units followed by their extreme-situation bids.
    seasonal_bids (List[Bid]): Bid ladders of the seasonal units.
    """

    def __init__(
        self,
        first_hour: int,
        commitments: List[UnitCommitment],
        bids: List[Bid],
        seasonal_bids: List[Bid],
        hours: int,
    ) -> None:
        self.first_hour = first_hour
        self.commitments = commitments
        if commitments:
            self.operation = np.sum([c.operation for c in commitments], axis=0)
        else:
            self.operation = np.zeros(hours, dtype=np.float64)
        self.bids = bids
        self.seasonal_bids = seasonal_bids

    def __repr__(self) -> str:
        return f"DayPlan(first_hour={self.first_hour}, units={len(self.commitments)}, bids={len(self.bids)})"

    @property
    def hours(self) -> int:
        return self.operation.size

    @property
    def all_bids(self) -> List[Bid]:
        return self.bids + self.seasonal_bids

    def statuses(self) -> Dict[str, str]:
        return {c.unit.name: STATUS_NAMES[c.status] for c in self.commitments}


class Model:
    """
    Primary interface of the storage dispatch engine.

    Notes:
    -------
    - Input configuration files are loaded into ModelData and validated before any unit is constructed. A Model can
      also be assembled directly from StorageUnit instances with Model.from_units.
    - A single SolverContext is owned by the Model and shared by all linear programs it solves. It is closed by
      Model.close() or when the Model is used as a context manager.
    - The carried reservoir level of each unit is written at the end of every committed period and corrected again
      by the portfolio reconciliation after market clearing.

    Attributes:
    -------
    config (EngineConfig): Engine configuration.
    units (List[StorageUnit_InstanceType]): All units of the portfolio, StorageUnit.order is the list index.
    pumped_units (List[StorageUnit_InstanceType]): Units scheduled daily by the heuristic or the LP path.
    seasonal_units (List[StorageUnit_InstanceType]): Units planned once per year by the multi-pass release.
    reference (Optional[HistoricalReference]): Historical weekly series for the seasonal units.
    seasonal_plans (Dict[int, SeasonalAccumulator]): Yearly release plans keyed by unit id.
    current_plan (Optional[DayPlan]): Plan of the most recently scheduled period, awaiting evaluation.
    """

    def __init__(self, config_directory: str = "inputs/config", logging_flag: bool = True) -> None:
        """
        Initialises a Model instance from a configuration directory.

        Parameters:
        -------
        config_directory (str): Directory containing `config.csv`, `units.csv` and optionally
            `historical_reference.csv` and the inflow files referenced by `units.csv`.
        logging_flag (bool): If True, a timestamped results directory is created for the log file and LP dumps,
            otherwise `results/temp` is used.

        Raises:
        -------
        ValidationError: If any of the input files fails validation.
        """
        model_data = ModelData(config_directory=config_directory, logging_flag=logging_flag)

        if not model_data.validate():
            raise ValidationError(
                "Model failed validation. Check the `log.txt` and modify the config files to resolve errors."
            )

        config = EngineConfig.from_records(model_data.config)
        units = construct_StorageUnit_list(model_data.units, model_data.inflows)
        self._initialise(config, units, model_data.reference, model_data.logger, model_data.results_dir)

    @classmethod
    def from_units(
        cls,
        units: Sequence[StorageUnit_InstanceType],
        config: Optional[EngineConfig] = None,
        reference: Optional[HistoricalReference] = None,
        logger: Optional[logging.Logger] = None,
        results_dir: Optional[str] = None,
    ) -> "Model":
        """
        Assemble a Model from already constructed units, bypassing the CSV layer.

        Raises:
        -------
        ValidationError: If the portfolio is empty or contains seasonal units without a historical reference.
        """
        if not units:
            raise ValidationError("A Model requires at least one storage unit.")
        if reference is None and any(u.unit_type == "seasonal" for u in units):
            raise ValidationError("Seasonal units require a historical reference.")
        model = cls.__new__(cls)
        model._initialise(config or EngineConfig(), list(units), reference, get_logger(logger), results_dir)
        return model

    def _initialise(
        self,
        config: EngineConfig,
        units: List[StorageUnit_InstanceType],
        reference: Optional[HistoricalReference],
        logger: logging.Logger,
        results_dir: Optional[str],
    ) -> None:
        self.config = config
        self.units = units
        self.pumped_units = [u for u in units if u.unit_type == "pumped"]
        self.seasonal_units = [u for u in units if u.unit_type == "seasonal"]
        self.reference = reference
        self.logger = logger
        self.results_dir = results_dir

        self.context = SolverContext(config.solver_method, config.solver_time_limit, results_dir, logger)
        self.planner = PreliminaryDispatchPlanner(config.load_band, logger)
        self.repair_engine = FeasibilityRepairEngine(
            config.reservoir_tolerance, config.repair_iterations, config.repair_iterations_max, logger
        )
        self.scheduler = OptimalScheduler(self.context, config.regularisation, self.repair_engine, logger)
        self.seasonal_scheduler = None
        if reference is not None:
            self.seasonal_scheduler = SeasonalScheduler(
                self.context,
                reference,
                config.seasonal_passes,
                config.seasonal_deviation,
                config.seasonal_penalty,
                logger,
            )
        self.translator = BidTranslator(config, logger)
        self.reconciler = PortfolioReconciler(config.reservoir_tolerance, config.deviation_epsilon, logger)

        self.seasonal_plans: Dict[int, SeasonalAccumulator] = {}
        self.current_plan: Optional[DayPlan] = None

        self.logger.info(
            "Model %s initialised with %d pumped and %d seasonal units (%s dispatch)",
            config.model_name,
            len(self.pumped_units),
            len(self.seasonal_units),
            config.dispatch_method,
        )

    def __repr__(self) -> str:
        return f"Model({self.config.model_name!r}, units={len(self.units)})"

    def __enter__(self) -> "Model":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.context.close()

    def _schedule_unit(self, unit: StorageUnit_InstanceType, forecast: HorizonForecast, day: int) -> UnitCommitment:
        horizon = len(forecast)
        commit = min(self.config.commit_hours, horizon)
        schedule = PlannedSchedule(horizon)

        if self.config.dispatch_method == "optimisation":
            self.scheduler.solve(unit, forecast, schedule, day)
        else:
            schedule_m.reset(schedule, forecast.first_hour)
            schedule_m.load_operation(schedule, self.planner.plan(unit, forecast))
            self.repair_engine.repair(unit, schedule, forecast.as_array(), day)

        operation = np.array(schedule.operation[:commit])
        storage_level = np.array(schedule.storage_level[:commit])
        commitment = UnitCommitment(unit, forecast.first_hour, operation, storage_level, schedule.status)
        storage_m.set_storage_level(unit, storage_level[-1])
        return commitment

    def schedule_day(
        self,
        forecast: Union[HorizonForecast, NDArray[np.float64], Sequence[float]],
        first_hour: int = 0,
    ) -> DayPlan:
        """
        Schedule all units for the next commit period and translate the committed operation into bids.

        Pumped units are scheduled over the rolling horizon (at most `horizon_hours`, shorter if the forecast is
        shorter) and the first `commit_hours` are committed. Seasonal units bid from their yearly release plan, if
        one was created with plan_seasonal_year.

        Parameters:
        -------
        forecast (Union[HorizonForecast, NDArray[np.float64], Sequence[float]]): Price forecast, or residual load
            for load smoothing. Raw arrays are tagged with the configured operation signal.
        first_hour (int): Hour of year of the first forecast value when a raw array is passed.

        Returns:
        -------
        DayPlan: Committed schedules and bids. The carried reservoir level of every pumped unit is advanced to the
            end of the committed period.

        Raises:
        -------
        ForecastError: If the forecast is malformed, shorter than the commit period, or not a price forecast while
            the optimisation path is configured.
        """
        signal = "price" if self.config.dispatch_method == "optimisation" else self.config.operation_signal
        forecast = as_forecast(forecast, first_hour, signal)
        if self.config.dispatch_method == "optimisation" and forecast.signal != "price":
            raise ForecastError("The optimisation dispatch path requires a price forecast.")
        forecast.require_length(self.config.commit_hours)

        forecast = forecast.head(min(self.config.horizon_hours, len(forecast)))
        commit = min(self.config.commit_hours, len(forecast))
        day = forecast.first_hour // HOURS_PER_DAY
        start_time = time.time()

        if self.config.workers > 1 and len(self.pumped_units) > 1:
            with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
                commitments = list(executor.map(lambda u: self._schedule_unit(u, forecast, day), self.pumped_units))
        else:
            commitments = [self._schedule_unit(unit, forecast, day) for unit in self.pumped_units]

        bids = []
        if commitments:
            summed = np.sum([c.operation for c in commitments], axis=0)
            bids = self.translator.pumped_bids(summed, forecast.first_hour)
            if self.config.extreme_bids:
                for c in commitments:
                    bids.extend(self.translator.extreme_bids(c.unit, c.operation, c.storage_level, c.first_hour))

        seasonal_bids = []
        for unit in self.seasonal_units:
            accumulator = self.seasonal_plans.get(unit.id)
            if accumulator is None:
                continue
            seasonal_bids.extend(self.translator.seasonal_bids(unit, accumulator, forecast.first_hour, commit))

        plan = DayPlan(forecast.first_hour, commitments, bids, seasonal_bids, commit)
        self.current_plan = plan

        unresolved = [c.unit.name for c in commitments if c.status != FEASIBLE]
        self.logger.info(
            "Day %d scheduled at %s (%.3f seconds): %d bids, %d unresolved units %s",
            day,
            datetime.now().strftime("%d/%m/%Y %H:%M:%S"),
            time.time() - start_time,
            len(plan.all_bids),
            len(unresolved),
            unresolved,
        )
        return plan

    def plan_seasonal_year(
        self,
        forecast: Union[HorizonForecast, NDArray[np.float64], Sequence[float]],
        year: int,
    ) -> Dict[int, SeasonalAccumulator]:
        """
        Plan the yearly release of every seasonal unit and seed its carried level from the planned start level.

        Parameters:
        -------
        forecast (Union[HorizonForecast, NDArray[np.float64], Sequence[float]]): Price forecast over the planning
            horizon, normally the full year.
        year (int): Simulated year, used to select the historical reference.

        Returns:
        -------
        Dict[int, SeasonalAccumulator]: Release plans keyed by unit id.
        """
        if not self.seasonal_units:
            return {}
        forecast = as_forecast(forecast, 0, "price")
        if forecast.signal != "price":
            raise ForecastError("Seasonal planning requires a price forecast.")

        start_time = time.time()
        for unit in self.seasonal_units:
            accumulator = self.seasonal_scheduler.plan(unit, forecast, year)
            self.seasonal_plans[unit.id] = accumulator
            storage_m.set_storage_level(unit, accumulator.weekly_levels[0])
        self.logger.info(
            "Seasonal plans for %d units completed (%.3f seconds)", len(self.seasonal_units), time.time() - start_time
        )
        return self.seasonal_plans

    def evaluate_day(
        self,
        accepted: NDArray[np.float64],
        clearing_prices: Optional[NDArray[np.float64]] = None,
        accepted_seasonal: Optional[Dict[int, NDArray[np.float64]]] = None,
    ) -> ReconciliationLedger:
        """
        Apply the market result of the current plan.

        Parameters:
        -------
        accepted (NDArray[np.float64]): Accepted volume of the pumped portfolio per committed hour, positive for
            buying.
        clearing_prices (Optional[NDArray[np.float64]]): Clearing price per committed hour, used to report the
            marginal bid points.
        accepted_seasonal (Optional[Dict[int, NDArray[np.float64]]]): Accepted production per committed hour of
            each seasonal unit (positive), keyed by unit id.

        Returns:
        -------
        ReconciliationLedger: Deviations and unresolved residuals of the pumped portfolio.

        Raises:
        -------
        RuntimeError: If no plan is awaiting evaluation.
        ValueError: If the accepted volumes do not match the committed period.
        """
        if self.current_plan is None:
            raise RuntimeError("No scheduled period to evaluate. Call schedule_day first.")
        plan = self.current_plan

        if plan.commitments:
            ledger = self.reconciler.reconcile(plan.commitments, accepted)
        else:
            ledger = ReconciliationLedger(plan.first_hour, plan.operation, np.asarray(accepted, dtype=np.float64))

        for unit_id, release in (accepted_seasonal or {}).items():
            accumulator = self.seasonal_plans.get(unit_id)
            if accumulator is None:
                continue
            levels = accumulator.track_post_market(plan.first_hour, release)
            unit = next(u for u in self.seasonal_units if u.id == unit_id)
            storage_m.set_storage_level(unit, levels[-1])

        if clearing_prices is not None:
            ledger.marginal_bids = find_marginal_bids(
                plan.all_bids, clearing_prices, plan.first_hour, self.config.deviation_epsilon
            )

        if not ledger.resolved:
            self.logger.error(
                "Reconciliation of hours starting at %d left %d unresolved hours",
                plan.first_hour,
                len(ledger.unresolved),
            )
        self.current_plan = None
        return ledger

    def storage_levels(self) -> Dict[str, float]:
        """Carried reservoir level of every unit, keyed by unit name."""
        return {unit.name: unit.storage_level for unit in self.units}
