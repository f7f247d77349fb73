from typing import Any, Dict, Optional

from storage_dispatch.common.constants import (
    REPAIR_ITERATIONS,
    REPAIR_ITERATIONS_MAX,
    RESERVOIR_TOLERANCE,
    SEASONAL_DEVIATION,
    SEASONAL_PASSES,
)
from storage_dispatch.common.helpers import parse_bool

CONFIG_DEFAULTS = {
    "model_name": "Model",
    "dispatch_method": "heuristic",
    "operation_signal": "price",
    "horizon_hours": 72,
    "commit_hours": 24,
    "load_band": 0.0,
    "repair_iterations": REPAIR_ITERATIONS,
    "repair_iterations_max": REPAIR_ITERATIONS_MAX,
    "reservoir_tolerance": RESERVOIR_TOLERANCE,
    "regularisation": 0.01,
    "seasonal_passes": SEASONAL_PASSES,
    "seasonal_deviation": SEASONAL_DEVIATION,
    "seasonal_penalty": 1e6,
    "reference_year": 2018,
    "price_floor": -500.0,
    "price_ceiling": 3000.0,
    "sell_reference_price": 7.5,
    "sell_price_spread": 2.5,
    "price_sensitive": True,
    "extreme_bids": True,
    "deviation_epsilon": 0.01,
    "solver_method": "appsi_highs",
    "solver_time_limit": 60.0,
    "workers": 1,
}


class EngineConfig:
    """
    Data class for engine configuration parameters loaded from CSV input or supplied programmatically.

    Attributes:
    -------
    model_name (str): User-defined name of the model run.
    dispatch_method (str): 'heuristic' (planner followed by repair) or 'optimisation' (linear program).
    operation_signal (str): Forecast signal used by the heuristic planner, either 'price' or 'load'.
    horizon_hours (int): Length of the rolling horizon solved for pumped-storage units.
    commit_hours (int): Leading hours of the horizon that are turned into bids and committed.
    load_band (float): Full width of the band around the average residual load inside which the
        load-smoothing planner leaves units idle (MW).
    repair_iterations (int): Repair iterations before the crude single-hour overflow correction is used.
    repair_iterations_max (int): Repair iterations before the schedule is flagged as unresolved.
    reservoir_tolerance (float): Relative tolerance on the reservoir bounds.
    regularisation (float): Weight of the peak charge/discharge penalty in the pumped-storage objective.
    seasonal_passes (int): Number of passes of the seasonal multi-pass release.
    seasonal_deviation (float): Relative half-width of the historical reservoir-level band.
    seasonal_penalty (float): Penalty per MWh of weekly level outside the historical band.
    reference_year (int): Fallback year for historical reference series.
    price_floor (float): Lowest admissible bid price.
    price_ceiling (float): Highest admissible bid price.
    sell_reference_price (float): Reference price around which the two sell points are placed.
    sell_price_spread (float): Distance of the two sell points from the reference price.
    price_sensitive (bool): If False, pumped-storage sell points are placed at the price floor and buy points at
        the price ceiling, so that they always clear.
    extreme_bids (bool): Whether pumped units offer extreme-situation bids.
    deviation_epsilon (float): Smallest deviation handled by the portfolio reconciliation (MWh).
    solver_method (str): Solver plugin passed to pyo.SolverFactory.
    solver_time_limit (float): Wall-clock limit per LP solve in seconds.
    workers (int): Number of threads used for portfolio solves.
    """

    def __init__(self, values: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialise EngineConfig data class instance.

        Parameters:
        -------
        values (Optional[Dict[str, Any]]): Configuration values keyed by variable name. Missing names take
            their default value.
        """
        config = dict(CONFIG_DEFAULTS)
        if values:
            config.update({k: v for k, v in values.items() if k in CONFIG_DEFAULTS})

        self.model_name = str(config["model_name"])
        self.dispatch_method = str(config["dispatch_method"]).strip().lower()
        self.operation_signal = str(config["operation_signal"]).strip().lower()
        self.horizon_hours = int(config["horizon_hours"])
        self.commit_hours = min(int(config["commit_hours"]), self.horizon_hours)
        self.load_band = float(config["load_band"])
        self.repair_iterations = int(config["repair_iterations"])
        self.repair_iterations_max = int(config["repair_iterations_max"])
        self.reservoir_tolerance = float(config["reservoir_tolerance"])
        self.regularisation = float(config["regularisation"])
        self.seasonal_passes = int(config["seasonal_passes"])
        self.seasonal_deviation = float(config["seasonal_deviation"])
        self.seasonal_penalty = float(config["seasonal_penalty"])
        self.reference_year = int(config["reference_year"])
        self.price_floor = float(config["price_floor"])
        self.price_ceiling = float(config["price_ceiling"])
        self.sell_reference_price = float(config["sell_reference_price"])
        self.sell_price_spread = float(config["sell_price_spread"])
        self.price_sensitive = parse_bool(config["price_sensitive"])
        self.extreme_bids = parse_bool(config["extreme_bids"])
        self.deviation_epsilon = float(config["deviation_epsilon"])
        self.solver_method = str(config["solver_method"]).strip().lower()
        self.solver_time_limit = float(config["solver_time_limit"])
        self.workers = max(1, int(config["workers"]))

    @classmethod
    def from_records(cls, config_dict: Dict[Any, Dict[str, Any]]) -> "EngineConfig":
        """Build the configuration from the records of `config.csv`, keyed by id."""
        return cls({item["name"]: item["value"] for item in config_dict.values()})

    def __repr__(self) -> str:
        return f"EngineConfig({self.model_name!r}, {self.dispatch_method!r}, {self.operation_signal!r})"
