import logging
from typing import Any, Dict

import numpy as np

from storage_dispatch.common.helpers import is_nan
from storage_dispatch.common.logging import init_model_logger
from storage_dispatch.io.file_manager import ImportCSV
from storage_dispatch.optimisation.solver import SOLVER_NAMES
from storage_dispatch.system.parameters import CONFIG_DEFAULTS
from storage_dispatch.system.reference import HistoricalReference


class ModelData:
    """
    Raw input data of a model run, imported from the configuration directory before validation.

    Attributes:
    -------
    config_directory (str): Directory containing `config.csv`, `units.csv` and the optional
        `historical_reference.csv` and inflow files.
    logger (logging.Logger): Model logger, initialised from the model name in `config.csv`.
    results_dir (str): Results directory of the run, also receiving LP dumps.
    config (Dict): Records of `config.csv` keyed by id.
    units (Dict): Records of `units.csv` keyed by id.
    inflows (Dict[int, NDArray]): Hourly inflow series keyed by unit id.
    reference (Optional[HistoricalReference]): Weekly historical series of seasonal storage.
    """

    def __init__(self, config_directory, logging_flag: bool = True) -> None:
        self.config_directory = config_directory

        importer = ImportCSV(config_directory)
        self.config_data = importer.get_config_dict()

        self.logger, self.results_dir = init_model_logger(self.get_model_name(), logging_flag)

        self.config = self.config_data.get("config")
        self.units = self.config_data.get("units")
        self.inflows = importer.get_inflows(self.units)
        self.reference = importer.get_historical_reference(self.get_reference_year())

    def validate(self) -> bool:
        return validate_config(self.config_data, self.reference, self.logger)

    def _get_value(self, name: str):
        for item in self.config_data.get("config", {}).values():
            if item.get("name") == name:
                return item.get("value")
        return None

    def get_model_name(self) -> str:
        model_name = self._get_value("model_name")
        if model_name is None or is_nan(model_name):
            model_name = CONFIG_DEFAULTS["model_name"]
        return str(model_name)

    def get_reference_year(self) -> int:
        year = self._get_value("reference_year")
        if not validate_positive_int(year):
            return int(CONFIG_DEFAULTS["reference_year"])
        return int(float(year))


UNIT_TYPES = ["pumped", "seasonal"]


def validate_range(val, min_val, max_val=None, inclusive=True):
    try:
        val = float(val)
        if np.isnan(val):
            return False
        if inclusive:
            return min_val <= val <= max_val if max_val is not None else min_val <= val
        else:
            return min_val < val < max_val if max_val is not None else min_val < val
    except (TypeError, ValueError):
        return False


def validate_positive_int(val):
    try:
        return float(val) == int(float(val)) and int(float(val)) > 0
    except (TypeError, ValueError):
        return False


def validate_enum(val, options):
    return str(val).strip().lower() in options


def validate_bool(val):
    return str(val).strip().lower() in ("true", "false", "1", "0", "yes", "no", "y", "n")


def validate_float(val):
    try:
        return not np.isnan(float(val))
    except (TypeError, ValueError):
        return False


def validate_model_config(config_dict: Dict[Any, Dict[str, Any]], model_logger: logging.Logger) -> bool:
    flag = True
    validators = {
        "model_name": None,
        "dispatch_method": lambda v: validate_enum(v, ["heuristic", "optimisation"]),
        "operation_signal": lambda v: validate_enum(v, ["price", "load"]),
        "horizon_hours": validate_positive_int,
        "commit_hours": validate_positive_int,
        "load_band": lambda v: validate_range(v, 0),
        "repair_iterations": validate_positive_int,
        "repair_iterations_max": validate_positive_int,
        "reservoir_tolerance": lambda v: validate_range(v, 0, 1),
        "regularisation": lambda v: validate_range(v, 0),
        "seasonal_passes": validate_positive_int,
        "seasonal_deviation": lambda v: validate_range(v, 0, 1),
        "seasonal_penalty": lambda v: validate_range(v, 0),
        "reference_year": validate_positive_int,
        "price_floor": validate_float,
        "price_ceiling": validate_float,
        "sell_reference_price": validate_float,
        "sell_price_spread": lambda v: validate_range(v, 0),
        "price_sensitive": validate_bool,
        "extreme_bids": validate_bool,
        "deviation_epsilon": lambda v: validate_range(v, 0, inclusive=False),
        "solver_method": lambda v: validate_enum(v, list(SOLVER_NAMES)),
        "solver_time_limit": lambda v: validate_range(v, 0, inclusive=False),
        "workers": validate_positive_int,
    }

    values = {}
    for item in config_dict.values():
        name = item.get("name")
        value = item.get("value")

        if name not in validators:
            model_logger.warning(f"Unknown configuration name {name}")
            continue

        values[name] = value
        if not validators[name]:
            continue

        try:
            if not validators[name](value):
                model_logger.error("Invalid value for '%s': %s", name, value)
                flag = False
        except Exception as e:
            model_logger.exception("Exception during validation of '%s': %s", name, e)
            flag = False

    bounded_pairs = [
        ("commit_hours", "horizon_hours"),
        ("repair_iterations", "repair_iterations_max"),
        ("price_floor", "price_ceiling"),
    ]
    for lower, upper in bounded_pairs:
        if lower in values and upper in values and flag:
            if float(values[lower]) > float(values[upper]):
                model_logger.error("'%s' must be <= '%s'", lower, upper)
                flag = False

    return flag


def validate_units(units_dict: Dict[Any, Dict[str, Any]], model_logger: logging.Logger) -> bool:
    flag = True
    names = []

    if not units_dict:
        model_logger.error("units.csv must contain at least one unit")
        return False

    for idx, item in units_dict.items():
        name = item.get("name")
        if name is None or is_nan(name) or str(name).strip() == "":
            model_logger.error("Unit %s must have a name", idx)
            flag = False
        elif name in names:
            model_logger.error("Duplicate unit name '%s'", name)
            flag = False
        else:
            names.append(name)

        unit_type = str(item.get("unit_type", "pumped")).strip().lower()
        if unit_type not in UNIT_TYPES:
            model_logger.error("'unit_type' of unit %s must be one of %s", name, UNIT_TYPES)
            flag = False

        for field in ["discharge_capacity", "volume_max"]:
            if not validate_range(item.get(field), 0):
                model_logger.error("'%s' of unit %s must be float >= 0", field, name)
                flag = False

        if unit_type == "pumped" and not validate_range(item.get("charge_capacity"), 0):
            model_logger.error("'charge_capacity' of unit %s must be float >= 0", name)
            flag = False

        for field in ["storage_level", "minimum_production"]:
            value = item.get(field)
            if value is None or is_nan(value):
                continue
            if not validate_range(value, 0):
                model_logger.error("'%s' of unit %s must be float >= 0", field, name)
                flag = False

        for efficiency in ["charge_efficiency", "discharge_efficiency"]:
            value = item.get(efficiency)
            if value is None or is_nan(value):
                continue
            if not validate_range(value, 0, 1) or float(value) == 0:
                model_logger.error("'%s' of unit %s must be float in (0,1]", efficiency, name)
                flag = False

        level = item.get("storage_level")
        if validate_range(level, 0) and validate_range(item.get("volume_max"), 0):
            if float(level) > float(item["volume_max"]):
                model_logger.error("'storage_level' of unit %s must be <= 'volume_max'", name)
                flag = False

    return flag


def validate_reference(
    reference: HistoricalReference,
    units_dict: Dict[Any, Dict[str, Any]],
    model_logger: logging.Logger,
) -> bool:
    """Seasonal units need a historical reference that covers the fallback year."""
    seasonal = [u["name"] for u in units_dict.values() if str(u.get("unit_type", "")).strip().lower() == "seasonal"]
    if not seasonal:
        return True
    if reference is None:
        model_logger.error("Seasonal units %s require historical_reference.csv", seasonal)
        return False
    if not reference.has_year(reference.fallback_year):
        model_logger.error("historical_reference.csv has no data for reference year %d", reference.fallback_year)
        return False
    flag = True
    for year in reference.years():
        if np.any(reference.production[year] < 0) or np.any(reference.level[year] < 0):
            model_logger.error("historical_reference.csv contains negative values for year %d", year)
            flag = False
    return flag


def validate_config(config_data: Dict[str, Dict], reference: HistoricalReference, model_logger: logging.Logger) -> bool:
    config_flag = True

    if not validate_model_config(config_data["config"], model_logger):
        model_logger.error("config.csv contains errors.")
        config_flag = False
    else:
        model_logger.info("config.csv validated!")

    if not validate_units(config_data["units"], model_logger):
        model_logger.error("units.csv contains errors.")
        config_flag = False
    else:
        model_logger.info("units.csv validated!")

    if not validate_reference(reference, config_data["units"], model_logger):
        model_logger.error("historical_reference.csv contains errors.")
        config_flag = False

    return config_flag
