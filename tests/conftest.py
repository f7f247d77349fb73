import logging

import numpy as np
import pytest

from storage_dispatch.optimisation.solver import SolverContext
from storage_dispatch.system.components import StorageUnit
from storage_dispatch.system.reference import HistoricalReference


def build_unit(
    idx=1,
    name="unit",
    unit_type="pumped",
    charge_capacity=10.0,
    discharge_capacity=10.0,
    volume_max=20.0,
    storage_level=0.0,
    charge_efficiency=1.0,
    discharge_efficiency=1.0,
    minimum_production=0.0,
    inflow=None,
    order=0,
):
    inflow = np.zeros(0, dtype=np.float64) if inflow is None else np.asarray(inflow, dtype=np.float64)
    return StorageUnit(
        idx,
        order,
        name,
        unit_type,
        float(charge_capacity),
        float(discharge_capacity),
        float(volume_max),
        float(storage_level),
        float(charge_efficiency),
        float(discharge_efficiency),
        float(minimum_production),
        inflow,
    )


@pytest.fixture
def make_unit():
    return build_unit


@pytest.fixture
def test_logger():
    logger = logging.getLogger("storage_dispatch_tests")
    logger.setLevel(logging.DEBUG)
    logger.propagate = True
    return logger


@pytest.fixture
def solver_context(tmp_path, test_logger):
    context = SolverContext("appsi_highs", 30.0, dump_directory=str(tmp_path), logger=test_logger)
    yield context
    context.close()


@pytest.fixture
def two_week_reference():
    return HistoricalReference(
        2018,
        production={2018: np.array([50.0, 50.0, 50.0])},
        level={2018: np.array([100.0, 90.0, 80.0, 70.0])},
    )


def write_config_directory(directory, config=None, units=None, reference=True):
    """Write a minimal set of input CSVs into `directory` and return its path as a string."""
    config = config or {}
    rows = ["id,name,value"]
    values = {
        "model_name": "Test",
        "dispatch_method": "heuristic",
        "operation_signal": "price",
        "horizon_hours": 48,
        "commit_hours": 24,
        "seasonal_passes": 3,
        "reference_year": 2018,
    }
    values.update(config)
    for i, (name, value) in enumerate(values.items(), start=1):
        rows.append(f"{i},{name},{value}")
    (directory / "config.csv").write_text("\n".join(rows) + "\n")

    if units is None:
        units = [
            "1,PumpA,pumped,10,10,40,10,0.9,0.9,,",
            "2,PumpB,pumped,20,20,80,20,0.8,0.8,,",
        ]
    header = (
        "id,name,unit_type,charge_capacity,discharge_capacity,volume_max,storage_level,"
        "charge_efficiency,discharge_efficiency,minimum_production,inflow_file"
    )
    (directory / "units.csv").write_text("\n".join([header] + units) + "\n")

    if reference:
        lines = ["year,week,production,level"]
        for week in range(53):
            lines.append(f"2018,{week},500,{1000 - 5 * week}")
        (directory / "historical_reference.csv").write_text("\n".join(lines) + "\n")
    return str(directory)


@pytest.fixture
def config_directory(tmp_path):
    return write_config_directory(tmp_path)


@pytest.fixture
def config_writer():
    return write_config_directory
