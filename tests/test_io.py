import numpy as np
import pytest

from storage_dispatch.constructors.unit_cons import construct_StorageUnit_list
from storage_dispatch.io.file_manager import ImportCSV
from storage_dispatch.io.validate import (
    validate_config,
    validate_model_config,
    validate_range,
    validate_units,
)
from storage_dispatch.system.parameters import EngineConfig


def test_import_config(config_directory):
    config_data = ImportCSV(config_directory).get_config_dict()

    assert set(config_data) == {"config", "units"}
    assert len(config_data["units"]) == 2
    assert config_data["units"][1]["name"] == "PumpA"
    assert config_data["units"][2]["id"] == 2


def test_missing_repository(tmp_path):
    with pytest.raises(FileNotFoundError):
        ImportCSV(tmp_path / "missing")


def test_engine_config_from_records(config_directory):
    config = EngineConfig.from_records(ImportCSV(config_directory).get_data("config.csv"))

    assert config.model_name == "Test"
    assert config.horizon_hours == 48
    assert config.commit_hours == 24
    assert config.seasonal_passes == 3
    assert config.price_sensitive
    assert config.solver_method == "appsi_highs"


def test_commit_hours_capped_by_horizon():
    config = EngineConfig({"horizon_hours": 12, "commit_hours": 24, "workers": 0})
    assert config.commit_hours == 12
    assert config.workers == 1


def test_valid_configuration(config_directory, test_logger):
    importer = ImportCSV(config_directory)
    reference = importer.get_historical_reference(2018)
    assert validate_config(importer.get_config_dict(), reference, test_logger)


@pytest.mark.parametrize(
    "config",
    [
        {"horizon_hours": 0},
        {"dispatch_method": "genetic"},
        {"commit_hours": 72},
        {"reservoir_tolerance": 2},
        {"solver_method": "cplex"},
        {"price_floor": 5000, "price_ceiling": 100},
    ],
)
def test_invalid_model_config(tmp_path, config_writer, test_logger, config):
    directory = config_writer(tmp_path, config=config)
    config_dict = ImportCSV(directory).get_data("config.csv")
    assert not validate_model_config(config_dict, test_logger)


def test_unknown_config_name_warns(tmp_path, config_writer, test_logger, caplog):
    directory = config_writer(tmp_path, config={"colour": "blue"})
    config_dict = ImportCSV(directory).get_data("config.csv")
    with caplog.at_level("WARNING", logger="storage_dispatch_tests"):
        assert validate_model_config(config_dict, test_logger)
    assert "Unknown configuration name colour" in caplog.text


@pytest.mark.parametrize(
    "unit",
    [
        "1,PumpA,pumped,10,10,40,10,1.5,0.9,,",
        "1,PumpA,pumped,10,10,40,50,0.9,0.9,,",
        "1,PumpA,turbine,10,10,40,10,0.9,0.9,,",
        "1,PumpA,pumped,-1,10,40,10,0.9,0.9,,",
        "1,PumpA,pumped,10,10,40,10,0,0.9,,",
    ],
)
def test_invalid_units(tmp_path, config_writer, test_logger, unit):
    directory = config_writer(tmp_path, units=[unit])
    units = ImportCSV(directory).get_data("units.csv")
    assert not validate_units(units, test_logger)


def test_duplicate_unit_names(tmp_path, config_writer, test_logger):
    directory = config_writer(
        tmp_path, units=["1,PumpA,pumped,10,10,40,10,0.9,0.9,,", "2,PumpA,pumped,10,10,40,10,0.9,0.9,,"]
    )
    units = ImportCSV(directory).get_data("units.csv")
    assert not validate_units(units, test_logger)


def test_seasonal_unit_requires_reference(tmp_path, config_writer, test_logger):
    directory = config_writer(tmp_path, units=["1,Lake,seasonal,,100,5000,,1,0.9,5,"], reference=False)
    importer = ImportCSV(directory)
    reference = importer.get_historical_reference(2018)

    assert reference is None
    assert validate_units(importer.get_data("units.csv"), test_logger)
    assert not validate_config(importer.get_config_dict(), reference, test_logger)


def test_historical_reference_import(config_directory):
    reference = ImportCSV(config_directory).get_historical_reference(2018)

    assert reference.years() == (2018,)
    assert reference.level_at(2018, 0) == 1000.0
    assert reference.level_at(2018, 10) == 950.0
    # Weeks past the series repeat the last week, missing years use the fallback year
    assert reference.level_at(2018, 60) == 1000.0 - 5 * 52
    assert reference.production_at(2030, 3) == 500.0
    assert reference.weekly_levels(2018, 2).shape == (3,)


def test_inflow_files(tmp_path, config_writer):
    (tmp_path / "inflow_a.csv").write_text("inflow\n1.0\n2.0\n3.0\n")
    directory = config_writer(
        tmp_path,
        units=["1,PumpA,pumped,10,10,40,10,0.9,0.9,,inflow_a.csv", "2,PumpB,pumped,20,20,80,20,0.8,0.8,,"],
    )
    importer = ImportCSV(directory)
    units_dict = importer.get_data("units.csv")

    inflows = importer.get_inflows(units_dict)
    units = construct_StorageUnit_list(units_dict, inflows)

    assert list(inflows) == [1]
    np.testing.assert_array_equal(units[0].inflow, [1.0, 2.0, 3.0])
    assert units[1].inflow.shape == (0,)


def test_missing_inflow_file(tmp_path, config_writer):
    directory = config_writer(tmp_path, units=["1,PumpA,pumped,10,10,40,10,0.9,0.9,,missing.csv"])
    importer = ImportCSV(directory)
    with pytest.raises(FileNotFoundError):
        importer.get_inflows(importer.get_data("units.csv"))


def test_unit_construction_defaults(tmp_path, config_writer):
    directory = config_writer(tmp_path, units=["5,Lake,seasonal,50,100,5000,,,0.9,,"])
    units = construct_StorageUnit_list(ImportCSV(directory).get_data("units.csv"))

    lake = units[0]
    assert lake.id == 5
    assert lake.order == 0
    assert lake.unit_type == "seasonal"
    # Seasonal units never pump
    assert lake.charge_capacity == 0.0
    assert lake.storage_level == 0.0
    assert lake.charge_efficiency == 1.0
    assert lake.efficiency == pytest.approx(0.9)
    assert lake.minimum_production == 0.0


def test_validate_range():
    assert validate_range("0.5", 0, 1)
    assert not validate_range("1.5", 0, 1)
    assert not validate_range(0, 0, inclusive=False)
    assert not validate_range(float("nan"), 0)
    assert not validate_range("abc", 0)
