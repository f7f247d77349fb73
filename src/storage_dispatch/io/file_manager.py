from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray

from storage_dispatch.common.helpers import is_nan
from storage_dispatch.system.reference import HistoricalReference


class ImportCSV:
    """
    Class for importing CSV files from a given repository.

    This class is designed to handle the engine configuration files `config.csv` and `units.csv`. Each CSV is
    loaded into a nested dictionary indexed by the `id` column.
    """

    def __init__(self, repository: Path) -> None:
        """
        Initialize the importer with a path to the repository.

        Parameters:
        -------
        repository (Path): Path to the directory containing CSV files.

        Raises
        ------
        FileNotFoundError: If the specified repository path does not exist.
        """

        self.repository = Path(repository)
        self.config_filenames = (
            "config",
            "units",
        )

        if not self.repository.is_dir():
            raise FileNotFoundError(f"Repository {repository} does not exist.")

    def get_data(self, filename: str) -> Dict[Any, Dict[str, Any]]:
        """
        Load a CSV file into a nested dictionary keyed by 'id'.

        Parameters:
        -------
        filename (str): Name of the CSV file to load, including the extension.

        Returns:
        -------
        Dict[Any, Dict[str, Any]]: Dictionary of records keyed by 'id'.

        Raises:
        -------
        FileNotFoundError: If the file does not exist.
        """

        filepath = self.repository.joinpath(filename)
        if not filepath.is_file():
            raise FileNotFoundError(f"File {filepath} does not exist.")
        imported_dict = pd.read_csv(filepath, index_col="id").to_dict(orient="index")
        for idx in imported_dict:
            imported_dict[idx]["id"] = idx
        return imported_dict

    def get_config_dict(self) -> Dict[str, Dict[Any, Dict[str, Any]]]:
        """
        Load all predefined configuration CSVs into a dictionary.

        Returns
        -------
        Dict[str, Dict[Any, Dict[str, Any]]]: A dictionary mapping each configuration filename
        (without extension) to its corresponding record dictionary.
        """
        return {fn: self.get_data(fn + ".csv") for fn in self.config_filenames}

    def has_file(self, filename: str) -> bool:
        return self.repository.joinpath(filename).is_file()

    def get_inflows(self, units_dict: Dict[Any, Dict[str, Any]]) -> Dict[int, NDArray[np.float64]]:
        """
        Load the hourly inflow series referenced by the optional `inflow_file` column of `units.csv`. The file
        must contain an `inflow` column with one value per hour of year.

        Returns:
        -------
        Dict[int, NDArray[np.float64]]: Inflow series keyed by unit id. Units without a file are omitted.
        """
        inflows = {}
        for idx, unit in units_dict.items():
            filename = unit.get("inflow_file")
            if filename is None or is_nan(filename) or str(filename).strip() == "":
                continue
            filepath = self.repository.joinpath(str(filename).strip())
            if not filepath.is_file():
                raise FileNotFoundError(f"Inflow file {filepath} for unit {unit.get('name')} does not exist.")
            inflows[int(idx)] = pd.read_csv(filepath)["inflow"].to_numpy(dtype=np.float64)
        return inflows

    def get_historical_reference(
        self, fallback_year: int, filename: str = "historical_reference.csv"
    ) -> Optional[HistoricalReference]:
        """
        Load the weekly historical production and reservoir-level series of seasonal storage. Rows are
        `year,week,production,level` with zero-based weeks.

        Returns:
        -------
        Optional[HistoricalReference]: The reference series, or None if the file does not exist.
        """
        if not self.has_file(filename):
            return None
        return import_historical_reference(self.repository.joinpath(filename), fallback_year)


def import_historical_reference(filepath: Path, fallback_year: int) -> HistoricalReference:
    data = pd.read_csv(filepath).sort_values(["year", "week"])
    reference = HistoricalReference(fallback_year)
    for year, group in data.groupby("year"):
        reference.add_year(
            int(year),
            group["production"].to_numpy(dtype=np.float64),
            group["level"].to_numpy(dtype=np.float64),
        )
    return reference
