from typing import Dict, Optional, Tuple

import numpy as np
from numpy.typing import NDArray


class HistoricalReference:
    """
    Historical weekly production and reservoir-level series of a seasonal storage, keyed by reference year.

    Notes:
    -------
    - Week indices are zero-based. Lookups past the last available week of a year return the value of the
      last week, so that a 53rd week or the end-of-year level always resolves.
    - A year without data falls back to the configured fallback year.

    Attributes:
    -------
    fallback_year (int): Year used when a requested year is missing.
    production (Dict[int, NDArray[np.float64]]): Weekly production per year, units of MWh.
    level (Dict[int, NDArray[np.float64]]): Reservoir level at the start of each week per year, units of MWh.
    """

    def __init__(
        self,
        fallback_year: int,
        production: Optional[Dict[int, NDArray[np.float64]]] = None,
        level: Optional[Dict[int, NDArray[np.float64]]] = None,
    ) -> None:
        self.fallback_year = int(fallback_year)
        self.production = {}
        self.level = {}
        for year, values in (production or {}).items():
            self.production[int(year)] = np.asarray(values, dtype=np.float64)
        for year, values in (level or {}).items():
            self.level[int(year)] = np.asarray(values, dtype=np.float64)

    def __repr__(self) -> str:
        return f"HistoricalReference(years={self.years()}, fallback_year={self.fallback_year})"

    def years(self) -> Tuple[int, ...]:
        return tuple(sorted(set(self.production) & set(self.level)))

    def has_year(self, year: int) -> bool:
        return year in self.production and year in self.level

    def resolve_year(self, year: int) -> int:
        return year if self.has_year(year) else self.fallback_year

    def add_year(self, year: int, production: NDArray[np.float64], level: NDArray[np.float64]) -> None:
        self.production[int(year)] = np.asarray(production, dtype=np.float64)
        self.level[int(year)] = np.asarray(level, dtype=np.float64)

    def _lookup(self, series: Dict[int, NDArray[np.float64]], year: int, week: int) -> float:
        values = series.get(self.resolve_year(year))
        if values is None or values.size == 0:
            raise KeyError(f"No historical reference data for year {year} or fallback year {self.fallback_year}.")
        return float(values[min(max(week, 0), values.size - 1)])

    def production_at(self, year: int, week: int) -> float:
        return self._lookup(self.production, year, week)

    def level_at(self, year: int, week: int) -> float:
        return self._lookup(self.level, year, week)

    def weekly_levels(self, year: int, weeks: int) -> NDArray[np.float64]:
        """Reference levels at the start of weeks 0..weeks (inclusive), i.e. weeks + 1 values."""
        return np.array([self.level_at(year, w) for w in range(weeks + 1)], dtype=np.float64)

    def weekly_production(self, year: int, weeks: int) -> NDArray[np.float64]:
        return np.array([self.production_at(year, w) for w in range(weeks)], dtype=np.float64)
