from typing import Any

import numpy as np
from numpy.typing import NDArray


def parse_bool(value: Any) -> bool:
    """Interpret the usual CSV spellings of a boolean flag."""
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    return str(value).strip().lower() in ("true", "1", "yes", "y")


def is_nan(val: Any) -> bool:
    return isinstance(val, float) and np.isnan(val)


def as_float_array(values: Any) -> NDArray[np.float64]:
    """Writable, contiguous float64 copy of an array-like, as expected by the jitclasses."""
    return np.ascontiguousarray(np.array(values, dtype=np.float64, copy=True)).ravel()
