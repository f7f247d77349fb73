"""
Numba types are overloaded so the jitclass specs and njit annotations still resolve when JIT is
switched off.
"""

import numpy as np
from numpy.typing import NDArray

from storage_dispatch.common.constants import JIT_ENABLED

if JIT_ENABLED:
    from numba.core.types import UniTuple, boolean, float64, int64, unicode_type
else:

    class _Int64:
        @classmethod
        def __class_getitem__(cls, key):
            return NDArray[np.int64]

    class _Float64:
        @classmethod
        def __class_getitem__(cls, key):
            return NDArray[np.float64]

    class _Boolean:
        @classmethod
        def __class_getitem__(cls, key):
            return NDArray[np.bool_]

    int64 = _Int64
    float64 = _Float64
    boolean = _Boolean
    unicode_type = str

    def UniTuple(ty, n: int):
        _map = {
            _Float64: float,
            _Int64: int,
            _Boolean: bool,
        }
        return tuple([_map.get(ty, ty)] * n)
