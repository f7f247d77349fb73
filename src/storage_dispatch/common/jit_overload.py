"""
Numba decorators are overloaded so JIT compilation can be switched off with STORAGE_DISPATCH_JIT=0,
which lets the planner and repair kernels be stepped through with the Python debugger.
"""

from storage_dispatch.common.constants import JIT_ENABLED

if JIT_ENABLED:
    from numba import njit
    from numba.experimental import jitclass
else:

    def jitclass(spec):
        def decorator(cls):
            return cls

        return decorator

    def njit(func=None, **kwargs):
        if func is not None:
            return func

        def wrapper(f):
            return f

        return wrapper
