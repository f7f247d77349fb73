"""
Pseudo-methods for the jitclasses of the dispatch engine. jitclass methods cannot be cached by numba,
so behaviour that would otherwise live on StorageUnit or PlannedSchedule is written as module-level
njit functions that take the instance as their first argument.
"""
