import os

JIT_ENABLED = os.getenv("STORAGE_DISPATCH_JIT", "1") != "0"
FASTMATH = True

HOURS_PER_DAY = 24
HOURS_PER_WEEK = 168
HOURS_PER_YEAR = 8760

# Relative band around [0, volume_max] inside which a reservoir level counts as feasible
RESERVOIR_TOLERANCE = 1e-4
REPAIR_ITERATIONS = 1000
REPAIR_ITERATIONS_MAX = 2000

# Status codes carried by PlannedSchedule.status
FEASIBLE = 0
UNRESOLVED = 1
STATUS_NAMES = {FEASIBLE: "feasible", UNRESOLVED: "unresolved"}

# Price limits used before any profitable price pair has been found
PRICE_LIMIT_CHARGE_INIT = -500000.0
PRICE_LIMIT_DISCHARGE_INIT = 500000.0

SEASONAL_PASSES = 20
SEASONAL_DEVIATION = 0.2
SEASONAL_SLACK_MAX = 1e7
MINIMUM_PRODUCTION_PRICE = 1.0
SEASONAL_BASE_PRICE = 6.0
SEASONAL_CONE_COST = 30.0
SCARCITY_VOLUME_SHARE = 0.05
SCARCITY_PRICE_SHARE = 0.99
