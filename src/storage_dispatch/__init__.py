from storage_dispatch.model import DayPlan, Model
from storage_dispatch.optimisation.bidding import BidTranslator
from storage_dispatch.optimisation.preliminary import PreliminaryDispatchPlanner
from storage_dispatch.optimisation.pumped import OptimalScheduler
from storage_dispatch.optimisation.reconciliation import PortfolioReconciler
from storage_dispatch.optimisation.repair import FeasibilityRepairEngine
from storage_dispatch.optimisation.seasonal import SeasonalScheduler
from storage_dispatch.optimisation.solver import SolverContext
from storage_dispatch.system.forecast import HorizonForecast
from storage_dispatch.system.parameters import EngineConfig

__version__ = "0.1.0"
