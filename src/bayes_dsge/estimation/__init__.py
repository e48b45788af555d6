"""ベイズ推定モジュール

状態空間形式、カルマンフィルタ・平滑化、事後確率、モード探索、ヘシアン、
Metropolis-Hastings サンプラーを提供する。
"""

from bayes_dsge.estimation.chain import ChainBlock, ChainState
from bayes_dsge.estimation.csminwel import OptimizationResult, csminwel, find_mode
from bayes_dsge.estimation.data import EstimationData, load_csv, simulate_data
from bayes_dsge.estimation.diagnostics import ConvergenceDiagnostics, run_diagnostics
from bayes_dsge.estimation.draws import DrawStore
from bayes_dsge.estimation.estimate import EstimationSettings, estimate
from bayes_dsge.estimation.hessian import estimate_hessian, nearest_positive_definite
from bayes_dsge.estimation.kalman_filter import (
    FilterRegime,
    KalmanFilterResult,
    RegimeSchedule,
    kalman_filter,
    kalman_filter_2part,
)
from bayes_dsge.estimation.mcmc import (
    ChainResult,
    MCMCConfig,
    MetropolisHastings,
    run_chains,
)
from bayes_dsge.estimation.mode import ModeResult, optimize_posterior
from bayes_dsge.estimation.posterior import (
    PosteriorEvaluator,
    likelihood,
    make_log_posterior,
    posterior,
    prior,
)
from bayes_dsge.estimation.proposal import DegenerateMvNormal
from bayes_dsge.estimation.results import EstimationResult, build_estimation_result
from bayes_dsge.estimation.smoothers import (
    SmootherResult,
    durbin_koopman_smoother,
    kalman_smoother,
    smooth,
)
from bayes_dsge.estimation.state_space import StateSpaceSystem, compute_system, simulate

__all__ = [
    "ChainBlock",
    "ChainResult",
    "ChainState",
    "ConvergenceDiagnostics",
    "DegenerateMvNormal",
    "DrawStore",
    "EstimationData",
    "EstimationResult",
    "EstimationSettings",
    "FilterRegime",
    "KalmanFilterResult",
    "MCMCConfig",
    "MetropolisHastings",
    "ModeResult",
    "OptimizationResult",
    "PosteriorEvaluator",
    "RegimeSchedule",
    "SmootherResult",
    "StateSpaceSystem",
    "build_estimation_result",
    "compute_system",
    "csminwel",
    "durbin_koopman_smoother",
    "estimate",
    "estimate_hessian",
    "find_mode",
    "kalman_filter",
    "kalman_filter_2part",
    "kalman_smoother",
    "likelihood",
    "load_csv",
    "make_log_posterior",
    "nearest_positive_definite",
    "optimize_posterior",
    "posterior",
    "prior",
    "run_chains",
    "run_diagnostics",
    "simulate",
    "simulate_data",
    "smooth",
]
