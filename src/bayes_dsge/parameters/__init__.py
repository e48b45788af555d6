"""パラメータ管理"""

from bayes_dsge.parameters.constants import (
    FILTER_CONSTANTS,
    HESSIAN_CONSTANTS,
    OPTIMIZER_CONSTANTS,
    SOLVER_CONSTANTS,
    FilterConstants,
    HessianConstants,
    OptimizerConstants,
    SolverConstants,
)
from bayes_dsge.parameters.parameter import (
    Parameter,
    ParameterCollection,
    ParameterKind,
    SteadyStateParameter,
    parameter,
)
from bayes_dsge.parameters.priors import DistributionType, Prior
from bayes_dsge.parameters.transforms import TransformKind

__all__ = [
    "DistributionType",
    "FILTER_CONSTANTS",
    "FilterConstants",
    "HESSIAN_CONSTANTS",
    "HessianConstants",
    "OPTIMIZER_CONSTANTS",
    "OptimizerConstants",
    "Parameter",
    "ParameterCollection",
    "ParameterKind",
    "Prior",
    "SOLVER_CONSTANTS",
    "SolverConstants",
    "SteadyStateParameter",
    "TransformKind",
    "parameter",
]
