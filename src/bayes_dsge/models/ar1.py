"""AR(1) 状態空間モデル

状態方程式: x_t = ρ x_{t-1} + ε_t,  ε_t ~ N(0, σ²)
観測方程式: y_t = x_t + u_t,         u_t ~ N(0, me²)

期待誤差を持たない最小のモデル。尤度が閉じた形で書けるため検証に使う。
"""

import numpy as np

from bayes_dsge.core.gensys import EquilibriumSystem, TransitionLaw
from bayes_dsge.core.model import DSGEModel, Measurement
from bayes_dsge.parameters.parameter import ParameterCollection, parameter
from bayes_dsge.parameters.priors import beta, inv_gamma
from bayes_dsge.parameters.transforms import TransformKind


class AR1Model(DSGEModel):
    """潜在 AR(1) 過程と測定誤差"""

    name = "ar1"
    endogenous_states = ("x",)
    exogenous_shocks = ("eps_x",)
    observables = ("obs_x",)

    def __init__(
        self,
        rho: float = 0.5,
        sigma: float = 1.0,
        me: float = 0.5,
        fix_me: bool = True,
    ) -> None:
        self._init_values = (rho, sigma, me, fix_me)
        super().__init__()

    def init_parameters(self) -> ParameterCollection:
        rho, sigma, me, fix_me = self._init_values
        return ParameterCollection(
            [
                parameter(
                    "rho",
                    rho,
                    (0.0, 0.999),
                    (0.0, 0.999),
                    TransformKind.SQUARE_ROOT,
                    beta(0.5, 0.2),
                    description="AR(1) 係数",
                ),
                parameter(
                    "sigma",
                    sigma,
                    (1e-8, 10.0),
                    (1e-8, 0.0),
                    TransformKind.EXPONENTIAL,
                    inv_gamma(1.0, 0.5),
                    description="ショックの標準偏差",
                ),
                parameter(
                    "me",
                    me,
                    (1e-8, 10.0),
                    (1e-8, 0.0),
                    TransformKind.EXPONENTIAL,
                    inv_gamma(0.5, 0.25),
                    fixed=fix_me,
                    description="測定誤差の標準偏差",
                ),
            ]
        )

    def eqcond(self, params: ParameterCollection) -> EquilibriumSystem:
        return EquilibriumSystem(
            gamma0=np.array([[1.0]]),
            gamma1=np.array([[params.value("rho")]]),
            psi=np.array([[1.0]]),
            pi=np.zeros((1, 0)),
        )

    def measurement(self, params: ParameterCollection, transition: TransitionLaw) -> Measurement:
        return Measurement(
            Z=np.array([[1.0]]),
            D=np.zeros(1),
            Q=np.array([[params.value("sigma") ** 2]]),
            H=np.array([[params.value("me") ** 2]]),
        )
