"""3方程式 New Keynesian モデル (An and Schorfheide, 2007)

IS曲線:      y_t = E[y_{t+1}] - τ^{-1}(R_t - E[π_{t+1}]) + (1-ρ_g) g_t + ρ_z τ^{-1} z_t
Phillips曲線: π_t = β E[π_{t+1}] + κ (y_t - g_t)
Taylor則:    R_t = ρ_R R_{t-1} + (1-ρ_R) ψ1 π_t + (1-ρ_R) ψ2 (y_t - g_t) + ε_R
外生過程:     g_t = ρ_g g_{t-1} + ε_g,  z_t = ρ_z z_{t-1} + ε_z

割引因子 β は年率実質金利 r^A から β = 1/(1 + r^A/400) で求める（スケーリング付き
パラメータ）。産出成長率の観測に必要な y_{t-1} は解いた後に状態として追加する。

観測方程式:
    YGR_t  = γ^Q + (y_t - y_{t-1} + z_t)
    INFL_t = π^A + 4 π_t
    INT_t  = π^A + r^A + 4γ^Q + 4 R_t
"""

import numpy as np

from bayes_dsge.core.gensys import EquilibriumSystem, TransitionLaw
from bayes_dsge.core.model import DSGEModel, Measurement
from bayes_dsge.parameters.parameter import ParameterCollection, SteadyStateParameter, parameter
from bayes_dsge.parameters.priors import beta, gamma, inv_gamma, normal, uniform
from bayes_dsge.parameters.transforms import TransformKind

_POSITIVE = (1e-8, 0.0)  # 指数変換 x ↦ 1e-8 + exp(x)


def discount_factor(r_annual: float) -> float:
    """年率実質金利（%）から四半期の割引因子を求める"""
    return 1.0 / (1.0 + r_annual / 400.0)


class SmallNKModel(DSGEModel):
    """An-Schorfheide 小型 New Keynesian モデル"""

    name = "small_nk"
    endogenous_states = ("y", "pi", "R", "g", "z", "Ey", "Epi")
    augmented_states = ("y_lag",)
    exogenous_shocks = ("eps_z", "eps_g", "eps_R")
    expected_shocks = ("eta_y", "eta_pi")
    observables = ("ygr", "infl", "int")

    def init_parameters(self) -> ParameterCollection:
        sqrt_unit = TransformKind.SQUARE_ROOT
        exp = TransformKind.EXPONENTIAL
        unit = (1e-8, 1.0 - 1e-7)
        return ParameterCollection(
            [
                parameter(
                    "tau",
                    1.9937,
                    (1e-8, 10.0),
                    _POSITIVE,
                    exp,
                    gamma(2.0, 0.5),
                    description="異時点間代替弾力性の逆数",
                ),
                parameter(
                    "kappa",
                    0.7306,
                    (1e-5, 0.999),
                    (1e-5, 0.999),
                    sqrt_unit,
                    uniform(0.0, 1.0),
                    description="Phillips曲線の傾き",
                ),
                parameter(
                    "psi1",
                    1.1434,
                    (1e-8, 10.0),
                    _POSITIVE,
                    exp,
                    gamma(1.5, 0.25),
                    description="Taylor則のインフレ反応",
                ),
                parameter(
                    "psi2",
                    0.4536,
                    (1e-8, 10.0),
                    _POSITIVE,
                    exp,
                    gamma(0.5, 0.25),
                    description="Taylor則の産出反応",
                ),
                parameter(
                    "rA",
                    0.0313,
                    (1e-8, 10.0),
                    _POSITIVE,
                    exp,
                    gamma(0.5, 0.5),
                    scaling=discount_factor,
                    description="年率定常実質金利（β に変換）",
                ),
                parameter(
                    "piA",
                    8.1508,
                    (1e-8, 20.0),
                    _POSITIVE,
                    exp,
                    gamma(7.0, 2.0),
                    description="年率定常インフレ率",
                ),
                parameter(
                    "gammaQ",
                    0.1953,
                    (-5.0, 5.0),
                    prior=normal(0.4, 0.2),
                    description="四半期定常成長率",
                ),
                parameter(
                    "rho_R",
                    0.3847,
                    unit,
                    unit,
                    sqrt_unit,
                    beta(0.5, 0.2),
                    description="金利平滑化",
                ),
                parameter(
                    "rho_g",
                    0.3777,
                    unit,
                    unit,
                    sqrt_unit,
                    beta(0.5, 0.2),
                    description="需要ショックの持続性",
                ),
                parameter(
                    "rho_z",
                    0.9579,
                    unit,
                    unit,
                    sqrt_unit,
                    beta(0.5, 0.2),
                    description="技術ショックの持続性",
                ),
                parameter(
                    "sigma_R",
                    0.4900,
                    (1e-8, 5.0),
                    _POSITIVE,
                    exp,
                    inv_gamma(0.4, 0.2),
                    description="金融政策ショックの標準偏差",
                ),
                parameter(
                    "sigma_g",
                    1.4594,
                    (1e-8, 5.0),
                    _POSITIVE,
                    exp,
                    inv_gamma(1.0, 0.5),
                    description="需要ショックの標準偏差",
                ),
                parameter(
                    "sigma_z",
                    0.9247,
                    (1e-8, 5.0),
                    _POSITIVE,
                    exp,
                    inv_gamma(0.5, 0.26),
                    description="技術ショックの標準偏差",
                ),
                parameter("e_y", 0.20 * 0.579923, fixed=True, description="産出成長率の測定誤差"),
                parameter("e_pi", 0.20 * 1.470832, fixed=True, description="インフレ率の測定誤差"),
                parameter("e_R", 0.20 * 2.237937, fixed=True, description="金利の測定誤差"),
            ],
            steady_state=[
                SteadyStateParameter("int_ss", 0.0, "年率定常名目金利 π^A + r^A + 4γ^Q"),
            ],
        )

    def steady_state(self, params: ParameterCollection) -> ParameterCollection:
        int_ss = params.value("piA") + params["rA"].value + 4.0 * params.value("gammaQ")
        return params.with_steady_state({"int_ss": int_ss})

    def eqcond(self, params: ParameterCollection) -> EquilibriumSystem:
        idx = {name: i for i, name in enumerate(self.endogenous_states)}
        shock = {name: i for i, name in enumerate(self.exogenous_shocks)}
        n = self.n_states

        tau = params.value("tau")
        kappa = params.value("kappa")
        psi1 = params.value("psi1")
        psi2 = params.value("psi2")
        beta_ = params.value("rA")
        rho_R = params.value("rho_R")
        rho_g = params.value("rho_g")
        rho_z = params.value("rho_z")

        g0 = np.zeros((n, n))
        g1 = np.zeros((n, n))
        psi = np.zeros((n, self.n_shocks))
        pi = np.zeros((n, 2))

        y, p, r, g, z, ey, ep = (idx[k] for k in self.endogenous_states)

        # 1. IS曲線
        g0[0, y] = 1.0
        g0[0, r] = 1.0 / tau
        g0[0, g] = -(1.0 - rho_g)
        g0[0, z] = -rho_z / tau
        g0[0, ey] = -1.0
        g0[0, ep] = -1.0 / tau

        # 2. Phillips曲線
        g0[1, p] = 1.0
        g0[1, y] = -kappa
        g0[1, g] = kappa
        g0[1, ep] = -beta_

        # 3. Taylor則
        g0[2, r] = 1.0
        g1[2, r] = rho_R
        g0[2, p] = -(1.0 - rho_R) * psi1
        g0[2, y] = -(1.0 - rho_R) * psi2
        g0[2, g] = (1.0 - rho_R) * psi2
        psi[2, shock["eps_R"]] = 1.0

        # 4. 需要ショック
        g0[3, g] = 1.0
        g1[3, g] = rho_g
        psi[3, shock["eps_g"]] = 1.0

        # 5. 技術ショック
        g0[4, z] = 1.0
        g1[4, z] = rho_z
        psi[4, shock["eps_z"]] = 1.0

        # 6-7. 期待誤差 y_t = E_{t-1}[y_t] + η_y
        g0[5, y] = 1.0
        g1[5, ey] = 1.0
        pi[5, 0] = 1.0

        g0[6, p] = 1.0
        g1[6, ep] = 1.0
        pi[6, 1] = 1.0

        return EquilibriumSystem(gamma0=g0, gamma1=g1, psi=psi, pi=pi)

    def augment_states(
        self, params: ParameterCollection, transition: TransitionLaw
    ) -> TransitionLaw:
        """y_{t-1} を状態の末尾に追加する"""
        n = transition.n_states
        y = self.state_index("y")

        T = np.zeros((n + 1, n + 1))
        T[:n, :n] = transition.T
        T[n, y] = 1.0
        R = np.vstack([transition.R, np.zeros((1, transition.R.shape[1]))])
        C = np.append(transition.C, 0.0)
        return TransitionLaw(T, R, C, transition.eigenvalues, transition.n_unstable)

    def measurement(self, params: ParameterCollection, transition: TransitionLaw) -> Measurement:
        n = self.n_states_augmented
        Z = np.zeros((self.n_observables, n))
        D = np.zeros(self.n_observables)

        # 産出成長率
        Z[0, self.state_index("y")] = 1.0
        Z[0, self.state_index("y_lag")] = -1.0
        Z[0, self.state_index("z")] = 1.0
        D[0] = params.value("gammaQ")

        # インフレ率
        Z[1, self.state_index("pi")] = 4.0
        D[1] = params.value("piA")

        # 名目金利
        Z[2, self.state_index("R")] = 4.0
        D[2] = params.value("int_ss")

        shock_std = [params.value(k) for k in ("sigma_z", "sigma_g", "sigma_R")]
        me_std = [params.value(k) for k in ("e_y", "e_pi", "e_R")]
        return Measurement(
            Z=Z,
            D=D,
            Q=np.diag(np.square(shock_std)),
            H=np.diag(np.square(me_std)),
        )
