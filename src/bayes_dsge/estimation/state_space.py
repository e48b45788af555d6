"""状態空間形式の組み立て

状態方程式: x_t = T @ x_{t-1} + R @ ε_t + C,  ε_t ~ N(0, Q)
観測方程式: y_t = D + Z @ x_t + u_t,          u_t ~ N(0, H)

均衡解 (T, R, C) にモデルの観測方程式を組み合わせる。解いた後に追加される状態
（観測にだけ必要なラグ変数など）は augment_states で付け加え、解いた遷移ブロックは
変更しない。
"""

from dataclasses import dataclass

import numpy as np

from bayes_dsge.core.exceptions import DimensionError, ValidationError
from bayes_dsge.core.gensys import TransitionLaw
from bayes_dsge.core.model import Measurement, ModelContext


@dataclass(frozen=True, eq=False)
class StateSpaceSystem:
    """カルマンフィルタ用の状態空間行列

    Attributes:
        T: 状態遷移行列 (n_states, n_states)
        R: ショック負荷行列 (n_states, n_shocks)
        C: 状態方程式の定数項 (n_states,)
        Q: ショック共分散行列 (n_shocks, n_shocks)
        Z: 観測行列 (n_obs, n_states)
        D: 観測方程式の定数項 (n_obs,)
        H: 測定誤差共分散行列 (n_obs, n_obs)
    """

    T: np.ndarray
    R: np.ndarray
    C: np.ndarray
    Q: np.ndarray
    Z: np.ndarray
    D: np.ndarray
    H: np.ndarray

    def __post_init__(self) -> None:
        self._validate()

    @property
    def n_states(self) -> int:
        return int(self.T.shape[0])

    @property
    def n_shocks(self) -> int:
        return int(self.R.shape[1])

    @property
    def n_observables(self) -> int:
        return int(self.Z.shape[0])

    def state_covariance(self) -> np.ndarray:
        """状態ショックの共分散 R Q R'"""
        rqr: np.ndarray = self.R @ self.Q @ self.R.T
        return rqr

    def _validate(self) -> None:
        n = self.T.shape[0]
        k = self.R.shape[1] if self.R.ndim == 2 else -1
        m = self.Z.shape[0] if self.Z.ndim == 2 else -1

        expected = {
            "T": (self.T.shape, (n, n)),
            "R": (self.R.shape, (n, k)),
            "C": (self.C.shape, (n,)),
            "Q": (self.Q.shape, (k, k)),
            "Z": (self.Z.shape, (m, n)),
            "D": (self.D.shape, (m,)),
            "H": (self.H.shape, (m, m)),
        }
        for name, (actual, shape) in expected.items():
            if actual != shape:
                msg = f"{name} の形状 {actual} が期待値 {shape} と一致しません"
                raise DimensionError(msg)

        for name in expected:
            if not np.all(np.isfinite(getattr(self, name))):
                msg = f"{name} に非有限の要素が含まれています"
                raise DimensionError(msg)


def _augmented_transition(context: ModelContext) -> TransitionLaw:
    """均衡解に状態を追加した遷移を返す"""
    model = context.model
    transition = context.solve()
    augmented = model.augment_states(context.parameters, transition)

    n = transition.n_states
    if augmented.n_states < n or not (
        np.array_equal(augmented.T[:n, :n], transition.T)
        and np.array_equal(augmented.R[:n], transition.R)
        and np.array_equal(augmented.C[:n], transition.C)
    ):
        msg = f"モデル '{model.name}' の状態追加が解いた遷移ブロックを変更しています"
        raise ValidationError(msg)
    return augmented


def _assemble(transition: TransitionLaw, meas: Measurement) -> StateSpaceSystem:
    return StateSpaceSystem(
        T=transition.T,
        R=transition.R,
        C=transition.C,
        Q=meas.Q,
        Z=meas.Z,
        D=meas.D,
        H=meas.H,
    )


def compute_system(context: ModelContext) -> StateSpaceSystem:
    """パラメータから状態空間形式を組み立てる

    同じパラメータ値に対しては同一の行列を返す。

    Args:
        context: モデルと更新済みパラメータ

    Returns:
        状態空間形式

    Raises:
        SolverError: 均衡解が存在しない・一意でない場合
        ValidationError: 状態の追加が解いた遷移ブロックを変更した場合
    """
    transition = _augmented_transition(context)
    return _assemble(transition, context.model.measurement(context.parameters, transition))


def compute_system_pair(context: ModelContext) -> tuple[StateSpaceSystem, StateSpaceSystem]:
    """境界前後の状態空間形式を組み立てる（均衡は一度だけ解く）"""
    transition = _augmented_transition(context)
    params = context.parameters
    pre = _assemble(transition, context.model.measurement(params, transition))
    post = _assemble(transition, context.model.post_boundary_measurement(params, transition))
    return pre, post


def covariance_factor(cov: np.ndarray) -> np.ndarray:
    """半正定値行列の因子 L (L L' = cov)"""
    eigvals, eigvecs = np.linalg.eigh((cov + cov.T) / 2.0)
    factor: np.ndarray = eigvecs * np.sqrt(np.maximum(eigvals, 0.0))
    return factor


def simulate(
    system: StateSpaceSystem,
    n_periods: int,
    rng: np.random.Generator,
    initial_state: np.ndarray | None = None,
    burn_in: int = 100,
) -> tuple[np.ndarray, np.ndarray]:
    """状態空間形式から状態と観測をシミュレートする

    Args:
        system: 状態空間形式
        n_periods: 期間数
        rng: 乱数生成器
        initial_state: 初期状態。None なら 0 から burn_in 期間を捨てる
        burn_in: 捨てる期間数（initial_state 指定時は無視）

    Returns:
        (states, observables) それぞれ (n_periods, n_states), (n_periods, n_obs)
    """
    if initial_state is None:
        x = np.zeros(system.n_states)
        n_discard = burn_in
    else:
        x = np.asarray(initial_state, dtype=np.float64).copy()
        n_discard = 0

    shock_factor = covariance_factor(system.Q)
    meas_factor = covariance_factor(system.H)

    states = np.zeros((n_periods, system.n_states))
    observables = np.zeros((n_periods, system.n_observables))
    for t in range(n_discard + n_periods):
        eps = shock_factor @ rng.standard_normal(system.n_shocks)
        x = system.T @ x + system.R @ eps + system.C
        if t >= n_discard:
            u = meas_factor @ rng.standard_normal(system.n_observables)
            states[t - n_discard] = x
            observables[t - n_discard] = system.D + system.Z @ x + u

    return states, observables
