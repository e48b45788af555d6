"""標準Kalmanフィルタ

線形ガウス状態空間モデルに対するKalmanフィルタを実装する。

状態空間モデル:
    x_t = T @ x_{t-1} + R @ ε_t + C,    ε_t ~ N(0, Q)
    y_t = D + Z @ x_t + u_t,             u_t ~ N(0, H)

観測の欠損（NaN）は系列ごとに扱い、観測された系列だけで更新する。
境界期を境に状態空間形式を切り替える2レジームのフィルタにも対応する。
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
import scipy.linalg

from bayes_dsge.core.exceptions import DimensionError, KalmanFilterError, SingularInnovationError
from bayes_dsge.estimation.state_space import StateSpaceSystem
from bayes_dsge.parameters.constants import FILTER_CONSTANTS, FilterConstants

logger = logging.getLogger(__name__)


class FilterRegime(Enum):
    """フィルタのレジーム"""

    PRE_BOUNDARY = "pre_boundary"
    POST_BOUNDARY = "post_boundary"


@dataclass(frozen=True, eq=False)
class RegimeSchedule:
    """境界期で一度だけ遷移する2状態のレジーム

    Attributes:
        pre: 境界前の状態空間形式
        post: 境界以降の状態空間形式（None なら単一レジーム）
        boundary: 境界以降の最初の期（0始まり）
    """

    pre: StateSpaceSystem
    post: StateSpaceSystem | None = None
    boundary: int | None = None

    def __post_init__(self) -> None:
        if (self.post is None) != (self.boundary is None):
            msg = "境界後の状態空間形式と境界期は同時に指定する必要があります"
            raise DimensionError(msg)
        if self.post is not None:
            if self.post.n_states != self.pre.n_states:
                msg = f"レジーム間で状態数が異なります: {self.pre.n_states} != {self.post.n_states}"
                raise DimensionError(msg)
            if self.post.n_observables != self.pre.n_observables:
                msg = "レジーム間で観測変数の数が異なります"
                raise DimensionError(msg)
            if self.post.n_shocks != self.pre.n_shocks:
                msg = "レジーム間でショックの数が異なります"
                raise DimensionError(msg)
        if self.boundary is not None and self.boundary < 0:
            msg = f"境界期は非負である必要があります: {self.boundary}"
            raise DimensionError(msg)

    @property
    def n_states(self) -> int:
        return self.pre.n_states

    @property
    def n_observables(self) -> int:
        return self.pre.n_observables

    def initial_regime(self) -> FilterRegime:
        if self.boundary == 0:
            return FilterRegime.POST_BOUNDARY
        return FilterRegime.PRE_BOUNDARY

    def advance(self, regime: FilterRegime, t: int) -> FilterRegime:
        """期 t で適用するレジームを返す（境界期に一度だけ遷移）"""
        if regime is FilterRegime.PRE_BOUNDARY and self.boundary is not None and t >= self.boundary:
            logger.debug("t=%d で境界後のレジームに遷移", t)
            return FilterRegime.POST_BOUNDARY
        return regime

    def system(self, regime: FilterRegime) -> StateSpaceSystem:
        if regime is FilterRegime.POST_BOUNDARY and self.post is not None:
            return self.post
        return self.pre

    def regimes(self, n_periods: int) -> list[FilterRegime]:
        """各期のレジーム"""
        out = []
        regime = self.initial_regime()
        for t in range(n_periods):
            regime = self.advance(regime, t)
            out.append(regime)
        return out


@dataclass
class KalmanFilterResult:
    """Kalmanフィルタの結果

    Attributes:
        log_likelihood: 対数尤度
        log_likelihood_contributions: 各期の対数尤度 (T_obs,)
        predicted_states: 1期先予測 x_{t|t-1} (T_obs, n_states)
        predicted_covariances: 予測共分散 P_{t|t-1} (T_obs, n_states, n_states)
        filtered_states: フィルタ済み状態 x_{t|t} (T_obs, n_states)
        filtered_covariances: フィルタ済み共分散 P_{t|t} (T_obs, n_states, n_states)
        prediction_errors: 予測誤差 (T_obs, n_obs)。欠損はNaN
        initial_state: 初期状態 x_{0|0}
        initial_covariance: 初期共分散 P_{0|0}
        regimes: 各期のレジーム
    """

    log_likelihood: float
    log_likelihood_contributions: np.ndarray
    predicted_states: np.ndarray
    predicted_covariances: np.ndarray
    filtered_states: np.ndarray
    filtered_covariances: np.ndarray
    prediction_errors: np.ndarray
    initial_state: np.ndarray
    initial_covariance: np.ndarray
    regimes: list[FilterRegime] = field(default_factory=list)


def kalman_filter(
    data: np.ndarray,
    system: StateSpaceSystem | RegimeSchedule,
    s0: np.ndarray | None = None,
    P0: np.ndarray | None = None,
    constants: FilterConstants = FILTER_CONSTANTS,
) -> KalmanFilterResult:
    """Kalmanフィルタ

    状態空間形式は変更しない。

    Args:
        data: (T_obs, n_obs) 観測データ。欠損値はNaN
        system: 状態空間形式、または2レジームのスケジュール
        s0: (n_states,) 初期状態。Noneの場合は無条件平均
        P0: (n_states, n_states) 初期共分散。Noneの場合はLyapunov方程式から計算
        constants: 特異判定などの定数

    Returns:
        KalmanFilterResult

    Raises:
        DimensionError: 入力の次元が整合しない場合
        SingularInnovationError: 予測誤差共分散が特異な場合
        KalmanFilterError: フィルタ計算中にNaN/infが発生した場合
    """
    schedule = system if isinstance(system, RegimeSchedule) else RegimeSchedule(system)
    _validate_dimensions(data, schedule, s0, P0)

    T_obs, n_obs = data.shape
    n_states = schedule.n_states

    if s0 is None:
        s0 = _initialize_state(schedule.pre)
    if P0 is None:
        P0 = _initialize_covariance(schedule.pre, constants)
    s_filt = np.array(s0, dtype=np.float64)
    P_filt = np.array(P0, dtype=np.float64)

    predicted_states = np.empty((T_obs, n_states))
    predicted_covariances = np.empty((T_obs, n_states, n_states))
    filtered_states = np.empty((T_obs, n_states))
    filtered_covariances = np.empty((T_obs, n_states, n_states))
    prediction_errors = np.full((T_obs, n_obs), np.nan)
    contributions = np.zeros(T_obs)
    regimes: list[FilterRegime] = []

    regime = schedule.initial_regime()
    for t in range(T_obs):
        regime = schedule.advance(regime, t)
        regimes.append(regime)
        ss = schedule.system(regime)

        # --- Predict ---
        s_pred = ss.T @ s_filt + ss.C
        P_pred = ss.T @ P_filt @ ss.T.T + ss.state_covariance()
        P_pred = 0.5 * (P_pred + P_pred.T)

        predicted_states[t] = s_pred
        predicted_covariances[t] = P_pred

        # --- 欠損値処理 ---
        obs_t = data[t]
        valid = ~np.isnan(obs_t)
        n_valid = int(np.sum(valid))

        if n_valid == 0:
            # 全欠損: 予測のみ（尤度貢献なし）
            s_filt = s_pred
            P_filt = P_pred
        else:
            Z_t = ss.Z[valid, :]
            H_t = ss.H[np.ix_(valid, valid)]

            v = obs_t[valid] - ss.D[valid] - Z_t @ s_pred
            F = Z_t @ P_pred @ Z_t.T + H_t
            F = 0.5 * (F + F.T)

            s_filt, P_filt, ll_t = _update_step(s_pred, P_pred, v, F, Z_t, t, constants)
            contributions[t] = ll_t
            prediction_errors[t, valid] = v

        P_filt = 0.5 * (P_filt + P_filt.T)

        if not np.all(np.isfinite(s_filt)) or not np.all(np.isfinite(P_filt)):
            raise KalmanFilterError(f"フィルタ済み状態にNaN/infが発生 (t={t})")

        filtered_states[t] = s_filt
        filtered_covariances[t] = P_filt

    return KalmanFilterResult(
        log_likelihood=float(contributions.sum()),
        log_likelihood_contributions=contributions,
        predicted_states=predicted_states,
        predicted_covariances=predicted_covariances,
        filtered_states=filtered_states,
        filtered_covariances=filtered_covariances,
        prediction_errors=prediction_errors,
        initial_state=np.array(s0, dtype=np.float64),
        initial_covariance=np.array(P0, dtype=np.float64),
        regimes=regimes,
    )


def kalman_filter_2part(
    data: np.ndarray,
    pre_system: StateSpaceSystem,
    post_system: StateSpaceSystem,
    boundary: int,
    s0: np.ndarray | None = None,
    P0: np.ndarray | None = None,
) -> KalmanFilterResult:
    """境界期で状態空間形式を切り替えるKalmanフィルタ

    境界前後で状態の平均と共分散は連続して引き継がれる。
    """
    schedule = RegimeSchedule(pre_system, post_system, boundary)
    return kalman_filter(data, schedule, s0=s0, P0=P0)


def _initialize_state(system: StateSpaceSystem) -> np.ndarray:
    """初期状態 (I - T)^{-1} C。単位根がある場合はゼロ"""
    n = system.n_states
    if not np.any(system.C):
        return np.zeros(n)
    try:
        return np.linalg.solve(np.eye(n) - system.T, system.C)
    except np.linalg.LinAlgError:
        return np.zeros(n)


def _initialize_covariance(system: StateSpaceSystem, constants: FilterConstants) -> np.ndarray:
    """初期共分散行列を計算する

    Lyapunov方程式 P0 = T @ P0 @ T' + R @ Q @ R' を解く。
    非定常な場合や失敗した場合は大きな対角行列をフォールバックとして返す。
    """
    n = system.n_states
    diffuse = constants.diffuse_scale * np.eye(n)
    if n == 0:
        return diffuse
    if np.max(np.abs(np.linalg.eigvals(system.T))) >= 1.0 - constants.unit_root_tolerance:
        logger.debug("遷移行列が非定常のため初期共分散に対角行列を使用")
        return diffuse
    try:
        P0 = scipy.linalg.solve_discrete_lyapunov(system.T, system.state_covariance())
    except (np.linalg.LinAlgError, ValueError):
        return diffuse
    if not np.all(np.isfinite(P0)):
        return diffuse
    return 0.5 * (P0 + P0.T)


def _update_step(
    s_pred: np.ndarray,
    P_pred: np.ndarray,
    v: np.ndarray,
    F: np.ndarray,
    Z_t: np.ndarray,
    t: int,
    constants: FilterConstants,
) -> tuple[np.ndarray, np.ndarray, float]:
    """Kalmanフィルタの更新ステップ

    Cholesky分解を用いてKalmanゲインと尤度貢献を計算する。
    分解できない場合や、相関行列に直したピボットの比が閾値以下の場合は特異とみなす。

    Returns:
        (s_filt, P_filt, ll_contrib) のタプル

    Raises:
        SingularInnovationError: 予測誤差共分散が特異な場合
    """
    try:
        CF = scipy.linalg.cho_factor(F)
    except np.linalg.LinAlgError as e:
        raise SingularInnovationError(t) from e

    # 相関行列 D^{-1/2} F D^{-1/2} のピボット。系列の単位の違いに左右されない
    pivots = np.diag(CF[0]) ** 2 / np.diag(F)
    if pivots.min() <= constants.singular_tolerance * pivots.max():
        raise SingularInnovationError(t)

    n_valid = len(v)

    # Kalmanゲイン: K = P_pred @ Z' @ F^{-1}
    K = P_pred @ Z_t.T @ scipy.linalg.cho_solve(CF, np.eye(n_valid))

    s_filt = s_pred + K @ v
    P_filt = P_pred - K @ Z_t @ P_pred

    log_det_F = 2.0 * np.sum(np.log(np.diag(CF[0])))
    Finv_v = scipy.linalg.cho_solve(CF, v)
    ll_contrib = -0.5 * (n_valid * np.log(2.0 * np.pi) + log_det_F + float(v @ Finv_v))

    return s_filt, P_filt, ll_contrib


def _validate_dimensions(
    data: np.ndarray,
    schedule: RegimeSchedule,
    s0: np.ndarray | None,
    P0: np.ndarray | None,
) -> None:
    """入力の次元整合性を検証する"""
    if data.ndim != 2:
        raise DimensionError(f"データは2次元配列が必要 (got {data.ndim}D)")

    n_obs = data.shape[1]
    n_states = schedule.n_states

    if schedule.n_observables != n_obs:
        raise DimensionError(f"データの列数 {n_obs} が観測変数の数 {schedule.n_observables} と一致しません")
    if np.any(np.isinf(data)):
        raise DimensionError("データに inf が含まれています")
    if s0 is not None and s0.shape != (n_states,):
        raise DimensionError(f"s0は({n_states},)が必要 (got {s0.shape})")
    if P0 is not None and P0.shape != (n_states, n_states):
        raise DimensionError(f"P0は({n_states}, {n_states})が必要 (got {P0.shape})")
