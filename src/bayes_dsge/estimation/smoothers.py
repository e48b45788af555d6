"""状態の平滑化

- kalman_smoother: Rauch-Tung-Striebel 型の後退再帰で条件付き平均を求める
- durbin_koopman_smoother: 事後分布から状態経路を1本抽出するシミュレーション平滑化

どちらもフィルタの前進計算を1回行った後に実行する。線形ガウスの場合、
Durbin-Koopman の抽出の期待値は RTS の平滑化状態に一致する。
"""

from dataclasses import dataclass

import numpy as np
import scipy.linalg

from bayes_dsge.core.exceptions import DimensionError
from bayes_dsge.estimation.kalman_filter import (
    FilterRegime,
    KalmanFilterResult,
    RegimeSchedule,
    kalman_filter,
)
from bayes_dsge.estimation.state_space import StateSpaceSystem, covariance_factor


@dataclass
class SmootherResult:
    """平滑化の結果

    Attributes:
        smoothed_states: 平滑化状態 (T_obs, n_states)
        smoothed_shocks: 平滑化ショック (T_obs, n_shocks)
        smoothed_covariances: 平滑化共分散 (T_obs, n_states, n_states)。抽出では None
        initial_state: 平滑化した初期状態 x_{0|T}
    """

    smoothed_states: np.ndarray
    smoothed_shocks: np.ndarray
    smoothed_covariances: np.ndarray | None
    initial_state: np.ndarray


def _as_schedule(system: StateSpaceSystem | RegimeSchedule) -> RegimeSchedule:
    return system if isinstance(system, RegimeSchedule) else RegimeSchedule(system)


def _check_data(data: np.ndarray) -> None:
    if data.ndim != 2 or data.shape[0] == 0:
        msg = f"平滑化には1期以上のデータが必要です (got {data.shape})"
        raise DimensionError(msg)


def kalman_smoother(
    data: np.ndarray,
    system: StateSpaceSystem | RegimeSchedule,
    filter_result: KalmanFilterResult | None = None,
) -> SmootherResult:
    """Rauch-Tung-Striebel 平滑化

    x_{t|T} = x_{t|t} + J_t (x_{t+1|T} - x_{t+1|t}),  J_t = P_{t|t} T' P_{t+1|t}^+

    Args:
        data: (T_obs, n_obs) 観測データ。欠損値はNaN
        system: 状態空間形式、または2レジームのスケジュール
        filter_result: 同じ data と system に対するフィルタ結果。None なら計算する

    Returns:
        SmootherResult

    Raises:
        DimensionError: データが空、またはフィルタ結果と長さが合わない場合
    """
    _check_data(data)
    schedule = _as_schedule(system)
    if filter_result is None:
        filter_result = kalman_filter(data, schedule)

    s_filt = filter_result.filtered_states
    P_filt = filter_result.filtered_covariances
    s_pred = filter_result.predicted_states
    P_pred = filter_result.predicted_covariances
    T_obs, n_states = s_filt.shape
    if data.shape[0] != T_obs:
        raise DimensionError(f"データ長 {data.shape[0]} がフィルタ結果の長さ {T_obs} と一致しません")

    regimes = filter_result.regimes or schedule.regimes(T_obs)

    smoothed = np.empty((T_obs, n_states))
    smoothed_cov = np.empty((T_obs, n_states, n_states))
    smoothed[-1] = s_filt[-1]
    smoothed_cov[-1] = P_filt[-1]

    for t in range(T_obs - 2, -1, -1):
        T_next = schedule.system(regimes[t + 1]).T
        J = P_filt[t] @ T_next.T @ scipy.linalg.pinvh(P_pred[t + 1])
        smoothed[t] = s_filt[t] + J @ (smoothed[t + 1] - s_pred[t + 1])
        cov = P_filt[t] + J @ (smoothed_cov[t + 1] - P_pred[t + 1]) @ J.T
        smoothed_cov[t] = 0.5 * (cov + cov.T)

    # 初期状態 x_{0|T}
    T_first = schedule.system(regimes[0]).T
    J0 = filter_result.initial_covariance @ T_first.T @ scipy.linalg.pinvh(P_pred[0])
    initial = filter_result.initial_state + J0 @ (smoothed[0] - s_pred[0])

    shocks = _smoothed_shocks(schedule, regimes, smoothed, initial)
    return SmootherResult(
        smoothed_states=smoothed,
        smoothed_shocks=shocks,
        smoothed_covariances=smoothed_cov,
        initial_state=initial,
    )


def durbin_koopman_smoother(
    data: np.ndarray,
    system: StateSpaceSystem | RegimeSchedule,
    rng: np.random.Generator,
    filter_result: KalmanFilterResult | None = None,
) -> SmootherResult:
    """Durbin-Koopman シミュレーション平滑化

    1. 初期状態・ショック・測定誤差を抽出して (x*, y*) をシミュレート
       （y* の欠損パターンは data と同じ）
    2. y と y* をそれぞれ平滑化
    3. x* + (E[x | y] - E[x* | y*]) が事後分布からの抽出になる

    Args:
        data: (T_obs, n_obs) 観測データ。欠損値はNaN
        system: 状態空間形式、または2レジームのスケジュール
        rng: 乱数生成器
        filter_result: data に対するフィルタ結果。None なら計算する

    Returns:
        状態経路の抽出（smoothed_covariances は None）
    """
    _check_data(data)
    schedule = _as_schedule(system)
    if filter_result is None:
        filter_result = kalman_filter(data, schedule)
    T_obs, n_obs = data.shape
    regimes = filter_result.regimes or schedule.regimes(T_obs)

    s0 = filter_result.initial_state
    P0 = filter_result.initial_covariance

    x = s0 + covariance_factor(P0) @ rng.standard_normal(len(s0))
    x_initial = x.copy()
    sim_states = np.empty((T_obs, schedule.n_states))
    sim_data = np.empty((T_obs, n_obs))
    for t in range(T_obs):
        ss = schedule.system(regimes[t])
        eps = covariance_factor(ss.Q) @ rng.standard_normal(ss.n_shocks)
        u = covariance_factor(ss.H) @ rng.standard_normal(n_obs)
        x = ss.T @ x + ss.R @ eps + ss.C
        sim_states[t] = x
        sim_data[t] = ss.D + ss.Z @ x + u
    sim_data[np.isnan(data)] = np.nan

    actual = kalman_smoother(data, schedule, filter_result)
    simulated = kalman_smoother(sim_data, schedule, kalman_filter(sim_data, schedule, s0=s0, P0=P0))

    states = sim_states + (actual.smoothed_states - simulated.smoothed_states)
    initial = x_initial + (actual.initial_state - simulated.initial_state)
    shocks = _smoothed_shocks(schedule, regimes, states, initial)
    return SmootherResult(
        smoothed_states=states,
        smoothed_shocks=shocks,
        smoothed_covariances=None,
        initial_state=initial,
    )


def smooth(
    data: np.ndarray,
    system: StateSpaceSystem | RegimeSchedule,
    filter_result: KalmanFilterResult | None = None,
    method: str = "kalman",
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """平滑化状態の行列を返す

    Args:
        method: "kalman" または "durbin_koopman"
        rng: durbin_koopman の場合の乱数生成器

    Returns:
        (T_obs, n_states) の平滑化状態
    """
    match method:
        case "kalman":
            return kalman_smoother(data, system, filter_result).smoothed_states
        case "durbin_koopman":
            if rng is None:
                rng = np.random.default_rng()
            return durbin_koopman_smoother(data, system, rng, filter_result).smoothed_states
        case _:
            msg = f"未対応の平滑化手法: '{method}'"
            raise ValueError(msg)


def _smoothed_shocks(
    schedule: RegimeSchedule,
    regimes: list[FilterRegime],
    states: np.ndarray,
    initial: np.ndarray,
) -> np.ndarray:
    """平滑化状態からショックを復元する

    E[ε_t | Y] = Q R' (R Q R')^+ (x_{t|T} - T x_{t-1|T} - C)
    """
    T_obs = states.shape[0]
    shocks = np.empty((T_obs, schedule.pre.n_shocks))
    previous = initial
    for t in range(T_obs):
        ss = schedule.system(regimes[t])
        loading = ss.Q @ ss.R.T @ scipy.linalg.pinvh(ss.state_covariance())
        shocks[t] = loading @ (states[t] - ss.T @ previous - ss.C)
        previous = states[t]
    return shocks
