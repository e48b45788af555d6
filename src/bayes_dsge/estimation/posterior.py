"""対数事後確率の評価

log p(θ|y) = log p(y|θ) + Σ log p(θ_i)

θ は自由パラメータのベクトル（モデル空間）。境界外の値、均衡解の不存在・不決定、
特異な予測誤差共分散はいずれも -inf として返し、モード探索と MCMC が
任意の θ で評価できるようにする。ベクトル長の誤りなど呼び出し側の誤りは例外のまま伝える。
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from bayes_dsge.core.exceptions import (
    DimensionError,
    KalmanFilterError,
    ParamBoundsError,
    SolverError,
)
from bayes_dsge.core.model import DSGEModel, ModelContext
from bayes_dsge.estimation.kalman_filter import RegimeSchedule, kalman_filter
from bayes_dsge.estimation.state_space import compute_system, compute_system_pair
from bayes_dsge.parameters.parameter import ParameterCollection

logger = logging.getLogger(__name__)


def prior(params: ParameterCollection) -> float:
    """自由パラメータの対数事前確率の和"""
    return params.log_prior()


def system_schedule(context: ModelContext, boundary: int | None = None) -> RegimeSchedule:
    """フィルタに渡すレジームのスケジュールを組み立てる"""
    if boundary is None:
        return RegimeSchedule(compute_system(context))
    pre, post = compute_system_pair(context)
    return RegimeSchedule(pre, post, boundary)


def likelihood(context: ModelContext, data: np.ndarray, boundary: int | None = None) -> float:
    """対数尤度

    Raises:
        SolverError: 均衡解が存在しない・一意でない場合
        KalmanFilterError: フィルタが失敗した場合
    """
    return kalman_filter(data, system_schedule(context, boundary)).log_likelihood


def posterior(
    model: DSGEModel,
    theta: np.ndarray,
    data: np.ndarray,
    *,
    strict_bounds: bool = True,
    boundary: int | None = None,
) -> float:
    """対数事後確率

    Args:
        model: 推定対象モデル
        theta: 自由パラメータの値（宣言順、モデル空間）
        data: (T_obs, n_obs) 観測データ。欠損値はNaN
        strict_bounds: True なら境界外で -inf、False なら境界内に切り詰めて評価する
        boundary: 2レジームの場合の境界期

    Returns:
        対数事後確率。実行不能な θ では -inf

    Raises:
        DimensionError: θ の長さが自由パラメータ数と異なる場合
    """
    theta = np.asarray(theta, dtype=np.float64)
    n_free = model.parameters.n_free
    if theta.shape != (n_free,):
        raise DimensionError(f"θ の長さ {theta.shape} が自由パラメータ数 {n_free} と一致しません")
    if not strict_bounds:
        theta = model.parameters.clip_to_bounds(theta)

    try:
        context = model.context(theta)
        lp = prior(context.parameters)
        if not np.isfinite(lp):
            return -np.inf
        ll = likelihood(context, data, boundary)
    except ParamBoundsError as e:
        logger.debug("境界外のため棄却: %s", e)
        return -np.inf
    except SolverError as e:
        logger.debug("均衡解なしのため棄却: %s", e)
        return -np.inf
    except KalmanFilterError as e:
        logger.debug("フィルタ失敗のため棄却: %s", e)
        return -np.inf

    return float(lp + ll)


@dataclass(frozen=True, eq=False)
class PosteriorEvaluator:
    """モデルとデータを束ねた対数事後確率関数

    データは読み取り専用のコピーとして保持する。プロセス間で受け渡せるよう
    クロージャではなくクラスにしている。
    """

    model: DSGEModel
    data: np.ndarray
    strict_bounds: bool = True
    boundary: int | None = None

    def __post_init__(self) -> None:
        data = np.array(self.data, dtype=np.float64)
        data.flags.writeable = False
        object.__setattr__(self, "data", data)

    def __call__(self, theta: np.ndarray) -> float:
        return posterior(
            self.model,
            theta,
            self.data,
            strict_bounds=self.strict_bounds,
            boundary=self.boundary,
        )

    @property
    def n_params(self) -> int:
        return self.model.parameters.n_free

    def with_strict_bounds(self, strict: bool) -> "PosteriorEvaluator":
        return PosteriorEvaluator(self.model, self.data, strict, self.boundary)

    def on_real_line(self) -> Callable[[np.ndarray], float]:
        """実数直線上の θ を受け取る対数事後確率"""
        return _RealLinePosterior(self)


@dataclass(frozen=True, eq=False)
class _RealLinePosterior:
    evaluator: PosteriorEvaluator

    def __call__(self, x: np.ndarray) -> float:
        theta = self.evaluator.model.parameters.to_model(np.asarray(x, dtype=np.float64))
        return self.evaluator(theta)


def make_log_posterior(
    model: DSGEModel,
    data: np.ndarray,
    strict_bounds: bool = True,
    boundary: int | None = None,
) -> PosteriorEvaluator:
    """事後確率関数を構築する

    Returns:
        log_posterior(theta) → float を返す呼び出し可能オブジェクト
    """
    return PosteriorEvaluator(model, data, strict_bounds, boundary)
