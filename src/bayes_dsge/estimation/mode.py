"""事後モード探索

自由パラメータを実数直線に変換し、負の対数事後確率を csminwel で最小化する。
境界はゆるく扱い（境界内に切り詰めて評価）、得られた点をモデル空間に戻す。
"""

import logging
from dataclasses import dataclass

import numpy as np

from bayes_dsge.core.model import DSGEModel
from bayes_dsge.estimation.csminwel import OptimizationResult, csminwel
from bayes_dsge.estimation.posterior import make_log_posterior
from bayes_dsge.parameters.constants import OPTIMIZER_CONSTANTS, OptimizerConstants

logger = logging.getLogger(__name__)


@dataclass
class ModeResult:
    """モード探索の結果

    Attributes:
        mode: モデル空間の事後モード
        log_posterior: モードでの対数事後確率
        converged: csminwel が収束したか
        optimization: 実数直線上の最適化結果（逆ヘシアンと履歴を含む）
    """

    mode: np.ndarray
    log_posterior: float
    converged: bool
    optimization: OptimizationResult


class _NegativeRealLinePosterior:
    def __init__(self, model: DSGEModel, data: np.ndarray, boundary: int | None) -> None:
        self._log_posterior = make_log_posterior(
            model, data, strict_bounds=False, boundary=boundary
        )
        self._to_model = model.parameters.to_model

    def __call__(self, x: np.ndarray) -> float:
        return -self._log_posterior(self._to_model(x))


def optimize_posterior(
    model: DSGEModel,
    data: np.ndarray,
    x0: np.ndarray | None = None,
    *,
    boundary: int | None = None,
    max_iterations: int | None = None,
    rng: np.random.Generator | None = None,
    constants: OptimizerConstants = OPTIMIZER_CONSTANTS,
) -> ModeResult:
    """事後モードを求める

    Args:
        model: 推定対象モデル
        data: 観測データ (T, n_obs)
        x0: モデル空間の初期値。None ならモデルの初期値
        boundary: 2レジームの場合の境界期
        max_iterations: csminwel の反復上限
        rng: csminwel の再探索方向の摂動に使う乱数生成器
        constants: csminwel の定数

    Returns:
        ModeResult。未収束でも例外にはせず converged=False で返す

    Raises:
        EstimationError: 初期値で事後確率が評価できない場合
    """
    params = model.parameters
    theta0 = params.free_values() if x0 is None else np.asarray(x0, dtype=np.float64)
    real0 = params.to_real(theta0)
    # 境界上の値は ±inf に写るので、区間のわずかに内側から始める
    real0 = np.where(np.isinf(real0), np.sign(real0) * constants.max_abs_start, real0)

    objective = _NegativeRealLinePosterior(model, data, boundary)
    logger.info("モード探索開始: 自由パラメータ %d 個", params.n_free)
    result = csminwel(
        objective,
        real0,
        max_iterations=max_iterations,
        rng=rng,
        constants=constants,
    )

    mode = params.clip_to_bounds(params.to_model(result.x))
    if not result.converged:
        logger.warning("モード探索が収束しませんでした（反復 %d）", result.iterations)
    return ModeResult(
        mode=mode,
        log_posterior=-result.f,
        converged=result.converged,
        optimization=result,
    )
