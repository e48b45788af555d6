"""csminwel 準ニュートン最小化 (Sims)

数値勾配と BFGS による逆ヘシアンの更新で目的関数を最小化する。直線探索が
失敗した場合（勾配が壊れている、崖に当たった）は逆ヘシアンの対角をランダムに
摂動した方向で再探索し、それでも壁に当たる場合は二つの試行点を結ぶ方向に沿って
壁を越える。実行不能点で +inf を返す目的関数（負の対数事後確率）でも動作する。
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np

from bayes_dsge.core.exceptions import EstimationError
from bayes_dsge.parameters.constants import OPTIMIZER_CONSTANTS, OptimizerConstants

logger = logging.getLogger(__name__)

Objective = Callable[[np.ndarray], float]
Gradient = Callable[[np.ndarray], tuple[np.ndarray, bool]]

# csminit の終了コード
_RC_ZERO_GRADIENT = 1
_RC_SHRINK_LIMIT = 2
_RC_GROW_LIMIT = 4


@dataclass
class OptimizationTraceEntry:
    """反復ごとの記録"""

    iteration: int
    x: np.ndarray
    f: float
    gradient: np.ndarray


@dataclass
class OptimizationResult:
    """最小化の結果

    Attributes:
        x: 最小点
        f: 最小点での目的関数値
        converged: 許容誤差を満たして停止したか
        inverse_hessian: 最終的な逆ヘシアン近似
        iterations: 反復回数
        f_calls: 目的関数の評価回数
        x_converged: x の変化が許容誤差未満で停止
        f_converged: 目的関数の改善が crit 未満で停止
        g_converged: 勾配がゼロで停止
        trace: 反復ごとの記録
    """

    x: np.ndarray
    f: float
    converged: bool
    inverse_hessian: np.ndarray
    iterations: int
    f_calls: int
    x_converged: bool = False
    f_converged: bool = False
    g_converged: bool = False
    trace: list[OptimizationTraceEntry] = field(default_factory=list)


class _CountingObjective:
    def __init__(self, fcn: Objective) -> None:
        self.fcn = fcn
        self.calls = 0

    def __call__(self, x: np.ndarray) -> float:
        self.calls += 1
        f = float(self.fcn(x))
        # NaN は実行不能点として扱う
        return np.inf if np.isnan(f) else f


def numgrad(
    fcn: Objective,
    x: np.ndarray,
    f0: float | None = None,
    step: float = OPTIMIZER_CONSTANTS.gradient_step,
    bad_gradient: float = OPTIMIZER_CONSTANTS.bad_gradient,
) -> tuple[np.ndarray, bool]:
    """前進差分による数値勾配

    差分が bad_gradient を超える（または非有限の）成分は 0 とし、勾配が壊れている
    ことを示すフラグを立てる。

    Returns:
        (gradient, bad_gradient_flag)
    """
    if f0 is None:
        f0 = fcn(x)
    n = len(x)
    g = np.zeros(n)
    bad = False
    for i in range(n):
        tvec = np.zeros(n)
        tvec[i] = step
        gi = (fcn(x + tvec) - f0) / step
        if np.isfinite(gi) and abs(gi) < bad_gradient:
            g[i] = gi
        else:
            bad = True
    return g, bad


def bfgsi(H0: np.ndarray, dg: np.ndarray, dx: np.ndarray) -> np.ndarray:
    """逆ヘシアンの BFGS 更新

    dg' dx がほぼ 0 の場合は更新しない。
    """
    Hdg = H0 @ dg
    dgdx = float(dg @ dx)
    if abs(dgdx) <= 1e-12:
        logger.debug("BFGS更新をスキップ: |dg'dx| = %.3e", abs(dgdx))
        return H0
    H = H0 + (
        (1.0 + float(dg @ Hdg) / dgdx) * np.outer(dx, dx) - np.outer(dx, Hdg) - np.outer(Hdg, dx)
    ) / dgdx
    return H


def csminit(
    fcn: Objective,
    x0: np.ndarray,
    f0: float,
    g0: np.ndarray,
    badg: bool,
    H0: np.ndarray,
    constants: OptimizerConstants = OPTIMIZER_CONSTANTS,
) -> tuple[float, np.ndarray, int]:
    """探索方向 -H0 g0 に沿った直線探索

    Returns:
        (fhat, xhat, retcode)
        retcode: 0 正常, 1 勾配ゼロ, 2/4 ステップ縮小/拡大の限界, 3/6 ステップが小さすぎる,
                 5 ステップが大きすぎる, 7 改善が小さい
    """
    lam = 1.0
    xhat = x0
    fhat = f0
    gnorm = float(np.linalg.norm(g0))

    if gnorm < 1e-12 and not badg:
        return fhat, xhat, _RC_ZERO_GRADIENT

    dx = -H0 @ g0
    dxnorm = float(np.linalg.norm(dx))
    if dxnorm > 1e12:
        logger.debug("探索ステップが大きすぎるため縮小")
        dx = dx * constants.fchange / dxnorm
    dfhat = float(dx @ g0)

    if not badg:
        # 探索方向が勾配とほぼ直交する場合は勾配方向へ傾ける
        a = -dfhat / (gnorm * dxnorm) if dxnorm > 0 else 1.0
        if a < constants.angle:
            dx = dx - (constants.angle * dxnorm / gnorm + dfhat / (gnorm * gnorm)) * g0
            dx = dx * dxnorm / np.linalg.norm(dx)
            dfhat = float(dx @ g0)

    factor = 3.0
    shrink = True
    lambda_max = np.inf
    lambda_peak = 0.0
    f_peak = f0
    retcode = 0

    while True:
        dxtest = x0 + dx * lam
        f = fcn(dxtest)
        if f < fhat:
            fhat = f
            xhat = dxtest

        shrink_signal = (not badg and (f0 - f < max(-constants.theta * dfhat * lam, 0.0))) or (
            badg and (f0 - f) < 0
        )
        grow_signal = not badg and lam > 0 and (f0 - f > -(1.0 - constants.theta) * dfhat * lam)

        if shrink_signal and (lam > lambda_peak or lam < 0):
            if lam > 0 and (not shrink or lam / factor <= lambda_peak):
                shrink = True
                factor = factor**0.6
                while lam / factor <= lambda_peak:
                    factor = factor**0.6
                if abs(factor - 1.0) < constants.min_dfac:
                    retcode = _RC_SHRINK_LIMIT if abs(lam) < 4 else 7
                    break
            if lam < lambda_max and lam > lambda_peak:
                lambda_max = lam
            lam = lam / factor
            if abs(lam) < constants.min_lambda:
                if lam > 0 and f0 <= fhat:
                    # 勾配と逆方向を試す
                    lam = -lam * factor**6
                else:
                    retcode = 6 if lam < 0 else 3
                    break
        elif (grow_signal and lam > 0) or (shrink_signal and lam <= lambda_peak and lam > 0):
            if shrink:
                shrink = False
                factor = factor**0.6
                if abs(factor - 1.0) < constants.min_dfac:
                    retcode = _RC_GROW_LIMIT if abs(lam) < 4 else 7
                    break
            if f < f_peak and lam > 0:
                f_peak = f
                lambda_peak = lam
                if lambda_max <= lambda_peak:
                    lambda_max = lambda_peak * factor * factor
            lam = lam * factor
            if abs(lam) > 1e20:
                retcode = 5
                break
        else:
            retcode = 7 if factor < 1.2 else 0
            break

    return fhat, xhat, retcode


def csminwel(
    fcn: Objective,
    x0: np.ndarray,
    H0: np.ndarray | None = None,
    grad: Gradient | None = None,
    *,
    crit: float | None = None,
    max_iterations: int | None = None,
    x_tolerance: float | None = None,
    rng: np.random.Generator | None = None,
    constants: OptimizerConstants = OPTIMIZER_CONSTANTS,
) -> OptimizationResult:
    """csminwel による最小化

    Args:
        fcn: 目的関数。実行不能点では +inf を返してよい
        x0: 初期点
        H0: 逆ヘシアンの初期値。None なら constants.initial_inverse_hessian * I
        grad: 勾配関数 x -> (g, bad_flag)。None なら数値勾配
        crit: 目的関数の改善がこれ未満で停止
        max_iterations: 反復回数の上限
        x_tolerance: x の変化がこれ未満で停止
        rng: 再探索方向の摂動に使う乱数生成器
        constants: 直線探索などの定数

    Returns:
        OptimizationResult。上限に達した場合は converged=False

    Raises:
        EstimationError: 初期点で目的関数が評価できない場合
    """
    crit = constants.crit if crit is None else crit
    nit = constants.max_iterations if max_iterations is None else max_iterations
    xtol = constants.x_tolerance if x_tolerance is None else x_tolerance
    if rng is None:
        rng = np.random.default_rng(0)

    objective = _CountingObjective(fcn)
    x = np.array(x0, dtype=np.float64)
    nx = len(x)
    if H0 is None:
        H = constants.initial_inverse_hessian * np.eye(nx)
    else:
        H = np.array(H0, dtype=np.float64)

    def gradient(point: np.ndarray, fval: float) -> tuple[np.ndarray, bool]:
        if grad is not None:
            g_, bad_ = grad(point)
            return np.asarray(g_, dtype=np.float64), bool(bad_)
        return numgrad(objective, point, fval, constants.gradient_step, constants.bad_gradient)

    f = objective(x)
    if not np.isfinite(f) or f > constants.bad_value:
        raise EstimationError(f"初期点で目的関数が評価できません: f(x0) = {f}")

    g, badg = gradient(x, f)
    trace = [OptimizationTraceEntry(0, x.copy(), f, g.copy())]
    logger.info("csminwel開始: f(x0) = %.6f", f)

    itct = 0
    x_converged = f_converged = g_converged = False
    converged = False

    while True:
        itct += 1
        f1, x1, retcode1 = csminit(objective, x, f, g, badg, H, constants)

        f2 = f3 = f
        x2 = x3 = x
        g1 = g2 = g3 = g
        badg1 = badg2 = badg3 = True
        retcode2 = retcode3 = 101

        if retcode1 != _RC_ZERO_GRADIENT:
            if retcode1 in (_RC_SHRINK_LIMIT, _RC_GROW_LIMIT):
                wall1 = badg1 = True
            else:
                g1, badg1 = gradient(x1, f1)
                wall1 = badg1

            if wall1 and nx > 1:
                # 勾配が壊れているか崖に当たった: 探索方向をランダムに摂動する
                logger.debug("反復 %d: 直線探索が壁に当たったため摂動方向で再探索", itct)
                Hcliff = H + np.diag(np.diag(H) * rng.random(nx))
                f2, x2, retcode2 = csminit(objective, x, f, g, badg, Hcliff, constants)
                if f2 < f:
                    if retcode2 in (_RC_SHRINK_LIMIT, _RC_GROW_LIMIT):
                        wall2 = badg2 = True
                    else:
                        g2, badg2 = gradient(x2, f2)
                        wall2 = badg2
                    if wall2:
                        dx12 = x2 - x1
                        if np.linalg.norm(dx12) >= 1e-13:
                            # 二つの試行点を結ぶ方向に沿って壁を越える
                            gcliff = ((f2 - f1) / (np.linalg.norm(dx12) ** 2)) * dx12
                            f3, x3, retcode3 = csminit(
                                objective, x, f, gcliff, False, np.eye(nx), constants
                            )
                            if retcode3 in (_RC_SHRINK_LIMIT, _RC_GROW_LIMIT):
                                badg3 = True
                            else:
                                g3, badg3 = gradient(x3, f3)
        else:
            f1 = f
            x1 = x
            badg1 = badg
            retcode2 = retcode3 = retcode1

        # 最良の候補を選ぶ
        if f3 < f - crit and not badg3:
            fh, xh, gh, badgh, retcodeh = f3, x3, g3, badg3, retcode3
        elif f2 < f - crit and not badg2:
            fh, xh, gh, badgh, retcodeh = f2, x2, g2, badg2, retcode2
        elif f1 < f - crit and not badg1:
            fh, xh, gh, badgh, retcodeh = f1, x1, g1, badg1, retcode1
        else:
            candidates = [(f1, x1, retcode1), (f2, x2, retcode2), (f3, x3, retcode3)]
            fh, xh, retcodeh = min(candidates, key=lambda c: c[0])
            gh, badgh = gradient(xh, fh)
            badgh = True

        stuck = abs(fh - f) < crit
        if not badg and not badgh and not stuck:
            H = bfgsi(H, gh - g, xh - x)

        dx_norm = float(np.linalg.norm(xh - x))
        trace.append(OptimizationTraceEntry(itct, xh.copy(), fh, gh.copy()))
        logger.debug("反復 %d: f = %.8f, |dx| = %.3e, retcode = %d", itct, fh, dx_norm, retcodeh)

        x_converged = fh <= f and dx_norm < xtol
        f_converged = stuck
        g_converged = retcodeh == _RC_ZERO_GRADIENT
        x, f, g, badg = xh, fh, gh, badgh

        if f_converged or g_converged or x_converged:
            converged = True
            break
        if itct >= nit:
            logger.warning("csminwel: 反復上限 %d に達しました（未収束）", nit)
            break

    logger.info("csminwel終了: f = %.6f, 反復 %d, 収束 %s", f, itct, converged)
    return OptimizationResult(
        x=x,
        f=f,
        converged=converged,
        inverse_hessian=H,
        iterations=itct,
        f_calls=objective.calls,
        x_converged=x_converged,
        f_converged=f_converged,
        g_converged=g_converged,
        trace=trace,
    )


def find_mode(
    objective: Objective,
    x0: np.ndarray,
    H0: np.ndarray | None = None,
    **kwargs: object,
) -> tuple[np.ndarray, float, bool]:
    """目的関数の最小点を探す

    Returns:
        (最小点, 目的関数値, 収束したか)
    """
    result = csminwel(objective, x0, H0, **kwargs)  # type: ignore[arg-type]
    return result.x, result.f, result.converged
