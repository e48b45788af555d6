"""モードでのヘシアン推定

負の対数事後確率の二階微分を差分で近似する。境界から十分離れた座標は中心差分、
境界に近い（または境界上の）座標は内側に向けた片側差分を使い、差分点が境界の
外に出ないようにする。評価できない点（非有限値）に当たった場合は刻み幅を半分に
してやり直す。得られた行列が正定値でなければ固有値を下限で切り詰めて最も近い
正定値行列に置き換え、その旨をフラグと警告で知らせる。
"""

import logging
import warnings
from collections.abc import Callable

import numpy as np

from bayes_dsge.core.exceptions import EstimationError
from bayes_dsge.parameters.constants import HESSIAN_CONSTANTS, HessianConstants

logger = logging.getLogger(__name__)


def _stencil(
    x: np.ndarray,
    bounds: np.ndarray | None,
    constants: HessianConstants,
) -> tuple[np.ndarray, np.ndarray]:
    """座標ごとの刻み幅と差分の向き

    Returns:
        (刻み幅, 向き)。向きは 0 が中心差分、+1 / -1 が上側 / 下側への片側差分
    """
    h = constants.relative_step * np.maximum(np.abs(x), 1.0)
    side = np.zeros(len(x))
    if bounds is None:
        return h, side

    below = x - bounds[:, 0]
    above = bounds[:, 1] - x
    # 中心差分は x ± 2h を使う
    one_sided = np.minimum(below, above) < 2.0 * h
    side = np.where(one_sided, np.where(above >= below, 1.0, -1.0), 0.0)
    # 片側差分は内側へ 2h まで進む
    h = np.where(one_sided, np.minimum(h, 0.5 * np.maximum(below, above)), h)
    if np.any(one_sided):
        logger.debug("境界近くの座標 %s は片側差分を使用", np.flatnonzero(one_sided).tolist())
    return h, side


def _second_difference(
    fcn: Callable[[np.ndarray], float],
    x: np.ndarray,
    f0: float,
    i: int,
    j: int,
    hi: float,
    hj: float,
    si: float,
    sj: float,
) -> float:
    n = len(x)
    ei = np.zeros(n)
    if i == j:
        if si == 0.0:
            ei[i] = hi
            return (fcn(x + 2.0 * ei) - 2.0 * f0 + fcn(x - 2.0 * ei)) / (4.0 * hi * hi)
        ei[i] = si * hi
        return (f0 - 2.0 * fcn(x + ei) + fcn(x + 2.0 * ei)) / (hi * hi)

    ej = np.zeros(n)
    if si == 0.0 and sj == 0.0:
        ei[i] = hi
        ej[j] = hj
        fpp = fcn(x + ei + ej)
        fpm = fcn(x + ei - ej)
        fmp = fcn(x - ei + ej)
        fmm = fcn(x - ei - ej)
        return (fpp - fpm - fmp + fmm) / (4.0 * hi * hj)

    # 片側差分。中心差分の座標は上側に取る
    di = si if si != 0.0 else 1.0
    dj = sj if sj != 0.0 else 1.0
    ei[i] = di * hi
    ej[j] = dj * hj
    return (fcn(x + ei + ej) - fcn(x + ei) - fcn(x + ej) + f0) / (di * dj * hi * hj)


def numerical_hessian(
    fcn: Callable[[np.ndarray], float],
    x: np.ndarray,
    bounds: np.ndarray | None = None,
    constants: HessianConstants = HESSIAN_CONSTANTS,
) -> np.ndarray:
    """差分による数値ヘシアン

    Args:
        fcn: 最小化の目的関数（負の対数事後確率）
        x: 評価点。境界上にあってもよい
        bounds: (n, 2) の下限・上限。差分点を境界内に保つ
        constants: 刻み幅の設定

    Returns:
        対称な (n, n) 行列

    Raises:
        EstimationError: 評価点で目的関数が非有限、または刻み幅を縮めても評価できない場合
    """
    x = np.asarray(x, dtype=np.float64)
    f0 = float(fcn(x))
    if not np.isfinite(f0):
        raise EstimationError(f"ヘシアンの評価点で目的関数が非有限です: {f0}")

    n = len(x)
    h, side = _stencil(x, bounds, constants)
    hessian = np.zeros((n, n))

    for i in range(n):
        for j in range(i, n):
            hi, hj = h[i], h[j]
            value = np.nan
            for _ in range(constants.max_step_halvings + 1):
                value = _second_difference(fcn, x, f0, i, j, hi, hj, side[i], side[j])
                if np.isfinite(value):
                    break
                hi, hj = hi / 2.0, hj / 2.0
            if not np.isfinite(value):
                msg = f"ヘシアン要素 ({i}, {j}) を評価できません"
                raise EstimationError(msg)
            hessian[i, j] = value
            hessian[j, i] = value

    return hessian


def nearest_positive_definite(
    H: np.ndarray,
    min_eigenvalue: float = HESSIAN_CONSTANTS.min_eigenvalue,
) -> tuple[np.ndarray, bool]:
    """最も近い正定値行列

    対称化した上で固有値を min_eigenvalue で下から切り詰める。

    Returns:
        (正定値行列, 修正したか)
    """
    sym = 0.5 * (H + H.T)
    eigvals, eigvecs = np.linalg.eigh(sym)
    if np.all(eigvals >= min_eigenvalue):
        return sym, False

    clipped = np.maximum(eigvals, min_eigenvalue)
    corrected: np.ndarray = (eigvecs * clipped) @ eigvecs.T
    corrected = 0.5 * (corrected + corrected.T)
    return corrected, True


def estimate_hessian(
    fcn: Callable[[np.ndarray], float],
    x: np.ndarray,
    bounds: np.ndarray | None = None,
    constants: HessianConstants = HESSIAN_CONSTANTS,
) -> tuple[np.ndarray, bool]:
    """モードでのヘシアンを推定する

    Args:
        fcn: 負の対数事後確率
        x: モード
        bounds: (n, 2) のパラメータ境界
        constants: 刻み幅と固有値の下限

    Returns:
        (正定値なヘシアン, 正定値化の修正を行ったか)
    """
    hessian = numerical_hessian(fcn, x, bounds, constants)
    hessian_pd, corrected = nearest_positive_definite(hessian, constants.min_eigenvalue)
    if corrected:
        min_eig = float(np.linalg.eigvalsh(0.5 * (hessian + hessian.T)).min())
        logger.info("ヘシアンが正定値でないため固有値を切り詰めました（最小固有値 %.3e）", min_eig)
        warnings.warn(
            f"ヘシアンが正定値でないため修正しました（最小固有値 {min_eig:.3e}）",
            RuntimeWarning,
            stacklevel=2,
        )
    return hessian_pd, corrected


def hessian_inverse(hessian: np.ndarray) -> np.ndarray:
    """正定値ヘシアンの逆行列（対称化済み）"""
    inv: np.ndarray = np.linalg.inv(hessian)
    return 0.5 * (inv + inv.T)
