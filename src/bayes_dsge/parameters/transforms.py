"""パラメータの実数直線変換

モード探索はパラメータを実数直線上で扱うため、境界付きのモデル空間の値と
相互に変換する。変換は区間 (a, b) とスケール c = 1 で定まる。

- UNTRANSFORMED: 恒等変換
- SQUARE_ROOT: 実数直線を開区間 (a, b) に写す有理関数 x / sqrt(1 + x^2)
- EXPONENTIAL: 実数直線を半開区間 (a, ∞) に写す指数関数
"""

from enum import Enum

import numpy as np


class TransformKind(Enum):
    """変換の種類"""

    UNTRANSFORMED = "untransformed"
    SQUARE_ROOT = "square_root"
    EXPONENTIAL = "exponential"


def to_model(kind: TransformKind, x: float, interval: tuple[float, float]) -> float:
    """実数直線上の値をモデル空間に写す

    Args:
        kind: 変換の種類
        x: 実数直線上の値
        interval: 変換区間 (a, b)

    Returns:
        モデル空間の値
    """
    a, b = interval
    match kind:
        case TransformKind.UNTRANSFORMED:
            return float(x)
        case TransformKind.SQUARE_ROOT:
            if np.isinf(x):
                return float(b if x > 0 else a)
            return float((a + b) / 2.0 + (b - a) / 2.0 * x / np.hypot(1.0, x))
        case TransformKind.EXPONENTIAL:
            return float(a + np.exp(x - b))


def to_real(kind: TransformKind, value: float, interval: tuple[float, float]) -> float:
    """モデル空間の値を実数直線に写す

    区間の端点そのものは実数直線上に対応する点を持たず、±inf を返す。

    Args:
        kind: 変換の種類
        value: モデル空間の値
        interval: 変換区間 (a, b)

    Returns:
        実数直線上の値
    """
    a, b = interval
    match kind:
        case TransformKind.UNTRANSFORMED:
            return float(value)
        case TransformKind.SQUARE_ROOT:
            cx = 2.0 * (value - (a + b) / 2.0) / (b - a)
            if abs(cx) >= 1.0:
                return float(np.copysign(np.inf, cx))
            return float(cx / np.sqrt(1.0 - cx * cx))
        case TransformKind.EXPONENTIAL:
            if value <= a:
                return -np.inf
            return float(b + np.log(value - a))
