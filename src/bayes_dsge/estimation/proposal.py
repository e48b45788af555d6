"""ランダムウォーク提案分布"""

from dataclasses import dataclass, field

import numpy as np

from bayes_dsge.core.exceptions import DimensionError, EstimationError


@dataclass(frozen=True, eq=False)
class DegenerateMvNormal:
    """特異な共分散も扱える多変量正規分布

    共分散の固有値分解から因子 L (L L' = Σ) を作る。負の固有値は 0 に切り詰める。

    Attributes:
        mean: 平均ベクトル
        covariance: 共分散行列
    """

    mean: np.ndarray
    covariance: np.ndarray
    factor: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        mean = np.asarray(self.mean, dtype=np.float64)
        cov = np.asarray(self.covariance, dtype=np.float64)
        n = len(mean)
        if cov.shape != (n, n):
            msg = f"共分散の形状 {cov.shape} が平均の次元 {n} と一致しません"
            raise DimensionError(msg)
        if not np.all(np.isfinite(cov)):
            raise EstimationError("提案共分散に非有限の要素が含まれています")

        cov = 0.5 * (cov + cov.T)
        eigvals, eigvecs = np.linalg.eigh(cov)
        factor = eigvecs * np.sqrt(np.maximum(eigvals, 0.0))
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "covariance", cov)
        object.__setattr__(self, "factor", factor)

    @property
    def dim(self) -> int:
        return len(self.mean)

    def rand(self, rng: np.random.Generator) -> np.ndarray:
        """一回のドロー mean + L z"""
        draw: np.ndarray = self.mean + self.factor @ rng.standard_normal(self.dim)
        return draw

    def step(self, scale: float, rng: np.random.Generator) -> np.ndarray:
        """ランダムウォークの増分 c L z"""
        increment: np.ndarray = scale * (self.factor @ rng.standard_normal(self.dim))
        return increment


def proposal_distribution(covariance: np.ndarray) -> DegenerateMvNormal:
    """ゼロ平均の提案分布"""
    cov = np.asarray(covariance, dtype=np.float64)
    return DegenerateMvNormal(np.zeros(cov.shape[0]), cov)
