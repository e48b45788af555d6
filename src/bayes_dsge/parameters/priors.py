"""パラメータの事前分布

平均と標準偏差で指定し、scipy の frozen 分布に変換して評価する。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np
import scipy.stats


class DistributionType(Enum):
    """事前分布の種類"""

    BETA = "beta"
    GAMMA = "gamma"
    NORMAL = "normal"
    INV_GAMMA = "inv_gamma"
    UNIFORM = "uniform"


@dataclass(frozen=True)
class Prior:
    """単一パラメータの事前分布

    Attributes:
        dist_type: 分布の種類
        mean: 事前分布の平均
        std: 事前分布の標準偏差
    """

    dist_type: DistributionType
    mean: float
    std: float

    def __post_init__(self) -> None:
        if self.std <= 0:
            msg = f"事前分布の標準偏差は正である必要があります: {self.std}"
            raise ValueError(msg)
        if self.dist_type == DistributionType.BETA and not 0.0 < self.mean < 1.0:
            msg = f"Beta分布の平均は (0, 1) の範囲である必要があります: {self.mean}"
            raise ValueError(msg)

    def _get_scipy_dist(self) -> Any:
        """scipy frozen分布オブジェクトを返す"""
        match self.dist_type:
            case DistributionType.BETA:
                variance = self.std**2
                common = self.mean * (1 - self.mean) / variance - 1
                a = self.mean * common
                b = (1 - self.mean) * common
                return scipy.stats.beta(a, b)
            case DistributionType.GAMMA:
                a = (self.mean / self.std) ** 2
                scale = self.std**2 / self.mean
                return scipy.stats.gamma(a, scale=scale)
            case DistributionType.NORMAL:
                return scipy.stats.norm(loc=self.mean, scale=self.std)
            case DistributionType.INV_GAMMA:
                shape = (self.mean / self.std) ** 2 + 2
                scale = self.mean * (shape - 1)
                return scipy.stats.invgamma(shape, scale=scale)
            case DistributionType.UNIFORM:
                half_width = np.sqrt(3.0) * self.std
                return scipy.stats.uniform(loc=self.mean - half_width, scale=2.0 * half_width)

    def log_pdf(self, value: float) -> float:
        """対数確率密度を計算する

        Args:
            value: パラメータの値

        Returns:
            対数確率密度。台の外の場合は -inf
        """
        lp = float(self._get_scipy_dist().logpdf(value))
        if not np.isfinite(lp):
            return -np.inf
        return lp

    def sample(self, rng: np.random.Generator, size: int = 1) -> np.ndarray:
        """事前分布からサンプルを生成する

        Args:
            rng: NumPy乱数生成器
            size: サンプル数

        Returns:
            サンプル配列
        """
        dist = self._get_scipy_dist()
        return np.asarray(dist.rvs(size=size, random_state=rng), dtype=np.float64)

    def describe(self) -> str:
        """表示用の文字列"""
        return f"{self.dist_type.value}({self.mean:g}, {self.std:g})"


def beta(mean: float, std: float) -> Prior:
    return Prior(DistributionType.BETA, mean, std)


def gamma(mean: float, std: float) -> Prior:
    return Prior(DistributionType.GAMMA, mean, std)


def normal(mean: float, std: float) -> Prior:
    return Prior(DistributionType.NORMAL, mean, std)


def inv_gamma(mean: float, std: float) -> Prior:
    return Prior(DistributionType.INV_GAMMA, mean, std)


def uniform(lower: float, upper: float) -> Prior:
    """区間 [lower, upper] の一様分布"""
    return Prior(DistributionType.UNIFORM, (lower + upper) / 2.0, (upper - lower) / np.sqrt(12.0))
