"""構造パラメータとパラメータ集合

パラメータは不変オブジェクトとして扱い、値の更新は検証済みのコピーを返す。
並列チェーンが同じモデル定義を共有しても互いの評価に影響しない。
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum

import numpy as np

from bayes_dsge.core.exceptions import DimensionError, DuplicateParameterError, ParamBoundsError
from bayes_dsge.parameters.priors import Prior
from bayes_dsge.parameters.transforms import TransformKind, to_model, to_real

logger = logging.getLogger(__name__)


class ParameterKind(Enum):
    """パラメータの種類"""

    FIXED = "fixed"
    FREE = "free"
    FREE_SCALED = "free_scaled"
    STEADY_STATE = "steady_state"


@dataclass(frozen=True)
class Parameter:
    """構造パラメータ

    Attributes:
        key: 一意なパラメータ名
        value: モデル空間の値
        bounds: 値の閉区間 [a, b]
        transform_interval: 実数直線変換の区間
        transform: 実数直線変換の種類
        prior: 事前分布（固定パラメータでは None）
        fixed: 推定対象外なら True
        scaling: 均衡条件で使う値への変換（例: 年率 → 割引因子）
        description: 説明
    """

    key: str
    value: float
    bounds: tuple[float, float]
    transform_interval: tuple[float, float]
    transform: TransformKind = TransformKind.UNTRANSFORMED
    prior: Prior | None = None
    fixed: bool = False
    scaling: Callable[[float], float] | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.fixed:
            point = (self.value, self.value)
            object.__setattr__(self, "bounds", point)
            object.__setattr__(self, "transform_interval", point)
            object.__setattr__(self, "prior", None)
        lower, upper = self.bounds
        if lower > upper:
            msg = f"パラメータ '{self.key}' の境界が不正です: {self.bounds}"
            raise ValueError(msg)
        if not lower <= self.value <= upper:
            raise ParamBoundsError(self.key, self.value, self.bounds)

    @property
    def kind(self) -> ParameterKind:
        """パラメータの種類"""
        if self.fixed:
            return ParameterKind.FIXED
        if self.scaling is not None:
            return ParameterKind.FREE_SCALED
        return ParameterKind.FREE

    @property
    def effective_value(self) -> float:
        """均衡条件で使う数値（スケーリング適用後）"""
        if self.scaling is None:
            return self.value
        return float(self.scaling(self.value))

    def with_value(self, value: float, bounds: tuple[float, float] | None = None) -> "Parameter":
        """値を更新したコピーを返す

        固定パラメータの更新は、新しい境界として (value, value) が明示された場合を除き
        何もしない（自身をそのまま返す）。

        Args:
            value: 新しい値
            bounds: 固定パラメータの値を変える場合に指定する境界

        Returns:
            更新後のパラメータ

        Raises:
            ParamBoundsError: 自由パラメータの値が境界外の場合
        """
        if self.fixed:
            if bounds is not None and bounds == (value, value):
                return replace(self, value=value)
            logger.debug("固定パラメータ '%s' の更新を無視しました", self.key)
            return self

        lower, upper = self.bounds
        if not lower <= value <= upper:
            raise ParamBoundsError(self.key, value, self.bounds)
        return replace(self, value=float(value))

    def to_real(self) -> float:
        """現在値を実数直線に写す"""
        return to_real(self.transform, self.value, self.transform_interval)

    def from_real(self, x: float) -> float:
        """実数直線上の値をモデル空間に写す"""
        return to_model(self.transform, x, self.transform_interval)

    def log_prior(self) -> float:
        """事前対数密度（固定・事前分布なしは 0）"""
        if self.fixed or self.prior is None:
            return 0.0
        return self.prior.log_pdf(self.value)


@dataclass(frozen=True)
class SteadyStateParameter:
    """定常状態から導出されるパラメータ

    自由パラメータから再計算されるため、事前分布も境界も持たない。
    """

    key: str
    value: float
    description: str = ""

    @property
    def kind(self) -> ParameterKind:
        return ParameterKind.STEADY_STATE

    @property
    def effective_value(self) -> float:
        return self.value


def parameter(
    key: str,
    value: float,
    bounds: tuple[float, float] | None = None,
    transform_interval: tuple[float, float] | None = None,
    transform: TransformKind = TransformKind.UNTRANSFORMED,
    prior: Prior | None = None,
    *,
    fixed: bool = False,
    scaling: Callable[[float], float] | None = None,
    description: str = "",
) -> Parameter:
    """パラメータを構築する

    境界を省略した場合は (-inf, inf)、変換区間を省略した場合は境界を使う。
    """
    if bounds is None:
        bounds = (-np.inf, np.inf)
    if transform_interval is None:
        transform_interval = bounds
    return Parameter(
        key=key,
        value=float(value),
        bounds=bounds,
        transform_interval=transform_interval,
        transform=transform,
        prior=prior,
        fixed=fixed,
        scaling=scaling,
        description=description,
    )


class ParameterCollection:
    """順序付きパラメータ集合

    キーの重複を許さない。自由パラメータのベクトルは宣言順に並ぶ。
    """

    def __init__(
        self,
        parameters: Iterable[Parameter],
        steady_state: Iterable[SteadyStateParameter] = (),
    ) -> None:
        self._parameters = tuple(parameters)
        self._steady_state = tuple(steady_state)

        self._index: dict[str, int] = {}
        for i, p in enumerate(self._parameters + self._steady_state):
            if p.key in self._index:
                msg = f"パラメータ '{p.key}' が重複しています"
                raise DuplicateParameterError(msg)
            self._index[p.key] = i
        self._free_indices = tuple(i for i, p in enumerate(self._parameters) if not p.fixed)

    def __len__(self) -> int:
        return len(self._parameters)

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._parameters)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __getitem__(self, key: str) -> Parameter | SteadyStateParameter:
        try:
            i = self._index[key]
        except KeyError:
            msg = f"パラメータ '{key}' が見つかりません"
            raise KeyError(msg) from None
        if i < len(self._parameters):
            return self._parameters[i]
        return self._steady_state[i - len(self._parameters)]

    @property
    def parameters(self) -> tuple[Parameter, ...]:
        return self._parameters

    @property
    def steady_state(self) -> tuple[SteadyStateParameter, ...]:
        return self._steady_state

    @property
    def free_parameters(self) -> list[Parameter]:
        return [self._parameters[i] for i in self._free_indices]

    @property
    def free_keys(self) -> list[str]:
        return [p.key for p in self.free_parameters]

    @property
    def n_free(self) -> int:
        return len(self._free_indices)

    def value(self, key: str) -> float:
        """均衡条件で使う数値（スケーリング適用後）"""
        return self[key].effective_value

    def as_dict(self) -> dict[str, float]:
        """全パラメータの数値をキーで引ける辞書にする"""
        return {p.key: p.effective_value for p in self._parameters + self._steady_state}

    def add(self, param: Parameter) -> "ParameterCollection":
        """パラメータを末尾に追加した集合を返す"""
        return ParameterCollection((*self._parameters, param), self._steady_state)

    def free_values(self) -> np.ndarray:
        """自由パラメータの値ベクトル（スケーリング前）"""
        return np.array([p.value for p in self.free_parameters], dtype=np.float64)

    def free_bounds(self) -> np.ndarray:
        """自由パラメータの境界 (n_free, 2)"""
        return np.array([p.bounds for p in self.free_parameters], dtype=np.float64).reshape(-1, 2)

    def _check_length(self, values: np.ndarray) -> None:
        if values.shape != (self.n_free,):
            msg = f"自由パラメータ数 {self.n_free} とベクトル長 {values.shape} が一致しません"
            raise DimensionError(msg)

    def update(self, free_values: np.ndarray) -> "ParameterCollection":
        """自由パラメータを一括更新したコピーを返す

        Args:
            free_values: 自由パラメータの値（宣言順）

        Returns:
            更新後のパラメータ集合

        Raises:
            DimensionError: ベクトル長が自由パラメータ数と異なる場合
            ParamBoundsError: いずれかの値が境界外の場合
        """
        values = np.asarray(free_values, dtype=np.float64)
        self._check_length(values)
        params = list(self._parameters)
        for i, v in zip(self._free_indices, values, strict=True):
            params[i] = params[i].with_value(float(v))
        return ParameterCollection(params, self._steady_state)

    def with_steady_state(self, values: Mapping[str, float]) -> "ParameterCollection":
        """定常状態パラメータを置き換えたコピーを返す"""
        known = {p.key for p in self._steady_state}
        unknown = set(values) - known
        if unknown:
            msg = f"未定義の定常状態パラメータ: {sorted(unknown)}"
            raise KeyError(msg)
        steady_state = [
            replace(p, value=float(values[p.key])) if p.key in values else p
            for p in self._steady_state
        ]
        return ParameterCollection(self._parameters, steady_state)

    def clip_to_bounds(self, free_values: np.ndarray) -> np.ndarray:
        """自由パラメータの値を境界内に切り詰める"""
        values = np.asarray(free_values, dtype=np.float64)
        self._check_length(values)
        bounds = self.free_bounds()
        clipped: np.ndarray = np.clip(values, bounds[:, 0], bounds[:, 1])
        return clipped

    def log_prior(self) -> float:
        """自由パラメータの事前対数密度の和

        スケーリング前の値で評価する。固定パラメータと事前分布のないパラメータは 0。
        """
        total = 0.0
        for p in self.free_parameters:
            lp = p.log_prior()
            if not np.isfinite(lp):
                return -np.inf
            total += lp
        return total

    def to_real(self, free_values: np.ndarray) -> np.ndarray:
        """自由パラメータのベクトルを実数直線に写す"""
        values = np.asarray(free_values, dtype=np.float64)
        self._check_length(values)
        return np.array(
            [
                to_real(p.transform, float(v), p.transform_interval)
                for p, v in zip(self.free_parameters, values, strict=True)
            ],
            dtype=np.float64,
        )

    def to_model(self, real_values: np.ndarray) -> np.ndarray:
        """実数直線上のベクトルをモデル空間に写す"""
        values = np.asarray(real_values, dtype=np.float64)
        self._check_length(values)
        return np.array(
            [
                to_model(p.transform, float(x), p.transform_interval)
                for p, x in zip(self.free_parameters, values, strict=True)
            ],
            dtype=np.float64,
        )

    def sample_prior(self, rng: np.random.Generator, max_tries: int = 100) -> np.ndarray:
        """事前分布から境界内の自由パラメータベクトルを抽出する

        事前分布を持たないパラメータ、または境界内のサンプルが得られなかった
        パラメータは現在値を使う。
        """
        draws = self.free_values()
        for j, p in enumerate(self.free_parameters):
            if p.prior is None:
                continue
            lower, upper = p.bounds
            for _ in range(max_tries):
                x = float(p.prior.sample(rng, size=1)[0])
                if lower < x < upper:
                    draws[j] = x
                    break
        return draws
