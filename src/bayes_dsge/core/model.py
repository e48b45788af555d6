"""推定対象モデルの基底クラス

具体的なモデルは均衡条件 (Γ0, Γ1, Ψ, Π)、観測方程式、定常状態パラメータの
計算を提供する。推定エンジンはパラメータを更新するたびに ModelContext を作り直し、
モデルオブジェクト自体は書き換えない。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np

from bayes_dsge.core.gensys import EquilibriumSystem, TransitionLaw, solve
from bayes_dsge.parameters.parameter import ParameterCollection


@dataclass(frozen=True, eq=False)
class Measurement:
    """観測方程式 y_t = D + Z x_t + u_t, u_t ~ N(0, H)

    Attributes:
        Z: 観測行列 (n_obs, n_states)
        D: 観測定数 (n_obs,)
        Q: 構造ショックの共分散 (n_shocks, n_shocks)
        H: 測定誤差の共分散 (n_obs, n_obs)
    """

    Z: np.ndarray
    D: np.ndarray
    Q: np.ndarray
    H: np.ndarray


class DSGEModel(ABC):
    """線形化DSGEモデルの基底クラス

    サブクラスは変数名のタプルと以下のメソッドを定義する:
        init_parameters: パラメータ集合の初期値
        eqcond: 均衡条件の行列
        measurement: 観測方程式
        steady_state: 定常状態パラメータの再計算（任意）
        augment_states: 解いた後に追加する状態（任意）
    """

    name: str = ""
    endogenous_states: tuple[str, ...] = ()
    augmented_states: tuple[str, ...] = ()
    exogenous_shocks: tuple[str, ...] = ()
    expected_shocks: tuple[str, ...] = ()
    observables: tuple[str, ...] = ()

    def __init__(self) -> None:
        self._parameters = self.steady_state(self.init_parameters())

    @property
    def parameters(self) -> ParameterCollection:
        """定常状態計算済みの初期パラメータ集合"""
        return self._parameters

    @property
    def n_states(self) -> int:
        return len(self.endogenous_states)

    @property
    def n_states_augmented(self) -> int:
        return len(self.endogenous_states) + len(self.augmented_states)

    @property
    def n_shocks(self) -> int:
        return len(self.exogenous_shocks)

    @property
    def n_observables(self) -> int:
        return len(self.observables)

    def state_index(self, name: str) -> int:
        """拡張後の状態ベクトルにおける位置"""
        return (self.endogenous_states + self.augmented_states).index(name)

    @abstractmethod
    def init_parameters(self) -> ParameterCollection:
        """パラメータ集合の初期値を返す"""

    @abstractmethod
    def eqcond(self, params: ParameterCollection) -> EquilibriumSystem:
        """均衡条件 Γ0 x_t = Γ1 x_{t-1} + C + Ψ ε_t + Π η_t を返す"""

    @abstractmethod
    def measurement(self, params: ParameterCollection, transition: TransitionLaw) -> Measurement:
        """拡張後の状態に対する観測方程式を返す"""

    def post_boundary_measurement(
        self, params: ParameterCollection, transition: TransitionLaw
    ) -> Measurement:
        """境界以降のレジームで使う観測方程式（既定では境界前と同じ）"""
        return self.measurement(params, transition)

    def steady_state(self, params: ParameterCollection) -> ParameterCollection:
        """定常状態パラメータを再計算したパラメータ集合を返す"""
        return params

    def augment_states(
        self, params: ParameterCollection, transition: TransitionLaw
    ) -> TransitionLaw:
        """解いた後の状態遷移に状態を追加する

        既定では追加しない。追加する場合も左上の n_states ブロックは変更しない。
        """
        return transition

    def context(self, free_values: np.ndarray | None = None) -> "ModelContext":
        """評価用のコンテキストを作る

        Args:
            free_values: 自由パラメータの値。None なら初期値

        Raises:
            DimensionError: ベクトル長が自由パラメータ数と異なる場合
            ParamBoundsError: 値が境界外の場合
        """
        if free_values is None:
            return ModelContext(self, self._parameters)
        params = self.steady_state(self._parameters.update(free_values))
        return ModelContext(self, params)


@dataclass(frozen=True)
class ModelContext:
    """一回の評価で使うモデルとパラメータの組

    Attributes:
        model: モデル定義（読み取り専用）
        parameters: 更新済みのパラメータ集合
    """

    model: DSGEModel
    parameters: ParameterCollection

    def solve(self) -> TransitionLaw:
        """均衡条件を解いて拡張前の状態遷移を返す"""
        return solve(self.model.eqcond(self.parameters))
