"""カスタム例外クラス"""


class BayesDSGEError(Exception):
    """bayes-dsge の基底例外"""

    pass


class ValidationError(BayesDSGEError):
    """入力検証エラー

    呼び出し側の契約違反を表す。事後分布評価でも捕捉されない。
    """

    pass


class ParamBoundsError(ValidationError):
    """パラメータ値が境界外"""

    def __init__(self, key: str, value: float, bounds: tuple[float, float]) -> None:
        self.key = key
        self.value = value
        self.bounds = bounds
        super().__init__(f"パラメータ '{key}' の新しい値 {value} が境界 {bounds} の外にあります")


class DuplicateParameterError(ValidationError):
    """パラメータキーの重複"""

    pass


class DimensionError(ValidationError):
    """行列・ベクトルの次元不整合"""

    pass


class SolverError(BayesDSGEError):
    """均衡解法の失敗"""

    pass


class BlanchardKahnError(SolverError):
    """Blanchard-Kahn条件の不成立"""

    pass


class NoSolutionError(BlanchardKahnError):
    """安定解が存在しない（不安定根を期待誤差で打ち消せない）"""

    pass


class IndeterminacyError(BlanchardKahnError):
    """解が一意でない（不決定性）"""

    pass


class QZDegeneracyError(SolverError):
    """QZ分解の数値的縮退（一致するゼロ固有値・並べ替え失敗）"""

    pass


class KalmanFilterError(BayesDSGEError):
    """カルマンフィルタの計算失敗"""

    pass


class SingularInnovationError(KalmanFilterError):
    """予測誤差共分散が正定値でない"""

    def __init__(self, period: int) -> None:
        self.period = period
        super().__init__(f"t={period}: 予測誤差共分散が特異です")


class EstimationError(BayesDSGEError):
    """推定手続きの失敗"""

    pass
