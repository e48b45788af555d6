"""数値計算の定数

マジックナンバーを排除し、用途ごとに名前を付ける
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class SolverConstants:
    """gensys の定数"""

    div: float = 1.0 + 1e-6  # これを超える固有値の絶対値を不安定根とみなす
    realsmall: float = 1e-6  # 特異値・一致ゼロの判定閾値


@dataclass(frozen=True)
class FilterConstants:
    """カルマンフィルタの定数"""

    singular_tolerance: float = 1e-10  # 相関行列のピボットの最小/最大比がこれ以下なら特異
    diffuse_scale: float = 10.0  # Lyapunov方程式が解けない場合の初期共分散
    unit_root_tolerance: float = 1e-8  # |固有値| >= 1 - この値 を非定常とみなす


@dataclass(frozen=True)
class OptimizerConstants:
    """csminwel の定数"""

    crit: float = 1e-10  # 目的関数の改善がこれ未満で停止
    max_iterations: int = 100
    gradient_step: float = 1e-6
    initial_inverse_hessian: float = 1e-4
    x_tolerance: float = 1e-10
    bad_gradient: float = 1e15  # これを超える差分勾配は無効
    bad_value: float = 1e50  # 初期値での目的関数の上限
    max_abs_start: float = 30.0  # 境界上の初期値は実数直線上でこの絶対値に置き換える

    # 直線探索 (csminit)
    angle: float = 0.005
    theta: float = 0.3
    fchange: float = 1000.0
    min_lambda: float = 1e-9
    min_dfac: float = 0.01


@dataclass(frozen=True)
class HessianConstants:
    """数値ヘシアンの定数"""

    relative_step: float = 1e-4  # ステップ幅 = relative_step * max(|x|, 1)
    min_eigenvalue: float = 1e-8  # 正定値補正後の最小固有値
    max_step_halvings: int = 10


# デフォルトインスタンス
SOLVER_CONSTANTS = SolverConstants()
FILTER_CONSTANTS = FilterConstants()
OPTIMIZER_CONSTANTS = OptimizerConstants()
HESSIAN_CONSTANTS = HessianConstants()
