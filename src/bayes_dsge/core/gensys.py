"""合理的期待モデルの解法 (Sims gensys)

モデル形式:
    Γ0 @ x_t = Γ1 @ x_{t-1} + C + Ψ @ ε_t + Π @ η_t

    x_t: 状態ベクトル
    ε_t: 外生ショック
    η_t: 期待誤差 (η_t = y_t - E_{t-1}[y_t])

解の形式:
    x_t = T @ x_{t-1} + R @ ε_t + C

(Γ0, Γ1) の複素QZ分解を安定根が左上に来るよう並べ替え、不安定ブロックを
期待誤差で打ち消せるか（存在）、安定ブロックの期待誤差が一意に定まるか（一意性）を
特異値分解で判定する。
"""

import logging
from dataclasses import dataclass, field

import numpy as np
from scipy.linalg import ordqz

from bayes_dsge.core.exceptions import (
    DimensionError,
    IndeterminacyError,
    NoSolutionError,
    QZDegeneracyError,
)
from bayes_dsge.parameters.constants import SOLVER_CONSTANTS

logger = logging.getLogger(__name__)

__all__ = ["EquilibriumSystem", "TransitionLaw", "solve"]


@dataclass(frozen=True, eq=False)
class EquilibriumSystem:
    """解く前の線形期待差分方程式 Γ0 x_t = Γ1 x_{t-1} + C + Ψ ε_t + Π η_t"""

    gamma0: np.ndarray
    gamma1: np.ndarray
    psi: np.ndarray
    pi: np.ndarray
    c: np.ndarray = field(default_factory=lambda: np.zeros(0))

    def __post_init__(self) -> None:
        n = self.gamma0.shape[0]
        if self.c.size == 0:
            object.__setattr__(self, "c", np.zeros(n))
        if self.gamma0.shape != (n, n) or self.gamma1.shape != (n, n):
            msg = f"Γ0 {self.gamma0.shape} と Γ1 {self.gamma1.shape} は同一サイズの正方行列である必要があります"
            raise DimensionError(msg)
        if self.psi.ndim != 2 or self.psi.shape[0] != n:
            msg = f"Ψ の行数 {self.psi.shape} が状態数 {n} と一致しません"
            raise DimensionError(msg)
        if self.pi.ndim != 2 or self.pi.shape[0] != n:
            msg = f"Π の行数 {self.pi.shape} が状態数 {n} と一致しません"
            raise DimensionError(msg)
        if self.c.shape != (n,):
            msg = f"定数項 C の形状 {self.c.shape} が不正です"
            raise DimensionError(msg)
        matrices = (
            ("Γ0", self.gamma0),
            ("Γ1", self.gamma1),
            ("Ψ", self.psi),
            ("Π", self.pi),
            ("C", self.c),
        )
        for name, m in matrices:
            if not np.all(np.isfinite(m)):
                msg = f"{name} に非有限の要素が含まれています"
                raise DimensionError(msg)

    @property
    def n_states(self) -> int:
        return int(self.gamma0.shape[0])

    @property
    def n_shocks(self) -> int:
        return int(self.psi.shape[1])

    @property
    def n_expectational(self) -> int:
        return int(self.pi.shape[1])


@dataclass(frozen=True, eq=False)
class TransitionLaw:
    """状態遷移 x_t = T x_{t-1} + R ε_t + C

    Attributes:
        T: 遷移行列 (n, n)
        R: ショック負荷行列 (n, n_shocks)
        C: 定数項 (n,)
        eigenvalues: 一般化固有値 |β/α|（並べ替え後の順序）
        n_unstable: 不安定根の数
    """

    T: np.ndarray
    R: np.ndarray
    C: np.ndarray
    eigenvalues: np.ndarray = field(default_factory=lambda: np.zeros(0))
    n_unstable: int = 0

    @property
    def n_states(self) -> int:
        return int(self.T.shape[0])

    @property
    def n_shocks(self) -> int:
        return int(self.R.shape[1])


def _truncated_svd(m: np.ndarray, tol: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """tol を超える特異値に対応する (U, s, V) を返す"""
    rows, cols = m.shape
    if m.size == 0:
        return np.zeros((rows, 0), dtype=complex), np.zeros(0), np.zeros((cols, 0), dtype=complex)
    u, s, vh = np.linalg.svd(m, full_matrices=False)
    keep = s > tol
    return u[:, keep], s[keep], vh.conj().T[:, keep]


def solve(
    system: EquilibriumSystem,
    div: float | None = None,
    realsmall: float | None = None,
) -> TransitionLaw:
    """期待差分方程式を状態遷移に変換する

    入力行列は変更しない。同じ入力と許容誤差に対して結果は決定的。

    Args:
        system: 解く前の方程式系
        div: |β/α| がこれを超える根を不安定とみなす
        realsmall: 特異値・一致ゼロの判定閾値

    Returns:
        一意な安定解の状態遷移

    Raises:
        NoSolutionError: 不安定根を期待誤差で打ち消せない場合
        IndeterminacyError: 期待誤差が一意に定まらない場合
        QZDegeneracyError: QZ分解・並べ替えが数値的に縮退した場合
    """
    div = SOLVER_CONSTANTS.div if div is None else div
    realsmall = SOLVER_CONSTANTS.realsmall if realsmall is None else realsmall

    n = system.n_states
    g0 = np.array(system.gamma0, dtype=complex)
    g1 = np.array(system.gamma1, dtype=complex)

    def _stable(alpha: np.ndarray, beta: np.ndarray) -> np.ndarray:
        return np.abs(beta) <= div * np.abs(alpha)

    # Γ0 = Q A Z^H, Γ1 = Q B Z^H
    try:
        a, b, alpha, beta, q, z = ordqz(g0, g1, sort=_stable, output="complex")
    except (ValueError, np.linalg.LinAlgError) as e:
        raise QZDegeneracyError(f"QZ分解の並べ替えに失敗しました: {e}") from e

    abs_a = np.abs(np.diag(a))
    abs_b = np.abs(np.diag(b))
    if np.any((abs_a < realsmall) & (abs_b < realsmall)):
        raise QZDegeneracyError("一致するゼロ固有値があります（不定または解なし）")

    unstable = abs_b > div * abs_a
    n_unstable = int(unstable.sum())
    n_stable = n - n_unstable
    if np.any(unstable[:n_stable]) or not np.all(unstable[n_stable:]):
        raise QZDegeneracyError("並べ替え後の安定根・不安定根の分割が不整合です")

    with np.errstate(divide="ignore", invalid="ignore"):
        eigenvalues = np.where(abs_a > 0, abs_b / abs_a, np.inf)

    pi = np.asarray(system.pi, dtype=complex)
    q_h = q.conj().T
    q1_h = q_h[:n_stable, :]
    q2_h = q_h[n_stable:, :]

    # 存在: 不安定ブロックの期待誤差負荷が不安定根の数だけの次元を張る
    u_eta, d_eta, v_eta = _truncated_svd(q2_h @ pi, realsmall)
    if d_eta.size < n_unstable:
        msg = f"解が存在しません: 不安定根 {n_unstable} 個に対し期待誤差の張る次元は {d_eta.size}"
        raise NoSolutionError(msg)

    # 一意性: 安定ブロックの期待誤差が不安定ブロックで決まる
    u_eta1, d_eta1, v_eta1 = _truncated_svd(q1_h @ pi, realsmall)
    if v_eta1.shape[1] > 0:
        loose = v_eta1 - v_eta @ (v_eta.conj().T @ v_eta1)
        n_loose = int(np.sum(np.linalg.svd(loose, compute_uv=False) > realsmall * n))
        if n_loose > 0:
            msg = f"解が一意ではありません: {n_loose} 個の期待誤差が不定です"
            raise IndeterminacyError(msg)

    phi = (
        u_eta
        @ np.diag(1.0 / d_eta)
        @ v_eta.conj().T
        @ v_eta1
        @ np.diag(d_eta1)
        @ u_eta1.conj().T
    )
    tmat = np.hstack([np.eye(n_stable), -phi.conj().T])

    lhs = np.vstack([tmat @ a, np.hstack([np.zeros((n_unstable, n_stable)), np.eye(n_unstable)])])
    rhs = np.vstack([tmat @ b, np.zeros((n_unstable, n))])
    lhs_inv = np.linalg.inv(lhs)

    c = np.asarray(system.c, dtype=complex)
    c_unstable = np.zeros(n_unstable, dtype=complex)
    if n_unstable > 0 and np.any(c != 0):
        a_u = a[n_stable:, n_stable:]
        b_u = b[n_stable:, n_stable:]
        try:
            c_unstable = np.linalg.solve(a_u - b_u, q2_h @ c)
        except np.linalg.LinAlgError as e:
            raise QZDegeneracyError("単位根があるため定数項を決定できません") from e
    c_new = lhs_inv @ np.concatenate([tmat @ (q_h @ c), c_unstable])

    psi = np.asarray(system.psi, dtype=complex)
    impact = lhs_inv @ np.vstack([tmat @ (q_h @ psi), np.zeros((n_unstable, system.n_shocks))])

    z_h = z.conj().T
    T = np.real(z @ (lhs_inv @ rhs) @ z_h)
    R = np.real(z @ impact)
    C = np.real(z @ c_new)
    if not (np.all(np.isfinite(T)) and np.all(np.isfinite(R)) and np.all(np.isfinite(C))):
        raise QZDegeneracyError("解の行列に非有限の要素が含まれています")

    logger.debug("gensys: 不安定根 %d 個, 期待誤差 %d 個", n_unstable, system.n_expectational)
    return TransitionLaw(T=T, R=R, C=C, eigenvalues=eigenvalues, n_unstable=n_unstable)
