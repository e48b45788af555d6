"""推定用データの読込・書出しと合成データ生成

CSVフォーマット: 先頭列が日付ラベル、残りが観測変数。空欄・"NaN"・"NA" は欠損値
として NaN に読み替える。欠損は系列ごとに扱われ、カルマンフィルタはその期の
観測できた系列だけで更新する。
"""

from dataclasses import dataclass
from pathlib import Path

import numpy as np

from bayes_dsge.core.exceptions import DimensionError, ValidationError
from bayes_dsge.core.model import DSGEModel
from bayes_dsge.estimation.state_space import compute_system, simulate

_MISSING_TOKENS = frozenset({"", "nan", "na", "n/a", "."})


@dataclass
class EstimationData:
    """推定用データ

    Attributes:
        data: 観測データ (T, n_obs)。欠損値はNaN
        variable_names: 観測変数名のリスト
        dates: 日付ラベル
    """

    data: np.ndarray
    variable_names: list[str]
    dates: list[str]

    def __post_init__(self) -> None:
        self.data = np.asarray(self.data, dtype=np.float64)
        if self.data.ndim != 2:
            raise DimensionError(f"データは2次元である必要があります: {self.data.shape}")
        n_periods, n_obs = self.data.shape
        if len(self.variable_names) != n_obs:
            msg = f"変数名の数 {len(self.variable_names)} が列数 {n_obs} と一致しません"
            raise DimensionError(msg)
        if len(self.dates) != n_periods:
            msg = f"日付の数 {len(self.dates)} が期間数 {n_periods} と一致しません"
            raise DimensionError(msg)

    @property
    def n_obs(self) -> int:
        return int(self.data.shape[1])

    @property
    def n_periods(self) -> int:
        return int(self.data.shape[0])

    @property
    def n_missing(self) -> int:
        return int(np.isnan(self.data).sum())

    def select(self, names: tuple[str, ...] | list[str]) -> "EstimationData":
        """指定した順に列を並べ替えたデータを返す

        Raises:
            ValidationError: 存在しない変数名を指定した場合
        """
        missing = [n for n in names if n not in self.variable_names]
        if missing:
            raise ValidationError(f"データに列がありません: {missing}")
        idx = [self.variable_names.index(n) for n in names]
        return EstimationData(self.data[:, idx], list(names), list(self.dates))

    def to_csv(self, path: str | Path) -> Path:
        """CSVファイルに書き出す（欠損値は空欄）"""
        filepath = Path(path)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        lines = [",".join(["date", *self.variable_names])]
        for date, row in zip(self.dates, self.data, strict=True):
            cells = ["" if np.isnan(v) else repr(float(v)) for v in row]
            lines.append(",".join([date, *cells]))
        filepath.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return filepath


def _parse_cell(cell: str, line_no: int, column: str) -> float:
    token = cell.strip()
    if token.lower() in _MISSING_TOKENS:
        return np.nan
    try:
        return float(token)
    except ValueError:
        msg = f"{line_no}行目の列 '{column}' を数値に変換できません: '{token}'"
        raise ValidationError(msg) from None


def load_csv(path: str | Path) -> EstimationData:
    """CSVファイルから推定データを読み込む

    Args:
        path: CSVファイルパス

    Returns:
        EstimationData。欠損セルは NaN

    Raises:
        ValidationError: 列数が揃っていない、または数値でないセルがある場合
    """
    filepath = Path(path)
    raw_text = filepath.read_text(encoding="utf-8")
    lines = [line.rstrip("\r") for line in raw_text.strip().split("\n") if line.strip()]
    if len(lines) < 2:
        raise ValidationError(f"データ行がありません: {filepath}")

    header = [col.strip() for col in lines[0].split(",")]
    variable_names = header[1:]

    dates: list[str] = []
    rows: list[list[float]] = []
    for line_no, line in enumerate(lines[1:], start=2):
        values = line.split(",")
        if len(values) != len(header):
            msg = f"{line_no}行目の列数 {len(values)} がヘッダーの列数 {len(header)} と一致しません"
            raise ValidationError(msg)
        dates.append(values[0].strip())
        cells = zip(values[1:], variable_names, strict=True)
        rows.append([_parse_cell(v, line_no, name) for v, name in cells])

    return EstimationData(np.array(rows, dtype=np.float64), variable_names, dates)


def simulate_data(
    model: DSGEModel,
    n_periods: int = 200,
    rng: np.random.Generator | None = None,
    free_values: np.ndarray | None = None,
    burn_in: int = 100,
) -> EstimationData:
    """モデルからシミュレーションして合成観測データを生成する

    Args:
        model: 推定対象モデル
        n_periods: シミュレーション期間数
        rng: 乱数生成器。Noneの場合はデフォルトを使用
        free_values: 自由パラメータの値。None なら初期値
        burn_in: 捨てる期間数

    Returns:
        合成観測データ
    """
    if rng is None:
        rng = np.random.default_rng()
    system = compute_system(model.context(free_values))
    _, observables = simulate(system, n_periods, rng, burn_in=burn_in)
    dates = [f"t{t + 1:04d}" for t in range(n_periods)]
    return EstimationData(observables, list(model.observables), dates)
