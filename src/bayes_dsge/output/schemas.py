"""推定結果の出力スキーマ

EstimationResult を JSON に書き出すための Pydantic モデル。NaN は JSON に
表現できないため None に置き換える。
"""

import math
from pathlib import Path

from pydantic import BaseModel, Field

from bayes_dsge.estimation.results import EstimationResult


def _finite_or_none(value: float) -> float | None:
    value = float(value)
    return value if math.isfinite(value) else None


class ParameterSummarySchema(BaseModel):
    """単一パラメータの事後分布サマリー"""

    name: str = Field(description="パラメータ名")
    mode: float = Field(description="事後モード")
    mean: float = Field(description="事後平均")
    median: float = Field(description="事後中央値")
    std: float = Field(description="事後標準偏差")
    hpd_lower: float = Field(description="90% HPD下限")
    hpd_upper: float = Field(description="90% HPD上限")
    prior_mean: float | None = Field(default=None, description="事前平均")
    prior_std: float | None = Field(default=None, description="事前標準偏差")
    r_hat: float | None = Field(default=None, description="分割 R-hat")
    ess: float | None = Field(default=None, description="有効サンプルサイズ")


class DiagnosticsSchema(BaseModel):
    """収束診断"""

    converged: bool = Field(description="全パラメータで R-hat < 1.1 か")
    acceptance_rates: list[float] = Field(description="チェーンごとの受容率")
    acceptance_in_band: bool = Field(description="受容率が目標範囲内か")
    hessian_corrected: bool = Field(description="ヘシアンを正定値化したか")
    optimizer_converged: bool = Field(description="モード探索が収束したか")


class EstimationSummarySchema(BaseModel):
    """推定結果のサマリー"""

    model: str = Field(description="モデル名")
    n_chains: int = Field(ge=1, description="チェーン数")
    n_draws: int = Field(ge=0, description="チェーンあたりの記録ドロー数")
    n_burnin: int = Field(ge=0, description="バーンインのステップ数")
    mode_log_posterior: float = Field(description="モードでの対数事後確率")
    log_marginal_likelihood: float | None = Field(
        default=None, description="Laplace近似による対数周辺尤度"
    )
    parameters: list[ParameterSummarySchema] = Field(default_factory=list)
    diagnostics: DiagnosticsSchema

    @classmethod
    def from_result(cls, result: EstimationResult, model_name: str) -> "EstimationSummarySchema":
        """EstimationResult から生成する"""
        diag = result.diagnostics
        parameters = [
            ParameterSummarySchema(
                name=s.name,
                mode=s.mode,
                mean=s.mean,
                median=s.median,
                std=s.std,
                hpd_lower=s.hpd_lower,
                hpd_upper=s.hpd_upper,
                prior_mean=_finite_or_none(s.prior_mean),
                prior_std=_finite_or_none(s.prior_std),
                r_hat=_finite_or_none(diag.r_hat[i]),
                ess=_finite_or_none(diag.ess[i]),
            )
            for i, s in enumerate(result.summaries)
        ]
        return cls(
            model=model_name,
            n_chains=result.n_chains,
            n_draws=result.n_draws,
            n_burnin=result.n_burnin,
            mode_log_posterior=result.mode_log_posterior,
            log_marginal_likelihood=_finite_or_none(result.log_marginal_likelihood),
            parameters=parameters,
            diagnostics=DiagnosticsSchema(
                converged=diag.converged,
                acceptance_rates=[float(r) for r in diag.acceptance_rates],
                acceptance_in_band=diag.acceptance_in_band,
                hessian_corrected=result.hessian_corrected,
                optimizer_converged=result.optimizer_converged,
            ),
        )

    def write_json(self, path: str | Path) -> Path:
        """JSONファイルに書き出す"""
        filepath = Path(path)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return filepath
