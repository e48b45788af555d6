"""出力モジュール"""

from bayes_dsge.output.schemas import (
    DiagnosticsSchema,
    EstimationSummarySchema,
    ParameterSummarySchema,
)

__all__ = ["DiagnosticsSchema", "EstimationSummarySchema", "ParameterSummarySchema"]
