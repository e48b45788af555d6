"""CLIメインエントリーポイント"""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from bayes_dsge import __version__
from bayes_dsge.cli.commands import (
    estimate_command,
    parameters_command,
    simulate_data_command,
    solve_command,
)

app = typer.Typer(
    name="bayes-dsge",
    help="線形DSGEモデルのベイズ推定エンジン",
    no_args_is_help=True,
)
console = Console()

ModelOption = Annotated[
    str,
    typer.Option("--model", "-m", help="モデル名: ar1, small_nk"),
]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="詳細ログを表示"),
    ] = False,
) -> None:
    """線形DSGEモデルのベイズ推定エンジン"""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )


@app.command("parameters")
def parameters(model: ModelOption = "small_nk") -> None:
    """モデルパラメータを表示"""
    parameters_command(model)


@app.command("solve")
def solve(model: ModelOption = "small_nk") -> None:
    """初期パラメータでモデルを解く

    例:
        bayes-dsge solve --model small_nk
    """
    solve_command(model)


@app.command("simulate-data")
def simulate_data(
    model: ModelOption = "small_nk",
    output_file: Annotated[
        Path,
        typer.Option("--output", "-o", help="出力CSVファイルパス"),
    ] = Path("data/synthetic.csv"),
    periods: Annotated[
        int,
        typer.Option("--periods", "-p", help="生成期間数"),
    ] = 200,
    seed: Annotated[
        int,
        typer.Option("--seed", help="乱数シード"),
    ] = 42,
) -> None:
    """合成データを生成してCSV出力

    例:
        bayes-dsge simulate-data --model ar1 --periods 100 -o data/ar1.csv
    """
    simulate_data_command(model, output_file, periods, seed)


@app.command("estimate")
def estimate(
    data_file: Annotated[
        Path | None,
        typer.Argument(help="観測データCSVファイル"),
    ] = None,
    model: ModelOption = "small_nk",
    synthetic: Annotated[
        bool,
        typer.Option("--synthetic", help="合成データを使用"),
    ] = False,
    synthetic_periods: Annotated[
        int,
        typer.Option("--synthetic-periods", help="合成データの期間数"),
    ] = 200,
    blocks: Annotated[
        int,
        typer.Option("--blocks", "-b", help="ブロック数"),
    ] = 5,
    block_size: Annotated[
        int,
        typer.Option("--block-size", help="1ブロックに記録するドロー数"),
    ] = 1000,
    burn_in: Annotated[
        int,
        typer.Option("--burn-in", help="バーンインのステップ数"),
    ] = 500,
    thinning: Annotated[
        int,
        typer.Option("--thinning", help="間引き間隔"),
    ] = 1,
    chains: Annotated[
        int,
        typer.Option("--chains", help="チェーン数"),
    ] = 1,
    seed: Annotated[
        int,
        typer.Option("--seed", help="乱数シード"),
    ] = 42,
    tuning_rounds: Annotated[
        int,
        typer.Option(
            "--tuning-rounds",
            help="提案スケールを目標受容率に合わせる試行の最大回数（0 で調整しない）",
        ),
    ] = 3,
    boundary: Annotated[
        int | None,
        typer.Option("--boundary", help="観測方程式を切り替える期（2レジーム）"),
    ] = None,
    reoptimize: Annotated[
        bool,
        typer.Option("--reoptimize/--no-reoptimize", help="モード探索を行うか"),
    ] = True,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="ドローと結果の保存先ディレクトリ（再開可能）"),
    ] = None,
) -> None:
    """ベイズ推定（モード探索 + ブロックMetropolis-Hastings）を実行

    例:
        bayes-dsge estimate data.csv --model small_nk --blocks 10 --output results/
        bayes-dsge estimate --model ar1 --synthetic --blocks 2 --block-size 200
    """
    estimate_command(
        model,
        data_file,
        synthetic,
        synthetic_periods,
        n_blocks=blocks,
        block_size=block_size,
        burn_in=burn_in,
        thinning=thinning,
        n_chains=chains,
        seed=seed,
        tuning_rounds=tuning_rounds,
        boundary=boundary,
        reoptimize=reoptimize,
        output_dir=output_dir,
    )


@app.command("version")
def version() -> None:
    """バージョン情報を表示"""
    console.print(f"bayes-dsge version {__version__}")


if __name__ == "__main__":
    app()
