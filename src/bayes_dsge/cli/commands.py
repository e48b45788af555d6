"""CLIコマンド実装"""

from collections.abc import Callable
from functools import wraps
from pathlib import Path

import numpy as np
import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from bayes_dsge.core.exceptions import BayesDSGEError, SolverError, ValidationError
from bayes_dsge.estimation.data import EstimationData, load_csv, simulate_data
from bayes_dsge.estimation.estimate import EstimationSettings, estimate
from bayes_dsge.estimation.mcmc import MCMCConfig
from bayes_dsge.estimation.state_space import compute_system
from bayes_dsge.models import get_model
from bayes_dsge.output.schemas import EstimationSummarySchema
from bayes_dsge.parameters.parameter import Parameter

console = Console()


def handle_dsge_error[F: Callable[..., None]](func: F) -> F:
    """CLI用エラーハンドリングデコレータ

    パッケージの例外を捕捉し、終了コード付きのエラーメッセージを表示する。
    """

    @wraps(func)
    def wrapper(*args: object, **kwargs: object) -> None:
        try:
            func(*args, **kwargs)
        except ValidationError as e:
            console.print(f"[red]入力エラー: {e}[/red]")
            raise typer.Exit(1) from e
        except SolverError as e:
            console.print(f"[red]計算エラー: {e}[/red]")
            raise typer.Exit(2) from e
        except BayesDSGEError as e:
            console.print(f"[red]エラー: {e}[/red]")
            raise typer.Exit(3) from e

    return wrapper  # type: ignore[return-value]


def _format_bounds(param: Parameter) -> str:
    low, high = param.bounds
    return f"[{low:g}, {high:g}]"


@handle_dsge_error
def parameters_command(model_name: str) -> None:
    """モデルパラメータを表示"""
    model = get_model(model_name)
    params = model.steady_state(model.parameters)

    table = Table(title=f"{model.name} のパラメータ")
    table.add_column("パラメータ", style="cyan")
    table.add_column("値", style="green")
    table.add_column("境界", style="yellow")
    table.add_column("事前分布")
    table.add_column("説明")

    for p in params:
        prior = "固定" if p.fixed else (p.prior.describe() if p.prior is not None else "-")
        table.add_row(p.key, f"{p.value:.4f}", _format_bounds(p), prior, p.description)

    console.print()
    console.print(table)

    if params.steady_state:
        ss_table = Table(title="定常状態パラメータ")
        ss_table.add_column("パラメータ", style="cyan")
        ss_table.add_column("値", style="green")
        ss_table.add_column("説明")
        for s in params.steady_state:
            ss_table.add_row(s.key, f"{s.value:.4f}", s.description)
        console.print(ss_table)

    console.print(f"自由パラメータ数: {params.n_free}")


@handle_dsge_error
def solve_command(model_name: str) -> None:
    """初期パラメータでモデルを解き、状態空間の概要を表示"""
    model = get_model(model_name)
    context = model.context()
    transition = context.solve()
    system = compute_system(context)

    console.print()
    console.print(
        Panel(
            f"[bold]均衡解[/bold]\n"
            f"モデル: {model.name}\n"
            f"状態数: {transition.n_states}（拡張後 {system.n_states}）\n"
            f"ショック数: {system.n_shocks}\n"
            f"観測変数数: {system.n_observables}\n"
            f"不安定根の数: {transition.n_unstable}",
            title="gensys",
        )
    )

    moduli = np.sort(np.abs(np.linalg.eigvals(system.T)))[::-1]
    table = Table(title="遷移行列 T の固有値（絶対値）")
    table.add_column("#", style="cyan")
    table.add_column("|λ|", style="green")
    for i, m in enumerate(moduli):
        table.add_row(str(i + 1), f"{m:.6f}")
    console.print(table)


@handle_dsge_error
def simulate_data_command(
    model_name: str,
    output_file: Path,
    periods: int,
    seed: int,
) -> None:
    """初期パラメータのモデルから合成データを生成してCSV出力"""
    model = get_model(model_name)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("合成データを生成中...", total=None)
        est_data = simulate_data(model, n_periods=periods, rng=np.random.default_rng(seed))

    est_data.to_csv(output_file)

    console.print(f"[green]データを保存しました: {output_file}[/green]")
    console.print(f"期間数: {periods}")
    console.print(f"観測変数: {', '.join(est_data.variable_names)}")


def _load_data(
    model_name: str,
    data_file: Path | None,
    synthetic: bool,
    synthetic_periods: int,
    seed: int,
) -> EstimationData:
    if synthetic:
        est_data = simulate_data(
            get_model(model_name),
            n_periods=synthetic_periods,
            rng=np.random.default_rng(seed),
        )
        console.print(f"[cyan]合成データを生成: {synthetic_periods}期間[/cyan]")
        return est_data
    if data_file is None:
        raise ValidationError("データファイルまたは --synthetic を指定してください")
    est_data = load_csv(data_file)
    console.print(
        f"[cyan]データ読み込み完了: {data_file} "
        f"({est_data.n_periods}期間, 欠損 {est_data.n_missing})[/cyan]"
    )
    return est_data


@handle_dsge_error
def estimate_command(
    model_name: str,
    data_file: Path | None,
    synthetic: bool,
    synthetic_periods: int,
    *,
    n_blocks: int,
    block_size: int,
    burn_in: int,
    thinning: int,
    n_chains: int,
    seed: int,
    tuning_rounds: int,
    boundary: int | None,
    reoptimize: bool,
    output_dir: Path | None,
) -> None:
    """ベイズ推定（モード探索 + Metropolis-Hastings）を実行"""
    try:
        config = MCMCConfig(
            n_blocks=n_blocks,
            block_size=block_size,
            burn_in=burn_in,
            thinning=thinning,
            seed=seed,
            n_chains=n_chains,
            tuning_rounds=tuning_rounds,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e

    model = get_model(model_name)
    est_data = _load_data(model_name, data_file, synthetic, synthetic_periods, config.seed)
    settings = EstimationSettings(reoptimize=reoptimize, mcmc=config, boundary=boundary)

    console.print(
        f"[cyan]MCMC設定: chains={config.n_chains}, blocks={config.n_blocks}, "
        f"block_size={config.block_size}, burn_in={config.burn_in}, "
        f"thinning={config.thinning}[/cyan]"
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task("推定を実行中...", total=None)
        result = estimate(model, est_data, settings, store=output_dir)

    diag = result.diagnostics
    console.print()
    console.print(
        Panel(
            f"[bold]ベイズ推定結果[/bold]\n"
            f"モデル: {model.name}\n"
            f"チェーン数: {result.n_chains}\n"
            f"ドロー数: {result.n_draws}\n"
            f"モード探索: {'収束' if result.optimizer_converged else '[yellow]未収束[/yellow]'}\n"
            f"ヘシアン補正: {'[yellow]あり[/yellow]' if result.hessian_corrected else 'なし'}\n"
            f"収束判定: {'[green]OK[/green]' if diag.converged else '[red]NG[/red]'}\n"
            f"受容率: {'範囲内' if diag.acceptance_in_band else '[yellow]目標範囲外[/yellow]'}\n"
            f"対数周辺尤度: {result.log_marginal_likelihood:.2f}",
            title="Bayesian Estimation",
        )
    )

    acc_table = Table(title="採択率")
    acc_table.add_column("チェーン", style="cyan")
    acc_table.add_column("採択率", style="green")
    for i, rate in enumerate(diag.acceptance_rates):
        acc_table.add_row(f"Chain {i}", f"{rate:.3f}")
    console.print(acc_table)

    console.print()
    console.print(result.summary_table())

    if output_dir is not None:
        schema = EstimationSummarySchema.from_result(result, model.name)
        schema.write_json(output_dir / "summary.json")
        (output_dir / "summary.md").write_text(result.summary_table() + "\n", encoding="utf-8")
        console.print(f"\n[green]結果を保存しました: {output_dir}[/green]")
