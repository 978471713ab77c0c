from __future__ import annotations

import argparse
import sys

from .constants import SUPPORTED_META_DPRIME_MODELS
from .data_loading import load_confidence_data
from .orchestration import build_fit_pipeline_config
from .run_pipelines import list_fit_runs, load_fit_run, run_fit_pipeline, run_meta_dprime_pipeline


def _parse_models(raw_value: str) -> str | tuple[str, ...]:
    models = tuple(part.strip() for part in str(raw_value).split(",") if part.strip())
    if not models:
        raise ValueError("model list is empty")
    if models == ("all",):
        return "all"
    return models


def _parse_participant_ids(raw_value: str | None) -> list[str] | None:
    if raw_value is None:
        return None
    ids = [part.strip() for part in str(raw_value).split(",") if part.strip()]
    return ids if ids else None


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build CLI parser for confidence-model pipelines."""
    parser = argparse.ArgumentParser(description="Confidence model fitting pipelines")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fit_parser = subparsers.add_parser(
        "fit-run",
        help="Fit confidence models to every participant and persist outputs.",
    )
    fit_parser.add_argument("--run-id", type=str, required=True)
    fit_parser.add_argument("--output-root", type=str, default="data/metaconf")
    fit_parser.add_argument("--csv-path", type=str, required=True)
    fit_parser.add_argument(
        "--participant-ids",
        type=str,
        default=None,
        help="Optional comma-separated participant IDs.",
    )
    fit_parser.add_argument(
        "--models",
        type=str,
        default="all",
        help="Comma-separated model names, or 'all'.",
    )
    fit_parser.add_argument("--n-inits", type=int, default=5)
    fit_parser.add_argument("--n-restarts", type=int, default=4)
    fit_parser.add_argument("--max-iterations", type=int, default=2000)
    fit_parser.add_argument("--parallel", action="store_true")
    fit_parser.add_argument("--n-workers", type=int, default=None)
    fit_parser.add_argument("--criterion", type=str, default="BIC", choices=["BIC", "AICc", "AIC"])
    fit_parser.add_argument("--overwrite", action="store_true")

    show_parser = subparsers.add_parser(
        "fit-show",
        help="Show summary for one persisted fit run.",
    )
    show_parser.add_argument("--run-id", type=str, required=True)
    show_parser.add_argument("--output-root", type=str, default="data/metaconf")

    list_parser = subparsers.add_parser(
        "fit-list",
        help="List persisted fit runs.",
    )
    list_parser.add_argument("--output-root", type=str, default="data/metaconf")

    metad_parser = subparsers.add_parser(
        "metad-run",
        help="Estimate meta-d' per participant and persist outputs.",
    )
    metad_parser.add_argument("--run-id", type=str, required=True)
    metad_parser.add_argument("--output-root", type=str, default="data/metaconf")
    metad_parser.add_argument("--csv-path", type=str, required=True)
    metad_parser.add_argument(
        "--participant-ids",
        type=str,
        default=None,
        help="Optional comma-separated participant IDs.",
    )
    metad_parser.add_argument(
        "--models",
        type=str,
        default="ML",
        help=f"Comma-separated variants from {list(SUPPORTED_META_DPRIME_MODELS)}.",
    )
    metad_parser.add_argument("--n-inits", type=int, default=5)
    metad_parser.add_argument("--n-restarts", type=int, default=3)
    metad_parser.add_argument("--parallel", action="store_true")
    metad_parser.add_argument("--n-workers", type=int, default=None)
    metad_parser.add_argument("--overwrite", action="store_true")

    return parser


def _cmd_fit_run(args: argparse.Namespace) -> None:
    config = build_fit_pipeline_config(
        models=_parse_models(args.models),
        n_inits=int(args.n_inits),
        n_restarts=int(args.n_restarts),
        parallel=bool(args.parallel),
        n_workers=args.n_workers,
        fit_config={"max_iterations": int(args.max_iterations)},
    )
    df = load_confidence_data(
        args.csv_path,
        participant_ids=_parse_participant_ids(args.participant_ids),
    )
    run_output = run_fit_pipeline(
        df,
        run_id=str(args.run_id),
        output_root=str(args.output_root),
        config=config,
        criterion=str(args.criterion),
        overwrite=bool(args.overwrite),
    )

    manifest = run_output["manifest"]
    print(f"Run finished: {manifest['run_id']}")
    print(f"Run directory: {run_output['run_dir']}")
    print(f"Participants: {manifest['n_participants']} | Fit rows: {manifest['n_rows']}")
    print(f"Failed fits: {manifest['n_failed_rows']}")
    print(f"Group winner model ({manifest['criterion']}): {manifest['group_winner_model']}")


def _cmd_fit_show(args: argparse.Namespace) -> None:
    loaded = load_fit_run(run_id=str(args.run_id), output_root=str(args.output_root))
    manifest = loaded["manifest"]
    tables = loaded["tables"]

    print(f"Run: {manifest.get('run_id')}")
    print(f"Created: {manifest.get('created_at_utc')}")
    print(f"Status: {manifest.get('status')}")
    print(f"Run directory: {loaded['run_dir']}")

    if "group_winner_counts" in tables and not tables["group_winner_counts"].empty:
        print("\nGroup winner counts:")
        print(tables["group_winner_counts"].to_string(index=False))

    if "participant_winner_table" in tables and not tables["participant_winner_table"].empty:
        print("\nParticipant winners:")
        print(tables["participant_winner_table"].to_string(index=False))

    if "fit_results" in tables and not tables["fit_results"].empty:
        score_columns = [
            column
            for column in ("model", "participant", "negLogLik", "k", "BIC", "AICc", "AIC", "fit_status")
            if column in tables["fit_results"].columns
        ]
        print("\nFit scores:")
        print(tables["fit_results"][score_columns].to_string(index=False))


def _cmd_fit_list(args: argparse.Namespace) -> None:
    runs = list_fit_runs(output_root=str(args.output_root))
    if runs.empty:
        print("No fit runs found.")
        return
    print(runs.to_string(index=False))


def _cmd_metad_run(args: argparse.Namespace) -> None:
    df = load_confidence_data(
        args.csv_path,
        participant_ids=_parse_participant_ids(args.participant_ids),
    )
    models = _parse_models(args.models)
    run_output = run_meta_dprime_pipeline(
        df,
        run_id=str(args.run_id),
        output_root=str(args.output_root),
        models=SUPPORTED_META_DPRIME_MODELS if models == "all" else models,
        n_inits=int(args.n_inits),
        n_restarts=int(args.n_restarts),
        parallel=bool(args.parallel),
        n_workers=args.n_workers,
        overwrite=bool(args.overwrite),
    )

    manifest = run_output["manifest"]
    print(f"Run finished: {manifest['run_id']}")
    print(f"Run directory: {run_output['run_dir']}")
    print(f"Participants: {manifest['n_participants']} | Rows: {manifest['n_rows']}")
    print()
    print(run_output["tables"]["meta_dprime"].to_string(index=False))


_COMMANDS = {
    "fit-run": _cmd_fit_run,
    "fit-show": _cmd_fit_show,
    "fit-list": _cmd_fit_list,
    "metad-run": _cmd_metad_run,
}


def main() -> None:
    """Run CLI entrypoint for confidence-model pipelines."""
    args = _build_arg_parser().parse_args()
    command = _COMMANDS.get(args.command)
    if command is None:
        raise ValueError(f"Unsupported command: {args.command}")

    try:
        command(args)
    except (ValueError, FileNotFoundError, FileExistsError) as exc:
        print(f"{args.command} failed: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
