from __future__ import annotations

import sys

import pandas as pd
import pytest

from metaconf import cli
from metaconf.orchestration import build_fit_pipeline_config
from metaconf.results_store import build_basic_manifest, list_runs, load_run, prepare_run_dir, save_json
from metaconf.run_pipelines import (
    list_fit_runs,
    load_fit_run,
    load_meta_dprime_run,
    run_fit_pipeline,
    run_meta_dprime_pipeline,
)
from metaconf.simulation import simulate_confidence_data


@pytest.fixture
def trials(sdt_params):
    frames = [
        simulate_confidence_data(
            "SDT",
            sdt_params,
            n_trials_per_stimulus=200,
            n_ratings=4,
            participant=participant,
            random_seed=seed,
        )
        for seed, participant in enumerate(("a", "b"))
    ]
    return pd.concat(frames, ignore_index=True)


def test_prepare_run_dir_refuses_existing_run(tmp_path):
    paths = prepare_run_dir(tmp_path, pipeline_name="fit", run_id="r1")
    assert paths["tables_dir"].is_dir()
    with pytest.raises(FileExistsError):
        prepare_run_dir(tmp_path, pipeline_name="fit", run_id="r1")
    prepare_run_dir(tmp_path, pipeline_name="fit", run_id="r1", overwrite=True)
    with pytest.raises(ValueError, match="run_id"):
        prepare_run_dir(tmp_path, pipeline_name="fit", run_id=" ")


def test_runs_without_manifest_are_skipped(tmp_path):
    paths = prepare_run_dir(tmp_path, pipeline_name="fit", run_id="partial")
    assert list_runs(pipeline_name="fit", output_root=tmp_path).empty

    config_path = save_json({"models": ["SDT"]}, paths["run_dir"] / "config.json")
    manifest = build_basic_manifest(
        run_id="partial",
        pipeline_name="fit",
        run_dir=paths["run_dir"],
        config_path=config_path,
        status="completed",
        extra={"n_rows": 0},
    )
    save_json(manifest, paths["run_dir"] / "manifest.json")

    runs = list_runs(pipeline_name="fit", output_root=tmp_path)
    assert runs["run_id"].tolist() == ["partial"]
    assert load_run("partial", pipeline_name="fit", output_root=tmp_path)["tables"] == {}


def test_fit_pipeline_persists_results(tmp_path, trials):
    config = build_fit_pipeline_config(
        models=("SDT", "GN"), n_inits=1, n_restarts=1, fit_config={"max_iterations": 100}
    )
    output = run_fit_pipeline(trials, run_id="demo", output_root=tmp_path, config=config)

    manifest = output["manifest"]
    assert manifest["n_participants"] == 2
    assert manifest["n_rows"] == 4
    assert manifest["n_failed_rows"] == 0
    assert manifest["group_winner_model"] in {"SDT", "GN"}

    loaded = load_fit_run("demo", output_root=tmp_path)
    assert loaded["config"]["models"] == ["SDT", "GN"]
    assert loaded["config"]["fit_config"]["max_iterations"] == 100
    assert set(loaded["tables"]) == {
        "fit_results",
        "participant_winner_table",
        "group_winner_counts",
    }
    pd.testing.assert_series_equal(
        loaded["tables"]["fit_results"]["BIC"], output["tables"]["fit_results"]["BIC"]
    )
    assert list_fit_runs(output_root=tmp_path)["run_id"].tolist() == ["demo"]


def test_meta_dprime_pipeline_persists_results(tmp_path, trials):
    output = run_meta_dprime_pipeline(
        trials, run_id="m1", output_root=tmp_path, models=("ML", "F"), n_inits=1, n_restarts=1
    )
    assert output["manifest"]["n_rows"] == 4

    loaded = load_meta_dprime_run("m1", output_root=tmp_path)
    table = loaded["tables"]["meta_dprime"]
    assert table["model"].tolist() == ["ML", "F", "ML", "F"]
    assert table["participant"].tolist() == ["a", "a", "b", "b"]


def test_invalid_input_leaves_no_run_directory(tmp_path, trials):
    config = build_fit_pipeline_config(
        models=("SDT",), n_inits=1, n_restarts=1, fit_config={"max_iterations": 100}
    )
    all_correct = trials.assign(correct=1)
    with pytest.raises(ValueError, match="erroneous response"):
        run_fit_pipeline(all_correct, run_id="r1", output_root=tmp_path, config=config)
    with pytest.raises(ValueError, match="criterion"):
        run_fit_pipeline(trials, run_id="r1", output_root=tmp_path, config=config, criterion="DIC")
    with pytest.raises(ValueError, match="either 'ML' or 'F'"):
        run_meta_dprime_pipeline(trials, run_id="m1", output_root=tmp_path, models=("H",))
    with pytest.raises(ValueError, match="erroneous response"):
        run_meta_dprime_pipeline(all_correct, run_id="m1", output_root=tmp_path)
    assert not (tmp_path / "fit").exists()
    assert not (tmp_path / "metad").exists()

    output = run_fit_pipeline(trials, run_id="r1", output_root=tmp_path, config=config)
    assert output["manifest"]["status"] == "completed"


def test_missing_run_raises(tmp_path):
    with pytest.raises(FileNotFoundError, match="Run directory not found"):
        load_fit_run("nope", output_root=tmp_path)


def test_cli_reports_errors_on_stderr(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr(
        sys,
        "argv",
        ["metaconf", "fit-show", "--run-id", "nope", "--output-root", str(tmp_path)],
    )
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert excinfo.value.code == 1
    captured = capsys.readouterr()
    assert "fit-show failed: Run directory not found" in captured.err
    assert captured.out == ""


def test_cli_fit_list_and_metad_run(tmp_path, trials, monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["metaconf", "fit-list", "--output-root", str(tmp_path)])
    cli.main()
    assert "No fit runs found." in capsys.readouterr().out

    csv_path = tmp_path / "trials.csv"
    trials.to_csv(csv_path, index=False)
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "metaconf",
            "metad-run",
            "--run-id",
            "cli",
            "--output-root",
            str(tmp_path),
            "--csv-path",
            str(csv_path),
            "--participant-ids",
            "b",
            "--n-inits",
            "1",
            "--n-restarts",
            "1",
        ],
    )
    cli.main()
    out = capsys.readouterr().out
    assert "Run finished: cli" in out
    assert "Participants: 1" in out
