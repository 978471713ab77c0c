from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from metaconf.winner_rules import apply_winner_rules


def _fit_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "model": ["SDT", "WEV", "GN", "SDT", "WEV", "GN", "SDT", "WEV"],
            "participant": [1, 1, 1, 2, 2, 2, 3, 3],
            "BIC": [100.0, 90.0, 95.0, 80.0, 80.0, 85.0, 50.0, np.nan],
            "AIC": [99.0, 91.0, 92.0, 70.0, 75.0, 71.0, 40.0, np.nan],
            "fit_status": ["ok", "ok", "ok", "ok", "ok", "ok", "ok", "failed"],
        }
    )


def test_participant_winners_by_bic():
    output = apply_winner_rules(_fit_table())
    winners = output["participant_winner_table"]

    assert winners["participant"].tolist() == [1, 2, 3]
    assert winners["winner_model"].tolist() == ["WEV", "SDT", "SDT"]
    assert winners["tie"].tolist() == [False, True, False]
    assert winners.loc[1, "tied_models"] == ["SDT", "WEV"]
    assert winners.loc[0, "delta_to_runner_up"] == pytest.approx(5.0)
    assert np.isnan(winners.loc[2, "delta_to_runner_up"])


def test_group_counts_rank_models():
    counts = apply_winner_rules(_fit_table())["group_winner_counts"]
    assert counts["model"].tolist() == ["SDT", "WEV", "GN"]
    assert counts["participant_win_count"].tolist() == [2, 1, 0]
    assert counts.loc[0, "BIC_sum"] == pytest.approx(230.0)


def test_aic_criterion_breaks_the_bic_tie():
    winners = apply_winner_rules(_fit_table(), criterion="AIC")["participant_winner_table"]
    assert winners["winner_model"].tolist() == ["WEV", "SDT", "SDT"]
    assert not winners["tie"].any()


def test_invalid_arguments():
    with pytest.raises(ValueError, match="criterion must be one of"):
        apply_winner_rules(_fit_table(), criterion="DIC")
    with pytest.raises(ValueError, match="tie_tolerance"):
        apply_winner_rules(_fit_table(), tie_tolerance=-1.0)
    with pytest.raises(ValueError, match="Missing required columns"):
        apply_winner_rules(_fit_table(), criterion="AICc")


def test_empty_table_gives_empty_outputs():
    output = apply_winner_rules(pd.DataFrame(columns=["model", "participant", "BIC"]))
    assert output["participant_winner_table"].empty
    assert "BIC_sum" in output["group_winner_counts"].columns
