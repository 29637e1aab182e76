"""Tests for fit table persistence (io/artifacts.py)."""

from __future__ import annotations

import json

import numpy as np
import pandas as pd
import pytest

from fsi_encoder.eval.crossval import RegionFit
from fsi_encoder.eval.normalize import normalize_fits, summarize_fits
from fsi_encoder.eval.records import Diagnostic, FitRecord, records_to_frame
from fsi_encoder.io.artifacts import (
    load_fit_table,
    load_provenance,
    region_diagnostics,
    save_fit_table,
)


def _record(model, model_id, r_test, diagnostics=()):
    return FitRecord(
        subject="01",
        region="BA3b",
        model=model,
        model_id=model_id,
        n_folds=2,
        model_theta=np.log([0.9, 0.8, 0.7, 0.6]) if model == "1finger_nonlinear" else None,
        reg_theta=np.array([0.5, -1.0]),
        shrinkage=float(np.exp(-1.5)),
        r_train=0.9,
        r_test=r_test,
        fold_r_train=np.array([0.9, 0.9]),
        fold_r_test=np.array([r_test, r_test]),
        avg_activity=np.arange(1.0, 6.0),
        avg_activity_centred=np.zeros(5),
        diagnostics=tuple(diagnostics),
    )


@pytest.fixture()
def region_fit():
    warn = Diagnostic("OptimizationNonConvergence", 2, "budget exhausted")
    return RegionFit(
        region="BA3b",
        records=[_record("1finger", 2, 0.6), _record("1finger_nonlinear", 6, 0.7, [warn])],
        failures={"05": "InsufficientChannels: too few channels"},
    )


class TestArtifacts:

    def test_round_trip(self, tmp_path, region_fit):
        frame = region_fit.frame
        save_fit_table(frame, tmp_path, "BA3b", {"config_hash": "abc"})
        loaded = load_fit_table(tmp_path, "BA3b")
        assert loaded["subject"].tolist() == ["01", "01"]
        pd.testing.assert_frame_equal(loaded, frame, check_dtype=False)

    def test_theta_columns(self, tmp_path, region_fit):
        save_fit_table(region_fit.frame, tmp_path, "BA3b", {})
        loaded = load_fit_table(tmp_path, "BA3b").set_index("model")
        assert np.isnan(loaded.loc["1finger", "theta_1"])
        assert loaded.loc["1finger_nonlinear", "theta_4"] == pytest.approx(np.log(0.6))

    def test_metadata_files(self, tmp_path, region_fit):
        fit_dir = save_fit_table(
            region_fit.frame,
            tmp_path,
            "BA3b",
            {"n": np.int64(3), "values": np.array([1.0, 2.0])},
            config_snapshot={"models": ["1finger"]},
            diagnostics=region_diagnostics(region_fit),
        )
        assert fit_dir == tmp_path / "fits" / "region-BA3b"
        assert (fit_dir / "config.yaml").exists()
        assert load_provenance(tmp_path, "BA3b") == {"n": 3, "values": [1.0, 2.0]}
        with open(fit_dir / "diagnostics.json") as f:
            diag = json.load(f)
        assert diag["failures"] == {"05": "InsufficientChannels: too few channels"}
        assert diag["warnings"] == {
            "01/1finger_nonlinear": ["OptimizationNonConvergence (run 2): budget exhausted"]
        }

    def test_missing_table(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_fit_table(tmp_path, "BA3b")
        assert load_provenance(tmp_path, "BA3b") == {}

    def test_empty_frame_columns(self):
        assert records_to_frame([]).empty


class TestReferenceModelsSurviveReload:

    @pytest.fixture()
    def frame(self):
        records = [
            _record("null", 1, 0.2),
            _record("1finger", 2, 0.5),
            _record("noise_ceiling", 9, 0.8),
        ]
        return records_to_frame(records)

    def test_null_model_name_kept(self, tmp_path, frame):
        save_fit_table(frame, tmp_path, "BA3b", {})
        loaded = load_fit_table(tmp_path, "BA3b")
        assert loaded["model"].tolist() == ["null", "1finger", "noise_ceiling"]
        assert loaded["r_test"].tolist() == pytest.approx([0.2, 0.5, 0.8])

    def test_normalize_after_reload(self, tmp_path, frame):
        save_fit_table(frame, tmp_path, "BA3b", {})
        out = normalize_fits(load_fit_table(tmp_path, "BA3b")).set_index("model")
        assert out.loc["null", "r_norm"] == 0.0
        assert out.loc["1finger", "r_norm"] == pytest.approx(0.5)
        assert out.loc["noise_ceiling", "r_norm"] == 1.0

    def test_summary_after_reload(self, tmp_path, frame):
        save_fit_table(normalize_fits(frame), tmp_path, "BA3b", {})
        summary = summarize_fits(load_fit_table(tmp_path, "BA3b"))
        assert summary["model"].tolist() == ["null", "1finger", "noise_ceiling"]
