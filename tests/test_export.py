"""
Tests for isobaric_toolkit.export module
"""

import os

import numpy as np
import pandas as pd
import pytest

from isobaric_toolkit.config import WorkflowConfig
from isobaric_toolkit.export import (
    export_timestamped_config,
    export_variant_results,
    intermediate_results_path,
    load_intermediate_tables,
    read_config_record,
    save_intermediate_tables,
)


@pytest.fixture
def variant_results():
    index = pd.Index(["ups1", "P001", "P002"], name="Protein")
    moderated = pd.DataFrame(
        {
            "logFC_B": [1.0, 0.1, -0.2],
            "t_B": [6.0, 0.4, -0.9],
            "P.Value_B": [0.0001, 0.7, 0.4],
            "adj.P.Val_B": [0.0003, 0.7, 0.6],
            "test_method": "Moderated t-test",
        },
        index=index,
    )
    rank = moderated.copy()
    rank["logFC_B"] = np.nan
    rank["test_method"] = "Mann-Whitney U"
    return {"moderated_t": moderated, "rank": rank}


class TestIntermediateResults:
    """Test the intermediate results cache"""

    def test_round_trip(self, variant_results, tmp_path):
        scores = pd.DataFrame({"variant": ["moderated_t", "rank"], "TP": [1, 0]})
        path = save_intermediate_tables(
            variant_results, "study1", str(tmp_path), extra_tables={"scores": scores}
        )

        assert path == intermediate_results_path("study1", str(tmp_path))
        payload = load_intermediate_tables("study1", str(tmp_path))

        assert list(payload["results"]) == ["moderated_t", "rank"]
        pd.testing.assert_frame_equal(payload["results"]["moderated_t"], variant_results["moderated_t"])
        pd.testing.assert_frame_equal(payload["scores"], scores)

    def test_missing_cache_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="load_intermediates=False"):
            load_intermediate_tables("never_saved", str(tmp_path))

    def test_suffixes_are_separate(self, variant_results, tmp_path):
        save_intermediate_tables({"rank": variant_results["rank"]}, "a", str(tmp_path))
        save_intermediate_tables(variant_results, "b", str(tmp_path))

        assert list(load_intermediate_tables("a", str(tmp_path))["results"]) == ["rank"]
        assert len(load_intermediate_tables("b", str(tmp_path))["results"]) == 2


def test_export_variant_results(variant_results, tmp_path):
    scores = pd.DataFrame({"variant": ["moderated_t", "rank"], "accuracy": [0.9, 0.8]})

    exported = export_variant_results(variant_results, scores, "study", str(tmp_path))

    assert set(exported) == {"moderated_t", "rank", "scores"}
    for path in exported.values():
        assert os.path.exists(path)

    moderated = pd.read_csv(exported["moderated_t"])
    assert list(moderated.columns) == ["Protein", "Contrast", "logFC", "t", "P.Value", "adj.P.Val"]
    assert moderated["Protein"].tolist() == ["ups1", "P001", "P002"]
    assert pd.read_csv(exported["rank"])["logFC"].isna().all()


class TestConfigRecord:
    """Test timestamped configuration records"""

    def test_sections_written(self, tmp_path):
        config = WorkflowConfig(reference_condition="0.5", spiked_protein_pattern="ups")
        config_file = export_timestamped_config(
            config,
            output_prefix=str(tmp_path / "study"),
            computed_values={"n_proteins": 120},
        )

        assert os.path.basename(config_file).startswith("study_config_")
        with open(config_file) as f:
            content = f.read()

        assert "# ISOBARIC WORKFLOW CONFIGURATION" in content
        assert "# 1. INPUT FILES AND OUTPUT" in content
        assert "# 6. SCORING" in content
        assert "reference_condition = '0.5'" in content
        assert "# n_proteins: 120" in content

    def test_round_trip(self, tmp_path):
        config = WorkflowConfig(
            reference_condition="A",
            spiked_proteins=("UPS_changed",),
            rots_top_k=25,
            constand_tolerance=1e-6,
        )
        config_file = export_timestamped_config(config, output_prefix=str(tmp_path / "record"))

        restored = WorkflowConfig.from_dict(read_config_record(config_file))

        assert restored == config

    def test_dict_input_and_default_prefix(self, tmp_path):
        config_file = export_timestamped_config(
            {"output_dir": str(tmp_path), "output_suffix": "pilot", "random_seed": 7}
        )

        assert os.path.dirname(config_file) == str(tmp_path)
        assert os.path.basename(config_file).startswith("pilot_config_")
        assert read_config_record(config_file) == {
            "output_dir": str(tmp_path),
            "output_suffix": "pilot",
            "random_seed": 7,
        }
