"""
Tests for isobaric_toolkit.pipeline module, including the end-to-end check
on a small deterministic data set
"""

import pandas as pd
import pytest

from isobaric_toolkit.pipeline import (
    AggregateSummarizer,
    ConstandNormalizer,
    MedianSweepNormalizer,
    MixedModelTest,
    ModeratedTTest,
    RankTest,
    WorkflowVariant,
    build_component_variants,
    run_variant,
    run_variants,
)
from isobaric_toolkit.workflow import prepare_channel_table


@pytest.fixture
def filtered_table(psm_observations, study_design, base_config):
    return prepare_channel_table(psm_observations, study_design, base_config)


class TestComponentVariants:
    """Test the named variants of each component study"""

    @pytest.mark.parametrize(
        "component, names",
        [
            ("unit", ["log2", "raw"]),
            ("normalization", ["median_sweep", "constand", "nomad", "mixed_model"]),
            ("summarization", ["median", "mean"]),
            ("dea", ["moderated_t", "rank", "permutation", "rots", "mixed_model"]),
        ],
    )
    def test_variant_names(self, base_config, component, names):
        variants = build_component_variants(component, base_config)
        assert [v.name for v in variants] == names

    def test_other_stages_stay_at_defaults(self, base_config):
        for variant in build_component_variants("dea", base_config):
            assert variant.unit_scale == "log2"
            assert isinstance(variant.normalizer, MedianSweepNormalizer)
            assert isinstance(variant.summarizer, AggregateSummarizer)
            assert variant.summarizer.method == "median"

    def test_config_parameters_reach_strategies(self, base_config):
        config = base_config.with_overrides(constand_tolerance=1e-6, mixed_model_random_effect="peptide")

        normalizers = {v.name: v.normalizer for v in build_component_variants("normalization", config)}
        tests = {v.name: v.dea_test for v in build_component_variants("dea", config)}

        assert isinstance(normalizers["constand"], ConstandNormalizer)
        assert normalizers["constand"].tolerance == 1e-6
        assert isinstance(tests["mixed_model"], MixedModelTest)
        assert tests["mixed_model"].random_effect == "peptide"

    def test_unit_scale_reaches_other_components(self, base_config):
        config = base_config.with_overrides(unit_scale="raw")

        for component in ["normalization", "summarization", "dea"]:
            for variant in build_component_variants(component, config):
                assert variant.unit_scale == "raw", (component, variant.name)
        unit_variants = build_component_variants("unit", config)
        assert [v.unit_scale for v in unit_variants] == ["log2", "raw"]

    def test_unknown_component(self, base_config):
        with pytest.raises(ValueError, match="Unknown component"):
            build_component_variants("imputation", base_config)


class TestRunVariants:
    """Test running workflow variants"""

    def test_default_variant(self, filtered_table, study_design, base_config):
        results = run_variant(WorkflowVariant("default"), filtered_table, study_design, base_config)

        assert len(results) == 12
        spiked = [p for p in results.index if p.startswith("ups")]
        assert (results.loc[spiked, "logFC_B"] > 0.7).all()

    def test_variants_do_not_share_state(self, filtered_table, study_design, base_config):
        before = filtered_table.copy()
        variants = build_component_variants("summarization", base_config)

        results = run_variants(variants, filtered_table, study_design, base_config)

        pd.testing.assert_frame_equal(filtered_table, before)
        assert list(results) == ["median", "mean"]
        assert results["median"] is not results["mean"]

    def test_duplicate_variant_names(self, filtered_table, study_design, base_config):
        variants = [WorkflowVariant("same"), WorkflowVariant("same", dea_test=RankTest())]
        with pytest.raises(ValueError, match="unique"):
            run_variants(variants, filtered_table, study_design, base_config)

    def test_normalization_component(self, filtered_table, study_design, base_config):
        variants = build_component_variants("normalization", base_config)
        results = run_variants(variants, filtered_table, study_design, base_config)

        for name, table in results.items():
            spiked = [p for p in table.index if p.startswith("ups")]
            assert table.loc[spiked, "logFC_B"].mean() > 0.5, name

    def test_raw_unit_variant(self, filtered_table, study_design, base_config):
        results = run_variant(
            WorkflowVariant("raw", unit_scale="raw"), filtered_table, study_design, base_config
        )
        spiked = [p for p in results.index if p.startswith("ups")]
        assert results.loc[spiked, "logFC_B"].mean() == pytest.approx(1.0, abs=0.3)


class TestEndToEnd:
    """
    4 proteins x 2 runs x 4 channels, 2 conditions, one protein changed.

    After row sweeping (PSM level) and column sweeping (protein level) the
    changed protein differs by 0.775 log2 units between conditions while the
    unchanged ones differ by -0.225 with larger residual variance.
    """

    @pytest.fixture
    def prepared(self, end_to_end_observations, study_design, end_to_end_config):
        table = prepare_channel_table(end_to_end_observations, study_design, end_to_end_config)
        return table, study_design, end_to_end_config

    def test_moderated_t_variant(self, prepared):
        table, design, config = prepared
        results = run_variant(WorkflowVariant("moderated_t", dea_test=ModeratedTTest()), table, design, config)

        assert results.loc["UPS_changed", "logFC_B"] == pytest.approx(0.775, abs=1e-6)
        assert results.loc["UPS_changed", "adj.P.Val_B"] < 0.05
        assert (results.drop(index="UPS_changed")["adj.P.Val_B"] > 0.05).all()

    def test_mixed_model_variant(self, prepared):
        table, design, config = prepared
        results = run_variant(
            WorkflowVariant("mixed_model", dea_test=MixedModelTest("sample")), table, design, config
        )

        assert results.loc["UPS_changed", "logFC_B"] == pytest.approx(0.775, abs=1e-6)
        assert results.loc["UPS_changed", "adj.P.Val_B"] < 0.05
        assert (results.drop(index="UPS_changed")["adj.P.Val_B"] > 0.05).all()
        # One measurement per sample: the sample random effect is not estimable
        assert (results["model_used"] == "OLS").all()
