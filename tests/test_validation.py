"""
Tests for isobaric_toolkit.validation module
"""

import pandas as pd
import pytest

from isobaric_toolkit.validation import (
    ConvergenceError,
    DataValidationError,
    DesignError,
    generate_design_diagnostic_report,
    validate_design_consistency,
    validate_observation_columns,
    validate_study_design,
)


class TestObservationValidation:
    """Test observation table checks"""

    def test_valid_observations_pass(self, psm_observations):
        validate_observation_columns(psm_observations)

    def test_missing_column_raises(self, psm_observations):
        with pytest.raises(DataValidationError, match="RetentionTime"):
            validate_observation_columns(psm_observations.drop(columns="RetentionTime"))

    def test_non_numeric_intensity_raises(self, psm_observations):
        broken = psm_observations.copy()
        broken["Intensity"] = "high"
        with pytest.raises(DataValidationError, match="numeric"):
            validate_observation_columns(broken)

    def test_empty_table_raises(self, psm_observations):
        with pytest.raises(DataValidationError, match="empty"):
            validate_observation_columns(psm_observations.iloc[0:0])


class TestStudyDesignValidation:
    """Test study design checks"""

    def test_valid_design_passes(self, study_design):
        validate_study_design(study_design)

    def test_channel_with_two_conditions_raises(self, study_design):
        extra = study_design.iloc[[0]].copy()
        extra["Condition"] = "B"
        broken = pd.concat([study_design, extra], ignore_index=True)
        with pytest.raises(DesignError, match="more than one condition"):
            validate_study_design(broken)

    def test_duplicate_channel_raises(self, study_design):
        broken = pd.concat([study_design, study_design.iloc[[0]]], ignore_index=True)
        with pytest.raises(DesignError):
            validate_study_design(broken)

    def test_missing_design_column_raises(self, study_design):
        with pytest.raises(DataValidationError, match="Condition"):
            validate_study_design(study_design.drop(columns="Condition"))


class TestDesignConsistency:
    """Test data/design consistency checks"""

    def test_consistent_data(self, psm_observations, study_design):
        result = validate_design_consistency(psm_observations, study_design, verbose=False)
        assert result["is_valid"] is True
        assert result["diagnostics"]["n_runs"] == 2
        assert result["diagnostics"]["conditions"] == ["A", "B"]

    def test_undesigned_channel_raises(self, psm_observations, study_design):
        partial_design = study_design[study_design["Channel"] != "128N"]
        with pytest.raises(DesignError, match="no design entry"):
            validate_design_consistency(psm_observations, partial_design, verbose=False)

    def test_unobserved_design_entry_is_warning(self, psm_observations, study_design):
        observations = psm_observations[psm_observations["Run"] == "Run1"]
        result = validate_design_consistency(observations, study_design, verbose=False)
        assert result["is_valid"] is True
        assert len(result["warnings"]) == 1

    def test_diagnostic_report(self, study_design):
        report = generate_design_diagnostic_report(study_design)
        assert "Run Run1: 4 channels" in report
        assert "A: 4" in report


def test_convergence_error_carries_details():
    error = ConvergenceError("did not converge", n_iterations=50, deviation=0.1)
    assert error.n_iterations == 50
    assert error.deviation == 0.1
    assert "did not converge" in str(error)
