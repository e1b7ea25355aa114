"""
Tests for isobaric_toolkit.evaluation module
"""

import numpy as np
import pandas as pd
import pytest

from isobaric_toolkit.evaluation import (
    compute_classification_metrics,
    compute_cv_by_condition,
    confusion_matrix_by_contrast,
    fold_change_accuracy,
    score_variants,
)


@pytest.fixture
def results_table():
    """DEA results for six proteins, two of them spiked"""
    return pd.DataFrame(
        {
            "logFC_B": [1.1, 0.9, 0.2, -0.1, 0.05, np.nan],
            "t_B": [5.0, 4.0, 1.0, -0.5, 0.1, np.nan],
            "P.Value_B": [0.001, 0.04, 0.002, 0.5, 0.8, np.nan],
            "adj.P.Val_B": [0.006, 0.06, 0.006, 0.6, 0.8, np.nan],
        },
        index=pd.Index(["S1", "S2", "N1", "N2", "N3", "N4"], name="Protein"),
    )


class TestConfusionMatrix:
    def test_counts(self, results_table):
        counts = confusion_matrix_by_contrast(results_table, {"S1", "S2"}, 0.05)
        row = counts.iloc[0]

        assert row["contrast"] == "B"
        assert (row["TP"], row["FP"], row["TN"], row["FN"]) == (1, 1, 3, 1)

    def test_missing_q_is_not_significant(self, results_table):
        counts = confusion_matrix_by_contrast(results_table, {"N4"}, 0.05)
        assert counts.iloc[0]["FN"] == 1

    def test_no_spiked_proteins(self, results_table):
        counts = confusion_matrix_by_contrast(results_table, set(), 0.05)
        row = counts.iloc[0]
        assert row["TP"] == 0 and row["FN"] == 0
        assert row["FP"] + row["TN"] == len(results_table)


class TestClassificationMetrics:
    def test_accuracy_identity(self):
        for tp, fp, tn, fn in [(1, 1, 3, 1), (10, 0, 90, 5), (0, 4, 0, 7)]:
            metrics = compute_classification_metrics(tp, fp, tn, fn)
            assert metrics["accuracy"] == (tp + tn) / (tp + tn + fp + fn)

    def test_values(self):
        metrics = compute_classification_metrics(tp=8, fp=2, tn=85, fn=5)
        assert metrics["sensitivity"] == pytest.approx(8 / 13)
        assert metrics["specificity"] == pytest.approx(85 / 87)
        assert metrics["ppv"] == pytest.approx(0.8)
        assert metrics["npv"] == pytest.approx(85 / 90)

    def test_empty_denominators_are_nan(self):
        metrics = compute_classification_metrics(tp=0, fp=0, tn=5, fn=0)
        assert np.isnan(metrics["sensitivity"])
        assert np.isnan(metrics["ppv"])
        assert metrics["specificity"] == 1.0


class TestScoreVariants:
    def test_tidy_scores(self, results_table):
        rank_results = results_table.copy()
        rank_results["logFC_B"] = np.nan

        scores = score_variants({"t": results_table, "rank": rank_results}, {"S1", "S2"})

        assert scores["variant"].tolist() == ["t", "rank"]
        assert {"TP", "FP", "accuracy", "roc_auc", "n_tested"}.issubset(scores.columns)
        assert scores.loc[0, "n_tested"] == 5

    def test_roc_auc(self, results_table):
        scores = score_variants({"t": results_table}, {"S1", "S2"})
        # Spiked p-values rank 1st and 3rd among five tested proteins
        assert scores.loc[0, "roc_auc"] == pytest.approx(5 / 6)

    def test_roc_auc_needs_both_classes(self, results_table):
        scores = score_variants({"t": results_table}, set())
        assert np.isnan(scores.loc[0, "roc_auc"])


def test_cv_by_condition(protein_matrix_and_design):
    matrix, design = protein_matrix_and_design
    cv = compute_cv_by_condition(matrix, design, scale="log2")

    assert list(cv.columns) == ["0.5", "1", "2"]
    assert len(cv) == len(matrix)
    # log2 noise sd 0.2 corresponds to a CV of roughly 14%
    assert 5 < cv.median().median() < 30


def test_fold_change_accuracy():
    results = pd.DataFrame(
        {
            "logFC_1": [1.0, 1.2, 0.0],
            "P.Value_1": [0.01, 0.01, 0.9],
            "logFC_2": [2.0, 1.8, 0.1],
            "P.Value_2": [0.001, 0.001, 0.8],
        },
        index=["ups0", "ups1", "P010"],
    )

    accuracy = fold_change_accuracy(results, {"ups0", "ups1"}, "0.5")

    assert accuracy["expected_logFC"].tolist() == [1.0, 2.0]
    assert accuracy.loc[0, "bias"] == pytest.approx(0.1)
    assert accuracy.loc[1, "rmse"] == pytest.approx(np.sqrt((0 + 0.04) / 2))


def test_fold_change_accuracy_non_numeric_conditions():
    results = pd.DataFrame({"logFC_treated": [1.0]}, index=["ups0"])
    assert len(fold_change_accuracy(results, {"ups0"}, "control")) == 0
