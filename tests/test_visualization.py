"""
Tests for visualization functions, including result tables without fold
changes and empty inputs
"""

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest
from unittest.mock import patch

from isobaric_toolkit.evaluation import compute_cv_by_condition
from isobaric_toolkit.statistical_analysis import run_moderated_t_test, run_rank_test
from isobaric_toolkit.visualization import (
    plot_cv_distribution,
    plot_fold_change_scatter,
    plot_fold_change_violin,
    plot_pca,
    plot_pvalue_histograms,
    plot_volcano_comparison,
)


@pytest.fixture
def variant_results(protein_matrix_and_design):
    matrix, design = protein_matrix_and_design
    return {
        "moderated_t": run_moderated_t_test(matrix, design, "0.5"),
        "rank": run_rank_test(matrix, design, "0.5"),
    }


@pytest.fixture
def spiked():
    return {f"ups{i}" for i in range(5)}


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


class TestVolcanoComparison:
    def test_one_panel_per_variant(self, variant_results, spiked):
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_volcano_comparison(variant_results, contrast="2", spiked_proteins=spiked)
            mock_show.assert_called_once()

        axes = [ax for ax in plt.gcf().axes if ax.get_visible()]
        assert len(axes) == 2
        # Rank results have no fold changes: drawn against the test statistic
        assert axes[1].get_xlabel().startswith("Test statistic")

    def test_missing_contrast(self, variant_results):
        with patch("matplotlib.pyplot.show"):
            plot_volcano_comparison(variant_results, contrast="10")
        assert "not available" in plt.gcf().axes[0].get_title()

    def test_empty_input(self, capsys):
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_volcano_comparison({})
            mock_show.assert_not_called()
        assert "No data to plot" in capsys.readouterr().out


class TestFoldChangePlots:
    def test_violin_skips_rank_variant(self, variant_results, spiked, capsys):
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_fold_change_violin(variant_results, contrast="1", spiked_proteins=spiked, expected_log_fc=1.0)
            mock_show.assert_called_once()
        assert "rank: no fold changes" in capsys.readouterr().out

    def test_violin_without_fold_changes(self, variant_results, capsys):
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_fold_change_violin({"rank": variant_results["rank"]})
            mock_show.assert_not_called()
        assert "No fold changes to plot" in capsys.readouterr().out

    def test_scatter(self, variant_results, spiked, capsys):
        other = variant_results["moderated_t"].copy()
        other["logFC_2"] = other["logFC_2"] * 1.1

        with patch("matplotlib.pyplot.show") as mock_show:
            plot_fold_change_scatter(
                variant_results["moderated_t"], other, "median", "mean", contrast="2", spiked_proteins=spiked
            )
            mock_show.assert_called_once()
        assert "correlation (40 proteins): 1.000" in capsys.readouterr().out

    def test_scatter_needs_fold_changes(self, variant_results, capsys):
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_fold_change_scatter(variant_results["moderated_t"], variant_results["rank"])
            mock_show.assert_not_called()
        assert "rank tests have none" in capsys.readouterr().out


def test_pvalue_histograms(variant_results):
    with patch("matplotlib.pyplot.show") as mock_show:
        plot_pvalue_histograms(variant_results, contrast="1")
        mock_show.assert_called_once()


class TestSamplePlots:
    def test_pca(self, protein_matrix_and_design, capsys):
        matrix, design = protein_matrix_and_design
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_pca(matrix, design, color_by="Run")
            mock_show.assert_called_once()
        assert "PC1 explains" in capsys.readouterr().out

    def test_pca_without_complete_rows(self, protein_matrix_and_design, capsys):
        matrix, design = protein_matrix_and_design
        matrix = matrix.copy()
        matrix.iloc[:, 0] = np.nan
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_pca(matrix, design)
            mock_show.assert_not_called()
        assert "No complete data" in capsys.readouterr().out

    def test_cv_distribution(self, protein_matrix_and_design):
        matrix, design = protein_matrix_and_design
        cv_table = compute_cv_by_condition(matrix, design)
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_cv_distribution(cv_table)
            mock_show.assert_called_once()

    def test_cv_distribution_empty(self, capsys):
        with patch("matplotlib.pyplot.show") as mock_show:
            plot_cv_distribution(pd.DataFrame({"A": [np.nan]}))
            mock_show.assert_not_called()
        assert "No CV values" in capsys.readouterr().out
