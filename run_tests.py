#!/usr/bin/env python3
"""
Test runner for isobaric_toolkit

Runs the suites stage by stage (input handling, normalization and
summarization, DEA, workflow variants, figures and export), then the whole
suite, and prints a pass/fail table.
"""

import os
import subprocess
import sys


SUITES = [
    ("Input handling", ["tests/test_basic.py", "tests/test_config.py", "tests/test_validation.py",
                        "tests/test_data_import.py", "tests/test_preprocessing.py"]),
    ("Normalization and summarization", ["tests/test_normalization.py", "tests/test_summarization.py"]),
    ("Differential expression", ["tests/test_statistical_analysis.py", "tests/test_evaluation.py"]),
    ("Workflow variants", ["tests/test_pipeline.py", "tests/test_workflow.py"]),
    ("Figures and export", ["tests/test_visualization.py", "tests/test_export.py"]),
]


def run_suite(name, test_files, project_root):
    """Run one group of test modules; returns True if pytest exits cleanly"""
    print("\n" + "=" * 60)
    print(f"SUITE: {name}")
    print("=" * 60)

    command = [sys.executable, "-m", "pytest", *test_files, "-q", "--tb=short"]
    completed = subprocess.run(command, cwd=project_root, check=False)
    return completed.returncode == 0


def main():
    project_root = os.path.dirname(os.path.abspath(__file__))

    print("Isobaric Workflow Toolkit test suites")

    outcomes = [(name, run_suite(name, files, project_root)) for name, files in SUITES]
    outcomes.append(("Complete suite", run_suite("Complete suite", ["tests"], project_root)))

    print("\n" + "=" * 60)
    print("SUMMARY")
    print("=" * 60)
    for name, passed in outcomes:
        print(f"  {'passed' if passed else 'FAILED':8} {name}")

    n_failed = sum(not passed for _, passed in outcomes)
    if n_failed:
        print(f"\n{n_failed} of {len(outcomes)} suites failed")
        return 1

    print(f"\n✓ All {len(outcomes)} suites passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
