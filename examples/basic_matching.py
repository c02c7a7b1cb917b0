#!/usr/bin/env python
"""Basic Matching Example for calipermatch

This example demonstrates the core functionality of calipermatch:
1. Creating synthetic data with an externally estimated propensity score
2. Declaring the subject schema
3. Performing stratified caliper matching
4. Assessing balance and the treatment effect
5. Running a caliper sensitivity sweep and exporting the tables

The example is self-contained and can be run directly.
"""

import logging
import os

import numpy as np
import pandas as pd
from scipy.special import expit

from calipermatch import (
    CovariateSpec,
    MatchedEffectEstimator,
    Matcher,
    MatcherConfig,
    SubjectSchema,
    SubjectTable,
    configure_logging,
    export_tables,
    run_sensitivity,
)

# Set up logging - you can set to DEBUG for more detailed output
configure_logging(level=logging.INFO)

BLOOD_TYPES = ("A", "B", "AB", "O")
SUBREGIONS = ("coastal", "inland", "mountain")


def generate_synthetic_data(n_samples=2000, random_state=42):
    """Generate synthetic data with a treatment effect."""
    rng = np.random.RandomState(random_state)

    blood_type = rng.choice(BLOOD_TYPES, n_samples, p=[0.4, 0.1, 0.05, 0.45])
    subregion = rng.choice(SUBREGIONS, n_samples)
    diabetic = rng.binomial(1, 0.25, n_samples).astype(bool)
    age_group = rng.choice(["<40", "40-65", ">65"], n_samples)

    # Probability of treatment, as a propensity model would estimate it
    linear = (
        -0.4
        + 0.9 * diabetic
        + np.where(age_group == ">65", 0.7, 0.0)
        + np.where(subregion == "inland", -0.3, 0.0)
    )
    propensity = expit(linear)
    treatment = rng.binomial(1, propensity)

    # The treatment increases the outcome by 2 units on average
    outcome = 1.5 * diabetic + np.where(age_group == ">65", 1.0, 0.0) + 2 * treatment + rng.normal(0, 1, n_samples)

    data = pd.DataFrame({
        "patient_id": np.arange(n_samples),
        "treated": treatment,
        "blood_type": blood_type,
        "subregion": subregion,
        "diabetic": diabetic,
        "age_group": age_group,
        "propensity": propensity,
        "outcome": outcome,
    })

    print(f"Generated data with {n_samples} samples")
    print(f"Treatment group: {data['treated'].sum()} units")
    print(f"Control group: {n_samples - data['treated'].sum()} units")
    return data


def main():
    """Run the complete matching workflow."""
    data = generate_synthetic_data()

    naive_estimate = (
        data.loc[data["treated"] == 1, "outcome"].mean()
        - data.loc[data["treated"] == 0, "outcome"].mean()
    )
    print("True treatment effect: 2.0000")
    print(f"Naive estimate (before matching): {naive_estimate:.4f}")

    schema = SubjectSchema(
        id_col="patient_id",
        treatment_col="treated",
        propensity_col="propensity",
        covariates=[
            CovariateSpec("blood_type", "categorical", BLOOD_TYPES),
            CovariateSpec("subregion", "categorical", SUBREGIONS),
            CovariateSpec("diabetic", "boolean"),
            CovariateSpec("age_group", "categorical", ("<40", "40-65", ">65")),
        ],
    )
    exact_keys = ["blood_type", "subregion"]
    subjects = SubjectTable.from_frame(data, schema, exact_keys=exact_keys)

    config = MatcherConfig(
        exact_keys=exact_keys,
        caliper_width=0.2,  # 0.2 SD of the pooled logit propensity
        n_jobs=4,
    )
    results = Matcher(subjects, config).match().get_results()

    print("\nMatching Summary:")
    for name, value in results.get_match_summary().items():
        print(f"  {name}: {value}")

    print("\nBalance Statistics:")
    print(results.balance.table[["variable", "smd_before", "smd_after"]])

    outcomes = data.set_index("patient_id")["outcome"]
    estimator = MatchedEffectEstimator(outcomes, bootstrap_iterations=500, random_state=42)
    effect = estimator(subjects, results)
    print(
        f"\nMatched estimate (after matching): {effect['effect']:.4f} "
        f"[{effect['ci_lower']:.4f}, {effect['ci_upper']:.4f}], p={effect['p_value']:.4g}"
    )

    sweep = run_sensitivity(
        subjects,
        config,
        caliper_widths=[0.01, 0.05, 0.1, 0.2, 0.5, 1.0],
        effect_estimator=MatchedEffectEstimator(outcomes),
        n_jobs=2,
    )
    print("\nCaliper Sensitivity:")
    print(sweep.to_frame()[["caliper_width", "n_pairs", "max_abs_smd_after", "effect", "p_value"]])

    output_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "output"))
    paths = export_tables(results, output_dir, prefix="basic", sweep=sweep)
    print(f"\nSaved tables to: {output_dir}")
    for name, path in paths.items():
        print(f"  {name}: {os.path.basename(path)}")


if __name__ == "__main__":
    main()
