"""Shared fixtures for calipermatch tests."""

import logging

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from calipermatch import configure_logging
from calipermatch.subjects import CovariateSpec, SubjectSchema, SubjectTable

# Keep test output quiet
configure_logging(level=logging.WARNING)

REGIONS = ("north", "south", "east")


@pytest.fixture
def logit_schema():
    """Schema for small hand-built tables given by logit propensity."""
    return SubjectSchema(
        id_col="id",
        treatment_col="treated",
        logit_col="logit",
        covariates=(
            CovariateSpec("region", "categorical", REGIONS),
            CovariateSpec("smoker", "boolean"),
        ),
    )


@pytest.fixture
def make_table(logit_schema):
    """Build a SubjectTable from (id, treated, logit[, region[, smoker]]) rows."""

    def _make(rows, exact_keys=()):
        records = []
        for row in rows:
            subject_id, treated, logit_value = row[:3]
            region = row[3] if len(row) > 3 else "north"
            smoker = row[4] if len(row) > 4 else False
            records.append({
                "id": subject_id,
                "treated": int(treated),
                "logit": logit_value,
                "region": region,
                "smoker": smoker,
            })
        return SubjectTable.from_frame(pd.DataFrame(records), logit_schema, exact_keys=exact_keys)

    return _make


@pytest.fixture
def example_rows():
    """Three treated and three control subjects in a single stratum."""
    return [
        ("T1", 1, 0.5),
        ("T2", 1, 1.2),
        ("T3", 1, 3.0),
        ("C1", 0, 0.6),
        ("C2", 0, 1.0),
        ("C3", 0, 5.0),
    ]


@pytest.fixture
def population_frame():
    """Synthetic population with confounded treatment assignment."""
    rng = np.random.RandomState(42)
    n = 400

    region = rng.choice(REGIONS, size=n, p=[0.5, 0.3, 0.2])
    smoker = rng.binomial(1, 0.3, size=n).astype(bool)
    age = rng.normal(50, 10, size=n)

    linear = -0.5 + 0.8 * smoker + 0.04 * (age - 50) + np.where(region == "south", 0.6, 0.0)
    propensity = expit(linear)
    treated = rng.binomial(1, propensity)

    return pd.DataFrame({
        "subject_id": [f"S{i:04d}" for i in range(n)],
        "treated": treated,
        "region": region,
        "smoker": smoker,
        "age": age,
        "ps": propensity,
    })


@pytest.fixture
def population_schema():
    return SubjectSchema(
        id_col="subject_id",
        treatment_col="treated",
        propensity_col="ps",
        covariates=(
            CovariateSpec("region", "categorical", REGIONS),
            CovariateSpec("smoker", "boolean"),
            CovariateSpec("age", "numeric"),
        ),
    )


@pytest.fixture
def population(population_frame, population_schema):
    return SubjectTable.from_frame(population_frame, population_schema, exact_keys=["region"])
