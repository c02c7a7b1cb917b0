"""
Subject table construction for calipermatch.

Covariate types are declared up front in a SubjectSchema. Ingestion rejects
undeclared categorical levels, missing balance covariates and invalid
propensity scores instead of coercing or dropping them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from calipermatch.datatypes import Subject
from calipermatch.exceptions import UnknownLevelError
from calipermatch.utils.logging import get_logger
from calipermatch.validation import (
    invalid_propensity_mask,
    validate_columns_exist,
    validate_no_missing_values,
    validate_numeric_columns,
    validate_logit_scores,
    validate_propensity_scores,
    validate_subject_ids,
    validate_treatment_column,
)

logger = get_logger(__name__)

COVARIATE_KINDS = ("categorical", "boolean", "numeric")


@dataclass(frozen=True)
class CovariateSpec:
    """Declared type of a single covariate column.

    Attributes:
        name: Column name
        kind: One of 'categorical', 'boolean', 'numeric'
        levels: Allowed values of a categorical covariate, in display order
    """
    name: str
    kind: str = "categorical"
    levels: Optional[Tuple[Any, ...]] = None

    def __post_init__(self):
        if self.kind not in COVARIATE_KINDS:
            raise ValueError(f"Covariate kind must be one of {COVARIATE_KINDS}, got {self.kind}")
        if self.kind == "categorical":
            if not self.levels:
                raise ValueError(f"Categorical covariate '{self.name}' must declare its levels")
            levels = tuple(self.levels)
            if len(set(levels)) != len(levels):
                raise ValueError(f"Categorical covariate '{self.name}' has duplicate levels: {levels}")
            object.__setattr__(self, "levels", levels)
        elif self.levels is not None:
            raise ValueError(f"Only categorical covariates take levels, '{self.name}' is {self.kind}")


@dataclass(frozen=True)
class SubjectSchema:
    """Column layout of a subject table.

    At least one of propensity_col and logit_col is required; when both are
    given the propensity column is used and the logit is recomputed from it.
    A logit column on its own is taken as the score without conversion.
    """
    id_col: str
    treatment_col: str
    covariates: Tuple[CovariateSpec, ...] = field(default_factory=tuple)
    propensity_col: Optional[str] = None
    logit_col: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "covariates", tuple(self.covariates))
        if self.propensity_col is None and self.logit_col is None:
            raise ValueError("SubjectSchema needs a propensity_col or a logit_col")
        names = [c.name for c in self.covariates]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate covariate declarations: {names}")
        reserved = {self.id_col, self.treatment_col, self.propensity_col, self.logit_col}
        # Names used by SubjectTable.to_frame
        reserved |= {"treatment", "propensity", "logit_propensity"}
        clashing = [n for n in names if n in reserved]
        if clashing:
            raise ValueError(f"Covariate names clash with reserved columns: {clashing}")

    @property
    def covariate_names(self) -> List[str]:
        return [c.name for c in self.covariates]

    def get_covariate(self, name: str) -> CovariateSpec:
        for spec in self.covariates:
            if spec.name == name:
                return spec
        raise KeyError(f"Covariate '{name}' is not declared in the schema")


class SubjectTable:
    """Immutable, ordered collection of subjects with their schema."""

    def __init__(
        self,
        subjects: Sequence[Subject],
        schema: SubjectSchema,
        exact_key_names: Sequence[str] = (),
    ):
        self._subjects: Tuple[Subject, ...] = tuple(subjects)
        self.schema = schema
        self.exact_key_names: Tuple[str, ...] = tuple(exact_key_names)
        validate_subject_ids(pd.Series([s.id for s in self._subjects], dtype=object, name="id"))
        arity = len(self.exact_key_names)
        for subject in self._subjects:
            if len(subject.exact_keys) != arity:
                raise ValueError(
                    f"Subject {subject.id!r} has {len(subject.exact_keys)} exact-key values, "
                    f"expected {arity} for {list(self.exact_key_names)}"
                )
        self._by_id: Dict[Any, Subject] = {s.id: s for s in self._subjects}

    @classmethod
    def from_frame(
        cls,
        data: pd.DataFrame,
        schema: SubjectSchema,
        exact_keys: Sequence[str] = (),
        drop_invalid_propensity: bool = False,
    ) -> "SubjectTable":
        """Build a subject table from a cleaned DataFrame.

        Args:
            data: One row per subject
            schema: Declared column layout and covariate types
            exact_keys: Names of the covariates used for exact matching
            drop_invalid_propensity: Exclude rows with invalid propensity scores
                instead of failing

        Returns:
            SubjectTable with one Subject per row, in input order

        Raises:
            ValueError: On missing columns, non-binary treatment, missing
                balance covariates or bad ids
            UnknownLevelError: If a categorical column has undeclared levels
            InvalidPropensityError: If a propensity score is invalid and
                drop_invalid_propensity is False
        """
        exact_keys = list(exact_keys)
        unknown_keys = [k for k in exact_keys if k not in schema.covariate_names]
        if unknown_keys:
            raise ValueError(f"Exact-match keys not declared in the schema: {unknown_keys}")

        score_col = schema.propensity_col if schema.propensity_col is not None else schema.logit_col
        validate_columns_exist(
            data, [schema.id_col, schema.treatment_col, score_col] + schema.covariate_names
        )
        logger.debug(f"Loading subject table with {len(data)} rows")

        validate_subject_ids(data[schema.id_col])
        validate_treatment_column(data, schema.treatment_col)

        # Logit-only schemas keep the logit as given, see Subject.from_logit
        on_logit_scale = schema.propensity_col is None
        scores = pd.to_numeric(data[score_col], errors="coerce").astype(float)
        if on_logit_scale:
            bad = ~np.isfinite(scores)
        else:
            bad = invalid_propensity_mask(scores)
        if bad.any():
            if not drop_invalid_propensity and on_logit_scale:
                validate_logit_scores(scores, data[schema.id_col])
            elif not drop_invalid_propensity:
                validate_propensity_scores(scores, data[schema.id_col])
            logger.warning(f"Dropping {int(bad.sum())} subjects with invalid propensity scores")
            data = data.loc[~bad.to_numpy()]
            scores = scores.loc[~bad.to_numpy()]

        balance_only = [n for n in schema.covariate_names if n not in exact_keys]
        validate_no_missing_values(data, balance_only)
        for spec in schema.covariates:
            _validate_covariate(data[spec.name], spec)

        subjects = []
        for row, score in zip(data.itertuples(index=False), scores.to_numpy()):
            record = dict(zip(data.columns, row))
            covariates = {
                spec.name: _normalize(record[spec.name], spec) for spec in schema.covariates
            }
            fields = dict(
                id=_native(record[schema.id_col]),
                treatment=bool(record[schema.treatment_col]),
                exact_keys=tuple(covariates[k] for k in exact_keys),
                covariates=covariates,
            )
            if on_logit_scale:
                subjects.append(Subject.from_logit(logit_propensity=float(score), **fields))
            else:
                subjects.append(Subject(propensity=float(score), **fields))

        table = cls(subjects, schema, exact_keys)
        logger.info(
            f"Loaded {len(table)} subjects ({len(table.treated)} treated, "
            f"{len(table.controls)} control)"
        )
        return table

    def __len__(self) -> int:
        return len(self._subjects)

    def __iter__(self) -> Iterator[Subject]:
        return iter(self._subjects)

    def __getitem__(self, index: int) -> Subject:
        return self._subjects[index]

    def __contains__(self, subject_id) -> bool:
        return subject_id in self._by_id

    def get(self, subject_id) -> Subject:
        return self._by_id[subject_id]

    @property
    def ids(self) -> Tuple[Any, ...]:
        return tuple(s.id for s in self._subjects)

    @property
    def treated(self) -> Tuple[Subject, ...]:
        return tuple(s for s in self._subjects if s.treatment)

    @property
    def controls(self) -> Tuple[Subject, ...]:
        return tuple(s for s in self._subjects if not s.treatment)

    def to_frame(self) -> pd.DataFrame:
        """One row per subject, indexed by subject id."""
        names = self.schema.covariate_names
        rows = [
            dict(
                treatment=int(s.treatment),
                propensity=s.propensity,
                logit_propensity=s.logit_propensity,
                **{n: s.covariates.get(n) for n in names},
            )
            for s in self._subjects
        ]
        frame = pd.DataFrame(
            rows,
            index=pd.Index(self.ids, name="subject_id"),
            columns=["treatment", "propensity", "logit_propensity"] + names,
        )
        return frame


def _validate_covariate(values: pd.Series, spec: CovariateSpec) -> None:
    present = values.dropna()
    if spec.kind == "numeric":
        validate_numeric_columns(present.to_frame(), [spec.name])
    elif spec.kind == "boolean":
        unknown = [v for v in present.unique() if v not in (0, 1)]
        if unknown:
            raise UnknownLevelError(spec.name, unknown, [False, True])
    else:
        unknown = [v for v in present.unique() if v not in spec.levels]
        if unknown:
            raise UnknownLevelError(spec.name, unknown, spec.levels)


def _normalize(value, spec: CovariateSpec):
    if value is None or (isinstance(value, float) and np.isnan(value)) or value is pd.NA:
        return None
    if spec.kind == "boolean":
        return bool(value)
    if spec.kind == "numeric":
        return float(value)
    # Use the declared level object so keys compare and sort consistently
    return spec.levels[spec.levels.index(value)]


def _native(value):
    return value.item() if isinstance(value, np.generic) else value


