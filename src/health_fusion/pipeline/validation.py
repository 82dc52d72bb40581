"""Schema validation for raw health store samples using Pandera."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pandas as pd
import pandera as pa

from ..models import HealthSample, HealthSampleKind

_KINDS = [kind.value for kind in HealthSampleKind]


def _finite(series: pd.Series) -> pd.Series:
    return ~series.isin([float("inf"), float("-inf")])


_SAMPLE_SCHEMA = pa.DataFrameSchema(
    {
        "kind": pa.Column(str, pa.Check.isin(_KINDS), nullable=False, coerce=True),
        "value": pa.Column(
            float,
            pa.Check(_finite, error="value must be finite"),
            nullable=False,
            coerce=True,
        ),
    },
    strict=False,
)


@dataclass(frozen=True)
class SampleValidationFailure:
    """A raw sample that failed schema validation."""

    item: dict[str, Any]
    error: str


class SampleSchemaValidator:
    """Validate raw samples before they are transformed."""

    def validate(
        self, samples: list[HealthSample]
    ) -> tuple[list[HealthSample], list[SampleValidationFailure]]:
        """Separate valid samples from malformed ones.

        Returns:
            Tuple of (valid_samples, failures).
        """
        valid: list[HealthSample] = []
        failures: list[SampleValidationFailure] = []

        for sample in samples:
            item: dict[str, Any] = {
                "kind": sample.kind.value,
                "value": sample.value,
                "unit": sample.unit,
                "source": sample.source,
            }
            if sample.end is not None and sample.end < sample.start:
                failures.append(
                    SampleValidationFailure(item=item, error="sample ends before it starts")
                )
                continue
            try:
                _SAMPLE_SCHEMA.validate(pd.DataFrame([item]), lazy=True)
            except (pa.errors.SchemaError, pa.errors.SchemaErrors) as exc:
                failures.append(SampleValidationFailure(item=item, error=str(exc)))
                continue
            valid.append(sample)

        return valid, failures
