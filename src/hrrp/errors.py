# src/hrrp/errors.py
"""Error taxonomy for the readmission analysis pipeline.

Fatal errors are raised as exceptions. Non-fatal data-quality issues
(join integrity, undefined derived metrics) are recorded as
``PipelineWarning`` records in ``hrrp.schemas`` instead.
"""


class HRRPError(Exception):
    """Base class for all pipeline errors."""

    pass


class ConfigError(HRRPError):
    """Configuration validation error."""

    pass


class SchemaError(HRRPError):
    """Expected column missing or of incompatible type at normalization.

    Fatal to the run: no partial output is produced.
    """

    def __init__(self, message: str, columns=None):
        super().__init__(message)
        self.columns = list(columns) if columns else []


class StatisticalPreconditionError(HRRPError):
    """A statistical step cannot run on the given data.

    Raised for factors with fewer than two observed levels or models with
    zero residual degrees of freedom. The affected step is reported as
    not applicable; independent steps still run.
    """

    pass
