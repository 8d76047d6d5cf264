"""Exceptions raised by the QC and differential expression pipeline.

Every fatal condition derives from ``PipelineError`` so that runners can
abort a single platform and carry on with the rest. QC rejection of assays
is not an error and has no exception here.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for fatal pipeline conditions."""


class MalformedConfig(PipelineError):
    """Configuration document is invalid or references unknown identifiers."""


class UnknownTechnology(PipelineError):
    """An array design's technology could not be classified."""

    def __init__(self, array_design: str, technology_text: Optional[str] = None):
        self.array_design = array_design
        self.technology_text = technology_text
        if technology_text:
            message = f"Technology {technology_text!r} not recognised for {array_design}"
        else:
            message = f"No technology found for {array_design}"
        super().__init__(message)


class StatisticsEngineFailure(PipelineError):
    """External statistics engine terminated abnormally or gave unusable output.

    The full captured output is kept so it can be shown verbatim to the
    operator.
    """

    def __init__(self, message: str, output: str = "", returncode: Optional[int] = None):
        self.output = output
        self.returncode = returncode
        super().__init__(message)


class MalformedStatistic(PipelineError):
    """A statistic value was neither numeric nor the missing-value marker."""

    def __init__(self, feature_id: str, contrast_id: str, statistic: str, value: str):
        self.feature_id = feature_id
        self.contrast_id = contrast_id
        self.statistic = statistic
        self.value = value
        super().__init__(
            f"Did not get numeric value for {statistic}:\n"
            f"Feature ID: {feature_id}\n"
            f"Contrast: {contrast_id}\n"
            f"{statistic}: {value!r}"
        )


# Process exit codes; 2 is left to click for usage errors.
EXIT_OK = 0
EXIT_ASSAYS_REJECTED = 1
EXIT_ENGINE_FAILURE = 3
EXIT_PIPELINE_ERROR = 4


def exit_code_for(error: BaseException) -> int:
    if isinstance(error, StatisticsEngineFailure):
        return EXIT_ENGINE_FAILURE
    return EXIT_PIPELINE_ERROR
