"""Error hierarchy shared by the batch engine and the HTTP layer."""

from __future__ import annotations


class TenderFlowError(Exception):
    """Base class for all TenderFlow errors."""


class OutlineError(TenderFlowError, ValueError):
    """The outline has no top-level heading structure to split on."""


class WorkflowError(TenderFlowError):
    """Transport-level failure talking to the workflow backend."""

    def __init__(self, message: str, status_code: int = 0, retriable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retriable = retriable


class UnitExecutionError(TenderFlowError):
    """The backend reported a failure while generating one unit."""

    def __init__(self, message: str, unit_title: str = ""):
        super().__init__(message)
        self.unit_title = unit_title


class MergeError(TenderFlowError):
    """Merged output would drop or duplicate units."""


class BatchRunError(TenderFlowError):
    """A batch run halted on a failed unit.

    Progress up to the last successful unit has already been persisted.
    """

    def __init__(self, message: str, unit_index: int, unit_title: str):
        super().__init__(message)
        self.unit_index = unit_index
        self.unit_title = unit_title
