# =============================================================================
# mobility_forecast/errors.py
# Exception hierarchy for the forecasting pipeline
# =============================================================================

from typing import Any, Dict, List, Optional


class MobilityForecastError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "DATA_001")
        details: Additional context as a dictionary
        recoverable: Whether the run can continue past this error
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "MF_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class ConfigurationError(MobilityForecastError):
    """Raised when a PipelineConfig holds values no run can use"""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None, **kwargs):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value
        super().__init__(message=message, code="CFG_001", details=details, **kwargs)


# =============================================================================
# DATA LAYER EXCEPTIONS
# =============================================================================

class SchemaError(MobilityForecastError):
    """Raised when the input panel is missing columns or has wrong types"""

    def __init__(
        self,
        message: str,
        missing_columns: Optional[List[str]] = None,
        column: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_columns:
            details["missing_columns"] = list(missing_columns)
        if column:
            details["column"] = column
        super().__init__(message=message, code="DATA_001", details=details, **kwargs)
        self.missing_columns = list(missing_columns or [])


class InsufficientHistoryError(MobilityForecastError):
    """Raised (on request) when counties lack enough contiguous days for the lags"""

    def __init__(self, message: str, counties: Optional[Dict[str, int]] = None, **kwargs):
        details = kwargs.pop("details", {})
        if counties:
            details["counties"] = dict(counties)
        super().__init__(message=message, code="DATA_002", details=details, recoverable=True, **kwargs)


class MissingDensityError(MobilityForecastError):
    """Raised under the "raise" policy when population density is missing"""

    def __init__(self, message: str, n_rows: int = 0, **kwargs):
        details = kwargs.pop("details", {})
        details["n_rows"] = int(n_rows)
        super().__init__(message=message, code="DATA_003", details=details, **kwargs)


# =============================================================================
# SPLIT / MODEL EXCEPTIONS
# =============================================================================

class FoldConfigurationError(MobilityForecastError):
    """Raised when window/step sizes cannot produce a leakage-free fold"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message=message, code="SPLIT_001", **kwargs)


class FitFailure(MobilityForecastError):
    """Raised when a single hyperparameter candidate produces a degenerate fit"""

    def __init__(
        self,
        message: str,
        family: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if family:
            details["family"] = family
        if params is not None:
            details["params"] = dict(params)
        kwargs.setdefault("code", "MODEL_001")
        kwargs.setdefault("recoverable", True)
        super().__init__(message=message, details=details, **kwargs)


class GridSearchError(FitFailure):
    """Raised when no candidate of a grid produced a valid fit"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "MODEL_002")
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)
