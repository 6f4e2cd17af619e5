from .sast import normalize_scanner_result
from .compliance import normalize_compliance_result
from .pipeline import normalize_pipeline_result

__all__ = [
    "normalize_scanner_result",
    "normalize_compliance_result",
    "normalize_pipeline_result",
]
