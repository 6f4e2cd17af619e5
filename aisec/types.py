from enum import Enum
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import Field


class ToolKind(str, Enum):
    SCANNER = "scanner"
    COMPLIANCE = "compliance"
    PIPELINE = "pipeline"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"
    UNKNOWN = "unknown"


# -------------------------------------------------
# Finding (normalized record shared by every tool)
# -------------------------------------------------

class Location(pydantic.BaseModel):
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    url: Optional[str] = None
    snippet: Optional[str] = None


class Enrichment(pydantic.BaseModel):
    explanation: Optional[str] = None
    remediation: Optional[str] = None


class Finding(pydantic.BaseModel):
    """
    Normalized finding.

    - id is the merge key inside the findings store
    - tool never changes once the record exists
    - severity is always one of the six levels
    - raw keeps the source fragment for debugging and is never
      sent to the completion service
    """

    id: str
    tool: ToolKind
    rule_id: str
    title: Optional[str] = None
    message: str = ""
    severity: Severity = Severity.UNKNOWN
    location: Optional[Location] = None
    enrichment: Optional[Enrichment] = None
    raw: Any = Field(default=None, repr=False)

    tags: Optional[List[str]] = None
    cwe: Optional[List[str]] = None
    fingerprints: Optional[Dict[str, str]] = None
    created_at: Optional[str] = None
    rule_severity: Optional[str] = None

    @property
    def explanation(self) -> Optional[str]:
        return self.enrichment.explanation if self.enrichment else None

    @property
    def remediation(self) -> Optional[str]:
        return self.enrichment.remediation if self.enrichment else None

    def location_label(self) -> str:
        if not self.location or not self.location.file:
            return ""
        if self.location.line:
            return f"{self.location.file}:{self.location.line}"
        return self.location.file


class NormalizeContext(pydantic.BaseModel):
    """
    Per-scan context handed to every normalizer.
    """

    repo: Optional[str] = None
    created_at: Optional[str] = None
    source_file: Optional[str] = None
