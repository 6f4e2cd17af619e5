from typing import Any, List, Mapping, Optional

from aisec.normalizers import (
    blob_url,
    is_structured_report,
    normalize_generic,
    normalize_structured_report,
    string_list,
)
from aisec.types import Finding, Location, NormalizeContext, ToolKind
from aisec.utils import first_text, get_logger, normalize_severity, stable_id, to_int

log = get_logger("tools.sast")


def _is_native_report(payload: Any) -> bool:
    """Semgrep --json output: {"results": [{"check_id": ...}], "errors": [...]}"""
    if not isinstance(payload, Mapping):
        return False
    results = payload.get("results")
    return isinstance(results, list) and any(
        isinstance(r, Mapping) and "check_id" in r for r in results
    )


def _native_finding(res: Mapping, context: NormalizeContext) -> Finding:
    extra = res.get("extra") if isinstance(res.get("extra"), Mapping) else {}
    metadata = extra.get("metadata") if isinstance(extra.get("metadata"), Mapping) else {}
    start = res.get("start") if isinstance(res.get("start"), Mapping) else {}

    rule_id = first_text(res.get("check_id")) or "rule"
    file = first_text(res.get("path"))
    line = to_int(start.get("line"))
    message = first_text(extra.get("message")) or ""
    raw_severity = first_text(extra.get("severity"))

    location = None
    if file or line:
        location = Location(
            file=file,
            line=line,
            column=to_int(start.get("col")),
            snippet=first_text(extra.get("lines")),
            url=blob_url(context.repo, file, line),
        )

    return Finding(
        id=stable_id(rule_id, file, line, message),
        tool=ToolKind.SCANNER,
        rule_id=rule_id,
        title=f"Code Flaw: {rule_id.split('.')[-1]}",
        message=message,
        severity=normalize_severity(raw_severity),
        location=location,
        cwe=string_list(metadata.get("cwe")),
        created_at=context.created_at,
        rule_severity=raw_severity,
        raw=dict(res),
    )


def normalize_scanner_result(
    payload: Any,
    context: Optional[NormalizeContext] = None,
) -> List[Finding]:
    """
    Normalizes whatever the static-analysis scanner uploaded.

    Detection order:
    1. SARIF (structured report)
    2. Semgrep native JSON
    3. Generic list of records
    """
    context = context or NormalizeContext()

    if is_structured_report(payload):
        findings = normalize_structured_report(payload, context, tool=ToolKind.SCANNER)
        log.info(f"Parsed SARIF report. Found {len(findings)} issues.")
        return findings

    if _is_native_report(payload):
        findings = [
            _native_finding(res, context)
            for res in payload["results"]
            if isinstance(res, Mapping)
        ]
        log.info(f"Parsed native scanner report. Found {len(findings)} issues.")
        return findings

    findings = normalize_generic(payload, ToolKind.SCANNER, context)
    log.info(f"Scanner payload had no known shape; generic path found {len(findings)} records.")
    return findings
