from typing import Any, List, Mapping, Optional

from aisec.normalizers import unwrap_record_list
from aisec.types import Finding, Location, NormalizeContext, ToolKind, Severity
from aisec.utils import first_text, get_logger, normalize_severity, stable_id

log = get_logger("tools.compliance")

# Control states that mean "nothing to report"
PASSING_STATUSES = {"OK", "PASS", "PASSED", "PASSING", "COMPLIANT", "DISABLED", "DEACTIVATED"}

# Used when the control carries no severity of its own
STATUS_SEVERITY = {
    "FAILING": Severity.HIGH,
    "FAIL": Severity.HIGH,
    "FAILED": Severity.HIGH,
    "NEEDS_ATTENTION": Severity.MEDIUM,
    "NON_COMPLIANT": Severity.HIGH,
    "IN_PROGRESS": Severity.LOW,
}


def _status(item: Mapping) -> str:
    return (first_text(item.get("status"), item.get("outcome"), item.get("result")) or "").upper()


def _failing_resources(item: Mapping) -> List[str]:
    resources = item.get("failingResources") or item.get("failing_resources") or []
    names = []
    if isinstance(resources, list):
        for res in resources:
            if isinstance(res, Mapping):
                name = first_text(res.get("displayName"), res.get("name"), res.get("id"))
            else:
                name = first_text(res)
            if name:
                names.append(name)
    return names


def _control_finding(item: Mapping, context: NormalizeContext) -> Finding:
    rule_id = first_text(
        item.get("testId"), item.get("controlId"), item.get("id"), item.get("key"),
    ) or "control"
    title = first_text(item.get("name"), item.get("title")) or rule_id
    status = _status(item)

    message = first_text(item.get("description"), item.get("failureDescription")) or title
    resources = _failing_resources(item)
    if resources:
        message = f"{message} Failing resources: {', '.join(resources[:10])}"
        if len(resources) > 10:
            message += f" (+{len(resources) - 10} more)"

    raw_severity = first_text(item.get("severity"), item.get("priority"))
    severity = normalize_severity(raw_severity)
    if severity == Severity.UNKNOWN:
        severity = STATUS_SEVERITY.get(status, Severity.UNKNOWN)

    url = first_text(item.get("url"), item.get("link"), item.get("remediationUrl"))
    category = first_text(item.get("category"))

    return Finding(
        id=stable_id(rule_id, None, None, message),
        tool=ToolKind.COMPLIANCE,
        rule_id=rule_id,
        title=title,
        message=message,
        severity=severity,
        location=Location(url=url) if url else None,
        tags=[category] if category else None,
        created_at=context.created_at,
        rule_severity=raw_severity or status or None,
        raw=dict(item),
    )


def normalize_compliance_result(
    payload: Any,
    context: Optional[NormalizeContext] = None,
) -> List[Finding]:
    """
    Turns compliance tests/controls into findings.

    Only non-passing controls are reported. Controls have no code
    locality, so location carries at most a link to the control.
    """
    context = context or NormalizeContext()
    findings: List[Finding] = []
    skipped = 0

    for item in unwrap_record_list(payload):
        if not isinstance(item, Mapping):
            continue
        if _status(item) in PASSING_STATUSES:
            skipped += 1
            continue
        findings.append(_control_finding(item, context))

    log.info(f"Compliance analysis complete. {len(findings)} failing, {skipped} passing controls.")
    return findings
