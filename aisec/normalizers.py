"""
Normalizers shared by every tool.

Pure functions: raw payload in, list[Finding] out.
Unrecognized shapes degrade to [] or best-effort records; nothing here raises.
"""

from typing import Any, Dict, List, Mapping, Optional

from aisec.types import Finding, Location, NormalizeContext, ToolKind
from aisec.utils import (
    first_text,
    get_logger,
    normalize_severity,
    stable_id,
    to_int,
)

log = get_logger("normalizers")

PLACEHOLDER_RULE_ID = "unknown-rule"

# Keys under which loosely shaped payloads wrap their record list
_LIST_KEYS = ("findings", "results", "items", "data")


def _dig(obj: Any, *path: str) -> Any:
    """Safe nested lookup: _dig(r, "message", "text")."""
    for key in path:
        if not isinstance(obj, Mapping):
            return None
        obj = obj.get(key)
    return obj


def _message_text(message: Any) -> str:
    if isinstance(message, Mapping):
        return first_text(message.get("text"), message.get("markdown")) or ""
    if isinstance(message, str):
        return message.strip()
    return ""


def string_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        items = [str(v) for v in value if v is not None]
        return items or None
    return None


def _string_map(value: Any) -> Optional[Dict[str, str]]:
    if not isinstance(value, Mapping):
        return None
    items = {str(k): str(v) for k, v in value.items() if v is not None}
    return items or None


def blob_url(repo: Optional[str], file: Optional[str], line: Optional[int]) -> Optional[str]:
    """
    Deep link to a file/line when the scanned repository is a web URL.
    """
    if not repo or not file or not repo.startswith(("http://", "https://")):
        return None
    url = f"{repo.rstrip('/')}/blob/HEAD/{file.lstrip('/')}"
    if line:
        url += f"#L{line}"
    return url


# ---------------------------------------------------------
# Structured security report (SARIF)
# ---------------------------------------------------------

def is_structured_report(payload: Any) -> bool:
    """
    True only for {"runs": [{"results": [...]}, ...]}.
    Anything else must fall through to the generic path.
    """
    if not isinstance(payload, Mapping):
        return False
    runs = payload.get("runs")
    if not isinstance(runs, list) or not runs:
        return False
    return isinstance(_dig(runs[0], "results"), list)


def _rule_table(run: Mapping) -> Dict[str, Mapping]:
    rules = _dig(run, "tool", "driver", "rules")
    table: Dict[str, Mapping] = {}
    if isinstance(rules, list):
        for rule in rules:
            if isinstance(rule, Mapping) and rule.get("id"):
                table[str(rule["id"])] = rule
    return table


def _structured_result(
    result: Mapping,
    rules: Dict[str, Mapping],
    tool: ToolKind,
    context: NormalizeContext,
) -> Finding:
    physical = _dig(result, "locations")
    physical = physical[0] if isinstance(physical, list) and physical else None
    physical = _dig(physical, "physicalLocation") or {}

    file = first_text(_dig(physical, "artifactLocation", "uri"))
    region = _dig(physical, "region") or {}
    line = to_int(_dig(region, "startLine"))
    column = to_int(_dig(region, "startColumn"))
    snippet = _dig(region, "snippet", "text")

    rule_id = first_text(result.get("ruleId")) or "rule"
    rule = rules.get(rule_id, {})
    title = first_text(_dig(rule, "shortDescription", "text"), rule.get("name")) or rule_id

    # Priority: result level, result properties, rule properties, rule default level
    raw_severity = first_text(
        result.get("level"),
        _dig(result, "properties", "severity"),
        _dig(rule, "properties", "severity"),
        _dig(rule, "defaultConfiguration", "level"),
    )

    message = _message_text(result.get("message"))

    location = None
    if file or line or snippet:
        location = Location(
            file=file,
            line=line,
            column=column,
            snippet=snippet if isinstance(snippet, str) else None,
            url=blob_url(context.repo, file, line),
        )

    return Finding(
        id=stable_id(rule_id, file, line, message),
        tool=tool,
        rule_id=rule_id,
        title=title,
        message=message,
        severity=normalize_severity(raw_severity),
        location=location,
        tags=string_list(_dig(result, "properties", "tags")) or string_list(_dig(rule, "properties", "tags")),
        cwe=string_list(_dig(result, "properties", "cwe")) or string_list(_dig(rule, "properties", "cwe")),
        fingerprints=_string_map(result.get("fingerprints")),
        created_at=context.created_at,
        rule_severity=raw_severity,
        raw=dict(result),
    )


def normalize_structured_report(
    payload: Any,
    context: Optional[NormalizeContext] = None,
    *,
    tool: ToolKind = ToolKind.SCANNER,
) -> List[Finding]:
    """
    Converts a SARIF log into findings, one per result, across all runs.
    """
    context = context or NormalizeContext()

    if not is_structured_report(payload):
        return []

    findings: List[Finding] = []
    for run in payload["runs"]:
        results = _dig(run, "results")
        if not isinstance(results, list):
            continue
        rules = _rule_table(run)
        for result in results:
            if not isinstance(result, Mapping):
                continue
            findings.append(_structured_result(result, rules, tool, context))

    log.debug(f"Structured report produced {len(findings)} findings")
    return findings


# ---------------------------------------------------------
# Generic / ad-hoc JSON
# ---------------------------------------------------------

def unwrap_record_list(payload: Any) -> List[Any]:
    """
    Returns the record list of a loosely shaped payload, or [].
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for key in _LIST_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
            if isinstance(value, Mapping):
                nested = unwrap_record_list(value)
                if nested:
                    return nested
    return []


def generic_finding(
    item: Mapping,
    tool: ToolKind,
    context: NormalizeContext,
) -> Finding:
    rule_id = first_text(
        item.get("ruleId"), item.get("rule_id"), item.get("check_id"),
        item.get("rule"), item.get("control"),
    ) or PLACEHOLDER_RULE_ID

    message = first_text(
        _message_text(item.get("message")), item.get("description"), item.get("details"),
    ) or ""

    title = first_text(item.get("title"), item.get("name")) or rule_id

    loc = item.get("location") if isinstance(item.get("location"), Mapping) else item
    file = first_text(loc.get("file"), loc.get("path"), loc.get("file_path"))
    line = to_int(loc.get("line") or loc.get("line_start") or loc.get("startLine"))
    column = to_int(loc.get("column") or loc.get("startColumn"))
    snippet = first_text(loc.get("snippet"), loc.get("code_snippet"))
    url = first_text(loc.get("url")) or blob_url(context.repo, file, line)

    location = None
    if file or line or snippet or url:
        location = Location(file=file, line=line, column=column, url=url, snippet=snippet)

    raw_severity = first_text(item.get("severity"), item.get("level"), item.get("priority"))

    natural_id = item.get("id")
    finding_id = (
        str(natural_id)
        if isinstance(natural_id, (str, int)) and str(natural_id).strip()
        else stable_id(rule_id, file, line, message)
    )

    return Finding(
        id=finding_id,
        tool=tool,
        rule_id=rule_id,
        title=title,
        message=message,
        severity=normalize_severity(raw_severity),
        location=location,
        tags=string_list(item.get("tags")),
        created_at=context.created_at,
        rule_severity=raw_severity,
        raw=dict(item),
    )


def normalize_generic(
    payload: Any,
    tool: ToolKind,
    context: Optional[NormalizeContext] = None,
) -> List[Finding]:
    """
    Best-effort mapping of a flat list of loosely shaped records.
    """
    context = context or NormalizeContext()
    findings: List[Finding] = []

    for item in unwrap_record_list(payload):
        if not isinstance(item, Mapping):
            log.debug(f"Skipping non-object record from {tool.value}: {type(item).__name__}")
            continue
        findings.append(generic_finding(item, tool, context))

    return findings
