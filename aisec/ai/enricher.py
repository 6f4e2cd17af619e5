import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from aisec.ai.chunker import chunk_findings
from aisec.ai.exceptions import AIEnrichmentError, AIResponseParseError
from aisec.ai.parsing import parse_enrichment
from aisec.ai.provider import CompletionProvider, Turn
from aisec.guardrails import redact_text
from aisec.store import FindingsStore
from aisec.types import Enrichment, Finding, Severity
from aisec.utils import first_text, get_logger, normalize_severity

log = get_logger("ai.enricher")

SYSTEM_PROMPT = (
    "You are a senior application security analyst. "
    "Return clear, actionable guidance. Keep responses concise."
)

USER_PROMPT = """Given the following findings JSON array, return a JSON array with one object per finding:
- id: copied unchanged from the input finding.
- severity: 'critical' | 'high' | 'medium' | 'low' | 'info' | 'unknown'.
- explanation: one short paragraph (plain text) explaining the risk in simple terms.
- remediation: 2-5 specific steps or code changes to fix or mitigate.

Rules:
- Do NOT invent ids, file paths or lines; only use what's provided.
- If information is missing, write 'Unknown' briefly; do not guess.
- Respond with JSON ONLY (the array, no prose).

Findings:
{findings}"""

# Never sent to the completion service
_EXCLUDED_FIELDS = {"raw", "enrichment", "fingerprints"}


@dataclass(frozen=True)
class EnrichmentResult:
    id: str
    explanation: Optional[str] = None
    remediation: Optional[str] = None
    severity: Optional[Severity] = None


# ---------------------------------------------------------
# Prompt side
# ---------------------------------------------------------

def sanitize_for_ai(
    findings: Iterable[Finding],
    *,
    max_message_chars: int = 400,
    max_snippet_chars: int = 800,
) -> List[Dict[str, Any]]:
    """
    Prompt-safe copies of findings: raw payload dropped, message and
    snippet truncated and scrubbed of secrets/PII.
    """
    sanitized = []
    for finding in findings:
        item = finding.model_dump(mode="json", exclude=_EXCLUDED_FIELDS, exclude_none=True)
        item["message"] = redact_text(finding.message or "")[:max_message_chars]

        location = item.get("location")
        if location and location.get("snippet"):
            location["snippet"] = redact_text(location["snippet"])[:max_snippet_chars]

        sanitized.append(item)
    return sanitized


def build_enrichment_prompt(items: List[Dict[str, Any]]) -> List[Turn]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": USER_PROMPT.format(findings=json.dumps(items, indent=2))},
    ]


# ---------------------------------------------------------
# Response side
# ---------------------------------------------------------

def _steps_text(value: Any) -> Optional[str]:
    if isinstance(value, list):
        steps = [str(step).strip() for step in value if str(step).strip()]
        return "\n".join(f"{i}. {step}" for i, step in enumerate(steps, start=1)) or None
    return first_text(value)


def _reply_severity(value: Any) -> Optional[Severity]:
    # The prompt asks for our own scale; tool vocabulary is accepted too.
    # unknown never overwrites a known severity.
    text = first_text(value)
    if text is None:
        return None
    try:
        severity = Severity(text.lower())
    except ValueError:
        severity = normalize_severity(text)
    return None if severity == Severity.UNKNOWN else severity


def extract_results(items: List[dict]) -> List[EnrichmentResult]:
    """
    Model objects -> EnrichmentResult. Accepts both the requested keys
    and the aiExplanation/aiRemediation spelling; skips objects without an id.
    """
    results = []
    for item in items:
        finding_id = item.get("id")
        if not isinstance(finding_id, (str, int)) or not str(finding_id).strip():
            continue

        severity = _reply_severity(item.get("severity"))

        results.append(EnrichmentResult(
            id=str(finding_id),
            explanation=first_text(item.get("explanation"), item.get("aiExplanation")),
            remediation=_steps_text(item.get("remediation") or item.get("aiRemediation")),
            severity=severity,
        ))
    return results


def merge_enrichment(store: FindingsStore, results: Iterable[EnrichmentResult]) -> int:
    """
    Merge enrichment back by id. Ids the store does not know are ignored;
    findings the model dropped are left exactly as they were.
    """
    merged = 0
    for result in results:
        if result.id not in store:
            log.debug(f"Ignoring enrichment for unknown finding {result.id}")
            continue

        fields: Dict[str, Any] = {}
        if result.explanation or result.remediation:
            fields["enrichment"] = Enrichment(
                explanation=result.explanation,
                remediation=result.remediation,
            )
        if result.severity is not None:
            fields["severity"] = result.severity

        if fields:
            store.patch(result.id, **fields)
            merged += 1
    return merged


# ---------------------------------------------------------
# Engine
# ---------------------------------------------------------

class EnrichmentEngine:
    """
    Annotates stored findings with AI explanation/remediation.

    Every failure (provider, timeout, unparseable reply) is logged and
    swallowed here; the store keeps the unenriched findings.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        store: FindingsStore,
        *,
        batch_size: int = 25,
        max_message_chars: int = 400,
        max_snippet_chars: int = 800,
        max_tokens: int = 1400,
        temperature: float = 0.2,
        top_p: float = 0.9,
    ):
        self.provider = provider
        self.store = store
        self.batch_size = batch_size
        self.max_message_chars = max_message_chars
        self.max_snippet_chars = max_snippet_chars
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p

    @classmethod
    def from_settings(cls, settings, provider: CompletionProvider, store: FindingsStore) -> "EnrichmentEngine":
        return cls(
            provider,
            store,
            batch_size=settings.ENRICH_BATCH_SIZE,
            max_message_chars=settings.AI_MAX_MESSAGE_CHARS,
            max_snippet_chars=settings.AI_MAX_SNIPPET_CHARS,
            max_tokens=settings.AI_MAX_TOKENS,
            temperature=settings.AI_TEMPERATURE,
            top_p=settings.AI_TOP_P,
        )

    async def enrich(self, findings: Iterable[Finding]) -> List[EnrichmentResult]:
        results: List[EnrichmentResult] = []
        for batch in chunk_findings(list(findings), max_items=self.batch_size):
            results.extend(await self._enrich_batch(batch))
        return results

    def schedule(self, findings: Iterable[Finding]) -> asyncio.Task:
        """
        Start enrichment in the background. The returned task can be
        awaited or cancelled; it never raises on enrichment failure.
        """
        return asyncio.create_task(self.enrich(list(findings)), name="aisec-enrichment")

    async def _enrich_batch(self, batch: List[Finding]) -> List[EnrichmentResult]:
        turns = build_enrichment_prompt(sanitize_for_ai(
            batch,
            max_message_chars=self.max_message_chars,
            max_snippet_chars=self.max_snippet_chars,
        ))

        try:
            text = await self.provider.complete(
                turns,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                top_p=self.top_p,
            )
            items = parse_enrichment(text)
            if items is None:
                raise AIResponseParseError("AI returned non-JSON or invalid array")
        except AIEnrichmentError as exc:
            log.warning(f"AI enrichment failed for {len(batch)} findings: {exc}")
            return []
        except Exception as exc:
            log.exception(f"Unexpected AI enrichment error: {exc}")
            return []

        results = extract_results(items)
        merged = merge_enrichment(self.store, results)
        log.info(f"Enriched {merged}/{len(batch)} findings")
        return results
