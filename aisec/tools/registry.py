# aisec/tools/registry.py

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Pattern

from aisec.exceptions import AdapterConfigurationError, AdapterResolutionError
from aisec.tools import (
    normalize_compliance_result,
    normalize_pipeline_result,
    normalize_scanner_result,
)
from aisec.types import Finding, NormalizeContext, ToolKind
from aisec.utils import get_logger

log = get_logger("tools.registry")

Normalizer = Callable[[Any, Optional[NormalizeContext]], List[Finding]]

FILENAME_GROUP = "filename"


@dataclass(frozen=True, slots=True)
class ScanAdapter:
    """
    Immutable per-tool descriptor.

    Describes WHERE a tool lives and HOW its output is read.
    Resolved once at startup. Must NEVER be mutated.
    """

    kind: ToolKind
    display_name: str
    start_endpoint: str
    logs_endpoint: str
    result_endpoint: str
    completion_pattern: Pattern[str]
    normalize: Normalizer

    def match_completion(self, line: str) -> Optional[str]:
        """
        Returns the result-file identifier embedded in a log line, if any.
        """
        match = self.completion_pattern.search(line)
        if not match:
            return None
        return match.group(FILENAME_GROUP)


class AdapterRegistry(Mapping[ToolKind, ScanAdapter]):
    """
    Enum-keyed, read-only adapter table.
    """

    __slots__ = ("_adapters",)

    def __init__(self, adapters: Dict[ToolKind, ScanAdapter]):
        validate_completion_patterns(adapters.values())
        self._adapters = MappingProxyType(dict(adapters))

    def get_adapter(self, kind: ToolKind) -> ScanAdapter:
        try:
            return self._adapters[ToolKind(kind)]
        except (KeyError, ValueError) as exc:
            raise AdapterResolutionError(f"No adapter registered for tool kind: {kind}") from exc

    def __getitem__(self, kind: ToolKind) -> ScanAdapter:
        return self._adapters[kind]

    def __iter__(self) -> Iterator[ToolKind]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)


def compile_completion_pattern(kind: ToolKind, pattern: str) -> Pattern[str]:
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        raise AdapterConfigurationError(
            f"Completion pattern for {kind.value} does not compile: {exc}"
        ) from exc

    if FILENAME_GROUP not in compiled.groupindex:
        raise AdapterConfigurationError(
            f"Completion pattern for {kind.value} must define a '{FILENAME_GROUP}' group"
        )
    return compiled


def validate_completion_patterns(adapters) -> None:
    """
    Every tool needs its own marker. Two tools sharing one pattern
    would fetch each other's results, so that is rejected up front.
    """
    seen: Dict[str, ToolKind] = {}
    for adapter in adapters:
        source = adapter.completion_pattern.pattern
        if source in seen:
            raise AdapterConfigurationError(
                f"Tools {seen[source].value} and {adapter.kind.value} share the same completion pattern"
            )
        seen[source] = adapter.kind


def build_registry(settings) -> AdapterRegistry:
    """
    Resolve every adapter descriptor from settings.

    Must be called once at startup.
    """
    adapters = {
        ToolKind.SCANNER: ScanAdapter(
            kind=ToolKind.SCANNER,
            display_name="Static Analysis",
            start_endpoint=settings.SCANNER_START_URL,
            logs_endpoint=settings.SCANNER_LOGS_URL,
            result_endpoint=settings.SCANNER_RESULT_URL or settings.RESULT_URL,
            completion_pattern=compile_completion_pattern(
                ToolKind.SCANNER, settings.SCANNER_COMPLETION_PATTERN
            ),
            normalize=normalize_scanner_result,
        ),
        ToolKind.COMPLIANCE: ScanAdapter(
            kind=ToolKind.COMPLIANCE,
            display_name="Compliance Posture",
            start_endpoint=settings.COMPLIANCE_START_URL,
            logs_endpoint=settings.COMPLIANCE_LOGS_URL,
            result_endpoint=settings.COMPLIANCE_RESULT_URL or settings.RESULT_URL,
            completion_pattern=compile_completion_pattern(
                ToolKind.COMPLIANCE, settings.COMPLIANCE_COMPLETION_PATTERN
            ),
            normalize=normalize_compliance_result,
        ),
        ToolKind.PIPELINE: ScanAdapter(
            kind=ToolKind.PIPELINE,
            display_name="CI/CD Pipeline",
            start_endpoint=settings.PIPELINE_START_URL,
            logs_endpoint=settings.PIPELINE_LOGS_URL,
            result_endpoint=settings.PIPELINE_RESULT_URL or settings.RESULT_URL,
            completion_pattern=compile_completion_pattern(
                ToolKind.PIPELINE, settings.PIPELINE_COMPLETION_PATTERN
            ),
            normalize=normalize_pipeline_result,
        ),
    }

    for adapter in adapters.values():
        if not adapter.start_endpoint:
            log.debug(f"No start endpoint configured for {adapter.kind.value}")

    return AdapterRegistry(adapters)
