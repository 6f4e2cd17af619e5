import re
from typing import Any, Iterator, List, Mapping, Optional, Tuple

from aisec.normalizers import normalize_generic
from aisec.types import Finding, Location, NormalizeContext, Severity, ToolKind
from aisec.utils import first_text, get_logger, stable_id

log = get_logger("tools.pipeline")

RULE_IGNORED_FAILURE = "pipeline.ignored-failure"
RULE_MUTABLE_ARTIFACT_TAG = "pipeline.mutable-artifact-tag"
RULE_MUTABLE_IMAGE_TAG = "pipeline.mutable-image-tag"

# Failure-strategy actions that let a broken stage/step pass
IGNORING_ACTIONS = {"IGNORE", "MARKASSUCCESS"}

# Tags that get re-pointed at new builds
MUTABLE_TAGS = {"latest", "main", "master", "dev", "develop", "stable", "edge", "nightly"}

# registry/repo:tag or registry/repo@sha256:digest
_IMAGE_RE = re.compile(r"^(?P<name>[^@]+?)(?::(?P<tag>[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}))?(?:@(?P<digest>.+))?$")


# ---------------------------------------------------------
# Pipeline tree walking
# ---------------------------------------------------------

def _ident(node: Mapping) -> str:
    return first_text(node.get("identifier"), node.get("name")) or "?"


def _iter_stages(entries: Any) -> Iterator[Mapping]:
    """Yields stage bodies, flattening parallel groups."""
    if not isinstance(entries, list):
        return
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        if isinstance(entry.get("stage"), Mapping):
            yield entry["stage"]
        if "parallel" in entry:
            yield from _iter_stages(entry["parallel"])


def _iter_steps(entries: Any, trail: Tuple[str, ...] = ()) -> Iterator[Tuple[Tuple[str, ...], Mapping]]:
    """Yields (group trail, step body), flattening parallel and step groups."""
    if not isinstance(entries, list):
        return
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        if isinstance(entry.get("step"), Mapping):
            yield trail, entry["step"]
        if "parallel" in entry:
            yield from _iter_steps(entry["parallel"], trail)
        group = entry.get("stepGroup")
        if isinstance(group, Mapping):
            yield trail, group
            yield from _iter_steps(group.get("steps"), trail + (_ident(group),))


def _stage_steps(stage: Mapping) -> Any:
    spec = stage.get("spec") if isinstance(stage.get("spec"), Mapping) else {}
    execution = spec.get("execution") if isinstance(spec.get("execution"), Mapping) else {}
    return execution.get("steps")


def _ignoring_action(node: Mapping) -> Optional[str]:
    strategies = node.get("failureStrategies")
    if not isinstance(strategies, list):
        return None
    for strategy in strategies:
        on_failure = strategy.get("onFailure") if isinstance(strategy, Mapping) else None
        action = on_failure.get("action") if isinstance(on_failure, Mapping) else None
        action_type = first_text(action.get("type")) if isinstance(action, Mapping) else None
        if action_type and action_type.replace("_", "").upper() in IGNORING_ACTIONS:
            return action_type
    return None


def _mutable_image_tag(image: str) -> Optional[str]:
    """Returns the offending tag ('' when untagged) or None when pinned."""
    if image.startswith("<+"):
        return None  # resolved at runtime
    match = _IMAGE_RE.match(image.strip())
    if not match or match.group("digest"):
        return None
    tag = match.group("tag")
    if tag is None:
        return ""
    return tag if tag.lower() in MUTABLE_TAGS else None


# ---------------------------------------------------------
# Finding builders
# ---------------------------------------------------------

class _Emitter:
    def __init__(self, pipeline_id: str, file: Optional[str], context: NormalizeContext):
        self.pipeline_id = pipeline_id
        self.file = file
        self.context = context
        self.findings: List[Finding] = []

    def emit(self, rule_id: str, severity: Severity, title: str, path: str, message: str, snippet: str, raw: Mapping):
        full_message = f"{path}: {message}"
        location = Location(file=self.file, snippet=snippet) if self.file else Location(snippet=snippet)
        self.findings.append(Finding(
            id=stable_id(rule_id, self.file or self.pipeline_id, None, full_message),
            tool=ToolKind.PIPELINE,
            rule_id=rule_id,
            title=title,
            message=full_message,
            severity=severity,
            location=location,
            created_at=self.context.created_at,
            raw=dict(raw),
        ))


def _check_failure_strategy(emitter: _Emitter, node: Mapping, kind: str, path: str) -> None:
    action = _ignoring_action(node)
    if action:
        emitter.emit(
            RULE_IGNORED_FAILURE,
            Severity.MEDIUM,
            f"{kind.capitalize()} ignores failures",
            path,
            f"{kind} is configured with failure action '{action}', so errors never fail the pipeline.",
            f"failureStrategies.onFailure.action.type: {action}",
            node,
        )


def _check_artifact_tags(emitter: _Emitter, step: Mapping, path: str) -> None:
    spec = step.get("spec") if isinstance(step.get("spec"), Mapping) else {}

    tags = spec.get("tags")
    if isinstance(tags, str):
        tags = [tags]
    if isinstance(tags, list):
        mutable = [t for t in tags if isinstance(t, str) and t.strip().lower() in MUTABLE_TAGS]
        if mutable:
            repo = first_text(spec.get("repo"), spec.get("imageName")) or "artifact"
            emitter.emit(
                RULE_MUTABLE_ARTIFACT_TAG,
                Severity.HIGH,
                "Build artifact published with a mutable tag",
                path,
                f"{repo} is pushed with mutable tag(s) {', '.join(mutable)}; deployments cannot be traced to one build.",
                f"tags: [{', '.join(mutable)}]",
                step,
            )

    image = spec.get("image")
    if isinstance(image, str) and image.strip():
        tag = _mutable_image_tag(image)
        if tag is not None:
            reason = f"uses mutable tag '{tag}'" if tag else "has no tag or digest"
            emitter.emit(
                RULE_MUTABLE_IMAGE_TAG,
                Severity.MEDIUM,
                "Step image is not pinned",
                path,
                f"image {image} {reason}; pin a version tag or a digest.",
                f"image: {image}",
                step,
            )


def normalize_pipeline_result(
    payload: Any,
    context: Optional[NormalizeContext] = None,
) -> List[Finding]:
    """
    Inspects a CI/CD pipeline definition for risky configuration:
    - stages or steps whose failure strategy ignores errors
    - artifacts pushed with, or steps running on, mutable image tags

    Lists of loosely shaped records go through the generic normalizer.
    """
    context = context or NormalizeContext()

    if not isinstance(payload, Mapping):
        return normalize_generic(payload, ToolKind.PIPELINE, context)

    pipeline = payload.get("pipeline") if isinstance(payload.get("pipeline"), Mapping) else payload
    if not isinstance(pipeline.get("stages"), list):
        return normalize_generic(payload, ToolKind.PIPELINE, context)

    pipeline_id = _ident(pipeline)
    file = first_text(payload.get("filePath"), pipeline.get("filePath"), context.source_file)
    emitter = _Emitter(pipeline_id, file, context)

    for stage in _iter_stages(pipeline["stages"]):
        stage_path = f"{pipeline_id} > {_ident(stage)}"
        _check_failure_strategy(emitter, stage, "stage", stage_path)

        for trail, step in _iter_steps(_stage_steps(stage)):
            step_path = " > ".join((stage_path,) + trail + (_ident(step),))
            _check_failure_strategy(emitter, step, "step", step_path)
            _check_artifact_tags(emitter, step, step_path)

    log.info(f"Pipeline analysis complete for {pipeline_id}. Found {len(emitter.findings)} issues.")
    return emitter.findings
