import pytest

from aisec.exceptions import AdapterConfigurationError, AdapterResolutionError
from aisec.tools.registry import compile_completion_pattern
from aisec.types import ToolKind
from tests.fakes import make_registry


@pytest.mark.contract
def test_every_tool_kind_has_an_adapter():
    registry = make_registry()

    for kind in ToolKind:
        adapter = registry.get_adapter(kind)
        assert adapter.kind == kind
        assert callable(adapter.normalize)
        assert adapter.display_name
        assert adapter.normalize([], None) == []


@pytest.mark.contract
def test_completion_markers_are_tool_specific():
    registry = make_registry()
    line = "done: scanner-results-octocat-hello-world-20240101T000000Z.json"

    assert registry[ToolKind.SCANNER].match_completion(line) == "scanner-results-octocat-hello-world-20240101T000000Z.json"
    assert registry[ToolKind.COMPLIANCE].match_completion(line) is None
    assert registry[ToolKind.PIPELINE].match_completion(line) is None
    assert registry[ToolKind.COMPLIANCE].match_completion("wrote compliance-results-acme.json") == "compliance-results-acme.json"
    assert registry[ToolKind.SCANNER].match_completion("still scanning...") is None


@pytest.mark.contract
def test_result_endpoint_falls_back_to_shared_url():
    registry = make_registry(PIPELINE_RESULT_URL="https://pipeline.test/result")

    assert registry[ToolKind.PIPELINE].result_endpoint == "https://pipeline.test/result"
    assert registry[ToolKind.SCANNER].result_endpoint == "https://results.test/fetch"


def test_unknown_kind_is_a_resolution_error():
    registry = make_registry()
    with pytest.raises(AdapterResolutionError):
        registry.get_adapter("dast")


def test_pattern_without_filename_group_is_rejected():
    with pytest.raises(AdapterConfigurationError):
        make_registry(SCANNER_COMPLETION_PATTERN=r"scanner-results-\S+\.json")


def test_compiled_pattern_must_name_the_result_file():
    with pytest.raises(AdapterConfigurationError, match="filename"):
        compile_completion_pattern(ToolKind.SCANNER, r"(scanner-results-\S+\.json)")

    pattern = compile_completion_pattern(ToolKind.SCANNER, r"(?P<filename>scanner-\S+\.json)")
    assert pattern.search("wrote scanner-a.json").group("filename") == "scanner-a.json"


def test_invalid_pattern_is_rejected():
    with pytest.raises(AdapterConfigurationError):
        make_registry(PIPELINE_COMPLETION_PATTERN=r"(?P<filename>[")


def test_shared_pattern_is_rejected():
    pattern = r"(?P<filename>results-\S+\.json)"
    with pytest.raises(AdapterConfigurationError):
        make_registry(SCANNER_COMPLETION_PATTERN=pattern, COMPLIANCE_COMPLETION_PATTERN=pattern)


def test_registry_is_read_only():
    registry = make_registry()
    assert len(registry) == 3
    assert ToolKind.SCANNER in registry
    with pytest.raises(TypeError):
        registry[ToolKind.SCANNER] = None
