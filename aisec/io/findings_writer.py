from pathlib import Path
from typing import Iterable

from aisec.types import Finding


def write_findings_jsonl(
    findings: Iterable[Finding],
    output_path: str,
) -> str:
    """
    Stream findings to disk as JSONL.

    - One finding per line
    - raw source fragments are left out
    - Constant memory usage
    """

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        for finding in findings:
            f.write(finding.model_dump_json(exclude={"raw"}, exclude_none=True))
            f.write("\n")

    return str(path)
