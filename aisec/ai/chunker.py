from typing import Iterable, Iterator, List, TypeVar

T = TypeVar("T")


def chunk_findings(
    findings: Iterable[T],
    *,
    max_items: int,
) -> Iterator[List[T]]:
    """
    Split findings into prompt-sized batches.

    Raises:
        ValueError if max_items is not positive.
    """

    if max_items <= 0:
        raise ValueError("max_items must be > 0")

    chunk: List[T] = []

    for finding in findings:
        chunk.append(finding)

        if len(chunk) >= max_items:
            yield chunk
            chunk = []

    if chunk:
        yield chunk
