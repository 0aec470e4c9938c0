"""Position records and the reader that produces them from SFEN files."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Union

from matebench.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionRecord:
    """One encoded position and its place in the input.

    ``index`` runs across all input files; ``line`` is the zero-based index of
    the position within its own file.
    """
    index: int
    payload: str
    source: Optional[str] = None
    line: int = 0


def _clean_line(raw: str) -> Optional[str]:
    line = raw.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("sfen "):
        line = line[len("sfen "):].strip()
    return line or None


class PositionSource:
    """Reads SFEN position files, one position per line."""

    def __init__(self, paths: Iterable[Union[str, Path]]):
        self.paths = [Path(p) for p in paths]

    def __iter__(self) -> Iterator[PositionRecord]:
        index = 0
        for path in self.paths:
            try:
                with path.open("r", encoding="utf-8") as f:
                    offset = 0
                    for raw in f:
                        payload = _clean_line(raw)
                        if payload is None:
                            continue
                        yield PositionRecord(index=index, payload=payload, source=str(path), line=offset)
                        index += 1
                        offset += 1
            except FileNotFoundError as e:
                raise ConfigurationError(f"Position file not found: {path}") from e
            logger.debug(f"Read {path}")

    def load(self) -> List[PositionRecord]:
        """Read every file and reject an empty result."""
        if not self.paths:
            raise ConfigurationError("No position files provided")
        records = list(self)
        if not records:
            raise ConfigurationError(f"No positions found in {', '.join(str(p) for p in self.paths)}")
        logger.info(f"Loaded {len(records)} positions from {len(self.paths)} file(s)")
        return records


def records_from_payloads(payloads: Iterable[str], source: Optional[str] = None) -> List[PositionRecord]:
    """Wrap already-decoded payloads as records, indexed in iteration order."""
    return [PositionRecord(index=i, payload=p, source=source, line=i) for i, p in enumerate(payloads)]
