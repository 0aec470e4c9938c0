# Engine protocol dialects
"""
Command wording and terminal-response recognition for the engine protocols
matebench can drive.

A dialect bundles the handshake tokens, option names and request formats of one
protocol, together with a factory for the ``ResponseRecognizer`` that decides
which engine line ends a mate search and how it is classified. New dialects are
added with ``register_dialect``.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from matebench.errors import ProtocolError
from matebench.results import OutcomeKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Verdict:
    """Classification of a terminal response line."""
    kind: OutcomeKind
    depth: Optional[int] = None


def parse_info(tokens: List[str]) -> Dict[str, str]:
    """Pick the scalar fields out of an ``info`` line.

    ``pv`` swallows the rest of the line, ``score`` keeps its unit
    (``score mate 3`` becomes ``{"score": "mate 3"}``).
    """
    fields: Dict[str, str] = {}
    i = 1
    while i < len(tokens):
        key = tokens[i]
        if key == "pv":
            fields["pv"] = " ".join(tokens[i + 1:])
            break
        if key == "string":
            fields["string"] = " ".join(tokens[i + 1:])
            break
        if key == "score" and i + 2 < len(tokens):
            fields["score"] = f"{tokens[i + 1]} {tokens[i + 2]}"
            i += 3
            continue
        if i + 1 < len(tokens):
            fields[key] = tokens[i + 1]
        i += 2
    return fields


class ResponseRecognizer:
    """Stateful per-search recognizer.

    ``feed`` is called with every line the engine writes while solving and
    returns a ``Verdict`` for the terminal line, ``None`` otherwise. Malformed
    terminal lines raise ``ProtocolError``. Node counts are taken from the last
    ``info`` line that carries a PV.
    """

    def __init__(self):
        self.nodes = 0

    def reset(self):
        self.nodes = 0

    def feed(self, line: str) -> Optional[Verdict]:
        tokens = line.split()
        if not tokens:
            return None
        if tokens[0] == "info":
            self._on_info(parse_info(tokens))
            return None
        return self._on_line(tokens, line)

    def _on_info(self, info: Dict[str, str]):
        if "pv" in info and "nodes" in info:
            try:
                self.nodes = int(info["nodes"])
            except ValueError:
                logger.debug(f"Ignoring non-numeric node count: {info['nodes']}")

    def _on_line(self, tokens: List[str], line: str) -> Optional[Verdict]:
        raise NotImplementedError


class UsiMateRecognizer(ResponseRecognizer):
    """``go mate`` answers of USI engines: ``checkmate <moves>|nomate|timeout|notimplemented``."""

    def _on_line(self, tokens: List[str], line: str) -> Optional[Verdict]:
        head = tokens[0]
        if head == "bestmove":
            raise ProtocolError(f"Unexpected bestmove during mate search: {line}")
        if head != "checkmate":
            return None
        if len(tokens) < 2:
            raise ProtocolError(f"Malformed checkmate response: {line!r}")

        answer = tokens[1]
        if answer == "nomate":
            return Verdict(OutcomeKind.NO_MATE)
        if answer == "timeout":
            return Verdict(OutcomeKind.TIMEOUT)
        if answer == "notimplemented":
            return Verdict(OutcomeKind.ENGINE_ERROR)
        return Verdict(OutcomeKind.MATE_FOUND, depth=len(tokens) - 1)


class UciMateRecognizer(ResponseRecognizer):
    """UCI engines end with ``bestmove``; the mate distance comes from the last ``score mate N``."""

    def __init__(self):
        super().__init__()
        self.mate_in: Optional[int] = None

    def reset(self):
        super().reset()
        self.mate_in = None

    def _on_info(self, info: Dict[str, str]):
        super()._on_info(info)
        score = info.get("score", "")
        if score.startswith("mate "):
            try:
                self.mate_in = int(score.split()[1])
            except ValueError:
                raise ProtocolError(f"Malformed mate score: {score!r}")
        elif score.startswith("cp "):
            self.mate_in = None

    def _on_line(self, tokens: List[str], line: str) -> Optional[Verdict]:
        if tokens[0] != "bestmove":
            return None
        if len(tokens) < 2:
            raise ProtocolError(f"Malformed bestmove response: {line!r}")
        if self.mate_in is not None and self.mate_in > 0:
            # UCI counts moves of the mating side, plies are 2N-1.
            return Verdict(OutcomeKind.MATE_FOUND, depth=2 * self.mate_in - 1)
        return Verdict(OutcomeKind.NO_MATE)


@dataclass(frozen=True)
class Dialect:
    """Protocol wording for one engine family."""
    name: str
    handshake: str
    handshake_ok: str
    threads_option: str
    hash_option: str
    recognizer_factory: Callable[[], ResponseRecognizer]
    position_format: str
    search_format: str
    ready: str = "isready"
    ready_ok: str = "readyok"
    new_game: Optional[str] = None
    quit: str = "quit"
    default_options: Dict[str, str] = field(default_factory=dict)

    def setoption(self, name: str, value) -> str:
        return f"setoption name {name} value {value}"

    def position_command(self, payload: str) -> str:
        if payload.startswith("startpos") or payload.startswith("position "):
            return payload if payload.startswith("position ") else f"position {payload}"
        return self.position_format.format(payload=payload)

    def search_command(self, timeout: float) -> str:
        return self.search_format.format(ms=max(1, int(timeout * 1000)))


USI = Dialect(
    name="usi",
    handshake="usi",
    handshake_ok="usiok",
    threads_option="Threads",
    hash_option="USI_Hash",
    recognizer_factory=UsiMateRecognizer,
    position_format="position sfen {payload}",
    search_format="go mate {ms}",
    new_game="usinewgame",
    default_options={
        "GenerateAllLegalMoves": "true",
        "PvInterval": "0",
        "RootIsAndNodeIfChecked": "false",
        "PostSearchLevel": "None",
    },
)

UCI = Dialect(
    name="uci",
    handshake="uci",
    handshake_ok="uciok",
    threads_option="Threads",
    hash_option="Hash",
    recognizer_factory=UciMateRecognizer,
    position_format="position fen {payload}",
    search_format="go movetime {ms}",
    new_game="ucinewgame",
)

DIALECTS: Dict[str, Dialect] = {}


def register_dialect(dialect: Dialect):
    """Make a dialect selectable by name through ``EngineConfig.dialect``."""
    DIALECTS[dialect.name] = dialect


def get_dialect(name: str) -> Dialect:
    try:
        return DIALECTS[name]
    except KeyError:
        raise KeyError(f"Unknown engine dialect '{name}' (known: {', '.join(sorted(DIALECTS))})") from None


register_dialect(USI)
register_dialect(UCI)
