"""
TEI Protocol Codec
Parses engine output lines into commands and serializes GUI commands,
independent of any running process
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union


class EngineFault(Exception):
    """An engine misbehaved; costs that engine the current game"""


class ProtocolError(EngineFault):
    """Malformed line from an engine"""


class OptionType(Enum):
    CHECK = "check"
    SPIN = "spin"
    COMBO = "combo"
    BUTTON = "button"
    STRING = "string"


@dataclass(frozen=True)
class TeiOption:
    """Option declared by an engine during the handshake"""
    name: str
    type: OptionType
    default: Optional[str] = None
    min: Optional[int] = None
    max: Optional[int] = None
    vars: tuple = ()

    def supports(self, value: str) -> bool:
        """Whether `setoption ... value <value>` is valid for this option"""
        if self.type is OptionType.CHECK:
            return value in ("true", "false")
        if self.type is OptionType.SPIN:
            try:
                number = int(value)
            except ValueError:
                return False
            return self.min <= number <= self.max
        if self.type is OptionType.COMBO:
            return value in self.vars
        if self.type is OptionType.BUTTON:
            return False
        return True


# Engine -> GUI commands

@dataclass(frozen=True)
class IdCommand:
    field: str
    value: str


@dataclass(frozen=True)
class TeiOk:
    pass


@dataclass(frozen=True)
class ReadyOk:
    pass


@dataclass(frozen=True)
class BestMove:
    move: str
    ponder: Optional[str] = None


@dataclass(frozen=True)
class OptionCommand:
    option: TeiOption


@dataclass(frozen=True)
class Info:
    raw: str
    fields: Dict = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Other:
    raw: str


Command = Union[IdCommand, TeiOk, ReadyOk, BestMove, OptionCommand, Info, Other]


def parse_engine_line(line: str) -> Command:
    """
    Parse one line of engine output

    Args:
        line: Raw line without the trailing newline

    Returns:
        The matching command; Other for unrecognized lines

    Raises:
        ProtocolError: control keyword with a malformed body
    """
    tokens = line.split()
    if not tokens:
        return Other(line)

    keyword = tokens[0]
    if keyword == "teiok":
        return TeiOk()
    if keyword == "readyok":
        return ReadyOk()
    if keyword == "bestmove":
        if len(tokens) < 2:
            raise ProtocolError(f"bestmove without a move: {line!r}")
        ponder = None
        if len(tokens) >= 4 and tokens[2] == "ponder":
            ponder = tokens[3]
        return BestMove(tokens[1], ponder)
    if keyword == "id":
        if len(tokens) < 2 or tokens[1] not in ("name", "author"):
            raise ProtocolError(f"Malformed id line: {line!r}")
        return IdCommand(tokens[1], " ".join(tokens[2:]))
    if keyword == "option":
        return OptionCommand(parse_option(line))
    if keyword == "info":
        return Info(line, parse_info(line))
    return Other(line)


_OPTION_KEYWORDS = ("name", "type", "default", "min", "max", "var")


def parse_option(line: str) -> TeiOption:
    """Parse `option name <n> type <t> [default <d>] [min <a> max <b>] [var <v>]*`"""
    words = line.split()
    if not words or words[0] != "option":
        raise ProtocolError(f"Not an option line: {line!r}")

    sections: Dict[str, List[str]] = {}
    variants: List[List[str]] = []
    current = None
    for word in words[1:]:
        if word in _OPTION_KEYWORDS:
            current = word
            if word == "var":
                variants.append([])
            else:
                sections.setdefault(word, [])
            continue
        if current is None:
            raise ProtocolError(f"Option description must start with 'name': {line!r}")
        if current == "var":
            variants[-1].append(word)
        else:
            sections[current].append(word)

    name = " ".join(sections.get("name", []))
    if not name:
        raise ProtocolError(f"Option without a name: {line!r}")
    type_words = sections.get("type", [])
    if len(type_words) != 1:
        raise ProtocolError(f"Expected one type for option {name!r}, got {len(type_words)}")
    try:
        option_type = OptionType(type_words[0])
    except ValueError:
        raise ProtocolError(f"Option {name!r} has invalid type {type_words[0]!r}")

    default_words = sections.get("default", [])
    default = " ".join(default_words) if "default" in sections else None

    if option_type is OptionType.CHECK:
        if default not in ("true", "false"):
            raise ProtocolError(f"Invalid default {default!r} for check option {name!r}")
        return TeiOption(name, option_type, default)

    if option_type is OptionType.SPIN:
        try:
            low = int(" ".join(sections.get("min", [])))
            high = int(" ".join(sections.get("max", [])))
            int(default or "")
        except ValueError:
            raise ProtocolError(f"Invalid default/min/max for spin option {name!r}")
        return TeiOption(name, option_type, default, low, high)

    if option_type is OptionType.COMBO:
        return TeiOption(name, option_type, default, vars=tuple(" ".join(v) for v in variants))

    if option_type is OptionType.STRING:
        if "<empty>" in default_words and len(default_words) > 1:
            raise ProtocolError(f"Default for {name!r} cannot be both empty and non-empty")
        if default_words == ["<empty>"]:
            default = ""
        return TeiOption(name, option_type, default)

    return TeiOption(name, option_type)


_INFO_PATTERNS = {
    "depth": r"\bdepth (\d+)",
    "seldepth": r"\bseldepth (\d+)",
    "score_cp": r"\bscore cp (-?\d+)",
    "nodes": r"\bnodes (\d+)",
    "nps": r"\bnps (\d+)",
    "time": r"\btime (\d+)",
    "hashfull": r"\bhashfull (\d+)",
    "pv": r"\bpv (.+)$",
}


def parse_info(line: str) -> Dict:
    """Parse the fields of an `info` line; unknown tokens are ignored"""
    info: Dict = {}
    for key, pattern in _INFO_PATTERNS.items():
        match = re.search(pattern, line)
        if match:
            value = match.group(1)
            info[key] = value.split() if key == "pv" else int(value)
    return info


# GUI -> engine commands

def tei() -> str:
    return "tei"


def isready() -> str:
    return "isready"


def teinewgame(size: int) -> str:
    return f"teinewgame {size}"


def setoption(name: str, value: str) -> str:
    return f"setoption name {name} value {value}"


def position(tps: Optional[str] = None, moves: Sequence[str] = ()) -> str:
    """`position startpos|tps <tps> [moves ...]`"""
    command = f"position tps {tps}" if tps else "position startpos"
    if moves:
        command += " moves " + " ".join(moves)
    return command


def go(wtime: Optional[int] = None,
       btime: Optional[int] = None,
       winc: Optional[int] = None,
       binc: Optional[int] = None) -> str:
    parts = ["go"]
    for label, value in (("wtime", wtime), ("btime", btime), ("winc", winc), ("binc", binc)):
        if value is not None:
            parts.append(f"{label} {int(value)}")
    return " ".join(parts)


def stop() -> str:
    return "stop"


def quit() -> str:
    return "quit"
