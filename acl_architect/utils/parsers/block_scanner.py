"""
Block scanner for nginx configuration text.

Locates `geo` and `map` blocks structurally: a header regex finds the
opening line and a quote/comment-aware walk finds the matching closing
brace. The parser only depends on `find_next` / `iter_blocks`, so the
strategy can be replaced by a real tokenizer without touching it.
"""
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

BLOCK_KINDS = ("geo", "map")

BLOCK_HEADER = re.compile(
    r"^[ \t]*(?P<kind>geo|map)[ \t]+(?P<header>[^{};#\n]*?)[ \t]*\{(?P<rest>[^\n]*)$",
    re.MULTILINE,
)


@dataclass
class Block:
    """A located block. `error` is set when the body could not be used."""
    kind: str
    header: str
    body: str
    header_comment: Optional[str]
    start: int
    end: int
    line: int
    error: Optional[str] = None


def _find_closing_brace(text: str, pos: int):
    """
    Walk from `pos` to the brace closing the current block.

    Returns (index or None, nested) where `nested` reports an inner block.
    """
    depth = 0
    nested = False
    quote = None
    i = pos
    length = len(text)
    while i < length:
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ('"', "'"):
            quote = ch
        elif ch == "#":
            newline = text.find("\n", i)
            if newline == -1:
                break
            i = newline
        elif ch == "{":
            nested = True
            depth += 1
        elif ch == "}":
            if depth == 0:
                return i, nested
            depth -= 1
        i += 1
    return None, nested


class BlockScanner:
    """Finds geo/map blocks in configuration text."""

    def __init__(self, config_content: str):
        self.config_content = config_content

    def _line_of(self, offset: int) -> int:
        return self.config_content.count("\n", 0, offset) + 1

    def _build_block(self, match: "re.Match") -> Block:
        text = self.config_content
        rest = match.group("rest")
        header_comment = None
        if rest.strip().startswith("#"):
            header_comment = rest.strip()[1:].strip()
            body_start = match.end()
        else:
            body_start = match.start("rest")

        close, nested = _find_closing_brace(text, body_start)
        if close is None:
            return Block(
                kind=match.group("kind"),
                header=match.group("header").strip(),
                body="",
                header_comment=header_comment,
                start=match.start(),
                end=match.end(),
                line=self._line_of(match.start()),
                error="unterminated block",
            )

        return Block(
            kind=match.group("kind"),
            header=match.group("header").strip(),
            body=text[body_start:close],
            header_comment=header_comment,
            start=match.start(),
            end=close + 1,
            line=self._line_of(match.start()),
            error="nested block" if nested else None,
        )

    def find_next(self, kind: str, start: int = 0) -> Optional[Block]:
        """Return the first block of `kind` whose header starts at or after `start`."""
        for match in BLOCK_HEADER.finditer(self.config_content, start):
            if match.group("kind") == kind:
                return self._build_block(match)
        return None

    def iter_blocks(self, kinds: Iterable[str] = BLOCK_KINDS) -> Iterator[Block]:
        """Yield blocks of the given kinds in document order."""
        kinds = tuple(kinds)
        pos = 0
        while True:
            candidates = [b for b in (self.find_next(k, pos) for k in kinds) if b is not None]
            if not candidates:
                return
            block = min(candidates, key=lambda b: b.start)
            yield block
            # Unusable blocks may contain further headers; resume after the header line
            pos = block.end if block.error is None else self.config_content.find("\n", block.start) + 1
            if pos <= block.start:
                return
