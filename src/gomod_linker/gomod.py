"""In-memory model of a ``go.mod`` descriptor.

Only the subset of the format the linker needs is understood: the ``module``
declaration, ``require`` entries and ``replace`` entries, each in single-line
or parenthesised block form. Every other line is kept verbatim so that
``GoMod.parse(text).serialize() == text`` for descriptors the linker does not
touch.

Mutation is append-only: ``add_replace`` inserts a new entry next to the last
existing replacement (or at the end) and never reorders or rewrites what was
parsed.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Iterator, Union

from .errors import FormatError

GO_MOD_FILE_NAME = "go.mod"
GO_SUM_FILE_NAME = "go.sum"

_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*"|`[^`]*`|//.*|\S+')
_LOCAL_PATH_RE = re.compile(r"^(\.\.?([\\/]|$)|/|[A-Za-z]:[\\/])")
_NEEDS_QUOTE_RE = re.compile(r'[\s"`]|//')


def _tokenize(line: str) -> list[str]:
    tokens: list[str] = []
    for match in _TOKEN_RE.finditer(line):
        token = match.group(0)
        if token.startswith("//"):
            break
        tokens.append(token)
    return tokens


def _unquote(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] == "`":
        return token[1:-1]
    if len(token) >= 2 and token[0] == token[-1] == '"':
        try:
            return json.loads(token)
        except ValueError:
            return token[1:-1]
    return token


def _quote(value: str) -> str:
    if value and not _NEEDS_QUOTE_RE.search(value):
        return value
    return json.dumps(value)


@dataclass(frozen=True)
class ModuleIdentity:
    """Module path plus optional version; equality only considers the path."""

    path: str
    version: str | None = field(default=None, compare=False)

    @property
    def is_local_path(self) -> bool:
        """True when the path names a directory rather than a module."""
        return bool(_LOCAL_PATH_RE.match(self.path))

    def render(self) -> str:
        if self.version:
            return f"{_quote(self.path)} {_quote(self.version)}"
        return _quote(self.path)

    def __str__(self) -> str:
        return self.render()


@dataclass
class ModuleDeclaration:
    module: ModuleIdentity
    raw: str | None = None

    def lines(self) -> list[str]:
        if self.raw is not None:
            return [self.raw]
        return [f"module {_quote(self.module.path)}"]


@dataclass
class RequireEntry:
    module: ModuleIdentity
    raw: str | None = None

    keyword = "require"

    def render(self, *, in_block: bool = False) -> str:
        if self.raw is not None:
            return self.raw
        prefix = "\t" if in_block else f"{self.keyword} "
        return prefix + self.module.render()

    def lines(self) -> list[str]:
        return [self.render()]


@dataclass
class ReplaceEntry:
    source: ModuleIdentity
    target: ModuleIdentity
    raw: str | None = None

    keyword = "replace"

    def render(self, *, in_block: bool = False) -> str:
        if self.raw is not None:
            return self.raw
        prefix = "\t" if in_block else f"{self.keyword} "
        return f"{prefix}{self.source.render()} => {self.target.render()}"

    def lines(self) -> list[str]:
        return [self.render()]


@dataclass
class RawLine:
    """A line the model does not interpret: comments, blanks, ``go``, ``exclude``..."""

    text: str

    def lines(self) -> list[str]:
        return [self.text]


Entry = Union[RequireEntry, ReplaceEntry, RawLine]


@dataclass
class DirectiveBlock:
    """A ``keyword ( ... )`` group. Entries of unknown keywords are kept as raw lines."""

    keyword: str
    entries: list[Entry] = field(default_factory=list)
    header: str | None = None
    footer: str | None = None

    def lines(self) -> list[str]:
        rendered = [self.header if self.header is not None else f"{self.keyword} ("]
        for entry in self.entries:
            if isinstance(entry, RawLine):
                rendered.append(entry.text)
            else:
                rendered.append(entry.render(in_block=True))
        rendered.append(self.footer if self.footer is not None else ")")
        return rendered


Directive = Union[ModuleDeclaration, RequireEntry, ReplaceEntry, RawLine, DirectiveBlock]


def _parse_require(tokens: list[str], raw: str) -> Entry:
    if len(tokens) != 2:
        return RawLine(raw)
    return RequireEntry(ModuleIdentity(_unquote(tokens[0]), _unquote(tokens[1])), raw=raw)


def _parse_replace(tokens: list[str], raw: str) -> Entry:
    if "=>" not in tokens:
        return RawLine(raw)
    arrow = tokens.index("=>")
    left = [_unquote(token) for token in tokens[:arrow]]
    right = [_unquote(token) for token in tokens[arrow + 1 :]]
    if len(left) not in (1, 2) or len(right) not in (1, 2):
        return RawLine(raw)
    source = ModuleIdentity(left[0], left[1] if len(left) == 2 else None)
    target = ModuleIdentity(right[0], right[1] if len(right) == 2 else None)
    return ReplaceEntry(source, target, raw=raw)


def _parse_entry(keyword: str, tokens: list[str], raw: str) -> Entry:
    if keyword == "require":
        return _parse_require(tokens, raw)
    if keyword == "replace":
        return _parse_replace(tokens, raw)
    return RawLine(raw)


def _block_keyword(tokens: list[str]) -> str | None:
    if len(tokens) == 2 and tokens[1] == "(":
        return tokens[0]
    if len(tokens) == 1 and len(tokens[0]) > 1 and tokens[0].endswith("("):
        return tokens[0][:-1]
    return None


class GoMod:
    """Ordered sequence of go.mod directives."""

    def __init__(self, directives: list[Directive] | None = None, *, trailing_newline: bool = True) -> None:
        self.directives: list[Directive] = directives if directives is not None else []
        self.trailing_newline = trailing_newline

    @classmethod
    def parse(cls, text: str) -> "GoMod":
        """Parse go.mod text.

        Raises:
            FormatError: If a block is never closed or a ``)`` has no opening block.
        """
        trailing_newline = text.endswith("\n")
        body = text[:-1] if trailing_newline else text
        lines = body.split("\n") if body or trailing_newline else []

        directives: list[Directive] = []
        block: DirectiveBlock | None = None
        block_line = 0

        for lineno, line in enumerate(lines, start=1):
            tokens = _tokenize(line)
            if block is not None:
                if tokens and tokens[0] == ")":
                    block.footer = line
                    directives.append(block)
                    block = None
                elif _block_keyword(tokens) is not None:
                    raise FormatError(f"unterminated {block.keyword} block", line=block_line)
                elif not tokens:
                    block.entries.append(RawLine(line))
                else:
                    block.entries.append(_parse_entry(block.keyword, tokens, line))
                continue

            if not tokens:
                directives.append(RawLine(line))
                continue

            keyword = _block_keyword(tokens)
            if keyword is not None:
                block = DirectiveBlock(keyword, header=line)
                block_line = lineno
                continue

            head = tokens[0]
            if head == ")":
                raise FormatError("closing parenthesis without an open block", line=lineno)
            if head == "module" and len(tokens) == 2:
                directives.append(ModuleDeclaration(ModuleIdentity(_unquote(tokens[1])), raw=line))
            elif head in ("require", "replace"):
                directives.append(_parse_entry(head, tokens[1:], line))
            else:
                directives.append(RawLine(line))

        if block is not None:
            raise FormatError(f"unterminated {block.keyword} block", line=block_line)

        return cls(directives, trailing_newline=trailing_newline)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def module(self) -> ModuleIdentity | None:
        for directive in self.directives:
            if isinstance(directive, ModuleDeclaration):
                return directive.module
        return None

    def iter_entries(self) -> Iterator[Entry]:
        for directive in self.directives:
            if isinstance(directive, DirectiveBlock):
                yield from directive.entries
            elif isinstance(directive, (RequireEntry, ReplaceEntry, RawLine)):
                yield directive

    @property
    def requires(self) -> list[RequireEntry]:
        return [entry for entry in self.iter_entries() if isinstance(entry, RequireEntry)]

    @property
    def replaces(self) -> list[ReplaceEntry]:
        return [entry for entry in self.iter_entries() if isinstance(entry, ReplaceEntry)]

    def has_require_for(self, module: ModuleIdentity) -> bool:
        return any(entry.module.path == module.path for entry in self.requires)

    def has_replace_for(self, module: ModuleIdentity) -> bool:
        return any(entry.source.path == module.path for entry in self.replaces)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_replace(self, source: ModuleIdentity, target: ModuleIdentity) -> ReplaceEntry:
        """Append a replacement after the last existing one, or at the end.

        No de-duplication happens here; callers check ``has_replace_for`` first.
        """
        entry = ReplaceEntry(source, target)
        anchor: int | None = None
        for index, directive in enumerate(self.directives):
            if isinstance(directive, ReplaceEntry) or (
                isinstance(directive, DirectiveBlock) and directive.keyword == "replace"
            ):
                anchor = index

        if anchor is None:
            last = self.directives[-1] if self.directives else None
            if last is not None and not (isinstance(last, RawLine) and not last.text.strip()):
                self.directives.append(RawLine(""))
            self.directives.append(entry)
            return entry

        anchored = self.directives[anchor]
        if isinstance(anchored, DirectiveBlock):
            anchored.entries.append(entry)
        else:
            self.directives.insert(anchor + 1, entry)
        return entry

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def serialize(self) -> str:
        lines: list[str] = []
        items = self.directives
        index = 0
        while index < len(items):
            item = items[index]
            if isinstance(item, (RequireEntry, ReplaceEntry)) and item.raw is None:
                end = index
                while end < len(items) and type(items[end]) is type(item) and items[end].raw is None:
                    end += 1
                run = items[index:end]
                if len(run) > 1:
                    lines.append(f"{item.keyword} (")
                    lines.extend(entry.render(in_block=True) for entry in run)
                    lines.append(")")
                else:
                    lines.append(item.render())
                index = end
                continue
            lines.extend(item.lines())
            index += 1

        text = "\n".join(lines)
        if self.trailing_newline:
            text += "\n"
        return text

    def __str__(self) -> str:
        return self.serialize()
