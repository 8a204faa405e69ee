from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

# Logging setup
logger = logging.getLogger(__name__)

# ----------------------------
# Key-book format
# ----------------------------

PAGE_MARKER = "page"  # any line containing this text is a page boundary
FRONT_MATTER_PAGES = 3  # markers seen before page numbering begins
MAX_PAGE_LINES = 25
MAX_MESSAGE_SIZE = 100  # max tokens read from a message file

TOKEN_DELIMITER = "."

# Diagnostic kinds
MALFORMED_TOKEN = "malformed-token"
PAGE_UNAVAILABLE = "page-unavailable"
LINE_OUT_OF_RANGE = "line-out-of-range"
CHAR_OUT_OF_RANGE = "char-out-of-range"
PAGE_TRUNCATED = "page-truncated"
BOOK_UNREADABLE = "book-unreadable"
MESSAGE_UNREADABLE = "message-unreadable"


@dataclass(frozen=True)
class KeyBookFormat:
    marker: str = PAGE_MARKER
    front_matter_pages: int = FRONT_MATTER_PAGES
    max_lines_per_page: int = MAX_PAGE_LINES
    case_sensitive: bool = True

    def __post_init__(self) -> None:
        if not self.marker:
            raise ValueError("Page marker must not be empty.")
        if self.front_matter_pages < 0:
            raise ValueError("front_matter_pages must be >= 0.")
        if self.max_lines_per_page <= 0:
            raise ValueError("max_lines_per_page must be positive.")

    def is_marker(self, line: str) -> bool:
        """Substring match, not whole-line: the key book only uses the marker text on page lines."""
        if self.case_sensitive:
            return self.marker in line
        return self.marker.lower() in line.lower()


DEFAULT_FORMAT = KeyBookFormat()

# ----------------------------
# Gutenberg auto-clean helpers
# ----------------------------

_START_RE = re.compile(
    r"\*\*\*\s*START OF (THE|THIS) PROJECT GUTENBERG EBOOK.*?\*\*\*",
    re.IGNORECASE | re.DOTALL,
)
_END_RE = re.compile(
    r"\*\*\*\s*END OF (THE|THIS) PROJECT GUTENBERG EBOOK.*?\*\*\*",
    re.IGNORECASE | re.DOTALL,
)


def clean_gutenberg_headers(text: str) -> str:
    """Remove Project Gutenberg headers/footers if markers exist."""
    m1 = _START_RE.search(text)
    m2 = _END_RE.search(text)
    if m1 and m2 and m2.start() > m1.end():
        return text[m1.end() : m2.start()].strip()
    return text


# ----------------------------
# Coded tokens
# ----------------------------


@dataclass(frozen=True)
class CodedToken:
    raw: str
    page: int  # 1-based, as written
    line: int  # zero-based index into the page
    char: int  # zero-based index into the line

    def render(self) -> str:
        return format_token(self.page, self.line, self.char)


def _parse_field(raw: str, value: str, name: str) -> int:
    if not value.isdigit() or not value.isascii():
        raise ValueError(f"Invalid {name} field {value!r} in token {raw!r} (expected a non-negative integer).")
    return int(value)


def parse_token(raw: str) -> CodedToken:
    """
    Parse a "page.line.char" token.

    The page is kept as written. Line and char are 1-based in the message
    and are shifted down by one to index into the page; a written 0 stays 0.

    Raises ValueError if the token does not have exactly two delimiters or
    a field is not a non-negative integer.
    """
    text = raw.strip()
    parts = text.split(TOKEN_DELIMITER)
    if len(parts) != 3:
        raise ValueError(f"Token format invalid: {raw!r} (expected page.line.char).")

    page = _parse_field(raw, parts[0], "page")
    line = _parse_field(raw, parts[1], "line")
    char = _parse_field(raw, parts[2], "char")

    if line > 0:
        line -= 1
    if char > 0:
        char -= 1

    return CodedToken(raw=text, page=page, line=line, char=char)


def extract_page_number(raw: str) -> int:
    return parse_token(raw).page


def format_token(page: int, line_index: int, char_index: int) -> str:
    """Render zero-based indices as a 1-based token."""
    if page < 0 or line_index < 0 or char_index < 0:
        raise ValueError("Token fields must be non-negative.")
    return TOKEN_DELIMITER.join(str(v) for v in (page, line_index + 1, char_index + 1))


def sort_tokens(tokens: Iterable[Union[str, CodedToken]]) -> list:
    """
    Order tokens by page number so each page is visited once.

    Ties keep their input order, so same-page tokens can come out in a
    different order than a plain selection sort would give. Raw strings
    are parsed for their page and a malformed one raises ValueError.
    """

    def page_of(tok: Union[str, CodedToken]) -> int:
        if isinstance(tok, CodedToken):
            return tok.page
        return extract_page_number(tok)

    return sorted(tokens, key=page_of)


# ----------------------------
# Page locator
# ----------------------------


@dataclass(frozen=True)
class Page:
    number: int
    lines: tuple[str, ...] = ()
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.lines)


def _split_lines(text: str) -> list[str]:
    """Split on newlines only, the way reading the file line by line does."""
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def read_page_lines(path: Union[str, Path], page_number: int, fmt: KeyBookFormat = DEFAULT_FORMAT) -> Page:
    """
    Scan a key-book file for one page and return its body lines.

    Page markers themselves are not returned. An unreadable file or a page
    that is never reached gives an empty page.
    """
    path = Path(path)
    page_count = -fmt.front_matter_pages
    lines: list[str] = []
    truncated = False

    try:
        with path.open("r", encoding="utf-8", errors="replace") as fin:
            it = iter(fin)
            reached = page_count == page_number
            # skip everything up to the target page's marker
            if not reached:
                for raw in it:
                    if fmt.is_marker(raw):
                        page_count += 1
                        if page_count == page_number:
                            reached = True
                            break

            if reached:
                for raw in it:
                    line = raw.rstrip("\r\n")
                    if fmt.is_marker(line):
                        break
                    if len(lines) >= fmt.max_lines_per_page:
                        truncated = True
                        break
                    lines.append(line)
    except OSError as e:
        logger.error(f"Unable to open key book {path}: {e}")
        return Page(number=page_number)

    if truncated:
        logger.warning(f"Page {page_number} of {path.name} exceeds {fmt.max_lines_per_page} lines; truncated.")
    logger.debug(f"Read {len(lines)} lines for page {page_number} from {path.name}")
    return Page(number=page_number, lines=tuple(lines), truncated=truncated)


@dataclass
class KeyBook:
    """Key book parsed once into a page-number to lines index."""

    name: str
    fmt: KeyBookFormat = DEFAULT_FORMAT
    pages: dict[int, Page] = field(default_factory=dict)

    @classmethod
    def from_text(
        cls,
        text: str,
        name: str = "<memory>",
        fmt: KeyBookFormat = DEFAULT_FORMAT,
        *,
        autoclean: bool = False,
    ) -> KeyBook:
        if autoclean:
            text = clean_gutenberg_headers(text)

        page_count = -fmt.front_matter_pages
        collected: dict[int, list[str]] = {page_count: []}
        truncated: set[int] = set()

        for line in _split_lines(text):
            if fmt.is_marker(line):
                page_count += 1
                collected[page_count] = []
                continue
            current = collected[page_count]
            if len(current) >= fmt.max_lines_per_page:
                truncated.add(page_count)
                continue
            current.append(line)

        pages = {
            n: Page(number=n, lines=tuple(lines), truncated=n in truncated)
            for n, lines in collected.items()
            if n >= 0
        }
        for n in sorted(truncated):
            if n >= 0:
                logger.warning(f"Page {n} of {name} exceeds {fmt.max_lines_per_page} lines; truncated.")
        logger.debug(f"Indexed {len(pages)} pages from {name}")
        return cls(name=name, fmt=fmt, pages=pages)

    @classmethod
    def load(cls, path: Union[str, Path], fmt: KeyBookFormat = DEFAULT_FORMAT, *, autoclean: bool = False) -> KeyBook:
        """Read and index a key-book file. Raises OSError if it cannot be read."""
        path = Path(path)
        text = path.read_text(encoding="utf-8", errors="replace")
        return cls.from_text(text, name=path.name, fmt=fmt, autoclean=autoclean)

    @classmethod
    def empty(cls, name: str, fmt: KeyBookFormat = DEFAULT_FORMAT) -> KeyBook:
        return cls(name=name, fmt=fmt)

    def page(self, number: int) -> Page:
        return self.pages.get(number, Page(number=number))

    def __len__(self) -> int:
        return len(self.pages)


# ----------------------------
# Decoder
# ----------------------------


@dataclass(frozen=True)
class Diagnostic:
    kind: str
    message: str
    token: Optional[str] = None
    page: Optional[int] = None
    line: Optional[int] = None  # 1-based, as written

    def __str__(self) -> str:
        return self.message


@dataclass
class DecodeResult:
    text: str = ""
    diagnostics: list[Diagnostic] = field(default_factory=list)
    resolved: int = 0
    skipped: int = 0

    @property
    def ok(self) -> bool:
        return not self.diagnostics


def _resolve(book: KeyBook, tok: CodedToken) -> tuple[Optional[str], Optional[Diagnostic]]:
    page = book.page(tok.page)
    line_no = tok.line + 1

    # a page with a single line is treated as having no usable content
    if len(page) <= 1:
        return None, Diagnostic(
            kind=PAGE_UNAVAILABLE,
            message=f"Line {line_no} on page {tok.page} in the '{book.name}' cipher key text has no characters.",
            token=tok.raw,
            page=tok.page,
            line=line_no,
        )

    if tok.line >= len(page):
        return None, Diagnostic(
            kind=LINE_OUT_OF_RANGE,
            message=f"Line {line_no} is past the end of page {tok.page} ({len(page)} lines) in '{book.name}'.",
            token=tok.raw,
            page=tok.page,
            line=line_no,
        )

    text = page.lines[tok.line]
    if tok.char >= len(text):
        return None, Diagnostic(
            kind=CHAR_OUT_OF_RANGE,
            message=(
                f"Character {tok.char + 1} is past the end of line {line_no} on page {tok.page} "
                f"({len(text)} characters) in '{book.name}'."
            ),
            token=tok.raw,
            page=tok.page,
            line=line_no,
        )

    return text[tok.char], None


def decode_message(
    book: KeyBook,
    tokens: Iterable[str],
    *,
    sort_by_page: bool = True,
    placeholder: Optional[str] = None,
    strict: bool = False,
) -> DecodeResult:
    """
    Decode coded tokens against an indexed key book.

    Args:
        book: KeyBook to read characters from
        tokens: raw "page.line.char" strings
        sort_by_page: decode in page order (the order the message is assembled in)
        placeholder: appended for every token that cannot be resolved
        strict: raise ValueError on a malformed token instead of skipping it

    Bad references never abort the run; each one is recorded as a Diagnostic
    and its character is left out (or replaced by the placeholder).
    """
    result = DecodeResult()
    out: list[str] = []

    def skip(diag: Diagnostic) -> None:
        logger.warning(diag.message)
        result.diagnostics.append(diag)
        result.skipped += 1
        if placeholder is not None:
            out.append(placeholder)

    # one slot per input token; malformed tokens hold their position
    slots: list[Union[CodedToken, Diagnostic]] = []
    for raw in tokens:
        try:
            slots.append(parse_token(raw))
        except ValueError as e:
            if strict:
                raise
            slots.append(Diagnostic(kind=MALFORMED_TOKEN, message=str(e), token=raw))

    if sort_by_page:
        positions = [i for i, s in enumerate(slots) if isinstance(s, CodedToken)]
        ordered = sort_tokens(slots[i] for i in positions)
        for i, tok in zip(positions, ordered):
            slots[i] = tok

    reported_truncation: set[int] = set()
    for tok in slots:
        if isinstance(tok, Diagnostic):
            skip(tok)
            continue

        page = book.page(tok.page)
        if page.truncated and tok.page not in reported_truncation:
            reported_truncation.add(tok.page)
            diag = Diagnostic(
                kind=PAGE_TRUNCATED,
                message=f"Page {tok.page} in '{book.name}' was truncated at {book.fmt.max_lines_per_page} lines.",
                token=tok.raw,
                page=tok.page,
            )
            logger.warning(diag.message)
            result.diagnostics.append(diag)

        ch, diag = _resolve(book, tok)
        if diag is not None:
            skip(diag)
            continue
        out.append(ch)
        result.resolved += 1

    result.text = "".join(out)
    logger.debug(f"Decoded {result.resolved} of {result.resolved + result.skipped} tokens")
    return result


def decode_file(
    book_path: Union[str, Path],
    tokens: Iterable[str],
    fmt: KeyBookFormat = DEFAULT_FORMAT,
    *,
    autoclean: bool = False,
    **kwargs,
) -> DecodeResult:
    """Load a key-book file and decode; an unreadable book still yields a result."""
    book_path = Path(book_path)
    unreadable: Optional[Diagnostic] = None
    try:
        book = KeyBook.load(book_path, fmt, autoclean=autoclean)
    except OSError as e:
        logger.error(f"Unable to open: {book_path}")
        unreadable = Diagnostic(kind=BOOK_UNREADABLE, message=f"Unable to open key book {book_path}: {e}")
        book = KeyBook.empty(book_path.name, fmt)

    result = decode_message(book, tokens, **kwargs)
    if unreadable is not None:
        result.diagnostics.insert(0, unreadable)
    return result


# ----------------------------
# Encoder and message files
# ----------------------------


def build_char_index(book: KeyBook) -> dict[str, list[tuple[int, int, int]]]:
    """Map each character to every (page, line, char) it occupies on a usable page."""
    idx: dict[str, list[tuple[int, int, int]]] = {}
    for number in sorted(book.pages):
        page = book.pages[number]
        if len(page) <= 1:
            continue
        for li, line in enumerate(page.lines):
            for ci, ch in enumerate(line):
                idx.setdefault(ch, []).append((number, li, ci))
    return idx


def encode_message(book: KeyBook, plaintext: str, *, rng: Optional[random.Random] = None) -> list[str]:
    """
    Build one token per plaintext character, picking a random location for each.

    Locations span pages in no particular order, so the tokens read back
    with decode_message(..., sort_by_page=False).

    Raises ValueError if a character does not occur on any usable page.
    """
    chooser = rng if rng is not None else random
    cidx = build_char_index(book)

    tokens: list[str] = []
    for ch in plaintext:
        if ch not in cidx:
            raise ValueError(f"Character {ch!r} not found in key book '{book.name}'.")
        page, li, ci = chooser.choice(cidx[ch])
        tokens.append(format_token(page, li, ci))

    logger.debug(f"Encoded {len(plaintext)} characters")
    return tokens


def read_message(path: Union[str, Path], max_tokens: int = MAX_MESSAGE_SIZE) -> list[str]:
    """Read one token per line, ignoring blank lines. Raises OSError if unreadable."""
    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive.")
    path = Path(path)
    text = path.read_text(encoding="utf-8", errors="replace")
    tokens = [line.strip() for line in _split_lines(text) if line.strip()]
    if len(tokens) > max_tokens:
        logger.warning(f"Message {path.name} has {len(tokens)} tokens; only the first {max_tokens} are used.")
        tokens = tokens[:max_tokens]
    return tokens
