#!/usr/bin/env python3
import argparse
import logging
import random
import sys

import page_cipher

logger = logging.getLogger("book_cipher")

MSG_PROMPT = "Enter the file name of the coded message: "
KEY_PROMPT = "Enter the file name of the cipher text key: "


def get_file_name(prompt: str) -> str:
    return input(prompt).strip()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Page-line-character book cipher: decode page.line.char tokens against a key book."
    )
    ap.add_argument("--book", help="Path to the key book (.txt). If omitted, you'll be prompted.")
    ap.add_argument("--marker", default=page_cipher.PAGE_MARKER, help="Text that marks a page line")
    ap.add_argument(
        "--front-matter",
        type=int,
        default=page_cipher.FRONT_MATTER_PAGES,
        help="Number of page markers before page 1",
    )
    ap.add_argument("--max-lines", type=int, default=page_cipher.MAX_PAGE_LINES, help="Max lines kept per page")
    ap.add_argument("--ignore-case", action="store_true", help="Match the page marker case-insensitively")
    ap.add_argument("--autoclean", action="store_true", help="Strip Project Gutenberg headers before paging")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="cmd")

    dec = sub.add_parser("decode", help="Decode a message file (default)")
    dec.add_argument("--message", help="Path to the coded message. If omitted, you'll be prompted.")
    dec.add_argument("--max-tokens", type=int, default=page_cipher.MAX_MESSAGE_SIZE, help="Max tokens read")
    dec.add_argument("--no-sort", action="store_true", help="Decode in message order instead of page order")
    dec.add_argument("--placeholder", help="Character emitted for tokens that cannot be resolved")
    dec.add_argument("--strict", action="store_true", help="Exit with status 1 if any token fails")

    enc = sub.add_parser(
        "encode",
        help="Encode plaintext into tokens, one per line (decode them with decode --no-sort)",
    )
    enc.add_argument("--text", help="Plaintext to encode (if omitted, you'll be prompted)")
    enc.add_argument("--seed", default="", help="Optional seed for repeatable token choices")

    return ap


def run_decode(args: argparse.Namespace, fmt: page_cipher.KeyBookFormat) -> int:
    message_fn = getattr(args, "message", None) or get_file_name(MSG_PROMPT)
    book_fn = args.book or get_file_name(KEY_PROMPT)
    print()

    failures: list[page_cipher.Diagnostic] = []
    try:
        tokens = page_cipher.read_message(message_fn, getattr(args, "max_tokens", page_cipher.MAX_MESSAGE_SIZE))
    except OSError as e:
        logger.error(f"Unable to open message file: {message_fn}")
        failures.append(
            page_cipher.Diagnostic(kind=page_cipher.MESSAGE_UNREADABLE, message=f"{message_fn}: {e}")
        )
        tokens = []

    result = page_cipher.decode_file(
        book_fn,
        tokens,
        fmt,
        autoclean=args.autoclean,
        sort_by_page=not getattr(args, "no_sort", False),
        placeholder=getattr(args, "placeholder", None),
    )
    failures.extend(result.diagnostics)

    print(result.text)
    print()

    if failures and getattr(args, "strict", False):
        return 1
    return 0


def run_encode(args: argparse.Namespace, fmt: page_cipher.KeyBookFormat) -> int:
    book_fn = args.book or get_file_name(KEY_PROMPT)
    try:
        book = page_cipher.KeyBook.load(book_fn, fmt, autoclean=args.autoclean)
    except OSError:
        logger.error(f"Unable to open: {book_fn}")
        return 1

    text = args.text if args.text is not None else input("Message to encode: ")
    rng = random.Random(args.seed) if args.seed else None
    try:
        tokens = page_cipher.encode_message(book, text, rng=rng)
    except ValueError as e:
        logger.error(str(e))
        return 1

    print("\n".join(tokens))
    return 0


def main(argv=None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        fmt = page_cipher.KeyBookFormat(
            marker=args.marker,
            front_matter_pages=args.front_matter,
            max_lines_per_page=args.max_lines,
            case_sensitive=not args.ignore_case,
        )
    except ValueError as e:
        ap.error(str(e))

    if getattr(args, "max_tokens", 1) <= 0:
        ap.error("--max-tokens must be positive.")

    if args.cmd == "encode":
        return run_encode(args, fmt)
    return run_decode(args, fmt)


if __name__ == "__main__":
    raise SystemExit(main())
