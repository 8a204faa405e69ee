"""
Tests for the book_cipher command line.
"""

import pytest

import book_cipher
import page_cipher

BOOK_TEXT = "front page\nfront page\nfront page\npage 1\nHELLO\nWORLD\npage 2\nlonely\npage 3\nabc\ndef\n"


@pytest.fixture
def files(tmp_path):
    book = tmp_path / "book.txt"
    book.write_text(BOOK_TEXT, encoding="utf-8")
    msg = tmp_path / "msg.txt"
    msg.write_text("1.1.1\n1.1.2\n", encoding="utf-8")
    return book, msg


class TestDecodeCommand:
    """Test decoding from the command line."""

    def test_prints_decoded_message(self, files, capsys):
        book, msg = files
        rc = book_cipher.main(["--book", str(book), "decode", "--message", str(msg)])
        assert rc == 0
        assert capsys.readouterr().out == "\nHE\n\n"

    def test_prompts_for_missing_paths(self, files, capsys, monkeypatch):
        book, msg = files
        answers = iter([str(msg), str(book)])
        prompts = []

        def fake_input(prompt):
            prompts.append(prompt)
            return next(answers)

        monkeypatch.setattr("builtins.input", fake_input)
        rc = book_cipher.main([])
        assert rc == 0
        assert prompts == [book_cipher.MSG_PROMPT, book_cipher.KEY_PROMPT]
        assert "HE" in capsys.readouterr().out

    def test_bad_tokens_do_not_abort(self, files, capsys, caplog):
        book, msg = files
        msg.write_text("1.1.1\nnope\n2.1.1\n1.2.1\n", encoding="utf-8")
        rc = book_cipher.main(["--book", str(book), "decode", "--message", str(msg)])
        assert rc == 0
        assert "HW" in capsys.readouterr().out
        assert "has no characters" in caplog.text

    def test_strict_exit_code(self, files, capsys):
        book, msg = files
        msg.write_text("1.1.1\n2.1.1\n", encoding="utf-8")
        rc = book_cipher.main(["--book", str(book), "decode", "--message", str(msg), "--strict"])
        assert rc == 1

    def test_missing_message_file(self, files, tmp_path, caplog):
        book, _ = files
        args = ["--book", str(book), "decode", "--message", str(tmp_path / "none.txt")]
        assert book_cipher.main(args) == 0
        assert "Unable to open message file" in caplog.text
        assert book_cipher.main(args + ["--strict"]) == 1

    def test_missing_book_file(self, files, tmp_path, capsys, caplog):
        _, msg = files
        rc = book_cipher.main(["--book", str(tmp_path / "none.txt"), "decode", "--message", str(msg)])
        captured = capsys.readouterr()
        assert rc == 0
        assert captured.out == "\n\n\n"
        assert "Unable to open" in caplog.text

    def test_placeholder(self, files, capsys):
        book, msg = files
        msg.write_text("1.1.1\n2.1.1\n", encoding="utf-8")
        book_cipher.main(["--book", str(book), "decode", "--message", str(msg), "--placeholder", "_"])
        assert "H_" in capsys.readouterr().out

    def test_front_matter_option(self, files, capsys):
        book, msg = files
        book.write_text("page 1\nHELLO\nWORLD\n", encoding="utf-8")
        book_cipher.main(["--book", str(book), "--front-matter", "0", "decode", "--message", str(msg)])
        assert "HE" in capsys.readouterr().out

    def test_invalid_format_option(self, files):
        book, msg = files
        with pytest.raises(SystemExit) as exc:
            book_cipher.main(["--book", str(book), "--max-lines", "0", "decode", "--message", str(msg)])
        assert exc.value.code == 2


class TestEncodeCommand:
    """Test encoding from the command line."""

    def test_encode_then_decode(self, files, capsys):
        book, _ = files
        rc = book_cipher.main(["--book", str(book), "encode", "--text", "HOWL", "--seed", "k"])
        assert rc == 0
        tokens = capsys.readouterr().out.split()
        assert len(tokens) == 4
        kb = page_cipher.KeyBook.load(book)
        assert page_cipher.decode_message(kb, tokens).text == "HOWL"

    def test_multi_page_round_trip_unsorted(self, files, capsys):
        book, msg = files
        book_cipher.main(["--book", str(book), "encode", "--text", "Hadbe", "--seed", "k"])
        msg.write_text(capsys.readouterr().out, encoding="utf-8")
        rc = book_cipher.main(["--book", str(book), "decode", "--message", str(msg), "--no-sort"])
        assert rc == 0
        assert capsys.readouterr().out == "\nHadbe\n\n"

    def test_unknown_character(self, files, caplog):
        book, _ = files
        rc = book_cipher.main(["--book", str(book), "encode", "--text", "xyz"])
        assert rc == 1
        assert "not found" in caplog.text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
