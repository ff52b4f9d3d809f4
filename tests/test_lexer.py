import pytest

from lexer import Lexer, VibeParseError


def _types(text):
    return [tok.type for tok in Lexer(text).tokenize()]


def _pairs(text):
    return [(tok.type, tok.value) for tok in Lexer(text).tokenize() if tok.type != "EOF"]


def test_if_statement_token_sequence():
    assert _types('if chaos == 9000 { ask "x" }') == [
        "IF", "IDENT", "EQ", "NUMBER", "LBRACE", "ASK", "STRING", "RBRACE", "EOF",
    ]


def test_two_character_operators():
    assert _types("== != <= >= ++ --") == ["EQ", "NEQ", "LTE", "GTE", "PLUSPLUS", "MINUSMINUS", "EOF"]
    assert _types("= < > + -") == ["EQUALS", "LT", "GT", "PLUS", "MINUS", "EOF"]


def test_bare_bang_is_illegal():
    assert _pairs("! x") == [("ILLEGAL", "!"), ("IDENT", "x")]


def test_unknown_character_is_illegal_and_lexing_continues():
    assert _pairs("@ ask") == [("ILLEGAL", "@"), ("ASK", "ask")]


def test_hyphenated_bareword_is_one_identifier():
    assert _pairs("target = web-fullstack") == [
        ("IDENT", "target"), ("EQUALS", "="), ("IDENT", "web-fullstack"),
    ]


def test_increment_and_trailing_hyphens():
    assert _pairs("count++") == [("IDENT", "count"), ("PLUSPLUS", "++")]
    # '-' continues an identifier, so a decrement needs a space.
    assert _pairs("count--") == [("IDENT", "count--")]
    assert _pairs("count --") == [("IDENT", "count"), ("MINUSMINUS", "--")]


def test_keywords_and_booleans():
    assert _pairs("if else repeat ask before after shell True False true") == [
        ("IF", "if"), ("ELSE", "else"), ("REPEAT", "repeat"), ("ASK", "ask"),
        ("BEFORE", "before"), ("AFTER", "after"), ("SHELL", "shell"),
        ("BOOLEAN", "True"), ("BOOLEAN", "False"), ("IDENT", "true"),
    ]


def test_numbers():
    assert _pairs("42 3.14") == [("NUMBER", "42"), ("NUMBER", "3.14")]
    assert _pairs("1.") == [("NUMBER", "1"), ("DOT", ".")]
    assert _pairs("-5") == [("MINUS", "-"), ("NUMBER", "5")]


def test_strings_are_raw():
    assert _pairs(r'"a\nb # not a comment"') == [("STRING", r"a\nb # not a comment")]


def test_unterminated_string_reads_to_end():
    assert _pairs('ask "never closed\nstill going') == [
        ("ASK", "ask"), ("STRING", "never closed\nstill going"),
    ]


def test_unterminated_string_strict():
    with pytest.raises(VibeParseError, match="Unterminated string"):
        Lexer('ask "oops', strict=True).tokenize()


def test_comments_skipped_newlines_kept():
    assert _types("# header\nx = 1 # trailing\n") == [
        "NEWLINE", "IDENT", "EQUALS", "NUMBER", "NEWLINE", "EOF",
    ]


def test_positions():
    tokens = Lexer('x = 1\n  ask "go"').tokenize()
    ask = tokens[4]
    assert ask.type == "ASK"
    assert (ask.line, ask.column) == (2, 3)
    assert (tokens[-1].type, tokens[-1].line) == ("EOF", 2)


def test_eof_is_sticky():
    lexer = Lexer("")
    assert lexer.next_token().type == "EOF"
    assert lexer.next_token().type == "EOF"
