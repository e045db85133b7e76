"""Test doubles shared across the suite."""

TIMESTAMP_BEGIN = 50257
TIME_PRECISION = 0.02

# Token 99 stands in for the first byte of a multi-byte character: decoding a
# buffer that ends with it fails until the next token completes it.
VOCAB = {
    0: "the",
    1: " quick",
    2: " brown",
    3: " fox",
    4: " jumps",
    5: "brown",
    6: " over",
    7: "hello",
    8: " world",
    9: "!",
    99: "é",
}
INCOMPLETE = 99


class FakeTokenizer:
    def __init__(self):
        self.calls = 0

    def decode(self, tokens):
        self.calls += 1
        if tokens and tokens[-1] == INCOMPLETE:
            raise UnicodeDecodeError("utf-8", b"\xc3", 0, 1, "unexpected end of data")
        return "".join(VOCAB[t] for t in tokens)


def ts(seconds: float) -> int:
    """Timestamp token id for ``seconds``."""
    return TIMESTAMP_BEGIN + round(seconds / TIME_PRECISION)

