from __future__ import annotations

import codecs
import logging
from typing import Protocol, Sequence

import tiktoken

from common.config import StreamSettings

logger = logging.getLogger(__name__)


class Tokenizer(Protocol):
    def decode(self, tokens: Sequence[int]) -> str: ...


class TiktokenTokenizer:
    """Decode text token ids with a tiktoken byte-pair encoding.

    A buffer that ends in the middle of a multi-byte character raises
    ``UnicodeDecodeError`` until the tokens completing it arrive. Invalid
    bytes anywhere else become U+FFFD, as with ``Encoding.decode``.
    """

    def __init__(self, encoding: tiktoken.Encoding):
        self.encoding = encoding

    @property
    def vocab_size(self) -> int:
        return self.encoding.n_vocab

    def decode(self, tokens: Sequence[int]) -> str:
        raw = self.encoding.decode_bytes(list(tokens))
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        text = decoder.decode(raw, final=False)
        pending, _ = decoder.getstate()
        if pending:
            raise UnicodeDecodeError(
                "utf-8", raw, len(raw) - len(pending), len(raw), "unexpected end of data"
            )
        return text


def load_tokenizer(settings: StreamSettings | None = None) -> TiktokenTokenizer:
    settings = settings or StreamSettings()
    logger.info("Loading tokenizer encoding: %s", settings.tokenizer_encoding)
    encoding = tiktoken.get_encoding(settings.tokenizer_encoding)
    if encoding.n_vocab > settings.timestamp_begin:
        logger.warning(
            "Encoding %s has %d tokens, overlapping timestamp_begin=%d",
            settings.tokenizer_encoding, encoding.n_vocab, settings.timestamp_begin,
        )
    return TiktokenTokenizer(encoding)
