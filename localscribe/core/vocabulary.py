"""
Token vocabularies for CTC and transducer models.

Two on-disk formats are understood:
    vocab.txt       - one "token id" pair per line (NeMo export)
    tokenizer.json  - HuggingFace tokenizer with a nested model.vocab
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from . import config
from .errors import ModelLoadError

logger = logging.getLogger(__name__)

VOCAB_TXT = "vocab.txt"
TOKENIZER_JSON = "tokenizer.json"


@dataclass(frozen=True)
class Vocabulary:
    """
    Dense id -> token mapping. The blank token is the last id, as in NeMo.
    """

    tokens: tuple[str, ...]

    def __post_init__(self):
        if not self.tokens:
            raise ModelLoadError("Vocabulary is empty")

    @property
    def blank_id(self) -> int:
        return len(self.tokens) - 1

    @property
    def size(self) -> int:
        return len(self.tokens)

    def __len__(self) -> int:
        return len(self.tokens)

    def detokenize(self, token_ids: list[int]) -> str:
        """Join tokens, turn word-boundary markers into spaces and trim."""
        pieces = [self.tokens[i] for i in token_ids if 0 <= i < len(self.tokens)]
        return "".join(pieces).replace(config.WORD_BOUNDARY, " ").strip()


def _from_pairs(pairs: list[tuple[str, int]]) -> tuple[str, ...]:
    pairs.sort(key=lambda p: p[1])
    tokens = [""] * (pairs[-1][1] + 1)
    for token, idx in pairs:
        tokens[idx] = token
    return tuple(tokens)


def parse_vocab_txt(text: str) -> Vocabulary:
    """Parse "token id" lines; the id follows the last space."""
    pairs: list[tuple[str, int]] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        token, sep, idx = line.rpartition(" ")
        if not sep:
            continue
        try:
            pairs.append((token, int(idx)))
        except ValueError:
            continue

    if not pairs:
        raise ModelLoadError("vocab.txt is empty or has invalid format")
    return Vocabulary(_from_pairs(pairs))


def _tokens_from_map(vocab_map: dict) -> list[tuple[str, int]]:
    return [
        (token, idx)
        for token, idx in vocab_map.items()
        if isinstance(idx, int) and not isinstance(idx, bool) and idx >= 0
    ]


def parse_tokenizer_json(data: dict) -> Vocabulary:
    """Read model.vocab (list of tokens, list of [token, score], or map) or a top-level vocab map."""
    tokens: list[str] = []

    vocab = data.get("model", {}).get("vocab") if isinstance(data.get("model"), dict) else None
    if isinstance(vocab, list):
        for entry in vocab:
            if isinstance(entry, str):
                tokens.append(entry)
            elif isinstance(entry, list) and entry and isinstance(entry[0], str):
                tokens.append(entry[0])
    elif isinstance(vocab, dict):
        pairs = _tokens_from_map(vocab)
        if pairs:
            tokens = list(_from_pairs(pairs))

    if not tokens and isinstance(data.get("vocab"), dict):
        pairs = _tokens_from_map(data["vocab"])
        if pairs:
            tokens = list(_from_pairs(pairs))

    if not tokens:
        raise ModelLoadError("Could not find vocabulary in tokenizer.json")
    return Vocabulary(tuple(tokens))


def load_vocabulary(model_dir: Path) -> Vocabulary:
    """
    Load the vocabulary from a model directory, preferring vocab.txt.

    Raises:
        ModelLoadError: If neither file exists or the file cannot be parsed
    """
    model_dir = Path(model_dir)
    vocab_txt = model_dir / VOCAB_TXT
    tokenizer_json = model_dir / TOKENIZER_JSON

    try:
        if vocab_txt.exists():
            vocabulary = parse_vocab_txt(vocab_txt.read_text(encoding="utf-8"))
            source = vocab_txt
        elif tokenizer_json.exists():
            data = json.loads(tokenizer_json.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ModelLoadError("tokenizer.json must contain an object")
            vocabulary = parse_tokenizer_json(data)
            source = tokenizer_json
        else:
            raise ModelLoadError(f"No {VOCAB_TXT} or {TOKENIZER_JSON} found in {model_dir}")
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ModelLoadError(f"Failed to read vocabulary in {model_dir}: {exc}") from exc

    logger.info(
        "Loaded %s: %d tokens, blank_id=%d", source.name, vocabulary.size, vocabulary.blank_id
    )
    return vocabulary
