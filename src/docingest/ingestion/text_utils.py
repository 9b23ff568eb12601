"""
Text helpers shared by the chunker.
"""

import re
from typing import List

_PUNCTUATION = re.compile(r"[.,!?;:()\[\]{}\"'-]")
_SENTENCE_END = re.compile(r"([.!?]+)")
_ZERO_WIDTH = re.compile("[\u200b-\u200d\ufeff]")

_ENTITIES = [
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
]


def estimate_token_count(text: str) -> int:
    """
    Approximate token count: words plus half the punctuation characters,
    rounded up. Deterministic, no tokenizer involved.
    """
    clean = text.strip()
    if not clean:
        return 0
    words = len(clean.split())
    punctuation = len(_PUNCTUATION.findall(clean))
    # ceil(words + punctuation / 2) without float rounding
    return words + (punctuation + 1) // 2


def preprocess_text(text: str) -> str:
    """Decode leftover entities, drop zero-width characters and normalize whitespace."""
    for entity, replacement in _ENTITIES:
        text = text.replace(entity, replacement)
    text = _ZERO_WIDTH.sub("", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()


def split_into_sentences(text: str) -> List[str]:
    """Split on runs of terminal punctuation, keeping the punctuation."""
    parts = _SENTENCE_END.split(text)
    sentences = []
    for i in range(0, len(parts), 2):
        sentence = parts[i].strip()
        punctuation = parts[i + 1] if i + 1 < len(parts) else "."
        if sentence:
            sentences.append(sentence + punctuation)
    return [s for s in sentences if len(s) > 1]
