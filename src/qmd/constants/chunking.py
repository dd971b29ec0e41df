"""Chunking and token estimation constants."""

# =============================================================================
# Chunk Sizing
# =============================================================================

DEFAULT_MAX_TOKENS = 800
DEFAULT_OVERLAP_PERCENT = 0.15

# =============================================================================
# Token Estimation
# =============================================================================
# No tokenizer is available, so tokens are estimated from word and
# punctuation counts. CJK characters count as one token each.

TOKENS_PER_WORD = 1.3
TOKENS_PER_PUNCTUATION = 0.5

# Hiragana, Katakana, CJK Unified Ideographs, Hangul Syllables
CJK_RANGES = "\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF\uAC00-\uD7AF"

# =============================================================================
# Sentence Splitting
# =============================================================================
# A period after one of these never ends a sentence.

ABBREVIATIONS = frozenset(
    {
        "Mr",
        "Mrs",
        "Ms",
        "Dr",
        "Prof",
        "Sr",
        "Jr",
        "vs",
        "etc",
        "Inc",
        "Ltd",
        "Co",
        "i.e",
        "e.g",
        "cf",
        "viz",
        "al",
        "et",
        "approx",
        "dept",
        "est",
        "min",
        "max",
        "Jan",
        "Feb",
        "Mar",
        "Apr",
        "Jun",
        "Jul",
        "Aug",
        "Sep",
        "Oct",
        "Nov",
        "Dec",
    }
)
