"""
Score-based backend routing.

Two running totals (fast, agentic) accumulate through ordered rules. The
higher total wins; ties go to the fast backend. Confidence is the absolute
score difference, a relative signal strength rather than a probability.

The router is pure: no I/O, no logging, no metrics. Callers enforce the
prompt length ceiling.
"""
import re
from typing import FrozenSet, Pattern, Tuple

from dispatcher.services.routing.schema import Backend, RoutingDecision, RoutingScores

# Fast backend weights
PURE_QUESTION_WEIGHT = 30
QUESTION_STARTER_WEIGHT = 10
EXPLANATION_WEIGHT = 15
GREETING_WEIGHT = 20

# Agentic backend weights
EXECUTION_VERB_WEIGHT = 50
OVERRIDE_WEIGHT = 60
DATA_PROCESSING_WEIGHT = 30
BUSINESS_DOCUMENT_WEIGHT = 25
DATA_ACCESS_WEIGHT = 50
RECENCY_PATTERN_WEIGHT = 40
COMPLEXITY_WEIGHT = 20
LENGTH_WEIGHT_PER_WORD = 1

GREETING_MAX_WORDS = 5
LENGTH_THRESHOLD_WORDS = 10

PURE_QUESTION_PATTERN = re.compile(
    r"^(what|why|when|where|who|which|whose|how much|how many|is it|are there"
    r"|can you explain|tell me about|define)\s",
    re.IGNORECASE,
)

QUESTION_STARTERS: Tuple[str, ...] = (
    "what is", "what are", "what does", "why is", "why do",
    "when did", "where is", "who is", "who was",
)

EXPLANATION_TERMS: Tuple[str, ...] = ("explain", "definition", "meaning of")

GREETINGS: Tuple[str, ...] = (
    "hi", "hello", "hey", "thanks", "thank you", "goodbye", "bye",
    "good morning", "good afternoon", "good evening",
)

EXECUTION_VERBS: Tuple[str, ...] = (
    "build", "create", "generate", "make", "develop", "design",
    "write", "draft", "compose", "author",
    "calculate", "compute", "sum", "total", "average", "count",
    "find", "search", "look up", "locate", "discover",
    "analyze", "analyse", "evaluate", "assess", "review", "examine",
    "implement", "execute", "run", "perform", "do",
    "optimize", "improve", "enhance", "refactor",
    "compare", "contrast", "research", "investigate",
    "summarize", "summarise", "summary", "list", "show", "get",
)

DATA_PROCESSING_KEYWORDS: Tuple[str, ...] = (
    "csv", "spreadsheet", "data", "parse", "process", "extract", "transform",
)

BUSINESS_KEYWORDS: Tuple[str, ...] = (
    "proposal", "report", "presentation", "analysis", "strategy",
    "plan", "roadmap", "market research",
)

DATA_ACCESS_PHRASES: Tuple[str, ...] = (
    "my emails", "my calendar", "my data", "my files", "my documents", "my messages",
)

COMPLEXITY_INDICATORS: Tuple[str, ...] = (
    "comprehensive", "detailed", "in-depth", "thorough", "step-by-step",
)

RECENCY_PATTERN = re.compile(r"\bmy\s+(last|recent|latest|first|next)\s+\d+\s+\w+")

_PUNCTUATION = re.compile(r"[^\w\s'-]")


def _lexicon_pattern(terms: Tuple[str, ...]) -> Pattern[str]:
    """Whole-word, case-insensitive alternation; longer terms are tried first."""
    ordered = sorted(terms, key=len, reverse=True)
    alternation = "|".join(re.escape(term).replace(r"\ ", r"\s+") for term in ordered)
    return re.compile(rf"(?<![\w-])(?:{alternation})(?![\w-])", re.IGNORECASE)


EXECUTION_VERB_PATTERN = _lexicon_pattern(EXECUTION_VERBS)
DATA_PROCESSING_PATTERN = _lexicon_pattern(DATA_PROCESSING_KEYWORDS)
BUSINESS_PATTERN = _lexicon_pattern(BUSINESS_KEYWORDS)
DATA_ACCESS_PATTERN = _lexicon_pattern(DATA_ACCESS_PHRASES)
COMPLEXITY_PATTERN = _lexicon_pattern(COMPLEXITY_INDICATORS)
EXPLANATION_PATTERN = _lexicon_pattern(EXPLANATION_TERMS)

# "How can you build ..." is an execution request phrased as a how-to question.
OVERRIDE_PATTERN = re.compile(
    r"\bhow\s+(?:can|could|do)\s+(?:you|i|we)\s+(?:"
    + "|".join(re.escape(v).replace(r"\ ", r"\s+") for v in sorted(EXECUTION_VERBS, key=len, reverse=True))
    + r")(?![\w-])",
    re.IGNORECASE,
)


def _is_greeting(normalized: str, greetings: FrozenSet[str] = frozenset(GREETINGS)) -> bool:
    return any(
        normalized == greeting or normalized.startswith(greeting + " ")
        for greeting in greetings
    )


def score_prompt(prompt: str) -> RoutingScores:
    """Compute the (fast, agentic) score pair for a prompt."""
    text = prompt.strip()
    lower = text.lower()
    words = text.split()

    fast = 0
    agentic = 0

    # ===== FAST BACKEND SIGNALS =====

    if PURE_QUESTION_PATTERN.search(text):
        fast += PURE_QUESTION_WEIGHT

    if lower.startswith(QUESTION_STARTERS):
        fast += QUESTION_STARTER_WEIGHT

    if EXPLANATION_PATTERN.search(lower):
        fast += EXPLANATION_WEIGHT

    if 0 < len(words) <= GREETING_MAX_WORDS:
        normalized = " ".join(_PUNCTUATION.sub(" ", lower).split())
        if _is_greeting(normalized):
            fast += GREETING_WEIGHT

    # ===== AGENTIC BACKEND SIGNALS =====

    if EXECUTION_VERB_PATTERN.search(lower):
        agentic += EXECUTION_VERB_WEIGHT

    if OVERRIDE_PATTERN.search(lower):
        agentic += OVERRIDE_WEIGHT
        fast = 0

    if DATA_PROCESSING_PATTERN.search(lower):
        agentic += DATA_PROCESSING_WEIGHT

    if BUSINESS_PATTERN.search(lower):
        agentic += BUSINESS_DOCUMENT_WEIGHT

    if DATA_ACCESS_PATTERN.search(lower):
        agentic += DATA_ACCESS_WEIGHT

    if RECENCY_PATTERN.search(lower):
        agentic += RECENCY_PATTERN_WEIGHT

    if COMPLEXITY_PATTERN.search(lower):
        agentic += COMPLEXITY_WEIGHT

    if len(words) > LENGTH_THRESHOLD_WORDS:
        agentic += (len(words) - LENGTH_THRESHOLD_WORDS) * LENGTH_WEIGHT_PER_WORD

    return RoutingScores(fast=fast, agentic=agentic)


def choose_backend(prompt: str) -> RoutingDecision:
    """
    Route a prompt to a backend.

    Args:
        prompt: Raw user text (any string, including empty)

    Returns:
        RoutingDecision with the chosen backend, confidence and score pair
    """
    scores = score_prompt(prompt)
    backend = Backend.AGENTIC if scores.agentic > scores.fast else Backend.FAST
    return RoutingDecision(
        backend=backend,
        confidence=abs(scores.agentic - scores.fast),
        scores=scores,
    )
