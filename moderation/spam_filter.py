"""
Heuristic spam scoring for reader comments

Pure functions only: no database, no network. Rules are additive and each
one fires at most once per comment.
"""
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Classification threshold, tunable through Settings.SPAM_THRESHOLD
SPAM_THRESHOLD = 20

MIN_LENGTH = 10
MAX_LENGTH = 5000
MAX_LINKS = 3
MAX_CAPS_RATIO = 0.7
CAPS_MIN_LENGTH = 20

# Disallowed substrings grouped by category; a category scores once
# no matter how many of its terms appear
BLOCKED_TERMS: Dict[str, List[str]] = {
    'pharma': ['viagra', 'cialis'],
    'gambling': ['casino', 'poker'],
    'finance': ['loan', 'mortgage', 'credit'],
    'marketing': ['click here', 'buy now', 'limited time', 'act now'],
}

LINK_PATTERN = re.compile(r'https?://\S+', re.IGNORECASE)
REPEATED_CHAR_PATTERN = re.compile(r'(.)\1{5,}')

REASON_TOO_SHORT = 'too short'
REASON_TOO_LONG = 'too long'
REASON_TOO_MANY_LINKS = 'too many links'
REASON_BLOCKED_TERMS = 'suspicious terms'
REASON_REPEATED_CHARS = 'repeated characters'
REASON_EXCESSIVE_CAPS = 'excessive capitals'

# Reader-facing wording; the codes above stay in logs and SpamRejectedError.reasons
REASON_LABELS = {
    REASON_TOO_SHORT: 'demasiado corto',
    REASON_TOO_LONG: 'demasiado largo',
    REASON_TOO_MANY_LINKS: 'demasiados enlaces',
    REASON_BLOCKED_TERMS: 'términos sospechosos',
    REASON_REPEATED_CHARS: 'caracteres repetidos',
    REASON_EXCESSIVE_CAPS: 'exceso de mayúsculas',
}


@dataclass
class SpamCheckResult:
    """Score, human-readable reasons and the resulting classification"""
    score: int
    reasons: List[str] = field(default_factory=list)
    is_spam: bool = False

    @property
    def reason(self) -> str:
        return ', '.join(self.reasons)

    @property
    def display_reason(self) -> str:
        """Reasons in reader-facing wording, without the detail suffixes"""
        labels = []
        for reason in self.reasons:
            code = reason.split(' (', 1)[0]
            labels.append(REASON_LABELS.get(code, code))
        return ', '.join(labels)


def count_links(content: str) -> int:
    return len(LINK_PATTERN.findall(content))


def find_blocked_categories(content: str, blocked_terms: Optional[Dict[str, List[str]]] = None) -> List[str]:
    """Categories with at least one term present, case-insensitive"""
    terms = BLOCKED_TERMS if blocked_terms is None else blocked_terms
    lowered = content.lower()
    return [
        category for category, words in terms.items()
        if any(word.lower() in lowered for word in words)
    ]


def caps_ratio(content: str) -> float:
    if not content:
        return 0.0
    return sum(1 for char in content if char.isupper()) / len(content)


def score_content(
    content: str,
    blocked_terms: Optional[Dict[str, List[str]]] = None,
    threshold: int = SPAM_THRESHOLD
) -> SpamCheckResult:
    """
    Score comment content against the spam heuristics

    Args:
        content: Comment text (the pipeline passes it already trimmed)
        blocked_terms: Category -> terms mapping overriding BLOCKED_TERMS
        threshold: Score at or above which the content is spam

    Returns:
        SpamCheckResult with the total score and the reasons that fired
    """
    score = 0
    reasons = []
    length = len(content)

    if length < MIN_LENGTH:
        score += 10
        reasons.append(REASON_TOO_SHORT)
    if length > MAX_LENGTH:
        score += 5
        reasons.append(REASON_TOO_LONG)

    links = count_links(content)
    if links > MAX_LINKS:
        score += 15
        reasons.append(f'{REASON_TOO_MANY_LINKS} ({links})')

    categories = find_blocked_categories(content, blocked_terms)
    if categories:
        score += 10 * len(categories)
        reasons.append(f"{REASON_BLOCKED_TERMS} ({', '.join(categories)})")

    if REPEATED_CHAR_PATTERN.search(content):
        score += 10
        reasons.append(REASON_REPEATED_CHARS)

    if length > CAPS_MIN_LENGTH and caps_ratio(content) > MAX_CAPS_RATIO:
        score += 5
        reasons.append(REASON_EXCESSIVE_CAPS)

    return SpamCheckResult(score=score, reasons=reasons, is_spam=score >= threshold)
