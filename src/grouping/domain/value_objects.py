"""
Grouping Value Objects
=======================

Fixed taxonomies and pure functions for topic keys and their similarity.

Everything here is deterministic and free of I/O so the matcher and the
fallback paths can be reasoned about (and tested) in isolation.
"""

import re
from typing import Dict, FrozenSet


# ========== Lookup Tables ==========

GROUP_KEY_SEPARATOR = "-"
UNCATEGORIZED_GROUP_KEY = "uncategorized"
UNTITLED_SUMMARY = "Untitled issue"

# Tokens of this length or shorter carry no topic signal ("a", "to", "db")
MIN_SIGNIFICANT_TOKEN_LENGTH = 3
# Fallback keys are built from words longer than this
MIN_FALLBACK_WORD_LENGTH = 4
MAX_GROUP_KEY_TOKENS = 2

MIN_SUMMARY_LENGTH = 5
DERIVED_TITLE_LENGTH = 60
FALLBACK_SUMMARY_LENGTH = 100

# Classifier fallback: anything shorter than this is chatter
MIN_RELEVANT_TEXT_LENGTH = 10

SHARED_TOKEN_BONUS = 0.33
SEMANTIC_CLUSTER_BONUS = 0.5

CASUAL_ACKNOWLEDGEMENTS: FrozenSet[str] = frozenset({
    # thanks
    "thanks", "thank you", "thanks a lot", "thx", "ty", "tysm",
    # agreement
    "ok", "okay", "sounds good", "perfect", "great", "awesome", "cool", "nice",
    # greetings
    "hi", "hello", "hey", "morning", "good morning", "afternoon", "evening",
    # goodbyes
    "bye", "goodbye", "see you", "ttyl", "cya", "later",
    # reactions
    "lol", "haha", "hehe",
    # courtesy
    "np", "no problem", "you're welcome", "yw", "anytime",
    # acknowledgements
    "got it", "will do", "on it", "roger", "copy", "ack", "acknowledged",
})

PLACEHOLDER_SUMMARIES: FrozenSet[str] = frozenset({
    "brief", "brief summary", "summary", "title", "short title",
    "n/a", "na", "none", "null", "unknown", "issue", "todo",
})

SEMANTIC_CLUSTERS: Dict[str, FrozenSet[str]] = {
    "credentials": frozenset({
        "password", "passwords", "credential", "credentials", "secret",
        "secrets", "token", "tokens", "apikey", "key", "keys",
    }),
    "database": frozenset({
        "database", "databases", "postgres", "postgresql", "sql", "query",
        "queries", "table", "tables", "schema", "migration", "migrations",
        "supabase", "mysql", "mongo",
    }),
    "authentication": frozenset({
        "auth", "authentication", "login", "logins", "logout", "signin",
        "signup", "oauth", "sso", "session", "sessions", "permission",
        "permissions", "access",
    }),
    "deployment": frozenset({
        "deploy", "deploys", "deployment", "deployments", "release",
        "build", "builds", "pipeline", "production", "prod", "staging",
        "docker", "vercel", "hosting",
    }),
    "errors": frozenset({
        "error", "errors", "crash", "crashes", "crashing", "exception",
        "failure", "failing", "bug", "broken", "timeout", "500",
    }),
    "setup": frozenset({
        "setup", "install", "installation", "config", "configuration",
        "configure", "onboarding", "environment", "env",
    }),
    "ai": frozenset({
        "model", "models", "llm", "gpt", "gemini", "openai", "prompt",
        "prompts", "embedding", "embeddings", "inference", "agent",
    }),
}

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")
_PUNCTUATION = re.compile(r"[^a-z0-9\s]")
_TERMINAL_PUNCTUATION = ".!?,;:…"
_CASUAL_PATTERN = re.compile(
    r"^(?:" + "|".join(
        re.escape(phrase) for phrase in sorted(CASUAL_ACKNOWLEDGEMENTS, key=len, reverse=True)
    ) + r")[!.\s]*$",
    re.IGNORECASE,
)


class GroupKeyNormalizer:
    """
    Pure functions that turn free text or LLM output into group keys and titles.

    Stateless utility class - all key shaping rules in one place.
    """

    @staticmethod
    def normalize(raw_key: str) -> str:
        """
        Normalize a group key returned by the LLM.

        Lower-cases, treats any non-alphanumeric run as the separator, drops
        insignificant tokens and keeps the first two.

        Args:
            raw_key: Key as returned by the text-understanding service

        Returns:
            Normalized key, or the uncategorized sentinel when nothing is left
        """
        tokens = [
            token for token in _NON_ALPHANUMERIC.split((raw_key or "").lower())
            if len(token) >= MIN_SIGNIFICANT_TOKEN_LENGTH
        ]
        key = GROUP_KEY_SEPARATOR.join(tokens[:MAX_GROUP_KEY_TOKENS])
        return key or UNCATEGORIZED_GROUP_KEY

    @staticmethod
    def from_text(text: str) -> str:
        """
        Derive a group key from raw message text without the LLM.

        Takes the first two words longer than three characters.
        """
        words = _PUNCTUATION.sub("", (text or "").lower()).split()
        keywords = [w for w in words if len(w) >= MIN_FALLBACK_WORD_LENGTH]
        key = GROUP_KEY_SEPARATOR.join(keywords[:MAX_GROUP_KEY_TOKENS])
        return key or UNCATEGORIZED_GROUP_KEY

    @staticmethod
    def is_valid_summary(summary: object) -> bool:
        """Check that an LLM summary is a usable ticket title."""
        if not isinstance(summary, str):
            return False
        cleaned = summary.strip()
        if len(cleaned) < MIN_SUMMARY_LENGTH:
            return False
        return cleaned.lower() not in PLACEHOLDER_SUMMARIES

    @staticmethod
    def derive_title(text: str) -> str:
        """
        Build a title from the message itself.

        Strips terminal punctuation and truncates to 60 characters,
        appending an ellipsis when truncated.
        """
        title = (text or "").strip().rstrip(_TERMINAL_PUNCTUATION).strip()
        if len(title) > DERIVED_TITLE_LENGTH:
            title = title[:DERIVED_TITLE_LENGTH].rstrip() + "..."
        return title

    @staticmethod
    def fallback_summary(text: str) -> str:
        """First 100 characters of the raw text, never blank."""
        summary = (text or "").strip()[:FALLBACK_SUMMARY_LENGTH]
        return summary or UNTITLED_SUMMARY


class GroupKeySimilarity:
    """
    Similarity between two group keys.

    The score is the maximum of three signals: token-set Jaccard, a flat
    bonus for any shared token and a flat bonus for tokens from the same
    semantic cluster. All three are symmetric, so the score is too.
    """

    @staticmethod
    def significant_tokens(group_key: str) -> FrozenSet[str]:
        """Tokens of a key that are long enough to carry meaning."""
        return frozenset(
            token for token in (group_key or "").lower().split(GROUP_KEY_SEPARATOR)
            if len(token) >= MIN_SIGNIFICANT_TOKEN_LENGTH
        )

    @staticmethod
    def jaccard(tokens_a: FrozenSet[str], tokens_b: FrozenSet[str]) -> float:
        """Intersection over union; 0 when either set is empty."""
        if not tokens_a or not tokens_b:
            return 0.0
        return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)

    @staticmethod
    def share_cluster(tokens_a: FrozenSet[str], tokens_b: FrozenSet[str]) -> bool:
        """True when both sets contain a member of the same semantic cluster."""
        return any(
            tokens_a & cluster and tokens_b & cluster
            for cluster in SEMANTIC_CLUSTERS.values()
        )

    @classmethod
    def score(cls, key_a: str, key_b: str) -> float:
        """
        Score two group keys in [0, 1].

        Args:
            key_a: First group key
            key_b: Second group key

        Returns:
            Similarity score; 0.0 when either key has no significant tokens
        """
        tokens_a = cls.significant_tokens(key_a)
        tokens_b = cls.significant_tokens(key_b)

        if not tokens_a or not tokens_b:
            return 0.0

        signals = [cls.jaccard(tokens_a, tokens_b)]
        if tokens_a & tokens_b:
            signals.append(SHARED_TOKEN_BONUS)
        if cls.share_cluster(tokens_a, tokens_b):
            signals.append(SEMANTIC_CLUSTER_BONUS)

        return max(signals)


def is_casual_message(text: str) -> bool:
    """
    Check whether text is chatter: too short, or a whole-string casual phrase.

    Trailing exclamation marks and periods are ignored ("thanks!!").
    """
    stripped = (text or "").strip()
    if len(stripped) < MIN_RELEVANT_TEXT_LENGTH:
        return True
    return _CASUAL_PATTERN.match(stripped) is not None
