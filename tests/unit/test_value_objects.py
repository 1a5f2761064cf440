"""
Tests for group key shaping and similarity.

Tests cover:
- Key normalization of LLM output and keyword keys from raw text
- Summary validation and derived titles
- Similarity signals (Jaccard, shared token, semantic cluster)
- Casual message detection
"""

import pytest

from src.grouping.domain import (
    GroupKeyNormalizer,
    GroupKeySimilarity,
    is_casual_message,
)
from src.grouping.domain.value_objects import (
    SEMANTIC_CLUSTER_BONUS,
    SHARED_TOKEN_BONUS,
    UNCATEGORIZED_GROUP_KEY,
    UNTITLED_SUMMARY,
)


class TestNormalize:
    def test_lowercases_and_joins_with_separator(self) -> None:
        assert GroupKeyNormalizer.normalize("Export Crash") == "export-crash"

    def test_any_non_alphanumeric_run_is_a_separator(self) -> None:
        assert GroupKeyNormalizer.normalize("db__migration//failed") == "migration-failed"

    def test_drops_short_tokens_and_keeps_first_two(self) -> None:
        assert GroupKeyNormalizer.normalize("an-api-key-rotation-issue") == "api-key"

    def test_empty_result_becomes_sentinel(self) -> None:
        assert GroupKeyNormalizer.normalize("a-b") == UNCATEGORIZED_GROUP_KEY
        assert GroupKeyNormalizer.normalize("") == UNCATEGORIZED_GROUP_KEY
        assert GroupKeyNormalizer.normalize(None) == UNCATEGORIZED_GROUP_KEY


class TestFromText:
    def test_takes_first_two_long_words(self) -> None:
        assert GroupKeyNormalizer.from_text("The export button crashes on click") == "export-button"

    def test_strips_punctuation_before_splitting(self) -> None:
        assert GroupKeyNormalizer.from_text("Login!!! broken, again?") == "login-broken"

    def test_words_of_three_letters_are_ignored(self) -> None:
        assert GroupKeyNormalizer.from_text("why is the app so bad") == UNCATEGORIZED_GROUP_KEY

    def test_blank_text_gives_sentinel(self) -> None:
        assert GroupKeyNormalizer.from_text("   ") == UNCATEGORIZED_GROUP_KEY


class TestSummaries:
    @pytest.mark.parametrize("summary", [None, "", "   ", "abc", "Summary", "N/A", " brief ", 42])
    def test_rejects_missing_short_and_placeholder_summaries(self, summary) -> None:
        assert GroupKeyNormalizer.is_valid_summary(summary) is False

    def test_accepts_real_title(self) -> None:
        assert GroupKeyNormalizer.is_valid_summary("Export button crashes") is True

    def test_derive_title_strips_terminal_punctuation(self) -> None:
        assert GroupKeyNormalizer.derive_title("Export is broken!!") == "Export is broken"

    def test_derive_title_truncates_long_text(self) -> None:
        title = GroupKeyNormalizer.derive_title("x" * 80)
        assert title == "x" * 60 + "..."

    def test_fallback_summary_is_never_blank(self) -> None:
        assert GroupKeyNormalizer.fallback_summary("") == UNTITLED_SUMMARY
        assert GroupKeyNormalizer.fallback_summary("y" * 150) == "y" * 100


class TestSimilarity:
    def test_identical_keys_score_one(self) -> None:
        assert GroupKeySimilarity.score("export-crash", "export-crash") == 1.0

    def test_reordered_tokens_score_one(self) -> None:
        assert GroupKeySimilarity.score("crash-export", "export-crash") == 1.0

    def test_shared_token_bonus_applies_when_jaccard_is_lower(self) -> None:
        # jaccard 1/3, shared token bonus 0.33; "crash" is also in the errors cluster
        assert GroupKeySimilarity.score("export-crash", "import-crash") == SEMANTIC_CLUSTER_BONUS

    def test_shared_token_without_cluster(self) -> None:
        score = GroupKeySimilarity.score("export-button", "export-dialog")
        assert score == max(1 / 3, SHARED_TOKEN_BONUS)

    def test_semantic_cluster_without_shared_token(self) -> None:
        assert GroupKeySimilarity.score("login-page", "oauth-flow") == SEMANTIC_CLUSTER_BONUS

    def test_unrelated_keys_score_zero(self) -> None:
        assert GroupKeySimilarity.score("export-button", "billing-invoice") == 0.0

    @pytest.mark.parametrize("other", ["", "a-b", "uncategorized"])
    def test_empty_token_set_scores_zero(self, other: str) -> None:
        assert GroupKeySimilarity.score("ab", other) == 0.0
        assert GroupKeySimilarity.score(other, "ab") == 0.0

    @pytest.mark.parametrize(
        "key_a,key_b",
        [
            ("export-crash", "crash-report"),
            ("login-page", "oauth-flow"),
            ("database-timeout", "query-slow"),
            ("export-button", "billing-invoice"),
        ],
    )
    def test_score_is_symmetric(self, key_a: str, key_b: str) -> None:
        assert GroupKeySimilarity.score(key_a, key_b) == GroupKeySimilarity.score(key_b, key_a)


class TestCasualMessages:
    @pytest.mark.parametrize("text", ["thanks!", "ok", "Thank you!!", "GOOD MORNING.", "sounds good"])
    def test_casual_phrases(self, text: str) -> None:
        assert is_casual_message(text) is True

    def test_short_text_is_casual(self) -> None:
        assert is_casual_message("   help   ") is True

    def test_phrase_must_match_whole_string(self) -> None:
        assert is_casual_message("thanks, but the export still crashes") is False
