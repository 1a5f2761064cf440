"""
Tests for TicketMatcher.

Tests cover:
- Tier order (exact, fuzzy, full-text)
- Active-status filtering and category independence
- Threshold and tie handling
- Datastore errors reported as "no match"
"""

import pytest

from src.config import TicketStatus
from src.grouping.application import TicketMatcher


def make_matcher(ticket_repo, threshold: float = 0.25, limit: int = 50) -> TicketMatcher:
    return TicketMatcher(ticket_repo, similarity_threshold=threshold, candidate_limit=limit)


class TestExactTier:
    @pytest.mark.asyncio
    async def test_exact_key_wins_over_fuzzy(self, ticket_repo) -> None:
        exact = ticket_repo.add("export-crash")
        # Newer and a perfect fuzzy match, but not an exact key
        ticket_repo.add("crash-export")

        match = await make_matcher(ticket_repo).find_match("export-crash", "bug")

        assert match.id == exact.id

    @pytest.mark.asyncio
    async def test_category_is_not_a_filter(self, ticket_repo) -> None:
        ticket = ticket_repo.add("export-crash", category="feature_request")

        match = await make_matcher(ticket_repo).find_match("export-crash", "bug")

        assert match.id == ticket.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [TicketStatus.RESOLVED, TicketStatus.CLOSED])
    async def test_inactive_tickets_never_match(self, ticket_repo, status: str) -> None:
        ticket_repo.add("export-crash", status=status)

        assert await make_matcher(ticket_repo).find_match("export-crash", "bug") is None

    @pytest.mark.asyncio
    async def test_in_progress_tickets_match(self, ticket_repo) -> None:
        ticket = ticket_repo.add("export-crash", status=TicketStatus.IN_PROGRESS)

        match = await make_matcher(ticket_repo).find_match("export-crash", "bug")

        assert match.id == ticket.id


class TestFuzzyTier:
    @pytest.mark.asyncio
    async def test_best_score_wins(self, ticket_repo) -> None:
        ticket_repo.add("export-dialog")          # shared token only: 1/3
        best = ticket_repo.add("export-crash")    # jaccard 1.0
        ticket_repo.add("billing-invoice")        # 0

        match = await make_matcher(ticket_repo).find_match("crash-export", "bug")

        assert match.id == best.id

    @pytest.mark.asyncio
    async def test_ties_keep_first_candidate(self, ticket_repo) -> None:
        ticket_repo.add("login-page")
        newest = ticket_repo.add("oauth-flow")

        # Both score 0.5 via the authentication cluster; newest comes first
        match = await make_matcher(ticket_repo).find_match("signin-error", "bug")

        assert match.id == newest.id

    @pytest.mark.asyncio
    async def test_below_threshold_is_no_match(self, ticket_repo) -> None:
        ticket_repo.add("export-dialog")

        match = await make_matcher(ticket_repo, threshold=0.4).find_match("export-button", "bug")

        assert match is None

    @pytest.mark.asyncio
    async def test_candidate_limit_bounds_the_scan(self, ticket_repo) -> None:
        ticket_repo.add("export-crash")
        for i in range(3):
            ticket_repo.add(f"unrelated{i}-topic{i}")

        match = await make_matcher(ticket_repo, limit=3).find_match("crash-export", "bug")

        assert match is None


class TestSummaryTier:
    @pytest.mark.asyncio
    async def test_full_text_match_on_summary(self, ticket_repo) -> None:
        ticket = ticket_repo.add(
            "panel-widget",
            similarity_summary="Report generator times out on large exports",
        )

        match = await make_matcher(ticket_repo).find_match(
            "reporting", "bug", summary="Report generator times out on large exports again"
        )

        assert match.id == ticket.id

    @pytest.mark.asyncio
    async def test_short_summary_skips_full_text(self, ticket_repo) -> None:
        ticket_repo.add("panel-widget", similarity_summary="Report fails")

        match = await make_matcher(ticket_repo).find_match("reporting", "bug", summary="Report fails")

        assert match is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_datastore_error_is_no_match(self, ticket_repo) -> None:
        ticket_repo.add("export-crash")
        ticket_repo.fail_on.add("find_active_by_group_key")

        assert await make_matcher(ticket_repo).find_match("export-crash", "bug") is None

    @pytest.mark.asyncio
    async def test_empty_store_is_no_match(self, ticket_repo) -> None:
        match = await make_matcher(ticket_repo).find_match(
            "export-crash", "bug", summary="Export button crashes on click"
        )

        assert match is None
