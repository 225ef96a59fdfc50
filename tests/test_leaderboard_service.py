"""
End-to-end board tests against a temporary SQLite database.
"""

from types import SimpleNamespace

import pytest
from sqlalchemy import select

from boards.constants import BoardKind
from boards.database.database import Database
from boards.database.models import Changelog, CoopBundled
from boards.operations.score_operations import ScoreOperations
from boards.services.cache_coordinator import CacheCoordinator
from boards.services.cache_persistence import FileCachePersistence
from boards.services.leaderboard import LeaderboardService
from boards.services.preview_aggregator import PreviewAggregator
from boards.services.result_source import ResultSourceService
from boards.utils.board_exceptions import (
    InvalidBoardKindError, MapNotFoundError, ScoreNotFoundError, ScoreValidationError
)

from conftest import run

SOLO_MAP = "47458"
SOLO_MAP_2 = "47455"
COOP_MAP = "52642"


async def build_board(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'boards.db'}")
    await db.initialize()

    solo_chapter = await db.create_chapter("The Courtesy Call", is_multiplayer=False, game_id=1)
    coop_chapter = await db.create_chapter("Team Building", is_multiplayer=True, game_id=1)
    await db.create_map(SOLO_MAP, "Portal Gun", solo_chapter.id, default_cat_id=1)
    await db.create_map(SOLO_MAP_2, "Smooth Jazz", solo_chapter.id, default_cat_id=1)
    await db.create_map(COOP_MAP, "Doors", coop_chapter.id, default_cat_id=1)

    result_source = ResultSourceService(db.session_factory)
    coordinator = CacheCoordinator(FileCachePersistence(str(tmp_path / "cache")))
    leaderboard = LeaderboardService(
        result_source,
        coordinator,
        aggregator=PreviewAggregator(result_source, preview_size=7, fetch_limit=40),
        page_size=500,
        game_id=1
    )
    ops = ScoreOperations(db, leaderboard)
    return SimpleNamespace(db=db, coordinator=coordinator, leaderboard=leaderboard, ops=ops)


def players(ranked):
    return [(r.entry.player_id, r.entry.score, r.rank) for r in ranked]


def test_ranked_page_is_deduplicated_and_filtered(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            await board.db.get_or_create_user("P1", steam_name="steam_p1", board_name="Board P1")
            await board.ops.submit_score("P1", SOLO_MAP, 100)
            await board.ops.submit_score("P2", SOLO_MAP, 150)
            await board.ops.submit_score("P1", SOLO_MAP, 200)
            banned_id = await board.ops.submit_score("P3", SOLO_MAP, 90)
            await board.ops.set_score_banned(banned_id)
            await board.ops.submit_score("P4", SOLO_MAP, 95, verified=False)
            await board.ops.submit_score("P5", SOLO_MAP, 80, category_id=2)

            page = await board.leaderboard.get_ranked_page(SOLO_MAP)
            assert players(page) == [("P1", 100, 1), ("P2", 150, 2)]
            assert page[0].points == 200.0
            assert page[0].entry.user_name == "Board P1"

            other_category = await board.leaderboard.get_ranked_page(SOLO_MAP, category_id=2)
            assert players(other_category) == [("P5", 80, 1)]

            assert await board.leaderboard.get_ranked_page(SOLO_MAP_2) == []
        finally:
            await board.db.close()

    run(scenario())


def test_banned_player_disappears_from_both_boards(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            await board.ops.submit_score("P1", SOLO_MAP, 100)
            await board.ops.submit_score("P2", SOLO_MAP, 150)
            await board.ops.submit_coop_score("P1", "P3", COOP_MAP, 300)
            await board.leaderboard.get_preview("sp")
            await board.leaderboard.get_preview("coop")

            assert await board.ops.set_player_banned("P1")
            assert not await board.coordinator.is_fresh("sp_previews")
            assert not await board.coordinator.is_fresh("coop_previews")

            assert players(await board.leaderboard.get_ranked_page(SOLO_MAP)) == [("P2", 150, 1)]
            assert await board.leaderboard.get_coop_ranked_page(COOP_MAP) == []
            assert not await board.ops.set_player_banned("nobody")
        finally:
            await board.db.close()

    run(scenario())


def test_preview_recomputed_only_after_a_write(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            await board.ops.submit_score("P1", SOLO_MAP, 100)

            first = await board.leaderboard.get_preview(BoardKind.SP)
            again = await board.leaderboard.get_preview("sp")
            assert board.coordinator.recompute_count["sp_previews"] == 1
            assert again == first
            assert [p.map_id for p in first] == [SOLO_MAP, SOLO_MAP_2]
            assert players(first[0].entries) == [("P1", 100, 1)]

            await board.ops.submit_score("P2", SOLO_MAP, 90)
            updated = await board.leaderboard.get_preview("sp")
            assert board.coordinator.recompute_count["sp_previews"] == 2
            assert players(updated[0].entries) == [("P2", 90, 1), ("P1", 100, 2)]
        finally:
            await board.db.close()

    run(scenario())


def test_preview_holds_seven_entries(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            for i in range(9):
                await board.ops.submit_score(f"P{i}", SOLO_MAP, 100 + i)
                await board.ops.submit_score(f"P{i}", SOLO_MAP, 500 + i)

            preview = (await board.leaderboard.get_preview("sp"))[0]
            assert [r.rank for r in preview.entries] == list(range(1, 8))
            assert len(await board.leaderboard.get_ranked_page(SOLO_MAP)) == 9
        finally:
            await board.db.close()

    run(scenario())


def test_coop_board(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            await board.ops.submit_coop_score("A", "B", COOP_MAP, 100, a_is_host=False)
            await board.ops.submit_coop_score("A", "C", COOP_MAP, 150)
            await board.ops.submit_coop_score("D", "B", COOP_MAP, 200)
            await board.ops.submit_coop_score("B", "A", COOP_MAP, 250)

            page = await board.leaderboard.get_coop_ranked_page(COOP_MAP)
            assert [(r.entry.player_id_a, r.entry.player_id_b, r.rank) for r in page] == [
                ("A", "B", 1), ("A", "C", 2), ("D", "B", 3)
            ]
            assert page[0].entry.a_is_host is False

            previews = await board.leaderboard.get_preview("coop")
            assert [p.map_id for p in previews] == [COOP_MAP]
            assert len(previews[0].entries) == 3
        finally:
            await board.db.close()

    run(scenario())


def test_row_edits_invalidate_the_board_they_belong_to(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            solo_id = await board.ops.submit_score("P1", SOLO_MAP, 100)
            bundle_id = await board.ops.submit_coop_score("A", "B", COOP_MAP, 300)
            await board.leaderboard.get_preview("sp")
            await board.leaderboard.get_preview("coop")

            async with board.db.get_session() as session:
                bundle = await session.scalar(select(CoopBundled).where(CoopBundled.id == bundle_id))
                coop_row_id = bundle.cl_id1

            await board.ops.update_score(coop_row_id, note="great run")
            assert not await board.coordinator.is_fresh("coop_previews")
            assert await board.coordinator.is_fresh("sp_previews")

            await board.leaderboard.get_preview("coop")
            await board.ops.set_score_verified(solo_id, False)
            assert not await board.coordinator.is_fresh("sp_previews")
            assert await board.coordinator.is_fresh("coop_previews")
            assert await board.leaderboard.get_ranked_page(SOLO_MAP) == []

            await board.ops.set_score_verified(solo_id, True)
            deleted = await board.ops.delete_score(solo_id)
            assert deleted.id == solo_id
            assert await board.leaderboard.get_ranked_page(SOLO_MAP) == []
        finally:
            await board.db.close()

    run(scenario())


def test_banned_score_lookups(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            changelog_id = await board.ops.submit_score("P1", SOLO_MAP, 100)
            await board.ops.submit_score("P2", SOLO_MAP, 110)
            await board.ops.set_score_banned(changelog_id)

            assert await board.leaderboard.get_banned_scores(SOLO_MAP) == [("P1", 100)]
            assert await board.leaderboard.is_score_banned(SOLO_MAP, "P1", 100)
            assert not await board.leaderboard.is_score_banned(SOLO_MAP, "P2", 110)
        finally:
            await board.db.close()

    run(scenario())


def test_errors(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            with pytest.raises(MapNotFoundError):
                await board.leaderboard.get_ranked_page("99999")
            with pytest.raises(MapNotFoundError):
                await board.ops.submit_score("P1", "99999", 100)
            with pytest.raises(ScoreValidationError):
                await board.ops.submit_score("P1", SOLO_MAP, 0)
            with pytest.raises(ScoreValidationError):
                await board.ops.submit_score("N/A", SOLO_MAP, 100)
            with pytest.raises(ScoreValidationError):
                await board.ops.submit_coop_score("A", "A", COOP_MAP, 100)
            with pytest.raises(ScoreNotFoundError):
                await board.ops.update_score(12345, score=100)
            with pytest.raises(ScoreNotFoundError):
                await board.ops.delete_score(12345)
            with pytest.raises(InvalidBoardKindError):
                await board.leaderboard.get_preview("team")

            changelog_id = await board.ops.submit_score("P1", SOLO_MAP, 100)
            with pytest.raises(ScoreValidationError):
                await board.ops.update_score(changelog_id, map_id=SOLO_MAP_2)
        finally:
            await board.db.close()

    run(scenario())


def test_maps_listing(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            solo = await board.leaderboard.get_maps()
            coop = await board.leaderboard.get_maps(is_coop=True)
            assert [m.map_id for m in solo] == [SOLO_MAP, SOLO_MAP_2]
            assert [(m.map_id, m.is_coop) for m in coop] == [(COOP_MAP, True)]
            assert await board.leaderboard.get_maps(game_id=2) == []
        finally:
            await board.db.close()

    run(scenario())


async def bundle_rows(board, bundle_id):
    async with board.db.get_session() as session:
        bundle = await session.get(CoopBundled, bundle_id)
        return bundle.cl_id1, bundle.cl_id2


def test_coop_score_edit_applies_to_both_halves(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            bundle_id = await board.ops.submit_coop_score("A", "B", COOP_MAP, 300)
            cl_id1, cl_id2 = await bundle_rows(board, bundle_id)
            assert [r.entry.score for r in await board.leaderboard.get_coop_ranked_page(COOP_MAP)] == [300]

            await board.ops.update_score(cl_id2, score=100, note="retimed")

            page = await board.leaderboard.get_coop_ranked_page(COOP_MAP)
            assert [(r.entry.player_id_a, r.entry.player_id_b, r.entry.score) for r in page] == [("A", "B", 100)]
            async with board.db.get_session() as session:
                first = await session.get(Changelog, cl_id1)
                second = await session.get(Changelog, cl_id2)
                assert (first.score, second.score) == (100, 100)
                # Notes belong to each half
                assert (first.note, second.note) == (None, "retimed")
        finally:
            await board.db.close()

    run(scenario())


def test_coop_banned_scores(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            banned_bundle = await board.ops.submit_coop_score("A", "B", COOP_MAP, 300)
            unverified_bundle = await board.ops.submit_coop_score("C", "D", COOP_MAP, 200)
            await board.ops.submit_coop_score("E", "F", COOP_MAP, 250)
            await board.ops.submit_coop_score("G", "H", COOP_MAP, 150, category_id=2)

            assert await board.leaderboard.get_coop_banned_scores(COOP_MAP) == []

            _, banned_half = await bundle_rows(board, banned_bundle)
            unverified_half, _ = await bundle_rows(board, unverified_bundle)
            await board.ops.set_score_banned(banned_half)
            await board.ops.set_score_verified(unverified_half, False)

            assert await board.leaderboard.get_coop_banned_scores(COOP_MAP) == [
                ("C", "D", 200), ("A", "B", 300)
            ]
            assert await board.leaderboard.get_coop_banned_scores(COOP_MAP, category_id=2) == []
        finally:
            await board.db.close()

    run(scenario())


def test_pb_history(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            await board.db.get_or_create_user("P1", steam_name="steam_p1", board_name="Board P1")
            first = await board.ops.submit_score("P1", SOLO_MAP, 100)
            second = await board.ops.submit_score("P1", SOLO_MAP, 90)
            third = await board.ops.submit_score("P1", SOLO_MAP, 80)
            await board.ops.set_score_banned(third)
            await board.ops.submit_score("P1", SOLO_MAP_2, 70)
            await board.ops.submit_score("P2", SOLO_MAP, 60)

            history = await board.leaderboard.get_pb_history(SOLO_MAP, "P1")
            assert history.user_name == "Board P1"
            assert [(e.changelog_id, e.score, e.banned) for e in history.entries] == [
                (third, 80, True), (second, 90, False), (first, 100, False)
            ]

            assert (await board.leaderboard.get_pb_history(SOLO_MAP, "P1", category_id=2)).entries == []
            assert await board.leaderboard.get_pb_history(SOLO_MAP, "P9") is None
        finally:
            await board.db.close()

    run(scenario())


def test_validate_score_against_current_board(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            await board.ops.submit_score("P1", SOLO_MAP, 100)
            await board.ops.submit_score("P2", SOLO_MAP, 150)
            p3_best = await board.ops.submit_score("P3", SOLO_MAP, 200)

            details = await board.leaderboard.validate_score(SOLO_MAP, "P3", 120)
            assert (details.previous_id, details.pre_rank, details.post_rank, details.score_delta) == (
                p3_best, 3, 2, 80
            )
            assert not details.banned

            # An equal score that arrived earlier keeps the better rank
            newcomer = await board.leaderboard.validate_score(SOLO_MAP, "P4", 150)
            assert (newcomer.previous_id, newcomer.pre_rank, newcomer.post_rank, newcomer.score_delta) == (
                None, None, 3, None
            )

            assert await board.leaderboard.validate_score(SOLO_MAP, "P3", 200) is None
            assert await board.leaderboard.validate_score(SOLO_MAP, "P3", 250) is None
            assert await board.leaderboard.validate_score(SOLO_MAP, "P3", 0) is None
        finally:
            await board.db.close()

    run(scenario())


def test_submit_records_rank_movement(tmp_path):
    async def scenario():
        board = await build_board(tmp_path)
        try:
            await board.ops.submit_score("P1", SOLO_MAP, 100)
            await board.ops.submit_score("P2", SOLO_MAP, 150)
            p3_best = await board.ops.submit_score("P3", SOLO_MAP, 200)
            improved = await board.ops.submit_score("P3", SOLO_MAP, 120)

            async with board.db.get_session() as session:
                first = await session.get(Changelog, p3_best)
                row = await session.get(Changelog, improved)
            assert (first.previous_id, first.pre_rank, first.post_rank, first.score_delta) == (None, None, 3, None)
            assert (row.previous_id, row.pre_rank, row.post_rank, row.score_delta) == (p3_best, 3, 2, 80)

            page = await board.leaderboard.get_ranked_page(SOLO_MAP)
            assert players(page) == [("P1", 100, 1), ("P3", 120, 2), ("P2", 150, 3)]
        finally:
            await board.db.close()

    run(scenario())
