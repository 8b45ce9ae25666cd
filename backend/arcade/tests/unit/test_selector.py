import random

import pytest

from arcade.logic.exceptions import PlaylistLoadError
from arcade.logic.playlist import PlaylistRound, build_playlist
from arcade.logic.selector import PlaylistSelector, RandomSelector, resolve_round


def _rounds(*game_ids, **metadata_by_round):
    return [
        PlaylistRound(round_number=n, game_id=game_id, puzzle_id=10 * n, metadata=metadata_by_round.get(f"r{n}", {}))
        for n, game_id in enumerate(game_ids, start=1)
    ]


class TestBuildPlaylist:
    def test_orders_rounds_by_number(self):
        rounds = list(reversed(_rounds(1, 2, 3)))
        playlist = build_playlist(7, rounds)
        assert [r.round_number for r in playlist.rounds] == [1, 2, 3]
        assert playlist.total_rounds == 3

    def test_empty_playlist_is_a_load_error(self):
        with pytest.raises(PlaylistLoadError, match="no rounds found"):
            build_playlist(7, [])

    def test_gap_in_round_numbers_is_a_load_error(self):
        rounds = [PlaylistRound(round_number=1, game_id=1), PlaylistRound(round_number=3, game_id=2)]
        with pytest.raises(PlaylistLoadError) as exc_info:
            build_playlist(7, rounds)
        assert exc_info.value.round_number == 2

    def test_duplicate_round_number_is_a_load_error(self):
        rounds = [PlaylistRound(round_number=1, game_id=1), PlaylistRound(round_number=1, game_id=2)]
        with pytest.raises(PlaylistLoadError, match="duplicate"):
            build_playlist(7, rounds)


class TestResolveRound:
    def test_resolves_game_id_through_the_catalog(self, catalog):
        playlist = build_playlist(1, _rounds(2))
        resolved = resolve_round(playlist, 1, catalog)
        assert resolved.game.slug == "beta"
        assert resolved.puzzle_id == 10

    def test_procedural_round_uses_slug_from_metadata(self, catalog):
        playlist = build_playlist(1, _rounds(None, r1={"game_slug": "gamma"}))
        assert resolve_round(playlist, 1, catalog).game.slug == "gamma"

    def test_puzzle_ids_take_precedence_over_puzzle_id(self, catalog):
        playlist = build_playlist(1, _rounds(1, r1={"puzzle_ids": [4, 5, 6]}))
        resolved = resolve_round(playlist, 1, catalog)
        assert resolved.puzzle_ids == (4, 5, 6)
        assert resolved.puzzle_id is None

    def test_unknown_game_id_without_slug_names_the_round(self, catalog):
        playlist = build_playlist(4, _rounds(1, 2, 99))
        with pytest.raises(PlaylistLoadError) as exc_info:
            PlaylistSelector(playlist, catalog)
        assert exc_info.value.playlist_id == 4
        assert exc_info.value.round_number == 3

    def test_unknown_procedural_slug_is_a_load_error(self, catalog):
        playlist = build_playlist(1, _rounds(None, r1={"game_slug": "nope"}))
        with pytest.raises(PlaylistLoadError, match="unknown game slug"):
            resolve_round(playlist, 1, catalog)


class TestPlaylistSelector:
    def test_selects_rounds_in_playlist_order(self, catalog):
        selector = PlaylistSelector(build_playlist(1, _rounds(3, 1, 2)), catalog)
        assert [selector.select(n).game.slug for n in (1, 2, 3)] == ["gamma", "alpha", "beta"]

    def test_round_outside_the_playlist_is_an_error(self, catalog):
        selector = PlaylistSelector(build_playlist(1, _rounds(1)), catalog)
        with pytest.raises(PlaylistLoadError, match="round not found"):
            selector.select(2)


class TestRandomSelector:
    def test_no_repeats_until_the_catalog_is_exhausted(self, catalog):
        selector = RandomSelector(catalog, random.Random(42))
        played: list[str] = []
        for round_number in range(1, 10):
            resolved = selector.select(round_number, played)
            cycle_start = (len(played) // len(catalog)) * len(catalog)
            assert resolved.game.slug not in played[cycle_start:]
            played.append(resolved.game.slug)

        for start in range(0, 9, 3):
            assert sorted(played[start : start + 3]) == ["alpha", "beta", "gamma"]

    def test_eligible_set_is_never_empty(self, catalog):
        selector = RandomSelector(catalog)
        assert len(selector.eligible(["alpha", "beta", "gamma"])) == 3
        assert [g.slug for g in selector.eligible(["alpha", "beta", "gamma", "alpha"])] == ["beta", "gamma"]
