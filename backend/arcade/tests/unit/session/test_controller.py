import asyncio

from arcade.logic.enums import ExitReason, Grade, SaveStatus, SessionPhase
from arcade.logic.scoring import ScoringRegistry
from arcade.logic.types import ScoreReport
from arcade.session.controller import SessionController
from arcade.session.gateway import PersistenceGateway
from arcade.session.timer_manager import TimerPurpose
from arcade.tests.helpers.session import FAST_TIMINGS, MANUAL_TIMINGS, make_catalog, make_playlist, make_record, wait_until


async def _play(controller: SessionController, raw: float, max_score: float = 100) -> None:
    assert await controller.start_round()
    assert await controller.complete_round(raw, max_score, time_remaining=0)


class TestRoundFlow:
    async def test_start_enters_intro_with_a_selected_game(self, make_controller):
        controller = make_controller()

        assert await controller.start()

        assert controller.phase is SessionPhase.INTRO
        assert controller.state.current is not None
        assert controller.state.current.round_number == 1
        assert controller.timers.is_active(TimerPurpose.AUTO_ADVANCE)
        assert not await controller.start()

    async def test_intro_advances_to_playing_on_its_own(self, make_controller, host):
        controller = make_controller(timings=FAST_TIMINGS)
        await controller.start()

        await wait_until(lambda: controller.phase is SessionPhase.PLAYING)

        assert host.current.started
        assert host.current.context.round_number == 1

    async def test_round_start_swaps_intro_timer_for_the_countdown(self, make_controller):
        controller = make_controller()
        await controller.start()

        await controller.start_round()

        assert controller.timers.active_purposes() == [TimerPurpose.ROUND_COUNTDOWN]
        assert controller.time_remaining == 30

    async def test_completion_records_the_round_and_shows_results(self, make_controller, host):
        controller = make_controller()
        await controller.start()

        await _play(controller, 4, 5)

        assert controller.phase is SessionPhase.RESULTS
        [record] = controller.state.round_scores
        assert record.round_number == 1
        assert record.raw_score == 4
        assert record.score.normalized_score == 80
        assert record.score.grade is Grade.B
        assert controller.state.last_score == record.score
        assert controller.timers.active_purposes() == []
        assert host.current.stopped

    async def test_second_completion_in_the_same_round_is_ignored(self, make_controller):
        controller = make_controller()
        await controller.start()
        await _play(controller, 50)

        assert not await controller.complete_round(100, 100)
        assert not await controller.skip_round()
        assert len(controller.state.round_scores) == 1

    async def test_skip_counts_as_zero(self, make_controller):
        controller = make_controller()
        await controller.start()
        await controller.start_round()

        assert await controller.skip_round()

        [record] = controller.state.round_scores
        assert (record.raw_score, record.max_score) == (0, 100)
        assert record.score.normalized_score == 0
        assert record.score.grade is Grade.F

    async def test_invalid_maximum_is_replaced_by_defaults(self, make_controller):
        controller = make_controller()
        await controller.start()

        await _play(controller, 5, 0)

        [record] = controller.state.round_scores
        assert (record.raw_score, record.max_score) == (0, 100)

    async def test_live_scores_are_tracked_while_playing(self, make_controller, host):
        controller = make_controller()
        await controller.start()
        assert not controller.update_score(1, 10)

        await controller.start_round()
        host.current.context.report_score(3, 10)

        assert controller.live_report == ScoreReport(3, 10)

    async def test_game_completing_through_its_context(self, make_controller, host):
        controller = make_controller()
        await controller.start()
        await controller.start_round()

        await host.current.context.complete(9, 10, 0)

        assert controller.phase is SessionPhase.RESULTS
        assert controller.state.round_scores[0].score.normalized_score == 90

    async def test_completion_from_a_previous_round_is_ignored(self, make_controller, host):
        controller = make_controller(total_rounds=2)
        await controller.start()
        await controller.start_round()
        first_context = host.current.context
        await first_context.complete(10, 10, 0)
        await controller.continue_()
        await controller.start_round()

        await first_context.complete(10, 10, 0)

        assert controller.phase is SessionPhase.PLAYING
        assert controller.state.current_round == 2
        assert len(controller.state.round_scores) == 1

    async def test_continue_is_only_accepted_on_results(self, make_controller):
        controller = make_controller(total_rounds=2)
        await controller.start()
        assert not await controller.continue_()
        await controller.start_round()
        assert not await controller.continue_()
        await controller.complete_round(1, 1, 0)

        assert await controller.continue_()

        assert controller.phase is SessionPhase.INTRO
        assert controller.state.current_round == 2
        assert controller.state.last_score is None

    async def test_game_that_fails_to_start_is_skipped(self, make_controller, host, caplog):
        host.fail_on_start = True
        controller = make_controller()
        await controller.start()

        assert await controller.start_round()

        assert controller.phase is SessionPhase.RESULTS
        assert controller.state.round_scores[0].score.normalized_score == 0
        assert "mini-game failed to start" in caplog.text

    async def test_every_game_is_played_once_per_cycle(self, make_controller):
        controller = make_controller(total_rounds=3)
        await controller.start()
        for _ in range(3):
            await _play(controller, 50)
            await controller.continue_()

        assert sorted(r.game_id for r in controller.state.round_scores) == ["alpha", "beta", "gamma"]


class TestRoundClock:
    async def test_timeout_scores_what_the_game_reports(self, store, drafts, auth, host):
        catalog = make_catalog(duration_seconds=0.05)
        gateway = PersistenceGateway(store, drafts, auth, catalog)
        host.score = ScoreReport(3, 4)
        controller = SessionController(gateway, ScoringRegistry.from_catalog(catalog), host, timings=MANUAL_TIMINGS)
        await controller.start()
        await controller.start_round()

        await wait_until(lambda: controller.phase is SessionPhase.RESULTS)

        [record] = controller.state.round_scores
        assert (record.raw_score, record.max_score) == (3, 4)
        assert record.score.normalized_score == 75
        assert host.current.stopped
        controller.teardown()
        gateway.teardown()

    async def test_paused_game_freezes_the_countdown(self, make_controller, host):
        controller = make_controller()
        await controller.start()
        await controller.start_round()
        host.current.pause_clock = True

        await asyncio.sleep(0.05)

        assert controller.time_remaining == 30


class TestCompletion:
    async def test_signed_in_session_is_committed(self, make_controller, auth, player, store):
        await auth.set_user(player)
        controller = make_controller(total_rounds=3)
        await controller.start()
        for raw in (80, 60, 100):
            await _play(controller, raw)
            await controller.continue_()

        assert controller.phase is SessionPhase.COMPLETE
        await controller.wait_for_background()

        assert controller.save_status is SaveStatus.SAVED
        assert controller.session_score.percentage == 80
        assert store.count("create_session") == 1
        rows = store.round_results[controller.ledger.remote_session_id]
        assert [rows[n].normalized_score for n in (1, 2, 3)] == [80, 60, 100]
        assert {rows[n].game_id for n in (1, 2, 3)} == {1, 2, 3}

    async def test_anonymous_session_waits_for_sign_in(self, make_controller, auth, player, store):
        controller = make_controller(total_rounds=1)
        await controller.start()
        await _play(controller, 70)
        await controller.continue_()
        await controller.wait_for_background()

        assert controller.save_status is SaveStatus.AWAITING_AUTH
        await wait_until(lambda: controller.state.auth_prompt)

        await auth.set_user(player)

        assert controller.save_status is SaveStatus.SAVED
        assert store.count("complete_session") == 1

    async def test_signed_in_player_is_not_prompted(self, make_controller, auth, player):
        await auth.set_user(player)
        controller = make_controller(total_rounds=1)
        await controller.start()
        await _play(controller, 70)
        await controller.continue_()

        await asyncio.sleep(0.05)

        assert not controller.state.auth_prompt

    async def test_complete_is_terminal(self, make_controller):
        controller = make_controller(total_rounds=1)
        await controller.start()
        await _play(controller, 70)
        await controller.continue_()

        assert not await controller.continue_()
        assert not await controller.start_round()
        assert not await controller.quit_and_save()
        assert controller.phase is SessionPhase.COMPLETE


class TestQuit:
    async def test_quit_commits_finished_rounds_as_partial(self, make_controller, auth, player, store):
        await auth.set_user(player)
        exits: list[ExitReason] = []
        controller = make_controller(total_rounds=5, on_exit=exits.append)
        await controller.start()
        await _play(controller, 90)
        await controller.continue_()
        await controller.start_round()

        assert await controller.quit_and_save()
        await controller.wait_for_background()

        assert exits == [ExitReason.QUIT]
        assert controller.exited
        assert controller.save_status is SaveStatus.SAVED
        assert list(store.round_results[controller.ledger.remote_session_id]) == [1]

    async def test_quit_without_rounds_saves_nothing(self, make_controller, auth, player, store):
        await auth.set_user(player)
        controller = make_controller()
        await controller.start()
        await controller.start_round()

        await controller.quit_and_save()
        await controller.wait_for_background()

        assert controller.exit_reason is ExitReason.QUIT
        assert controller.save_status is SaveStatus.UNSAVED
        assert store.count("complete_session") == 0

    async def test_anonymous_quit_is_held_as_partial(self, make_controller, gateway):
        controller = make_controller()
        await controller.start()
        await _play(controller, 40)

        await controller.quit_and_save()
        await controller.wait_for_background()

        assert gateway.pending.partial
        assert controller.save_status is SaveStatus.AWAITING_AUTH

    async def test_failing_exit_callback_is_logged(self, make_controller, caplog):
        def on_exit(_reason):
            raise RuntimeError("menu unavailable")

        controller = make_controller(on_exit=on_exit)
        await controller.start()

        await controller.quit_and_save()

        assert controller.exited
        assert "exit callback failed" in caplog.text


class TestPlaylistSession:
    async def test_playlist_defines_rounds_and_puzzles(self, make_controller, store):
        store.playlists[1] = make_playlist(1, (2, 3, 1, 2))
        controller = make_controller(playlist_id=1)
        await controller.start()

        await wait_until(lambda: controller.playlist_ready)

        assert controller.state.total_rounds == 4
        assert controller.state.current.game.slug == "beta"
        assert controller.state.current.puzzle_id == 101

    async def test_round_start_waits_for_the_playlist(self, make_controller, store):
        store.playlists[1] = make_playlist(1)
        store.delay = 0.05
        controller = make_controller(playlist_id=1)
        await controller.start()

        assert not await controller.start_round()
        assert controller.phase is SessionPhase.INTRO

        await wait_until(lambda: controller.playlist_ready)
        assert await controller.start_round()

    async def test_intro_waits_for_a_slow_playlist(self, make_controller, store):
        store.playlists[1] = make_playlist(1)
        store.delay = 0.05
        controller = make_controller(playlist_id=1, timings=FAST_TIMINGS)
        await controller.start()

        await wait_until(lambda: controller.phase is SessionPhase.PLAYING)

        assert controller.state.current.game.slug == "alpha"

    async def test_missing_playlist_returns_to_menu(self, make_controller):
        exits: list[ExitReason] = []
        controller = make_controller(playlist_id=99, on_exit=exits.append)
        await controller.start()

        await wait_until(lambda: controller.exited)

        assert exits == [ExitReason.LOAD_ERROR]
        assert controller.load_error.playlist_id == 99

    async def test_unknown_game_names_the_failing_round(self, make_controller, store):
        store.playlists[5] = make_playlist(5, (1, 2, 99))
        controller = make_controller(playlist_id=5)
        await controller.start()

        await wait_until(lambda: controller.exited)

        assert controller.exit_reason is ExitReason.LOAD_ERROR
        assert controller.load_error.round_number == 3

    async def test_guest_progress_is_drafted_after_each_round(self, make_controller, store, gateway):
        store.playlists[1] = make_playlist(1)
        controller = make_controller(playlist_id=1)
        await controller.start()
        await wait_until(lambda: controller.playlist_ready)

        await _play(controller, 60)

        draft = gateway.load_draft()
        assert draft.current_playlist_id == 1
        assert draft.completed_rounds == 1

    async def test_guest_resumes_an_unfinished_playlist(self, make_controller, store, gateway):
        store.playlists[1] = make_playlist(1)
        gateway.record_draft_progress(1, [make_record(1, "alpha", 60)])
        controller = make_controller(playlist_id=1)
        await controller.start()

        await wait_until(lambda: controller.playlist_ready)

        assert controller.state.current_round == 2
        assert controller.state.current.game.slug == "beta"
        assert len(controller.state.round_scores) == 1

    async def test_signed_in_player_does_not_resume_the_guest_draft(self, make_controller, store, gateway, auth, player):
        await auth.set_user(player)
        store.playlists[1] = make_playlist(1)
        gateway.record_draft_progress(1, [make_record(1, "alpha", 60)])
        controller = make_controller(playlist_id=1)
        await controller.start()

        await wait_until(lambda: controller.playlist_ready)

        assert controller.state.current_round == 1

    async def test_finished_guest_playlist_advances_to_the_next(self, make_controller, store, gateway):
        store.playlists[1] = make_playlist(1, (1, 2))
        controller = make_controller(playlist_id=1)
        await controller.start()
        await wait_until(lambda: controller.playlist_ready)
        for raw in (50, 70):
            await _play(controller, raw)
            await controller.continue_()

        assert controller.phase is SessionPhase.COMPLETE
        assert gateway.current_playlist_id() == 2


class TestTeardown:
    async def test_teardown_while_intro_waits_for_playlist_leaves_no_tasks(self, make_controller, store, host):
        store.playlists[1] = make_playlist(1)
        store.delay = 0.3
        controller = make_controller(playlist_id=1, timings=FAST_TIMINGS)
        await controller.start()
        await asyncio.sleep(0.05)
        assert controller.timers.running_callbacks == 1

        controller.teardown()
        await asyncio.sleep(0.02)

        assert controller.timers.running_callbacks == 0
        pending = [t for t in asyncio.all_tasks() if t is not asyncio.current_task() and not t.done()]
        assert pending == []
        assert host.games == []

    async def test_teardown_cancels_pending_timers(self, make_controller, host):
        controller = make_controller(timings=FAST_TIMINGS)
        await controller.start()

        controller.teardown()
        await asyncio.sleep(0.05)

        assert controller.phase is SessionPhase.INTRO
        assert host.games == []
        assert controller.timers.active_purposes() == []

    async def test_teardown_stops_the_running_game(self, make_controller, host):
        controller = make_controller()
        await controller.start()
        await controller.start_round()

        controller.teardown()

        assert host.current.stopped
        assert not await controller.complete_round(1, 1)

    async def test_exit_notifies_once(self, make_controller):
        exits: list[ExitReason] = []
        controller = make_controller(on_exit=exits.append)
        await controller.start()

        await controller.exit()
        await controller.exit(ExitReason.QUIT)

        assert exits == [ExitReason.MENU]
