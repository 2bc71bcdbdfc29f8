import asyncio
import sqlite3
import pytest
from datetime import timedelta
from unittest.mock import patch

from mockbet.exceptions import (
    MatchAlreadySettledError,
    MatchNotFoundError,
    StorageError,
    ValidationError,
)
from mockbet.models import Currency, MatchStatus, Outcome
from mockbet.resolver import BetResolver


@pytest.mark.asyncio
async def test_scenario_winning_token_bet(factory, resolver, storage_layer):
    profile = await factory.profile(tokens=1000)
    match = await factory.match(odds=(2.0, 3.2, 3.8))
    bet = await factory.bet(profile, match, 100, choice=Outcome.HOME)

    summary = await resolver.resolve_match(match.id, Outcome.HOME)

    assert (summary.processed, summary.won, summary.lost, summary.failed) == (1, 1, 0, 0)
    stored = await storage_layer.get_bet(bet.id)
    assert stored.is_win is True
    assert stored.tokens_won == 200
    assert stored.diamonds_won == 1
    loaded = await storage_layer.get_profile(profile.id)
    assert loaded.tokens == 900 + 200
    assert loaded.diamonds == 1
    assert loaded.won_bets == 1


@pytest.mark.asyncio
async def test_scenario_losing_bet_changes_no_balance(factory, resolver, storage_layer):
    profile = await factory.profile(tokens=1000, diamonds=4)
    match = await factory.match()
    bet = await factory.bet(profile, match, 50, choice=Outcome.AWAY)
    before = await storage_layer.get_profile(profile.id)

    summary = await resolver.resolve_match(match.id, "Home")

    assert summary.lost == 1
    stored = await storage_layer.get_bet(bet.id)
    assert stored.is_win is False
    assert (stored.tokens_won, stored.diamonds_won) == (0, 0)
    assert await storage_layer.get_profile(profile.id) == before


@pytest.mark.asyncio
async def test_scenario_diamond_bet(factory, resolver, storage_layer):
    profile = await factory.profile(tokens=0, diamonds=30)
    match = await factory.match(odds=(2.5, 3.0, 2.8))
    bet = await factory.bet(profile, match, 30, currency=Currency.DIAMONDS)

    await resolver.resolve_match(match.id, Outcome.HOME)

    stored = await storage_layer.get_bet(bet.id)
    assert (stored.tokens_won, stored.diamonds_won) == (0, 75)
    loaded = await storage_layer.get_profile(profile.id)
    assert loaded.tokens == 0
    assert loaded.diamonds == 75


@pytest.mark.asyncio
async def test_scenario_second_resolution_rejected(factory, resolver, storage_layer):
    profile = await factory.profile()
    match = await factory.match()
    await factory.bet(profile, match, 100)
    await resolver.resolve_match(match.id, Outcome.HOME)
    after_first = await storage_layer.get_profile(profile.id)

    with pytest.raises(MatchAlreadySettledError):
        await resolver.resolve_match(match.id, Outcome.HOME)
    with pytest.raises(MatchAlreadySettledError):
        await resolver.resolve_match(match.id, Outcome.AWAY)

    assert await storage_layer.get_profile(profile.id) == after_first
    assert (await storage_layer.find_match(match.id)).result == Outcome.HOME


@pytest.mark.asyncio
async def test_odds_snapshot_used_not_live_odds(factory, resolver, storage_layer, test_db):
    profile = await factory.profile()
    match = await factory.match(odds=(2.0, 3.0, 4.0))
    bet = await factory.bet(profile, match, 100)
    with sqlite3.connect(test_db) as conn:
        conn.execute("UPDATE matches SET odds_home = 9.0 WHERE id = ?", (match.id,))

    await resolver.resolve_match(match.id, Outcome.HOME)
    assert (await storage_layer.get_bet(bet.id)).tokens_won == 200


@pytest.mark.asyncio
async def test_resolve_validation(factory, resolver):
    match = await factory.match()
    with pytest.raises(ValidationError):
        await resolver.resolve_match("", Outcome.HOME)
    with pytest.raises(ValidationError):
        await resolver.resolve_match(match.id, "Penalties")
    with pytest.raises(MatchNotFoundError):
        await resolver.resolve_match("missing", Outcome.HOME)


@pytest.mark.asyncio
async def test_legacy_result_labels(factory, resolver, storage_layer):
    match = await factory.match()
    await resolver.resolve_match(match.id, "B")
    assert (await storage_layer.find_match(match.id)).result == Outcome.AWAY


@pytest.mark.asyncio
async def test_resolver_is_idempotent(factory, resolver, storage_layer):
    winner = await factory.profile("w", tokens=1000)
    loser = await factory.profile("l", tokens=1000)
    match = await factory.match()
    await factory.bet(winner, match, 100, choice=Outcome.DRAW)
    await factory.bet(loser, match, 100, choice=Outcome.HOME)
    await storage_layer.record_match_result(match.id, Outcome.DRAW)

    first = await resolver.resolve_match_bets(match.id, Outcome.DRAW)
    balances = [await storage_layer.get_profile(p.id) for p in (winner, loser)]
    second = await resolver.resolve_match_bets(match.id, Outcome.DRAW)

    assert first.processed == 2
    assert second.processed == 0
    assert [await storage_layer.get_profile(p.id) for p in (winner, loser)] == balances


@pytest.mark.asyncio
async def test_concurrent_resolvers_pay_once(factory, storage_layer):
    profile = await factory.profile(tokens=1000)
    match = await factory.match()
    bets = [await factory.bet(profile, match, 100) for _ in range(3)]
    await storage_layer.record_match_result(match.id, Outcome.HOME)

    one = BetResolver(storage_layer, notify=False)
    two = BetResolver(storage_layer, notify=False)
    a, b = await asyncio.gather(
        one.resolve_match_bets(match.id, Outcome.HOME),
        two.resolve_match_bets(match.id, Outcome.HOME),
    )

    assert a.won + b.won == len(bets)
    loaded = await storage_layer.get_profile(profile.id)
    assert loaded.tokens == 700 + 3 * 200
    assert loaded.diamonds == 3
    assert loaded.won_bets == 3


@pytest.mark.asyncio
async def test_one_failing_bet_does_not_block_siblings(factory, resolver, storage_layer, monkeypatch):
    profile = await factory.profile(tokens=1000)
    match = await factory.match()
    bad = await factory.bet(profile, match, 100)
    good = await factory.bet(profile, match, 100)
    await storage_layer.record_match_result(match.id, Outcome.HOME)

    original = storage_layer.update_bet_resolution

    async def flaky(bet, *args, **kwargs):
        if bet.id == bad.id:
            raise StorageError("disk I/O error")
        return await original(bet, *args, **kwargs)

    monkeypatch.setattr(storage_layer, "update_bet_resolution", flaky)
    summary = await resolver.resolve_match_bets(match.id, Outcome.HOME)

    assert (summary.won, summary.failed) == (1, 1)
    assert (await storage_layer.get_bet(good.id)).is_win is True
    assert (await storage_layer.get_bet(bad.id)).is_win is None


@pytest.mark.asyncio
async def test_scenario_combo_waits_for_every_leg(factory, resolver, storage_layer):
    profile = await factory.profile(tokens=1000)
    first = await factory.match(odds=(1.5, 3.0, 5.0))
    second = await factory.match(odds=(2.0, 3.0, 3.5))
    combo = await factory.combo(profile, [(first, Outcome.HOME, 1.5), (second, Outcome.HOME, 2.0)], 20)

    await resolver.resolve_match(first.id, Outcome.HOME)
    pending = await resolver.resolve_combo_bets()
    assert pending.pending == 1
    assert (await storage_layer.get_combo_bet(combo.id)).is_win is None

    await resolver.resolve_match(second.id, Outcome.HOME)

    stored = await storage_layer.get_combo_bet(combo.id)
    assert stored.is_win is True
    assert stored.tokens_won == 60
    assert stored.diamonds_won == 0  # floor(40 * 0.01)
    loaded = await storage_layer.get_profile(profile.id)
    assert loaded.tokens == 980 + 60
    assert loaded.won_bets == 1


@pytest.mark.asyncio
async def test_combo_single_losing_leg_loses(factory, resolver, storage_layer):
    profile = await factory.profile(tokens=1000)
    legs = [await factory.match() for _ in range(3)]
    combo = await factory.combo(profile, [(m, Outcome.HOME, 2.0) for m in legs], 50)
    for m, result in zip(legs, (Outcome.HOME, Outcome.HOME, Outcome.DRAW)):
        await storage_layer.record_match_result(m.id, result)

    summary = await resolver.resolve_combo_bets()

    assert (summary.resolved, summary.won) == (1, 0)
    stored = await storage_layer.get_combo_bet(combo.id)
    assert stored.is_win is False
    assert (stored.tokens_won, stored.diamonds_won) == (0, 0)
    assert (await storage_layer.get_profile(profile.id)).tokens == 950


@pytest.mark.asyncio
async def test_combo_finished_leg_without_result_stays_pending(factory, resolver, storage_layer, now):
    profile = await factory.profile()
    settled = await factory.match()
    ended = await factory.match(kickoff_in=-timedelta(hours=5))
    combo = await factory.combo(profile, [(settled, Outcome.HOME, 2.0), (ended, Outcome.HOME, 2.0)], 10)
    await storage_layer.record_match_result(settled.id, Outcome.HOME)

    await resolver.run_settlement_pass(now)

    assert (await storage_layer.find_match(ended.id)).status == MatchStatus.FINISHED
    assert (await storage_layer.get_combo_bet(combo.id)).is_win is None


@pytest.mark.asyncio
async def test_diamond_combo(factory, resolver, storage_layer):
    profile = await factory.profile(tokens=0, diamonds=100)
    m1 = await factory.match()
    m2 = await factory.match()
    combo = await factory.combo(profile, [(m1, Outcome.AWAY, 2.5), (m2, Outcome.DRAW, 3.0)], 10,
                                currency=Currency.DIAMONDS)
    await storage_layer.record_match_result(m1.id, Outcome.AWAY)
    await storage_layer.record_match_result(m2.id, Outcome.DRAW)

    await resolver.resolve_combo_bets()

    stored = await storage_layer.get_combo_bet(combo.id)
    assert (stored.tokens_won, stored.diamonds_won) == (0, 75)
    assert (await storage_layer.get_profile(profile.id)).diamonds == 90 + 75


@pytest.mark.asyncio
async def test_simulation_settles_with_drawn_outcome(factory, storage_layer):
    profile = await factory.profile()
    match = await factory.match(odds=(2.0, 3.0, 4.0))
    await factory.bet(profile, match, 100, choice=Outcome.HOME)

    resolver = BetResolver(storage_layer, notify=False)
    with patch("mockbet.resolver.simulate_outcome", return_value=Outcome.HOME):
        summary = await resolver.simulate_match(match.id)

    assert summary.result == Outcome.HOME
    assert summary.won == 1
    with pytest.raises(MatchAlreadySettledError):
        await resolver.simulate_match(match.id)


@pytest.mark.asyncio
async def test_full_pass(factory, resolver, storage_layer, now):
    profile = await factory.profile(tokens=1000)
    done = await factory.match(kickoff_in=-timedelta(hours=3))
    upcoming = await factory.match(kickoff_in=timedelta(hours=1))
    await factory.bet(profile, done, 100, choice=Outcome.HOME)
    await factory.bet(profile, done, 100, choice=Outcome.AWAY)
    open_bet = await factory.bet(profile, upcoming, 100)
    combo = await factory.combo(profile, [(done, Outcome.HOME, 2.0), (upcoming, Outcome.HOME, 2.0)], 10)

    await storage_layer.record_match_result(done.id, Outcome.HOME)
    report = await resolver.run_settlement_pass(now)

    assert report.completed
    assert (report.resolved, report.failed) == (2, 0)
    assert (report.combo_resolved, report.combo_pending) == (0, 1)
    assert report.tokens_paid == 200
    assert (await storage_layer.get_bet(open_bet.id)).is_win is None
    assert (await storage_layer.get_combo_bet(combo.id)).is_win is None

    again = await resolver.run_settlement_pass(now)
    assert again.resolved == 0
    assert (await storage_layer.get_profile(profile.id)).tokens == 1000 - 310 + 200


@pytest.mark.asyncio
async def test_pass_ends_with_partial_counts_when_store_fails(resolver, storage_layer, monkeypatch, now):
    async def unavailable(**kwargs):
        raise StorageError("unable to open database file")

    monkeypatch.setattr(storage_layer, "list_finished_with_result", unavailable)
    report = await resolver.run_settlement_pass(now)

    assert report.completed is False
    assert report.resolved == 0
    assert report.to_dict()["ok"] is False


@pytest.mark.asyncio
async def test_win_notification_sent(factory, storage_layer):
    profile = await factory.profile()
    match = await factory.match()
    await factory.bet(profile, match, 100, choice=Outcome.HOME)
    await factory.bet(profile, match, 100, choice=Outcome.AWAY)

    resolver = BetResolver(storage_layer, notify=True)
    with patch("mockbet.resolver.send_win_notification") as mock_notify:
        await resolver.resolve_match(match.id, Outcome.HOME)

    mock_notify.assert_called_once()
    bet, match_name = mock_notify.call_args.args
    assert bet.is_win is True
    assert match_name == "PSG vs Marseille"


@pytest.mark.asyncio
async def test_interactive_resolve_reports_combos_it_settles(factory, resolver):
    profile = await factory.profile()
    first = await factory.match()
    second = await factory.match()
    await factory.combo(profile, [(first, Outcome.HOME, 2.0), (second, Outcome.DRAW, 3.0)], 10)

    partial = await resolver.resolve_match(first.id, Outcome.HOME)
    final = await resolver.resolve_match(second.id, Outcome.AWAY)

    assert (partial.combo_resolved, partial.combo_failed) == (0, 0)
    assert (final.combo_resolved, final.combo_failed) == (1, 0)
    assert final.to_dict()["comboResolved"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("match_id", [["m1"], {"id": "m1"}, 7])
async def test_non_string_match_id_rejected(resolver, storage_layer, monkeypatch, match_id):
    async def must_not_be_called(*args):
        raise AssertionError("store reached with a malformed id")

    monkeypatch.setattr(storage_layer, "find_match", must_not_be_called)
    with pytest.raises(ValidationError):
        await resolver.resolve_match(match_id, Outcome.HOME)
    with pytest.raises(ValidationError):
        await resolver.simulate_match(match_id)
