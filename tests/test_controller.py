"""Tests for the interactive roll controller: +1, confirm, burn and rendering."""

import json

import pytest

from app.domain.controller import ActionOutcome, RollController, apply_bonus
from app.domain.resources import HealthPool
from app.models.db_models import ChatMessage
from tests.conftest import ScriptedDie, make_actor, make_user, resource_value


def _message(faces, flavor="Roll #default", formula=None, flags=None):
    return ChatMessage(
        id="msg-1",
        room_id="world",
        author_id="author",
        flavor=flavor,
        formula=formula,
        rolls_json=json.dumps(faces),
        content="",
        flags_json=json.dumps(flags or {}),
        ownership_json="{}",
    )


def _controller(faces, flavor="Roll #default", die=None, pool=None, **kwargs):
    return RollController.from_message(
        _message(faces, flavor, **kwargs),
        store=None,
        health_pool=pool if pool is not None else HealthPool(3),
        roll_die=die or ScriptedDie(),
    )


@pytest.mark.parametrize("value, expected", [(1, 1), (2, 3), (5, 6), (6, 6)])
def test_apply_bonus_extremes_never_move(value, expected):
    assert apply_bonus(value) == expected


def test_message_without_dice_has_no_controller():
    assert _controller([]) is None


def test_first_evaluation_locks_active_die():
    ctrl = _controller([2, 5, 3])
    assert ctrl.state.locked_result_index == 1


# --- +1 ---


async def test_buff_raises_five_to_six_then_stops():
    ctrl = _controller([5])
    assert await ctrl.buff() == ActionOutcome.APPLIED
    assert ctrl.state.original_dice == [5]
    assert ctrl.state.delta_dice == [1]
    assert ctrl.state.effective_dice() == [6]
    assert await ctrl.buff() == ActionOutcome.NOOP
    assert ctrl.state.delta_dice == [1]


async def test_buff_keeps_locked_die():
    ctrl = _controller([4, 5])
    assert ctrl.parsed.active_index == 1
    ctrl.state.delta_dice[0] = 2  # die 0 now shows 6
    ctrl.refresh()
    assert ctrl.parsed.active_index == 1


async def test_buff_is_noop_when_ineligible():
    ctrl = _controller([1, 1])
    assert await ctrl.buff() == ActionOutcome.NOOP
    assert ctrl.state.delta_dice == [0, 0]


# --- confirm ---


async def test_confirmations_are_append_only():
    die = ScriptedDie(6, 2)
    ctrl = _controller([3, 6], die=die)
    assert await ctrl.confirm() == ActionOutcome.APPLIED
    assert await ctrl.confirm() == ActionOutcome.APPLIED
    assert [c.value for c in ctrl.state.confirmations] == [6, 2]
    assert await ctrl.confirm() == ActionOutcome.NOOP
    assert len(ctrl.state.confirmations) == 2


async def test_buff_targets_latest_confirmation():
    ctrl = _controller([6], die=ScriptedDie(3))
    await ctrl.confirm()
    assert ctrl.can_buff()
    assert await ctrl.buff() == ActionOutcome.APPLIED
    assert ctrl.state.confirmations[-1].value == 3
    assert ctrl.state.confirmations[-1].effective == 4
    assert ctrl.state.delta_dice == [0]


async def test_confirm_accepts_async_die_source():
    async def die():
        return 5

    ctrl = _controller([6], die=die)
    assert await ctrl.confirm() == ActionOutcome.APPLIED
    assert ctrl.state.confirmations[0].value == 5


async def test_confirm_not_allowed_for_target_rolls():
    ctrl = _controller([6], flavor="Dodge #target4")
    assert await ctrl.confirm() == ActionOutcome.NOOP


# --- burn ---


async def test_burn_uses_fallback_pool_and_unblocks_magick():
    pool = HealthPool(1)
    ctrl = _controller([1, 4], flavor="Magick 2d6 #magick", pool=pool)
    assert not ctrl.can_buff()
    assert await ctrl.burn() == ActionOutcome.APPLIED
    assert ctrl.state.burned_ones == [True, False]
    assert ctrl.state.original_dice == [1, 4]
    assert ctrl.parsed.active_index == 1
    assert ctrl.can_buff()
    assert pool.value == 0


async def test_burn_noop_when_fallback_pool_empty():
    ctrl = _controller([1, 4], flavor="#magick", pool=HealthPool(0))
    assert await ctrl.burn() == ActionOutcome.NOOP
    assert ctrl.state.burned_ones == [False, False]


async def test_burning_locked_die_clears_lock():
    ctrl = _controller([1, 1, 2], flavor="#magick", formula="3d6kl")
    assert ctrl.state.locked_result_index == 0
    await ctrl.burn()
    assert ctrl.state.burned_ones == [True, False, False]
    # re-selected from what is left, then locked again
    assert ctrl.parsed.active_index == 1
    assert ctrl.state.locked_result_index == 1


async def test_burn_not_offered_without_burn_rule():
    ctrl = _controller([1, 3])
    assert ctrl.can_burn() is False
    assert await ctrl.burn() == ActionOutcome.NOOP


# --- rendering ---


def test_render_without_permission_has_no_buttons():
    ctrl = _controller([3, 5])
    html = ctrl.render(can_modify=False)
    assert "roll-container" in html
    assert "roll-row-original" in html
    assert "roll-buttons" not in html


def test_render_buff_button():
    html = _controller([3, 5]).render(can_modify=True)
    assert "roll-buff-btn" in html
    assert "roll-confirm-btn" not in html


def test_render_confirm_button_and_confirm_row():
    ctrl = _controller([6], die=ScriptedDie(4))
    assert "roll-confirm-btn" in ctrl.render(True)
    assert "roll-confirm-row" not in ctrl.render(True)


async def test_render_confirmation_row_after_confirm():
    ctrl = _controller([6], die=ScriptedDie(4))
    await ctrl.confirm()
    html = ctrl.render(True)
    assert "roll-confirm-header" in html
    assert "roll-confirm-row" in html


def test_all_ones_without_burn_has_no_buttons_row():
    assert "roll-buttons" not in _controller([1, 1]).render(True)


def test_burn_button_disabled_when_pool_empty():
    html = _controller([1, 4], flavor="#magick", pool=HealthPool(0)).render(True)
    assert "roll-burn-btn" in html
    assert "disabled" in html


async def test_render_shows_delta_badge_and_faded_dice():
    ctrl = _controller([2, 4])
    await ctrl.buff()
    html = ctrl.render(True)
    assert "+1" in html
    assert "roll-die--faded" in html
    assert "assets/dice/grey/d6-5.png" in html


def test_flags_carry_snapshot_and_processed_marker():
    ctrl = _controller([3])
    flags = ctrl.flags({"ezd6Meta": {"kind": "save"}})
    assert flags["processed"] is True
    assert flags["rollState"]["originalDice"] == [3]
    assert flags["ezd6Meta"] == {"kind": "save"}


def test_sync_rehydrates_from_persisted_snapshot():
    ctrl = _controller([3, 4])
    snapshot = dict(ctrl.state.to_snapshot(), deltaDice=[0, 1])
    ctrl.sync(_message([3, 4], flags={"rollState": snapshot}))
    assert ctrl.state.effective_dice() == [3, 5]


# --- actor pools ---


async def _roll(runtime, author, actor, faces, flavor="Roll #default"):
    return await runtime.store.create_child(
        "world",
        author.id,
        flavor=flavor,
        dice=faces,
        actor_id=actor.id,
    )


def _for(runtime, message):
    return RollController.from_message(
        message,
        store=runtime.store,
        health_pool=runtime.health_pool,
        roll_die=runtime.roll_die,
    )


async def test_buff_spends_karma(runtime, db_session):
    user = await make_user(db_session, "karma_user")
    actor = await make_actor(db_session, user, resources=[("Karma", "#karma", 2, 3)])
    ctrl = _for(runtime, await _roll(runtime, user, actor, [4]))
    assert await ctrl.buff() == ActionOutcome.APPLIED
    assert await resource_value(runtime, actor.id, "#karma") == 1


async def test_buff_aborts_without_karma(runtime, db_session):
    user = await make_user(db_session, "broke_user")
    actor = await make_actor(db_session, user, resources=[("Karma", "#karma", 0, 3)])
    ctrl = _for(runtime, await _roll(runtime, user, actor, [4]))
    assert 'disabled' in ctrl.render(True)
    assert await ctrl.buff() == ActionOutcome.NOOP
    assert ctrl.state.delta_dice == [0]
    assert await resource_value(runtime, actor.id, "#karma") == 0


async def test_buff_takes_stress(runtime, db_session):
    user = await make_user(db_session, "stress_user")
    actor = await make_actor(db_session, user, resources=[("Stress", "#stress", 0, 5)])
    ctrl = _for(runtime, await _roll(runtime, user, actor, [3]))
    assert await ctrl.buff() == ActionOutcome.APPLIED
    assert await resource_value(runtime, actor.id, "#stress") == 1


async def test_burn_spends_health_pool(runtime, db_session):
    user = await make_user(db_session, "health_user")
    actor = await make_actor(db_session, user, resources=[("Health", "#health", 1, 3)])
    ctrl = _for(runtime, await _roll(runtime, user, actor, [1, 1, 5], flavor="#magick"))
    assert await ctrl.burn() == ActionOutcome.APPLIED
    assert await resource_value(runtime, actor.id, "#health") == 0
    ctrl.sync(await runtime.store.require(ctrl.message_id))
    assert await ctrl.burn() == ActionOutcome.NOOP
    assert ctrl.state.burned_ones == [True, False, False]
    assert runtime.health_pool.value == 3


async def test_second_client_cannot_spend_karma_already_taken(runtime, db_session):
    user = await make_user(db_session, "race_karma")
    actor = await make_actor(db_session, user, resources=[("Karma", "#karma", 1, 3)])
    message = await _roll(runtime, user, actor, [3])
    first, second = _for(runtime, message), _for(runtime, message)

    assert await first.buff() == ActionOutcome.APPLIED
    assert await second.buff() == ActionOutcome.NOOP
    assert second.state.delta_dice == [0]
    assert await resource_value(runtime, actor.id, "#karma") == 0


async def test_second_client_cannot_burn_with_health_already_taken(runtime, db_session):
    user = await make_user(db_session, "race_health")
    actor = await make_actor(db_session, user, resources=[("Health", "#health", 1, 3)])
    message = await _roll(runtime, user, actor, [1, 4], flavor="#magick")
    first, second = _for(runtime, message), _for(runtime, message)

    assert await first.burn() == ActionOutcome.APPLIED
    assert await second.burn() == ActionOutcome.NOOP
    assert second.state.burned_ones == [False, False]
    assert await resource_value(runtime, actor.id, "#health") == 0
