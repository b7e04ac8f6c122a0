"""Progress ledger tests: counters, floors, session awards, level-up events."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from conftest import DM
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.achievements.ledger import (
    LEVEL_UP_CHANNEL,
    ProgressScope,
    assign_achievement_to_player,
    award_session_achievement,
    decrement_progress,
    get_campaign_session_awards,
    get_player_progress,
    get_player_session_progress,
    get_session_awards,
    increment_progress,
    set_session_progress,
)
from tavern.audit.service import get_audit_logs
from tavern.errors import DuplicateError, NotFoundError, ValidationError

PLAYER = "player-1"


@pytest_asyncio.fixture
async def setup(make_template, make_campaign, make_session):
    template = await make_template()
    campaign = await make_campaign()
    session = await make_session(campaign.id)
    return template, campaign, session


class TestIncrement:

    @pytest.mark.asyncio
    async def test_five_increments_then_large_decrement(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup

        for _ in range(5):
            record = await increment_progress(db_session, PLAYER, template.id, campaign.id, actor=DM)
        assert record.count == 5
        assert record.current_level == 1

        record = await decrement_progress(db_session, PLAYER, template.id, campaign.id, 10, actor=DM)
        assert record.count == 0
        assert record.current_level == 0

    @pytest.mark.asyncio
    async def test_end_to_end_counter_scenario(self, db_session: AsyncSession, make_template, make_campaign):
        template = await make_template(
            base_points=10,
            upgrades=[
                {"name": "Tier 1", "description": "First", "required_count": 5, "points": 25},
                {"name": "Tier 2", "description": "Second", "required_count": 20, "points": 100},
            ],
        )
        campaign = await make_campaign()

        for _ in range(5):
            record = await increment_progress(db_session, PLAYER, template.id, campaign.id, 1, actor=DM)
        assert (record.count, record.current_level) == (5, 1)

        record = await decrement_progress(db_session, PLAYER, template.id, campaign.id, 10, actor=DM)
        assert (record.count, record.current_level) == (0, 0)

    @pytest.mark.asyncio
    async def test_first_increment_creates_record(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        record = await increment_progress(db_session, PLAYER, template.id, campaign.id, 3, actor=DM)

        assert record.scope == ProgressScope.CAMPAIGN.value
        assert record.count == 3
        assert record.current_level == 0
        assert record.assigned_by == DM.user_id
        assert record.session_id is None

    @pytest.mark.asyncio
    async def test_increments_share_one_record(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        first = await increment_progress(db_session, PLAYER, template.id, campaign.id, actor=DM)
        second = await increment_progress(db_session, PLAYER, template.id, campaign.id, 9, actor=DM)

        assert first.id == second.id
        assert second.count == 10
        assert second.current_level == 2
        assert len(await get_player_progress(db_session, PLAYER, campaign.id)) == 1

    @pytest.mark.asyncio
    async def test_session_scope_is_stamped_with_campaign(self, db_session: AsyncSession, setup):
        template, campaign, session = setup
        record = await increment_progress(
            db_session, PLAYER, template.id, session.id, actor=DM, scope=ProgressScope.SESSION,
        )
        assert record.scope == ProgressScope.SESSION.value
        assert record.session_id == session.id
        assert record.campaign_id == campaign.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("delta", [0, -1])
    async def test_non_positive_delta_rejected(self, db_session: AsyncSession, setup, delta):
        template, campaign, _ = setup
        with pytest.raises(ValidationError) as exc:
            await increment_progress(db_session, PLAYER, template.id, campaign.id, delta, actor=DM)
        assert exc.value.field == "delta"

    @pytest.mark.asyncio
    async def test_unknown_achievement(self, db_session: AsyncSession, setup):
        _, campaign, _ = setup
        with pytest.raises(NotFoundError):
            await increment_progress(db_session, PLAYER, "missing", campaign.id, actor=DM)

    @pytest.mark.asyncio
    async def test_unknown_campaign(self, db_session: AsyncSession, setup):
        template, _, _ = setup
        with pytest.raises(NotFoundError) as exc:
            await increment_progress(db_session, PLAYER, template.id, "missing", actor=DM)
        assert exc.value.resource == "campaign"

    @pytest.mark.asyncio
    async def test_increment_is_audited(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        await increment_progress(db_session, PLAYER, template.id, campaign.id, 2, actor=DM)

        logs = await get_audit_logs(db_session, action="update_achievement", resource_id=template.id)
        assert len(logs) == 1
        assert logs[0].old_value == {"count": 0, "current_level": 0}
        assert logs[0].new_value == {"count": 2, "current_level": 0}
        assert logs[0].user_id == DM.user_id


class TestDecrement:

    @pytest.mark.asyncio
    async def test_decrement_floors_at_zero(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        await increment_progress(db_session, PLAYER, template.id, campaign.id, 2, actor=DM)
        record = await decrement_progress(db_session, PLAYER, template.id, campaign.id, 5, actor=DM)
        assert record.count == 0

    @pytest.mark.asyncio
    async def test_decrement_drops_level(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        await increment_progress(db_session, PLAYER, template.id, campaign.id, 10, actor=DM)
        record = await decrement_progress(db_session, PLAYER, template.id, campaign.id, 1, actor=DM)
        assert record.count == 9
        assert record.current_level == 1

    @pytest.mark.asyncio
    async def test_decrement_without_record_is_noop(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        result = await decrement_progress(db_session, PLAYER, template.id, campaign.id, actor=DM)
        assert result is None
        assert await get_player_progress(db_session, PLAYER, campaign.id) == []


class TestSessionAwards:

    @pytest.mark.asyncio
    async def test_repeated_awards_create_separate_records(self, db_session: AsyncSession, setup):
        template, _, session = setup
        first = await award_session_achievement(db_session, session.id, PLAYER, template.id, 1, actor=DM)
        second = await award_session_achievement(db_session, session.id, PLAYER, template.id, 1, actor=DM)

        assert first.id != second.id
        records = await get_player_session_progress(db_session, session.id, PLAYER)
        assert {r.id for r in records} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_award_uses_absolute_count(self, db_session: AsyncSession, setup):
        template, campaign, session = setup
        record = await award_session_achievement(db_session, session.id, PLAYER, template.id, 10, actor=DM)
        assert record.count == 10
        assert record.current_level == 2
        assert record.campaign_id == campaign.id

    @pytest.mark.asyncio
    async def test_award_in_missing_session(self, db_session: AsyncSession, setup):
        template, _, _ = setup
        with pytest.raises(NotFoundError) as exc:
            await award_session_achievement(db_session, "missing", PLAYER, template.id, 1, actor=DM)
        assert exc.value.resource == "session"

    @pytest.mark.asyncio
    async def test_negative_award_count_rejected(self, db_session: AsyncSession, setup):
        template, _, session = setup
        with pytest.raises(ValidationError):
            await award_session_achievement(db_session, session.id, PLAYER, template.id, -1, actor=DM)

    @pytest.mark.asyncio
    async def test_set_session_progress_rederives_level(self, db_session: AsyncSession, setup):
        template, _, session = setup
        record = await award_session_achievement(db_session, session.id, PLAYER, template.id, 1, actor=DM)

        updated = await set_session_progress(db_session, record.id, 12, actor=DM)
        assert updated.count == 12
        assert updated.current_level == 2

        lowered = await set_session_progress(db_session, record.id, 0, actor=DM)
        assert lowered.current_level == 0

    @pytest.mark.asyncio
    async def test_set_progress_on_campaign_record_is_not_found(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        record = await increment_progress(db_session, PLAYER, template.id, campaign.id, actor=DM)
        with pytest.raises(NotFoundError) as exc:
            await set_session_progress(db_session, record.id, 3, actor=DM)
        assert exc.value.resource == "session_award"

    @pytest.mark.asyncio
    async def test_campaign_awards_and_history(self, db_session: AsyncSession, setup, make_session):
        template, campaign, session = setup
        other_session = await make_session(campaign.id)
        await award_session_achievement(db_session, session.id, PLAYER, template.id, 1, actor=DM)
        await award_session_achievement(db_session, other_session.id, "player-2", template.id, 2, actor=DM)

        awards = await get_campaign_session_awards(db_session, campaign.id)
        assert len(awards) == 2
        history = await get_session_awards(db_session, PLAYER)
        assert [r.session_id for r in history] == [session.id]


class TestAssignToPlayer:

    @pytest.mark.asyncio
    async def test_assign_starts_at_zero(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        record = await assign_achievement_to_player(db_session, template.id, PLAYER, campaign.id, actor=DM)
        assert record.count == 0
        assert record.current_level == 0

    @pytest.mark.asyncio
    async def test_assign_twice_is_duplicate(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        await assign_achievement_to_player(db_session, template.id, PLAYER, campaign.id, actor=DM)
        with pytest.raises(DuplicateError) as exc:
            await assign_achievement_to_player(db_session, template.id, PLAYER, campaign.id, actor=DM)
        assert exc.value.resource == "player_achievement"


class TestLevelUpEvents:

    @pytest.mark.asyncio
    async def test_crossing_threshold_publishes_event(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        redis = AsyncMock()

        await increment_progress(db_session, PLAYER, template.id, campaign.id, 4, actor=DM, redis=redis)
        redis.publish.assert_not_awaited()

        await increment_progress(db_session, PLAYER, template.id, campaign.id, 1, actor=DM, redis=redis)
        redis.publish.assert_awaited_once()
        channel, payload = redis.publish.await_args.args
        assert channel == LEVEL_UP_CHANNEL
        event = json.loads(payload)
        assert event["player_id"] == PLAYER
        assert event["old_level"] == 0
        assert event["new_level"] == 1

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_increment(self, db_session: AsyncSession, setup):
        template, campaign, _ = setup
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")

        record = await increment_progress(db_session, PLAYER, template.id, campaign.id, 5, actor=DM, redis=redis)
        assert record.current_level == 1
