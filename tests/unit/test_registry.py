"""Campaign and session registry tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import DM
from sqlalchemy.ext.asyncio import AsyncSession

from tavern.audit.service import Actor
from tavern.campaigns.service import get_campaign, join_campaign, list_campaigns
from tavern.campaigns.session_service import (
    SessionStatus,
    add_player_to_session,
    create_session,
    delete_session,
    list_sessions,
    remove_player_from_session,
    set_session_status,
    update_session,
)
from tavern.errors import DuplicateError, NotFoundError, ValidationError

ALICE = Actor(user_id="alice-uid", username="alice")
BOB = Actor(user_id="bob-uid", username="bob")


class TestCampaigns:

    @pytest.mark.asyncio
    async def test_creator_is_dm(self, make_campaign):
        campaign = await make_campaign()
        assert campaign.dm_id == DM.user_id
        assert campaign.dm_name == DM.username
        assert campaign.players == []
        assert campaign.total_sessions == 0
        assert campaign.is_active is True

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, make_campaign):
        with pytest.raises(ValidationError) as exc:
            await make_campaign(name="   ")
        assert exc.value.field == "name"

    @pytest.mark.asyncio
    async def test_character_names_are_unique_case_insensitively(self, db_session: AsyncSession, make_campaign):
        campaign = await make_campaign()
        await join_campaign(db_session, ALICE, campaign.id, "Gandalf")

        with pytest.raises(DuplicateError) as exc:
            await join_campaign(db_session, BOB, campaign.id, "  gANDALF ")
        assert exc.value.resource == "character_name"

        updated = await join_campaign(db_session, BOB, campaign.id, "Frodo")
        assert [p.character_name for p in updated.players] == ["Gandalf", "Frodo"]

    @pytest.mark.asyncio
    async def test_same_user_may_join_twice_under_different_names(self, db_session: AsyncSession, make_campaign):
        campaign = await make_campaign()
        await join_campaign(db_session, ALICE, campaign.id, "Gandalf")
        updated = await join_campaign(db_session, ALICE, campaign.id, "Radagast")
        assert [p.user_id for p in updated.players] == [ALICE.user_id, ALICE.user_id]

    @pytest.mark.asyncio
    async def test_join_missing_campaign(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await join_campaign(db_session, ALICE, "missing", "Gandalf")

    @pytest.mark.asyncio
    async def test_list_campaigns_for_user(self, db_session: AsyncSession, make_campaign):
        run_by_dm = await make_campaign(name="DM Campaign")
        run_by_alice = await make_campaign(name="Alice Campaign", actor=ALICE)
        await join_campaign(db_session, BOB, run_by_alice.id, "Frodo")

        assert {c.id for c in await list_campaigns(db_session)} == {run_by_dm.id, run_by_alice.id}
        assert [c.id for c in await list_campaigns(db_session, user_id=BOB.user_id)] == [run_by_alice.id]
        assert [c.id for c in await list_campaigns(db_session, user_id=DM.user_id)] == [run_by_dm.id]


class TestSessions:

    @pytest.mark.asyncio
    async def test_session_numbers_are_never_reused(self, db_session: AsyncSession, make_campaign, make_session):
        campaign = await make_campaign()
        sessions = [await make_session(campaign.id) for _ in range(3)]
        assert [s.session_number for s in sessions] == [1, 2, 3]

        await delete_session(db_session, DM, sessions[1].id)
        fourth = await make_session(campaign.id)
        assert fourth.session_number == 4

        remaining = await list_sessions(db_session, campaign.id)
        assert [s.session_number for s in remaining] == [1, 3, 4]

    @pytest.mark.asyncio
    async def test_total_sessions_tracks_live_sessions(self, db_session: AsyncSession, make_campaign, make_session):
        campaign = await make_campaign()
        first = await make_session(campaign.id)
        await make_session(campaign.id)
        assert (await get_campaign(db_session, campaign.id)).total_sessions == 2

        await delete_session(db_session, DM, first.id)
        refreshed = await get_campaign(db_session, campaign.id)
        assert refreshed.total_sessions == 1
        assert refreshed.session_sequence == 2
        assert refreshed.last_session_date is not None

    @pytest.mark.asyncio
    async def test_new_session_is_scheduled(self, make_campaign, make_session):
        campaign = await make_campaign()
        session = await make_session(campaign.id)
        assert session.status == SessionStatus.SCHEDULED.value
        assert session.dm_id == DM.user_id
        assert session.players == []

    @pytest.mark.asyncio
    async def test_create_session_in_missing_campaign(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await create_session(db_session, DM, "missing", datetime.now(timezone.utc))

    @pytest.mark.asyncio
    async def test_negative_duration_rejected(self, db_session: AsyncSession, make_campaign):
        campaign = await make_campaign()
        with pytest.raises(ValidationError) as exc:
            await create_session(db_session, DM, campaign.id, datetime.now(timezone.utc), duration=-5)
        assert exc.value.field == "duration"

    @pytest.mark.asyncio
    async def test_status_transitions_are_free(self, db_session: AsyncSession, make_campaign, make_session):
        campaign = await make_campaign()
        session = await make_session(campaign.id)

        for status in ["completed", "scheduled", "cancelled", "active"]:
            session = await set_session_status(db_session, DM, session.id, status)
            assert session.status == status

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, db_session: AsyncSession, make_campaign, make_session):
        campaign = await make_campaign()
        session = await make_session(campaign.id)
        with pytest.raises(ValidationError) as exc:
            await set_session_status(db_session, DM, session.id, "postponed")
        assert exc.value.field == "status"

    @pytest.mark.asyncio
    async def test_update_merges_given_fields(self, db_session: AsyncSession, make_campaign, make_session):
        campaign = await make_campaign()
        session = await make_session(campaign.id)
        await update_session(db_session, DM, session.id, notes="Party wiped")
        updated = await update_session(db_session, DM, session.id, duration=240)
        assert updated.notes == "Party wiped"
        assert updated.duration == 240

    @pytest.mark.asyncio
    async def test_roster_replaces_entry_per_user(self, db_session: AsyncSession, make_campaign, make_session):
        campaign = await make_campaign()
        session = await make_session(campaign.id)

        await add_player_to_session(db_session, DM, session.id, ALICE.user_id, "Gandalf")
        await add_player_to_session(db_session, DM, session.id, BOB.user_id, "Frodo")
        session = await add_player_to_session(db_session, DM, session.id, ALICE.user_id, "Gandalf", attended=False)

        by_user = {p["user_id"]: p for p in session.players}
        assert len(session.players) == 2
        assert by_user[ALICE.user_id]["attended"] is False

        session = await remove_player_from_session(db_session, DM, session.id, BOB.user_id)
        assert [p["user_id"] for p in session.players] == [ALICE.user_id]

    @pytest.mark.asyncio
    async def test_delete_missing_session(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await delete_session(db_session, DM, "missing")
