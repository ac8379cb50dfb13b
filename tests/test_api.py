"""HTTP-level tests: routing, caller identity, error mapping, end-to-end flows."""
import uuid

import httpx
import pytest
import pytest_asyncio

from orbit.api import deps
from orbit.database import get_db
from orbit.main import app
from orbit.models.profile import Profile, UserType


def as_(profile, role=None):
    return {
        "X-Orbit-User-Id": str(profile.id),
        "X-Orbit-User-Role": role or profile.user_type,
    }


@pytest_asyncio.fixture
async def people(session_factory, clock):
    """Committed profiles: Sx sponsors P1, Sy sponsors P2, plus a loner single."""
    sx = Profile(id=uuid.uuid4(), user_type=UserType.MATCHMAKR.value, name="Sam", created_at=clock())
    sy = Profile(id=uuid.uuid4(), user_type=UserType.MATCHMAKR.value, name="Yara", created_at=clock())
    p1 = Profile(
        id=uuid.uuid4(), user_type=UserType.SINGLE.value, name="Priya",
        photos=["https://cdn.orbit.test/priya.jpg"], sponsored_by_id=sx.id, created_at=clock(),
    )
    p2 = Profile(
        id=uuid.uuid4(), user_type=UserType.SINGLE.value, name="Pavel",
        photos=["https://cdn.orbit.test/pavel.jpg"], sponsored_by_id=sy.id, created_at=clock(),
    )
    loner = Profile(id=uuid.uuid4(), user_type=UserType.SINGLE.value, created_at=clock())
    async with session_factory() as session:
        session.add_all([sx, sy])
        await session.flush()
        session.add_all([p1, p2, loner])
        await session.commit()
    return {"sx": sx, "sy": sy, "p1": p1, "p2": p2, "loner": loner}


@pytest_asyncio.fixture
async def client(session_factory, match_service, notifications, conversations, sneak_peeks):
    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _test_db
    app.dependency_overrides[deps.get_match_service] = lambda: match_service
    app.dependency_overrides[deps.get_notification_policy] = lambda: notifications
    app.dependency_overrides[deps.get_conversation_service] = lambda: conversations
    app.dependency_overrides[deps.get_sneak_peek_service] = lambda: sneak_peeks

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://orbit.test") as c:
        yield c
    app.dependency_overrides.clear()


class TestPlumbing:

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_missing_identity_headers(self, client):
        resp = await client.get("/api/v1/notifications")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_role(self, client, people):
        resp = await client.get("/api/v1/notifications", headers=as_(people["sx"], "ADMIN"))
        assert resp.status_code == 401


class TestApprovalFlow:
    """P1 (Sx) and P2 (Sy): one-sided approval, then mutual, then retries."""

    @pytest.mark.asyncio
    async def test_mutual_approval_end_to_end(self, client, people):
        sx, sy, p1, p2 = (people[k] for k in ("sx", "sy", "p1", "p2"))
        pair = {"party_a_id": str(p1.id), "party_b_id": str(p2.id)}

        resp = await client.post(
            "/api/v1/matches/approve", json={**pair, "sponsor_id": str(sx.id)}, headers=as_(sx)
        )
        assert resp.status_code == 200
        assert resp.json()["newly_approved"] is False
        assert resp.json()["match"]["approved_at"] is None

        resp = await client.get("/api/v1/matches/can-chat", params=pair, headers=as_(p1))
        assert resp.json() == {"can_chat": False}

        resp = await client.get("/api/v1/matches/status", params=pair, headers=as_(sx))
        assert resp.json()["status"] == "pending"

        for _ in range(3):  # retried by a flaky client
            resp = await client.post(
                "/api/v1/matches/approve", json={**pair, "sponsor_id": str(sy.id)}, headers=as_(sy)
            )
            assert resp.status_code == 200
            assert resp.json()["match"]["is_approved"] is True

        resp = await client.get("/api/v1/matches/can-chat", params=pair, headers=as_(p2))
        assert resp.json() == {"can_chat": True}

        for sponsor in (sx, sy):
            resp = await client.get("/api/v1/notifications", headers=as_(sponsor))
            intros = [n for n in resp.json() if n["type"] == "introduction_live"]
            assert len(intros) == 1

        resp = await client.get(f"/api/v1/matches/for-party/{p1.id}", headers=as_(p1))
        assert len(resp.json()) == 1

    @pytest.mark.asyncio
    async def test_approving_for_someone_else(self, client, people):
        resp = await client.post(
            "/api/v1/matches/approve",
            json={
                "party_a_id": str(people["p1"].id),
                "party_b_id": str(people["p2"].id),
                "sponsor_id": str(people["sy"].id),
            },
            headers=as_(people["sx"]),
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "not_authorized"

    @pytest.mark.asyncio
    async def test_party_without_sponsor(self, client, people):
        sx = people["sx"]
        resp = await client.post(
            "/api/v1/matches/approve",
            json={
                "party_a_id": str(people["p1"].id),
                "party_b_id": str(people["loner"].id),
                "sponsor_id": str(sx.id),
            },
            headers=as_(sx),
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "invalid_state"

    @pytest.mark.asyncio
    async def test_singles_cannot_approve(self, client, people):
        p1 = people["p1"]
        resp = await client.post(
            "/api/v1/matches/approve",
            json={"party_a_id": str(p1.id), "party_b_id": str(people["p2"].id), "sponsor_id": str(p1.id)},
            headers=as_(p1),
        )
        assert resp.status_code == 403


class TestMatchVisibility:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("viewer, allowed", [
        ("p1", True), ("sx", True), ("p2", False), ("sy", False), ("loner", False),
    ])
    async def test_party_history(self, client, people, viewer, allowed):
        resp = await client.get(
            f"/api/v1/matches/for-party/{people['p1'].id}", headers=as_(people[viewer])
        )
        assert resp.status_code == (200 if allowed else 403)

    @pytest.mark.asyncio
    async def test_can_chat_limited_to_parties_and_sponsors(self, client, people):
        params = {"party_a_id": str(people["p1"].id), "party_b_id": str(people["p2"].id)}
        for viewer in ("p1", "p2", "sx", "sy"):
            resp = await client.get("/api/v1/matches/can-chat", params=params, headers=as_(people[viewer]))
            assert resp.status_code == 200
        resp = await client.get("/api/v1/matches/can-chat", params=params, headers=as_(people["loner"]))
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_system_caller_sees_everything(self, client, people):
        resp = await client.get(
            f"/api/v1/matches/for-party/{people['p2'].id}",
            headers=as_(people["loner"], "SYSTEM"),
        )
        assert resp.status_code == 200


class TestSneakPeekFlow:

    @pytest.mark.asyncio
    async def test_preview_lifecycle(self, client, people):
        sx, p1, p2 = people["sx"], people["p1"], people["p2"]

        resp = await client.post(
            "/api/v1/sneak-peeks",
            json={"recipient_party_id": str(p1.id), "target_party_id": str(p2.id)},
            headers=as_(sx),
        )
        assert resp.status_code == 201
        peek_id = resp.json()["id"]
        assert resp.json()["photo_url"] == "https://cdn.orbit.test/pavel.jpg"

        resp = await client.get("/api/v1/sneak-peeks", params={"for": "single"}, headers=as_(p1))
        assert [p["id"] for p in resp.json()] == [peek_id]

        resp = await client.patch(
            f"/api/v1/sneak-peeks/{peek_id}", json={"status": "EXPIRED"}, headers=as_(p1)
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "forbidden_transition"

        resp = await client.patch(
            f"/api/v1/sneak-peeks/{peek_id}", json={"status": "NOT_SURE_YET"}, headers=as_(p1)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "NOT_SURE_YET"

        resp = await client.patch(
            f"/api/v1/sneak-peeks/{peek_id}", json={"status": "OPEN_TO_IT"}, headers=as_(p1)
        )
        assert resp.status_code == 409

        resp = await client.get("/api/v1/sneak-peeks", params={"for": "single"}, headers=as_(p1))
        assert resp.json() == []

        resp = await client.get("/api/v1/sneak-peeks", params={"for": "sponsor"}, headers=as_(sx))
        assert [(p["id"], p["status"]) for p in resp.json()] == [(peek_id, "NOT_SURE_YET")]

    @pytest.mark.asyncio
    async def test_rate_limited(self, client, people, session_factory, clock):
        sx, p1 = people["sx"], people["p1"]
        async with session_factory() as session:
            targets = [
                Profile(
                    id=uuid.uuid4(), user_type=UserType.SINGLE.value,
                    photos=[f"https://cdn.orbit.test/{i}.jpg"], created_at=clock(),
                )
                for i in range(6)
            ]
            session.add_all(targets)
            await session.commit()

        codes = []
        for target in targets:
            resp = await client.post(
                "/api/v1/sneak-peeks",
                json={"recipient_party_id": str(p1.id), "target_party_id": str(target.id)},
                headers=as_(sx),
            )
            codes.append(resp.status_code)
        assert codes == [201] * 5 + [429]

    @pytest.mark.asyncio
    async def test_expiry_sweep_is_system_only(self, client, people, clock):
        resp = await client.post("/api/v1/sneak-peeks/expire", headers=as_(people["sx"]))
        assert resp.status_code == 403

        await client.post(
            "/api/v1/sneak-peeks",
            json={"recipient_party_id": str(people["p1"].id), "target_party_id": str(people["p2"].id)},
            headers=as_(people["sx"]),
        )
        clock.advance(hours=49)
        resp = await client.post("/api/v1/sneak-peeks/expire", headers=as_(people["sx"], "SYSTEM"))
        assert resp.json() == {"expired": 1}


class TestConversationFlow:

    @pytest.mark.asyncio
    async def test_sponsor_chat(self, client, people):
        sx, sy, p1, p2 = (people[k] for k in ("sx", "sy", "p1", "p2"))

        resp = await client.post(
            "/api/v1/conversations/messages",
            json={"recipient_id": str(sy.id), "content": "Priya and Pavel?",
                  "subject_id": str(p1.id), "target_id": str(p2.id)},
            headers=as_(sx),
        )
        assert resp.status_code == 201
        conv_id = resp.json()["conversation_id"]

        resp = await client.post(
            "/api/v1/conversations",
            json={"other_id": str(sx.id), "subject_id": str(p1.id), "target_id": str(p2.id)},
            headers=as_(sy),
        )
        assert resp.json()["id"] == conv_id

        resp = await client.get("/api/v1/conversations", headers=as_(sy))
        [summary] = resp.json()
        assert summary["unread_count"] == 1
        assert summary["last_message"]["content"] == "Priya and Pavel?"

        resp = await client.post(f"/api/v1/conversations/{conv_id}/read", headers=as_(sy))
        assert resp.json() == {"marked": 1}

        resp = await client.get(f"/api/v1/conversations/{conv_id}/messages", headers=as_(p1))
        assert resp.status_code == 403

        resp = await client.get("/api/v1/notifications", headers=as_(p1))
        assert [n["type"] for n in resp.json()] == ["matchmakr_chat"]

    @pytest.mark.asyncio
    async def test_single_cannot_open_thread_before_match(self, client, people):
        p1, p2 = people["p1"], people["p2"]
        resp = await client.post(
            "/api/v1/conversations",
            json={"other_id": str(p2.id), "subject_id": str(p1.id), "target_id": str(p2.id)},
            headers=as_(p1),
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "not_authorized"
        assert (await client.get("/api/v1/conversations", headers=as_(p1))).json() == []

    @pytest.mark.asyncio
    async def test_single_thread_is_keyed_by_canonical_pair(self, client, people):
        sx, sy, p1, p2 = (people[k] for k in ("sx", "sy", "p1", "p2"))
        pair = {"party_a_id": str(p1.id), "party_b_id": str(p2.id)}
        for sponsor in (sx, sy):
            await client.post(
                "/api/v1/matches/approve",
                json={**pair, "sponsor_id": str(sponsor.id)},
                headers=as_(sponsor),
            )

        hi, lo = sorted([p1.id, p2.id], reverse=True)
        resp = await client.post(
            "/api/v1/conversations",
            json={"other_id": str(p1.id), "subject_id": str(hi), "target_id": str(lo)},
            headers=as_(p2),
        )
        assert resp.status_code == 200
        opened = resp.json()
        assert (opened["context_subject_id"], opened["context_target_id"]) == (str(lo), str(hi))

        resp = await client.post(
            "/api/v1/conversations/messages",
            json={"recipient_id": str(p2.id), "content": "Hi Pavel"},
            headers=as_(p1),
        )
        assert resp.json()["conversation_id"] == opened["id"]

    @pytest.mark.asyncio
    async def test_unknown_conversation_id(self, client, people):
        resp = await client.post(
            "/api/v1/conversations/messages",
            json={"recipient_id": str(people["sy"].id), "content": "hello",
                  "conversation_id": str(uuid.uuid4())},
            headers=as_(people["sx"]),
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_chat_without_context(self, client, people):
        resp = await client.post(
            "/api/v1/conversations/messages",
            json={"recipient_id": str(people["sy"].id), "content": "hello"},
            headers=as_(people["sx"]),
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "context_unresolved"


class TestNotificationEndpoints:

    @pytest.mark.asyncio
    async def test_nudge_and_dismiss(self, client, people):
        loner = people["loner"]
        resp = await client.post("/api/v1/notifications/ensure-nudges", headers=as_(loner))
        assert resp.json() == {"created": 1}
        resp = await client.post("/api/v1/notifications/ensure-nudges", headers=as_(loner))
        assert resp.json() == {"created": 0}

        [nudge] = (await client.get("/api/v1/notifications", headers=as_(loner))).json()
        assert nudge["type"] == "nudge_invite_sponsor"

        resp = await client.post(
            f"/api/v1/notifications/{nudge['id']}/dismiss", headers=as_(people["p1"])
        )
        assert resp.status_code == 403

        resp = await client.post(f"/api/v1/notifications/{nudge['id']}/dismiss", headers=as_(loner))
        assert resp.json()["dismissed_at"] is not None
        assert (await client.get("/api/v1/notifications", headers=as_(loner))).json() == []

    @pytest.mark.asyncio
    async def test_sponsor_login(self, client, people):
        resp = await client.post("/api/v1/notifications/sponsor-login", headers=as_(people["sx"]))
        assert resp.json() == {"created": 1}
        resp = await client.post("/api/v1/notifications/sponsor-login", headers=as_(people["p1"]))
        assert resp.status_code == 403
