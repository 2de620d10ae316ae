"""
Tests for the GET /messages and GET /conversations endpoints.

Tests cover:
- Default pagination and ordering
- limit / offset validation
- Filters (conversation_id, member_id, direction, from)
"""

import pytest

from tests.conftest import add_conversation, add_member, add_message


@pytest.fixture
def seeded(client, db):
    """Two conversations, six messages."""
    member = add_member(db)
    first = add_conversation(db, title="Grace Hopper: hi", minutes=0)
    second = add_conversation(db, title="555-999-0000: yo", minutes=1)
    rows = [
        (first.id, member.id, "+15551234567", "inbound", 0),
        (first.id, None, "+15550001111", "outbound", 1),
        (first.id, member.id, "+15551234567", "inbound", 2),
        (second.id, None, "+15559990000", "inbound", 3),
        (second.id, None, "+15550001111", "outbound", 4),
        (None, None, "+15558887777", "inbound", 5),
    ]
    for conversation_id, member_id, sender, direction, minutes in rows:
        add_message(
            db,
            conversation_id=conversation_id,
            member_id=member_id,
            from_number=sender,
            direction=direction,
            body=f"message {minutes}",
            sid=f"SM{minutes}",
            minutes=minutes,
        )
    return {"client": client, "member": member, "first": first, "second": second}


class TestMessagesBasic:
    def test_empty_database(self, client):
        response = client.get("/messages")

        assert response.status_code == 200
        assert response.json() == {"data": [], "total": 0, "limit": 50, "offset": 0}

    def test_all_messages_in_arrival_order(self, seeded):
        data = seeded["client"].get("/messages").json()

        assert data["total"] == 6
        assert [m["twilio_sid"] for m in data["data"]] == ["SM0", "SM1", "SM2", "SM3", "SM4", "SM5"]

    def test_message_fields(self, seeded):
        msg = seeded["client"].get("/messages").json()["data"][0]

        assert msg["from"] == "+15551234567"
        assert msg["to"] == "+15550001111"
        assert msg["direction"] == "inbound"
        assert msg["status"] == "delivered"
        assert msg["member_id"] == seeded["member"].id
        assert msg["conversation_id"] == seeded["first"].id


class TestMessagesPagination:
    def test_limit_and_offset(self, seeded):
        data = seeded["client"].get("/messages", params={"limit": 2, "offset": 2}).json()

        assert [m["twilio_sid"] for m in data["data"]] == ["SM2", "SM3"]
        assert data["total"] == 6
        assert data["limit"] == 2
        assert data["offset"] == 2

    def test_offset_beyond_total(self, seeded):
        data = seeded["client"].get("/messages", params={"offset": 100}).json()

        assert data["data"] == []
        assert data["total"] == 6

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 101}, {"offset": -1}, {"direction": "sideways"}])
    def test_invalid_query_rejected(self, client, params):
        assert client.get("/messages", params=params).status_code == 422


class TestMessagesFilters:
    def test_by_conversation(self, seeded):
        data = seeded["client"].get("/messages", params={"conversation_id": seeded["second"].id}).json()

        assert data["total"] == 2
        assert all(m["conversation_id"] == seeded["second"].id for m in data["data"])

    def test_by_member(self, seeded):
        data = seeded["client"].get("/messages", params={"member_id": seeded["member"].id}).json()

        assert data["total"] == 2

    def test_by_direction(self, seeded):
        data = seeded["client"].get("/messages", params={"direction": "outbound"}).json()

        assert data["total"] == 2
        assert all(m["direction"] == "outbound" for m in data["data"])

    def test_by_sender(self, seeded):
        data = seeded["client"].get("/messages", params={"from": "+15550001111"}).json()

        assert [m["twilio_sid"] for m in data["data"]] == ["SM1", "SM4"]

    def test_combined(self, seeded):
        params = {"conversation_id": seeded["first"].id, "direction": "inbound"}

        data = seeded["client"].get("/messages", params=params).json()

        assert [m["twilio_sid"] for m in data["data"]] == ["SM0", "SM2"]


class TestConversations:
    def test_listed_most_recently_updated_first(self, seeded):
        data = seeded["client"].get("/conversations").json()

        assert data["total"] == 2
        assert [c["id"] for c in data["data"]] == [seeded["second"].id, seeded["first"].id]

    def test_inbound_message_moves_conversation_to_top(self, seeded):
        client = seeded["client"]
        client.post("/sms/inbound", data={"From": "+15551234567", "Body": "again", "MessageSid": "SM9"})

        data = client.get("/conversations").json()

        assert data["data"][0]["id"] == seeded["first"].id

    def test_filter_by_status(self, client, db):
        add_conversation(db, title="Open")
        add_conversation(db, title="Closed", status="archived")

        data = client.get("/conversations", params={"status": "archived"}).json()

        assert [c["title"] for c in data["data"]] == ["Closed"]
