import base64
import uuid

import httpx
import pytest
from sqlalchemy.exc import OperationalError
from starlette.websockets import WebSocketDisconnect

from app.core.security import create_refresh_token
from app.db.session import get_db
from app.main import app
from app.models.booking import Booking
from app.models.message import Message
from app.services import notifications
from app.services.assistant import AssistantClient, get_assistant_client
from app.services.realtime import broker as live_broker

API = "/api/v1"


@pytest.fixture
def override_functions():
    """Route hosted-function calls to an in-memory handler."""
    calls = []

    def install(handler):
        def recording(request):
            calls.append(request)
            return handler(request)

        client = AssistantClient(base_url="http://functions.test", api_key="",
                                 transport=httpx.MockTransport(recording))
        app.dependency_overrides[get_assistant_client] = lambda: client
        return calls

    yield install
    app.dependency_overrides.pop(get_assistant_client, None)


# ---------------------------------------------------------------------------
# Auth and profile
# ---------------------------------------------------------------------------


def test_root(client):
    assert client.get("/").json() == {"Hello": "Avnu"}


def test_register_login_and_profile(client):
    response = client.post(f"{API}/auth/register", json={
        "email": "host@example.com",
        "password": "s3cret-pass",
        "first_name": "Omar",
        "last_name": "Hassan",
        "user_role": "venue-owner",
    })
    assert response.status_code == 201
    assert response.json()["user"]["user_role"] == "venue-owner"

    duplicate = client.post(f"{API}/auth/register", json={
        "email": "host@example.com", "password": "x", "first_name": "Other",
    })
    assert duplicate.status_code == 400

    login = client.post(f"{API}/auth/login", data={"username": "host@example.com", "password": "s3cret-pass"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = client.get(f"{API}/me/", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["email"] == "host@example.com"

    bad = client.post(f"{API}/auth/login", data={"username": "host@example.com", "password": "wrong"})
    assert bad.status_code == 401


def test_update_profile(client, customer, headers_for):
    response = client.patch(f"{API}/me/", json={"phone": "+966500000000"}, headers=headers_for(customer))
    assert response.json()["phone"] == "+966500000000"
    assert response.json()["first_name"] == "Sara"


@pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer not-a-token"}])
def test_protected_routes_need_a_valid_token(client, headers):
    assert client.get(f"{API}/me/notifications", headers=headers).status_code == 401


def test_refresh_token_buys_a_new_pair(client, customer):
    response = client.post(f"{API}/auth/refresh", json={"refresh_token": create_refresh_token(customer.id)})

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["id"] == str(customer.id)
    me = client.get(f"{API}/me/", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200


def test_refresh_and_access_tokens_are_not_interchangeable(client, customer, headers_for):
    refresh_token = create_refresh_token(customer.id)
    assert client.get(f"{API}/me/", headers={"Authorization": f"Bearer {refresh_token}"}).status_code == 401

    access_token = headers_for(customer)["Authorization"].split()[1]
    assert client.post(f"{API}/auth/refresh", json={"refresh_token": access_token}).status_code == 401
    assert client.post(f"{API}/auth/refresh", json={"refresh_token": "garbage"}).status_code == 401


class _OfflineSession:
    def query(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    def rollback(self):
        pass

    def close(self):
        pass


def test_database_outage_renders_error_response(client):
    app.dependency_overrides[get_db] = lambda: _OfflineSession()
    try:
        response = client.post(f"{API}/auth/login", data={"username": "a@example.com", "password": "x"})
    finally:
        app.dependency_overrides.pop(get_db, None)

    assert response.status_code == 503
    assert response.json()["error"] == "backend_unavailable"


# ---------------------------------------------------------------------------
# Venues
# ---------------------------------------------------------------------------


def test_list_and_filter_venues(client, make_venue):
    make_venue(name="Crystal Hall")
    make_venue(name="Budget Room", starting_price=9000, min_capacity=10, max_capacity=40)

    body = client.get(f"{API}/venues/").json()
    assert body["total"] == 2
    assert {v["name"] for v in body["data"]} == {"Crystal Hall", "Budget Room"}

    budget = client.get(f"{API}/venues/", params={"price_range": "budget"}).json()
    assert [v["name"] for v in budget["data"]] == ["Budget Room"]

    crowd = client.get(f"{API}/venues/", params={"guests": 150}).json()
    assert [v["name"] for v in crowd["data"]] == ["Crystal Hall"]

    amenities = client.get(f"{API}/venues/", params=[("amenities", "wifi"), ("amenities", "parking")]).json()
    assert amenities["total"] == 2


def test_venue_detail_is_normalized(client, venue, owner):
    body = client.get(f"{API}/venues/{venue.id}").json()
    assert body["category"] == ["Weddings", "Conferences"]
    assert body["owner_info"]["user_id"] == str(owner.id)


def test_missing_venue_uses_error_body(client):
    response = client.get(f"{API}/venues/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json() == {"error": "not_found", "message": "Venue not found"}


def test_rate_venue(client, venue, customer, headers_for):
    url = f"{API}/venues/{venue.id}/ratings"
    response = client.post(url, json={"rating": 5}, headers=headers_for(customer))
    assert response.status_code == 201
    assert response.json()["rating"] == 4.1

    again = client.post(url, json={"rating": 5}, headers=headers_for(customer))
    assert again.status_code == 409
    assert again.json()["error"] == "conflict"


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


def test_booking_flow(client, db, venue, owner, customer, booking_day, headers_for):
    created = client.post(f"{API}/bookings/", json={
        "venue_id": str(venue.id),
        "booking_date": booking_day.isoformat(),
        "start_time": "18:00",
        "end_time": "23:00",
        "guests": 120,
    }, headers=headers_for(customer))
    assert created.status_code == 201
    booking_id = created.json()["id"]
    assert created.json()["status"] == "pending"

    owner_list = client.get(f"{API}/owner/bookings/", headers=headers_for(owner)).json()
    assert [b["id"] for b in owner_list["data"]] == [booking_id]

    forbidden = client.patch(f"{API}/owner/bookings/{booking_id}/status", json={"status": "confirmed"},
                             headers=headers_for(customer))
    assert forbidden.status_code == 403

    confirmed = client.patch(f"{API}/owner/bookings/{booking_id}/status", json={"status": "confirmed"},
                             headers=headers_for(owner))
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"

    mine = client.get(f"{API}/bookings/", headers=headers_for(customer)).json()
    assert mine["data"][0]["status"] == "confirmed"

    titles = [n["title"] for n in client.get(f"{API}/me/notifications", headers=headers_for(customer)).json()["data"]]
    assert titles == ["Booking Confirmed", "Booking Submitted"]


def test_booking_on_blocked_day_is_refused(client, db, venue, owner, customer, booking_day, headers_for):
    blocked = client.post(f"{API}/owner/venues/{venue.id}/blocked-dates",
                          json={"date": booking_day.isoformat(), "reason": "Private event"},
                          headers=headers_for(owner))
    assert blocked.status_code == 201

    listed = client.get(f"{API}/venues/{venue.id}/blocked-dates").json()
    assert [b["date"] for b in listed] == [booking_day.isoformat()]

    response = client.post(f"{API}/bookings/", json={
        "venue_id": str(venue.id), "booking_date": booking_day.isoformat(), "guests": 80,
    }, headers=headers_for(customer))
    assert response.status_code == 409
    assert db.query(Booking).count() == 0

    removed = client.delete(f"{API}/owner/blocked-dates/{blocked.json()['id']}", headers=headers_for(owner))
    assert removed.status_code == 204


def test_cannot_block_a_booked_day(client, venue, owner, customer, booking_day, make_booking, headers_for):
    make_booking(venue, customer, booking_day, status="confirmed")
    response = client.post(f"{API}/owner/venues/{venue.id}/blocked-dates",
                           json={"date": booking_day.isoformat()}, headers=headers_for(owner))
    assert response.status_code == 409


def test_confirmation_pdf_download(client, venue, customer, booking_day, make_booking, headers_for):
    booking = make_booking(venue, customer, booking_day, status="confirmed")

    response = client.get(f"{API}/bookings/{booking.id}/confirmation.pdf", headers=headers_for(customer))

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert "Avnu_Booking_Crystal_Hall_" in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_invites_go_through_hosted_email(client, venue, customer, booking_day, make_booking, headers_for,
                                         override_functions):
    booking = make_booking(venue, customer, booking_day)
    calls = override_functions(lambda request: httpx.Response(200, json={"ok": True}))

    response = client.post(f"{API}/bookings/{booking.id}/invites",
                           json={"emails": ["a@example.com", "b@example.com"]}, headers=headers_for(customer))

    assert response.json() == {"sent": True}
    assert len(calls) == 2


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def test_notification_read_flags(client, db, customer, headers_for):
    first = notifications.notify(db, customer.id, "One", "m", "system")
    notifications.notify(db, customer.id, "Two", "m", "system")
    headers = headers_for(customer)

    assert client.get(f"{API}/me/notifications/unread-count", headers=headers).json() == {"count": 2}

    marked = client.patch(f"{API}/me/notifications/{first.id}/read", headers=headers)
    assert marked.json()["read"] is True
    assert client.patch(f"{API}/me/notifications/{first.id}/read", headers=headers).status_code == 200

    assert client.patch(f"{API}/me/notifications/read-all", headers=headers).json() == {"marked_read": 1}
    assert client.get(f"{API}/me/notifications", params={"unread_only": True}, headers=headers).json()["total"] == 0


def test_other_users_notification_is_not_found(client, db, customer, owner, headers_for):
    theirs = notifications.notify(db, owner.id, "Private", "m", "system")
    response = client.patch(f"{API}/me/notifications/{theirs.id}/read", headers=headers_for(customer))
    assert response.status_code == 404


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


def test_messaging_round_trip(client, db, venue, customer, owner, headers_for):
    start = client.post(f"{API}/messages/{owner.id}/start",
                        json={"venue_id": str(venue.id), "venue_name": venue.name},
                        headers=headers_for(customer))
    assert start.json()["content"] == "Hi, I'm interested in Crystal Hall."
    again = client.post(f"{API}/messages/{owner.id}/start",
                        json={"venue_id": str(venue.id), "venue_name": venue.name},
                        headers=headers_for(customer))
    assert again.json()["id"] == start.json()["id"]

    sent = client.post(f"{API}/messages/{customer.id}", json={"content": "Welcome!"}, headers=headers_for(owner))
    assert sent.status_code == 201

    assert client.get(f"{API}/messages/unread-count", headers=headers_for(customer)).json() == {"count": 1}
    conversation = client.get(f"{API}/messages/{owner.id}", headers=headers_for(customer)).json()
    assert [m["content"] for m in conversation["messages"]] == ["Hi, I'm interested in Crystal Hall.", "Welcome!"]
    assert conversation["context"]["venue_name"] == "Crystal Hall"
    assert client.get(f"{API}/messages/unread-count", headers=headers_for(customer)).json() == {"count": 0}

    inbox = client.get(f"{API}/messages/", headers=headers_for(owner)).json()
    assert [c["contact"]["name"] for c in inbox] == ["Sara Ali"]


def test_empty_message_is_rejected(client, db, customer, owner, headers_for):
    response = client.post(f"{API}/messages/{owner.id}", json={"content": "   "}, headers=headers_for(customer))
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_input"
    assert db.query(Message).count() == 0


# ---------------------------------------------------------------------------
# Assistant
# ---------------------------------------------------------------------------


def test_assistant_query(client, customer, headers_for, override_functions):
    override_functions(lambda request: httpx.Response(200, json={"answer": "Try Crystal Hall."}))

    response = client.post(f"{API}/assistant/query", json={"query": "Wedding venue in Riyadh?"},
                           headers=headers_for(customer))

    assert response.json()["answer"] == "Try Crystal Hall."


def test_assistant_outage_is_503(client, customer, headers_for, override_functions):
    override_functions(lambda request: httpx.Response(500, json={"error": "down"}))
    response = client.post(f"{API}/assistant/query", json={"query": "hello"}, headers=headers_for(customer))
    assert response.status_code == 503
    assert response.json()["error"] == "backend_unavailable"


def test_speech_returns_audio(client, customer, headers_for, override_functions):
    audio = b"ID3fake"
    override_functions(lambda request: httpx.Response(200, json={"audioContent": base64.b64encode(audio).decode()}))

    response = client.post(f"{API}/assistant/speech", json={"text": "Welcome"}, headers=headers_for(customer))

    assert response.headers["content-type"] == "audio/mpeg"
    assert response.content == audio


# ---------------------------------------------------------------------------
# WebSockets
# ---------------------------------------------------------------------------


def test_notification_socket_pushes_new_rows(client, db, customer, headers_for):
    token = headers_for(customer)["Authorization"].split()[1]
    with client.websocket_connect(f"{API}/ws/notifications?token={token}") as ws:
        ws.send_text("ping")
        assert ws.receive_json() == {"type": "pong"}

        notifications.notify(db, customer.id, "Hello", "m", "system", broker=live_broker)

        event = ws.receive_json()
        assert event["type"] == "INSERT"
        assert event["new"]["title"] == "Hello"


def test_socket_without_token_is_closed(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"{API}/ws/notifications") as ws:
            ws.receive_json()
