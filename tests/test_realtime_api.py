from fastapi.testclient import TestClient

from app import create_app


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_stats_requires_token(client, make_token):
    response = client.get("/realtime/stats")
    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication token required"

    expired = {"Authorization": f"Bearer {make_token(role='owner', expires_in=-1)}"}
    response = client.get("/realtime/stats", headers=expired)
    assert response.status_code == 401
    assert response.json()["detail"] == "Authentication token expired"


def test_stats_requires_manager_role(client, auth_headers):
    response = client.get("/realtime/stats", headers=auth_headers(user_id="w1", role="waiter"))
    assert response.status_code == 403


def test_stats(client, room_manager, make_connection, auth_headers):
    room_manager.admit(make_connection("w1", "waiter"))
    room_manager.admit(make_connection("c1", "customer"))

    body = client.get("/realtime/stats", headers=auth_headers(role="admin")).json()

    assert body["connections"] == 2
    assert body["rooms"]["tables"] == 1
    assert body["rooms"]["customers"] == 1
    assert body["rooms"]["kitchen"] == 0
    assert body["by_role"]["waiter"] == 1


def test_online(client, room_manager, make_connection, auth_headers):
    conn = make_connection("w1", "waiter")
    room_manager.admit(conn)
    room_manager.set_presence("w1", "on break")

    body = client.get("/realtime/online", headers=auth_headers()).json()

    assert body["count"] == 1
    assert body["users"][0] == {
        "id": "w1",
        "email": "w1@pambazo.test",
        "role": "waiter",
        "socketId": conn.connection_id,
        "status": "on break",
    }


def test_rooms_listing(client, auth_headers):
    body = client.get("/realtime/rooms", headers=auth_headers(user_id="w1", role="waiter")).json()
    assert [room["name"] for room in body["rooms"]][:2] == ["admin", "orders"]
    assert body["accessible"] == ["orders", "tables", "all_staff"]


def test_publish_to_room(client, room_manager, make_connection, auth_headers, events):
    cook = make_connection("k1", "kitchen")
    room_manager.admit(cook)

    response = client.post(
        "/realtime/rooms/inventory/events",
        json={"event": "stock:low", "data": {"item": "tortillas"}},
        headers=auth_headers(),
    )

    assert response.json() == {"found": True, "delivered": 1}
    assert events(cook, "stock:low")[0]["item"] == "tortillas"


def test_publish_to_unknown_room(client, auth_headers):
    response = client.post("/realtime/rooms/bar/events", json={"event": "x"}, headers=auth_headers())
    assert response.status_code == 404


def test_publish_to_roles(client, room_manager, make_connection, auth_headers):
    room_manager.admit(make_connection("w1", "waiter"))

    response = client.post(
        "/realtime/roles/events",
        json={"event": "table-updated", "roles": ["waiter", "kitchen"], "data": {"tableId": 2}},
        headers=auth_headers(),
    )

    assert response.json()["results"] == {
        "waiter": {"found": True, "delivered": 1},
        "kitchen": {"found": True, "delivered": 0},
    }


def test_publish_to_roles_rejects_unknown_role(client, auth_headers):
    response = client.post(
        "/realtime/roles/events",
        json={"event": "x", "roles": ["bartender"]},
        headers=auth_headers(),
    )
    assert response.status_code == 422


def test_system_message(client, room_manager, make_connection, auth_headers, events):
    guest = make_connection("c1", "customer")
    room_manager.admit(guest)

    response = client.post(
        "/realtime/system-message",
        json={"message": "Kitchen closes at 22:00", "level": "warning"},
        headers=auth_headers(),
    )

    assert response.json() == {"delivered": 1}
    assert events(guest, "system:message")[0]["message"] == "Kitchen closes at 22:00"


def test_missing_secret_is_server_error(room_manager, make_token):
    app = create_app(jwt_secret="", room_manager=room_manager)
    with TestClient(app) as client:
        response = client.get("/realtime/stats", headers={"Authorization": f"Bearer {make_token()}"})
    assert response.status_code == 500
    assert response.json()["detail"] == "Server configuration error"
