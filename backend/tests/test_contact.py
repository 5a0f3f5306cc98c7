from app.models.contact_message import MAX_MESSAGE_LENGTH, MAX_SUBJECT_LENGTH
from conftest import auth_headers


def send(client, token, subject="Hello", message="Is anyone there?"):
    return client.post("/api/contact", json={"subject": subject, "message": message},
                       headers=auth_headers(token))


def test_create_message_defaults_sender_details(client, alice):
    response = send(client, alice["token"], subject="  Question  ")
    assert response.status_code == 201
    body = response.json()
    assert body["subject"] == "Question"
    assert body["name"] == "Alice"
    assert body["email"] == "alice@example.com"
    assert body["user_id"] == alice["id"]


def test_message_length_limits(client, alice):
    assert send(client, alice["token"], subject="x" * (MAX_SUBJECT_LENGTH + 1)).status_code == 400
    assert send(client, alice["token"], message="x" * (MAX_MESSAGE_LENGTH + 1)).status_code == 400
    assert send(client, alice["token"], subject="   ").status_code == 400
    assert send(client, alice["token"], subject="x" * MAX_SUBJECT_LENGTH).status_code == 201


def test_users_see_and_edit_only_their_messages(client, alice, bob):
    mine = send(client, alice["token"]).json()
    send(client, bob["token"])

    listing = client.get("/api/contact/mymessages", headers=auth_headers(alice["token"])).json()
    assert [message["id"] for message in listing] == [mine["id"]]

    updated = client.put(f"/api/contact/{mine['id']}", json={"message": "Never mind"},
                         headers=auth_headers(alice["token"]))
    assert updated.status_code == 200
    assert updated.json()["message"] == "Never mind"
    assert updated.json()["subject"] == "Hello"

    foreign = client.put(f"/api/contact/{mine['id']}", json={"message": "hijack"},
                         headers=auth_headers(bob["token"]))
    assert foreign.status_code == 404
    assert client.delete(f"/api/contact/{mine['id']}", headers=auth_headers(bob["token"])).status_code == 404

    deleted = client.delete(f"/api/contact/{mine['id']}", headers=auth_headers(alice["token"]))
    assert deleted.json() == {"message": "Deleted"}
    assert client.get("/api/contact/mymessages", headers=auth_headers(alice["token"])).json() == []


def test_admin_lists_and_deletes_any_message(client, admin, alice):
    message = send(client, alice["token"]).json()

    assert client.get("/api/admin/contact", headers=auth_headers(alice["token"])).status_code == 403
    assert client.delete(f"/api/admin/contact/{message['id']}",
                         headers=auth_headers(alice["token"])).status_code == 403

    listing = client.get("/api/admin/contact", headers=auth_headers(admin["token"])).json()
    assert listing[0]["id"] == message["id"]
    assert listing[0]["user"]["email"] == "alice@example.com"

    response = client.delete(f"/api/admin/contact/{message['id']}", headers=auth_headers(admin["token"]))
    assert response.status_code == 200
    assert client.get("/api/admin/contact", headers=auth_headers(admin["token"])).json() == []
    assert client.delete(f"/api/admin/contact/{message['id']}",
                         headers=auth_headers(admin["token"])).status_code == 404
