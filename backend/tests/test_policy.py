import pytest
from app.core.exceptions import Forbidden, LastAdminProtected, SelfDemotion
from app.models.user import User
from app.services import policy
from conftest import auth_headers


def test_promote_and_demote(client, admin, alice):
    headers = auth_headers(admin["token"])

    promoted = client.post(f"/auth/promote/{alice['id']}", headers=headers)
    assert promoted.status_code == 200
    assert promoted.json()["user"]["role"] == "admin"

    again = client.post(f"/auth/promote/{alice['id']}", headers=headers)
    assert again.status_code == 400
    assert again.json()["detail"] == "User is already an admin"

    demoted = client.post(f"/auth/demote/{alice['id']}", headers=headers)
    assert demoted.status_code == 200
    assert demoted.json()["user"]["role"] == "user"


def test_demote_rejects_non_admin_target(client, admin, alice):
    response = client.post(f"/auth/demote/{alice['id']}", headers=auth_headers(admin["token"]))
    assert response.status_code == 400
    assert response.json()["detail"] == "User is not an admin"


def test_admin_cannot_demote_self(client, admin, alice):
    headers = auth_headers(admin["token"])
    client.post(f"/auth/promote/{alice['id']}", headers=headers)

    response = client.post(f"/auth/demote/{admin['id']}", headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "You cannot demote yourself"


def test_role_changes_require_admin(client, alice, bob):
    response = client.post(f"/auth/promote/{bob['id']}", headers=auth_headers(alice["token"]))
    assert response.status_code == 403


def test_unknown_user_is_not_found(client, admin):
    response = client.post("/auth/promote/9999", headers=auth_headers(admin["token"]))
    assert response.status_code == 404


def test_last_admin_cannot_be_demoted(db_session):
    target = User(name="B", email="b@example.com", hashed_password="x", role="admin")
    db_session.add(target)
    db_session.commit()
    # An acting admin with no row of its own, so `target` is the only admin counted
    acting = User(id=999, name="Operator", email="op@example.com", role="admin")

    with pytest.raises(LastAdminProtected):
        policy.check_demotion(db_session, acting, target)
    assert target.role == "admin"


def test_self_demotion_checked_before_lookup(db_session):
    acting = User(name="A", email="a@example.com", hashed_password="x", role="admin")
    db_session.add(acting)
    db_session.commit()
    with pytest.raises(SelfDemotion):
        policy.demote_to_user(db_session, acting, acting.id)


def test_admin_update_user_fields(client, admin, alice):
    response = client.put(
        f"/api/admin/users/{alice['id']}",
        json={"name": "Alice Admin", "role": "admin"},
        headers=auth_headers(admin["token"]),
    )
    assert response.status_code == 200
    assert response.json()["name"] == "Alice Admin"
    assert response.json()["role"] == "admin"


def test_admin_update_role_changes_use_demotion_guards(client, db_session, admin):
    helper = User(name="Helper", email="helper@example.com", hashed_password="x", role="admin", is_verified=True)
    db_session.add(helper)
    db_session.commit()
    headers = auth_headers(admin["token"])

    first = client.put(f"/api/admin/users/{helper.id}", json={"role": "user"}, headers=headers)
    assert first.status_code == 200
    assert first.json()["role"] == "user"

    second = client.put(f"/api/admin/users/{admin['id']}", json={"role": "user", "name": "Renamed"}, headers=headers)
    assert second.status_code == 400
    assert second.json()["detail"] == "You cannot demote yourself"
    # Nothing from the rejected request was written
    user = db_session.get(User, admin["id"])
    assert user.role == "admin"
    assert user.name == "Admin"


def test_admin_update_rejects_taken_email(client, admin, alice, bob):
    response = client.put(
        f"/api/admin/users/{alice['id']}",
        json={"email": "bob@example.com"},
        headers=auth_headers(admin["token"]),
    )
    assert response.status_code == 400


def test_deactivation_guards(client, admin, alice):
    headers = auth_headers(admin["token"])

    self_deactivate = client.delete(f"/api/admin/users/{admin['id']}", headers=headers)
    assert self_deactivate.status_code == 403

    via_update = client.put(f"/api/admin/users/{admin['id']}", json={"is_active": False}, headers=headers)
    assert via_update.status_code == 403

    response = client.delete(f"/api/admin/users/{alice['id']}", headers=headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Deactivated"


def test_last_active_admin_cannot_be_deactivated(db_session):
    acting = User(name="A", email="a@example.com", hashed_password="x", role="admin")
    target = User(name="B", email="b@example.com", hashed_password="x", role="admin", is_active=False)
    db_session.add_all([acting, target])
    db_session.commit()

    # `acting` is the only active admin; another admin cannot retire them
    with pytest.raises(LastAdminProtected):
        policy.check_deactivation(db_session, target, acting)


def test_require_role_and_ownership():
    user = User(id=1, role="user")
    admin = User(id=2, role="admin")

    with pytest.raises(Forbidden):
        policy.require_role(user, "admin")
    policy.require_role(admin, "admin")

    policy.require_owner_or_admin(user, 1)
    policy.require_owner_or_admin(admin, 1)
    with pytest.raises(Forbidden):
        policy.require_owner_or_admin(user, 2)


def test_require_can_view():
    viewer = User(id=1, role="user")
    admin = User(id=2, role="admin")

    policy.require_can_view(viewer, 1, is_shared=False)
    policy.require_can_view(viewer, 3, is_shared=True)
    with pytest.raises(Forbidden):
        policy.require_can_view(viewer, 3, is_shared=False)
    # Private items stay private to admins as well
    with pytest.raises(Forbidden):
        policy.require_can_view(admin, 3, is_shared=False)


def test_list_users_is_admin_only(client, admin, alice):
    assert client.get("/api/admin/users", headers=auth_headers(alice["token"])).status_code == 403

    response = client.get("/api/admin/users", headers=auth_headers(admin["token"]))
    assert response.status_code == 200
    assert {user["email"] for user in response.json()} == {"admin@example.com", "alice@example.com"}
