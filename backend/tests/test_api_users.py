from conftest import bearer


def test_login_returns_token_and_role(client):
    response = client.post("/api/auth/login", json={"username": "admin", "password": "admin1234"})

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["username"] == "admin"
    assert body["user"]["role"] == "Admin"

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["role_id"] == 1


def test_login_with_wrong_password(client):
    response = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    assert response.status_code == 401


def test_invalid_token_is_rejected(client):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.token"})
    assert response.status_code == 401


def test_roles_are_seeded(client, admin_headers):
    roles = client.get("/api/admin/roles", headers=admin_headers).json()
    assert roles == [{"id": 1, "name": "Admin"}, {"id": 2, "name": "Manager"}, {"id": 3, "name": "Staff"}]


def test_admin_creates_user_defaulting_to_staff(client, admin_headers):
    response = client.post("/api/admin/users", json={"username": "barista1", "password": "brew1234"},
                           headers=admin_headers)

    assert response.status_code == 201
    assert response.json()["role"] == "Staff"
    assert response.json()["role_id"] == 3

    login = client.post("/api/auth/login", json={"username": "barista1", "password": "brew1234"})
    assert login.status_code == 200

    usernames = [u["username"] for u in client.get("/api/admin/users", headers=admin_headers).json()]
    assert usernames == ["admin", "barista1"]


def test_duplicate_username_and_unknown_role(client, admin_headers):
    assert client.post("/api/admin/users", json={"username": "admin", "password": "abcd"},
                       headers=admin_headers).status_code == 400
    assert client.post("/api/admin/users", json={"username": "someone", "password": "abcd", "role_id": 9},
                       headers=admin_headers).status_code == 400


def test_short_password_is_rejected(client, admin_headers):
    response = client.post("/api/admin/users", json={"username": "someone", "password": "abc"},
                           headers=admin_headers)
    assert response.status_code == 422


def test_manager_cannot_manage_users(client, manager_headers):
    assert client.get("/api/admin/users", headers=manager_headers).status_code == 403


def test_update_role_and_password(client, make_user, admin_headers):
    user = make_user("barista", role_id=3)

    response = client.patch(f"/api/admin/users/{user.id}", json={"role_id": 2, "password": "newpass1"},
                            headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["role"] == "Manager"
    assert client.post("/api/auth/login", json={"username": "barista", "password": "newpass1"}).status_code == 200


def test_empty_password_on_update_keeps_old_one(client, make_user, admin_headers):
    user = make_user("barista", role_id=3, password="keepme1")

    response = client.patch(f"/api/admin/users/{user.id}", json={"role_id": 3, "password": ""},
                            headers=admin_headers)

    assert response.status_code == 200
    assert client.post("/api/auth/login", json={"username": "barista", "password": "keepme1"}).status_code == 200


def test_last_admin_cannot_be_demoted(client, db, admin_headers):
    import models
    admin = db.query(models.User).filter(models.User.username == "admin").one()

    response = client.patch(f"/api/admin/users/{admin.id}", json={"role_id": 3}, headers=admin_headers)

    assert response.status_code == 400


def test_delete_user(client, make_user, admin_headers):
    user = make_user("barista", role_id=3)

    assert client.delete(f"/api/admin/users/{user.id}", headers=admin_headers).status_code == 200
    assert client.delete(f"/api/admin/users/{user.id}", headers=admin_headers).status_code == 404


def test_admin_cannot_delete_self(client, make_user):
    me = make_user("owner", role_id=1)

    response = client.delete(f"/api/admin/users/{me.id}", headers=bearer("owner", "Admin"))

    assert response.status_code == 400


def test_admin_can_delete_another_admin(client, db, make_user, admin_headers):
    import models
    other = make_user("owner", role_id=1)

    response = client.delete(f"/api/admin/users/{other.id}", headers=admin_headers)

    assert response.status_code == 200
    admins = db.query(models.User).filter(models.User.role_id == 1).all()
    assert [u.username for u in admins] == ["admin"]
