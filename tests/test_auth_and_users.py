from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from autopecas.core.database import Base, get_db
from autopecas.middleware.session import SessionMiddleware
from autopecas.models.audit_log import AuditLog
from autopecas.models.user import User
from autopecas.routers.auth import router as auth_router
from autopecas.routers.users import router as users_router
from autopecas.services.auth import SESSION_COOKIE_NAME, create_session, decode_session
from autopecas.services.passwords import hash_password, verify_password
from autopecas.services.users import (
    default_permissions,
    ensure_can_assign_role,
    ensure_dev_admin,
    has_permission,
)
from tests.fixtures_data import DEV_USER, SELLER_USER, STAFF_PASSWORD

ADMIN_USER = {"id": 3, "email": "admin@autopecasbrasil.com.br", "first_name": "Ana", "role": "administrador", "active": True}
MANAGER_USER = {"id": 4, "email": "gerente@autopecasbrasil.com.br", "first_name": "Gil", "role": "gerente", "active": True}


def _build_app():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    password_hash = hash_password(STAFF_PASSWORD)
    for data in (DEV_USER, SELLER_USER, ADMIN_USER, MANAGER_USER):
        db.add(User(**data, permissions_json=default_permissions(data["role"]), password_hash=password_hash))
    db.commit()

    app = FastAPI()
    app.add_middleware(SessionMiddleware)
    app.include_router(auth_router)
    app.include_router(users_router)
    app.dependency_overrides[get_db] = lambda: db
    return app, db


def _login(app, email):
    client = TestClient(app, base_url="http://localhost")
    response = client.post("/api/auth/login", json={"email": email, "password": STAFF_PASSWORD})
    assert response.status_code == 200
    return client


def test_login_sets_session_cookie_and_returns_user():
    app, db = _build_app()
    client = TestClient(app, base_url="http://localhost")

    response = client.post("/api/auth/login", json={"email": "VENDEDOR@autopecasbrasil.com.br", "password": STAFF_PASSWORD})

    assert response.status_code == 200
    assert response.json()["role"] == "vendedor"
    assert "passwordHash" not in response.json()
    set_cookie = response.headers["set-cookie"]
    assert f"{SESSION_COOKIE_NAME}=" in set_cookie
    assert "httponly" in set_cookie.lower()
    assert client.get("/api/auth/user").json()["email"] == SELLER_USER["email"]
    assert db.query(AuditLog).filter(AuditLog.action == "login_success").count() == 1


def test_protected_route_without_cookie_is_401():
    app, _db = _build_app()

    response = TestClient(app, base_url="http://localhost").get("/api/auth/user")

    assert response.status_code == 401


def test_tampered_cookie_is_rejected():
    app, _db = _build_app()
    client = TestClient(app, base_url="http://localhost")
    client.cookies.set(SESSION_COOKIE_NAME, "not-a-valid-token")

    assert client.get("/api/auth/user").status_code == 401


def test_wrong_password_and_inactive_user_get_same_error():
    app, db = _build_app()
    db.query(User).filter(User.id == MANAGER_USER["id"]).update({User.active: False})
    db.commit()
    client = TestClient(app, base_url="http://localhost")

    wrong = client.post("/api/auth/login", json={"email": SELLER_USER["email"], "password": "errada"})
    inactive = client.post("/api/auth/login", json={"email": MANAGER_USER["email"], "password": STAFF_PASSWORD})
    unknown = client.post("/api/auth/login", json={"email": "nobody@autopecasbrasil.com.br", "password": "x"})

    assert wrong.status_code == inactive.status_code == unknown.status_code == 401
    assert wrong.json()["detail"] == "Credenciais inválidas"


def test_fifth_failure_locks_account_even_for_correct_password():
    app, db = _build_app()
    client = TestClient(app, base_url="http://localhost")
    payload = {"email": SELLER_USER["email"], "password": "errada"}

    statuses = [client.post("/api/auth/login", json=payload).status_code for _ in range(5)]
    locked = client.post("/api/auth/login", json={"email": SELLER_USER["email"], "password": STAFF_PASSWORD})

    assert statuses == [401, 401, 401, 401, 429]
    assert locked.status_code == 429
    assert locked.json()["detail"] == "Muitas tentativas. Tente novamente em alguns minutos."
    assert db.query(AuditLog).filter(AuditLog.action == "login_locked").count() == 2


def test_logout_clears_cookie():
    app, _db = _build_app()
    client = _login(app, SELLER_USER["email"])

    response = client.post("/api/auth/logout")

    assert response.json() == {"ok": True}
    assert client.get("/api/auth/user").status_code == 401


def test_session_token_roundtrip():
    token = create_session({"user_id": 1, "role": "dev"})

    assert decode_session(token)["user_id"] == 1
    assert decode_session(token + "x") is None


def test_password_hash_verifies():
    encoded = hash_password(STAFF_PASSWORD)

    assert verify_password(STAFF_PASSWORD, encoded)
    assert not verify_password("outra", encoded)
    assert not verify_password(STAFF_PASSWORD, None)


def test_seller_cannot_list_users():
    app, _db = _build_app()
    client = _login(app, SELLER_USER["email"])

    assert client.get("/api/users").status_code == 403


def test_invite_then_accept_activates_user():
    app, db = _build_app()
    admin = _login(app, ADMIN_USER["email"])

    invited = admin.post("/api/users", json={"email": "novo@autopecasbrasil.com.br", "firstName": "Novo"})
    assert invited.status_code == 201
    body = invited.json()
    token = body["inviteToken"]
    assert body["inviteUrl"] == f"/invite/{token}"
    assert body["isActive"] is False
    assert body["isInvitePending"] is True
    assert body["permissions"] == default_permissions("vendedor")

    public = TestClient(app, base_url="http://localhost")
    status_before = public.get(f"/api/invite/{token}").json()
    mismatch = public.post(f"/api/invite/{token}/accept", json={"password": "abcdef", "confirmPassword": "abcdeg"})
    weak = public.post(f"/api/invite/{token}/accept", json={"password": "abc"})
    accepted = public.post(f"/api/invite/{token}/accept", json={"password": "abcdef", "confirmPassword": "abcdef"})
    reused = public.get(f"/api/invite/{token}")

    assert status_before["isActivated"] is False
    assert status_before["isExpired"] is False
    assert mismatch.status_code == 400
    assert weak.json()["detail"] == "A senha deve ter pelo menos 6 caracteres"
    assert accepted.status_code == 200
    assert accepted.json()["isActive"] is True
    assert public.get("/api/auth/user").json()["email"] == "novo@autopecasbrasil.com.br"
    assert reused.status_code == 404


def test_expired_invite_cannot_be_accepted():
    app, db = _build_app()
    admin = _login(app, ADMIN_USER["email"])
    token = admin.post("/api/users", json={"email": "tarde@autopecasbrasil.com.br"}).json()["inviteToken"]

    user = db.query(User).filter(User.invite_token == token).one()
    user.invite_expires_at = datetime.now(timezone.utc) - timedelta(days=1)
    db.commit()

    public = TestClient(app, base_url="http://localhost")
    assert public.get(f"/api/invite/{token}").json()["isExpired"] is True
    response = public.post(f"/api/invite/{token}/accept", json={"password": "abcdef"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Convite expirado"


@pytest.mark.parametrize(
    "actor, role, detail",
    [
        (ADMIN_USER, "dev", "Apenas usuários DEV podem criar outros usuários DEV."),
        (MANAGER_USER, "administrador", "Permissão insuficiente para criar administradores."),
    ],
)
def test_role_creation_rules(actor, role, detail):
    app, _db = _build_app()
    client = _login(app, actor["email"])

    response = client.post("/api/users", json={"email": "x@autopecasbrasil.com.br", "role": role})

    assert response.status_code == 403
    assert response.json()["detail"] == detail


def test_duplicate_email_and_invalid_role():
    app, _db = _build_app()
    client = _login(app, DEV_USER["email"])

    duplicate = client.post("/api/users", json={"email": SELLER_USER["email"]})
    invalid = client.post("/api/users", json={"email": "y@autopecasbrasil.com.br", "role": "estagiario"})

    assert duplicate.status_code == 400
    assert duplicate.json()["detail"].startswith("Este email já está em uso")
    assert invalid.json()["detail"] == "Função inválida"


def test_dev_can_create_dev():
    app, _db = _build_app()
    client = _login(app, DEV_USER["email"])

    response = client.post("/api/users", json={"email": "dev2@autopecasbrasil.com.br", "role": "dev"})

    assert response.status_code == 201
    assert response.json()["role"] == "dev"


def test_delete_is_soft_and_guards_self_and_dev():
    app, db = _build_app()
    admin = _login(app, ADMIN_USER["email"])

    self_delete = admin.delete(f"/api/users/{ADMIN_USER['id']}")
    dev_delete = admin.delete(f"/api/users/{DEV_USER['id']}")
    seller_delete = admin.delete(f"/api/users/{SELLER_USER['id']}")

    assert self_delete.status_code == 400
    assert dev_delete.status_code == 403
    assert seller_delete.json() == {"ok": True}
    db.expire_all()
    assert db.query(User).filter(User.id == SELLER_USER["id"]).one().active is False


def test_promote_and_demote():
    app, _db = _build_app()
    admin = _login(app, ADMIN_USER["email"])

    promoted = admin.post(f"/api/admin/users/{SELLER_USER['id']}/promote")
    demoted = admin.post(f"/api/admin/users/{SELLER_USER['id']}/demote")
    demote_dev = admin.post(f"/api/admin/users/{DEV_USER['id']}/demote")

    assert promoted.json()["role"] == "administrador"
    assert promoted.json()["permissions"]["adminAccess"] is True
    assert demoted.json()["role"] == "vendedor"
    assert demote_dev.status_code == 400


def test_manager_cannot_change_roles():
    app, _db = _build_app()
    manager = _login(app, MANAGER_USER["email"])

    response = manager.patch(f"/api/users/{SELLER_USER['id']}/role", json={"role": "gerente"})

    assert response.status_code == 403


def test_permissions_patch_keeps_known_keys_only():
    app, _db = _build_app()
    admin = _login(app, ADMIN_USER["email"])

    response = admin.patch(
        f"/api/users/{SELLER_USER['id']}/permissions",
        json={"permissions": {"editProducts": True, "rootAccess": True}},
    )

    permissions = response.json()["permissions"]
    assert permissions["editProducts"] is True
    assert "rootAccess" not in permissions


def test_profile_update_uses_camel_case():
    app, _db = _build_app()
    seller = _login(app, SELLER_USER["email"])

    response = seller.put("/api/admin/profile", json={"companyName": "Loja do Carlos", "phone": "1199"})

    assert response.json()["companyName"] == "Loja do Carlos"
    assert seller.get("/api/admin/profile").json()["phone"] == "1199"


def test_permission_helpers():
    dev = User(**DEV_USER, permissions_json={})
    manager = User(**MANAGER_USER, permissions_json=default_permissions("gerente"))

    assert has_permission(dev, "apiConfig") is True
    assert has_permission(manager, "adminAccess") is False
    with pytest.raises(PermissionError):
        ensure_can_assign_role(manager, "administrador")
    ensure_can_assign_role(manager, "vendedor")


def test_ensure_dev_admin_is_idempotent():
    _app, db = _build_app()

    created = ensure_dev_admin(db, email="Boot@AutoPecasBrasil.com.br", password="senha-boot")
    again = ensure_dev_admin(db, email="boot@autopecasbrasil.com.br", password="outra")

    assert created.role == "dev"
    assert created.email == "boot@autopecasbrasil.com.br"
    assert again is None
