from __future__ import annotations

from pathlib import Path

from accountauth.auth.models import AccountRole
from accountauth.core.clock import FrozenClock
from accountauth.runtime import build_runtime


def test_build_runtime_wires_file_store_from_env(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("MONGODB_URI", raising=False)
    monkeypatch.setenv("ACCOUNTAUTH_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("AUTH_SECRET_KEY", "runtime-secret")
    monkeypatch.setenv("AUTH_BOOTSTRAP_FIRST_USER_AS_ADMIN", "true")

    runtime = build_runtime(
        clock=FrozenClock(), load_env_file=False, configure_logging=False
    )
    result = runtime.accounts.register("Root", "root@x.com", "pw123456", client_ip="::1")

    assert runtime.repository.uses_mongo is False
    assert runtime.config.auth.signing_secret == "runtime-secret"
    assert result.account.role == AccountRole.ADMIN
    assert (tmp_path / "auth_store" / "accounts.json").exists()
