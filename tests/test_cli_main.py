from __future__ import annotations

import io

import pytest

from kanidm_sshkey_fetcher.authorized_keys import END_MARKER, START_MARKER
from kanidm_sshkey_fetcher.cli.main import main
from kanidm_sshkey_fetcher.errors import AccountKeysError, ClientBuildError, TransportError


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(
        "kanidm_sshkey_fetcher.cli.main.DEFAULT_CLIENT_CONFIG_PATH", tmp_path / "etc-kanidm"
    )
    monkeypatch.setattr(
        "kanidm_sshkey_fetcher.cli.main.DEFAULT_CLIENT_CONFIG_PATH_HOME", tmp_path / "home-kanidm"
    )
    monkeypatch.delenv("KANIDM_URL", raising=False)
    monkeypatch.delenv("KANIDM_CA_PATH", raising=False)


def _install_client(monkeypatch, keys: dict[str, object]) -> list:
    built: list = []

    class _Client:
        def __init__(self, config) -> None:  # noqa: ANN001
            self.config = config

        def auth_anonymous(self) -> None:
            pass

        def get_account_ssh_pubkeys(self, account_id: str) -> list[str]:
            result = keys[account_id]
            if isinstance(result, Exception):
                raise result
            return list(result)

    def factory(config):  # noqa: ANN001
        client = _Client(config)
        built.append(client)
        return client

    monkeypatch.setattr("kanidm_sshkey_fetcher.cli.main.build_client", factory)
    return built


def test_prints_keys_for_each_account_in_order(monkeypatch) -> None:
    _install_client(monkeypatch, {"alice": ["ka1", "ka2"], "bob": ["kb1"]})
    out = io.StringIO()
    err = io.StringIO()

    rc = main(["-H", "https://idm.example.com", "bob", "alice"], stdout=out, stderr=err)

    assert rc == 0
    assert out.getvalue() == "kb1\nka1\nka2\n"
    assert err.getvalue() == ""


def test_failed_account_is_skipped_and_file_written(tmp_path, monkeypatch) -> None:
    _install_client(
        monkeypatch,
        {"first": TransportError("connection reset"), "second": ["ssh-key-2"]},
    )
    target = tmp_path / "ssh" / "authorized_keys"
    out = io.StringIO()
    err = io.StringIO()

    rc = main(
        ["-H", "https://idm.example.com", "-m", "-f", str(target), "first", "second"],
        stdout=out,
        stderr=err,
    )

    assert rc == 0
    assert target.read_text(encoding="utf-8") == (
        f"\n{START_MARKER}\nssh-key-2\n\n{END_MARKER}\n"
    )
    assert err.getvalue() == ""


def test_failed_account_is_logged_with_debug(monkeypatch) -> None:
    _install_client(
        monkeypatch,
        {"ghost": AccountKeysError("ssh key lookup failed", account_id="ghost", status_code=404)},
    )
    err = io.StringIO()

    rc = main(["-d", "-H", "https://idm.example.com", "ghost"], stdout=io.StringIO(), stderr=err)

    assert rc == 0
    assert "ghost" in err.getvalue()


def test_config_file_supplies_accounts_and_modify_flag(tmp_path, monkeypatch) -> None:
    built = _install_client(monkeypatch, {"a": ["ka"], "b": ["kb"], "c": ["kc"]})
    target = tmp_path / "authorized_keys"
    target.write_text("ssh-ed25519 AAAAmine me@host\n", encoding="utf-8")
    config_path = tmp_path / "fetcher.toml"
    config_path.write_text(
        "\n".join(
            [
                'uri = "https://idm.example.com"',
                'account_ids = ["b", "c"]',
                "modify_file = true",
                f'authorized_keys = "{target.as_posix()}"',
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    rc = main(["-c", str(config_path), "a"], stdout=io.StringIO(), stderr=io.StringIO())

    assert rc == 0
    assert built[0].config.account_ids == ("a", "b", "c")
    content = target.read_text(encoding="utf-8")
    assert content.startswith("ssh-ed25519 AAAAmine me@host\n")
    assert f"{START_MARKER}\nka\nkb\nkc\n\n{END_MARKER}\n" in content


def test_user_default_config_supplies_server_address(tmp_path, monkeypatch) -> None:
    built = _install_client(monkeypatch, {})
    (tmp_path / "home-kanidm").write_text('uri = "https://from-user-config"\n', encoding="utf-8")

    rc = main([], stdout=io.StringIO(), stderr=io.StringIO())

    assert rc == 0
    assert built[0].config.server_address == "https://from-user-config"


def test_malformed_explicit_config_is_fatal(tmp_path, monkeypatch) -> None:
    built = _install_client(monkeypatch, {})
    config_path = tmp_path / "fetcher.toml"
    config_path.write_text("account_ids = [\n", encoding="utf-8")
    err = io.StringIO()

    rc = main(["-c", str(config_path), "a"], stdout=io.StringIO(), stderr=err)

    assert rc == 1
    assert "config error:" in err.getvalue()
    assert built == []


def test_missing_explicit_config_is_fatal(tmp_path, monkeypatch) -> None:
    _install_client(monkeypatch, {})
    err = io.StringIO()

    rc = main(["-c", str(tmp_path / "missing.toml")], stdout=io.StringIO(), stderr=err)

    assert rc == 1
    assert "config error:" in err.getvalue()


def test_malformed_default_config_is_fatal(tmp_path, monkeypatch) -> None:
    built = _install_client(monkeypatch, {})
    (tmp_path / "etc-kanidm").write_text("uri = \n", encoding="utf-8")
    err = io.StringIO()

    rc = main(["-H", "https://idm.example.com"], stdout=io.StringIO(), stderr=err)

    assert rc == 1
    assert "config error:" in err.getvalue()
    assert built == []


def test_client_build_error_exits_with_client_code(monkeypatch) -> None:
    def factory(config):  # noqa: ANN001
        raise ClientBuildError("failed to read ca certificate /nope.pem")

    monkeypatch.setattr("kanidm_sshkey_fetcher.cli.main.build_client", factory)
    err = io.StringIO()

    rc = main(["-C", "/nope.pem", "a"], stdout=io.StringIO(), stderr=err)

    assert rc == 2
    assert err.getvalue().startswith("client error: failed to read ca certificate")


def test_unwritable_target_exits_with_file_code(tmp_path, monkeypatch) -> None:
    _install_client(monkeypatch, {"a": ["ka"]})
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    err = io.StringIO()

    rc = main(
        ["-H", "https://idm.example.com", "-m", "-f", str(blocker / "authorized_keys"), "a"],
        stdout=io.StringIO(),
        stderr=err,
    )

    assert rc == 3
    assert "file error:" in err.getvalue()


def test_debug_flag_logs_default_config_lookup(tmp_path, monkeypatch) -> None:
    _install_client(monkeypatch, {})
    user_config = tmp_path / "home-kanidm"
    user_config.write_text('uri = "https://from-user-config"\n', encoding="utf-8")
    err = io.StringIO()

    rc = main(["-d"], stdout=io.StringIO(), stderr=err)

    assert rc == 0
    assert f"attempting to use config {user_config}" in err.getvalue()
    assert f"config {tmp_path / 'etc-kanidm'} not present, skipping" in err.getvalue()
