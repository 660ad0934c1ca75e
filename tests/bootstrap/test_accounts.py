from meshboot.bootstrap.accounts import AccountManager
from meshboot.config.models import ServiceAccount
from meshboot.execution.runner import CommandRunner


def test_new_account_is_created_with_groups_and_password(runner, tmp_path):
    runner.on("id", "-u", rc=1)
    runner.on("getent", "group", "wheel", rc=2)
    acct = ServiceAccount(username="jordan", groups=["wheel", "docker"], password="s3cret")

    warnings = AccountManager(runner, home_root=tmp_path).ensure(acct)

    assert ["useradd", "-m", "-s", "/bin/bash", "jordan"] in runner.calls
    assert ["usermod", "-aG", "docker", "jordan"] in runner.calls
    assert warnings == ["jordan: groups not present: wheel"]
    # password only ever travels on stdin
    assert runner.inputs == [(["chpasswd"], "jordan:s3cret\n")]
    assert not any("s3cret" in " ".join(c) for c in runner.calls)


def test_existing_account_is_not_an_error(runner, tmp_path):
    warnings = AccountManager(runner, home_root=tmp_path).ensure(ServiceAccount(username="actions_user"))
    assert warnings == []
    assert not runner.called("useradd")
    assert ["install", "-d", "-m", "700", "-o", "actions_user", "-g", "actions_user",
            str(tmp_path / "actions_user" / ".ssh")] in runner.calls


def test_authorized_keys_are_merged_without_duplicates(runner, tmp_path):
    keys = tmp_path / "deploy" / ".ssh" / "authorized_keys"
    keys.parent.mkdir(parents=True)
    keys.write_text("ssh-ed25519 AAAA existing\n")
    acct = ServiceAccount(
        username="deploy",
        authorized_keys=["ssh-ed25519 AAAA existing", "ssh-ed25519 BBBB new"],
    )
    mgr = AccountManager(runner, home_root=tmp_path)

    mgr.ensure(acct)
    mgr.ensure(acct)

    assert keys.read_text().splitlines() == ["ssh-ed25519 AAAA existing", "ssh-ed25519 BBBB new"]
    assert ["chmod", "600", str(keys)] in runner.calls


def test_useradd_failure_is_a_warning(runner, tmp_path):
    runner.on("id", rc=1)
    runner.on("useradd", rc=9)
    warnings = AccountManager(runner, home_root=tmp_path).ensure_all(
        [ServiceAccount(username="a"), ServiceAccount(username="b")]
    )
    assert warnings == ["useradd a failed", "useradd b failed"]


def test_dry_run_leaves_authorized_keys_alone(tmp_path):
    runner = CommandRunner(dry_run=True)
    acct = ServiceAccount(username="ats_user", authorized_keys=["ssh-ed25519 AAAA deploy@ci"])

    warnings = AccountManager(runner, home_root=tmp_path).ensure(acct)

    assert warnings == []
    assert not (tmp_path / "ats_user").exists()
