from ogamed.accounts import load_accounts
from ogamed.main import accounts_from_args, build_parser, main


def test_env_defaults(monkeypatch):
    monkeypatch.setenv("OGAMED_USERNAME", "env@example.com")
    monkeypatch.setenv("OGAMED_UNIVERSE", "Bellatrix")
    monkeypatch.setenv("OGAMED_TOTP", "JBSWY3DPEHPK3PXP")
    args = build_parser().parse_args(["--password", "pw", "--language", "de"])
    (acc,) = accounts_from_args(args)
    assert (acc.login, acc.universe, acc.lang, acc.totp_secret) == ("env@example.com", "Bellatrix", "de", "JBSWY3DPEHPK3PXP")
    assert args.command == "get_planets"


def test_sample_files_load_back(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["--create-sample-txt"]) == 0
    assert main(["--create-sample-csv"]) == 0
    assert "уже существует" not in capsys.readouterr().out
    assert [a.totp_secret for a in load_accounts(tmp_path / "accounts.txt")] == ["", "JBSWY3DPEHPK3PXP"]
    (acc,) = load_accounts(tmp_path / "accounts.csv")
    assert (acc.label, acc.universe) == ("acc001", "Bellatrix")


def test_missing_account_or_bad_params(monkeypatch):
    monkeypatch.delenv("OGAMED_USERNAME", raising=False)
    assert main([]) == 2
    assert main(["--username", "u", "--password", "p", "--params", "{"]) == 2
