import json
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "API"))

import mp_cli  # noqa: E402
from _fakes import Resp  # noqa: E402


_PROFILES = [
    {"$distinct_id": "u1", "$properties": {"$email": "a@example.com", "$name": "Ann", "plan": "pro"}},
    {"$distinct_id": "u2", "$properties": {"$email": "b@example.com", "age": 40}},
]


def _engage_page(results=_PROFILES, total=2):
    return Resp(200, {"status": "ok", "session_id": "s1", "page": 0, "total": total, "results": results})


def test_profiles_query_json_envelope_and_request(cli_env, fake_http, capsys):
    session = fake_http([_engage_page()])

    rc = mp_cli.main(
        [
            "profiles",
            "query",
            "--where",
            'properties["plan"]=="pro"',
            "--distinct-ids",
            "u1, u2",
            "--properties",
            "$email,$name",
            "--cohort-id",
            "77",
            "--page-size",
            "500",
            "--json",
        ]
    )
    assert rc == 0

    out = json.loads(capsys.readouterr().out)
    assert out == {"total": 2, "count": 2, "results": _PROFILES}

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["base"] == "https://mixpanel.com/api/query/engage"
    assert call["form"] == {
        "project_id": "123",
        "where": 'properties["plan"]=="pro"',
        "distinct_ids": '["u1","u2"]',
        "output_properties": '["$email","$name"]',
        "filter_by_cohort": '{"id":77}',
        "page_size": "500",
        "page": "0",
    }


def test_profiles_query_table_discovers_properties(cli_env, fake_http, capsys):
    fake_http([_engage_page()])

    rc = mp_cli.main(["profiles", "query"])
    assert rc == 0

    out = capsys.readouterr().out.splitlines()
    assert out[0] == "DISTINCT_ID\t$email\t$name\tage\tplan"
    assert out[1] == "u1\ta@example.com\tAnn\t\tpro"
    assert out[2] == "u2\tb@example.com\t\t40\t"
    assert out[-1] == "Showing 2 profiles"


def test_profiles_query_table_uses_requested_properties(cli_env, fake_http, capsys):
    fake_http([_engage_page()])

    rc = mp_cli.main(["profiles", "query", "--properties", "plan"])
    assert rc == 0
    out = capsys.readouterr().out.splitlines()
    assert out[:3] == ["DISTINCT_ID\tplan", "u1\tpro", "u2\t"]


def test_profiles_query_quiet_suppresses_footer(cli_env, fake_http, capsys):
    fake_http([_engage_page()])
    assert mp_cli.main(["profiles", "query", "-q"]) == 0
    assert "Showing" not in capsys.readouterr().out


def test_profiles_query_csv_output(cli_env, fake_http, capsys):
    fake_http([_engage_page()])
    assert mp_cli.main(["profiles", "query", "--properties", "$email,plan", "--csv", "-q"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == ["DISTINCT_ID,$email,plan", "u1,a@example.com,pro", "u2,b@example.com,"]


def test_profiles_query_limit_caps_across_pages(cli_env, fake_http, capsys):
    page0 = [{"$distinct_id": f"u{i}", "$properties": {}} for i in range(2)]
    page1 = [{"$distinct_id": f"u{i}", "$properties": {}} for i in range(2, 4)]
    session = fake_http(
        [
            Resp(200, {"status": "ok", "session_id": "s9", "total": 10, "results": page0}),
            Resp(200, {"status": "ok", "session_id": "s9", "total": 10, "results": page1}),
        ]
    )

    rc = mp_cli.main(["profiles", "query", "--page-size", "2", "--limit", "3", "--json", "count,total"])
    assert rc == 0
    assert json.loads(capsys.readouterr().out) == {"count": 3, "total": 10}
    assert session.calls[1]["form"]["session_id"] == "s9"


def test_profiles_query_no_results(cli_env, fake_http, capsys):
    fake_http([_engage_page(results=[], total=0)])
    assert mp_cli.main(["profiles", "query"]) == 0
    assert capsys.readouterr().out == "No profiles found.\n"


def test_profiles_groups_sends_group_key(cli_env, fake_http, capsys):
    session = fake_http([_engage_page(results=[{"$distinct_id": "acme", "$properties": {"seats": 5}}], total=1)])

    rc = mp_cli.main(["profiles", "groups", "--group-key", "companies", "--region", "in"])
    assert rc == 0

    call = session.calls[0]
    assert call["base"] == "https://in.mixpanel.com/api/query/engage"
    assert call["form"]["data_group_id"] == "companies"
    assert "distinct_ids" not in call["form"]
    assert capsys.readouterr().out.splitlines()[:2] == ["DISTINCT_ID\tseats", "acme\t5"]


def test_profiles_groups_requires_group_key(cli_env):
    with pytest.raises(SystemExit):
        mp_cli.main(["profiles", "groups"])


def test_profiles_query_rejects_bad_page_size(cli_env, fake_http, capsys):
    session = fake_http([])
    rc = mp_cli.main(["profiles", "query", "--page-size", "1001"])
    assert rc == 1
    assert "`--page-size` must be between 1 and 1000" in capsys.readouterr().err
    assert session.calls == []


def test_profiles_query_engage_status_error(cli_env, fake_http, capsys):
    fake_http([Resp(200, {"status": "error", "error": "bad where"})])
    rc = mp_cli.main(["profiles", "query"])
    assert rc == 1
    assert capsys.readouterr().err == 'Error: engage API returned status "error"\n'


def test_profiles_query_missing_project_id(cli_env, fake_http, monkeypatch, capsys):
    monkeypatch.delenv("MP_PROJECT_ID", raising=False)
    session = fake_http([])

    rc = mp_cli.main(["profiles", "query"])
    assert rc == 1
    assert "project ID is required" in capsys.readouterr().err
    assert session.calls == []


def test_profiles_query_missing_credentials(cli_env, fake_http, monkeypatch, capsys):
    monkeypatch.delenv("MP_TOKEN", raising=False)
    fake_http([])

    rc = mp_cli.main(["profiles", "query"])
    assert rc == 1
    assert "service_account and service_secret must be configured" in capsys.readouterr().err


def test_profiles_query_invalid_region(cli_env, fake_http, capsys):
    fake_http([])
    rc = mp_cli.main(["profiles", "query", "--region", "mars"])
    assert rc == 1
    assert "invalid region 'mars'; must be one of: us, eu, in" in capsys.readouterr().err


def test_profiles_query_malformed_token(cli_env, fake_http, monkeypatch, capsys):
    monkeypatch.setenv("MP_TOKEN", "no-colon-here")
    fake_http([])
    rc = mp_cli.main(["profiles", "query"])
    assert rc == 1
    err = capsys.readouterr().err
    assert "MP_TOKEN must be in the format" in err
    assert "no-colon-here" not in err


def test_profiles_query_credentials_from_config(cli_env, fake_http, monkeypatch, capsys):
    monkeypatch.delenv("MP_TOKEN", raising=False)
    monkeypatch.delenv("MP_PROJECT_ID", raising=False)
    cfg_dir = cli_env / ".config" / "mp"
    cfg_dir.mkdir(parents=True)
    (cfg_dir / "config.yaml").write_text(
        "project_id: '999'\nregion: eu\nservice_account: cfg-user\nservice_secret: cfg-secret\n",
        encoding="utf-8",
    )
    session = fake_http([_engage_page()])

    assert mp_cli.main(["profiles", "query", "-q"]) == 0
    call = session.calls[0]
    assert call["base"] == "https://eu.mixpanel.com/api/query/engage"
    assert call["form"]["project_id"] == "999"
    # base64("cfg-user:cfg-secret")
    assert call["headers"]["Authorization"] == "Basic Y2ZnLXVzZXI6Y2ZnLXNlY3JldA=="


def test_flags_override_environment(cli_env, fake_http, monkeypatch):
    monkeypatch.setenv("MP_REGION", "eu")
    session = fake_http([_engage_page()])

    assert mp_cli.main(["profiles", "query", "-q", "-p", "555", "-r", "us"]) == 0
    call = session.calls[0]
    assert call["base"] == "https://mixpanel.com/api/query/engage"
    assert call["form"]["project_id"] == "555"


def test_dotenv_values_are_loaded(cli_env, fake_http, monkeypatch):
    monkeypatch.delenv("MP_PROJECT_ID", raising=False)
    (cli_env / ".env").write_text("MP_PROJECT_ID=4242\n", encoding="utf-8")
    session = fake_http([_engage_page()])

    assert mp_cli.main(["profiles", "query", "-q"]) == 0
    assert session.calls[0]["form"]["project_id"] == "4242"
