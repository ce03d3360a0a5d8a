import json
import sys
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "API"))

import mp_cli  # noqa: E402
from _fakes import Resp  # noqa: E402


_COHORTS = [
    {"id": 1, "name": "A", "count": 10, "created": "2024-01-01", "description": "first"},
    {"id": 2, "name": "B", "count": 20, "created": "2024-01-02", "description": "second"},
]


def test_parse_http_timeout():
    assert mp_cli._parse_http_timeout("30") == 30.0
    assert mp_cli._parse_http_timeout("5,30") == (5.0, 30.0)
    for bad in ["", "0", "-1", "nan", "5,", ",5", "a,b"]:
        with pytest.raises(ValueError):
            mp_cli._parse_http_timeout(bad)


def test_http_timeout_flag_reaches_session(cli_env, fake_http):
    session = fake_http([Resp(200, [])])
    assert mp_cli.main(["cohorts", "list", "--http-timeout", "5,30"]) == 0
    assert session.calls[0]["timeout"] == (5.0, 30.0)


def test_find_dotenv_path_walks_up(tmp_path):
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    (tmp_path / ".env").write_text("X=1\n", encoding="utf-8")
    assert mp_cli._find_dotenv_path(nested) == (tmp_path / ".env").resolve()


def test_filter_fields():
    assert mp_cli._filter_fields({"a": 1, "b": 2}, ["b", "missing"]) == {"b": 2}
    assert mp_cli._filter_fields([{"a": 1, "b": 2}, 5], ["a"]) == [{"a": 1}, 5]
    assert mp_cli._filter_fields("x", ["a"]) == "x"
    assert mp_cli._filter_fields({"a": 1}, []) == {"a": 1}


def test_json_field_selection_on_list(cli_env, fake_http, capsys):
    fake_http([Resp(200, _COHORTS)])
    assert mp_cli.main(["cohorts", "list", "--json", "id,name"]) == 0
    assert json.loads(capsys.readouterr().out) == [{"id": 1, "name": "A"}, {"id": 2, "name": "B"}]


def test_json_output_is_indented_and_sorted(cli_env, fake_http, capsys):
    fake_http([Resp(200, [{"name": "Ünïcode", "id": 1}])])
    assert mp_cli.main(["cohorts", "list", "--json"]) == 0
    assert capsys.readouterr().out == '[\n  {\n    "id": 1,\n    "name": "Ünïcode"\n  }\n]\n'


def test_jq_emits_each_result(cli_env, fake_http, capsys):
    fake_http([Resp(200, _COHORTS)])
    assert mp_cli.main(["cohorts", "list", "--json", "--jq", ".[].name"]) == 0
    assert capsys.readouterr().out == '"A"\n"B"\n'


def test_jq_syntax_error_is_reported(cli_env, fake_http, capsys):
    fake_http([Resp(200, _COHORTS)])
    assert mp_cli.main(["cohorts", "list", "--json", "--jq", ".["]) == 1
    assert "jq" in capsys.readouterr().err


def test_template_receives_data(cli_env, fake_http, capsys):
    fake_http([Resp(200, _COHORTS)])
    tmpl = "{% for c in data %}{{ c.id }}:{{ c.name }};{% endfor %}"
    assert mp_cli.main(["cohorts", "list", "--json", "--template", tmpl]) == 0
    assert capsys.readouterr().out == "1:A;2:B;"


def test_template_error_is_reported(cli_env, fake_http, capsys):
    fake_http([Resp(200, _COHORTS)])
    assert mp_cli.main(["cohorts", "list", "--json", "--template", "{{ nope.missing }}"]) == 1
    assert "executing template" in capsys.readouterr().err


def test_jq_and_template_require_json(cli_env):
    with pytest.raises(SystemExit) as exc:
        mp_cli.main(["cohorts", "list", "--jq", "."])
    assert exc.value.code == 2

    with pytest.raises(SystemExit) as exc:
        mp_cli.main(["cohorts", "list", "--template", "{{ data }}"])
    assert exc.value.code == 2


def test_invalid_log_level_is_usage_error(cli_env):
    with pytest.raises(SystemExit) as exc:
        mp_cli.main(["version", "--log-level", "LOUD"])
    assert exc.value.code == 2


def test_quiet_from_environment(cli_env, fake_http, monkeypatch, capsys):
    monkeypatch.setenv("MP_QUIET", "1")
    fake_http([Resp(200, [])])
    assert mp_cli.main(["cohorts", "list"]) == 0
    assert capsys.readouterr().out == ""


def test_out_dash_means_stdout(cli_env, fake_http, capsys):
    fake_http([Resp(200, _COHORTS)])
    assert mp_cli.main(["cohorts", "list", "--out", "-", "--csv"]) == 0
    assert capsys.readouterr().out.splitlines()[0] == "ID,NAME,COUNT,CREATED,DESCRIPTION"


def test_out_file_receives_table(cli_env, fake_http, capsys):
    fake_http([Resp(200, _COHORTS)])
    out_path = cli_env / "cohorts.tsv"
    assert mp_cli.main(["cohorts", "list", "--out", str(out_path)]) == 0
    assert capsys.readouterr().out == ""
    assert out_path.read_text(encoding="utf-8").splitlines()[1] == "1\tA\t10\t2024-01-01\tfirst"


def test_debug_trace_from_environment(cli_env, fake_http, monkeypatch, capsys):
    monkeypatch.setenv("MP_DEBUG", "1")
    fake_http([Resp(200, [])])
    assert mp_cli.main(["cohorts", "list"]) == 0
    err = capsys.readouterr().err
    assert "[mp debug] --> POST https://mixpanel.com/api/query/cohorts/list" in err
    assert "svc-secret" not in err


def test_table_on_terminal_uses_aligned_columns():
    class TTY:
        def __init__(self):
            self.chunks = []

        def write(self, s):
            self.chunks.append(s)

        def isatty(self):
            return True

    io = mp_cli._Streams()
    io.out = TTY()
    mp_cli._print_table(io, ["ID", "NAME"], [["1", "Alpha"], ["22", "B"]])
    lines = "".join(io.out.chunks).splitlines()
    assert lines[0].split() == ["ID", "NAME"]
    assert lines[1].split() == ["1", "Alpha"]
    assert "\t" not in "".join(lines)
    # Columns line up.
    assert lines[0].index("NAME") == lines[1].index("Alpha") == lines[2].index("B")


def test_cell_formatting():
    assert mp_cli._cell(None) == ""
    assert mp_cli._cell(True) == "true"
    assert mp_cli._cell(3.0) == "3"
    assert mp_cli._cell(2.5) == "2.5"
    assert mp_cli._cell({"b": 1, "a": [1]}) == '{"a":[1],"b":1}'


def test_template_context_allows_reserved_names(cli_env, fake_http, capsys):
    fake_http([Resp(200, {"self": 1, "data": "own", "x": 2})])
    tmpl = "{{ self }}/{{ data }}/{{ x }}"
    assert mp_cli.main(["pipelines", "status", "--json", "--template", tmpl]) == 0
    assert capsys.readouterr().out == "1/own/2"
