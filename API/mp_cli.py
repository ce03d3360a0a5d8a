#!/usr/bin/python3
import argparse
import csv
import json
import math
import os
import sys
import tempfile
import time
import urllib.parse
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path

import jinja2
import jq
from dotenv import load_dotenv
from tabulate import tabulate

import mp
import mp_config

_MAX_PAGE_SIZE = 1000
_MAX_EXPORT_LIMIT = 100000
_PROFILE_SCAN_ROWS = 10
_PROFILE_MAX_COLUMNS = 10
_ACTIVITY_SCAN_EVENTS = 20
_ACTIVITY_MAX_COLUMNS = 5
_ACTIVITY_EXCLUDED_PROPS = {
    "time",
    "distinct_id",
    "$distinct_id",
    "$import",
    "$insert_id",
    "mp_processing_time_ms",
}


def _json_default(obj):
    # Best-effort serialization for values that are not plain JSON.
    try:
        return obj.as_dict()
    except Exception:
        return str(obj)


def _dumps(payload, *, pretty: bool) -> str:
    if pretty:
        return json.dumps(
            payload, indent=2, default=_json_default, sort_keys=True, ensure_ascii=False
        )
    return json.dumps(
        payload, default=_json_default, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _parse_http_timeout(value: str):
    """
    Parse `--http-timeout` as either:
      - "read" (seconds) -> read
      - "connect,read" (seconds) -> (connect, read)
    """
    raw = (value or "").strip()
    if not raw:
        raise ValueError("empty timeout")

    if "," in raw:
        parts = [p.strip() for p in raw.split(",", 1)]
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"invalid timeout format: {value!r}")
        timeouts = (float(parts[0]), float(parts[1]))
    else:
        timeouts = (float(raw),)

    for t in timeouts:
        if not math.isfinite(t):
            raise ValueError("timeouts must be finite")
        if t <= 0:
            raise ValueError("timeouts must be > 0")
    return timeouts if len(timeouts) == 2 else timeouts[0]


def _find_dotenv_path(start: Path | None = None) -> Path | None:
    """
    Find a `.env` file by walking up from `start` (default: CWD).
    """
    cur = (start or Path.cwd()).resolve()
    for p in [cur, *cur.parents]:
        cand = p / ".env"
        if cand.is_file():
            return cand
    return None


def _cli_version() -> str:
    # Prefer the installed distribution version; fall back to the helper's `_VERSION`
    # when running directly from a checkout.
    try:
        return pkg_version("mp-cli")
    except PackageNotFoundError:
        return str(mp._VERSION)


def _atomic_open_text(path: Path, *, encoding: str = "utf-8", newline: str | None = None):
    """
    Open a temp file handle for atomic writes. Caller must write/close, then we replace `path`.
    """
    tmp_fh = tempfile.NamedTemporaryFile(
        mode="w",
        encoding=encoding,
        newline=newline,
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    return tmp_fh, Path(tmp_fh.name)


class _Streams:
    """
    Primary output sink plus display options.

    With `--out`, output goes to a temp file that replaces the target only on `commit()`.
    """

    def __init__(self, out_path: Path | None = None, *, quiet: bool = False, csv_output: bool = False):
        self.quiet = quiet
        self.csv_output = csv_output
        self._out_path = out_path
        self._tmp_path = None
        if out_path is None:
            self.out = sys.stdout
        else:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            self.out, self._tmp_path = _atomic_open_text(out_path, encoding="utf-8", newline="")

    def is_terminal(self) -> bool:
        if self._tmp_path is not None:
            return False
        isatty = getattr(self.out, "isatty", None)
        return bool(callable(isatty) and isatty())

    def write(self, text: str) -> None:
        self.out.write(text)

    def info(self, text: str) -> None:
        # Informational lines; suppressed by --quiet.
        if not self.quiet:
            self.out.write(text + "\n")

    def commit(self) -> None:
        if self._tmp_path is None:
            self.out.flush()
            return
        with self.out:
            self.out.flush()
            try:
                os.fsync(self.out.fileno())
            except OSError:
                pass
        os.replace(self._tmp_path, self._out_path)

    def discard(self) -> None:
        if self._tmp_path is None:
            return
        try:
            self.out.close()
        finally:
            self._tmp_path.unlink(missing_ok=True)


def _split_csv(value: str) -> list[str]:
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


def _to_json_array(items: list[str]) -> str:
    return json.dumps(items, separators=(",", ":"), ensure_ascii=False)


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def _as_float(value) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    return 0.0


def _fmt_int(value) -> str:
    return f"{_as_float(value):.0f}"


def _log_level(args) -> str:
    if getattr(args, "log_level", ""):
        return args.log_level
    if getattr(args, "verbose", 0) >= 2:
        return "DEBUG"
    if getattr(args, "verbose", 0) == 1:
        return "INFO"
    return ""


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


# ---------------------------------------------------------------------------
# Settings / client
# ---------------------------------------------------------------------------


def _resolve_settings(args, cfg: mp_config.Config) -> dict:
    """
    Merge flags, MP_* environment variables and the config file (in that order).
    """

    def pick(flag_value: str, env_key: str, cfg_key: str) -> tuple[str, str]:
        if flag_value:
            return flag_value.strip(), "flag"
        env_value = os.getenv(env_key, "").strip()
        if env_value:
            return env_value, "env"
        cfg_value = cfg.get(cfg_key).strip()
        if cfg_value:
            return cfg_value, "config"
        return "", ""

    project_id, project_src = pick(getattr(args, "project_id", ""), "MP_PROJECT_ID", mp_config.KEY_PROJECT_ID)
    region, region_src = pick(getattr(args, "region", ""), "MP_REGION", mp_config.KEY_REGION)
    region = mp.normalize_region(region) if region else mp.REGION_US

    account, account_src = pick("", "MP_SERVICE_ACCOUNT", mp_config.KEY_SERVICE_ACCOUNT)
    secret, _ = pick("", "MP_SERVICE_SECRET", mp_config.KEY_SERVICE_SECRET)
    credentials_src = account_src if (account and secret) else ""

    token = os.getenv("MP_TOKEN", "")
    if token:
        username, sep, password = token.partition(":")
        if not sep or not username or not password:
            raise mp.ConfigurationError("MP_TOKEN must be in the format `user:secret`")
        account, secret, credentials_src = username, password, "MP_TOKEN"

    return {
        "project_id": project_id,
        "project_id_source": project_src,
        "region": region,
        "region_source": region_src or "default",
        "service_account": account,
        "service_secret": secret,
        "credentials_source": credentials_src,
    }


def _new_client(args, settings: dict) -> mp.Client:
    kwargs = {}
    if getattr(args, "http_timeout", None) is not None:
        kwargs["http_timeout"] = args.http_timeout
    return mp.Client(
        settings["service_account"],
        settings["service_secret"],
        settings["region"],
        settings["project_id"],
        _env_flag("MP_DEBUG"),
        **kwargs,
    )


def _require_project_id(settings: dict) -> str:
    pid = settings.get("project_id", "")
    if not pid:
        raise mp.ConfigurationError(
            "project ID is required; set via `--project-id`, `MP_PROJECT_ID` env, "
            "or `mp config set project_id <id>`"
        )
    return pid


def _fetch_json(client: mp.Client, method: str, family: str, path: str, params, what: str):
    """
    Send, check and decode one request. `what` is "<verb> <noun>", e.g. "listing cohorts".
    """
    try:
        if method == "POST":
            resp = client.post(family, path, params)
        else:
            resp = client.get(family, path, params)
    except mp.TransportError as e:
        raise mp.TransportError(f"{what}: {e}") from e
    body = mp.check_response(resp)
    return mp.decode_json(body, what.split(" ", 1)[-1])


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def _filter_fields(data, fields: list[str]):
    if not fields:
        return data
    if isinstance(data, dict):
        return {f: data[f] for f in fields if f in data}
    if isinstance(data, list):
        return [_filter_fields(item, fields) if isinstance(item, dict) else item for item in data]
    return data


def _apply_jq(io: _Streams, data, expr: str) -> None:
    try:
        program = jq.compile(expr)
    except ValueError as e:
        raise mp.ValidationError(f"parsing jq expression: {e}") from e
    try:
        results = program.input_value(data).all()
    except ValueError as e:
        raise mp.ValidationError(f"jq evaluation: {e}") from e
    for value in results:
        io.write(_dumps(value, pretty=True) + "\n")


def _apply_template(io: _Streams, data, tmpl: str) -> None:
    env = jinja2.Environment(undefined=jinja2.StrictUndefined, keep_trailing_newline=True)
    try:
        template = env.from_string(tmpl)
    except jinja2.TemplateSyntaxError as e:
        raise mp.ValidationError(f"parsing template: {e}") from e
    # Top-level keys of an object response are exposed directly and win over `data`.
    context = {"data": data}
    if isinstance(data, dict):
        context.update(data)
    try:
        io.write(template.render(context))
    except jinja2.TemplateError as e:
        raise mp.ValidationError(f"executing template: {e}") from e


def _handle_json_output(args, io: _Streams, data) -> bool:
    """
    Emit `data` as JSON (through --jq/--template when given) if --json was requested.
    Returns False when the caller should render its default view instead.
    """
    if getattr(args, "json", None) is None:
        return False

    data = _filter_fields(data, _split_csv(args.json))
    if args.jq:
        _apply_jq(io, data, args.jq)
    elif args.template:
        _apply_template(io, data, args.template)
    else:
        io.write(_dumps(data, pretty=True) + "\n")
    return True


def _print_json(io: _Streams, data) -> None:
    io.write(_dumps(data, pretty=True) + "\n")


def _print_table(io: _Streams, headers: list[str], rows: list[list[str]]) -> None:
    if io.csv_output:
        writer = csv.writer(io.out, lineterminator="\n")
        writer.writerow(headers)
        writer.writerows(rows)
        return
    if io.is_terminal():
        io.write(tabulate(rows, headers=headers, tablefmt="plain", disable_numparse=True) + "\n")
        return
    # Piped: tab-separated values.
    io.write("\t".join(headers) + "\n")
    for row in rows:
        io.write("\t".join(row) + "\n")


def _write_ndjson_line(io: _Streams, row) -> None:
    io.write(_dumps(row, pretty=False) + "\n")


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _render_time_series(io: _Streams, result, *, series_key: str, label: str) -> None:
    # {"data": {"series": [dates], "values": {name: {date: count}}}}
    data = result.get("data") if isinstance(result, dict) else None
    if not isinstance(data, dict):
        _print_json(io, result)
        return

    series = data.get("series") if isinstance(data.get("series"), list) else []
    values = data.get("values") if isinstance(data.get("values"), dict) else {}
    if not series or (series_key == "segment" and not values):
        io.info("No data returned.")
        return

    dates = [_cell(d) for d in series]
    names = sorted(values)

    if series_key == "segment" and len(names) != 1:
        headers = ["SEGMENT", *dates]
        rows = []
        for name in names:
            seg = values.get(name) if isinstance(values.get(name), dict) else {}
            rows.append([name, *[_cell(seg[d]) if d in seg else "0" for d in dates]])
        _print_table(io, headers, rows)
        return

    if series_key == "segment":
        headers = ["DATE", "COUNT"]
    else:
        headers = [label, *names]
    rows = []
    for date in dates:
        row = [date]
        for name in names:
            seg = values.get(name) if isinstance(values.get(name), dict) else {}
            row.append(_cell(seg[date]) if date in seg else "0")
        rows.append(row)
    _print_table(io, headers, rows)


def _render_funnel(io: _Streams, result) -> None:
    # {"data": {date: {"steps": [...]}}, "meta": {"dates": [...]}}
    data = result.get("data") if isinstance(result, dict) else None
    if not isinstance(data, dict):
        _print_json(io, result)
        return

    meta = result.get("meta") if isinstance(result.get("meta"), dict) else {}
    dates = [_cell(d) for d in (meta.get("dates") or []) if d is not None]
    if not dates:
        dates = list(data)
    if not dates:
        io.info("No data returned.")
        return

    latest = dates[-1]
    date_data = data.get(latest)
    if not isinstance(date_data, dict):
        date_data = None
        for d in dates:
            if isinstance(data.get(d), dict):
                latest, date_data = d, data[d]
                break
        if date_data is None:
            io.info("No funnel data found.")
            return

    steps = date_data.get("steps")
    if not isinstance(steps, list) or not steps:
        io.info("No funnel steps found.")
        return

    rows = []
    for i, step in enumerate(steps, start=1):
        if not isinstance(step, dict):
            continue
        rows.append(
            [
                str(i),
                str(step.get("event") or ""),
                _fmt_int(step.get("count")),
                f"{_as_float(step.get('overall_conv_ratio')) * 100:.1f}%",
                f"{_as_float(step.get('step_conv_ratio')) * 100:.1f}%",
            ]
        )
    io.info(f"Funnel data for {latest}:\n")
    _print_table(io, ["STEP", "EVENT", "COUNT", "OVERALL %", "STEP %"], rows)


def _render_funnels_list(io: _Streams, funnels) -> None:
    items = [f for f in funnels if isinstance(f, dict)] if isinstance(funnels, list) else []
    if not items:
        io.info("No funnels found.")
        return
    items.sort(key=lambda f: _as_float(f.get("funnel_id")))
    rows = [[_fmt_int(f.get("funnel_id")), str(f.get("name") or "")] for f in items]
    _print_table(io, ["ID", "NAME"], rows)


def _render_retention(io: _Streams, result) -> None:
    # {"2024-01-01": {"counts": [100, 50, 30], "first": 100}, ...}
    entries = {}
    if isinstance(result, dict):
        entries = {d: v for d, v in result.items() if isinstance(v, dict)}
    if not entries:
        io.info("No retention data returned.")
        return

    max_cols = max(
        (len(v["counts"]) for v in entries.values() if isinstance(v.get("counts"), list)),
        default=0,
    )
    headers = ["DATE", "FIRST", *[f"DAY {i}" for i in range(max_cols)]]
    rows = []
    for date in sorted(entries):
        entry = entries[date]
        counts = entry.get("counts") if isinstance(entry.get("counts"), list) else []
        row = [date, _fmt_int(entry.get("first"))]
        row.extend(_cell(counts[i]) if i < len(counts) else "" for i in range(max_cols))
        rows.append(row)
    _print_table(io, headers, rows)


def _render_frequency(io: _Streams, result) -> None:
    # {"data": {"2024-01-01": [50, 30, 20, 10]}}
    data = result.get("data") if isinstance(result, dict) else None
    if not isinstance(data, dict):
        _print_json(io, result)
        return
    if not data:
        io.info("No frequency data returned.")
        return

    max_buckets = max((len(v) for v in data.values() if isinstance(v, list)), default=0)
    headers = ["DATE", *[f"FREQ {i}" for i in range(max_buckets)]]
    rows = []
    for date in sorted(data):
        buckets = data[date]
        if not isinstance(buckets, list):
            continue
        row = [date]
        row.extend(_cell(buckets[i]) if i < len(buckets) else "" for i in range(max_buckets))
        rows.append(row)
    _print_table(io, headers, rows)


def _render_insights(io: _Streams, result) -> None:
    # {"series": {name: {date: count}}, "headers": [dates]}
    series = result.get("series") if isinstance(result, dict) else None
    if not isinstance(series, dict):
        _print_json(io, result)
        return

    dates = [_cell(h) for h in result.get("headers") or []] if isinstance(result.get("headers"), list) else []
    names = sorted(series)
    if not dates and names and isinstance(series[names[0]], dict):
        dates = sorted(series[names[0]])
    if not dates or not names:
        io.info("No insights data returned.")
        return

    rows = []
    for date in dates:
        row = [date]
        for name in names:
            values = series[name] if isinstance(series[name], dict) else {}
            row.append(_cell(values[date]) if date in values else "0")
        rows.append(row)
    _print_table(io, ["DATE", *names], rows)


def _render_profiles(io: _Streams, results: list, properties_flag: str) -> None:
    if not results:
        io.info("No profiles found.")
        return

    props = _split_csv(properties_flag)
    if not props:
        discovered = set()
        for r in results[:_PROFILE_SCAN_ROWS]:
            if isinstance(r, dict) and isinstance(r.get("$properties"), dict):
                discovered.update(r["$properties"])
        props = sorted(discovered)[:_PROFILE_MAX_COLUMNS]

    rows = []
    for r in results:
        r = r if isinstance(r, dict) else {}
        values = r.get("$properties") if isinstance(r.get("$properties"), dict) else {}
        distinct_id = r.get("$distinct_id")
        row = [distinct_id if isinstance(distinct_id, str) else _cell(distinct_id)]
        row.extend(_cell(values.get(p)) for p in props)
        rows.append(row)

    _print_table(io, ["DISTINCT_ID", *props], rows)
    io.info(f"\nShowing {len(results)} profiles")


def _discover_key_properties(events: list) -> list[str]:
    counts: dict[str, int] = {}
    for ev in events[:_ACTIVITY_SCAN_EVENTS]:
        props = ev.get("properties") if isinstance(ev, dict) else None
        if not isinstance(props, dict):
            continue
        for k in props:
            if k not in _ACTIVITY_EXCLUDED_PROPS:
                counts[k] = counts.get(k, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [name for name, _ in ranked[:_ACTIVITY_MAX_COLUMNS]]


def _format_event_time(value) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(int(value), tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, str):
        return value
    return ""


def _render_activity(io: _Streams, result) -> None:
    # {"results": {"events": [{"event": "Page View", "properties": {"time": 1704067200, ...}}]}}
    results = result.get("results") if isinstance(result, dict) else None
    if not isinstance(results, dict):
        _print_json(io, result)
        return

    events = results.get("events")
    if not isinstance(events, list) or not events:
        io.info("No activity found.")
        return

    key_props = _discover_key_properties(events)
    rows = []
    for ev in events:
        if not isinstance(ev, dict):
            continue
        props = ev.get("properties") if isinstance(ev.get("properties"), dict) else {}
        row = [_format_event_time(props.get("time")), str(ev.get("event") or "")]
        row.extend(_cell(props.get(p)) for p in key_props)
        rows.append(row)

    _print_table(io, ["TIME", "EVENT", *key_props], rows)
    io.info(f"\nShowing {len(rows)} events")


def _render_annotations(io: _Streams, result) -> None:
    items = result.get("results") if isinstance(result, dict) else None
    if not isinstance(items, list) or not items:
        io.info("No annotations found.")
        return
    rows = []
    for ann in items:
        if not isinstance(ann, dict):
            continue
        rows.append([_fmt_int(ann.get("id")), str(ann.get("date") or ""), str(ann.get("description") or "")])
    _print_table(io, ["ID", "DATE", "DESCRIPTION"], rows)


def _render_cohorts(io: _Streams, cohorts) -> None:
    items = [c for c in cohorts if isinstance(c, dict)] if isinstance(cohorts, list) else []
    if not items:
        io.info("No cohorts found.")
        return
    items.sort(key=lambda c: _as_float(c.get("id")))
    rows = [
        [
            _fmt_int(c.get("id")),
            str(c.get("name") or ""),
            _cell(c.get("count")),
            str(c.get("created") or ""),
            str(c.get("description") or ""),
        ]
        for c in items
    ]
    _print_table(io, ["ID", "NAME", "COUNT", "CREATED", "DESCRIPTION"], rows)


def _lookup_table_entries(result) -> list[dict]:
    # Either a list, {"results": [...]}, or {name: {...}}.
    if isinstance(result, list):
        return [t for t in result if isinstance(t, dict)]
    if isinstance(result, dict):
        if isinstance(result.get("results"), list):
            return [t for t in result["results"] if isinstance(t, dict)]
        return [dict(v, _key=k) for k, v in result.items() if isinstance(v, dict)]
    return []


def _lookup_table_name(table: dict) -> str:
    if isinstance(table.get("name"), str):
        return table["name"]
    return str(table.get("_key") or "")


def _render_lookup_tables(io: _Streams, result) -> None:
    tables = _lookup_table_entries(result)
    if not tables:
        io.info("No lookup tables found.")
        return
    tables.sort(key=_lookup_table_name)

    rows = []
    for t in tables:
        table_id = t.get("id")
        table_id = table_id if isinstance(table_id, str) else (_fmt_int(table_id) if table_id is not None else "")
        row_count = t.get("rowCount", t.get("row_count"))
        row_count = _fmt_int(row_count) if isinstance(row_count, (int, float)) else ""
        if isinstance(t.get("columnCount"), (int, float)):
            col_count = _fmt_int(t["columnCount"])
        elif isinstance(t.get("columns"), list):
            col_count = str(len(t["columns"]))
        else:
            col_count = ""
        rows.append([_lookup_table_name(t), table_id, row_count, col_count])
    _print_table(io, ["NAME", "ID", "ROWS", "COLUMNS"], rows)


def _render_pipelines(io: _Streams, result) -> None:
    # {"<project id>": [{"name": ..., "frequency": ..., ...}]} or a bare list.
    if isinstance(result, dict):
        raw_jobs = [job for jobs in result.values() if isinstance(jobs, list) for job in jobs]
    elif isinstance(result, list):
        raw_jobs = list(result)
    else:
        raw_jobs = []

    rows = [
        [
            _cell(job.get("name")),
            _cell(job.get("frequency")),
            _cell(job.get("sync_enabled")),
            _cell(job.get("last_dispatched")),
        ]
        for job in raw_jobs
        if isinstance(job, dict)
    ]
    if not rows:
        io.info("No pipeline jobs found.")
        return
    rows.sort(key=lambda r: r[0])
    _print_table(io, ["NAME", "FREQUENCY", "SYNC ENABLED", "LAST DISPATCHED"], rows)


def _render_schema_detail(io: _Streams, schema) -> None:
    if not isinstance(schema, dict):
        _print_json(io, schema)
        return

    io.write(f"Entity Type: {schema.get('entityType') or ''}\n")
    io.write(f"Name:        {schema.get('name') or ''}\n")
    if schema.get("description"):
        io.write(f"Description: {schema['description']}\n")
    io.write("\n")

    schema_json = schema.get("schemaJson")
    if not isinstance(schema_json, dict):
        return
    props = schema_json.get("properties")
    if not isinstance(props, dict) or not props:
        io.info("No properties defined.")
        return

    rows = []
    for name in sorted(props):
        definition = props[name] if isinstance(props[name], dict) else {}
        rows.append([name, str(definition.get("type") or ""), str(definition.get("description") or "")])
    _print_table(io, ["PROPERTY", "TYPE", "DESCRIPTION"], rows)


def _render_schemas(io: _Streams, result, *, detailed: bool) -> None:
    items = result.get("results") if isinstance(result, dict) else None
    if not isinstance(items, list) or not items:
        io.info("No schemas found.")
        return
    if detailed and len(items) == 1:
        _render_schema_detail(io, items[0])
        return

    rows = []
    for schema in items:
        if not isinstance(schema, dict):
            continue
        schema_json = schema.get("schemaJson") if isinstance(schema.get("schemaJson"), dict) else {}
        props = schema_json.get("properties") if isinstance(schema_json.get("properties"), dict) else {}
        rows.append(
            [
                str(schema.get("entityType") or ""),
                str(schema.get("name") or ""),
                str(schema.get("description") or ""),
                str(len(props)),
            ]
        )
    _print_table(io, ["ENTITY TYPE", "NAME", "DESCRIPTION", "PROPERTIES"], rows)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _common_flags() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(add_help=False)
    g = p.add_argument_group("global options")
    g.add_argument("-p", "--project-id", default="", help="Mixpanel project ID (env: MP_PROJECT_ID)")
    g.add_argument("-r", "--region", default="", help="API region: us, eu, in (env: MP_REGION)")
    g.add_argument(
        "-q", "--quiet", action="store_true", help="Suppress non-essential output (env: MP_QUIET)"
    )
    g.add_argument(
        "--json",
        nargs="?",
        const="",
        default=None,
        metavar="FIELDS",
        help="Output JSON; optionally a comma-separated field list",
    )
    g.add_argument("--jq", default="", help="Filter JSON output with a jq expression (requires --json)")
    g.add_argument(
        "--template",
        default="",
        help="Format JSON output with a Jinja2 template (requires --json)",
    )
    g.add_argument("--csv", action="store_true", help="Write tables as CSV")
    g.add_argument("--out", default="", help="Output path (default: stdout)")
    g.add_argument(
        "--http-timeout",
        type=_parse_http_timeout,
        default=None,
        help="HTTP timeouts in seconds: 'read' or 'connect,read' (default: 120)",
    )
    g.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable; maps to INFO/DEBUG)",
    )
    g.add_argument(
        "--log-level",
        default="",
        help="Set log level (DEBUG/INFO/WARNING/ERROR/CRITICAL). Overrides -v/--verbose.",
    )
    return p


def _add_date_range(p: argparse.ArgumentParser, *, required: bool = True) -> None:
    suffix = " (required)" if required else " (optional)"
    p.add_argument("--from", dest="from_date", required=required, default="", help="Start date yyyy-mm-dd" + suffix)
    p.add_argument("--to", dest="to_date", required=required, default="", help="End date yyyy-mm-dd" + suffix)


def build_parser() -> argparse.ArgumentParser:
    common = _common_flags()
    p = argparse.ArgumentParser(
        prog="mp",
        description="Mixpanel CLI - query, export, and inspect Mixpanel data.",
        epilog=(
            "Configuration is stored in ~/.config/mp/config.yaml and can be overridden with flags "
            "or environment variables (MP_PROJECT_ID, MP_REGION, MP_TOKEN)."
        ),
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {_cli_version()}")
    sub = p.add_subparsers(dest="cmd", required=True)

    def leaf(parent, name: str, help_text: str, **kwargs) -> argparse.ArgumentParser:
        return parent.add_parser(name, help=help_text, parents=[common], **kwargs)

    leaf(sub, "version", "Print the version of mp")

    doctor = leaf(sub, "doctor", "Configuration/auth sanity checks (non-destructive)")
    doctor.add_argument(
        "--probe",
        action="store_true",
        help="Attempt a tiny API probe (list cohorts). Requires credentials and a project ID.",
    )

    config = sub.add_parser("config", help="Manage mp configuration")
    config_sub = config.add_subparsers(dest="config_cmd", required=True)
    cfg_set = leaf(config_sub, "set", "Set a configuration value")
    cfg_set.add_argument("key", help="One of: " + ", ".join(mp_config.known_key_names()))
    cfg_set.add_argument("value")
    cfg_get = leaf(config_sub, "get", "Get a configuration value")
    cfg_get.add_argument("key")
    leaf(config_sub, "list", "List all configuration values")

    # query
    query = sub.add_parser("query", help="Run analytics queries against Mixpanel")
    query_sub = query.add_subparsers(dest="query_cmd", required=True)

    q_events = leaf(query_sub, "events", "Query aggregate event counts over time")
    q_events.add_argument("--event", required=True, help="Comma-separated event names (required)")
    q_events.add_argument("--type", dest="query_type", required=True, help="general, unique, average (required)")
    q_events.add_argument("--unit", required=True, help="minute, hour, day, week, month (required)")
    _add_date_range(q_events)

    for name, help_text in (
        ("segmentation", "Query event segmentation data"),
        ("properties", "Query event properties over time"),
    ):
        q = leaf(query_sub, name, help_text)
        q.add_argument("--event", required=True, help="Event name (required)")
        _add_date_range(q)
        q.add_argument("--on", default="", help='Property expression for breakdown (e.g. properties["country"])')
        q.add_argument("--unit", default="", help="minute, hour, day, week, month")
        q.add_argument("--where", default="", help="Filter expression")
        q.add_argument("--type", dest="query_type", default="", help="general, unique, average")
        q.add_argument("--limit", type=int, default=0, help="Maximum number of breakdown values (max 10000)")

    funnels = query_sub.add_parser("funnels", help="Query funnel conversion data")
    funnels_sub = funnels.add_subparsers(dest="funnels_cmd", required=True)
    f_query = leaf(funnels_sub, "query", "Query a specific funnel by ID")
    f_query.add_argument("--funnel-id", type=int, required=True, help="Funnel ID (see 'funnels list')")
    _add_date_range(f_query)
    f_query.add_argument("--length", type=int, default=0, help="Conversion window length")
    f_query.add_argument("--length-unit", default="", help="second, minute, hour, day")
    f_query.add_argument("--unit", default="", help="day, week, month")
    f_query.add_argument("--on", default="", help="Property expression for breakdown")
    f_query.add_argument("--where", default="", help="Filter expression")
    f_query.add_argument("--limit", type=int, default=0, help="Maximum number of breakdown values")
    leaf(funnels_sub, "list", "List all saved funnels")

    q_ret = leaf(query_sub, "retention", "Query user retention data")
    _add_date_range(q_ret)
    q_ret.add_argument("--retention-type", default="", help="birth, compounded")
    q_ret.add_argument("--born-event", default="", help="Birth event name (for birth retention)")
    q_ret.add_argument("--event", default="", help="Return event name")
    q_ret.add_argument("--born-where", default="", help="Filter expression for birth event")
    q_ret.add_argument("--where", default="", help="Filter expression for return event")
    q_ret.add_argument("--interval", type=int, default=0, help="Interval length in units")
    q_ret.add_argument("--interval-count", type=int, default=0, help="Number of intervals to show")
    q_ret.add_argument("--unit", default="", help="day, week, month")
    q_ret.add_argument("--on", default="", help="Property expression for breakdown")
    q_ret.add_argument("--limit", type=int, default=0, help="Maximum number of breakdown values")

    q_freq = leaf(query_sub, "frequency", "Query event frequency (addiction) data")
    _add_date_range(q_freq)
    q_freq.add_argument("--unit", required=True, help="day, week, month (required)")
    q_freq.add_argument("--addiction-unit", required=True, help="hour, day (required)")
    q_freq.add_argument("--event", default="", help="Event name to analyze")
    q_freq.add_argument("--where", default="", help="Filter expression")
    q_freq.add_argument("--on", default="", help="Property expression for breakdown")
    q_freq.add_argument("--limit", type=int, default=0, help="Maximum number of breakdown values")

    q_ins = leaf(query_sub, "insights", "Query a saved Insights report")
    q_ins.add_argument("--bookmark-id", type=int, required=True, help="Saved report bookmark ID")

    # export
    export = sub.add_parser("export", help="Export raw data from Mixpanel")
    export_sub = export.add_subparsers(dest="export_cmd", required=True)
    ex_events = leaf(export_sub, "events", "Export raw events as JSONL")
    _add_date_range(ex_events)
    ex_events.add_argument("--event", default="", help="Comma-separated event names to filter")
    ex_events.add_argument("--where", default="", help="Filter expression")
    ex_events.add_argument("--limit", type=int, default=0, help="Maximum number of events (max 100000)")

    # profiles
    profiles = sub.add_parser("profiles", help="Query user and group profiles")
    profiles_sub = profiles.add_subparsers(dest="profiles_cmd", required=True)
    pr_query = leaf(profiles_sub, "query", "Query user profiles with auto-pagination")
    pr_query.add_argument("--where", default="", help='Filter expression (e.g. user["$email"]=="a@b.c")')
    pr_query.add_argument("--distinct-id", default="", help="Single distinct ID to look up")
    pr_query.add_argument("--distinct-ids", default="", help="Comma-separated list of distinct IDs")
    pr_query.add_argument("--properties", default="", help="Comma-separated output property names")
    pr_query.add_argument("--cohort-id", type=int, default=0, help="Filter by cohort ID")
    pr_query.add_argument("--limit", type=int, default=0, help="Maximum total profiles to fetch (0 = all)")
    pr_query.add_argument("--page-size", type=int, default=_MAX_PAGE_SIZE, help="Profiles per page (max 1000)")

    pr_groups = leaf(profiles_sub, "groups", "Query group profiles with auto-pagination")
    pr_groups.add_argument("--group-key", required=True, help="Group analytics key (e.g. companies)")
    pr_groups.add_argument("--where", default="", help="Filter expression")
    pr_groups.add_argument("--properties", default="", help="Comma-separated output property names")
    pr_groups.add_argument("--limit", type=int, default=0, help="Maximum total profiles to fetch (0 = all)")
    pr_groups.add_argument("--page-size", type=int, default=_MAX_PAGE_SIZE, help="Profiles per page (max 1000)")

    activity = leaf(sub, "activity", "Query user activity stream")
    activity.add_argument("--distinct-ids", required=True, help="Comma-separated distinct IDs (required)")
    _add_date_range(activity)

    annotations = sub.add_parser("annotations", help="Inspect project annotations")
    annotations_sub = annotations.add_subparsers(dest="annotations_cmd", required=True)
    an_list = leaf(annotations_sub, "list", "List annotations")
    _add_date_range(an_list, required=False)
    an_get = leaf(annotations_sub, "get", "Get a specific annotation by ID")
    an_get.add_argument("--id", dest="annotation_id", type=int, required=True, help="Annotation ID")

    cohorts = sub.add_parser("cohorts", help="Inspect cohorts")
    cohorts_sub = cohorts.add_subparsers(dest="cohorts_cmd", required=True)
    leaf(cohorts_sub, "list", "List all cohorts in the project")

    lookup = sub.add_parser("lookup-tables", aliases=["lt"], help="Inspect lookup tables")
    lookup_sub = lookup.add_subparsers(dest="lookup_tables_cmd", required=True)
    leaf(lookup_sub, "list", "List all lookup tables")

    pipelines = sub.add_parser("pipelines", help="Inspect data pipeline jobs")
    pipelines_sub = pipelines.add_subparsers(dest="pipelines_cmd", required=True)
    leaf(pipelines_sub, "list", "List pipeline jobs")
    leaf(pipelines_sub, "status", "Show pipeline status")

    schemas = sub.add_parser("schemas", help="Inspect event and profile schemas")
    schemas_sub = schemas.add_subparsers(dest="schemas_cmd", required=True)
    sc_list = leaf(schemas_sub, "list", "List schemas")
    sc_list.add_argument("--entity-type", default="", help="event, profile")
    sc_list.add_argument("--name", default="", help="Schema name (requires --entity-type)")
    sc_get = leaf(schemas_sub, "get", "Get detailed schema for an event or profile")
    sc_get.add_argument("--entity-type", required=True, help="event, profile (required)")
    sc_get.add_argument("--name", required=True, help="Schema name (required)")

    return p


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_version(args, io: _Streams) -> int:
    v = _cli_version()
    if _handle_json_output(args, io, {"version": v}):
        return 0
    io.write(f"mp version {v}\n")
    return 0


def _cmd_config(args, io: _Streams) -> int:
    cfg = mp_config.Config()

    if args.config_cmd == "set":
        stored = cfg.set(args.key, args.value)
        shown = mp_config.mask(stored) if args.key == mp_config.KEY_SERVICE_SECRET else stored
        io.write(f"{args.key}={shown}\n")
        return 0

    if args.config_cmd == "get":
        value = cfg.get(args.key)
        if not value:
            raise mp_config.ConfigError(
                f"key {args.key!r} is not set; run: mp config set {args.key} <value>"
            )
        io.write(value + "\n")
        return 0

    entries = cfg.list()
    if _handle_json_output(args, io, [e.as_dict() for e in entries]):
        return 0
    if not entries:
        io.info("No configuration set. Run: mp config set <key> <value>")
        io.info(f"Config file: {cfg.file_path}")
        return 0
    _print_table(io, ["KEY", "VALUE"], [[e.key, e.value] for e in entries])
    io.info(f"\nConfig file: {cfg.file_path}")
    return 0


def _cmd_doctor(args, io: _Streams) -> int:
    # Report resolved settings without ever echoing the secret.
    cfg = mp_config.Config()
    settings = _resolve_settings(args, cfg)
    dotenv_path = _find_dotenv_path()

    missing: list[str] = []
    if not settings["project_id"]:
        missing.append("project_id")
    if not settings["credentials_source"]:
        missing.append("credentials")

    payload = {
        "ok": not missing,
        "cwd": str(Path.cwd()),
        "dotenv": str(dotenv_path) if dotenv_path else "",
        "config_file": str(cfg.file_path),
        "checks": {
            "settings": {
                "missing_required": missing,
                "project_id": {
                    "set": bool(settings["project_id"]),
                    "value": settings["project_id"],
                    "source": settings["project_id_source"],
                },
                "region": {"value": settings["region"], "source": settings["region_source"]},
                "service_account": {
                    "set": bool(settings["service_account"]),
                    "value": settings["service_account"],
                },
                "service_secret": {"set": bool(settings["service_secret"])},
                "credentials_source": settings["credentials_source"],
            }
        },
    }

    if args.probe and not missing:
        started = time.monotonic()
        try:
            client = _new_client(args, settings)
            cohorts = _fetch_json(
                client, "POST", mp.API_FAMILY_QUERY, "/cohorts/list",
                {"project_id": settings["project_id"]}, "listing cohorts",
            )
            payload["checks"]["probe"] = {
                "ok": True,
                "cohorts": len(cohorts) if isinstance(cohorts, list) else 0,
                "elapsedMs": int((time.monotonic() - started) * 1000),
            }
        except mp.MPError as e:
            payload["ok"] = False
            payload["checks"]["probe"] = {
                "ok": False,
                "error": str(e),
                "elapsedMs": int((time.monotonic() - started) * 1000),
            }

    if not _handle_json_output(args, io, payload):
        io.write(f"ok: {str(payload['ok']).lower()}\n")
        io.write(f"config: {payload['config_file']}\n")
        if payload["dotenv"]:
            io.write(f"dotenv: {payload['dotenv']}\n")
        io.write(f"region: {settings['region']} ({settings['region_source']})\n")
        if missing:
            io.write("missing required settings: " + ", ".join(missing) + "\n")
        if args.probe:
            probe = payload["checks"].get("probe")
            if probe is None:
                io.write("probe: skipped\n")
            elif probe["ok"]:
                io.write(f"probe: ok (cohorts={probe['cohorts']})\n")
            else:
                io.write(f"probe: failed ({probe['error']})\n")

    return 0 if payload["ok"] else 1


def _api_context(args):
    settings = _resolve_settings(args, mp_config.Config())
    client = _new_client(args, settings)
    return client, _require_project_id(settings)


def _cmd_query(args, io: _Streams) -> int:
    client, pid = _api_context(args)
    params = {"project_id": pid}

    if args.query_cmd == "events":
        events = _split_csv(args.event)
        if not events:
            raise mp.ValidationError("`--event` must specify at least one event name")
        params.update(
            event=_to_json_array(events),
            type=args.query_type,
            unit=args.unit,
            from_date=args.from_date,
            to_date=args.to_date,
        )
        result = _fetch_json(client, "GET", mp.API_FAMILY_QUERY, "/events", params, "querying events")
        if not _handle_json_output(args, io, result):
            _render_time_series(io, result, series_key="event", label="DATE")
        return 0

    if args.query_cmd in ("segmentation", "properties"):
        params.update(event=args.event, from_date=args.from_date, to_date=args.to_date)
        for key, value in (("on", args.on), ("unit", args.unit), ("where", args.where), ("type", args.query_type)):
            if value:
                params[key] = value
        if args.limit > 0:
            params["limit"] = str(args.limit)
        path = "/segmentation" if args.query_cmd == "segmentation" else "/events/properties"
        what = "querying segmentation" if args.query_cmd == "segmentation" else "querying event properties"
        result = _fetch_json(client, "GET", mp.API_FAMILY_QUERY, path, params, what)
        if not _handle_json_output(args, io, result):
            _render_time_series(io, result, series_key="segment", label="DATE")
        return 0

    if args.query_cmd == "funnels":
        if args.funnels_cmd == "list":
            funnels = _fetch_json(client, "GET", mp.API_FAMILY_QUERY, "/funnels/list", params, "listing funnels")
            if not _handle_json_output(args, io, funnels):
                _render_funnels_list(io, funnels)
            return 0

        params.update(funnel_id=str(args.funnel_id), from_date=args.from_date, to_date=args.to_date)
        if args.length > 0:
            params["length"] = str(args.length)
        for key, value in (
            ("length_unit", args.length_unit),
            ("unit", args.unit),
            ("on", args.on),
            ("where", args.where),
        ):
            if value:
                params[key] = value
        if args.limit > 0:
            params["limit"] = str(args.limit)
        result = _fetch_json(client, "GET", mp.API_FAMILY_QUERY, "/funnels", params, "querying funnels")
        if not _handle_json_output(args, io, result):
            _render_funnel(io, result)
        return 0

    if args.query_cmd == "retention":
        params.update(from_date=args.from_date, to_date=args.to_date)
        for key, value in (
            ("retention_type", args.retention_type),
            ("born_event", args.born_event),
            ("event", args.event),
            ("born_where", args.born_where),
            ("where", args.where),
        ):
            if value:
                params[key] = value
        for key, value in (("interval", args.interval), ("interval_count", args.interval_count)):
            if value > 0:
                params[key] = str(value)
        for key, value in (("unit", args.unit), ("on", args.on)):
            if value:
                params[key] = value
        if args.limit > 0:
            params["limit"] = str(args.limit)
        result = _fetch_json(client, "GET", mp.API_FAMILY_QUERY, "/retention", params, "querying retention")
        if not _handle_json_output(args, io, result):
            _render_retention(io, result)
        return 0

    if args.query_cmd == "frequency":
        params.update(
            from_date=args.from_date,
            to_date=args.to_date,
            unit=args.unit,
            addiction_unit=args.addiction_unit,
        )
        for key, value in (("event", args.event), ("where", args.where), ("on", args.on)):
            if value:
                params[key] = value
        if args.limit > 0:
            params["limit"] = str(args.limit)
        result = _fetch_json(
            client, "GET", mp.API_FAMILY_QUERY, "/retention/addiction", params, "querying frequency"
        )
        if not _handle_json_output(args, io, result):
            _render_frequency(io, result)
        return 0

    if args.query_cmd == "insights":
        params["bookmark_id"] = str(args.bookmark_id)
        result = _fetch_json(client, "GET", mp.API_FAMILY_QUERY, "/insights", params, "querying insights")
        if not _handle_json_output(args, io, result):
            _render_insights(io, result)
        return 0

    sys.stderr.write("unknown query command\n")
    return 2


def _cmd_export_events(args, io: _Streams) -> int:
    if args.limit < 0 or args.limit > _MAX_EXPORT_LIMIT:
        raise mp.ValidationError(f"--limit must be between 0 and {_MAX_EXPORT_LIMIT}")

    client, pid = _api_context(args)
    params = {"project_id": pid, "from_date": args.from_date, "to_date": args.to_date}
    events = _split_csv(args.event)
    if events:
        params["event"] = _to_json_array(events)
    if args.where:
        params["where"] = args.where
    if args.limit > 0:
        params["limit"] = str(args.limit)

    try:
        resp = client.get(mp.API_FAMILY_EXPORT, "/export", params, stream=True)
    except mp.TransportError as e:
        raise mp.TransportError(f"requesting event export: {e}") from e

    collect = getattr(args, "json", None) is not None
    records = []
    try:
        if resp.status_code >= 400:
            mp.check_response(resp)
        for line in resp.iter_lines():
            if not line or not line.strip():
                continue
            try:
                record = json.loads(line)
            except ValueError as e:
                raise mp.ApiRequestError(f"parsing JSONL line: {e}") from e
            if collect:
                records.append(record)
            else:
                # Stream straight through; export payloads can be large.
                _write_ndjson_line(io, record)
    finally:
        resp.close()

    if collect:
        _handle_json_output(args, io, records)
    return 0


def _cmd_profiles(args, io: _Streams) -> int:
    if args.page_size < 1 or args.page_size > _MAX_PAGE_SIZE:
        raise mp.ValidationError(f"`--page-size` must be between 1 and {_MAX_PAGE_SIZE}")
    if args.limit < 0:
        raise mp.ValidationError("`--limit` must be >= 0")

    client, pid = _api_context(args)
    base = {"project_id": pid}

    if args.profiles_cmd == "groups":
        base["data_group_id"] = args.group_key
        what = "group profiles"
    else:
        what = "profiles"
        if args.distinct_id:
            base["distinct_id"] = args.distinct_id
        ids = _split_csv(args.distinct_ids)
        if ids:
            base["distinct_ids"] = _to_json_array(ids)
        if args.cohort_id > 0:
            base["filter_by_cohort"] = json.dumps({"id": args.cohort_id}, separators=(",", ":"))

    if args.where:
        base["where"] = args.where
    props = _split_csv(args.properties)
    if props:
        base["output_properties"] = _to_json_array(props)
    base["page_size"] = str(args.page_size)

    result = mp.fetch_all(client, base, args.page_size, args.limit, what=what)
    if not _handle_json_output(args, io, result.as_dict()):
        _render_profiles(io, result.records, args.properties)
    return 0


def _cmd_activity(args, io: _Streams) -> int:
    ids = _split_csv(args.distinct_ids)
    if not ids:
        raise mp.ValidationError("`--distinct-ids` must specify at least one ID")
    client, pid = _api_context(args)
    params = {
        "project_id": pid,
        "distinct_ids": _to_json_array(ids),
        "from_date": args.from_date,
        "to_date": args.to_date,
    }
    result = _fetch_json(client, "GET", mp.API_FAMILY_QUERY, "/stream/query", params, "querying activity stream")
    if not _handle_json_output(args, io, result):
        _render_activity(io, result)
    return 0


def _cmd_annotations(args, io: _Streams) -> int:
    client, pid = _api_context(args)
    base_path = f"/projects/{urllib.parse.quote(pid, safe='')}/annotations"

    if args.annotations_cmd == "get":
        path = f"{base_path}/{args.annotation_id}"
        result = _fetch_json(client, "GET", mp.API_FAMILY_APP, path, None, "getting annotation")
    else:
        params = {}
        if args.from_date:
            params["fromDate"] = args.from_date
        if args.to_date:
            params["toDate"] = args.to_date
        result = _fetch_json(client, "GET", mp.API_FAMILY_APP, base_path, params, "listing annotations")

    if not _handle_json_output(args, io, result):
        _render_annotations(io, result)
    return 0


def _cmd_cohorts(args, io: _Streams) -> int:
    client, pid = _api_context(args)
    cohorts = _fetch_json(
        client, "POST", mp.API_FAMILY_QUERY, "/cohorts/list", {"project_id": pid}, "listing cohorts"
    )
    if not _handle_json_output(args, io, cohorts):
        _render_cohorts(io, cohorts)
    return 0


def _cmd_lookup_tables(args, io: _Streams) -> int:
    client, pid = _api_context(args)
    result = _fetch_json(
        client, "GET", mp.API_FAMILY_INGESTION, "/lookup-tables", {"project_id": pid}, "listing lookup tables"
    )
    if not _handle_json_output(args, io, result):
        _render_lookup_tables(io, result)
    return 0


def _cmd_pipelines(args, io: _Streams) -> int:
    client, pid = _api_context(args)
    params = {"project_id": pid}
    if args.pipelines_cmd == "status":
        result = _fetch_json(
            client, "GET", mp.API_FAMILY_EXPORT, "/nessie/pipeline/status", params, "getting pipeline status"
        )
        # Status payloads vary; JSON is the default view.
        if not _handle_json_output(args, io, result):
            _print_json(io, result)
        return 0

    result = _fetch_json(
        client, "GET", mp.API_FAMILY_EXPORT, "/nessie/pipeline/jobs", params, "listing pipelines"
    )
    if not _handle_json_output(args, io, result):
        _render_pipelines(io, result)
    return 0


def _cmd_schemas(args, io: _Streams) -> int:
    if args.schemas_cmd == "list" and args.name and not args.entity_type:
        raise mp.ValidationError("`--name` requires `--entity-type`")

    client, pid = _api_context(args)
    path = f"/projects/{urllib.parse.quote(pid, safe='')}/schemas"
    if args.entity_type:
        path += "/" + urllib.parse.quote(args.entity_type, safe="")
        if args.name:
            path += "/" + urllib.parse.quote(args.name, safe="")

    what = "getting schema" if args.schemas_cmd == "get" else "listing schemas"
    result = _fetch_json(client, "GET", mp.API_FAMILY_APP, path, None, what)
    if not _handle_json_output(args, io, result):
        _render_schemas(io, result, detailed=args.schemas_cmd == "get")
    return 0


def _dispatch(args, io: _Streams) -> int:
    if args.cmd == "version":
        return _cmd_version(args, io)
    if args.cmd == "doctor":
        return _cmd_doctor(args, io)
    if args.cmd == "config":
        return _cmd_config(args, io)
    if args.cmd == "query":
        return _cmd_query(args, io)
    if args.cmd == "export" and args.export_cmd == "events":
        return _cmd_export_events(args, io)
    if args.cmd == "profiles":
        return _cmd_profiles(args, io)
    if args.cmd == "activity":
        return _cmd_activity(args, io)
    if args.cmd == "annotations":
        return _cmd_annotations(args, io)
    if args.cmd == "cohorts":
        return _cmd_cohorts(args, io)
    if args.cmd in ("lookup-tables", "lt"):
        return _cmd_lookup_tables(args, io)
    if args.cmd == "pipelines":
        return _cmd_pipelines(args, io)
    if args.cmd == "schemas":
        return _cmd_schemas(args, io)

    sys.stderr.write("unknown command\n")
    return 2


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if (args.jq or args.template) and args.json is None:
        parser.error("--jq and --template require --json")
    if args.jq and args.template:
        parser.error("--jq and --template are mutually exclusive")

    level = _log_level(args)
    if level:
        try:
            mp.configure_logging(level)
        except ValueError as e:
            parser.error(str(e))

    # Real environment variables win over `.env` values.
    dotenv_path = _find_dotenv_path()
    if dotenv_path is not None:
        load_dotenv(dotenv_path, override=False)

    out_path = None if (not args.out or args.out == "-") else Path(args.out).expanduser()
    io = _Streams(out_path, quiet=bool(args.quiet or _env_flag("MP_QUIET")), csv_output=args.csv)
    try:
        rc = _dispatch(args, io)
    except mp.MPError as e:
        io.discard()
        sys.stderr.write(f"Error: {e}\n")
        return 1
    except BaseException:
        io.discard()
        raise
    io.commit()
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
