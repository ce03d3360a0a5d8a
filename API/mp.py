#!/usr/bin/python3
"""
Small helper library for the Mixpanel REST APIs.

Covers region-aware endpoint resolution, authenticated requests with a short
rate-limit retry, and the Engage auto-pagination loop shared by the profile
commands. `mp_cli.py` is the command-line front end.
"""
import base64
import json
import logging
import re
import sys
import time
import urllib.parse
from dataclasses import dataclass, field

import requests

_VERSION = "0.3.0"

API_FAMILY_QUERY = "query"
API_FAMILY_EXPORT = "export"
API_FAMILY_APP = "app"
API_FAMILY_INGESTION = "ingestion"

REGION_US = "us"
REGION_EU = "eu"
REGION_IN = "in"
REGIONS = (REGION_US, REGION_EU, REGION_IN)

_BASE_URLS = {
    API_FAMILY_QUERY: {
        REGION_US: "https://mixpanel.com/api/query",
        REGION_EU: "https://eu.mixpanel.com/api/query",
        REGION_IN: "https://in.mixpanel.com/api/query",
    },
    API_FAMILY_EXPORT: {
        REGION_US: "https://data.mixpanel.com/api/2.0",
        REGION_EU: "https://data-eu.mixpanel.com/api/2.0",
        REGION_IN: "https://data-in.mixpanel.com/api/2.0",
    },
    API_FAMILY_APP: {
        REGION_US: "https://mixpanel.com/api/app",
        REGION_EU: "https://eu.mixpanel.com/api/app",
        REGION_IN: "https://in.mixpanel.com/api/app",
    },
    API_FAMILY_INGESTION: {
        REGION_US: "https://api.mixpanel.com",
        REGION_EU: "https://api-eu.mixpanel.com",
        REGION_IN: "https://api-in.mixpanel.com",
    },
}

DEFAULT_HTTP_TIMEOUT = 120.0
DEFAULT_MAX_RETRY = 1
_BASE_BACKOFF_S = 1
_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

logger = logging.getLogger("mp")

_REDACT_PATTERNS = (
    # Authorization header values.
    (
        re.compile(r'(?i)(\bauthorization"?\s*[:=]\s*"?(?:basic|bearer)\s+)[A-Za-z0-9._~+/=-]+'),
        r"\1[REDACTED]",
    ),
    # MP_TOKEN=user:secret
    (re.compile(r"(?i)\b(MP_TOKEN\s*=\s*)\S+"), r"\1[REDACTED]"),
    # key=value / "key": "value" shaped secrets.
    (
        re.compile(r'(?i)("?(?:service_secret|secret|token|password|api_key)"?\s*[:=]\s*"?)[^"\s&,]+'),
        r"\1[REDACTED]",
    ),
)


class MPError(Exception):
    """Base class for errors raised by this helper."""


class ConfigurationError(MPError):
    pass


class UnknownFamilyError(ConfigurationError):
    pass


class UnknownRegionError(ConfigurationError):
    pass


class InvalidRegionError(ConfigurationError):
    pass


class MissingCredentialsError(ConfigurationError):
    pass


class ValidationError(MPError):
    pass


class TransportError(MPError):
    pass


class ApiRequestError(MPError):
    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PageError(MPError):
    pass


def configure_logging(level) -> None:
    """
    Attach one stderr handler to the `mp` logger at `level` (name or number).

    Safe to call repeatedly; the handler is installed once.
    """
    if isinstance(level, str):
        name = level.strip().upper()
        resolved = logging.getLevelName(name)
        if not isinstance(resolved, int):
            raise ValueError(f"invalid log level: {level!r}")
        level = resolved
    if not any(getattr(h, "_mp_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handler._mp_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.setLevel(level)


def redact_sensitive_text(text: str) -> str:
    cooked = str(text or "")
    for pattern, repl in _REDACT_PATTERNS:
        cooked = pattern.sub(repl, cooked)
    return cooked


def normalize_region(value: str) -> str:
    region = (value or "").strip().lower()
    if region not in REGIONS:
        raise InvalidRegionError(f"invalid region {value!r}; must be one of: us, eu, in")
    return region


def valid_region(value: str) -> bool:
    return value in REGIONS


def resolve_url(family: str, region: str) -> str:
    """Return the base URL for an API family in a region."""
    regions = _BASE_URLS.get(family)
    if regions is None:
        raise UnknownFamilyError(
            f"unknown API family {family!r}; valid families: query, export, app, ingestion"
        )
    url = regions.get(region)
    if url is None:
        raise UnknownRegionError(f"unknown region {region!r}; valid regions: us, eu, in")
    return url


def _parse_retry_after_seconds(value) -> int | None:
    # Only delay-seconds are honoured; HTTP-date forms fall back to exponential backoff.
    raw = str(value or "").strip()
    if not (raw.isascii() and raw.isdigit()):
        return None
    secs = int(raw)
    return secs if secs > 0 else None


def backoff_seconds(attempt: int, headers=None) -> int:
    """
    Seconds to wait before retrying a 429.

    A positive integer `Retry-After` wins; otherwise 2**attempt seconds.
    """
    retry_after = _parse_retry_after_seconds((headers or {}).get("Retry-After"))
    if retry_after is not None:
        return retry_after
    return (2**attempt) * _BASE_BACKOFF_S


def encode_params(params) -> str:
    if not params:
        return ""
    items = []
    for key in sorted(params):
        value = params[key]
        if isinstance(value, (list, tuple)):
            items.extend((key, str(v)) for v in value)
        elif value is not None:
            items.append((key, str(value)))
    return urllib.parse.urlencode(items)


@dataclass(frozen=True)
class Credentials:
    username: str
    secret: str = field(repr=False)

    @property
    def token(self) -> str:
        raw = f"{self.username}:{self.secret}".encode("utf-8")
        return base64.b64encode(raw).decode("ascii")


class Client:
    """
    Authenticated client for one region. Safe to reuse for sequential calls.
    """

    def __init__(
        self,
        service_account: str,
        service_secret: str,
        region: str,
        project_id: str = "",
        debug: bool = False,
        *,
        http_timeout=DEFAULT_HTTP_TIMEOUT,
        max_retry: int = DEFAULT_MAX_RETRY,
        session=None,
    ):
        self._region = normalize_region(region)
        if not service_account or not service_secret:
            raise MissingCredentialsError(
                "service_account and service_secret must be configured; "
                "run: mp config set service_account <value>"
            )
        self._auth = Credentials(service_account, service_secret).token
        self._project_id = project_id or ""
        self._debug = bool(debug)
        self._http_timeout = http_timeout
        self._max_retry = max(int(max_retry), 0)
        self._session = session if session is not None else requests.Session()

    @property
    def region(self) -> str:
        return self._region

    @property
    def project_id(self) -> str:
        return self._project_id

    def __repr__(self) -> str:
        return f"Client(region={self._region!r}, project_id={self._project_id!r})"

    def get(self, family: str, path: str, params=None, *, stream: bool = False):
        return self.send("GET", family, path, query=params, stream=stream)

    def post(self, family: str, path: str, params=None):
        return self.send("POST", family, path, form=params)

    def send(self, method: str, family: str, path: str, query=None, form=None, *, stream: bool = False):
        base = resolve_url(family, self._region)

        url = base + path
        encoded_query = encode_params(query)
        if encoded_query:
            url += "?" + encoded_query

        headers = {
            "Authorization": f"Basic {self._auth}",
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
            "User-Agent": f"mp-cli/{_VERSION}",
        }
        body = None
        encoded_form = encode_params(form)
        if encoded_form:
            body = encoded_form.encode("utf-8")
            headers["Content-Type"] = _FORM_CONTENT_TYPE

        attempt = 0
        while True:
            self._trace(f"--> {method} {url}")
            logger.debug("%s %s (attempt %d)", method, redact_sensitive_text(url), attempt + 1)
            try:
                resp = self._session.request(
                    method=method,
                    url=url,
                    headers=headers,
                    data=body,
                    timeout=self._http_timeout,
                    stream=stream,
                )
            except requests.RequestException as e:
                raise TransportError(f"executing request: {redact_sensitive_text(str(e))}") from e

            status = int(getattr(resp, "status_code", 0) or 0)
            self._trace(f"<-- {status} {getattr(resp, 'reason', '') or ''}".rstrip())

            if status != 429 or attempt >= self._max_retry:
                return resp

            wait = backoff_seconds(attempt, getattr(resp, "headers", None))
            self._trace(f"    rate limited, retrying in {wait}s")
            logger.info("rate limited on %s %s; retrying in %ss", method, path, wait)
            resp.close()
            time.sleep(wait)
            attempt += 1

    def _trace(self, line: str) -> None:
        if self._debug:
            sys.stderr.write(f"[mp debug] {line}\n")


def check_response(resp) -> bytes:
    """Return the raw body, or raise ApiRequestError for HTTP >= 400."""
    body = resp.content or b""
    status = int(resp.status_code)
    if status >= 400:
        text = redact_sensitive_text(body.decode("utf-8", errors="replace").strip())
        raise ApiRequestError(f"API error (HTTP {status}): {text}", status_code=status, body=text)
    return body


def decode_json(body: bytes, what: str):
    try:
        return json.loads(body)
    except ValueError as e:
        raise ApiRequestError(f"parsing {what} response: {e}") from e


@dataclass
class PagedResult:
    records: list
    total: int

    def as_dict(self) -> dict:
        return {"total": self.total, "count": len(self.records), "results": self.records}


def fetch_all(
    client: Client,
    base_params: dict,
    page_size: int,
    result_cap: int = 0,
    *,
    family: str = API_FAMILY_QUERY,
    path: str = "/engage",
    what: str = "profiles",
) -> PagedResult:
    """
    Fetch every record of a session-paged endpoint (Engage).

    The first page issues a `session_id` and the overall `total`; later pages
    echo the session id back. Stops when the cap is reached, when the
    accumulated count reaches the reported total, or on a short page.
    Any failure aborts the whole fetch.
    """
    page_size = int(page_size)
    result_cap = int(result_cap or 0)
    if page_size < 1:
        raise ValidationError("page size must be >= 1")
    if result_cap < 0:
        raise ValidationError("result cap must be >= 0")

    records: list = []
    session_id = ""
    total = -1
    page = 0

    while True:
        params = dict(base_params)
        params["page"] = str(page)
        if session_id:
            params["session_id"] = session_id

        try:
            resp = client.send("POST", family, path, form=params)
        except TransportError as e:
            raise TransportError(f"querying {what} (page {page}): {e}") from e

        body = check_response(resp)
        try:
            envelope = json.loads(body)
        except ValueError as e:
            raise PageError(f"parsing {what} response (page {page}): {e}") from e
        if not isinstance(envelope, dict):
            raise PageError(f"unexpected {what} response shape on page {page}; expected an object")

        status = envelope.get("status") or ""
        if status != "ok" and status != "":
            raise PageError(f'engage API returned status "{status}"')

        batch = envelope.get("results")
        if batch is None:
            batch = []
        if not isinstance(batch, list):
            raise PageError(f"unexpected {what} response on page {page}; results is not a list")

        records.extend(batch)
        session_id = str(envelope.get("session_id") or session_id)
        if total < 0:
            try:
                total = int(envelope.get("total") or 0)
            except (TypeError, ValueError):
                total = 0
        logger.debug("%s page %d: %d records (%d/%d)", what, page, len(batch), len(records), total)

        if result_cap > 0 and len(records) >= result_cap:
            del records[result_cap:]
            break
        if len(records) >= total:
            break
        if len(batch) < page_size:
            break

        page += 1

    return PagedResult(records=records, total=total)
