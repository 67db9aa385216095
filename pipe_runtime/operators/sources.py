from __future__ import annotations

import csv
import io
import ipaddress
import logging
import math
import xml.etree.ElementTree as ElementTree
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import httpx
import soupsieve
from bs4 import BeautifulSoup
from pydantic import Field, field_validator

from pipe_runtime.engine.models import ExecutionContext
from pipe_runtime.operators.base import ConfiguredOperator, OperatorConfig, OperatorError, parse_number


LOGGER = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
USER_AGENT = "PipeRuntime/1.0"

STATUS_HINTS = {
    401: (
        "Unauthorized",
        'The API at "{url}" requires authentication. You may need to add an API key or authentication header.',
    ),
    403: ("Forbidden", 'Access to "{url}" is denied. Check your API credentials or permissions.'),
    404: ("Not Found", 'The resource at "{url}" does not exist.'),
    429: ("Too Many Requests", 'The API at "{url}" is rate limiting requests.'),
}


def is_http_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in {"http", "https"} and bool(parts.hostname)


def is_public_http_url(url: str) -> bool:
    """Only http(s) URLs that do not point at localhost, private or link-local hosts."""
    if not is_http_url(url):
        return False

    host = (urlsplit(url).hostname or "").strip().lower()
    if host == "localhost" or host.endswith(".localhost"):
        return False

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return True
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_multicast
    )


@dataclass(frozen=True, slots=True)
class DomainAllowlist:
    """Hostnames a source may fetch from. Matching is exact; an empty list allows any public host."""

    domains: tuple[str, ...] = ()

    @classmethod
    def from_iterable(cls, domains: Iterable[str] | None) -> DomainAllowlist:
        cleaned = (domain.strip().lower() for domain in domains or ())
        return cls(tuple(sorted({domain for domain in cleaned if domain})))

    def is_allowed(self, url: str) -> bool:
        if not is_http_url(url):
            return False
        if not self.domains:
            return True
        return (urlsplit(url).hostname or "").lower() in self.domains

    def error_message(self, url: str) -> str:
        host = (urlsplit(url).hostname or "").lower()
        if not host:
            return "Invalid URL format"
        return f"Domain not allowed: {host}. Add it to PIPE_DOMAIN_ALLOWLIST to fetch from it."


class SecretRef(OperatorConfig):
    secret_id: str = Field(alias="secretId", min_length=1)
    header_name: str = Field(alias="headerName", min_length=1)
    header_format: str | None = Field(default=None, alias="headerFormat")


class FetchConfig(OperatorConfig):
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    secret_ref: SecretRef | None = Field(default=None, alias="secretRef")

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value:
            raise ValueError("URL is required")
        if not is_public_http_url(value):
            raise ValueError("Invalid URL format or localhost/private IPs are not allowed")
        return value


class FetchCsvConfig(FetchConfig):
    delimiter: str = Field(default=",", min_length=1, max_length=1)
    has_header: bool = Field(default=True, alias="hasHeader")


class FetchRssConfig(FetchConfig):
    max_items: int = Field(default=50, ge=1, alias="maxItems")


class FetchPageConfig(FetchConfig):
    selector: str = Field(min_length=1)
    attribute: str | None = None
    multiple: bool = True

    @field_validator("selector")
    @classmethod
    def _check_selector(cls, value: str) -> str:
        try:
            soupsieve.compile(value)
        except soupsieve.SelectorSyntaxError as exc:
            raise ValueError(f"Invalid CSS selector: {value}") from exc
        return value


class HttpSourceOperator(ConfiguredOperator[FetchConfig]):
    """Shared GET handling for the fetch sources.

    The target URL and every redirect hop must be a public http(s) address on the
    domain allow-list. Secret headers are resolved through ``context.secrets``;
    timeouts, network failures and non-2xx statuses become ``OperatorError``.
    """

    category = "sources"
    accept = "*/*"

    def __init__(
        self,
        *,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        allowlist: DomainAllowlist | None = None,
    ) -> None:
        self._timeout_seconds = max(1.0, float(request_timeout_seconds))
        self._transport = transport
        self._allowlist = allowlist or DomainAllowlist()

    async def fetch(self, settings: FetchConfig, context: ExecutionContext) -> httpx.Response:
        self._check_destination(settings.url, context)

        headers = {"User-Agent": USER_AGENT, "Accept": self.accept}
        headers.update(settings.headers)
        if settings.secret_ref is not None:
            headers.update(await self._secret_headers(settings.secret_ref, context))

        async def guard_redirect(request: httpx.Request) -> None:
            self._check_destination(str(request.url), context)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
                follow_redirects=True,
                event_hooks={"request": [guard_redirect]},
            ) as client:
                response = await client.get(settings.url, headers=headers)
        except httpx.TimeoutException as exc:
            raise OperatorError(
                f"Request timeout: The request took longer than {self._timeout_seconds:g} seconds"
            ) from exc
        except httpx.RequestError as exc:
            host = urlsplit(settings.url).hostname or "the server"
            raise OperatorError(f"Network error: Unable to reach {host}") from exc

        if not response.is_success:
            raise OperatorError(self._status_message(response, settings.url))
        return response

    def _check_destination(self, url: str, context: ExecutionContext) -> None:
        if not is_public_http_url(url):
            LOGGER.warning("Blocked fetch of non-public URL %s (user=%s)", url, context.user_id)
            raise OperatorError("Invalid URL: localhost and private IPs are not allowed")
        if not self._allowlist.is_allowed(url):
            LOGGER.warning("Blocked fetch outside the domain allow-list %s (user=%s)", url, context.user_id)
            raise OperatorError(self._allowlist.error_message(url))

    async def _secret_headers(self, ref: Any, context: ExecutionContext) -> dict[str, str]:
        if context.secrets is None or not context.user_id:
            raise OperatorError("Authentication required to use secrets")

        secret = await context.secrets.resolve(ref.secret_id, context.user_id)
        if ref.header_format:
            value = ref.header_format.replace("{value}", secret, 1)
        else:
            value = secret
        LOGGER.debug("Resolved secret %s into header %s", ref.secret_id, ref.header_name)
        return {ref.header_name: value}

    def _status_message(self, response: httpx.Response, url: str) -> str:
        status = response.status_code
        hint = STATUS_HINTS.get(status)
        if hint is not None:
            reason, detail = hint
            return f"The URL returned HTTP {status} ({reason}). {detail.format(url=url)}"
        if status >= 500:
            return (
                f"The URL returned HTTP {status} ({response.reason_phrase}). "
                f"The server at \"{url}\" encountered an error."
            )
        return f"The URL returned HTTP {status}: {response.reason_phrase}"


class FetchJsonOperator(HttpSourceOperator):
    type = "fetch-json"
    description = "Fetch and parse JSON data from a URL"
    config_model = FetchConfig
    accept = "application/json"

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        response = await self.fetch(self.parse_config(config), context)

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type and "+json" not in content_type:
            raise OperatorError(
                f"Invalid response: Expected JSON but received {content_type or 'unknown'}"
            )

        try:
            return response.json()
        except ValueError as exc:
            raise OperatorError("Invalid response: body is not valid JSON") from exc


class FetchCsvOperator(HttpSourceOperator):
    type = "fetch-csv"
    description = "Fetch and parse CSV data from a URL"
    config_model = FetchCsvConfig
    accept = "text/csv, text/plain, */*"

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        settings = self.parse_config(config)
        response = await self.fetch(settings, context)
        try:
            return parse_csv(response.text, delimiter=settings.delimiter, has_header=settings.has_header)
        except csv.Error as exc:
            raise OperatorError(f"CSV parsing failed: {exc}") from exc


def parse_csv(text: str, *, delimiter: str = ",", has_header: bool = True) -> list[dict[str, Any]]:
    """Rows as dicts keyed by the header, or ``column_N`` without one. Blank lines are skipped."""
    rows = [row for row in csv.reader(io.StringIO(text), delimiter=delimiter) if row]
    if not rows:
        return []

    if has_header:
        header, body = [name.strip() for name in rows[0]], rows[1:]
    else:
        width = max(len(row) for row in rows)
        header, body = [f"column_{index}" for index in range(width)], rows
    return [{key: cast_csv_value(cell) for key, cell in zip(header, row)} for row in body]


def cast_csv_value(cell: str) -> object:
    text = cell.strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    number = parse_number(text)
    if number is None or not math.isfinite(number):
        return text
    return number


class FetchRssOperator(HttpSourceOperator):
    type = "fetch-rss"
    description = "Fetch and parse RSS or Atom feeds"
    config_model = FetchRssConfig
    accept = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        settings = self.parse_config(config)
        response = await self.fetch(settings, context)
        try:
            items = parse_feed(response.content)
        except ElementTree.ParseError as exc:
            raise OperatorError(f"RSS parsing failed: {exc}") from exc
        return items[: settings.max_items]


def parse_feed(document: str | bytes) -> list[dict[str, str]]:
    """Normalise RSS ``item`` and Atom ``entry`` elements to title/link/description/pubDate."""
    root = ElementTree.fromstring(document.strip())
    return [_feed_item(element) for element in root.iter() if _local_name(element.tag) in {"item", "entry"}]


def _feed_item(element: ElementTree.Element) -> dict[str, str]:
    children: dict[str, ElementTree.Element] = {}
    for child in element:
        children.setdefault(_qualified_name(child.tag), child)

    def text_of(*names: str) -> str:
        for name in names:
            child = children.get(name)
            if child is not None and (child.text or "").strip():
                return child.text.strip()
        return ""

    link = text_of("link")
    if not link and "link" in children:
        link = children["link"].get("href", "")

    description = text_of("content:encoded", "summary", "description", "content")
    return {
        "title": text_of("title"),
        "link": link,
        "description": strip_html(description),
        "pubDate": text_of("pubDate", "published", "updated", "dc:date"),
    }


FEED_PREFIXES = {
    "http://purl.org/rss/1.0/modules/content/": "content",
    "http://purl.org/dc/elements/1.1/": "dc",
}


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _qualified_name(tag: str) -> str:
    if not tag.startswith("{"):
        return tag
    namespace, local = tag[1:].split("}", 1)
    prefix = FEED_PREFIXES.get(namespace)
    return f"{prefix}:{local}" if prefix else local


def strip_html(value: str) -> str:
    if "<" not in value:
        return value
    return BeautifulSoup(value, "html.parser").get_text(" ", strip=True)


class FetchPageOperator(HttpSourceOperator):
    type = "fetch-page"
    description = "Fetch HTML and extract data with CSS selectors"
    config_model = FetchPageConfig
    accept = "text/html, application/xhtml+xml, */*"

    async def execute(self, input_data: object, config: Any, context: ExecutionContext) -> object:
        settings = self.parse_config(config)
        response = await self.fetch(settings, context)
        return extract_from_html(
            response.text,
            settings.selector,
            attribute=settings.attribute,
            multiple=settings.multiple,
        )


def extract_from_html(html: str, selector: str, *, attribute: str | None = None, multiple: bool = True) -> object:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(["script", "noscript"]):
        tag.decompose()

    def value_of(element: Any) -> str | None:
        if attribute:
            found = element.get(attribute)
            if isinstance(found, list):
                return " ".join(found)
            return found
        return element.get_text().strip()

    if multiple:
        values = (value_of(element) for element in soup.select(selector))
        return [value for value in values if value is not None]

    first = soup.select_one(selector)
    if first is None:
        return ""
    return value_of(first) or ""
