from __future__ import annotations

import asyncio
import unittest

import httpx

from pipe_runtime.engine import ExecutionContext, OperatorExecutionError, PipeExecutor
from pipe_runtime.operators import (
    DateInputOperator,
    DomainAllowlist,
    FetchCsvOperator,
    FetchJsonOperator,
    FetchPageOperator,
    FetchRssOperator,
    FilterOperator,
    NumberInputOperator,
    OperatorError,
    PipeOutputOperator,
    RegexOperator,
    RenameOperator,
    SortOperator,
    StringReplaceOperator,
    SubstringOperator,
    TailOperator,
    TextInputOperator,
    TruncateOperator,
    UniqueOperator,
    UrlBuilderOperator,
    UrlInputOperator,
    build_default_catalog,
    is_public_http_url,
)
from pipe_runtime.operators.sources import parse_csv, parse_feed


def run(coro):
    return asyncio.run(coro)


class StaticSecrets:
    def __init__(self, values: dict[str, str]) -> None:
        self.values = values
        self.calls: list[tuple[str, str | None]] = []

    async def resolve(self, secret_id: str, user_id: str | None) -> str:
        self.calls.append((secret_id, user_id))
        return self.values[secret_id]


ITEMS = [
    {"id": 1, "title": "Alpha", "score": 10, "tags": ["news"], "meta": {"lang": "en"}},
    {"id": 2, "title": "beta release", "score": "25", "tags": [], "meta": {"lang": "pt"}},
    {"id": 3, "title": "Gamma", "score": 5, "meta": {"lang": "en"}},
    {"id": 4, "title": "Delta", "tags": ["news", "tech"]},
]


class CatalogTests(unittest.TestCase):
    def test_default_catalog_contents(self) -> None:
        catalog = build_default_catalog()
        self.assertEqual(
            sorted(catalog.list_types()),
            sorted(
                [
                    "date-input",
                    "fetch-csv",
                    "fetch-json",
                    "fetch-page",
                    "fetch-rss",
                    "filter",
                    "number-input",
                    "pipe-output",
                    "regex",
                    "rename",
                    "sort",
                    "string-replace",
                    "substring",
                    "tail",
                    "text-input",
                    "truncate",
                    "unique",
                    "url-builder",
                    "url-input",
                ]
            ),
        )
        self.assertEqual(catalog.list_aliases(), {"fetch": "fetch-json"})
        self.assertIs(catalog.get("fetch"), catalog.get("fetch-json"))
        self.assertEqual(catalog.category_of("text-input"), "user-inputs")
        self.assertEqual(catalog.category_of("fetch-rss"), "sources")
        self.assertEqual(catalog.category_of("regex"), "string")
        self.assertEqual(catalog.category_of("url-builder"), "url")
        self.assertIsNone(catalog.category_of("nope"))

    def test_catalogs_are_independent(self) -> None:
        first = build_default_catalog()
        second = build_default_catalog()
        first.clear()
        self.assertEqual(first.count(), 0)
        self.assertEqual(second.count(), 19)

    def test_duplicate_registration_is_rejected(self) -> None:
        catalog = build_default_catalog()
        with self.assertRaises(ValueError):
            catalog.register(SortOperator())
        with self.assertRaises(ValueError):
            catalog.register_alias("sort", "filter")
        with self.assertRaises(ValueError):
            catalog.register_alias("fetch-xml", "does-not-exist")


class FetchJsonTests(unittest.TestCase):
    def operator(self, handler) -> FetchJsonOperator:
        return FetchJsonOperator(transport=httpx.MockTransport(handler))

    def test_returns_parsed_json_with_default_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": [1, 2]})

        result = run(
            self.operator(handler).execute(
                None,
                {"url": "https://api.example.com/feed", "headers": {"X-Trace": "t1"}},
                ExecutionContext(),
            )
        )

        self.assertEqual(result, {"items": [1, 2]})
        self.assertEqual(seen[0].headers["accept"], "application/json")
        self.assertEqual(seen[0].headers["x-trace"], "t1")
        self.assertTrue(seen[0].headers["user-agent"].startswith("PipeRuntime/"))

    def test_secret_reference_becomes_header(self) -> None:
        secrets = StaticSecrets({"s1": "abc123"})
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        config = {
            "url": "https://api.example.com/private",
            "secretRef": {"secretId": "s1", "headerName": "Authorization", "headerFormat": "Bearer {value}"},
        }
        run(self.operator(handler).execute(None, config, ExecutionContext(secrets=secrets, user_id="u1")))

        self.assertEqual(seen[0].headers["authorization"], "Bearer abc123")
        self.assertEqual(secrets.calls, [("s1", "u1")])

    def test_secret_without_user_is_refused(self) -> None:
        config = {"url": "https://api.example.com/private", "secretRef": {"secretId": "s1", "headerName": "X-Key"}}
        operator = self.operator(lambda request: httpx.Response(200, json=[]))
        with self.assertRaisesRegex(OperatorError, "Authentication required"):
            run(operator.execute(None, config, ExecutionContext()))

    def test_non_json_response_is_rejected(self) -> None:
        operator = self.operator(lambda request: httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"}))
        with self.assertRaisesRegex(OperatorError, "Expected JSON but received text/html"):
            run(operator.execute(None, {"url": "https://example.com"}, ExecutionContext()))

    def test_status_messages(self) -> None:
        cases = {
            401: "requires authentication",
            404: "does not exist",
            429: "rate limiting",
            503: "encountered an error",
            418: "HTTP 418",
        }
        for status, fragment in cases.items():
            with self.subTest(status=status):
                operator = self.operator(lambda request, status=status: httpx.Response(status, json={}))
                with self.assertRaisesRegex(OperatorError, fragment):
                    run(operator.execute(None, {"url": "https://example.com/x"}, ExecutionContext()))

    def test_network_errors_are_friendly(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaisesRegex(OperatorError, "Unable to reach example.com"):
            run(self.operator(handler).execute(None, {"url": "https://example.com/x"}, ExecutionContext()))

    def test_timeouts_are_reported(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with self.assertRaisesRegex(OperatorError, "Request timeout"):
            run(self.operator(handler).execute(None, {"url": "https://example.com/x"}, ExecutionContext()))

    def test_url_safety(self) -> None:
        self.assertTrue(is_public_http_url("https://api.example.com/v1"))
        for url in [
            "ftp://example.com",
            "http://localhost:8080",
            "http://127.0.0.1",
            "http://10.1.2.3",
            "http://172.20.0.1",
            "http://192.168.1.1",
            "http://169.254.169.254/latest",
            "http://[::1]/",
            "not a url",
        ]:
            with self.subTest(url=url):
                self.assertFalse(is_public_http_url(url))

        result = FetchJsonOperator().validate({"url": "http://192.168.0.10"})
        self.assertFalse(result.valid)
        self.assertIn("private", result.error)
        self.assertFalse(FetchJsonOperator().validate(None).valid)

    def test_redirect_to_private_address_is_blocked(self) -> None:
        hits: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            hits.append(str(request.url))
            if request.url.host == "example.com":
                return httpx.Response(302, headers={"location": "http://127.0.0.1/admin"})
            return httpx.Response(200, json={"secret": True})

        with self.assertRaisesRegex(OperatorError, "localhost and private IPs are not allowed"):
            run(self.operator(handler).execute(None, {"url": "https://example.com/start"}, ExecutionContext()))
        self.assertEqual(hits, ["https://example.com/start"])

    def test_redirect_between_public_hosts_is_followed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "example.com":
                return httpx.Response(301, headers={"location": "https://cdn.example.org/data"})
            return httpx.Response(200, json={"from": request.url.host})

        result = run(self.operator(handler).execute(None, {"url": "https://example.com/old"}, ExecutionContext()))
        self.assertEqual(result, {"from": "cdn.example.org"})

    def test_domain_allowlist(self) -> None:
        allowlist = DomainAllowlist.from_iterable([" API.example.com ", ""])
        self.assertEqual(allowlist.domains, ("api.example.com",))
        self.assertTrue(allowlist.is_allowed("https://api.example.com/v1"))
        self.assertFalse(allowlist.is_allowed("https://sub.api.example.com/v1"))
        self.assertFalse(allowlist.is_allowed("ftp://api.example.com"))
        self.assertTrue(DomainAllowlist().is_allowed("https://anything.example.net"))

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "api.example.com":
                return httpx.Response(302, headers={"location": "https://elsewhere.example.net/"})
            return httpx.Response(200, json=[])

        operator = FetchJsonOperator(transport=httpx.MockTransport(handler), allowlist=allowlist)
        with self.assertRaisesRegex(OperatorError, "Domain not allowed: other.example.com"):
            run(operator.execute(None, {"url": "https://other.example.com/x"}, ExecutionContext()))
        with self.assertRaisesRegex(OperatorError, "Domain not allowed: elsewhere.example.net"):
            run(operator.execute(None, {"url": "https://api.example.com/x"}, ExecutionContext()))

    def test_catalog_applies_allowlist_to_every_source(self) -> None:
        catalog = build_default_catalog(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="a\n1")),
            domain_allowlist=["data.example.com"],
        )
        config = {"url": "https://blocked.example.com/file.csv"}
        for node_type in ("fetch-json", "fetch-csv", "fetch-rss"):
            with self.subTest(node_type=node_type):
                with self.assertRaisesRegex(OperatorError, "Domain not allowed"):
                    run(catalog.get(node_type).execute(None, config, ExecutionContext()))
        allowed = run(catalog.get("fetch-csv").execute(None, {"url": "https://data.example.com/f.csv"}, ExecutionContext()))
        self.assertEqual(allowed, [{"a": 1}])


class UserInputTests(unittest.TestCase):
    def test_text_input_prefers_runtime_value(self) -> None:
        operator = TextInputOperator()
        config = {"label": "City", "defaultValue": "Lisbon"}
        self.assertEqual(run(operator.execute(None, config, ExecutionContext())), "Lisbon")
        self.assertEqual(run(operator.execute(None, config, ExecutionContext(user_inputs={"City": "Porto"}))), "Porto")
        self.assertEqual(run(operator.execute(None, {"label": "Empty"}, ExecutionContext())), "")

    def test_text_input_required(self) -> None:
        with self.assertRaisesRegex(OperatorError, 'Text input "Name" is required'):
            run(TextInputOperator().execute(None, {"label": "Name", "required": True}, ExecutionContext()))

    def test_number_input(self) -> None:
        operator = NumberInputOperator()
        config = {"label": "Limit", "min": 1, "max": 50, "defaultValue": 10}
        self.assertEqual(run(operator.execute(None, config, ExecutionContext())), 10)
        self.assertEqual(run(operator.execute(None, config, ExecutionContext(user_inputs={"Limit": "25"}))), 25)
        self.assertEqual(run(operator.execute(None, {"label": "Blank"}, ExecutionContext())), 0)

        with self.assertRaisesRegex(OperatorError, "at most 50"):
            run(operator.execute(None, config, ExecutionContext(user_inputs={"Limit": "99"})))
        with self.assertRaisesRegex(OperatorError, "valid number"):
            run(operator.execute(None, config, ExecutionContext(user_inputs={"Limit": "many"})))

    def test_number_input_validation(self) -> None:
        operator = NumberInputOperator()
        self.assertTrue(operator.validate({"label": "n"}).valid)
        self.assertFalse(operator.validate({"label": "n", "min": 5, "max": 1}).valid)
        self.assertFalse(operator.validate({"label": "n", "step": 0}).valid)
        self.assertFalse(operator.validate({"label": ""}).valid)

    def test_url_input(self) -> None:
        operator = UrlInputOperator()
        config = {"label": "Feed", "defaultValue": "https://example.com/rss"}
        self.assertEqual(run(operator.execute(None, config, ExecutionContext())), "https://example.com/rss")
        self.assertEqual(
            run(operator.execute(None, config, ExecutionContext(user_inputs={"Feed": " https://news.example.org "}))),
            "https://news.example.org",
        )
        self.assertEqual(run(operator.execute(None, {"label": "Empty"}, ExecutionContext())), "")

        with self.assertRaisesRegex(OperatorError, 'URL input "Feed" has invalid URL format'):
            run(operator.execute(None, config, ExecutionContext(user_inputs={"Feed": "not a url"})))
        with self.assertRaisesRegex(OperatorError, 'URL input "Feed": localhost and private IPs are not allowed'):
            run(operator.execute(None, config, ExecutionContext(user_inputs={"Feed": "http://10.0.0.5/"})))
        with self.assertRaisesRegex(OperatorError, 'URL input "Site" is required'):
            run(operator.execute(None, {"label": "Site", "required": True}, ExecutionContext()))

        self.assertFalse(operator.validate({"label": "Feed", "defaultValue": "http://localhost:3000"}).valid)
        self.assertFalse(operator.validate({"label": "Feed", "defaultValue": "example"}).valid)
        self.assertTrue(operator.validate({"label": "Feed", "defaultValue": ""}).valid)
        self.assertEqual(operator.get_output_schema()["fields"][0]["sample"], "https://example.com")

    def test_date_input(self) -> None:
        operator = DateInputOperator()
        config = {"label": "Since", "minDate": "2024-01-01", "maxDate": "2024-12-31"}
        supplied = ExecutionContext(user_inputs={"Since": "2024-03-05"})
        self.assertEqual(run(operator.execute(None, config, supplied)), "2024-03-05T00:00:00.000Z")
        self.assertEqual(
            run(operator.execute(None, {"label": "At", "defaultValue": "2024-03-05T10:30:00.250+02:00"}, ExecutionContext())),
            "2024-03-05T08:30:00.250Z",
        )
        self.assertEqual(run(operator.execute(None, {"label": "Blank"}, ExecutionContext())), "")

        with self.assertRaisesRegex(OperatorError, 'Date input "Since" must be on or after 2024-01-01'):
            run(operator.execute(None, config, ExecutionContext(user_inputs={"Since": "2023-12-31"})))
        with self.assertRaisesRegex(OperatorError, 'Date input "Since" must be on or before 2024-12-31'):
            run(operator.execute(None, config, ExecutionContext(user_inputs={"Since": "2025-01-01"})))
        with self.assertRaisesRegex(OperatorError, 'Date input "Since" has invalid date format'):
            run(operator.execute(None, config, ExecutionContext(user_inputs={"Since": "someday"})))
        with self.assertRaisesRegex(OperatorError, 'Date input "Since" is required'):
            run(operator.execute(None, {"label": "Since", "required": True}, ExecutionContext()))

        self.assertFalse(operator.validate({"label": "d", "minDate": "2024-06-01", "maxDate": "2024-01-01"}).valid)
        self.assertFalse(operator.validate({"label": "d", "minDate": "soon"}).valid)
        self.assertFalse(operator.validate({"label": "d", "defaultValue": "later"}).valid)
        self.assertTrue(operator.validate({"label": "d", "defaultValue": "January 5, 2024"}).valid)


class FilterTests(unittest.TestCase):
    def filter(self, config: dict, items=ITEMS):
        return run(FilterOperator().execute(items, config, ExecutionContext()))

    def test_permit_all(self) -> None:
        result = self.filter(
            {
                "rules": [
                    {"field": "meta.lang", "operator": "equals", "value": "en"},
                    {"field": "score", "operator": "gt", "value": 6},
                ]
            }
        )
        self.assertEqual([item["id"] for item in result], [1])

    def test_block_any(self) -> None:
        result = self.filter(
            {
                "mode": "block",
                "matchMode": "any",
                "rules": [
                    {"field": "tags", "operator": "contains", "value": "tech"},
                    {"field": "title", "operator": "matches_regex", "value": "^[a-z]"},
                ],
            }
        )
        self.assertEqual([item["id"] for item in result], [1, 3])

    def test_loose_equality_and_missing_fields(self) -> None:
        result = self.filter({"rules": [{"field": "score", "operator": "equals", "value": 25}]})
        self.assertEqual([item["id"] for item in result], [2])

        result = self.filter({"rules": [{"field": "score", "operator": "not_equals", "value": 25}]})
        self.assertEqual([item["id"] for item in result], [1, 3])

    def test_not_contains_on_plain_values(self) -> None:
        result = self.filter({"rules": [{"field": "score", "operator": "not_contains", "value": "1"}]})
        self.assertEqual([item["id"] for item in result], [1, 2, 3])

    def test_empty_rules_pass_everything(self) -> None:
        self.assertEqual(self.filter({"rules": []}), ITEMS)

    def test_requires_list_input(self) -> None:
        with self.assertRaisesRegex(OperatorError, "requires array input, received object"):
            self.filter({"rules": []}, items={"not": "a list"})

    def test_validation(self) -> None:
        operator = FilterOperator()
        self.assertFalse(operator.validate({}).valid)
        self.assertFalse(operator.validate({"rules": [{"field": "a", "operator": "like", "value": 1}]}).valid)
        self.assertFalse(operator.validate({"rules": [{"field": "a", "operator": "equals"}]}).valid)
        self.assertFalse(operator.validate({"rules": [{"field": "a", "operator": "matches_regex", "value": "("}]}).valid)
        self.assertFalse(operator.validate({"rules": [], "mode": "maybe"}).valid)
        self.assertTrue(operator.validate({"rules": [{"field": "a", "operator": "equals", "value": None}]}).valid)


class SortTests(unittest.TestCase):
    def sort(self, items, field: str, direction: str = "asc"):
        return run(SortOperator().execute(items, {"field": field, "direction": direction}, ExecutionContext()))

    def test_numeric_strings_and_missing_values_last(self) -> None:
        ascending = self.sort(ITEMS, "score")
        self.assertEqual([item["id"] for item in ascending], [3, 1, 2, 4])
        descending = self.sort(ITEMS, "score", "desc")
        self.assertEqual([item["id"] for item in descending], [2, 1, 3, 4])

    def test_dates_are_compared_chronologically(self) -> None:
        items = [
            {"id": "b", "when": "Tue, 02 Jan 2024 10:00:00 GMT"},
            {"id": "a", "when": "2023-12-31"},
            {"id": "c", "when": "2024-01-03T08:00:00Z"},
        ]
        self.assertEqual([item["id"] for item in self.sort(items, "when")], ["a", "b", "c"])

    def test_input_is_not_mutated(self) -> None:
        items = [{"n": 2}, {"n": 1}]
        self.sort(items, "n")
        self.assertEqual(items, [{"n": 2}, {"n": 1}])

    def test_validation(self) -> None:
        self.assertFalse(SortOperator().validate({"field": "x"}).valid)
        self.assertFalse(SortOperator().validate({"field": "x", "direction": "up"}).valid)


class ListTransformTests(unittest.TestCase):
    def test_truncate(self) -> None:
        operator = TruncateOperator()
        self.assertEqual(run(operator.execute([1, 2, 3], {"count": 2}, ExecutionContext())), [1, 2])
        self.assertEqual(run(operator.execute([1, 2], {"count": 0}, ExecutionContext())), [])
        self.assertEqual(run(operator.execute(None, {"count": 2}, ExecutionContext())), [])
        self.assertFalse(operator.validate({"count": -1}).valid)
        self.assertFalse(operator.validate({"count": 1.5}).valid)

    def test_tail(self) -> None:
        operator = TailOperator()
        self.assertEqual(run(operator.execute([1, 2, 3, 4], {"count": 2}, ExecutionContext())), [3, 4])
        self.assertEqual(run(operator.execute([1, 2, 3, 4], {"count": 1, "skip": True}, ExecutionContext())), [2, 3, 4])
        self.assertEqual(run(operator.execute([1, 2], {"count": 0}, ExecutionContext())), [])
        self.assertEqual(run(operator.execute([1, 2], {"count": 0, "skip": True}, ExecutionContext())), [1, 2])

    def test_unique_keeps_first_occurrence(self) -> None:
        items = [
            {"id": 1, "group": "a"},
            {"id": 2, "group": "b"},
            {"id": 3, "group": "a"},
            {"id": 4},
            {"id": 5},
            {"id": 6, "group": None},
        ]
        result = run(UniqueOperator().execute(items, {"field": "group"}, ExecutionContext()))
        self.assertEqual([item["id"] for item in result], [1, 2, 4, 6])

    def test_scalar_input_is_rejected(self) -> None:
        with self.assertRaises(OperatorError):
            run(TruncateOperator().execute("text", {"count": 1}, ExecutionContext()))

    def test_pipe_output_passes_through(self) -> None:
        payload = {"anything": [1]}
        self.assertIs(run(PipeOutputOperator().execute(payload, None, ExecutionContext())), payload)
        self.assertTrue(PipeOutputOperator().validate(None).valid)


RSS_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Example feed</title>
    <item>
      <title>First</title>
      <link>https://example.com/1</link>
      <description>Short</description>
      <content:encoded><![CDATA[<p>Full <b>story</b></p>]]></content:encoded>
      <dc:date>2024-01-02T00:00:00Z</dc:date>
    </item>
    <item>
      <title>Second</title>
      <link>https://example.com/2</link>
      <description>Plain text</description>
      <pubDate>Tue, 02 Jan 2024 10:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""

ATOM_FEED = """<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom example</title>
  <entry>
    <title>Atom one</title>
    <link href="https://example.com/a1"/>
    <summary>Summary &amp; more</summary>
    <updated>2024-03-01T00:00:00Z</updated>
  </entry>
</feed>
"""

PAGE = """<html><body>
  <script>document.write('<h2 class="t">Injected</h2>')</script>
  <noscript><h2 class="t">Hidden</h2></noscript>
  <h2 class="t">One</h2>
  <h2 class="t"> Two </h2>
  <a href="/first">First</a>
  <a>No link</a>
</body></html>
"""


class FetchSourceTests(unittest.TestCase):
    def serve(self, body, content_type: str, seen: list[httpx.Request] | None = None) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            if seen is not None:
                seen.append(request)
            payload = body.encode("utf-8") if isinstance(body, str) else body
            return httpx.Response(200, content=payload, headers={"content-type": content_type})

        return httpx.MockTransport(handler)

    def test_csv_with_header_casts_values(self) -> None:
        seen: list[httpx.Request] = []
        body = "name,age,active,note\nAda,36,true,\n\nBob,41.5,FALSE,hi\n"
        operator = FetchCsvOperator(transport=self.serve(body, "text/csv", seen))

        rows = run(operator.execute(None, {"url": "https://example.com/people.csv"}, ExecutionContext()))

        self.assertEqual(
            rows,
            [
                {"name": "Ada", "age": 36, "active": True, "note": None},
                {"name": "Bob", "age": 41.5, "active": False, "note": "hi"},
            ],
        )
        self.assertEqual(seen[0].headers["accept"], "text/csv, text/plain, */*")

    def test_csv_without_header(self) -> None:
        self.assertEqual(
            parse_csv("1;x\n2;inf\n", delimiter=";", has_header=False),
            [{"column_0": 1, "column_1": "x"}, {"column_0": 2, "column_1": "inf"}],
        )
        self.assertEqual(parse_csv(""), [])
        self.assertFalse(FetchCsvOperator().validate({"url": "https://example.com", "delimiter": ";;"}).valid)

    def test_rss_items_are_normalised(self) -> None:
        seen: list[httpx.Request] = []
        operator = FetchRssOperator(transport=self.serve(RSS_FEED, "application/rss+xml", seen))

        items = run(operator.execute(None, {"url": "https://example.com/feed", "maxItems": 5}, ExecutionContext()))

        self.assertEqual(
            items,
            [
                {
                    "title": "First",
                    "link": "https://example.com/1",
                    "description": "Full story",
                    "pubDate": "2024-01-02T00:00:00Z",
                },
                {
                    "title": "Second",
                    "link": "https://example.com/2",
                    "description": "Plain text",
                    "pubDate": "Tue, 02 Jan 2024 10:00:00 GMT",
                },
            ],
        )
        self.assertIn("application/rss+xml", seen[0].headers["accept"])

        limited = FetchRssOperator(transport=self.serve(RSS_FEED, "application/rss+xml"))
        self.assertEqual(
            len(run(limited.execute(None, {"url": "https://example.com/feed", "maxItems": 1}, ExecutionContext()))),
            1,
        )

    def test_atom_entries_use_link_href(self) -> None:
        self.assertEqual(
            parse_feed(ATOM_FEED),
            [
                {
                    "title": "Atom one",
                    "link": "https://example.com/a1",
                    "description": "Summary & more",
                    "pubDate": "2024-03-01T00:00:00Z",
                }
            ],
        )

    def test_broken_feed_is_reported(self) -> None:
        operator = FetchRssOperator(transport=self.serve("<rss><channel>", "text/xml"))
        with self.assertRaisesRegex(OperatorError, "RSS parsing failed"):
            run(operator.execute(None, {"url": "https://example.com/feed"}, ExecutionContext()))
        self.assertFalse(operator.validate({"url": "https://example.com/feed", "maxItems": 0}).valid)

    def test_page_selector_extraction(self) -> None:
        seen: list[httpx.Request] = []
        operator = FetchPageOperator(transport=self.serve(PAGE, "text/html", seen))
        url = "https://example.com/page"

        self.assertEqual(run(operator.execute(None, {"url": url, "selector": "h2.t"}, ExecutionContext())), ["One", "Two"])
        self.assertEqual(
            run(operator.execute(None, {"url": url, "selector": "a", "attribute": "href"}, ExecutionContext())),
            ["/first"],
        )
        self.assertEqual(
            run(operator.execute(None, {"url": url, "selector": "h2.t", "multiple": False}, ExecutionContext())),
            "One",
        )
        self.assertEqual(
            run(operator.execute(None, {"url": url, "selector": "table", "multiple": False}, ExecutionContext())),
            "",
        )
        self.assertTrue(seen[0].headers["accept"].startswith("text/html"))

    def test_page_selector_is_validated(self) -> None:
        operator = FetchPageOperator()
        result = operator.validate({"url": "https://example.com", "selector": "h2["})
        self.assertFalse(result.valid)
        self.assertIn("Invalid CSS selector", result.error)
        self.assertFalse(operator.validate({"url": "https://example.com"}).valid)
        self.assertTrue(operator.validate({"url": "https://example.com", "selector": "div > p.lead"}).valid)


class StringOperatorTests(unittest.TestCase):
    def apply(self, operator, input_data, config):
        return run(operator.execute(input_data, config, ExecutionContext()))

    def test_regex_extract(self) -> None:
        items = [{"text": "Order 42 shipped"}, {"text": "none here"}, {"text": 7}, "plain"]
        config = {"field": "text", "pattern": r"Order (\d+)", "mode": "extract", "group": 1}

        result = self.apply(RegexOperator(), items, config)

        self.assertEqual(result, [{"text": "42"}, {"text": None}, {"text": 7}, "plain"])
        self.assertEqual(items[0], {"text": "Order 42 shipped"})
        self.assertIsNone(self.apply(RegexOperator(), None, config))

    def test_regex_extract_global_and_flags(self) -> None:
        item = {"meta": {"text": "a1 b22 C333"}}
        self.assertEqual(
            self.apply(RegexOperator(), item, {"field": "meta.text", "pattern": r"\d+", "mode": "extract", "flags": "g", "group": 1}),
            {"meta": {"text": "22"}},
        )
        self.assertEqual(
            self.apply(RegexOperator(), item, {"field": "meta.text", "pattern": "c3+", "mode": "extract", "flags": "i"}),
            {"meta": {"text": "C333"}},
        )
        self.assertEqual(
            self.apply(RegexOperator(), item, {"field": "meta.text", "pattern": "b", "mode": "extract", "group": 3}),
            {"meta": {"text": None}},
        )

    def test_regex_replace(self) -> None:
        item = {"date": "2024-01-15", "slug": "a-b-c"}
        self.assertEqual(
            self.apply(
                RegexOperator(),
                item,
                {"field": "date", "pattern": r"(\d+)-(\d+)-(\d+)", "mode": "replace", "replacement": "$3/$2/$1 ($&) $$"},
            )["date"],
            "15/01/2024 (2024-01-15) $",
        )
        first_only = {"field": "slug", "pattern": "-", "mode": "replace", "replacement": "+"}
        self.assertEqual(self.apply(RegexOperator(), item, first_only)["slug"], "a+b-c")
        self.assertEqual(self.apply(RegexOperator(), item, {**first_only, "flags": "g"})["slug"], "a+b+c")
        named = {"field": "slug", "pattern": r"(?P<head>\w)-", "mode": "replace", "replacement": "$<head>.", "flags": "g"}
        self.assertEqual(self.apply(RegexOperator(), item, named)["slug"], "a.b.c")

    def test_regex_validation(self) -> None:
        operator = RegexOperator()
        self.assertTrue(operator.validate({"field": "f", "pattern": "x", "mode": "extract"}).valid)
        self.assertFalse(operator.validate({"field": "f", "pattern": "x", "mode": "replace"}).valid)
        self.assertFalse(operator.validate({"field": "f", "pattern": "(", "mode": "extract"}).valid)
        self.assertFalse(operator.validate({"field": "f", "pattern": "x", "mode": "extract", "flags": "y"}).valid)
        self.assertFalse(operator.validate({"field": "f", "pattern": "x" * 501, "mode": "extract"}).valid)
        self.assertFalse(operator.validate({"field": "f", "pattern": "x", "mode": "extract", "group": -1}).valid)

    def test_string_replace(self) -> None:
        items = [{"title": "one fish two fish"}, {"title": None}]
        every = self.apply(StringReplaceOperator(), items, {"field": "title", "search": "fish", "replace": "cat"})
        self.assertEqual(every, [{"title": "one cat two cat"}, {"title": None}])
        first = self.apply(StringReplaceOperator(), items[0], {"field": "title", "search": "fish", "replace": "cat", "all": False})
        self.assertEqual(first, {"title": "one cat two fish"})
        self.assertFalse(StringReplaceOperator().validate({"field": "title", "search": "", "replace": "x"}).valid)

    def test_substring(self) -> None:
        items = [{"code": "ABCDEFG"}, {"code": "AB"}, {"other": 1}]
        self.assertEqual(
            self.apply(SubstringOperator(), items, {"field": "code", "start": 1, "end": 4}),
            [{"code": "BCD"}, {"code": "B"}, {"other": 1}],
        )
        self.assertEqual(self.apply(SubstringOperator(), {"code": "ABCDEFG"}, {"field": "code", "start": 5}), {"code": "FG"})
        self.assertFalse(SubstringOperator().validate({"field": "code", "start": 4, "end": 2}).valid)
        self.assertFalse(SubstringOperator().validate({"field": "code", "start": -1}).valid)


class RenameTests(unittest.TestCase):
    def test_renames_nested_fields(self) -> None:
        items = [
            {"title": "A", "meta": {"lang": "en", "id": 1}},
            {"title": "B", "meta": {"id": 2}},
            "not an object",
        ]
        config = {"mappings": [{"source": "meta.lang", "target": "language"}, {"source": "title", "target": "info.name"}]}

        result = run(RenameOperator().execute(items, config, ExecutionContext()))

        self.assertEqual(
            result,
            [
                {"meta": {"id": 1}, "language": "en", "info": {"name": "A"}},
                {"meta": {"id": 2}, "info": {"name": "B"}},
                "not an object",
            ],
        )
        self.assertEqual(items[0]["meta"], {"lang": "en", "id": 1})

    def test_empty_mappings_and_none(self) -> None:
        self.assertEqual(run(RenameOperator().execute([{"a": 1}], {"mappings": []}, ExecutionContext())), [{"a": 1}])
        self.assertIsNone(run(RenameOperator().execute(None, {"mappings": []}, ExecutionContext())))
        self.assertFalse(RenameOperator().validate({}).valid)
        self.assertFalse(RenameOperator().validate({"mappings": [{"source": "a", "target": ""}]}).valid)

    def test_output_schema_follows_renames(self) -> None:
        schema = {
            "rootType": "array",
            "fields": [
                {"name": "title", "path": "title", "type": "string"},
                {"name": "meta", "path": "meta", "type": "object", "children": [{"name": "lang", "path": "meta.lang", "type": "string"}]},
            ],
        }
        config = {"mappings": [{"source": "meta.lang", "target": "info.language"}]}

        renamed = RenameOperator().get_output_schema(schema, config)

        self.assertEqual(renamed["rootType"], "array")
        self.assertEqual(renamed["fields"][0], schema["fields"][0])
        self.assertEqual(renamed["fields"][1]["children"], [{"name": "language", "path": "info.language", "type": "string"}])
        self.assertIsNone(RenameOperator().get_output_schema(None, config))


class UrlBuilderTests(unittest.TestCase):
    def test_builds_query_from_values_and_inputs(self) -> None:
        config = {
            "baseUrl": "https://api.example.com/search?lang=en",
            "params": [
                {"key": "q", "fromInput": "Query"},
                {"key": "limit", "value": "10"},
                {"key": "page", "fromInput": "Page", "value": "1"},
            ],
        }
        context = ExecutionContext(user_inputs={"Query": "rust & go"})

        result = run(UrlBuilderOperator().execute([1, 2], config, context))

        self.assertEqual(
            result,
            {"url": "https://api.example.com/search?lang=en&q=rust+%26+go&limit=10&page=1", "input": [1, 2]},
        )

    def test_bare_host_gets_root_path(self) -> None:
        result = run(UrlBuilderOperator().execute(None, {"baseUrl": "https://example.com"}, ExecutionContext()))
        self.assertEqual(result, {"url": "https://example.com/", "input": None})

    def test_validation_and_schema(self) -> None:
        operator = UrlBuilderOperator()
        self.assertFalse(operator.validate({"baseUrl": "example"}).valid)
        self.assertFalse(operator.validate({"baseUrl": "https://example.com", "params": [{"key": "q"}]}).valid)
        self.assertTrue(operator.validate({"baseUrl": "https://example.com", "params": [{"key": "q", "value": ""}]}).valid)
        schema = operator.get_output_schema({"rootType": "array", "fields": []})
        self.assertEqual([field["type"] for field in schema["fields"]], ["string", "array"])
        self.assertEqual(operator.get_output_schema()["fields"][1]["type"], "object")


class EndToEndTests(unittest.TestCase):
    def test_fetch_filter_sort_pipeline(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=ITEMS)

        catalog = build_default_catalog(transport=httpx.MockTransport(handler))
        executor = PipeExecutor(catalog)
        definition = {
            "nodes": [
                {"id": "fetch", "type": "fetch", "data": {"config": {"url": "https://api.example.com/items"}}},
                {
                    "id": "keep",
                    "type": "filter",
                    "data": {"config": {"rules": [{"field": "meta.lang", "operator": "equals", "value": "en"}]}},
                },
                {"id": "order", "type": "sort", "data": {"config": {"field": "score", "direction": "desc"}}},
                {"id": "out", "type": "pipe-output", "data": {}},
            ],
            "edges": [
                {"id": "e1", "source": "fetch", "target": "keep"},
                {"id": "e2", "source": "keep", "target": "order"},
                {"id": "e3", "source": "order", "target": "out"},
            ],
        }

        result = executor.run(definition)

        self.assertEqual([item["id"] for item in result.final_result], [1, 3])
        self.assertEqual(result.execution_order, ["fetch", "keep", "order", "out"])

    def test_failing_transform_keeps_upstream_result(self) -> None:
        executor = PipeExecutor(build_default_catalog())
        definition = {
            "nodes": [
                {"id": "n", "type": "number-input", "data": {"config": {"label": "N", "defaultValue": 3}}},
                {"id": "t", "type": "truncate", "data": {"config": {"count": 1}}},
            ],
            "edges": [{"id": "e", "source": "n", "target": "t"}],
        }

        with self.assertRaises(OperatorExecutionError) as ctx:
            executor.run(definition)

        self.assertEqual(ctx.exception.node_id, "t")
        self.assertIn("requires array input, received number", ctx.exception.message)
        self.assertEqual(ctx.exception.intermediate_results["n"].result, 3)


if __name__ == "__main__":
    unittest.main()
