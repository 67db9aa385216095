from __future__ import annotations

from collections.abc import Iterable

import httpx

from pipe_runtime.engine.catalog import OperatorCatalog
from pipe_runtime.operators.base import (
    ConfiguredOperator,
    ItemsOperator,
    OperatorConfig,
    OperatorError,
    PerItemOperator,
)
from pipe_runtime.operators.sources import (
    DomainAllowlist,
    FetchCsvOperator,
    FetchJsonOperator,
    FetchPageOperator,
    FetchRssOperator,
    HttpSourceOperator,
    is_public_http_url,
)
from pipe_runtime.operators.strings import RegexOperator, StringReplaceOperator, SubstringOperator
from pipe_runtime.operators.transforms import (
    FilterOperator,
    PipeOutputOperator,
    RenameOperator,
    SortOperator,
    TailOperator,
    TruncateOperator,
    UniqueOperator,
)
from pipe_runtime.operators.urls import UrlBuilderOperator
from pipe_runtime.operators.user_inputs import (
    DateInputOperator,
    NumberInputOperator,
    TextInputOperator,
    UrlInputOperator,
)


SOURCE_OPERATORS: tuple[type[HttpSourceOperator], ...] = (
    FetchJsonOperator,
    FetchCsvOperator,
    FetchRssOperator,
    FetchPageOperator,
)


def build_default_catalog(
    *,
    request_timeout_seconds: float = 30,
    transport: httpx.AsyncBaseTransport | None = None,
    domain_allowlist: Iterable[str] | None = None,
) -> OperatorCatalog:
    """Fresh catalog with every built-in operator registered."""
    catalog = OperatorCatalog()
    allowlist = DomainAllowlist.from_iterable(domain_allowlist)
    for source in SOURCE_OPERATORS:
        catalog.register(
            source(request_timeout_seconds=request_timeout_seconds, transport=transport, allowlist=allowlist)
        )
    catalog.register(TextInputOperator())
    catalog.register(NumberInputOperator())
    catalog.register(UrlInputOperator())
    catalog.register(DateInputOperator())
    catalog.register(FilterOperator())
    catalog.register(SortOperator())
    catalog.register(TruncateOperator())
    catalog.register(TailOperator())
    catalog.register(UniqueOperator())
    catalog.register(RenameOperator())
    catalog.register(RegexOperator())
    catalog.register(StringReplaceOperator())
    catalog.register(SubstringOperator())
    catalog.register(UrlBuilderOperator())
    catalog.register(PipeOutputOperator())
    # Older pipes refer to the JSON fetcher as plain "fetch".
    catalog.register_alias("fetch", "fetch-json")
    return catalog


__all__ = [
    "ConfiguredOperator",
    "DateInputOperator",
    "DomainAllowlist",
    "FetchCsvOperator",
    "FetchJsonOperator",
    "FetchPageOperator",
    "FetchRssOperator",
    "FilterOperator",
    "HttpSourceOperator",
    "ItemsOperator",
    "NumberInputOperator",
    "OperatorConfig",
    "OperatorError",
    "PerItemOperator",
    "PipeOutputOperator",
    "RegexOperator",
    "RenameOperator",
    "SortOperator",
    "StringReplaceOperator",
    "SubstringOperator",
    "TailOperator",
    "TextInputOperator",
    "TruncateOperator",
    "UniqueOperator",
    "UrlBuilderOperator",
    "UrlInputOperator",
    "build_default_catalog",
    "is_public_http_url",
]
