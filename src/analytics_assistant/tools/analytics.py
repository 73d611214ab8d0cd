"""
Analytics query tools: predefined query builders and validated read-only SQL.

Custom SQL is sent to the backend with its parameters kept separate; the
website id is always bound as ``{websiteId:String}`` from the run context.
"""

import re
from typing import Any, Literal

from pydantic import Field

from ..backend.client import BoundBackend
from .base import Tool, ToolInput
from .common import date_range_problems

MAX_QUERY_ROWS = 1000

QueryType = Literal[
    "summary",
    "traffic",
    "sessions",
    "top_pages",
    "entry_pages",
    "exit_pages",
    "referrers",
    "utm_sources",
    "devices",
    "browsers",
    "operating_systems",
    "countries",
    "events",
    "errors",
    "performance",
]

FORBIDDEN_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE", "RENAME",
    "ATTACH", "DETACH", "GRANT", "REVOKE", "EXEC", "EXECUTE", "SYSTEM", "OPTIMIZE",
    "KILL", "SET", "UNION", "OUTFILE",
)

PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*):([A-Za-z0-9_()]+)\}")
LEADING_KEYWORD = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)
STRING_LITERAL = re.compile(r"'(?:[^'\\]|\\.)*'")
LINE_COMMENT = re.compile(r"--[^\n]*")
BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)


class SqlQueryInput(ToolInput):
    sql: str = Field(
        min_length=1,
        description=(
            "A single SELECT or WITH query. Use placeholders such as {limit:UInt32} for values "
            "and filter the website with client_id = {websiteId:String}."
        ),
    )
    params: dict[str, str | int | float | bool] = Field(
        default_factory=dict,
        description="Values for the placeholders used in the query (websiteId is added automatically)",
    )


class QueryBuilderInput(ToolInput):
    type: QueryType = Field(description="The predefined query to run")
    from_date: str = Field(description="Start date (YYYY-MM-DD)")
    to_date: str = Field(description="End date (YYYY-MM-DD)")
    time_unit: Literal["hour", "day", "week", "month"] = Field(default="day", description="Bucket size for time series")
    limit: int = Field(default=10, ge=1, le=MAX_QUERY_ROWS, description="Maximum rows to return")


class TopPagesInput(ToolInput):
    from_date: str = Field(description="Start date (YYYY-MM-DD)")
    to_date: str = Field(description="End date (YYYY-MM-DD)")
    limit: int = Field(default=10, ge=1, le=100, description="Number of pages to return")


def _strip_sql(sql: str) -> str:
    """The query with comments and string literals blanked out.

    Placeholders inside either are not bound by the backend, so only the
    remaining text counts towards the parameters a query uses.
    """
    text = BLOCK_COMMENT.sub(" ", sql)
    text = LINE_COMMENT.sub(" ", text)
    return STRING_LITERAL.sub("''", text)


def validate_sql(sql: str, params: dict[str, Any], website_id: str | None = None) -> list[str]:
    """Check that a query is a single read-only statement using bound parameters."""
    problems = []
    code = _strip_sql(sql)

    if not LEADING_KEYWORD.match(code):
        problems.append("Query must start with SELECT or WITH")

    if ";" in code.strip().rstrip(";"):
        problems.append("Only a single statement is allowed")

    upper = code.upper()
    for keyword in FORBIDDEN_KEYWORDS:
        if re.search(rf"\b{keyword}\b", upper):
            problems.append(f"Keyword {keyword} is not allowed")

    placeholders = {name for name, _ in PLACEHOLDER.findall(code)}
    if "websiteId" not in placeholders:
        problems.append("Query must filter by website with client_id = {websiteId:String}")

    missing = sorted(placeholders - set(params) - {"websiteId"})
    if missing:
        problems.append(f"Missing values for placeholders: {', '.join(missing)}")

    unused = sorted(set(params) - placeholders)
    if unused:
        problems.append(f"Parameters not used in the query: {', '.join(unused)}")

    if website_id and website_id in sql:
        problems.append("Do not write the website id into the query; use {websiteId:String}")

    return problems


def create_analytics_tools(backend: BoundBackend) -> list[Tool]:
    """Query tools bound to the run's website."""
    website_id = backend.ctx.resource_id

    async def execute_sql_query(params: SqlQueryInput) -> Any:
        bound = {k: v for k, v in params.params.items() if k != "websiteId"}
        bound["websiteId"] = website_id
        result = await backend.call("query.execute", {"sql": params.sql, "params": bound})
        rows = result.get("data", result) if isinstance(result, dict) else result
        if isinstance(rows, list):
            return {"rows": rows[:MAX_QUERY_ROWS], "rowCount": len(rows)}
        return result

    async def execute_query_builder(params: QueryBuilderInput) -> Any:
        return await backend.call("query.builder", {
            "websiteId": website_id,
            "type": params.type,
            "from": params.from_date,
            "to": params.to_date,
            "timeUnit": params.time_unit,
            "limit": params.limit,
            "timezone": backend.ctx.timezone,
        })

    async def get_top_pages(params: TopPagesInput) -> Any:
        return await backend.call("query.builder", {
            "websiteId": website_id,
            "type": "top_pages",
            "from": params.from_date,
            "to": params.to_date,
            "limit": params.limit,
            "timezone": backend.ctx.timezone,
        })

    def check_sql(params: SqlQueryInput) -> list[str]:
        return validate_sql(params.sql, params.params, website_id)

    def check_dates(params: QueryBuilderInput | TopPagesInput) -> list[str]:
        return date_range_problems(params.from_date, params.to_date)

    return [
        Tool(
            name="execute_query_builder",
            description=(
                "Run a predefined analytics query (traffic, sessions, pages, referrers, devices, "
                "geography, events, errors, performance). Preferred over custom SQL."
            ),
            input_model=QueryBuilderInput,
            handler=execute_query_builder,
            validator=check_dates,
        ),
        Tool(
            name="get_top_pages",
            description="Get the most viewed pages of the website for a date range.",
            input_model=TopPagesInput,
            handler=get_top_pages,
            validator=check_dates,
        ),
        Tool(
            name="execute_sql_query",
            description=(
                "Run a custom read-only SQL query when no query builder fits. Only SELECT/WITH, "
                "placeholders like {limit:UInt32} with values in params, and "
                "client_id = {websiteId:String}. Never interpolate values into the SQL."
            ),
            input_model=SqlQueryInput,
            handler=execute_sql_query,
            validator=check_sql,
        ),
    ]
