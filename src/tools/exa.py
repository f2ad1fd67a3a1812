"""Exa tool definitions: request formatting only.

Each tool turns caller arguments into one upstream call and returns the
upstream JSON untouched. Key selection and failover live in the executor.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.upstream.executor import FailoverExecutor

SEARCH = "/search"
CONTENTS = "/contents"
RESEARCH_TASKS = "/research/v1"
CONTEXT = "/context"

DEFAULT_NUM_RESULTS = 8
DEFAULT_MAX_CHARACTERS = 3000

COMPANY_DOMAINS = [
    "bloomberg.com", "reuters.com", "crunchbase.com", "sec.gov",
    "linkedin.com", "forbes.com", "businesswire.com", "prnewswire.com",
]


class ToolArgumentError(ValueError):
    pass


class UnknownToolError(LookupError):
    pass


@dataclass
class UpstreamCall:
    endpoint: str
    payload: dict | None
    method: str = "POST"


@dataclass
class ToolSpec:
    tool_id: str
    name: str
    description: str
    build: Callable[[dict], UpstreamCall]


def _require_str(args: dict, name: str) -> str:
    value = args.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ToolArgumentError(f"'{name}' must be a non-empty string")
    return value


def _optional_int(args: dict, name: str, default: int | None) -> int | None:
    value = args.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ToolArgumentError(f"'{name}' must be a positive integer")
    return value


def _optional_choice(args: dict, name: str, choices: tuple[str, ...], default: str) -> str:
    value = args.get(name, default)
    if value not in choices:
        raise ToolArgumentError(f"'{name}' must be one of: {', '.join(choices)}")
    return value


def _web_search(args: dict) -> UpstreamCall:
    return UpstreamCall(SEARCH, {
        "query": _require_str(args, "query"),
        "type": _optional_choice(args, "type", ("auto", "fast", "deep"), "auto"),
        "numResults": _optional_int(args, "numResults", DEFAULT_NUM_RESULTS),
        "contents": {
            "text": True,
            "context": {"maxCharacters": _optional_int(args, "contextMaxCharacters", 10000)},
            "livecrawl": _optional_choice(args, "livecrawl", ("fallback", "preferred"), "fallback"),
        },
    })


def _deep_search(args: dict) -> UpstreamCall:
    payload: dict[str, Any] = {
        "query": _require_str(args, "objective"),
        "type": "deep",
        "contents": {"context": True},
    }
    queries = args.get("search_queries")
    if queries:
        if not isinstance(queries, list) or not all(isinstance(q, str) for q in queries):
            raise ToolArgumentError("'search_queries' must be a list of strings")
        payload["additionalQueries"] = queries
    return UpstreamCall(SEARCH, payload)


def _company_research(args: dict) -> UpstreamCall:
    company = _require_str(args, "companyName")
    return UpstreamCall(SEARCH, {
        "query": f"{company} company business corporation information news financial",
        "type": "auto",
        "numResults": _optional_int(args, "numResults", DEFAULT_NUM_RESULTS),
        "contents": {
            "text": {"maxCharacters": DEFAULT_MAX_CHARACTERS},
            "livecrawl": "preferred",
        },
        "includeDomains": COMPANY_DOMAINS,
    })


def _linkedin_search(args: dict) -> UpstreamCall:
    query = _require_str(args, "query")
    search_type = _optional_choice(args, "searchType", ("profiles", "companies", "all"), "all")
    suffix = {"profiles": "LinkedIn profile", "companies": "LinkedIn company", "all": "LinkedIn"}
    return UpstreamCall(SEARCH, {
        "query": f"{query} {suffix[search_type]}",
        "type": "neural",
        "numResults": _optional_int(args, "numResults", DEFAULT_NUM_RESULTS),
        "contents": {
            "text": {"maxCharacters": DEFAULT_MAX_CHARACTERS},
            "livecrawl": "preferred",
        },
        "includeDomains": ["linkedin.com"],
    })


def _crawling(args: dict) -> UpstreamCall:
    return UpstreamCall(CONTENTS, {
        "ids": [_require_str(args, "url")],
        "contents": {
            "text": {"maxCharacters": _optional_int(args, "maxCharacters", DEFAULT_MAX_CHARACTERS)},
            "livecrawl": "preferred",
        },
    })


def _deep_researcher_start(args: dict) -> UpstreamCall:
    return UpstreamCall(RESEARCH_TASKS, {
        "model": _optional_choice(args, "model", ("exa-research", "exa-research-pro"), "exa-research"),
        "instructions": _require_str(args, "instructions"),
        "output": {"inferSchema": False},
    })


def _deep_researcher_check(args: dict) -> UpstreamCall:
    task_id = _require_str(args, "taskId")
    if "/" in task_id:
        raise ToolArgumentError("'taskId' must not contain '/'")
    return UpstreamCall(f"{RESEARCH_TASKS}/{task_id}", None, method="GET")


def _code_context(args: dict) -> UpstreamCall:
    payload: dict[str, Any] = {"query": _require_str(args, "query")}
    tokens_num = args.get("tokensNum")
    if tokens_num is not None:
        if tokens_num != "dynamic" and (isinstance(tokens_num, bool) or not isinstance(tokens_num, int)):
            raise ToolArgumentError("'tokensNum' must be an integer or 'dynamic'")
        payload["tokensNum"] = tokens_num
    return UpstreamCall(CONTEXT, payload)


TOOLS: dict[str, ToolSpec] = {
    spec.tool_id: spec
    for spec in [
        ToolSpec("web_search_exa", "Web Search (Exa)", "Real-time web search using Exa AI", _web_search),
        ToolSpec("get_code_context_exa", "Code Context Search",
                 "Search for code snippets, examples, and documentation", _code_context),
        ToolSpec("deep_search_exa", "Deep Search (Exa)", "Advanced web search with query expansion", _deep_search),
        ToolSpec("crawling_exa", "Web Crawling", "Extract content from specific URLs", _crawling),
        ToolSpec("deep_researcher_start", "Deep Researcher Start",
                 "Start a comprehensive AI research task", _deep_researcher_start),
        ToolSpec("deep_researcher_check", "Deep Researcher Check",
                 "Check status and retrieve results of research task", _deep_researcher_check),
        ToolSpec("linkedin_search_exa", "LinkedIn Search", "Search LinkedIn profiles and companies", _linkedin_search),
        ToolSpec("company_research_exa", "Company Research",
                 "Research companies and organizations", _company_research),
    ]
}


def list_tools(enabled: list[str]) -> list[dict]:
    return [
        {
            "id": spec.tool_id,
            "name": spec.name,
            "description": spec.description,
            "enabled": spec.tool_id in enabled,
        }
        for spec in TOOLS.values()
    ]


async def run_tool(
    tool_id: str,
    args: dict,
    executor: FailoverExecutor,
    enabled: list[str],
    api_key: str | None = None,
    timeout: float | None = None,
) -> Any:
    """Format and execute one tool call.

    Raises:
        UnknownToolError: tool does not exist or is not enabled.
        ToolArgumentError: arguments failed validation.
    """
    spec = TOOLS.get(tool_id)
    if spec is None or tool_id not in enabled:
        raise UnknownToolError(tool_id)

    call = spec.build(args)
    return await executor.execute_with_failover(
        call.endpoint,
        call.payload,
        override_credential=api_key,
        timeout=timeout,
        method=call.method,
    )
