"""
Built-in tools shipped with the runtime.

- ``get_current_time`` (core)
- ``web_search`` and ``browse_webpage`` (on-demand ``web`` category)
"""

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
import structlog
from bs4 import BeautifulSoup

from ..config import Settings, get_settings
from .base import Tool, ToolParameter, ToolResult
from .registry import ToolRegistry

logger = structlog.get_logger()

WEB_CATEGORY = "web"
WEB_SEARCH_TOOL = "web_search"
WEB_DESCRIPTION = "Search the web and read web pages"

MAX_PAGE_CHARS = 10_000
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


async def get_current_time(timezone_name: str = "UTC") -> ToolResult:
    """Current date and time in the given IANA timezone."""
    if timezone_name.upper() == "UTC":
        tz = timezone.utc
    else:
        try:
            tz = ZoneInfo(timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            return ToolResult(success=False, error=f"Unknown timezone: {timezone_name}")
    now = datetime.now(timezone.utc).astimezone(tz)
    return ToolResult(
        success=True,
        output=now.strftime("%A, %Y-%m-%d %H:%M:%S %Z"),
        data={"iso": now.isoformat(), "timezone": timezone_name},
    )


def _format_search_results(data: dict[str, Any], max_results: int) -> str:
    results = []
    if data.get("answer"):
        results.append(f"**Summary:** {data['answer']}\n")

    for result in data.get("results", [])[:max_results]:
        results.append(
            f"**{result.get('title', '')}**\n"
            f"URL: {result.get('url', '')}\n"
            f"{result.get('content', '')[:500]}\n"
        )

    return "\n---\n".join(results) if results else "No results found."


def make_web_search(api_key: str, http_client: httpx.AsyncClient | None = None):
    """Build the Tavily-backed search handler."""

    async def web_search(query: str, max_results: int = 5) -> ToolResult:
        if not api_key:
            return ToolResult(success=False, error="Web search is not configured (TAVILY_API_KEY is empty)")

        payload = {
            "api_key": api_key,
            "query": query,
            "max_results": max_results,
            "include_answer": True,
        }
        try:
            if http_client is not None:
                response = await http_client.post("https://api.tavily.com/search", json=payload, timeout=30.0)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post("https://api.tavily.com/search", json=payload, timeout=30.0)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("Web search error", error=str(e))
            return ToolResult(success=False, error=f"Search failed: {e}", exception=e)

        return ToolResult(success=True, output=_format_search_results(data, max_results), data=data)

    return web_search


def extract_page_text(html: str, url: str, extract_links: bool = False) -> tuple[str, dict[str, Any]]:
    """Readable text (and optionally links) from an HTML document."""
    soup = BeautifulSoup(html, "html.parser")

    for element in soup(["script", "style", "nav", "footer", "header", "aside"]):
        element.decompose()

    title = soup.title.string if soup.title and soup.title.string else "No title"

    main_content = soup.find("main") or soup.find("article") or soup.find("body")
    if main_content:
        text = main_content.get_text(separator="\n", strip=True)
    else:
        text = soup.get_text(separator="\n", strip=True)

    text = "\n".join(line.strip() for line in text.split("\n") if line.strip())
    text = text[:MAX_PAGE_CHARS]

    output = f"**Title:** {title}\n**URL:** {url}\n\n**Content:**\n{text}"
    data: dict[str, Any] = {"title": title, "url": url, "content": text}

    if extract_links:
        links = []
        for a in soup.find_all("a", href=True)[:20]:
            href = a["href"]
            if href.startswith("http"):
                links.append({"text": a.get_text(strip=True)[:100], "url": href})
        data["links"] = links
        if links:
            output += "\n\n**Links:**\n"
            for link in links:
                output += f"- [{link['text']}]({link['url']})\n"

    return output, data


async def browse_webpage(url: str, extract_links: bool = False) -> ToolResult:
    """Fetch a page and return its readable text."""
    try:
        async with httpx.AsyncClient(
            timeout=30.0,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("Browser error", url=url, error=str(e))
        return ToolResult(success=False, error=f"Failed to browse {url}: {e}", exception=e)

    output, data = extract_page_text(response.text, url, extract_links)
    return ToolResult(success=True, output=output, data=data)


def create_builtin_tools(settings: Settings | None = None) -> tuple[list[Tool], list[Tool]]:
    """Return ``(core_tools, web_tools)``."""
    settings = settings or get_settings()

    time_tool = Tool(
        name="get_current_time",
        description="Get the current date and time, optionally in a specific timezone.",
        parameters=[
            ToolParameter(
                name="timezone_name",
                param_type="string",
                description="IANA timezone such as 'Europe/Paris' (default: UTC)",
                required=False,
            ),
        ],
        handler=get_current_time,
    )

    search_tool = Tool(
        name=WEB_SEARCH_TOOL,
        description=(
            "Search the web for information. Use this when you need current information, "
            "facts or news. Returns relevant results with titles, URLs, and snippets."
        ),
        parameters=[
            ToolParameter(
                name="query",
                param_type="string",
                description="The search query to find information about",
            ),
            ToolParameter(
                name="max_results",
                param_type="integer",
                description="Maximum number of results to return (default: 5)",
                required=False,
                default=5,
            ),
        ],
        handler=make_web_search(settings.tavily_api_key),
        timeout=45.0,
    )

    browse_tool = Tool(
        name="browse_webpage",
        description="Visit a web page and return its readable text content.",
        parameters=[
            ToolParameter(name="url", param_type="string", description="The URL to visit"),
            ToolParameter(
                name="extract_links",
                param_type="boolean",
                description="Whether to extract links from the page (default: false)",
                required=False,
                default=False,
            ),
        ],
        handler=browse_webpage,
        timeout=45.0,
    )

    return [time_tool], [search_tool, browse_tool]


def register_builtin_tools(registry: ToolRegistry, settings: Settings | None = None) -> None:
    """Register the built-in tools on ``registry``."""
    core_tools, web_tools = create_builtin_tools(settings)
    registry.register_tools("builtin.core", core_tools)
    registry.register_tools("builtin.web", web_tools, category=WEB_CATEGORY, description=WEB_DESCRIPTION)
