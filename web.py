"""
HTML front-end for browsing state backends.

Routes are registered on the FastMCP server as custom routes, so the
browser UI and the MCP endpoint share one Starlette app.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import jinja2
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import FileResponse, HTMLResponse, PlainTextResponse, Response

from backends.registry import BackendList
from search import SearchError, SearchResult, execute_search

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
TEMPLATES_DIR = os.path.join(BASE_DIR, "templates")
PUBLIC_DIR = os.path.join(BASE_DIR, "public")


@dataclass
class SearchView:
    backend_names: list[str] = field(default_factory=list)
    error: Optional[str] = None
    result: SearchResult = field(default_factory=SearchResult)
    spath: str = "."
    selected_backend: str = ""


def pretty_json(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def create_environment() -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(TEMPLATES_DIR),
        autoescape=jinja2.select_autoescape(["html", "j2"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["pretty_json"] = pretty_json
    return env


def handle_search(backends: BackendList, backend: Optional[str], spath: Optional[str]) -> SearchView:
    """Resolve the backend by name and search it, collecting any error into the view"""
    backend_names = backends.names()
    if not backend_names:
        raise ValueError("BackendList must contain at least one name")

    view = SearchView(
        backend_names=backend_names,
        spath=spath or ".",
        selected_backend=backend or backend_names[0],
    )

    logger.info("searching backend %s for: %s", view.selected_backend, view.spath)

    state_backend = backends.get_state(view.selected_backend)
    if state_backend is None:
        view.error = f'backend "{view.selected_backend}" not found'
        return view

    try:
        view.result = execute_search(state_backend, view.spath, view.selected_backend)
    except SearchError as e:
        logger.error("failed to execute search: %s", e)
        view.error = str(e)

    return view


def render(env: jinja2.Environment, view: SearchView) -> str:
    return env.get_template("search.html.j2").render(view=view)


def create_routes(mcp, get_backends: Callable[[], BackendList]) -> None:
    """
    Register the browser routes on a FastMCP server.

    Args:
        mcp: FastMCP server instance
        get_backends: Returns the configured BackendList
    """
    env = create_environment()

    @mcp.custom_route("/search", methods=["GET"])
    async def search_page(request: Request) -> Response:
        try:
            backends = get_backends()
        except ValueError as e:
            return PlainTextResponse(f"Error: {str(e)}", status_code=500)

        view = await run_in_threadpool(
            handle_search,
            backends,
            request.query_params.get("backend"),
            request.query_params.get("spath"),
        )
        return HTMLResponse(render(env, view))

    @mcp.custom_route("/", methods=["GET"])
    async def index_page(request: Request) -> Response:
        return FileResponse(os.path.join(PUBLIC_DIR, "index.html"))

    @mcp.custom_route("/public/{name}", methods=["GET"])
    async def public_asset(request: Request) -> Response:
        name = request.path_params["name"]
        path = os.path.join(PUBLIC_DIR, name)
        if os.path.dirname(os.path.abspath(path)) != PUBLIC_DIR or not os.path.isfile(path):
            return PlainTextResponse("Not Found", status_code=404)
        return FileResponse(path)
