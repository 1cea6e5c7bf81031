import json
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from mcp.types import INVALID_PARAMS, ReadResourceResult, Resource, TextResourceContents

from pricecheck.errors import ProtocolError
from pricecheck.results_store import ResultsStore

WIDGET_URI = "ui://widget/flight-results.html"
WIDGET_MIME_TYPE = "text/html+skybridge"


def widget_uri_for(request_id: str) -> str:
    return f"{WIDGET_URI}?{urlencode({'request_id': request_id})}"


def widget_resource() -> Resource:
    return Resource(
        uri=WIDGET_URI,
        name="Flight Results Widget",
        description="Interactive UI for displaying flight price comparison results",
        mimeType=WIDGET_MIME_TYPE,
    )


def render_widget(tool_output: Optional[dict], base_url: str) -> str:
    # "</" would end the inline script early
    data = json.dumps(tool_output, ensure_ascii=False).replace("</", "<\\/")
    return (
        '<div id="flight-results-root"></div>\n'
        "<script>\n"
        "  window.openai = window.openai || {};\n"
        f"  window.openai.toolOutput = {data};\n"
        "</script>\n"
        f'<script type="module" src="{base_url}/widget/component.js"></script>'
    )


def read_widget(uri: str, results_store: ResultsStore, base_url: str) -> dict:
    """Resolve ``resources/read`` for the results widget."""
    parts = urlsplit(uri)
    if f"{parts.scheme}://{parts.netloc}{parts.path}" != WIDGET_URI:
        raise ProtocolError(INVALID_PARAMS, f"Resource not found: {uri}")

    request_id = parse_qs(parts.query).get("request_id", [None])[0]
    snapshot = results_store.get(request_id) if request_id else None
    tool_output = snapshot.to_payload() if snapshot else None

    result = ReadResourceResult(
        contents=[
            TextResourceContents(
                uri=uri,
                mimeType=WIDGET_MIME_TYPE,
                text=render_widget(tool_output, base_url),
            )
        ]
    )
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)
