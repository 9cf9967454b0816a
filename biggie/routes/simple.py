"""
Simple API: cheap endpoints used as flood targets and smoke checks
"""
import html
import json
import random
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from biggie.duck import DuckValueError, randomize_text
from biggie.responses import now_iso, request_details, response_json

router = APIRouter(prefix="/simple", tags=["simple"])

DEFAULT_LENGTH = 10
DEFAULT_SENTENCE = "This is a sample sentence."


def random_color() -> str:
    return "#" + "".join(random.choice("0123456789ABCDEF") for _ in range(6))


def _randomized(value: str) -> str:
    try:
        return randomize_text(value)
    except DuckValueError:
        return value


@router.get("")
async def simple():
    return response_json({"message": "ok"})


@router.get("/foo")
async def foo(request: Request):
    details = request_details(request)
    details["message"] = "foo ok"
    return response_json(details)


@router.post("/bar")
async def bar(request: Request):
    """Echo the JSON body back (null when the body is not JSON)"""
    details = request_details(request)
    try:
        body = json.loads(request.state.raw_body or b"null")
    except ValueError:
        body = None
    details["body"] = {"payload": body}
    details["message"] = "bar ok"
    return response_json(details)


@router.get("/color", response_class=HTMLResponse)
async def color(request: Request, color: Optional[str] = None):
    if color:
        color = _randomized(color)
    else:
        color = request.app.state.settings.html_color or request.app.state.default_color

    details = "".join(
        f"<p>{html.escape(key)}: {html.escape(str(value))}</p>"
        for key, value in request_details(request).items()
    )
    page = f"""
<html>
<head><title>Random Color API</title></head>
<body style="background-color:{html.escape(color)};">
    <h1>Color API</h1>
    {details}
    <p>requested_at: {now_iso()}</p>
</body>
</html>
"""
    return HTMLResponse(page)


@router.get("/large")
async def large(length: Optional[str] = None, sentence: Optional[str] = None):
    """sentence repeated length times, space separated"""
    try:
        count = int(length) if length else DEFAULT_LENGTH
    except ValueError:
        count = DEFAULT_LENGTH
    if count <= 0:
        count = DEFAULT_LENGTH
    text = _randomized(sentence or DEFAULT_SENTENCE)
    return response_json({"large_text": " ".join([text] * count)})
