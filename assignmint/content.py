"""Content negotiation.

Request bodies may be JSON or markdown whose YAML front matter carries the
fields and whose text becomes the ``description``. Responses are JSON when the
client asks for it, otherwise markdown with the structured fields in front
matter and the most prose-like field as the body.
"""

from __future__ import annotations

import json

import frontmatter
from fastapi import HTTPException, Request, Response
from pydantic import BaseModel

MARKDOWN_BODY_FIELDS = ("description", "message", "error")


def _looks_like_json(text: str, content_type: str) -> bool:
    if "application/json" in content_type:
        return True
    return text.startswith("{") and "text/markdown" not in content_type


def _from_markdown(text: str) -> dict:
    post = frontmatter.loads(text)
    fields = dict(post.metadata)
    body = post.content.strip()
    if body:
        fields["description"] = body
    return fields


async def parse_body(request: Request) -> dict:
    content_type = request.headers.get("content-type", "")
    text = (await request.body()).decode("utf-8").strip()
    if not text:
        return {}

    if _looks_like_json(text, content_type):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            if "application/json" in content_type:
                raise HTTPException(status_code=400, detail="Invalid JSON body") from None
        else:
            if not isinstance(parsed, dict):
                raise HTTPException(status_code=400, detail="Request body must be an object")
            return parsed
    return _from_markdown(text)


def wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("accept", "")


def _to_markdown(data: dict) -> str:
    fields = dict(data)
    body = ""
    for key in MARKDOWN_BODY_FIELDS:
        if isinstance(fields.get(key), str):
            body = fields.pop(key)
            break
    if not fields:
        return body
    return frontmatter.dumps(frontmatter.Post(body, **fields))


def render_response(
    request: Request,
    data: dict | list | BaseModel,
    status_code: int = 200,
    headers: dict | None = None,
) -> Response:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")

    # Lists have no natural front matter, so they are always JSON
    if wants_json(request) or isinstance(data, list):
        content, media_type = json.dumps(data, indent=2), "application/json"
    else:
        content, media_type = _to_markdown(data), "text/markdown"
    return Response(
        content=content, status_code=status_code, media_type=media_type, headers=headers
    )
