"""Classify JSON gateway responses and materialize them to a destination file.

`classify` is pure: it decides whether a body is a gateway error, a pending
provider job, a reference to downloadable media, or plain JSON. `materialize`
does the I/O for that decision.

Media shapes are tried in table order and the first match wins. New provider
shapes are added by appending a `MediaShape`, never by reordering.
"""
from __future__ import annotations
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx

from apihub_client.common.errors import GatewayError, MediaDownloadError
from apihub_client.common.schema import Processing, Saved, SavedOutcome
from apihub_client.transport.http import ResilientTransport

LOGGER = logging.getLogger("apihub.classifier")


@dataclass(frozen=True)
class MediaReference:
    url: str
    media_type: str
    shape: str


@dataclass(frozen=True)
class PendingJob:
    job_id: str
    body: Any = None


@dataclass(frozen=True)
class PlainJson:
    value: Any


Classification = MediaReference | PendingJob | PlainJson


def _is_http_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("http")


def _first(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


def _field(body: Any, name: str) -> Any:
    return body.get(name) if isinstance(body, dict) else None


def _url_string_array(body: Any) -> str | None:
    # ["https://..."]
    first = _first(body)
    return first if _is_http_url(first) else None


def _data_item_url(body: Any) -> str | None:
    # {"data": [{"url": "https://..."}]}
    item = _first(_field(body, "data"))
    url = _field(item, "url")
    return url if isinstance(url, str) and url else None


def _generated_images(body: Any) -> str | None:
    # {"generated_images": ["https://..."]}
    first = _first(_field(body, "generated_images"))
    return first if isinstance(first, str) and first else None


def _http_field(name: str) -> Callable[[Any], str | None]:
    def extract(body: Any) -> str | None:
        value = _field(body, name)
        return value if _is_http_url(value) else None

    extract.__name__ = f"_{name}"
    return extract


def _video_url(body: Any) -> str | None:
    value = _field(body, "video_url")
    return value if isinstance(value, str) and value else None


def _generated_samples(body: Any) -> str | None:
    # {"generatedSamples": [{"video": {"uri": "https://..."}}]}
    sample = _first(_field(body, "generatedSamples"))
    uri = _field(_field(sample, "video"), "uri")
    return uri if isinstance(uri, str) and uri else None


def _video_list(body: Any) -> str | None:
    # {"videos": ["https://..."]}
    first = _first(_field(body, "videos"))
    return first if isinstance(first, str) and first else None


@dataclass(frozen=True)
class MediaShape:
    name: str
    media_type: str
    extract: Callable[[Any], str | None]


MEDIA_SHAPES: tuple[MediaShape, ...] = (
    MediaShape("url_string_array", "image", _url_string_array),
    MediaShape("data_item_url", "image", _data_item_url),
    MediaShape("generated_images", "image", _generated_images),
    MediaShape("image_url", "image", _http_field("image_url")),
    MediaShape("audio_url", "audio", _http_field("audio_url")),
    MediaShape("video_url", "video", _video_url),
    MediaShape("output", "video", _http_field("output")),
    MediaShape("video", "video", _http_field("video")),
    MediaShape("generated_samples", "video", _generated_samples),
    MediaShape("videos", "video", _video_list),
)


def _numeric_code(value: Any) -> float | None:
    # gateways send both 404 and "404"
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
        return value if math.isfinite(value) else None
    return None


def check_gateway_error(body: Any) -> None:
    """Raise GatewayError when the body carries a numeric `code` >= 400, as a number or numeric string."""
    code = _numeric_code(_field(body, "code"))
    if code is not None and code >= 400:
        message = _field(body, "message")
        raise GatewayError(int(code), message if isinstance(message, str) and message else None)


def pending_job_id(body: Any) -> str | None:
    """Tracking id of an accepted-but-running provider job (MiniMax style), else None."""
    status = _field(_field(body, "base_resp"), "status_code")
    if isinstance(status, bool) or status != 0:
        return None
    for key in ("file_id", "task_id"):
        job_id = _field(body, key)
        if job_id not in (None, ""):
            return str(job_id)
    return None


def find_media(body: Any) -> MediaReference | None:
    for shape in MEDIA_SHAPES:
        url = shape.extract(body)
        if url:
            return MediaReference(url=url, media_type=shape.media_type, shape=shape.name)
    return None


def classify(body: Any) -> Classification:
    """
    Decide what a JSON response body represents.

    Precedence: gateway error, then pending job, then media shapes in
    MEDIA_SHAPES order, then plain JSON.

    Raises:
        GatewayError: body has `code` >= 400.
    """
    check_gateway_error(body)
    job_id = pending_job_id(body)
    if job_id is not None:
        return PendingJob(job_id, body)
    media = find_media(body)
    if media is not None:
        return media
    return PlainJson(body)


def write_json(value: Any, dest: str) -> None:
    Path(dest).write_text(json.dumps(value, indent=2, ensure_ascii=False), encoding="utf-8")


async def save_stream(response: httpx.Response, dest: str) -> None:
    """Write a response body to `dest` chunk by chunk, then close the response."""
    try:
        with open(dest, "wb") as f:
            async for chunk in response.aiter_bytes():
                f.write(chunk)
    finally:
        await response.aclose()


async def download_media(media: MediaReference, dest: str, transport: ResilientTransport) -> None:
    try:
        response = await transport.fetch(media.url)
        if not response.is_success:
            await response.aclose()
            raise MediaDownloadError(media.url, response.status_code, media.media_type)
        await save_stream(response, dest)
    except httpx.HTTPError as e:
        raise MediaDownloadError(media.url, None, media.media_type) from e


async def materialize(
    result: Classification,
    dest: str,
    transport: ResilientTransport,
) -> SavedOutcome:
    """
    Persist a classified response to `dest`.

    Args:
        result: Output of classify(body).
        dest: Destination file path. Concurrent writers to one path: last one wins.
        transport: Used for the unauthenticated media fetch.

    Raises:
        MediaDownloadError: the referenced media could not be fetched.
    """
    if isinstance(result, PendingJob):
        LOGGER.info("Job accepted and still processing. Job ID: %s", result.job_id)
        write_json(result.body, dest)
        return Processing(job_id=result.job_id, path=dest)

    if isinstance(result, MediaReference):
        LOGGER.info("Downloading %s from %s", result.media_type, result.url)
        await download_media(result, dest, transport)
        return Saved(path=dest, media_type=result.media_type, url=result.url)

    write_json(result.value, dest)
    return Saved(path=dest, media_type="file")
