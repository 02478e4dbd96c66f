from __future__ import annotations

import json

import httpx
import pytest

from apihub_client.common.errors import GatewayError, MediaDownloadError
from apihub_client.common.schema import Processing, Saved
from apihub_client.dispatch.classifier import (
    MEDIA_SHAPES,
    MediaReference,
    PendingJob,
    PlainJson,
    classify,
    materialize,
)

from conftest import broken_after


@pytest.mark.parametrize(
    "body, url, media_type",
    [
        (["https://x/a.png"], "https://x/a.png", "image"),
        ({"data": [{"url": "https://x/a.png"}]}, "https://x/a.png", "image"),
        ({"generated_images": ["https://x/g.png"]}, "https://x/g.png", "image"),
        ({"image_url": "https://x/i.jpg"}, "https://x/i.jpg", "image"),
        ({"audio_url": "https://x/s.mp3"}, "https://x/s.mp3", "audio"),
        ({"video_url": "https://x/v.mp4"}, "https://x/v.mp4", "video"),
        ({"output": "https://x/o.mp4"}, "https://x/o.mp4", "video"),
        ({"video": "https://x/w.mp4"}, "https://x/w.mp4", "video"),
        ({"generatedSamples": [{"video": {"uri": "https://x/veo.mp4"}}]}, "https://x/veo.mp4", "video"),
        ({"videos": ["https://x/vs.mp4"]}, "https://x/vs.mp4", "video"),
    ],
)
def test_media_shapes(body, url, media_type) -> None:  # noqa: ANN001
    result = classify(body)
    assert isinstance(result, MediaReference)
    assert result.url == url
    assert result.media_type == media_type


def test_earliest_shape_wins() -> None:
    body = {
        "data": [{"url": "https://x/first.png"}],
        "audio_url": "https://x/later.mp3",
        "videos": ["https://x/last.mp4"],
    }
    result = classify(body)
    assert result == MediaReference("https://x/first.png", "image", "data_item_url")


def test_shape_table_order_is_stable() -> None:
    names = [shape.name for shape in MEDIA_SHAPES]
    assert names[0] == "url_string_array"
    assert names.index("image_url") < names.index("audio_url") < names.index("video_url")
    assert names[-1] == "videos"


def test_non_http_strings_are_not_media() -> None:
    assert isinstance(classify(["not a url"]), PlainJson)
    assert isinstance(classify({"image_url": "data:image/png;base64,AAA"}), PlainJson)
    assert isinstance(classify({"output": "some text answer"}), PlainJson)


def test_gateway_error_takes_priority() -> None:
    body = {"code": 404, "message": "model not found", "image_url": "https://x/a.png"}
    with pytest.raises(GatewayError) as info:
        classify(body)
    assert info.value.code == 404
    assert str(info.value) == "model not found"


def test_gateway_error_default_message() -> None:
    with pytest.raises(GatewayError, match="API error: 500"):
        classify({"code": 500})


def test_low_codes_are_not_errors() -> None:
    assert isinstance(classify({"code": 200, "data": []}), PlainJson)
    assert isinstance(classify({"code": "200"}), PlainJson)
    assert isinstance(classify({"code": True}), PlainJson)
    assert isinstance(classify({"code": "E_QUOTA"}), PlainJson)
    assert isinstance(classify({"code": "inf"}), PlainJson)


def test_numeric_string_code_is_an_error() -> None:
    body = {"code": "404", "message": "model not found", "image_url": "https://x/a.png"}
    with pytest.raises(GatewayError) as info:
        classify(body)
    assert info.value.code == 404
    assert str(info.value) == "model not found"


def test_pending_job_short_circuits_media() -> None:
    body = {
        "file_id": "f-123",
        "base_resp": {"status_code": 0, "status_msg": "success"},
        "video_url": "https://x/should-not-download.mp4",
    }
    assert classify(body) == PendingJob("f-123", body)


def test_task_id_pending_job() -> None:
    body = {"task_id": 991, "base_resp": {"status_code": 0}}
    result = classify(body)
    assert isinstance(result, PendingJob)
    assert result.job_id == "991"


def test_failed_job_status_is_not_pending() -> None:
    body = {"file_id": "f-1", "base_resp": {"status_code": 1004}}
    assert isinstance(classify(body), PlainJson)


@pytest.mark.asyncio
async def test_materialize_plain_json_round_trip(tmp_path, make_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no network expected")

    body = {"results": [{"title": "ünïcode", "rank": 1}], "total": 1}
    dest = str(tmp_path / "out.json")

    outcome = await materialize(classify(body), dest, make_transport(handler))

    assert outcome == Saved(path=dest, media_type="file")
    assert outcome.to_dict() == {"saved": dest, "type": "file"}
    with open(dest, encoding="utf-8") as f:
        assert f.read() == json.dumps(body, indent=2, ensure_ascii=False)


@pytest.mark.asyncio
async def test_materialize_pending_writes_json_without_download(tmp_path, make_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no network expected")

    body = {"file_id": "job-7", "base_resp": {"status_code": 0}, "output": "https://x/o.mp4"}
    dest = str(tmp_path / "job.json")

    outcome = await materialize(classify(body), dest, make_transport(handler))

    assert outcome == Processing(job_id="job-7", path=dest)
    assert outcome.to_dict() == {"processing": True, "jobId": "job-7", "saved": dest}
    with open(dest, encoding="utf-8") as f:
        assert json.load(f) == body


@pytest.mark.asyncio
async def test_materialize_downloads_media(tmp_path, make_transport) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"\x89PNG fake bytes")

    dest = tmp_path / "a.png"
    outcome = await materialize(classify(["https://x/a.png"]), str(dest), make_transport(handler))

    assert outcome == Saved(path=str(dest), media_type="image", url="https://x/a.png")
    assert dest.read_bytes() == b"\x89PNG fake bytes"
    assert str(seen[0].url) == "https://x/a.png"
    assert seen[0].method == "GET"
    assert "authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_materialize_download_failure(tmp_path, make_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403)

    with pytest.raises(MediaDownloadError) as info:
        await materialize(
            classify({"audio_url": "https://x/s.mp3"}),
            str(tmp_path / "s.mp3"),
            make_transport(handler),
        )

    assert info.value.url == "https://x/s.mp3"
    assert info.value.status_code == 403
    assert not (tmp_path / "s.mp3").exists()


@pytest.mark.asyncio
async def test_materialize_download_network_error(tmp_path, make_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(MediaDownloadError) as info:
        await materialize(classify({"video_url": "https://x/v.mp4"}), str(tmp_path / "v.mp4"), make_transport(handler))

    assert info.value.status_code is None


@pytest.mark.asyncio
async def test_materialize_download_broken_mid_body(tmp_path, make_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=broken_after(b"\x89PNG partial"))

    with pytest.raises(MediaDownloadError) as info:
        await materialize(classify({"image_url": "https://x/a.png"}), str(tmp_path / "a.png"), make_transport(handler))

    assert info.value.status_code is None
    assert isinstance(info.value.__cause__, httpx.ReadError)
