"""Command-level request builders.

Each builder maps friendly parameters onto the provider-specific `inputs` the
gateway expects for that vendor, and returns a RunRequest for the dispatcher.
Email uses its own endpoints, so its builders return plain JSON payloads for
`Dispatcher.post_json`.
"""
from __future__ import annotations
import base64
import json
from pathlib import Path
from typing import Any

from apihub_client.common.schema import RunRequest

DEFAULT_IMAGE_MODEL = "mm/img"
DEFAULT_VIDEO_MODEL = "mm/t2v"
DEFAULT_I2V_MODEL = "mm/i2v"
DEFAULT_MUSIC_MODEL = "replicate/elevenlabs/music"
DEFAULT_STT_MODEL = "openai/whisper-1"

SMS_VERIFY_MODEL = "prelude/verify-send"
SMS_CHECK_MODEL = "prelude/verify-check"
SMS_SEND_MODEL = "prelude/notify-send"
PHONE_REQUIRED = "--phone is required (E.164 format, e.g. +1234567890)"

ELEVENLABS_DEFAULT_VOICE = "EXAVITQu4vr4xnSDxMaL"
MINIMAX_DEFAULT_VOICE = "male-qn-qingse"
OPENAI_DEFAULT_VOICE = "alloy"
REPLICATE_DEFAULT_SPEAKER = (
    "https://replicate.delivery/pbxt/Jt79w0xsT64R1JsiJ0LQRL8UcWspg5J4RFrU6YwEKpOT1ukS/male.wav"
)


def _vendor(model: str) -> str:
    return model.split("/", 1)[0]


def _star_size(size: str) -> str:
    # mm models want "1024*1536"
    return size.replace("x", "*")


def chat_request(
    model: str,
    prompt: str | None = None,
    messages: list[dict[str, Any]] | None = None,
    system: str | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
    stream: bool = False,
    auto_fallback: bool = True,
) -> RunRequest:
    if not messages and prompt:
        messages = [{"role": "user", "content": prompt}]
    if not messages:
        raise ValueError("Either --prompt or --messages is required")

    inputs: dict[str, Any] = {"messages": messages}
    if system:
        inputs["system"] = system
    if max_tokens:
        inputs["max_tokens"] = max_tokens
    if temperature is not None:
        inputs["temperature"] = temperature
    return RunRequest(model=model, inputs=inputs, stream=stream, auto_fallback=auto_fallback)


def tts_request(
    model: str,
    text: str,
    output: str,
    voice_id: str | None = None,
    speaker: str | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    """
    Build a text-to-speech request.

    Args:
        model: "vendor/model"; the vendor selects the input mapping.
        text: Text to synthesize.
        output: Audio file path (required, TTS always writes a file).
        voice_id: Provider voice id; each vendor has its own default.
        speaker: Replicate only, URL of a voice sample to clone.
    """
    if not text:
        raise ValueError("--text is required for TTS")
    if not output:
        raise ValueError("--output is required for TTS")

    vendor = _vendor(model)
    inputs: dict[str, Any] = {}
    if vendor == "elevenlabs":
        inputs["text"] = text
        inputs["voice_id"] = voice_id or ELEVENLABS_DEFAULT_VOICE
    elif vendor == "minimax":
        inputs["text"] = text
        inputs["voice_setting"] = {
            "voice_id": voice_id or MINIMAX_DEFAULT_VOICE,
            "speed": 1.0,
            "vol": 1.0,
            "pitch": 0,
        }
    elif vendor == "openai":
        inputs["input"] = text
        inputs["voice"] = voice_id or OPENAI_DEFAULT_VOICE
    elif vendor == "replicate":
        inputs["text"] = text
        inputs["speaker"] = speaker or voice_id or REPLICATE_DEFAULT_SPEAKER
    elif vendor == "mm":
        inputs["text"] = text
        if voice_id:
            inputs["voice"] = voice_id
    else:
        inputs["text"] = text
    return RunRequest(model=model, inputs=inputs, output=output, auto_fallback=auto_fallback)


def image_request(
    prompt: str,
    model: str = DEFAULT_IMAGE_MODEL,
    size: str | None = None,
    output: str | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    if not prompt:
        raise ValueError("--prompt is required for image generation")

    vendor = _vendor(model)
    inputs: dict[str, Any] = {}
    if vendor == "vertex":
        inputs["messages"] = [{"role": "user", "content": prompt}]
    elif vendor == "mm":
        inputs["prompt"] = prompt
        if size:
            inputs["size"] = _star_size(size)
    else:
        inputs["prompt"] = prompt
        if size:
            inputs["size"] = size
    return RunRequest(model=model, inputs=inputs, output=output, auto_fallback=auto_fallback)


def video_request(
    prompt: str,
    model: str | None = None,
    output: str | None = None,
    size: str | None = None,
    duration: int | None = None,
    image: str | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    """Build a video generation request; with `image` and no model, defaults to image-to-video."""
    if not prompt:
        raise ValueError("--prompt is required for video generation")

    model = model or (DEFAULT_I2V_MODEL if image else DEFAULT_VIDEO_MODEL)
    vendor = _vendor(model)
    inputs: dict[str, Any] = {}
    if vendor == "vertex":
        inputs["instances"] = [{"prompt": prompt}]
        inputs["parameters"] = {}
    elif vendor == "mm":
        inputs["prompt"] = prompt
        if size:
            inputs["size"] = _star_size(size)
        if duration:
            inputs["duration"] = int(duration)
        if image:
            inputs["image_url"] = image
    else:
        inputs["prompt"] = prompt
    return RunRequest(model=model, inputs=inputs, output=output, auto_fallback=auto_fallback)


def music_request(
    prompt: str,
    model: str = DEFAULT_MUSIC_MODEL,
    duration: int | None = None,
    output: str | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    if not prompt:
        raise ValueError("--prompt is required for music generation")
    inputs: dict[str, Any] = {"prompt": prompt}
    if duration:
        inputs["duration"] = int(duration)
    return RunRequest(model=model, inputs=inputs, output=output, auto_fallback=auto_fallback)


def search_request(model: str, query: str, auto_fallback: bool = True) -> RunRequest:
    if not query:
        raise ValueError("--query is required for search")
    vendor = _vendor(model)
    if vendor == "scrapingdog":
        inputs: dict[str, Any] = {"q": query}
    elif vendor == "perplexity":
        inputs = {"messages": [{"role": "user", "content": query}]}
    else:
        inputs = {"query": query}
    return RunRequest(model=model, inputs=inputs, auto_fallback=auto_fallback)


def scrape_request(
    model: str,
    url: str | None = None,
    urls: list[str] | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    if not url and not urls:
        raise ValueError("--url or --urls is required for scraping")
    if urls and _vendor(model) == "firecrawl":
        inputs: dict[str, Any] = {"urls": urls}
    else:
        inputs = {"url": url or urls[0]}
    return RunRequest(model=model, inputs=inputs, auto_fallback=auto_fallback)


def stt_request(
    audio_path: str,
    model: str = DEFAULT_STT_MODEL,
    language: str | None = None,
    prompt: str | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    """
    Build a speech-to-text request from a local audio file.

    The file travels inline as base64 `audio_data` next to its `filename`.

    Args:
        audio_path: Local audio file.
        model: Transcription model.
        language: Optional language code, e.g. "en".
        prompt: Optional hint guiding transcription style.
    """
    if not audio_path:
        raise ValueError("--file is required for STT (local audio file path)")
    path = Path(audio_path).resolve()
    if not path.is_file():
        raise ValueError(f"Audio file not found: {path}")

    inputs: dict[str, Any] = {
        "audio_data": base64.b64encode(path.read_bytes()).decode("ascii"),
        "filename": path.name,
    }
    if prompt:
        inputs["prompt"] = prompt
    if language:
        inputs["language"] = language
    return RunRequest(model=model or DEFAULT_STT_MODEL, inputs=inputs, auto_fallback=auto_fallback)


def transcript_text(result: Any) -> str:
    if isinstance(result, dict) and isinstance(result.get("text"), str) and result["text"]:
        return result["text"]
    return json.dumps(result, ensure_ascii=False)


def _phone_target(phone: str) -> dict[str, str]:
    return {"type": "phone_number", "value": phone}


def sms_verify_request(
    phone: str,
    ip: str | None = None,
    device_id: str | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    """Send a one-time code by SMS. `ip` and `device_id` are optional anti-fraud signals."""
    if not phone:
        raise ValueError(PHONE_REQUIRED)
    inputs: dict[str, Any] = {"target": _phone_target(phone)}
    signals = {k: v for k, v in (("ip", ip), ("device_id", device_id)) if v}
    if signals:
        inputs["signals"] = signals
    return RunRequest(model=SMS_VERIFY_MODEL, inputs=inputs, auto_fallback=auto_fallback)


def sms_check_request(phone: str, code: str, auto_fallback: bool = True) -> RunRequest:
    if not phone:
        raise ValueError(PHONE_REQUIRED)
    if not code:
        raise ValueError("--code is required (the OTP code received via SMS)")
    inputs = {"target": _phone_target(phone), "code": code}
    return RunRequest(model=SMS_CHECK_MODEL, inputs=inputs, auto_fallback=auto_fallback)


def sms_send_request(
    phone: str,
    template_id: str,
    variables: dict[str, Any] | None = None,
    sender: str | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    """Send a templated SMS notification; the template lives in the provider dashboard."""
    if not phone:
        raise ValueError(PHONE_REQUIRED)
    if not template_id:
        raise ValueError("--template-id is required (configured in Prelude dashboard)")
    inputs: dict[str, Any] = {"template_id": template_id, "to": phone}
    if variables:
        inputs["variables"] = variables
    if sender:
        inputs["from"] = sender
    return RunRequest(model=SMS_SEND_MODEL, inputs=inputs, auto_fallback=auto_fallback)


def _email_body(
    subject: str,
    body_html: str,
    receivers: list[Any],
    reply_to: list[str] | None,
    project_id: str | None,
) -> dict[str, Any]:
    if not subject or not body_html or not receivers:
        raise ValueError("Receivers, subject and body are required to send email")
    data: dict[str, Any] = {"title": subject, "body_html": body_html, "receivers": receivers}
    if project_id:
        data["project_id"] = project_id
    if reply_to:
        data["reply_to"] = reply_to
    return data


def email_payload(
    subject: str,
    body_html: str,
    receivers: list[str],
    reply_to: list[str] | None = None,
    project_id: str | None = None,
) -> dict[str, Any]:
    """Body for POST /send-email. The sender address is chosen by the gateway."""
    return _email_body(subject, body_html, receivers, reply_to, project_id)


def batch_email_payload(
    subject: str,
    body_html: str,
    receivers: list[dict[str, Any]],
    reply_to: list[str] | None = None,
    project_id: str | None = None,
) -> dict[str, Any]:
    """
    Body for POST /send-emails.

    Each receiver is `{"email": ..., "variables": {...}}`; `{{name}}` placeholders
    in subject and body are filled per receiver by the gateway.
    """
    if not isinstance(receivers, list) or not all(
        isinstance(r, dict) and r.get("email") for r in receivers
    ):
        raise ValueError('--receivers must be a JSON array of {"email": ..., "variables": {...}} objects')
    return _email_body(subject, body_html, receivers, reply_to, project_id)


def document_request(
    model: str,
    url: str,
    schema: Any = None,
    split_description: Any = None,
    instructions: Any = None,
    settings: Any = None,
    output: str | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    """
    Build a document processing request ("reducto/parse", "/extract", "/split", "/edit").

    `schema`, `split_description` and `instructions` only apply to the operation
    they belong to and are ignored otherwise; `settings` is passed to all of them.
    """
    if not url:
        raise ValueError("--url is required (document URL)")
    operation = model.split("/", 2)[1] if "/" in model else ""
    inputs: dict[str, Any] = {"document_url": url}
    if operation == "extract" and schema is not None:
        inputs["instructions"] = {"schema": schema}
    if operation == "split" and split_description is not None:
        inputs["split_description"] = split_description
    if operation == "edit" and instructions is not None:
        inputs["edit_instructions"] = instructions
    if settings is not None:
        inputs["settings"] = settings
    return RunRequest(model=model, inputs=inputs, output=output, auto_fallback=auto_fallback)


def gamma_request(
    model: str,
    input_text: str,
    format: str = "presentation",  # noqa: A002
    language: str = "en",
    auto_fallback: bool = True,
) -> RunRequest:
    if not input_text:
        raise ValueError("--input-text is required for Gamma")
    inputs = {
        "inputText": input_text,
        "format": format or "presentation",
        "textOptions": {"language": language or "en"},
    }
    return RunRequest(model=model, inputs=inputs, auto_fallback=auto_fallback)


def multimodal_request(
    model: str,
    prompt: str,
    video: str | None = None,
    image: str | None = None,
    audio: str | None = None,
    fps: int | None = None,
    auto_fallback: bool = True,
) -> RunRequest:
    """Ask a question about video, image or audio URLs; at least one is required."""
    if not prompt:
        raise ValueError("--prompt is required for multimodal")
    if not (video or image or audio):
        raise ValueError("At least one of --video, --image, or --audio is required")

    if _vendor(model) == "mm":
        content: list[dict[str, Any]] = []
        if video:
            part: dict[str, Any] = {"video": video}
            if fps:
                part["fps"] = int(fps)
            content.append(part)
        if image:
            content.append({"image": image})
        if audio:
            content.append({"audio": audio})
        content.append({"text": prompt})
        inputs: dict[str, Any] = {"input": {"messages": [{"role": "user", "content": content}]}}
    else:
        inputs = {"prompt": prompt}
        if video:
            inputs["video_url"] = video
        if image:
            inputs["image_url"] = image
        if audio:
            inputs["audio_url"] = audio
    return RunRequest(model=model, inputs=inputs, auto_fallback=auto_fallback)


def multimodal_text(result: Any) -> str:
    """Reply text of a multimodal answer, falling back to the indented JSON."""
    if isinstance(result, dict):
        output = result.get("output")
        choices = output.get("choices") if isinstance(output, dict) else None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, list) and content and isinstance(content[0], dict):
                text = content[0].get("text")
                if isinstance(text, str) and text:
                    return text
        if isinstance(result.get("text"), str) and result["text"]:
            return result["text"]
    return json.dumps(result, indent=2, ensure_ascii=False)


def reply_text(result: Any) -> str | None:
    """Text of a non-streamed chat reply across the common response shapes, or None."""
    if not isinstance(result, dict):
        return None
    choices = result.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
    content = result.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        text = content[0].get("text")
        if isinstance(text, str):
            return text
    message = result.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return None
