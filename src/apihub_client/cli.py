"""Command line entry point: `apihub <command> [options]`."""
from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from importlib import metadata
from pathlib import Path
from typing import Any, TextIO

import httpx

from apihub_client.common.config import load_config
from apihub_client.common.errors import ApiHubError
from apihub_client.common.logging_setup import setup_logging
from apihub_client.common.schema import Processing, RunRequest, Saved
from apihub_client.dispatch import commands
from apihub_client.dispatch.orchestrator import Dispatcher
from apihub_client.transport.http import ResilientTransport
from apihub_client.transport.sse import EventStream, extract_text

LOGGER = logging.getLogger("apihub.cli")

DISTRIBUTION = "apihub-client"
VERSION_URL = "https://www.skillboss.co/api/skills/version"
UPDATE_COMMAND = "pip install -U apihub-client"


def _json_arg(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="apihub", description="API Hub multi-provider gateway client")
    ap.add_argument("--config", default=None, help="Config file (YAML or JSON); default ./config.json")
    ap.add_argument("--verbose", action="store_true", help="Debug logging")
    ap.add_argument("--no-fallback", action="store_true", help="Disable gateway auto fallback")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Generic /run call for any model")
    p.add_argument("--model", required=True)
    p.add_argument("--inputs", type=_json_arg, default={}, help="JSON object of model inputs")
    p.add_argument("--stream", action="store_true")
    p.add_argument("--output", default=None)

    p = sub.add_parser("chat", help="Chat completion")
    p.add_argument("--model", required=True)
    p.add_argument("--prompt", default=None)
    p.add_argument("--messages", type=_json_arg, default=None, help="JSON array of messages")
    p.add_argument("--system", default=None)
    p.add_argument("--max-tokens", type=int, default=None)
    p.add_argument("--temperature", type=float, default=None)
    p.add_argument("--stream", action="store_true")

    p = sub.add_parser("tts", help="Text to speech")
    p.add_argument("--model", required=True)
    p.add_argument("--text", required=True)
    p.add_argument("--output", required=True)
    p.add_argument("--voice-id", default=None)
    p.add_argument("--speaker", default=None)

    p = sub.add_parser("image", help="Image generation")
    p.add_argument("--model", default=commands.DEFAULT_IMAGE_MODEL)
    p.add_argument("--prompt", required=True)
    p.add_argument("--size", default=None)
    p.add_argument("--output", default=None)

    p = sub.add_parser("video", help="Video generation")
    p.add_argument("--model", default=None)
    p.add_argument("--prompt", required=True)
    p.add_argument("--size", default=None)
    p.add_argument("--duration", type=int, default=None)
    p.add_argument("--image", default=None, help="Source image URL (image-to-video)")
    p.add_argument("--output", default=None)

    p = sub.add_parser("music", help="Music generation")
    p.add_argument("--model", default=commands.DEFAULT_MUSIC_MODEL)
    p.add_argument("--prompt", required=True)
    p.add_argument("--duration", type=int, default=None)
    p.add_argument("--output", default=None)

    p = sub.add_parser("search", help="Web search")
    p.add_argument("--model", required=True)
    p.add_argument("--query", required=True)

    p = sub.add_parser("scrape", help="Web scraping")
    p.add_argument("--model", required=True)
    p.add_argument("--url", default=None)
    p.add_argument("--urls", type=_json_arg, default=None, help="JSON array of URLs")

    p = sub.add_parser("stt", help="Speech to text from a local audio file")
    p.add_argument("--file", required=True)
    p.add_argument("--model", default=commands.DEFAULT_STT_MODEL)
    p.add_argument("--language", default=None)
    p.add_argument("--prompt", default=None)
    p.add_argument("--output", default=None, help="Write the transcript to this file")

    p = sub.add_parser("sms-verify", help="Send an SMS verification code")
    p.add_argument("--phone", required=True, help="E.164 format, e.g. +1234567890")
    p.add_argument("--ip", default=None)
    p.add_argument("--device-id", default=None)

    p = sub.add_parser("sms-check", help="Check an SMS verification code")
    p.add_argument("--phone", required=True)
    p.add_argument("--code", required=True)

    p = sub.add_parser("sms-send", help="Send a templated SMS notification")
    p.add_argument("--phone", required=True)
    p.add_argument("--template-id", required=True)
    p.add_argument("--variables", type=_json_arg, default=None, help="JSON object of template variables")
    p.add_argument("--from", dest="sender", default=None)

    p = sub.add_parser("send-email", help="Send one email")
    p.add_argument("--to", "--receivers", dest="to", required=True, help="Comma-separated addresses")
    p.add_argument("--subject", required=True)
    p.add_argument("--body", required=True, help="HTML body")
    p.add_argument("--reply-to", default=None, help="Comma-separated addresses")
    p.add_argument("--project-id", default=None)

    p = sub.add_parser("send-batch", help="Send templated emails to many receivers")
    p.add_argument("--receivers", type=_json_arg, required=True, help='JSON array of {"email", "variables"}')
    p.add_argument("--subject", required=True)
    p.add_argument("--body", required=True, help="HTML body with {{variable}} placeholders")
    p.add_argument("--reply-to", default=None)
    p.add_argument("--project-id", default=None)

    p = sub.add_parser("document", help="Parse, extract, split or edit a document")
    p.add_argument("--model", required=True, help="reducto/parse, reducto/extract, reducto/split or reducto/edit")
    p.add_argument("--url", required=True)
    p.add_argument("--schema", type=_json_arg, default=None, help="JSON Schema (extract)")
    p.add_argument("--split-description", type=_json_arg, default=None, help="JSON array (split)")
    p.add_argument("--instructions", type=_json_arg, default=None, help="JSON edit instructions (edit)")
    p.add_argument("--settings", type=_json_arg, default=None)
    p.add_argument("--output", default=None)

    p = sub.add_parser("gamma", help="Presentation generation")
    p.add_argument("--model", required=True)
    p.add_argument("--input-text", required=True)
    p.add_argument("--format", default="presentation")
    p.add_argument("--language", default="en")

    p = sub.add_parser("multimodal", help="Ask about video, image or audio")
    p.add_argument("--model", required=True)
    p.add_argument("--prompt", required=True)
    p.add_argument("--video", default=None)
    p.add_argument("--image", default=None)
    p.add_argument("--audio", default=None)
    p.add_argument("--fps", type=int, default=None)

    p = sub.add_parser("list-models", help="List available models")
    p.add_argument("--type", default=None)
    p.add_argument("--vendor", default=None)

    p = sub.add_parser("version", help="Compare the installed version with the latest release")
    p.add_argument("--url", default=VERSION_URL)
    return ap


def build_request(args: argparse.Namespace) -> RunRequest:
    fallback = not args.no_fallback
    if args.command == "run":
        if not isinstance(args.inputs, dict):
            raise ValueError("--inputs must be a JSON object")
        return RunRequest(
            model=args.model,
            inputs=args.inputs,
            stream=args.stream,
            output=args.output,
            auto_fallback=fallback,
        )
    if args.command == "chat":
        return commands.chat_request(
            args.model,
            prompt=args.prompt,
            messages=args.messages,
            system=args.system,
            max_tokens=args.max_tokens,
            temperature=args.temperature,
            stream=args.stream,
            auto_fallback=fallback,
        )
    if args.command == "tts":
        return commands.tts_request(
            args.model, args.text, args.output,
            voice_id=args.voice_id, speaker=args.speaker, auto_fallback=fallback,
        )
    if args.command == "image":
        return commands.image_request(
            args.prompt, model=args.model, size=args.size, output=args.output, auto_fallback=fallback,
        )
    if args.command == "video":
        return commands.video_request(
            args.prompt, model=args.model, output=args.output, size=args.size,
            duration=args.duration, image=args.image, auto_fallback=fallback,
        )
    if args.command == "music":
        return commands.music_request(
            args.prompt, model=args.model, duration=args.duration, output=args.output, auto_fallback=fallback,
        )
    if args.command == "search":
        return commands.search_request(args.model, args.query, auto_fallback=fallback)
    if args.command == "scrape":
        return commands.scrape_request(args.model, url=args.url, urls=args.urls, auto_fallback=fallback)
    if args.command == "stt":
        return commands.stt_request(
            args.file, model=args.model, language=args.language, prompt=args.prompt, auto_fallback=fallback,
        )
    if args.command == "sms-verify":
        return commands.sms_verify_request(args.phone, ip=args.ip, device_id=args.device_id, auto_fallback=fallback)
    if args.command == "sms-check":
        return commands.sms_check_request(args.phone, args.code, auto_fallback=fallback)
    if args.command == "sms-send":
        return commands.sms_send_request(
            args.phone, args.template_id, variables=args.variables, sender=args.sender, auto_fallback=fallback,
        )
    if args.command == "document":
        return commands.document_request(
            args.model, args.url, schema=args.schema, split_description=args.split_description,
            instructions=args.instructions, settings=args.settings, output=args.output, auto_fallback=fallback,
        )
    if args.command == "gamma":
        return commands.gamma_request(
            args.model, args.input_text, format=args.format, language=args.language, auto_fallback=fallback,
        )
    if args.command == "multimodal":
        return commands.multimodal_request(
            args.model, args.prompt, video=args.video, image=args.image, audio=args.audio,
            fps=args.fps, auto_fallback=fallback,
        )
    raise ValueError(f"Unknown command: {args.command}")


def print_models(listing: dict[str, Any], out: TextIO) -> None:
    grouped: dict[str, list[dict[str, Any]]] = {}
    for m in listing["models"]:
        grouped.setdefault(m.get("category") or "Other", []).append(m)

    print(f"\nAvailable Models ({listing['count']} total)\n", file=out)
    for category in sorted(grouped):
        print(f"## {category}", file=out)
        for m in grouped[category]:
            print(f"  {m.get('id')}", file=out)
            print(f"    {m.get('display_name') or m.get('name')} - {m.get('description') or ''}", file=out)
        print(file=out)


async def print_result(result: Any, command: str, out: TextIO) -> None:
    if isinstance(result, EventStream):
        async with result:
            async for event in result:
                text = extract_text(event)
                if text:
                    out.write(text)
                    out.flush()
        print(file=out)
    elif isinstance(result, Processing):
        print(f"Processing. Job ID: {result.job_id}", file=out)
        print(f"Saved to: {result.path}", file=out)
    elif isinstance(result, Saved):
        print(f"Saved to: {result.path}", file=out)
    elif command == "chat" and commands.reply_text(result) is not None:
        print(commands.reply_text(result), file=out)
    elif command == "multimodal":
        print(commands.multimodal_text(result), file=out)
    elif command == "sms-verify" and isinstance(result, dict):
        print(f"Verification ID: {result.get('id')}", file=out)
        print(f"Status: {result.get('status')}", file=out)
        if result.get("channels"):
            print(f"Channel: {', '.join(map(str, result['channels']))}", file=out)
    elif command == "sms-check" and isinstance(result, dict):
        print(f"Status: {result.get('status')}", file=out)
        if result.get("status") == "success":
            print("Phone number verified successfully!", file=out)
        else:
            print("Verification failed. Code may be incorrect or expired.", file=out)
    else:
        print(json.dumps(result, indent=2, ensure_ascii=False), file=out)


def _split_addresses(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [a.strip() for a in value.split(",") if a.strip()]


async def send_email(args: argparse.Namespace, dispatcher: Dispatcher, out: TextIO) -> None:
    if args.command == "send-email":
        receivers = _split_addresses(args.to) or []
        payload = commands.email_payload(
            args.subject, args.body, receivers,
            reply_to=_split_addresses(args.reply_to), project_id=args.project_id,
        )
        await dispatcher.send_email(payload)
        print("Email sent successfully!", file=out)
        print(f"To: {', '.join(receivers)}", file=out)
        print(f"Subject: {args.subject}", file=out)
        return

    payload = commands.batch_email_payload(
        args.subject, args.body, args.receivers,
        reply_to=_split_addresses(args.reply_to), project_id=args.project_id,
    )
    await dispatcher.send_batch_emails(payload)
    print("Batch emails sent!", file=out)
    print(f"Recipients: {len(args.receivers)}", file=out)


def installed_version() -> str:
    try:
        return metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "unknown"


async def check_version(
    transport: ResilientTransport,
    out: TextIO,
    url: str = VERSION_URL,
    current: str | None = None,
) -> None:
    """
    Print the installed and latest versions.

    The lookup is informational: server and network failures print a notice
    and return normally.
    """
    current = current or installed_version()
    print(f"Current version: {current}", file=out)
    try:
        response = await transport.fetch(url)
        try:
            if not response.is_success:
                print("Could not check latest version (server error)", file=out)
                return
            await response.aread()
        finally:
            await response.aclose()
        data = response.json()
    except httpx.HTTPError:
        LOGGER.debug("Version lookup failed", exc_info=True)
        print("Could not check latest version (network error)", file=out)
        return
    except ValueError:
        print("Could not check latest version (server error)", file=out)
        return

    latest = data.get("version") if isinstance(data, dict) else None
    print(f"Latest version: {latest}", file=out)
    if current == "unknown":
        print("Local version unknown. Consider updating to ensure you have the latest features.", file=out)
        print(f"To update, run: {UPDATE_COMMAND}", file=out)
    elif latest and latest != current:
        print("*** Update available! ***", file=out)
        if data.get("changelog"):
            print(f"Changelog:\n{data['changelog']}", file=out)
        print(f"To update, run: {UPDATE_COMMAND}", file=out)
    else:
        print("You are on the latest version.", file=out)


async def execute(args: argparse.Namespace, dispatcher: Dispatcher, out: TextIO = sys.stdout) -> None:
    if args.command == "list-models":
        print_models(await dispatcher.list_models(type=args.type, vendor=args.vendor), out)
        return
    if args.command == "version":
        await check_version(dispatcher.transport, out, url=args.url)
        return
    if args.command in ("send-email", "send-batch"):
        await send_email(args, dispatcher, out)
        return

    result = await dispatcher.dispatch(build_request(args))
    if args.command == "stt":
        text = commands.transcript_text(result)
        if args.output:
            Path(args.output).write_text(text, encoding="utf-8")
            print(f"Transcript saved to: {args.output}", file=out)
        else:
            print(text, file=out)
        return
    await print_result(result, args.command, out)


async def _amain(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    async with Dispatcher(config) as dispatcher:
        await execute(args, dispatcher)


def main(argv: list[str] | None = None) -> None:
    ap = build_parser()
    args = ap.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        asyncio.run(_amain(args))
    except (ApiHubError, ValueError) as e:
        LOGGER.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)
    except httpx.HTTPError as e:
        LOGGER.debug("Unwrapped HTTP failure", exc_info=True)
        print(f"Error: {e.__class__.__name__}: {e}", file=sys.stderr)
        raise SystemExit(1)
    except KeyboardInterrupt:
        raise SystemExit(130)

if __name__ == "__main__":
    main()
