from __future__ import annotations

import asyncio
import json
import sys

import typer

from robox_voice.audio.base import NullOutputEngine, NullRecognitionEngine
from robox_voice.config.settings import VoiceSettings, get_settings
from robox_voice.config import store
from robox_voice.core.logger import configure_logging
from robox_voice.runtime.controller import VoiceController
from robox_voice.services.channel import HttpReplyChannel
from robox_voice.services.schemas import ChannelStatus
from robox_voice.state.app_state import AppState

cli = typer.Typer(name="robox", help="ROBO-X voice console")
config_cli = typer.Typer(help="Configuration")

cli.add_typer(config_cli, name="config")

HELP_TEXT = "Commands: /listen toggles the microphone, /stop stops speech, /mute toggles speech output, /quit exits."


@cli.command()
def talk(
    text_only: bool = typer.Option(False, "--text-only", help="No microphone and no speech output"),
    no_speech: bool = typer.Option(False, "--no-speech", help="Keep the microphone, never read replies aloud"),
) -> None:
    """Start an interactive conversation in the terminal."""
    settings = get_settings()
    log_path = configure_logging(settings)
    typer.echo(f"Logs: {log_path}")
    typer.echo(HELP_TEXT)
    asyncio.run(_talk(settings, text_only=text_only, no_speech=no_speech))


def _build_engines(settings: VoiceSettings, *, text_only: bool, no_speech: bool):
    if text_only:
        return NullOutputEngine(), NullRecognitionEngine()
    from robox_voice.audio.recognition import WhisperRecognitionEngine

    recognition = WhisperRecognitionEngine(settings)
    if no_speech:
        return NullOutputEngine(), recognition
    from robox_voice.audio.output_engine import PiperOutputEngine

    return PiperOutputEngine(settings), recognition


async def _talk(settings: VoiceSettings, *, text_only: bool, no_speech: bool) -> None:
    output_engine, recognition_engine = _build_engines(settings, text_only=text_only, no_speech=no_speech)
    channel = HttpReplyChannel(settings)
    controller = VoiceController(
        AppState(settings=settings),
        channel=channel,
        output_engine=output_engine,
        recognition_engine=recognition_engine,
    )
    if no_speech:
        controller.set_output_enabled(False)

    def _print_reply(status: ChannelStatus) -> None:
        if status is not ChannelStatus.READY:
            return
        for message in reversed(channel.messages):
            if message.role == "assistant":
                typer.echo(f"ROBO-X> {message.text}")
                return

    channel.subscribe(_print_reply)
    controller.set_status_callback(lambda status: typer.echo(f"[{status.value.upper()}]"))
    controller.set_transcript_callback(lambda text: text and typer.echo(f"... {text}"))
    controller.set_notice_callback(
        lambda notice: typer.echo(json.dumps(notice.to_payload(), ensure_ascii=False), err=True)
    )

    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            command = line.strip()
            if command == "/quit":
                break
            if command == "/listen":
                controller.toggle_listening()
            elif command == "/stop":
                controller.stop_speaking()
            elif command == "/mute":
                controller.set_output_enabled(not controller.output.enabled)
                typer.echo(f"Speech output {'on' if controller.output.enabled else 'off'}")
            elif command:
                controller.submit_text(command)
    finally:
        controller.close()
        await channel.aclose()


@config_cli.command("show")
def config_show() -> None:
    """Print the effective settings."""
    typer.echo(json.dumps(get_settings().model_dump(), indent=2, ensure_ascii=False))


@config_cli.command("set")
def config_set(key: str, value: str) -> None:
    """Persist one setting."""
    try:
        settings = store.save_setting(key, value)
    except KeyError:
        typer.echo(f"Unknown setting: {key}", err=True)
        raise typer.Exit(code=1)
    except ValueError as exc:
        typer.echo(f"Invalid value for {key}: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"{key} = {getattr(settings, key)!r}")


if __name__ == "__main__":
    cli()
