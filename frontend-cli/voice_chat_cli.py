#!/usr/bin/env python3
"""Voice Chat CLI - Terminal client for the streaming voice chat service.

Sends prompts over HTTP, renders the reply sentence by sentence as the
server segments it, and optionally synthesizes each sentence to print the
playable clip URL.
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from typing import Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.style import Style
from rich.text import Text

# Styles
USER_STYLE = Style(color="bright_blue", bold=True)
ASSISTANT_STYLE = Style(color="bright_green")
CLIP_STYLE = Style(color="yellow")
ERROR_STYLE = Style(color="red", bold=True)
INFO_STYLE = Style(color="cyan")


class VoiceChatCLI:
    """Terminal client that prints each spoken sentence as it is produced."""

    def __init__(
        self,
        server_url: str,
        *,
        synthesize: bool = False,
        voice: Optional[str] = None,
        emotion: Optional[str] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.synthesize = synthesize
        self.voice = voice
        self.emotion = emotion
        self.console = Console()
        self.running = True

    async def _check_health(self) -> bool:
        """Check if backend is reachable."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.server_url}/health")
                if resp.status_code == 200:
                    data = resp.json()
                    self.console.print(
                        f"[dim]Connected. chat={data.get('chat_model', '?')} "
                        f"tts={data.get('tts_model', '?')}[/dim]"
                    )
                    return True
        except httpx.HTTPError as e:
            self.console.print(f"Cannot connect to backend: {e}", style=ERROR_STYLE)
        return False

    async def _show_options(self) -> None:
        async with httpx.AsyncClient(timeout=5.0) as client:
            resp = await client.get(f"{self.server_url}/api/voice/options")
        if resp.status_code != 200:
            self.console.print(f"Error {resp.status_code}", style=ERROR_STYLE)
            return
        data = resp.json()
        body = (
            f"[bold]Voices:[/bold] {', '.join(data.get('voices', []))}\n"
            f"[bold]Emotions:[/bold] {', '.join(data.get('emotions', []))}\n"
            f"[bold]Current:[/bold] {self.voice or data.get('default_voice')} / "
            f"{self.emotion or data.get('default_emotion')}"
        )
        self.console.print(Panel(body, title="Voice Options", border_style="blue"))

    def _show_help(self) -> None:
        """Show available commands."""
        help_text = """
[bold]Commands:[/bold]
  /help              Show this help message
  /options           List voices and emotions
  /voice <name>      Use a voice for synthesized clips
  /emotion <name>    Use an emotion for synthesized clips
  /audio on|off      Toggle clip synthesis
  /quit              Exit

[bold]Shortcuts:[/bold]
  Ctrl+C             Cancel current request
  Ctrl+D             Exit
"""
        self.console.print(
            Panel(help_text.strip(), title="Voice Chat Help", border_style="blue")
        )

    async def _handle_command(self, cmd: str) -> bool:
        """Handle slash commands. Returns True if handled."""
        parts = cmd.strip().split(maxsplit=1)
        if not parts:
            return False

        command = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if command == "/help":
            self._show_help()
        elif command == "/quit":
            self.running = False
        elif command == "/options":
            await self._show_options()
        elif command == "/voice":
            self.voice = arg or None
            self.console.print(f"Voice: {self.voice or 'default'}", style=INFO_STYLE)
        elif command == "/emotion":
            self.emotion = arg or None
            self.console.print(f"Emotion: {self.emotion or 'default'}", style=INFO_STYLE)
        elif command == "/audio":
            self.synthesize = arg.lower() in ("on", "true", "1", "yes")
            state = "on" if self.synthesize else "off"
            self.console.print(f"Clip synthesis {state}", style=INFO_STYLE)
        else:
            return False
        return True

    async def _synthesize(self, client: httpx.AsyncClient, sentence: str) -> None:
        payload = {"text": sentence, "voice": self.voice, "emotion": self.emotion}
        resp = await client.post(f"{self.server_url}/api/synthesize", json=payload)
        if resp.status_code != 200:
            detail = resp.json().get("detail", resp.text)
            self.console.print(f"  (no audio: {detail})", style=ERROR_STYLE)
            return
        self.console.print(f"  ♪ {resp.json()['audioUrl']}", style=CLIP_STYLE)

    async def _stream_sentences(self, prompt: str) -> None:
        """Send a prompt and print sentences as they arrive via SSE."""
        try:
            async with httpx.AsyncClient(timeout=None) as client:
                async with client.stream(
                    "POST",
                    f"{self.server_url}/api/generate-text/stream",
                    json={"prompt": prompt},
                    headers={"Accept": "text/event-stream"},
                ) as response:
                    if response.status_code != 200:
                        error = await response.aread()
                        self.console.print(
                            f"Error {response.status_code}: {error.decode()}",
                            style=ERROR_STYLE,
                        )
                        return

                    event_type = "message"
                    async for line in response.aiter_lines():
                        line = line.strip()
                        if not line:
                            event_type = "message"
                            continue

                        if line.startswith("event:"):
                            event_type = line[6:].strip()
                            continue
                        if not line.startswith("data:"):
                            continue

                        data = line[5:].strip()
                        if event_type == "done":
                            break

                        try:
                            parsed = json.loads(data)
                        except json.JSONDecodeError:
                            continue

                        if event_type == "sentence":
                            sentence = parsed.get("text", "")
                            self.console.print(Text(sentence, style=ASSISTANT_STYLE))
                            if self.synthesize:
                                await self._synthesize(client, sentence)
                        elif event_type == "error":
                            self.console.print(
                                f"Error: {parsed.get('message')}", style=ERROR_STYLE
                            )

        except httpx.ReadTimeout:
            self.console.print("Request timed out", style=ERROR_STYLE)
        except asyncio.CancelledError:
            self.console.print("\n[dim]Request cancelled[/dim]")
        except httpx.HTTPError as e:
            self.console.print(f"Error: {e}", style=ERROR_STYLE)

    async def run(self) -> None:
        """Main chat loop."""
        if not await self._check_health():
            return

        self.console.print()
        self.console.print(
            "[bold]Voice Chat[/bold] - Type /help for commands, Ctrl+D to exit",
            style=INFO_STYLE,
        )
        self.console.print()

        while self.running:
            try:
                user_input = Prompt.ask("[bold blue]You[/bold blue]")
                if not user_input.strip():
                    continue

                if user_input.startswith("/"):
                    if await self._handle_command(user_input):
                        continue

                self.console.print()
                await self._stream_sentences(user_input)
                self.console.print()

            except EOFError:
                self.console.print("\n[dim]Goodbye![/dim]")
                break
            except KeyboardInterrupt:
                self.console.print()
                continue


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Voice Chat - Terminal client for the streaming voice chat service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  voice_chat_cli.py                           Connect to localhost:8000
  voice_chat_cli.py --server http://pi:8000   Connect to remote server
  voice_chat_cli.py --audio --voice coral     Print a clip URL per sentence

Environment Variables:
  VOICECHAT_SERVER    Default server URL
""",
    )
    parser.add_argument(
        "--server",
        "-s",
        default=os.environ.get("VOICECHAT_SERVER", "http://localhost:8000"),
        help="Backend server URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--audio",
        action="store_true",
        help="Synthesize each sentence and print its clip URL",
    )
    parser.add_argument("--voice", default=None, help="Voice for synthesized clips")
    parser.add_argument("--emotion", default=None, help="Emotion for synthesized clips")

    args = parser.parse_args()

    def signal_handler(sig, frame):
        print("\nExiting...")
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)

    chat = VoiceChatCLI(
        server_url=args.server,
        synthesize=args.audio,
        voice=args.voice,
        emotion=args.emotion,
    )
    try:
        asyncio.run(chat.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
