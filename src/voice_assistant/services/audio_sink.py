"""Streaming playback through a local ``aplay`` process."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from voice_assistant.errors import AudioSinkError

logger = logging.getLogger(__name__)


class AplaySink:
    """
    Feed raw 16-bit PCM into a player subprocess incrementally.

    The process is spawned once and kept alive across writes so consecutive
    sentences play without a start gap. Closing stdin marks the end of the
    utterance; ``close()`` then waits for playback to drain.
    """

    def __init__(
        self,
        device: str = "default",
        sample_rate: int = 24000,
        channels: int = 1,
        player_bin: str = "aplay",
    ):
        self.device = device
        self.sample_rate = sample_rate
        self.channels = channels
        self.player_bin = player_bin
        self._process: Optional[asyncio.subprocess.Process] = None
        self._bytes_written = 0

    @property
    def command(self) -> list[str]:
        return [
            self.player_bin,
            "-q",
            "-D",
            self.device,
            "-t",
            "raw",
            "-f",
            "S16_LE",
            "-r",
            str(self.sample_rate),
            "-c",
            str(self.channels),
        ]

    @property
    def is_open(self) -> bool:
        return self._process is not None

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    async def open(self) -> None:
        """Spawn the player process. No-op when already open."""
        if self._process is not None:
            return
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise AudioSinkError(f"{self.player_bin} could not be started: {exc}") from exc
        self._bytes_written = 0
        logger.debug(f"Player started (pid={self._process.pid}, device={self.device})")

    async def write(self, chunk: bytes) -> None:
        """Write one audio chunk, waiting while the pipe buffer is full."""
        if not chunk:
            return
        if self._process is None:
            await self.open()
        assert self._process is not None and self._process.stdin is not None

        try:
            self._process.stdin.write(chunk)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise AudioSinkError(f"{self.player_bin} exited during playback") from exc
        self._bytes_written += len(chunk)

    async def close(self) -> Optional[int]:
        """Close stdin and wait for the player to finish. Returns its exit code."""
        process = self._process
        if process is None:
            return None
        self._process = None

        if process.stdin is not None:
            try:
                process.stdin.close()
                await process.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError) as exc:
                logger.warning(f"Player pipe already closed: {exc}")

        returncode = await process.wait()
        if returncode != 0:
            logger.warning(f"{self.player_bin} exited with code {returncode}")
        logger.debug(f"Player finished after {self._bytes_written} bytes")
        return returncode

    async def __aenter__(self) -> "AplaySink":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


__all__ = ["AplaySink"]
