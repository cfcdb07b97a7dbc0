"""
Headless browser screenshots.

Finds a Chrome/Edge/Chromium binary, runs it once in headless screenshot
mode and checks the result:

    Idle → BinaryResolving → Spawned → Succeeded | Failed | TimedOut

The browser writes the image straight to out_path; its stdout/stderr are
discarded. A capture succeeds only if the process exits 0 AND out_path
was created or rewritten by it. An existing image at out_path is left
alone, so a failed capture keeps the previous thumbnail. If the process
outlives timeout_ms, or the capture is cancelled, it is SIGKILLed and
reaped before the error propagates.

Every call owns its own subprocess and timer, so concurrent captures for
different projects are independent.
"""
import asyncio
import logging
import os
import re
import shutil
import sys
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .errors import (
    BrowserNotFoundError,
    CaptureProcessError,
    CaptureTimeoutError,
    InvalidWindowSizeError,
    NoBrowserSelectedError,
)

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = "1280x800"
DEFAULT_TIMEOUT_MS = 15000

# Called when no browser is found; returns a user-picked binary path or None.
BinaryPicker = Callable[[str], Optional[str]]


class CaptureState(Enum):
    IDLE = "idle"
    BINARY_RESOLVING = "binary_resolving"
    SPAWNED = "spawned"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class ScreenshotOptions:
    url: str
    out_path: str
    window_size: str = DEFAULT_WINDOW_SIZE          # "WIDTHxHEIGHT"
    custom_paths: Optional[Dict[str, str]] = None   # sys.platform → binary path
    timeout_ms: Optional[int] = None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Binary discovery
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def candidate_binaries(
    platform: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> List[str]:
    """Known install paths (macOS, Windows) or command names (everything else)."""
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ

    if platform == "darwin":
        return [
            "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        ]
    if platform == "win32":
        local = environ.get("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
        return [
            os.path.join(local, "Google", "Chrome", "Application", "chrome.exe"),
            os.path.join(local, "Microsoft", "Edge", "Application", "msedge.exe"),
            "chrome.exe",
            "msedge.exe",
        ]
    return ["google-chrome", "chromium", "chromium-browser"]


def exists_on_path_or_fs(binary: str) -> bool:
    """True if binary is an existing file or resolves on PATH."""
    return os.path.isfile(binary) or shutil.which(binary) is not None


def find_browser_binary(
    custom_paths: Optional[Mapping[str, str]] = None,
    pick_binary: Optional[BinaryPicker] = None,
    platform: Optional[str] = None,
) -> str:
    """
    Resolve the browser to launch.

    Order: per-platform override (only if the file exists), then the
    built-in candidates, then the interactive picker.

    Raises:
        NoBrowserSelectedError if the picker returned nothing.
        BrowserNotFoundError if nothing was found and there is no picker.
    """
    platform = platform or sys.platform

    override = (custom_paths or {}).get(platform)
    if override:
        if os.path.exists(override):
            return override
        logger.warning(f"Configured browser for {platform} not found: {override}")

    for candidate in candidate_binaries(platform):
        if exists_on_path_or_fs(candidate):
            return candidate

    if pick_binary is None:
        raise BrowserNotFoundError()

    picked = pick_binary("Select Chrome/Edge executable for screenshots")
    if not picked:
        raise NoBrowserSelectedError()
    return picked


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Invocation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

_WINDOW_SIZE_RE = re.compile(r"\s*(\d+)\s*[xX]\s*(\d+)\s*")


def parse_window_size(window_size: str) -> Tuple[int, int]:
    """Parse "WIDTHxHEIGHT" into two positive ints."""
    match = _WINDOW_SIZE_RE.fullmatch(window_size or "")
    if not match:
        raise InvalidWindowSizeError(
            f"Invalid window size '{window_size}', expected WIDTHxHEIGHT (e.g. 1280x800)"
        )
    width, height = int(match.group(1)), int(match.group(2))
    if width <= 0 or height <= 0:
        raise InvalidWindowSizeError(f"Window size must be positive, got {width}x{height}")
    return width, height


def build_capture_args(url: str, out_path: str, width: int, height: int) -> List[str]:
    return [
        "--headless=new",
        "--disable-gpu",
        "--hide-scrollbars",
        f"--window-size={width},{height}",
        f"--screenshot={out_path}",
        url,
    ]


def _file_signature(path: Path) -> Optional[Tuple[int, int]]:
    """(mtime_ns, size) of path, or None if it does not exist."""
    try:
        st = path.stat()
    except OSError:
        return None
    return st.st_mtime_ns, st.st_size


class ScreenshotJob:
    """One capture attempt. Not reusable."""

    def __init__(self, options: ScreenshotOptions, pick_binary: Optional[BinaryPicker] = None):
        self.options = options
        self.pick_binary = pick_binary
        self.state = CaptureState.IDLE
        self.binary: Optional[str] = None
        self.exit_code: Optional[int] = None
        self.pid: Optional[int] = None
        self.duration_s: Optional[float] = None

    @property
    def timeout_ms(self) -> int:
        if self.options.timeout_ms is None:
            return DEFAULT_TIMEOUT_MS
        return self.options.timeout_ms

    async def run(self) -> Path:
        """Capture options.url into options.out_path; return the written path."""
        if self.state is not CaptureState.IDLE:
            raise RuntimeError(f"Screenshot job already ran (state={self.state.value})")

        opts = self.options
        try:
            width, height = parse_window_size(opts.window_size)
            self.state = CaptureState.BINARY_RESOLVING
            self.binary = find_browser_binary(opts.custom_paths, self.pick_binary)
        except Exception:
            self.state = CaptureState.FAILED
            raise

        out_path = Path(opts.out_path).absolute()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        args = build_capture_args(opts.url, str(out_path), width, height)
        # A previous thumbnail stays in place; only a changed file counts as output
        before = _file_signature(out_path)

        logger.info(f"Capturing {opts.url} → {out_path} with {self.binary}")
        start_time = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            self.state = CaptureState.FAILED
            raise CaptureProcessError(f"Screenshot failed: cannot start {self.binary}: {e}") from e

        self.state = CaptureState.SPAWNED
        self.pid = proc.pid
        try:
            self.exit_code = await asyncio.wait_for(proc.wait(), timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError:
            self.state = CaptureState.TIMED_OUT
            await self._kill(proc)
            self.duration_s = round(time.monotonic() - start_time, 2)
            logger.error(f"Screenshot of {opts.url} timed out after {self.timeout_ms} ms")
            raise CaptureTimeoutError(self.timeout_ms)
        except asyncio.CancelledError:
            self.state = CaptureState.FAILED
            await asyncio.shield(self._kill(proc))
            raise

        self.duration_s = round(time.monotonic() - start_time, 2)
        after = _file_signature(out_path)
        written = after is not None and after != before
        if self.exit_code != 0 or not written:
            self.state = CaptureState.FAILED
            if after is None:
                detail = " (no output file)"
            elif not written:
                detail = " (output file not updated)"
            else:
                detail = ""
            raise CaptureProcessError(
                f"Screenshot failed: exit code {self.exit_code}{detail}", self.exit_code
            )

        self.state = CaptureState.SUCCEEDED
        logger.info(f"Screenshot written to {out_path} in {self.duration_s}s")
        return out_path

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        """SIGKILL (TerminateProcess on Windows) and reap, tolerating an exit race."""
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()


async def take_screenshot(
    options: ScreenshotOptions, pick_binary: Optional[BinaryPicker] = None
) -> Path:
    """Run a single capture. Raises a CaptureError subclass on any failure."""
    return await ScreenshotJob(options, pick_binary).run()
