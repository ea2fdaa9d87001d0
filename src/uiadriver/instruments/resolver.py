"""Locates the instruments binary and automation template per tool version."""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from pathlib import Path

from uiadriver.shared.exceptions import ToolNotFoundError
from uiadriver.shared.models import InstrumentsVersion

logger = logging.getLogger(__name__)

# Relative to the Xcode developer directory reported by ``xcode-select -p``.
_TEMPLATE_CANDIDATES = (
    "../Applications/Instruments.app/Contents/PlugIns/AutomationInstrument.xrplugin/Contents/Resources/Automation.tracetemplate",
    "../Applications/Instruments.app/Contents/PlugIns/AutomationInstrument.bundle/Contents/Resources/Automation.tracetemplate",
    "Platforms/iPhoneOS.platform/Developer/Library/Instruments/PlugIns/AutomationInstrument.bundle/Contents/Resources/Automation.tracetemplate",
)


class InstrumentsResolver:
    """Memoised lookup of tool paths, keyed by ``InstrumentsVersion``.

    Lookups are lazy and thread-safe. ``reset()`` drops the cache so tests
    (or a changed Xcode selection) start from scratch.
    """

    def __init__(
        self,
        *,
        instruments_bin: str = "",
        automation_template: str = "",
        xcrun_bin: str = "xcrun",
        xcode_select_bin: str = "xcode-select",
        timeout: int = 30,
    ) -> None:
        self._instruments_override = instruments_bin
        self._template_override = automation_template
        self._xcrun_bin = xcrun_bin
        self._xcode_select_bin = xcode_select_bin
        self._timeout = timeout
        self._lock = threading.Lock()
        self._binaries: dict[InstrumentsVersion, Path] = {}
        self._templates: dict[InstrumentsVersion, Path] = {}

    def instruments_path(self, version: InstrumentsVersion) -> Path:
        """Return the instruments binary for ``version``.

        Raises:
            ToolNotFoundError: If the binary cannot be located.
        """
        with self._lock:
            cached = self._binaries.get(version)
            if cached is None:
                cached = self._locate_instruments()
                logger.info("resolved instruments %s at %s", version, cached)
                self._binaries[version] = cached
            return cached

    def automation_template(self, version: InstrumentsVersion) -> Path:
        """Return the Automation trace template for ``version``.

        Raises:
            ToolNotFoundError: If no template exists.
        """
        with self._lock:
            cached = self._templates.get(version)
            if cached is None:
                cached = self._locate_template()
                logger.info("resolved automation template %s at %s", version, cached)
                self._templates[version] = cached
            return cached

    def reset(self) -> None:
        with self._lock:
            self._binaries.clear()
            self._templates.clear()

    def _locate_instruments(self) -> Path:
        if self._instruments_override:
            path = Path(self._instruments_override)
            if not path.is_file():
                raise ToolNotFoundError(f"configured instruments binary does not exist: {path}")
            return path

        found = self._run(self._xcrun_bin, "--find", "instruments")
        if found:
            return Path(found)

        which = shutil.which("instruments")
        if which:
            return Path(which)
        raise ToolNotFoundError("instruments binary not found (xcrun --find instruments failed)")

    def _locate_template(self) -> Path:
        if self._template_override:
            path = Path(self._template_override)
            if not path.exists():
                raise ToolNotFoundError(f"configured automation template does not exist: {path}")
            return path

        developer_dir = self._run(self._xcode_select_bin, "-p")
        if not developer_dir:
            raise ToolNotFoundError("cannot determine Xcode developer directory (xcode-select -p failed)")
        for candidate in _TEMPLATE_CANDIDATES:
            path = (Path(developer_dir) / candidate).resolve()
            if path.exists():
                return path
        raise ToolNotFoundError(f"Automation.tracetemplate not found under {developer_dir}")

    def _run(self, *cmd: str) -> str:
        """Run a lookup command and return its stripped stdout, or '' on failure."""
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout, check=False)
        except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
            logger.debug("lookup %s failed: %s", " ".join(cmd), exc)
            return ""
        if result.returncode != 0:
            logger.debug("lookup %s failed (rc=%d): %s", " ".join(cmd), result.returncode, result.stderr.strip())
            return ""
        return result.stdout.strip()


_shared_lock = threading.Lock()
_shared: InstrumentsResolver | None = None


def shared_resolver() -> InstrumentsResolver:
    """Process-wide resolver, created on first use."""
    global _shared
    with _shared_lock:
        if _shared is None:
            _shared = InstrumentsResolver()
        return _shared


def reset_shared_resolver() -> None:
    """Forget the process-wide resolver and everything it memoised."""
    global _shared
    with _shared_lock:
        _shared = None
