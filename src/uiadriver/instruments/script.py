"""Automation script generation and instruments argument construction."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from pathlib import Path
from string import Template

from uiadriver.shared.exceptions import ResourceCreationError

logger = logging.getLogger(__name__)

SESSION_SCRIPT_NAME = "uiadriver_session.js"
WARMUP_SCRIPT_NAME = "uiadriver_warmup.js"
WARMUP_SCRIPT = "UIALogger.logMessage('warming up');\n"

# UIAutomation has no sockets; the script shells out to curl through UIAHost.
_SESSION_TEMPLATE = Template(
    """\
var host = UIATarget.localTarget().host();
var base = "$base_url/session/$session_id";
var appPath = $app_path;
var pending = null;

function post(path, body) {
  var args = ["-s", "-X", "POST", "-H", "Content-Type: application/json", "--max-time", "$curl_timeout"];
  if (body !== null) {
    args.push("--data-binary", body);
  }
  args.push(base + path);
  return host.performTaskWithPathArgumentsTimeout("/usr/bin/curl", args, $curl_timeout + 5);
}

UIALogger.logMessage("registering session $session_id for " + appPath);
post("/register", null);

while (true) {
  var result = post("/next", pending === null ? null : JSON.stringify(pending));
  if (result.exitCode !== 0) {
    throw new Error("driver unreachable: " + result.stderr);
  }
  if (!result.stdout || result.stdout.length === 0) {
    pending = null;
    continue;
  }
  var request = JSON.parse(result.stdout);
  if (request.detail !== undefined) {
    UIALogger.logMessage("driver closed the session: " + request.detail);
    break;
  }
  try {
    pending = {"id": request.id, "status": 0, "value": eval(request.script)};
  } catch (err) {
    pending = {"id": request.id, "status": 13, "value": String(err)};
  }
}
"""
)


class ScriptWriter:
    """Writes the automation scripts instruments executes into a session folder."""

    def __init__(self, *, curl_timeout: float = 15.0) -> None:
        self._curl_timeout = curl_timeout

    def render_session_script(self, *, base_url: str, session_id: str, app_path: Path) -> str:
        return _SESSION_TEMPLATE.substitute(
            base_url=base_url.rstrip("/"),
            session_id=session_id,
            app_path=json.dumps(str(app_path)),
            curl_timeout=int(self._curl_timeout),
        )

    def write_session_script(self, directory: Path, *, base_url: str, session_id: str, app_path: Path) -> Path:
        """Write the polling script for one session.

        Raises:
            ResourceCreationError: If the script cannot be written.
        """
        content = self.render_session_script(base_url=base_url, session_id=session_id, app_path=app_path)
        return self._write(directory / SESSION_SCRIPT_NAME, content)

    def write_warmup_script(self, directory: Path) -> Path:
        return self._write(directory / WARMUP_SCRIPT_NAME, WARMUP_SCRIPT)

    @staticmethod
    def _write(path: Path, content: str) -> Path:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise ResourceCreationError(f"cannot write automation script {path}: {exc}") from exc
        logger.debug("wrote automation script %s", path)
        return path


def build_instruments_args(
    *,
    instruments: Path,
    template: Path,
    app_path: Path,
    script: Path,
    results: Path,
    device_uuid: str | None = None,
    environment: Sequence[str] = (),
) -> list[str]:
    """Assemble the instruments command line.

    ``environment`` is appended verbatim, in order.
    """
    args = [str(instruments)]
    if device_uuid:
        args.extend(["-w", device_uuid])
    args.extend(["-t", str(template), str(app_path)])
    args.extend(["-e", "UIASCRIPT", str(script)])
    args.extend(["-e", "UIARESULTSPATH", str(results)])
    args.extend(environment)
    return args
