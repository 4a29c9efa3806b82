import logging
import os
import re
import subprocess
import threading
from collections import deque
from typing import Callable, List, Optional

import psutil

from ..utils.errors import ProcessSpawnFailure

logger = logging.getLogger(__name__)

PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")

# Lines of tool output kept for error reports
OUTPUT_TAIL = 200


def parse_percent(line: str) -> Optional[float]:
    """Return the first percentage marker in a line of tool output, if any."""
    match = PERCENT_RE.search(line)
    if not match:
        return None
    value = float(match.group(1))
    if value < 0 or value > 100:
        return None
    return value


class ToolResult:
    def __init__(self, returncode, output="", killed=False):
        self.returncode = returncode
        self.output = output
        self.killed = killed

    @property
    def ok(self):
        return self.returncode == 0 and not self.killed

    def last_lines(self, count=5):
        lines = [l for l in self.output.splitlines() if l.strip()]
        return "\n".join(lines[-count:])

    def __repr__(self):
        return f"ToolResult(returncode={self.returncode!r}, killed={self.killed!r})"


def kill_process_tree(pid):
    """Kill a process and all of its children immediately."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    procs = parent.children(recursive=True) + [parent]
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    psutil.wait_procs(procs, timeout=3)


class ToolProcess:
    """
    One running external tool.

    stdout and stderr are merged and read line by line on a background
    thread. Percent markers go to ``on_progress``, every line to ``on_line``,
    and ``on_exit`` receives a single ToolResult once the process is gone.
    """

    def __init__(
        self,
        name: str,
        args: List[str],
        on_progress: Optional[Callable[[float], None]] = None,
        on_exit: Optional[Callable[[ToolResult], None]] = None,
        on_line: Optional[Callable[[str], None]] = None,
        env=None,
        cwd=None,
    ):
        self.name = name
        self.args = [str(a) for a in args]
        self.on_progress = on_progress
        self.on_exit = on_exit
        self.on_line = on_line
        self.env = env
        self.cwd = cwd
        self.killed = False
        self._proc = None
        self._reader = None
        self._tail = deque(maxlen=OUTPUT_TAIL)
        self._done = threading.Event()
        self.result = None

    @property
    def pid(self):
        return self._proc.pid if self._proc else None

    def start(self):
        kwargs = {}
        if os.name == "nt":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True
        try:
            self._proc = subprocess.Popen(
                self.args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=self.env,
                cwd=self.cwd,
                **kwargs,
            )
        except (OSError, ValueError) as e:
            raise ProcessSpawnFailure(f"{self.name} could not be started: {e}") from e

        logger.debug(f"Started {self.name} (pid {self._proc.pid}): {' '.join(self.args)}")
        self._reader = threading.Thread(
            target=self._pump, name=f"{self.name}-{self._proc.pid}", daemon=True
        )
        self._reader.start()
        return self

    def _pump(self):
        try:
            for raw in self._proc.stdout:
                line = raw.rstrip()
                if not line:
                    continue
                self._tail.append(line)
                if self.on_line:
                    self.on_line(line)
                percent = parse_percent(line)
                if percent is not None and self.on_progress:
                    self.on_progress(percent)
        except Exception as e:
            logger.error(f"{self.name} output reader failed: {e}")
        finally:
            returncode = self._proc.wait()
            self.result = ToolResult(returncode, "\n".join(self._tail), self.killed)
            try:
                if self.on_exit:
                    self.on_exit(self.result)
            except Exception:
                logger.exception(f"{self.name} exit handler failed")
            finally:
                self._done.set()

    def kill(self):
        """Destructive termination of the whole process tree."""
        if self._proc is None or self._proc.poll() is not None:
            return
        self.killed = True
        logger.info(f"Terminating {self.name} (pid {self._proc.pid})")
        try:
            kill_process_tree(self._proc.pid)
        except psutil.Error as e:
            logger.warning(f"Process tree kill failed for {self.name}: {e}")
            self._proc.kill()

    def wait(self, timeout=None):
        """Block until the exit handler has run. Returns the ToolResult or None."""
        self._done.wait(timeout)
        return self.result


def spawn_tool(name, args, on_progress=None, on_exit=None, on_line=None, **kwargs):
    """Start a tool and return its handle. Raises ProcessSpawnFailure."""
    return ToolProcess(
        name, args, on_progress=on_progress, on_exit=on_exit, on_line=on_line, **kwargs
    ).start()
