"""Entry point of the sandbox process.

Runs in a freshly spawned interpreter: nothing from the host process is
shared except the write end of the message pipe, the run id and the
instrumented source text. The inherited environment is cut down to
SAFE_ENV and the program runs in an empty scratch directory.
"""

import builtins
import contextlib
import io
import linecache
import os
import sys
import tempfile
import threading
import traceback

from ..instrumentor import RUNTIME_NAME
from .channel import Channel, ChannelWriter
from .runtime import ExecutionContext

SAFE_ENV = ("PATH", "LANG", "LC_ALL", "LC_CTYPE", "TZ", "SYSTEMROOT")


def isolate(workspace: str) -> None:
    """Drop host environment variables and move into the scratch directory."""
    kept = {name: os.environ[name] for name in SAFE_ENV if name in os.environ}
    os.environ.clear()
    os.environ.update(kept)
    os.environ["HOME"] = workspace
    os.chdir(workspace)


def _join_timer_threads() -> None:
    """Wait for non-daemon threads (threading.Timer callbacks) like interpreter exit does."""
    current = threading.current_thread()
    for thread in threading.enumerate():
        if thread is current or thread.daemon:
            continue
        thread.join()


def _report_exception(channel: Channel, error: BaseException) -> None:
    # skip the exec() frame of this module
    tb = error.__traceback__.tb_next if error.__traceback__ else None
    text = "".join(traceback.format_exception(type(error), error, tb))
    for line in text.rstrip("\n").split("\n"):
        channel.log(line)


def execute(channel: Channel, source: str, filename: str = "<program>") -> None:
    """Compile and run instrumented source, forwarding output and events."""
    try:
        code = compile(source, filename, "exec")
    except (SyntaxError, ValueError) as e:
        channel.log(f"Error: instrumented program failed to compile: {e}")
        return

    # lets tracebacks show the instrumented lines
    linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)

    context = ExecutionContext(channel.event)
    program_globals = {
        "__name__": "__main__",
        "__file__": filename,
        "__builtins__": builtins,
        RUNTIME_NAME: context,
    }
    stdout = ChannelWriter(channel)
    stderr = ChannelWriter(channel)

    with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
        try:
            exec(code, program_globals)
        except SystemExit as e:
            if e.code not in (None, 0):
                print(f"Program exited with status {e.code}", file=sys.stderr)
        except Exception as e:
            stdout.drain()
            _report_exception(channel, e)
        finally:
            _join_timer_threads()
            stdout.drain()
            stderr.drain()


def run_program(conn, run_id: str, source: str, filename: str = "<program>") -> None:
    """Process target: execute the program and always finish with ``done``."""
    sys.stdin = io.StringIO("")
    channel = Channel(conn, run_id)
    try:
        with tempfile.TemporaryDirectory(
            prefix="runtrace-", ignore_cleanup_errors=True
        ) as workspace:
            isolate(workspace)
            execute(channel, source, filename)
    finally:
        channel.done()
        channel.close()
