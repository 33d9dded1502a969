import asyncio
import re
from pathlib import Path

from sanic.log import logger

_ansi_escape = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/ ]*[@-~])")


def strip_ansi(text: str) -> str:
    return _ansi_escape.sub("", text)


async def run_command(
    argv: list[str],
    cwd: Path | None = None,
    stdin: bytes | None = None,
    timeout: float | None = None,
) -> tuple[int, str]:
    """
    Run a command to completion and return its exit status and output.

    stdout and stderr are merged. A command that outlives ``timeout`` is
    killed and reported with exit status -1.
    """
    logger.debug("Running %s in %s", argv, cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        # missing executable or unusable cwd
        return 127, f"{argv[0]}: {e}\n"

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(stdin), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        stdout, _ = await proc.communicate()
        output = stdout.decode(errors="replace")
        return -1, strip_ansi(output) + f"\nTimed out after {timeout} seconds\n"

    return proc.returncode, strip_ansi(stdout.decode(errors="replace"))
