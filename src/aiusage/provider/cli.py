import asyncio
import contextlib
import shutil

import structlog

from aiusage.errors import CliError

logger = structlog.get_logger()

DEFAULT_CLI_TIMEOUT = 5.0


def cli_available(executable: "str") -> "bool":
    return shutil.which(executable) is not None


async def run_cli(
    args: "list[str]",
    timeout: "float" = DEFAULT_CLI_TIMEOUT,
) -> "str":
    """
    runs a local command line tool and returns its stdout.

    The process is killed when it outlives the timeout. A missing
    executable, a timeout and a non-zero exit all raise CliError.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CliError(f"{args[0]} not found") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        # reap the killed process so it does not linger as a zombie
        await proc.wait()
        logger.warning("cli_timeout", command=args[0], timeout=timeout)
        raise CliError(f"{args[0]} timed out after {timeout:g}s") from None
    except asyncio.CancelledError:
        # the aggregator gave up on this provider
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        raise

    if proc.returncode != 0:
        error = stderr.decode("utf-8", errors="replace").strip()
        raise CliError(f"{args[0]} exited with {proc.returncode}: {error}")

    return stdout.decode("utf-8", errors="replace")
