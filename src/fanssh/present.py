"""Formatting of per-host output blocks."""

from fanssh.executor import JobResult
from fanssh.hosts import HostDescriptor


RULE = "# " + "=" * 64

HEADER_TEMPLATE = """
{rule}
# Job  : {id}
# User : {user}
# Host : {host}
# Cmd  : {command}
# Size : {size}
{rule}
{output}
"""


def render_result(
    result: JobResult, host: HostDescriptor, command: str, job_header: bool = True
) -> str:
    """Render one drained result for printing.

    Args:
        result: The job's result.
        host: The host the job ran on.
        command: Command text shown in the header.
        job_header: If False, return the raw output only.

    Returns:
        str: Text to write to stdout as-is.
    """
    if not job_header:
        return result.output

    return HEADER_TEMPLATE.format(
        rule=RULE,
        id=result.host_id,
        user=host.username,
        host=host.address,
        command=command,
        size=len(result.output.encode()),
        output=result.output,
    )
