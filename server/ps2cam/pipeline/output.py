# Output selection: provider output (string or list of strings) → one image URI.

from typing import Any

from ps2cam.exceptions import MalformedResponseError
from ps2cam.schemas import is_http_url


def select_output_url(output: Any) -> str:
    """Pick the result URI from a succeeded prediction's output.

    Lists yield their first element. Anything that is not an absolute
    http(s) URL raises MalformedResponseError.
    """
    candidate = output
    if isinstance(output, (list, tuple)):
        if not output:
            raise MalformedResponseError("prediction succeeded with an empty output list")
        candidate = output[0]

    if not isinstance(candidate, str) or not is_http_url(candidate.strip()):
        raise MalformedResponseError("generated image URL is invalid", details=repr(candidate)[:500])
    return candidate.strip()
