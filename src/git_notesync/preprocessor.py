import base64
from pathlib import Path

from .constants import DEFAULT_ENCODING
from .errors import SourceMissingError
from .models import PreparedContent


def read_note(local_path: Path) -> PreparedContent:
    """Reads a note file and encodes it for upload as a blob.

    The bytes are passed through untouched; base64 keeps binary attachments
    and non-UTF-8 notes intact on the wire.

    Args:
        local_path (Path): The file to read.

    Returns:
        PreparedContent: The base64 content and its encoding label.

    Raises:
        SourceMissingError: If the file no longer exists, is not a regular file
            or cannot be read.
    """
    try:
        raw = Path(local_path).read_bytes()
    except OSError as e:
        raise SourceMissingError(f"Cannot read {local_path}: {e}") from e
    return PreparedContent(base64.b64encode(raw).decode("ascii"), DEFAULT_ENCODING)
