"""
HTTP header helpers.
"""
from urllib.parse import quote


def content_disposition(filename: str, disposition: str = "attachment") -> str:
    """
    Build a Content-Disposition header value carrying `filename`.

    Non-ASCII names get an ASCII fallback plus an RFC 5987 `filename*`
    parameter, since header values must be latin-1 encodable.

    Examples:
        content_disposition("movie.mp4") -> 'attachment; filename="movie.mp4"'
    """
    escaped = filename.replace("\\", "\\\\").replace('"', '\\"')
    try:
        escaped.encode("ascii")
    except UnicodeEncodeError:
        fallback = escaped.encode("ascii", "replace").decode("ascii")
        encoded = quote(filename, safe="")
        return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{encoded}"
    return f'{disposition}; filename="{escaped}"'
