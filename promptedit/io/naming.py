from __future__ import annotations

from datetime import datetime

DEFAULT_STEM = "edited_image"
DEFAULT_EXTENSION = "png"

# mime subtype -> file extension, where they differ
_EXTENSION_OVERRIDES = {
    "jpeg": "jpg",
    "pjpeg": "jpg",
    "svg+xml": "svg",
    "x-icon": "ico",
    "vnd.microsoft.icon": "ico",
}


def file_stem(name: str | None) -> str:
    """
    Name without its last extension. A leading dot is not an extension separator,
    so ".hidden" stays ".hidden".
    """
    if not name:
        return DEFAULT_STEM
    i = name.rfind(".")
    return name[:i] if i > 0 else name


def mime_type_of_data_url(data_url: str) -> str | None:
    header = data_url.split(",", 1)[0]
    mime = header.split(";", 1)[0].partition(":")[2].strip()
    return mime or None


def extension_for_mime(mime_type: str | None) -> str:
    if not mime_type or "/" not in mime_type:
        return DEFAULT_EXTENSION
    subtype = mime_type.split("/", 1)[1].strip().lower()
    if not subtype:
        return DEFAULT_EXTENSION
    return _EXTENSION_OVERRIDES.get(subtype, subtype)


def re_edit_filename(original_name: str | None) -> str:
    return f"{file_stem(original_name)}_re-edit.png"


def download_filename(original_name: str | None, result_data_url: str, now: datetime) -> str:
    """<stem>_edited_<YYYYMMDD>_<HHMMSS>.<ext>"""
    stem = file_stem(original_name)
    timestamp = now.strftime("%Y%m%d_%H%M%S")
    ext = extension_for_mime(mime_type_of_data_url(result_data_url))
    return f"{stem}_edited_{timestamp}.{ext}"
