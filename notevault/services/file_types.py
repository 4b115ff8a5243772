"""
MIME type lookup and file-type classification for the file manager.

The classification drives thumbnail derivation (image/video) and the icons
the browser shows; it is stored in files.file_type.
"""
import os

MIME_TYPES = {
    # Images
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".bmp": "image/bmp",
    ".ico": "image/x-icon",
    # Videos
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".ogg": "video/ogg",
    ".avi": "video/x-msvideo",
    ".mov": "video/quicktime",
    ".wmv": "video/x-ms-wmv",
    ".flv": "video/x-flv",
    ".mkv": "video/x-matroska",
    ".m4v": "video/x-m4v",
    ".mpg": "video/mpeg",
    ".mpeg": "video/mpeg",
    ".3gp": "video/3gpp",
    ".ts": "video/mp2t",
    ".h264": "video/h264",
    ".h265": "video/h264",
    # Audio
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
    ".flac": "audio/flac",
    ".aac": "audio/aac",
    # Documents
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".json": "application/json",
    ".xml": "application/xml",
    # Microsoft Office
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # Archives
    ".zip": "application/zip",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
    ".gzip": "application/gzip",
    ".7z": "application/x-7z-compressed",
    ".rar": "application/x-rar-compressed",
    ".bz2": "application/x-bzip2",
    # Executables
    ".exe": "application/x-msdownload",
    ".apk": "application/vnd.android.package-archive",
    ".jar": "application/java-archive",
    # Disk images
    ".iso": "application/x-iso9660-image",
    ".dmg": "application/x-apple-diskimage",
    # Torrents
    ".torrent": "application/x-bittorrent",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

# (file_type, mime types, extensions); first match wins
FILE_TYPE_RULES = [
    ("presentation",
     {"application/vnd.ms-powerpoint",
      "application/vnd.openxmlformats-officedocument.presentationml.presentation"},
     {".ppt", ".pptx"}),
    ("spreadsheet",
     {"application/vnd.ms-excel",
      "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"},
     {".xls", ".xlsx"}),
    ("document",
     {"application/msword",
      "application/vnd.openxmlformats-officedocument.wordprocessingml.document"},
     {".doc", ".docx"}),
    ("archive",
     {"application/zip", "application/x-tar", "application/gzip",
      "application/x-7z-compressed", "application/x-rar-compressed"},
     {".zip", ".tar", ".gz", ".tgz", ".7z", ".rar"}),
    ("executable",
     {"application/x-msdownload", "application/vnd.android.package-archive",
      "application/java-archive"},
     {".exe", ".apk", ".jar"}),
    ("disk-image", {"application/x-iso9660-image"}, {".iso"}),
]


def get_mime_type(ext: str) -> str:
    """Get MIME type based on file extension (with leading dot)"""
    return MIME_TYPES.get(ext.lower(), DEFAULT_MIME_TYPE)


def get_file_type(mime_type: str, ext: str) -> str:
    """Determine file type based on MIME type and file extension"""
    mime_type = (mime_type or "").lower()
    ext = ext.lower()

    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type == "application/pdf":
        return "pdf"
    if mime_type == "text/plain" or ext == ".txt":
        return "text"
    if mime_type == "text/markdown" or ext == ".md":
        return "markdown"

    for file_type, mime_types, extensions in FILE_TYPE_RULES:
        if mime_type in mime_types or ext in extensions:
            return file_type

    return "other"


def split_extension(filename: str) -> tuple[str, str]:
    """Split 'clip.final.mp4' into ('clip.final', '.mp4')"""
    stem, ext = os.path.splitext(filename)
    return stem, ext
