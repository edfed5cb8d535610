from __future__ import annotations


class XmlReadError(Exception):
    """The input could not be read as an XML document (malformed, empty, I/O failure)."""

    def __init__(self, message: str, file_name: str | None = None) -> None:
        super().__init__(message)
        self.file_name = file_name or ""
