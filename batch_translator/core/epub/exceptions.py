"""
Custom exceptions for the EPUB codec.

Parse failures are raised while a book is loaded; reconstruction only
re-emits previously parsed node data and has no failure mode of its own.
"""


class EpubTranslationError(Exception):
    """Base exception for all EPUB errors."""
    pass


class EpubStructureError(EpubTranslationError):
    """Raised when container.xml, the OPF package or the spine is missing or unusable."""
    pass


class XmlParsingError(EpubTranslationError):
    """Raised when an XHTML document is not well-formed.

    Attributes:
        original_error: The underlying parsing error
        content_preview: First 200 chars of problematic content
        file_name: Archive path of the document, when known
    """
    def __init__(self, message: str, original_error: Exception = None,
                 content_preview: str = None, file_name: str = None):
        super().__init__(message)
        self.original_error = original_error
        self.content_preview = content_preview[:200] if content_preview else content_preview
        self.file_name = file_name
