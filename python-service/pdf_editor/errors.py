"""Exception hierarchy.

Each error carries the HTTP status the service answers with when it escapes
a request handler.
"""


class PdfEditorError(Exception):
    """Base class for all editor errors."""
    status = 500


# Document level
class DocumentLoadError(PdfEditorError):
    """The PDF cannot be opened or has nothing to process."""
    status = 422


class PasswordProtectedError(DocumentLoadError):
    def __init__(self):
        super().__init__("This PDF is password protected. Please provide an unprotected PDF.")


class EmptyDocumentError(DocumentLoadError):
    def __init__(self):
        super().__init__("No pages could be processed from the PDF")


class UploadValidationError(PdfEditorError):
    status = 400


# Below page level, never surfaced to the user
class PageReconstructionError(PdfEditorError):
    pass


class ImageExtractionError(PdfEditorError):
    def __init__(self, xref, reason):
        self.xref = xref
        super().__init__(f"Failed to extract image {xref}: {reason}")


class ObjectResolutionTimeout(ImageExtractionError):
    def __init__(self, xref, attempts):
        self.attempts = attempts
        super().__init__(xref, f"not resolved after {attempts} attempts")


# Export
class ExportError(PdfEditorError):
    status = 500


class ExportTimeoutError(ExportError):
    def __init__(self, timeout):
        self.timeout = timeout
        super().__init__(f"PDF generation exceeded {timeout:.0f}s")


class EnrichmentError(PdfEditorError):
    status = 502
