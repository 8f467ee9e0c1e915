"""
Exceptions surfaced to callers of the offer pipeline.

Individual extraction strategy failures are never raised; they are recorded
on the AcquisitionResult. Only the terminal conditions below reach a caller.
"""


class OfferIntelError(Exception):
    """Base exception for offer processing errors"""
    pass


class UnsupportedDocumentTypeError(OfferIntelError):
    """Raised when an upload's extension matches no known document category"""

    def __init__(self, file_name: str, message: str):
        super().__init__(message)
        self.file_name = file_name
        self.message = message


class MissingPreconditionError(OfferIntelError):
    """Raised when the timeline is requested without an acceptance date"""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message
