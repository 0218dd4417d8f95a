"""Domain exceptions raised by services and translated by routers.

Services never raise HTTPException; routers map these onto status codes
using the `status_code` each class carries.
"""

from typing import List, Optional


class CRMError(Exception):
    """Base class for CRM failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(CRMError):
    """Referenced pipeline/stage/lead/tag does not exist or is not owned by the caller."""

    status_code = 404


class CRMValidationError(CRMError):
    """Input violates a CRM rule (stage from another pipeline, empty name, bad custom field...)."""

    status_code = 400


class InvalidSheetUrlError(ValueError):
    """URL does not contain a `/d/<id>` spreadsheet identifier."""

    status_code = 400


class SheetFetchError(Exception):
    """Every CSV endpoint shape failed for a sheet.

    Carries the status of the last attempt (None for network errors) and the
    list of URLs tried, for logging.
    """

    status_code = 502

    def __init__(self, message: str, last_status: Optional[int] = None, attempted_urls: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.last_status = last_status
        self.attempted_urls = attempted_urls or []
