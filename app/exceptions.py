"""
Exception hierarchy for the sweepstakes service.

Fatal submission stages raise these so the request layer can turn them into
a single human-readable error message.
"""


class SweepstakesException(Exception):
    """Base exception for all sweepstakes operations"""

    status_code = 400

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CampaignResolutionError(SweepstakesException):
    """Raised when the campaign query itself fails"""

    pass


class EntryLookupError(SweepstakesException):
    """Raised when the existing-entry query fails"""

    pass


class EntryWriteError(SweepstakesException):
    """Raised when inserting an entry fails, including duplicate emails"""

    pass


class EntryNotFoundException(SweepstakesException):
    """Raised when an entry id or referral code does not exist"""

    status_code = 404


class ValidationException(SweepstakesException):
    """Raised when request data fails validation"""

    pass


class IntegrationException(SweepstakesException):
    """Raised when a third-party API call fails"""

    status_code = 502


class BeehiivAPIException(IntegrationException):
    """Raised when Beehiiv API calls fail"""

    pass


class SheetsAPIException(IntegrationException):
    """Raised when Google Sheets API calls fail"""

    pass


def database_error_message(exc: Exception) -> str:
    """Driver message of a SQLAlchemy error, without the statement and parameters."""
    return str(getattr(exc, "orig", None) or exc)
