"""
Analytics Exceptions

Two failure classes coexist: relational failures are hard errors that reach
the caller, document-store failures are soft and turn into degraded results.
"""


class AnalyticsError(Exception):
    """Base class for analytics failures surfaced to the route layer"""


class RelationalQueryError(AnalyticsError):
    """A query against the relational store failed or timed out"""

    def __init__(self, message: str, sql: str = ""):
        super().__init__(message)
        self.sql = sql


class DocumentStoreUnavailable(AnalyticsError):
    """The document store handle could not be obtained or a call failed"""
