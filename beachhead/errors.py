from __future__ import annotations


class BeachheadError(Exception):
    pass


class ParseError(BeachheadError):
    """A single token of a domain declaration could not be parsed."""

    def __init__(self, token: str, reason: str):
        super().__init__(f"{reason} (token: {token!r})")
        self.token = token
        self.reason = reason


class DuplicateScheme(ParseError):
    pass


class MalformedToken(ParseError):
    pass


class InspectionError(BeachheadError):
    """The container source could not be listed or inspected."""


class PublishError(BeachheadError):
    """A record could not be written to the store."""
