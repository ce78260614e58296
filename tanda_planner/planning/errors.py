"""Exceptions raised by the planning engine."""
from typing import List, Optional


class PlannerError(Exception):
    """Base class for planning failures."""
    pass


class CatalogMismatch(PlannerError):
    """The reference catalog shares no identity with the library."""

    def __init__(self, catalog_samples: List[str], library_samples: List[str]):
        self.catalog_samples = list(catalog_samples)
        self.library_samples = list(library_samples)
        super().__init__("No matching tracks found in library for the supplied catalog")

    def details(self) -> dict:
        return {
            "catalogSamples": self.catalog_samples,
            "librarySamples": self.library_samples,
        }


class OracleError(PlannerError):
    """The recommendation oracle did not produce a usable answer."""
    pass


class OracleContractViolation(OracleError):
    """Response was not valid JSON or did not match the output schema."""

    def __init__(self, message: str, raw: Optional[str] = None):
        self.raw = raw
        super().__init__(message)


class OracleTimeout(OracleError):
    """A single oracle call exceeded its time limit."""
    pass


class OracleUnavailable(OracleError):
    """Transport or authentication failure that retrying will not fix."""
    pass
