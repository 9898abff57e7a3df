from typing import Optional


class RmTracerError(Exception):
    """Base exception for rmtracer errors."""


class BackendError(RmTracerError):
    """Any failed call to the hosted backend (transport failure or rejection)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Whether a later retry can succeed. Auth failures clear up after a fresh sign-in."""
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in (401, 403, 408, 429)


class PatientNotFound(RmTracerError):
    """A record number (no_rm) did not resolve to any patient."""

    def __init__(self, no_rm: str):
        super().__init__(f"Pasien dengan No RM {no_rm} tidak ditemukan")
        self.no_rm = no_rm


class InvalidQRCode(RmTracerError):
    """Scanned value carries no record number."""

    def __init__(self, value: Optional[str]):
        super().__init__("QR Code tidak valid")
        self.value = value


class NotAuthenticated(RmTracerError):
    """Operation requires a signed-in actor."""
