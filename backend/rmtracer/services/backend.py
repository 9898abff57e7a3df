"""
Hosted backend client (Supabase: PostgREST tables, GoTrue auth, RPC functions).
Every failure, whether transport or HTTP rejection, surfaces as BackendError.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from ..core.errors import BackendError
from ..models.reference import ActivityLog, AuthSession, Location, Patient, Profile, Staff, TracerRecord

logger = logging.getLogger(__name__)

PLACEHOLDER_URL = "https://placeholder.supabase.co"
PLACEHOLDER_KEY = "placeholder-key"


class SupabaseBackend:
    """Async HTTP client for the tracer backend."""

    def __init__(
        self,
        base_url: Optional[str],
        anon_key: Optional[str],
        timeout: float = 10.0,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url or not anon_key:
            logger.error(
                "Missing backend credentials (url=%s, key=%s); requests will fail until configured",
                base_url or "MISSING",
                "SET" if anon_key else "MISSING",
            )
        self.base_url = (base_url or PLACEHOLDER_URL).rstrip("/")
        self.anon_key = anon_key or PLACEHOLDER_KEY
        self.token_provider = token_provider
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    # ------------------------------------------------------------------
    # Mutation API used by the sync engine
    # ------------------------------------------------------------------

    async def lookup_patient_by_record_number(self, no_rm: str) -> Optional[Patient]:
        resp = await self._request(
            "GET",
            "/rest/v1/patients",
            params={"select": "*", "no_rm": f"eq.{no_rm}", "limit": "1"},
        )
        rows = resp.json()
        return Patient.model_validate(rows[0]) if rows else None

    async def insert_location_record(
        self,
        *,
        patient_id: str,
        location_id: str,
        actor_id: Optional[str],
        staff_id: Optional[str] = None,
        note: Optional[str] = None,
        event_time: Optional[datetime] = None,
    ) -> TracerRecord:
        """Insert a tracer row. ``event_time`` overrides the backend's created_at."""
        body: Dict[str, Any] = {
            "patient_id": patient_id,
            "status_lokasi": location_id,
            "staff_id": staff_id,
            "keterangan": note,
            "petugas_id": actor_id,
        }
        if event_time is not None:
            body["created_at"] = event_time.isoformat()
        resp = await self._request(
            "POST",
            "/rest/v1/tracer",
            json=body,
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json()
        if not rows:
            raise BackendError("Tracer insert returned no row")
        return TracerRecord.model_validate(rows[0])

    async def append_audit_log(self, action: str, no_rm: Optional[str], details: Dict[str, Any]) -> None:
        await self._request(
            "POST",
            "/rest/v1/rpc/log_activity",
            json={"p_aksi": action, "p_no_rm": no_rm, "p_details": details},
        )

    # ------------------------------------------------------------------
    # Scan flow and reference data
    # ------------------------------------------------------------------

    async def delete_location_record(self, record_id: str) -> None:
        await self._request("DELETE", "/rest/v1/tracer", params={"id": f"eq.{record_id}"})

    async def latest_location(self, patient_id: str) -> Optional[TracerRecord]:
        resp = await self._request(
            "GET",
            "/rest/v1/tracer",
            params={
                "select": "*",
                "patient_id": f"eq.{patient_id}",
                "order": "updated_at.desc",
                "limit": "1",
            },
        )
        rows = resp.json()
        return TracerRecord.model_validate(rows[0]) if rows else None

    async def search_patients(self, term: str, limit: int = 20) -> List[Patient]:
        """Patients whose record number or name contains ``term``, newest first."""
        pattern = term.replace(",", " ").replace("(", " ").replace(")", " ").strip()
        resp = await self._request(
            "GET",
            "/rest/v1/patients",
            params={
                "select": "*",
                "or": f"(no_rm.ilike.*{pattern}*,nama.ilike.*{pattern}*)",
                "order": "created_at.desc",
                "limit": str(limit),
            },
        )
        return [Patient.model_validate(row) for row in resp.json()]

    async def current_locations(self, patient_ids: List[str]) -> Dict[str, str]:
        """Latest ``status_lokasi`` per patient, for the given patients only."""
        if not patient_ids:
            return {}
        resp = await self._request(
            "GET",
            "/rest/v1/tracer",
            params={
                "select": "patient_id,status_lokasi",
                "patient_id": f"in.({','.join(patient_ids)})",
                "order": "updated_at.desc",
            },
        )
        current: Dict[str, str] = {}
        for row in resp.json():
            current.setdefault(row["patient_id"], row["status_lokasi"])
        return current

    async def fetch_activity(
        self,
        user_id: str,
        actions: Optional[Sequence[str]] = None,
        since: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[ActivityLog]:
        params = {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "order": "created_at.desc",
            "limit": str(limit),
        }
        if actions:
            params["aksi"] = f"in.({','.join(actions)})"
        if since is not None:
            params["created_at"] = f"gte.{since.isoformat()}"
        resp = await self._request("GET", "/rest/v1/activity_logs", params=params)
        return [ActivityLog.model_validate(row) for row in resp.json()]

    async def fetch_locations(self) -> List[Location]:
        resp = await self._request("GET", "/rest/v1/locations", params={"select": "*", "order": "name"})
        return [Location.model_validate(row) for row in resp.json()]

    async def fetch_staff(self) -> List[Staff]:
        resp = await self._request(
            "GET",
            "/rest/v1/staff",
            params={"select": "*", "is_active": "eq.true", "order": "nama"},
        )
        return [Staff.model_validate(row) for row in resp.json()]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthSession:
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            authenticated=False,
        )
        payload = resp.json()
        try:
            return AuthSession(access_token=payload["access_token"], user_id=payload["user"]["id"])
        except (KeyError, TypeError) as exc:
            raise BackendError(f"Unexpected sign-in response: {exc}") from exc

    async def fetch_profile(self, user_id: str, access_token: Optional[str] = None) -> Optional[Profile]:
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else None
        resp = await self._request(
            "GET",
            "/rest/v1/profiles",
            params={"select": "*", "id": f"eq.{user_id}", "limit": "1"},
            headers=headers,
        )
        rows = resp.json()
        return Profile.model_validate(rows[0]) if rows else None

    async def ping(self) -> bool:
        """Health probe used as the connectivity signal; never raises."""
        try:
            await self._request("GET", "/auth/v1/health", authenticated=False)
        except BackendError as exc:
            logger.debug("Backend health probe failed: %s", exc)
            return False
        return True

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        token = None
        if authenticated and self.token_provider is not None:
            token = self.token_provider()
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token or self.anon_key}",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        authenticated: bool = True,
        **kwargs,
    ) -> httpx.Response:
        merged = self._headers(authenticated)
        if headers:
            merged.update(headers)
        try:
            resp = await self._client.request(method, path, headers=merged, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BackendError(
                f"{method} {path} rejected with {exc.response.status_code}: {exc.response.text[:200]}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"{method} {path} failed: {exc}") from exc
        return resp
