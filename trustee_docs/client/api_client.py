"""
HTTP client for the pipeline API (httpx.AsyncClient).

Used by the progress monitor and by scripts. Raises httpx errors as-is;
API error bodies are `{detail, code}`.
"""

import logging

import httpx

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class PipelineClient:
    """Thin async wrapper over the document endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "PipelineClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def _post(self, path: str, **kwargs) -> dict:
        response = await self._http.post(f"{API_PREFIX}{path}", **kwargs)
        response.raise_for_status()
        return response.json()

    async def get_status(self, document_id: str) -> dict:
        response = await self._http.get(f"{API_PREFIX}/documents/{document_id}/status")
        response.raise_for_status()
        return response.json()

    async def retry(self, document_id: str, force: bool = False, restart: bool = False) -> dict:
        body = {"force": force}
        if restart:
            body["restart"] = True
        return await self._post(f"/documents/{document_id}/retry", json=body)

    async def cancel(self, document_id: str) -> dict:
        return await self._post(f"/documents/{document_id}/cancel")

    async def analyze(
        self,
        document_id: str,
        storage_path: str | None = None,
        include_risk_assessment: bool = True,
        include_compliance_check: bool = True,
        generate_tasks: bool = True,
    ) -> dict:
        return await self._post("/documents/analyze", json={
            "documentId": document_id,
            "storagePath": storage_path,
            "options": {
                "includeRiskAssessment": include_risk_assessment,
                "includeComplianceCheck": include_compliance_check,
                "generateTasks": generate_tasks,
            },
        })

    async def upload(
        self,
        owner_id: str,
        filename: str,
        data: bytes,
        content_type: str = "application/pdf",
        resolution: str | None = None,
        target_existing_id: str | None = None,
    ) -> tuple[int, dict]:
        """Returns (status_code, body); 409 carries the duplicate candidates."""
        form = {"owner_id": owner_id}
        if resolution:
            form["resolution"] = resolution
        if target_existing_id:
            form["target_existing_id"] = target_existing_id
        response = await self._http.post(
            f"{API_PREFIX}/documents/upload",
            data=form,
            files={"file": (filename, data, content_type)},
        )
        if response.status_code != 409:
            response.raise_for_status()
        return response.status_code, response.json()

    async def resolve_duplicate(
        self,
        owner_id: str,
        filename: str,
        data: bytes,
        decision: str,
        content_type: str = "application/pdf",
        target_existing_id: str | None = None,
    ) -> dict:
        form = {"owner_id": owner_id, "decision": decision}
        if target_existing_id:
            form["target_existing_id"] = target_existing_id
        return await self._post(
            "/documents/resolve-duplicate",
            data=form,
            files={"file": (filename, data, content_type)},
        )

    async def switch_version(self, document_id: str, version_id: str) -> dict:
        return await self._post(f"/documents/{document_id}/versions/switch", json={"version_id": version_id})

    async def health(self) -> bool:
        """Liveness check; any transport or HTTP error counts as down."""
        try:
            response = await self._http.get("/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Health check failed: {e}")
            return False
