"""HTTP adapters for the contract generation API.

``HttpGenerationGateway`` and ``HttpPartyDirectory`` are async and send the
bearer credential bound by ``RequestDiscipline`` for the current call.
``HttpSessionStore`` is synchronous, matching the SessionStore interface, and
reads the same bound credential from the worker thread it runs in.
"""

from typing import Any, Dict, List, Optional, Type

import httpx
import msgspec
from loguru import logger

from drafting.error_handling import (
    ConflictError,
    GatewayError,
    NetworkError,
    NotFoundError,
    RequestTimeoutError,
    UnauthenticatedError,
    ValidationError,
)
from drafting.logging_config import log_gateway_call
from drafting.models import (
    AnalysisResult,
    ClauseApprovalResult,
    ClauseBatchResult,
    ClauseUpdateResult,
    CompletionResult,
    CustomClauseSpec,
    MandatoryClausesResult,
    MandatoryFields,
    PartyInfo,
    PreviewResult,
    ResumeData,
    Session,
)
from drafting.request_discipline import current_credential

API_PREFIX = "/api/v1/contract-generation"


def _detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return body["detail"]
    return body


def raise_for_status(response: httpx.Response) -> None:
    """Map an error response onto the drafting error taxonomy."""
    if response.is_success:
        return

    status = response.status_code
    detail = _detail(response)
    message = detail if isinstance(detail, str) else f"Request failed with status {status}"

    if status in (401, 403):
        raise UnauthenticatedError(message)
    if status == 404:
        raise NotFoundError(message)
    if status == 409:
        raise ConflictError(message, user_message=message)
    if status in (400, 422):
        raise ValidationError(message, user_message=message)
    raise GatewayError(
        f"Gateway responded {status}: {message}",
        status_code=status,
        detail=detail,
        user_message=message if status < 500 else None
    )


def _decode(response: httpx.Response, decode_type: Type) -> Any:
    try:
        return msgspec.json.decode(response.content, type=decode_type)
    except (msgspec.DecodeError, msgspec.ValidationError) as e:
        raise GatewayError(
            f"Malformed gateway response: {e}",
            status_code=response.status_code,
            detail=str(e)
        ) from e


def _auth_headers(token: Optional[str]) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"} if token else {}


class HttpGenerationGateway:
    """GenerationGateway speaking to the FastAPI service over HTTP.

    Args:
        base_url: Root URL of the API, e.g. ``http://localhost:8000``
        timeout: Transport timeout; the per-call bound is enforced by RequestDiscipline
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}{API_PREFIX}",
            timeout=timeout,
            transport=transport
        )
        logger.info("HttpGenerationGateway initialized", base_url=self.base_url)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, decode_type: Type, json: Any = None) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                json=msgspec.to_builtins(json) if json is not None else None,
                headers=_auth_headers(current_credential())
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

        raise_for_status(response)
        return _decode(response, decode_type)

    @log_gateway_call("analyze_prompt", session_scoped=False)
    async def analyze_prompt(self, text: str) -> AnalysisResult:
        return await self._request("POST", "/analyze-prompt", AnalysisResult, {"user_prompt": text})

    @log_gateway_call("create_session", session_scoped=False)
    async def create_session(
        self,
        template_id: str,
        prompt: str,
        analysis: Optional[AnalysisResult]
    ) -> Session:
        return await self._request("POST", "/sessions", Session, {
            "template_id": template_id,
            "initial_prompt": prompt,
            "ai_analysis_data": analysis,
        })

    @log_gateway_call("get_session")
    async def get_session(self, session_id: str) -> Session:
        return await self._request("GET", f"/sessions/{session_id}", Session)

    @log_gateway_call("generate_mandatory_clauses")
    async def generate_mandatory_clauses(
        self,
        session_id: str,
        explanation: str,
        fields: MandatoryFields,
        template_id: str
    ) -> MandatoryClausesResult:
        return await self._request(
            "POST",
            f"/sessions/{session_id}/analyze-requirements",
            MandatoryClausesResult,
            {
                "explanation": explanation,
                "mandatory_fields": fields,
                "template_id": template_id,
                "user_context": {},
            }
        )

    @log_gateway_call("approve_clause")
    async def approve_clause(
        self,
        session_id: str,
        clause_id: str,
        approved: bool,
        modifications: Optional[str] = None
    ) -> ClauseApprovalResult:
        return await self._request(
            "POST",
            f"/sessions/{session_id}/approve-clause",
            ClauseApprovalResult,
            {"clause_id": clause_id, "approved": approved, "user_modifications": modifications}
        )

    @log_gateway_call("reanalyze_clause")
    async def reanalyze_clause(self, session_id: str, clause_id: str, modifications: str) -> ClauseUpdateResult:
        return await self._request(
            "POST",
            f"/sessions/{session_id}/reanalyze-clause",
            ClauseUpdateResult,
            {"clause_id": clause_id, "user_modifications": modifications, "approved": False}
        )

    @log_gateway_call("generate_optional_clauses")
    async def generate_optional_clauses(self, session_id: str, template_id: str) -> ClauseBatchResult:
        return await self._request(
            "POST",
            f"/sessions/{session_id}/generate-optional-clauses",
            ClauseBatchResult,
            {"template_id": template_id}
        )

    @log_gateway_call("generate_custom_clauses")
    async def generate_custom_clauses(self, session_id: str, specs: List[CustomClauseSpec]) -> ClauseBatchResult:
        return await self._request(
            "POST",
            f"/sessions/{session_id}/generate-custom-clauses",
            ClauseBatchResult,
            {"custom_clauses": list(specs)}
        )

    @log_gateway_call("generate_preview")
    async def generate_preview(self, session_id: str) -> PreviewResult:
        return await self._request("POST", f"/sessions/{session_id}/generate-preview", PreviewResult, {})

    @log_gateway_call("complete_session")
    async def complete_session(self, session_id: str, review_data: Dict[str, Any]) -> CompletionResult:
        return await self._request(
            "POST",
            f"/sessions/{session_id}/complete",
            CompletionResult,
            {"final_review_data": review_data}
        )

    @log_gateway_call("resume_data")
    async def resume_data(self, session_id: str, step: int) -> ResumeData:
        if step == 3:
            path = f"/sessions/{session_id}/step3/resume-data"
        elif step == 4:
            path = f"/sessions/{session_id}/step4-resume"
        else:
            raise ValidationError(f"No resume view for step {step}")
        return await self._request("GET", path, ResumeData)


class _UserInfoResponse(msgspec.Struct):
    user_info: Optional[PartyInfo] = None


class HttpPartyDirectory:
    """PartyDirectory backed by the ``search-user`` endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}{API_PREFIX}",
            timeout=timeout,
            transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @log_gateway_call("search_user", session_scoped=False)
    async def lookup(self, external_id: str) -> Optional[PartyInfo]:
        try:
            response = await self._client.post(
                "/search-user",
                json={"app_id": external_id},
                headers=_auth_headers(current_credential())
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Party search timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"Party search failed: {e}") from e

        if response.status_code == 404:
            return None
        raise_for_status(response)
        return _decode(response, _UserInfoResponse).user_info


class HttpSessionStore:
    """SessionStore over the session routes of the API.

    Calls are blocking; the orchestrator runs them in a worker thread under
    ``RequestDiscipline``, whose bound credential is sent with each request.

    Args:
        base_url: Root URL of the API
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self._client = httpx.Client(
            base_url=f"{base_url.rstrip('/')}{API_PREFIX}",
            timeout=timeout,
            transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def _send(self, method: str, path: str, json: Any = None) -> httpx.Response:
        try:
            return self._client.request(method, path, json=json, headers=_auth_headers(current_credential()))
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    def get(self, session_id: str) -> Optional[Session]:
        response = self._send("GET", f"/sessions/{session_id}")
        if response.status_code == 404:
            return None
        raise_for_status(response)
        return _decode(response, Session)

    def put(self, session: Session) -> None:
        response = self._send("PUT", f"/sessions/{session.id}", msgspec.to_builtins(session))
        raise_for_status(response)

    def patch(self, session_id: str, changes: Dict[str, Any]) -> Session:
        response = self._send("PATCH", f"/sessions/{session_id}", msgspec.to_builtins(changes))
        raise_for_status(response)
        return _decode(response, Session)
