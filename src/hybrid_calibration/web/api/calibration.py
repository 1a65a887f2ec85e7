# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Alpha calibration endpoint for the HTTP interface.

A single POST route whose JSON body selects one of four actions: ``sweep``,
``single``, ``test_query`` and ``report``. Bodies are parsed manually through a
discriminated union so that every failure, including malformed JSON, maps to a
flat ``{"error": ...}`` body instead of FastAPI's default validation payload.
"""

import json
import logging
from typing import Annotated, Any, Literal, Optional, Union

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ...models.calibration import CalibrationReport, Candidate, QueryAnalysis, SingleResult
from ...providers.base import ProviderError
from ...services.calibration_service import CalibrationService
from ...services.hybrid_search import RetrievalError
from ..dependencies import get_calibration_service

logger = logging.getLogger(__name__)

VALID_ACTIONS = ("sweep", "single", "test_query", "report")


class CalibrationAPIError(Exception):
    """Error rendered as ``{"error": message}`` plus optional ``details``."""

    def __init__(self, status_code: int, error: str, details: Optional[str] = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.details = details

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


# Request Models
class SweepRequest(BaseModel):
    """Request model for an alpha sweep against known relevant documents."""

    action: Literal["sweep"]
    query: str = Field(..., min_length=1, description="Query to calibrate")
    relevant_ids: list[str] = Field(..., min_length=1, description="Ground-truth relevant document ids")
    data_type: Optional[str] = Field(None, description="Category filter and default-alpha selector")
    alpha_values: Optional[list[Annotated[float, Field(ge=0.0, le=1.0)]]] = Field(
        None, min_length=1, description="Alpha grid (default: 0.0 to 1.0 in steps of 0.1)"
    )
    top_k: Optional[int] = Field(None, ge=1, le=1000, description="Candidates per grid point")


class SingleRequest(BaseModel):
    """Request model for one search at a fixed alpha."""

    action: Literal["single"]
    query: str = Field(..., min_length=1)
    alpha: float = Field(..., ge=0.0, le=1.0)
    data_type: Optional[str] = None
    relevant_ids: Optional[list[str]] = Field(None, description="Optional ground truth; enables metrics")
    top_k: Optional[int] = Field(None, ge=1, le=1000)


class QueryAnalysisRequest(BaseModel):
    """Request model for auto-tune analysis of a query (no retrieval)."""

    action: Literal["test_query"]
    query: str = Field(..., min_length=1)
    data_type: Optional[str] = None


class ReportRequest(BaseModel):
    """Request model for the configuration report."""

    action: Literal["report"]


CalibrationRequest = Annotated[
    Union[SweepRequest, SingleRequest, QueryAnalysisRequest, ReportRequest],
    Field(discriminator="action"),
]

_request_adapter: TypeAdapter = TypeAdapter(CalibrationRequest)


# Response Models
class SweepResultModel(BaseModel):
    alpha: float
    mrr: float
    precision_at_5: float
    recall_at_10: float
    first_relevant_rank: Optional[int]
    ndcg: float
    results: list[str]
    timing_ms: float


class SweepResponse(BaseModel):
    """Response model for an alpha sweep."""

    action: Literal["sweep"] = "sweep"
    data_type: str
    query: str
    relevant_ids: list[str]
    results: list[SweepResultModel]
    best_alpha: float
    best_mrr: float
    current_default: float
    default_mrr: float
    improvement_vs_default: float


class MetricsModel(BaseModel):
    mrr: float
    precision_at_5: float
    recall_at_10: float
    ndcg: float


class CandidateModel(BaseModel):
    id: str
    score: float
    metadata: Optional[dict[str, Any]] = None


class SingleResponse(BaseModel):
    """Response model for a single-alpha search."""

    action: Literal["single"] = "single"
    query: str
    alpha: float
    data_type: str
    metrics: Optional[MetricsModel]
    results: list[CandidateModel]
    timing_ms: float


class AnalysisModel(BaseModel):
    has_boost_keywords: bool
    acronym_count: int
    has_code_patterns: bool
    is_question: bool


class QueryAnalysisResponse(BaseModel):
    """Response model for query analysis."""

    action: Literal["test_query"] = "test_query"
    query: str
    data_type: Optional[str]
    base_alpha: float
    auto_tuned_alpha: float
    auto_tune_triggered: bool
    analysis: AnalysisModel
    factors: list[str]


class ConfigurationModel(BaseModel):
    default_alpha: float
    alpha_by_data_type: dict[str, float]


class ReportResponse(BaseModel):
    """Response model for the configuration report."""

    action: Literal["report"] = "report"
    current_configuration: ConfigurationModel
    data_types: list[str]
    recommendation: str


def report_to_response(report: CalibrationReport) -> SweepResponse:
    """Convert a CalibrationReport to the sweep response format."""
    return SweepResponse(
        data_type=report.data_type,
        query=report.query,
        relevant_ids=list(report.relevant_ids),
        results=[SweepResultModel(**row.to_dict()) for row in report.results],
        best_alpha=report.best_alpha,
        best_mrr=report.best_mrr,
        current_default=report.current_default,
        default_mrr=report.default_mrr,
        improvement_vs_default=report.improvement_vs_default,
    )


def candidate_to_response(candidate: Candidate) -> CandidateModel:
    return CandidateModel(id=candidate.id, score=candidate.score, metadata=candidate.metadata)


def single_to_response(result: SingleResult) -> SingleResponse:
    """Convert a SingleResult to the single-alpha response format."""
    return SingleResponse(
        query=result.query,
        alpha=result.alpha,
        data_type=result.data_type,
        metrics=MetricsModel(**result.metrics.to_dict()) if result.metrics is not None else None,
        results=[candidate_to_response(candidate) for candidate in result.results],
        timing_ms=result.timing_ms,
    )


def analysis_to_response(analysis: QueryAnalysis) -> QueryAnalysisResponse:
    """Convert a QueryAnalysis to the test_query response format."""
    return QueryAnalysisResponse(
        query=analysis.query,
        data_type=analysis.data_type,
        base_alpha=analysis.base_alpha,
        auto_tuned_alpha=analysis.auto_tuned_alpha,
        auto_tune_triggered=analysis.auto_tune_triggered,
        analysis=AnalysisModel(**analysis.analysis.to_dict()),
        factors=list(analysis.factors),
    )


def format_validation_error(exc: ValidationError) -> str:
    """
    Reduce a pydantic ValidationError to one message naming the offending field.

    Only the first error is reported; clients fix one thing at a time.
    """
    err = exc.errors()[0]
    error_type = err["type"]
    ctx = err.get("ctx") or {}

    if error_type == "union_tag_not_found":
        return "Missing required field: action"
    if error_type == "union_tag_invalid":
        return f"Invalid action: {ctx.get('tag')}. Use 'sweep', 'single', 'test_query', or 'report'."

    # First location element is the discriminator tag
    loc = [str(part) for part in err["loc"][1:]]
    field = ".".join(loc) or "body"

    if error_type == "missing":
        return f"Missing required field: {field}"
    if error_type == "too_short" and loc and loc[0] in ("relevant_ids", "alpha_values"):
        return f"Field {loc[0]} must contain at least one value"
    return f"Invalid field {field}: {err['msg']}"


def scrub_secrets(text: str, secrets: list[str]) -> str:
    """Replace configured secret values in text that is about to leave the process."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


async def parse_calibration_request(request: Request) -> BaseModel:
    """
    Read and validate the request body.

    Raises:
        CalibrationAPIError: 400 for invalid JSON or an invalid body
    """
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise CalibrationAPIError(400, "Invalid JSON body")

    if not isinstance(payload, dict):
        raise CalibrationAPIError(400, "Request body must be a JSON object")
    if "action" not in payload:
        raise CalibrationAPIError(400, "Missing required field: action")
    if payload["action"] not in VALID_ACTIONS:
        raise CalibrationAPIError(
            400, f"Invalid action: {payload['action']}. Use 'sweep', 'single', 'test_query', or 'report'."
        )

    try:
        return _request_adapter.validate_python(payload)
    except ValidationError as e:
        raise CalibrationAPIError(400, format_validation_error(e))


async def dispatch(service: CalibrationService, body: BaseModel) -> BaseModel:
    """Run the action selected by a validated request body."""
    if isinstance(body, SweepRequest):
        report = await service.sweep(
            body.query,
            body.relevant_ids,
            data_type=body.data_type,
            alpha_values=body.alpha_values,
            top_k=body.top_k,
        )
        return report_to_response(report)

    if isinstance(body, SingleRequest):
        result = await service.single(
            body.query,
            body.alpha,
            data_type=body.data_type,
            relevant_ids=body.relevant_ids,
            top_k=body.top_k,
        )
        return single_to_response(result)

    if isinstance(body, QueryAnalysisRequest):
        return analysis_to_response(service.analyze(body.query, body.data_type))

    report = service.report()
    return ReportResponse(
        current_configuration=ConfigurationModel(**report["current_configuration"]),
        data_types=report["data_types"],
        recommendation=report["recommendation"],
    )


def create_calibration_router(path: str = "/alpha-calibration") -> APIRouter:
    """Build the router serving the calibration endpoint at ``path``."""
    router = APIRouter()

    @router.post(path, response_model=None)
    async def alpha_calibration(
        request: Request,
        service: CalibrationService = Depends(get_calibration_service),
    ) -> Union[SweepResponse, SingleResponse, QueryAnalysisResponse, ReportResponse]:
        """
        Calibrate and inspect the hybrid search alpha.

        Actions:
        - **sweep**: test a grid of alphas against known relevant ids
        - **single**: run one search at a fixed alpha
        - **test_query**: show base and auto-tuned alpha for a query
        - **report**: show the current alpha configuration
        """
        body = await parse_calibration_request(request)
        secrets = getattr(request.app.state, "secret_values", [])

        try:
            return await dispatch(service, body)
        except CalibrationAPIError:
            raise
        except ValidationError as e:
            # Request bodies are validated before dispatch; this is a bad response model
            logger.error(f"Calibration {body.action} produced an invalid response: {e}")
            raise CalibrationAPIError(500, "Internal server error", scrub_secrets(str(e), secrets))
        except ValueError as e:
            raise CalibrationAPIError(400, str(e))
        except (RetrievalError, ProviderError) as e:
            logger.error(f"Calibration {body.action} failed: {scrub_secrets(str(e), secrets)}")
            raise CalibrationAPIError(500, "Retrieval failed", scrub_secrets(str(e), secrets))
        except Exception as e:
            logger.error(f"Unexpected error in calibration {body.action}: {scrub_secrets(str(e), secrets)}")
            raise CalibrationAPIError(500, "Internal server error", scrub_secrets(str(e), secrets))

    @router.options(path, include_in_schema=False)
    async def alpha_calibration_options() -> Response:
        return Response(status_code=204)

    return router
