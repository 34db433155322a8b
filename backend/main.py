from __future__ import annotations

import io
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from backend import settings
from backend.assessments import performance_summary, record_assessment
from backend.auth import require_user, resolve_identity, safe_text, sync_user
from backend.db import init_db
from backend.errors import CareerCoachError, InvalidInput, NotOnboarded, PersistenceFailure
from backend.insights import InsightGenerator, generate_industry_insights, resolve_industry_insight, salary_chart_series
from backend.onboarding import get_onboarding_status, submit_onboarding, user_payload
from backend.resume import (
    compose_resume_markdown,
    get_resume,
    improve_with_ai,
    render_resume_pdf_bytes,
    sanitize_download_name,
    save_resume,
)

logger = settings.logger

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_origin_regex=settings.CORS_ALLOW_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SyncUserRequest(BaseModel):
    email: str | None = None
    name: str | None = None
    image_url: str | None = None
    auth_token: str | None = None


class OnboardingRequest(BaseModel):
    industry: str
    sub_industry: str | None = None
    experience: int
    bio: str | None = None
    skills: list[str] | str | None = None
    auth_token: str | None = None


class ContactInfo(BaseModel):
    email: str | None = None
    mobile: str | None = None
    linkedin: str | None = None
    twitter: str | None = None


class ResumeEntry(BaseModel):
    title: str
    organization: str
    start_date: str
    end_date: str | None = None
    description: str
    current: bool = False


class ResumeComposeRequest(BaseModel):
    name: str | None = None
    contact_info: ContactInfo | None = None
    summary: str | None = None
    skills: str | None = None
    experience: list[ResumeEntry] = []
    education: list[ResumeEntry] = []
    projects: list[ResumeEntry] = []
    save: bool = False
    auth_token: str | None = None


class ResumeSaveRequest(BaseModel):
    content: str
    auth_token: str | None = None


class ImproveRequest(BaseModel):
    current: str
    type: str
    auth_token: str | None = None


class ResumeExportRequest(BaseModel):
    name: str | None = None
    content: str | None = None
    auth_token: str | None = None


class AssessmentRequest(BaseModel):
    category: str = "Technical"
    quiz_score: float
    improvement_tip: str | None = None
    auth_token: str | None = None


def get_insight_generator() -> InsightGenerator:
    return generate_industry_insights


def format_industry(industry: str, sub_industry: str | None) -> str:
    base = safe_text(industry)
    sub = safe_text(sub_industry)
    if not sub:
        return base
    return f"{base}-{'-'.join(sub.lower().split())}"


@app.exception_handler(CareerCoachError)
async def career_coach_error_handler(request: Request, exc: CareerCoachError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/")
def root() -> dict[str, str]:
    return {"message": "Career coach backend running"}


@app.post("/auth/sync")
def auth_sync(data: SyncUserRequest, request: Request) -> dict[str, Any]:
    identity = resolve_identity(request, data.auth_token)
    user = sync_user(identity, data.email, data.name, data.image_url)
    return {"user": user_payload(user)}


@app.get("/onboarding/status")
def onboarding_status(request: Request, auth_token: str | None = None) -> dict[str, bool]:
    return get_onboarding_status(resolve_identity(request, auth_token))


@app.post("/onboarding")
def onboarding(
    data: OnboardingRequest,
    request: Request,
    generate: InsightGenerator = Depends(get_insight_generator),
) -> dict[str, Any]:
    identity = resolve_identity(request, data.auth_token)
    profile = {
        "industry": format_industry(data.industry, data.sub_industry),
        "experience": data.experience,
        "bio": data.bio,
        "skills": data.skills,
    }
    return submit_onboarding(identity, profile, generate)


@app.get("/dashboard/insights")
def dashboard_insights(
    request: Request,
    auth_token: str | None = None,
    generate: InsightGenerator = Depends(get_insight_generator),
) -> dict[str, Any]:
    user = require_user(resolve_identity(request, auth_token))
    industry = safe_text(user["industry"])
    if not industry:
        raise NotOnboarded()
    insight = resolve_industry_insight(industry, generate)
    return {"insights": insight, "salary_chart": salary_chart_series(insight)}


@app.get("/resume")
def resume_get(request: Request, auth_token: str | None = None) -> dict[str, Any]:
    return {"resume": get_resume(resolve_identity(request, auth_token))}


@app.put("/resume")
def resume_save(data: ResumeSaveRequest, request: Request) -> dict[str, Any]:
    return {"resume": save_resume(resolve_identity(request, data.auth_token), data.content)}


@app.post("/resume/compose")
def resume_compose(data: ResumeComposeRequest, request: Request) -> dict[str, Any]:
    identity = resolve_identity(request, data.auth_token)
    user = require_user(identity)
    markdown = compose_resume_markdown(
        data.name or str(user["name"] or ""),
        data.contact_info.model_dump() if data.contact_info else None,
        data.summary,
        data.skills,
        [entry.model_dump() for entry in data.experience],
        [entry.model_dump() for entry in data.education],
        [entry.model_dump() for entry in data.projects],
    )
    payload: dict[str, Any] = {"content": markdown}
    if data.save and markdown:
        payload["resume"] = save_resume(identity, markdown)
    return payload


@app.post("/resume/improve")
def resume_improve(data: ImproveRequest, request: Request) -> dict[str, str]:
    improved = improve_with_ai(resolve_identity(request, data.auth_token), data.current, data.type)
    return {"improved": improved}


@app.post("/resume/export-pdf")
def resume_export_pdf(data: ResumeExportRequest, request: Request) -> StreamingResponse:
    identity = resolve_identity(request, data.auth_token)
    user = require_user(identity)
    content = safe_text(data.content)
    if not content:
        stored = get_resume(identity)
        content = stored["content"] if stored else ""
    if not content:
        raise InvalidInput("Save or provide resume content before exporting a PDF.")

    display_name = data.name or str(user["name"] or "") or "resume"
    try:
        pdf_bytes = render_resume_pdf_bytes(display_name, content)
    except Exception as exc:
        logger.exception("PDF generation error for user %s", user["id"])
        raise PersistenceFailure("Failed to generate PDF") from exc

    headers = {"Content-Disposition": f'attachment; filename="{sanitize_download_name(display_name)}.pdf"'}
    return StreamingResponse(io.BytesIO(pdf_bytes), media_type="application/pdf", headers=headers)


@app.post("/assessments")
def assessments_create(data: AssessmentRequest, request: Request) -> dict[str, Any]:
    identity = resolve_identity(request, data.auth_token)
    return {"assessment": record_assessment(identity, data.category, data.quiz_score, data.improvement_tip)}


@app.get("/assessments/performance")
def assessments_performance(request: Request, auth_token: str | None = None) -> dict[str, Any]:
    return performance_summary(resolve_identity(request, auth_token))


init_db()
