import pytest
from fastapi.testclient import TestClient

from backend import resume
from backend.auth import create_auth_token
from backend.errors import InvalidInput, UpstreamGenerationFailure
from backend.main import app
from backend.resume import (
    compose_resume_markdown,
    entries_to_markdown,
    get_resume,
    improve_with_ai,
    inline_markdown_to_html,
    render_resume_pdf_bytes,
    save_resume,
)
from tests.conftest import set_user_industry

EXPERIENCE = [
    {
        "title": "Software Engineer",
        "organization": "Acme",
        "start_date": "Jan 2021",
        "end_date": "",
        "description": "Built billing services.",
        "current": True,
    },
    {
        "title": "Intern",
        "organization": "Initech",
        "start_date": "Jun 2019",
        "end_date": "Aug 2019",
        "description": "Wrote test tooling.",
        "current": False,
    },
]


def test_entries_to_markdown():
    assert entries_to_markdown(EXPERIENCE, "Work Experience") == (
        "## Work Experience\n\n"
        "### Software Engineer @ Acme\nJan 2021 - Present\n\nBuilt billing services.\n\n"
        "### Intern @ Initech\nJun 2019 - Aug 2019\n\nWrote test tooling."
    )
    assert entries_to_markdown([], "Projects") == ""


def test_compose_skips_empty_sections():
    markdown = compose_resume_markdown("Ada", {}, "Engineer who ships.", "", EXPERIENCE[:1], [], None)
    assert markdown.startswith("## Professional Summary\n\nEngineer who ships.")
    assert "## Skills" not in markdown
    assert "## Education" not in markdown
    assert "## Work Experience" in markdown


def test_compose_adds_contact_header_when_contact_present():
    markdown = compose_resume_markdown("Ada", {"email": "ada@example.com", "linkedin": "https://linkedin.com/in/ada"}, None, "Python", None, None, None)
    assert markdown.startswith("# Ada\n\nEmail: ada@example.com | [LinkedIn](https://linkedin.com/in/ada)")
    assert markdown.endswith("## Skills\n\nPython")


def test_save_resume_upserts(make_user):
    make_user("u1")
    assert get_resume("u1") is None
    save_resume("u1", "## Skills\n\nPython")
    save_resume("u1", "## Skills\n\nGo")
    assert get_resume("u1")["content"] == "## Skills\n\nGo"


def test_save_resume_requires_content(make_user):
    make_user("u1")
    with pytest.raises(InvalidInput):
        save_resume("u1", "   ")


def test_improve_with_ai_uses_user_industry(make_user, monkeypatch):
    make_user("u1")
    set_user_industry("u1", "Data Science")
    prompts = []

    def fake_completion(system_prompt, user_prompt, temperature, json_mode=False):
        prompts.append(user_prompt)
        return '"Led churn modelling that cut attrition."'

    monkeypatch.setattr(resume, "request_llm_completion", fake_completion)

    improved = improve_with_ai("u1", "did churn models", "experience")

    assert improved == "Led churn modelling that cut attrition."
    assert "Data Science professional" in prompts[0]


def test_improve_with_ai_validates_input(make_user):
    make_user("u1")
    with pytest.raises(InvalidInput):
        improve_with_ai("u1", "", "experience")
    with pytest.raises(InvalidInput):
        improve_with_ai("u1", "text", "hobby")


def test_improve_with_ai_surfaces_provider_failure(make_user):
    make_user("u1")
    with pytest.raises(UpstreamGenerationFailure):
        improve_with_ai("u1", "did churn models", "project")


def test_inline_markdown_to_html():
    assert inline_markdown_to_html("**Go** & [Site](https://x.dev)") == "<b>Go</b> &amp; Site (https://x.dev)"


@pytest.mark.parametrize(
    "text, expected",
    [
        ("**bold *nested* text**", "<b>bold <i>nested</i> text</b>"),
        ("**a *b** c*", "<b>a *b</b> c*"),
        ("Shipped **fast *and** safe* code", "Shipped <b>fast *and</b> safe* code"),
    ],
)
def test_inline_markdown_emphasis_always_nests(text, expected):
    assert inline_markdown_to_html(text) == expected


@pytest.mark.parametrize("line", ["**a *b** c*", "- Shipped **fast *and** safe* code", "*a **b* c**"])
def test_render_pdf_with_crossed_emphasis(line):
    assert render_resume_pdf_bytes("Ada", f"## Experience\n\n{line}").startswith(b"%PDF")


def test_render_pdf_produces_pdf_bytes():
    markdown = compose_resume_markdown("Ada", {"email": "ada@example.com"}, "Summary", "Python", EXPERIENCE, [], [])
    pdf = render_resume_pdf_bytes("Ada", markdown + "\n- shipped *fast*")
    assert pdf.startswith(b"%PDF")


def test_export_endpoint_uses_saved_resume(make_user):
    make_user("u1", name="Ada Lovelace")
    save_resume("u1", "## Skills\n\nPython")
    api = TestClient(app)
    headers = {"Authorization": f"Bearer {create_auth_token('u1')}"}

    response = api.post("/resume/export-pdf", json={}, headers=headers)

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="ada-lovelace.pdf"' in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_export_endpoint_without_content(make_user):
    make_user("u1")
    api = TestClient(app)
    response = api.post("/resume/export-pdf", json={"auth_token": create_auth_token("u1")})
    assert response.status_code == 400


def test_export_endpoint_with_crossed_emphasis(make_user):
    make_user("u1", name="Ada")
    api = TestClient(app)
    response = api.post(
        "/resume/export-pdf",
        json={"content": "Shipped **fast *and** safe* code", "auth_token": create_auth_token("u1")},
    )
    assert response.status_code == 200
    assert response.content.startswith(b"%PDF")


def test_compose_endpoint_can_save(make_user):
    make_user("u1", name="Ada")
    api = TestClient(app)
    response = api.post(
        "/resume/compose",
        json={"summary": "Engineer.", "skills": "Python", "save": True, "auth_token": create_auth_token("u1")},
    )
    assert response.status_code == 200
    assert response.json()["content"] == "## Professional Summary\n\nEngineer.\n\n## Skills\n\nPython"
    assert get_resume("u1")["content"] == response.json()["content"]
