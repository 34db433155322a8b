import sqlite3
import threading

import pytest

from backend import onboarding
from backend.errors import (
    InvalidInput,
    NotAuthenticated,
    PersistenceFailure,
    UpstreamGenerationFailure,
    UserNotFound,
)
from backend.insights import fetch_insight
from backend.onboarding import get_onboarding_status, submit_onboarding
from tests.conftest import FakeGenerator, count_insights, run_sql, set_user_industry


def profile(industry="Software Engineering", **overrides):
    data = {"industry": industry, "experience": 5, "bio": "Backend developer", "skills": ["Go"]}
    data.update(overrides)
    return data


def test_first_onboarding_creates_insight_and_updates_user(make_user, fake_generator):
    make_user("u1")

    result = submit_onboarding("u1", profile(), fake_generator)

    assert fake_generator.calls == ["Software Engineering"]
    assert result["success"] is True
    assert result["user"]["industry"] == "Software Engineering"
    assert result["user"]["experience"] == 5
    assert result["user"]["bio"] == "Backend developer"
    assert result["user"]["skills"] == ["Go"]
    assert result["industry_insight"]["industry"] == "Software Engineering"
    assert result["industry_insight"]["demand_level"] == "High"
    assert count_insights("Software Engineering") == 1


def test_known_industry_skips_generation(make_user, fake_generator):
    make_user("u1")
    make_user("u2")
    first = submit_onboarding("u1", profile(), fake_generator)

    second = submit_onboarding("u2", profile(experience=2, skills=[]), fake_generator)

    assert len(fake_generator.calls) == 1
    assert count_insights("Software Engineering") == 1
    assert second["industry_insight"] == first["industry_insight"]
    assert second["user"]["skills"] == []


def test_resubmitting_same_user_is_idempotent_for_insights(make_user, fake_generator):
    make_user("u1")
    submit_onboarding("u1", profile(), fake_generator)
    result = submit_onboarding("u1", profile(bio="Updated bio"), fake_generator)

    assert len(fake_generator.calls) == 1
    assert result["user"]["bio"] == "Updated bio"


def test_concurrent_first_onboarding_keeps_single_insight(make_user):
    make_user("u1")
    make_user("u2")
    generator = FakeGenerator(barrier=threading.Barrier(2))
    results = {}
    errors = []

    def run(identity):
        try:
            results[identity] = submit_onboarding(identity, profile("Data Science"), generator)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(identity,)) for identity in ("u1", "u2")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(generator.calls) == 2
    assert count_insights("Data Science") == 1
    stored = fetch_insight("Data Science")
    assert results["u1"]["industry_insight"] == stored
    assert results["u2"]["industry_insight"] == stored
    assert results["u1"]["user"]["industry"] == "Data Science"
    assert results["u2"]["user"]["industry"] == "Data Science"


def test_user_update_failure_keeps_insight_and_reports_failure(make_user, fake_generator, monkeypatch):
    make_user("u1")

    def failing_update(identity, data):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(onboarding, "update_user_profile", failing_update)

    with pytest.raises(PersistenceFailure) as excinfo:
        submit_onboarding("u1", profile(), fake_generator)

    assert "Failed to update profile" in excinfo.value.message
    assert fetch_insight("Software Engineering") is not None
    assert get_onboarding_status("u1") == {"is_onboarded": False}


def test_rejected_profile_update_rolls_back_and_keeps_insight(make_user, fake_generator):
    make_user("u1")
    run_sql(
        "CREATE TRIGGER reject_profile_update BEFORE UPDATE ON users "
        "BEGIN SELECT RAISE(ABORT, 'profile update rejected'); END"
    )

    with pytest.raises(PersistenceFailure) as excinfo:
        submit_onboarding("u1", profile(), fake_generator)

    assert excinfo.value.message == "Failed to update profile: profile update rejected"
    assert fetch_insight("Software Engineering") is not None
    assert get_onboarding_status("u1") == {"is_onboarded": False}

    run_sql("DROP TRIGGER reject_profile_update")
    result = submit_onboarding("u1", profile(), fake_generator)

    assert result["user"]["industry"] == "Software Engineering"
    assert len(fake_generator.calls) == 1


def test_user_removed_during_generation_is_user_not_found(make_user, fake_generator):
    make_user("u1")

    def generate_then_remove_user(industry):
        payload = fake_generator(industry)
        run_sql("DELETE FROM users WHERE clerk_user_id = ?", ("u1",))
        return payload

    with pytest.raises(UserNotFound):
        submit_onboarding("u1", profile(), generate_then_remove_user)

    assert count_insights("Software Engineering") == 1

    make_user("u1")
    result = submit_onboarding("u1", profile(), fake_generator)

    assert result["user"]["industry"] == "Software Engineering"
    assert len(fake_generator.calls) == 1


def test_generation_failure_is_surfaced_without_partial_writes(make_user):
    make_user("u1")
    generator = FakeGenerator(error=RuntimeError("provider timeout"))

    with pytest.raises(UpstreamGenerationFailure) as excinfo:
        submit_onboarding("u1", profile(), generator)

    assert excinfo.value.message.startswith("Failed to update profile")
    assert fetch_insight("Software Engineering") is None
    assert get_onboarding_status("u1") == {"is_onboarded": False}


def test_missing_identity_is_not_authenticated(fake_generator):
    with pytest.raises(NotAuthenticated):
        submit_onboarding(None, profile(), fake_generator)
    with pytest.raises(NotAuthenticated):
        get_onboarding_status("")


def test_unknown_identity_is_user_not_found(fake_generator):
    with pytest.raises(UserNotFound):
        submit_onboarding("ghost", profile(), fake_generator)
    with pytest.raises(UserNotFound):
        get_onboarding_status("ghost")
    assert fake_generator.calls == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"industry": "   "},
        {"experience": -1},
        {"experience": "five"},
        {"experience": "5"},
        {"experience": 5.7},
        {"experience": None},
        {"experience": True},
    ],
)
def test_invalid_profile_is_rejected(make_user, fake_generator, overrides):
    make_user("u1")
    data = profile()
    data.update(overrides)

    with pytest.raises(InvalidInput):
        submit_onboarding("u1", data, fake_generator)
    assert fake_generator.calls == []


def test_whole_float_experience_is_stored_as_int(make_user, fake_generator):
    make_user("u1")
    result = submit_onboarding("u1", profile(experience=3.0), fake_generator)
    assert result["user"]["experience"] == 3


def test_missing_experience_is_rejected(make_user, fake_generator):
    make_user("u1")
    data = profile()
    del data["experience"]

    with pytest.raises(InvalidInput):
        submit_onboarding("u1", data, fake_generator)


def test_comma_separated_skills_are_split(make_user, fake_generator):
    make_user("u1")
    result = submit_onboarding("u1", profile(skills="Python, SQL ,, Airflow"), fake_generator)
    assert result["user"]["skills"] == ["Python", "SQL", "Airflow"]


@pytest.mark.parametrize(
    "industry, expected",
    [
        (None, False),
        ("", False),
        ("   ", False),
        ("Software Engineering", True),
    ],
)
def test_onboarding_status_tracks_industry(make_user, industry, expected):
    make_user("u1")
    set_user_industry("u1", industry)
    assert get_onboarding_status("u1") == {"is_onboarded": expected}


def test_new_user_is_not_onboarded(make_user):
    make_user("u1")
    assert get_onboarding_status("u1") == {"is_onboarded": False}
