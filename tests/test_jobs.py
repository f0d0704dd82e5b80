from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import crud
import logic
import models
from conftest import create_company, create_job, create_user

JOB_PAYLOAD = {
    "title": "Data Engineer",
    "description": "Design pipelines and keep them healthy.",
    "city": "Curitiba",
    "state": "PR",
    "skills_required": ["Python", "SQL"],
}


def setup_company(db: Session, user_id: str = "recruiter"):
    create_user(db, user_id)
    return create_company(db, user_id)


def test_create_job_as_member(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    login_as("recruiter")

    response = test_client.post("/jobs", json={**JOB_PAYLOAD, "company_id": company.id})

    assert response.status_code == 201
    data = response.json()
    assert data["title"] == "Data Engineer"
    assert data["job_type"] == "clt"
    assert data["is_active"] is True
    assert data["is_featured"] is False
    assert data["created_by"] == "recruiter"
    assert data["company"]["name"] == "Acme"


def test_create_job_links_tags(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    login_as("recruiter")

    test_client.post("/jobs", json={**JOB_PAYLOAD, "company_id": company.id})

    names = sorted(tag.name for tag in crud.list_tags(db_session))
    assert names == ["Python", "SQL"]
    job = crud.list_company_jobs(db_session, company.id)[0]
    assert sorted(tag.name for tag in job.tags) == ["Python", "SQL"]


def test_create_job_validation(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    login_as("recruiter")

    response = test_client.post(
        "/jobs", json={**JOB_PAYLOAD, "company_id": company.id, "title": "QA", "description": "short"}
    )

    assert response.status_code == 422


def test_create_job_for_other_company_is_forbidden(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    create_user(db_session, "outsider")
    login_as("outsider")

    response = test_client.post("/jobs", json={**JOB_PAYLOAD, "company_id": company.id})

    assert response.status_code == 403


def test_search_orders_featured_first_and_hides_inactive(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    create_job(db_session, company.id, "recruiter", title="Regular")
    create_job(db_session, company.id, "recruiter", title="Featured", is_featured=True)
    create_job(db_session, company.id, "recruiter", title="Closed", is_active=False)
    create_job(db_session, company.id, "recruiter", title="Newest")
    login_as("recruiter")

    response = test_client.get("/jobs")

    assert response.status_code == 200
    titles = [job["title"] for job in response.json()]
    assert titles == ["Featured", "Newest", "Regular"]


def test_search_filters(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    create_job(db_session, company.id, "recruiter", title="Python Dev", city="Sao Paulo", state="SP")
    create_job(
        db_session, company.id, "recruiter", title="Remote Designer",
        description="Design interfaces for our product.", city="Recife", state="PE",
        is_remote=True, job_type=models.JobType.pj, skills_required=["Figma"],
    )
    login_as("recruiter")

    def titles(**params):
        return [job["title"] for job in test_client.get("/jobs", params=params).json()]

    assert titles(search="python") == ["Python Dev"]
    assert titles(city="reci") == ["Remote Designer"]
    assert titles(state="SP") == ["Python Dev"]
    assert titles(job_type="pj") == ["Remote Designer"]
    assert titles(is_remote="true") == ["Remote Designer"]
    assert titles(tags=["fig"]) == ["Remote Designer"]
    assert sorted(titles(tags=["python", "figma"])) == ["Python Dev", "Remote Designer"]


def test_matches_tags_is_case_insensitive_substring():
    assert logic.matches_tags(["PostgreSQL"], ["sql"])
    assert logic.matches_tags(["Python"], None)
    assert not logic.matches_tags([], ["python"])
    assert not logic.matches_tags(None, ["python"])


def test_update_and_delete_job(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    job = create_job(db_session, company.id, "recruiter")
    login_as("recruiter")

    response = test_client.patch(f"/jobs/{job.id}", json={"is_active": False, "skills_required": ["Go"]})
    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert response.json()["skills_required"] == ["Go"]

    response = test_client.delete(f"/jobs/{job.id}")
    assert response.status_code == 200
    assert test_client.get(f"/jobs/{job.id}").status_code == 404


def test_update_job_by_outsider_is_forbidden(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    job = create_job(db_session, company.id, "recruiter")
    create_user(db_session, "outsider")
    login_as("outsider")

    assert test_client.patch(f"/jobs/{job.id}", json={"title": "Hijacked"}).status_code == 403
    assert test_client.delete(f"/jobs/{job.id}").status_code == 403


def test_root_can_manage_any_job(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    job = create_job(db_session, company.id, "recruiter")
    create_user(db_session, "root-user", role=models.AppRole.root)
    login_as("root-user")

    response = test_client.patch(f"/jobs/{job.id}", json={"is_featured": True})

    assert response.status_code == 200
    assert response.json()["is_featured"] is True


def test_managed_jobs_include_application_counts(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    busy = create_job(db_session, company.id, "recruiter", title="Busy")
    create_job(db_session, company.id, "recruiter", title="Quiet", is_active=False)
    for candidate in ("c1", "c2"):
        create_user(db_session, candidate)
        crud.create_application(db_session, busy.id, candidate, None)
    login_as("recruiter")

    response = test_client.get("/jobs/managed")

    assert response.status_code == 200
    counts = {job["title"]: job["application_count"] for job in response.json()}
    assert counts == {"Busy": 2, "Quiet": 0}


def test_update_job_cannot_clear_required_fields(test_client: TestClient, db_session: Session, login_as):
    company = setup_company(db_session)
    job = create_job(db_session, company.id, "recruiter")
    login_as("recruiter")

    for field in ("title", "description", "city", "state", "job_type"):
        response = test_client.patch(f"/jobs/{job.id}", json={field: None})
        assert response.status_code == 422, field

    assert test_client.get(f"/jobs/{job.id}").json()["title"] == "Backend Developer"
