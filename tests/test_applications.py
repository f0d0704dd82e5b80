from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import crud
import logic
import models
import schemas
from conftest import create_company, create_job, create_user


def setup_job(db: Session):
    create_user(db, "recruiter", full_name="Rita Recruiter")
    create_user(db, "candidate", full_name="Carlos Candidate")
    company = create_company(db, "recruiter")
    return create_job(db, company.id, "recruiter")


def test_apply_creates_pending_application(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    login_as("candidate")

    response = test_client.post(f"/jobs/{job.id}/applications", json={"cover_letter": "Hire me"})

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["cover_letter"] == "Hire me"
    assert test_client.get("/applications/me/job-ids").json() == [job.id]


def test_apply_twice_is_a_conflict(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    login_as("candidate")

    first = test_client.post(f"/jobs/{job.id}/applications", json={})
    second = test_client.post(f"/jobs/{job.id}/applications", json={})

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["detail"] == "You have already applied to this job"
    assert len(crud.list_job_applications(db_session, job.id)) == 1


def test_apply_to_missing_job(test_client: TestClient, db_session: Session, login_as):
    create_user(db_session, "candidate")
    login_as("candidate")

    response = test_client.post("/jobs/does-not-exist/applications", json={})

    assert response.status_code == 404


def test_duplicate_violation_detection():
    assert logic.is_duplicate_violation("UNIQUE constraint failed: applications.job_id")
    assert logic.is_duplicate_violation('duplicate key value violates unique constraint "uq_application_job_user"')
    assert not logic.is_duplicate_violation("NOT NULL constraint failed: applications.user_id")


def test_status_update_is_visible_to_candidate(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    application = crud.create_application(db_session, job.id, "candidate", None)
    login_as("recruiter")

    response = test_client.patch(f"/applications/{application.id}/status", json={"status": "interview"})

    assert response.status_code == 200
    assert response.json()["status"] == "interview"
    assert response.json()["status_changed_at"] is not None

    login_as("candidate")
    mine = test_client.get("/applications/me").json()
    assert mine[0]["status"] == "interview"
    assert mine[0]["job"]["title"] == job.title
    assert mine[0]["job"]["company"]["name"] == "Acme"


def test_status_update_rejects_unknown_status(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    application = crud.create_application(db_session, job.id, "candidate", None)
    login_as("recruiter")

    response = test_client.patch(f"/applications/{application.id}/status", json={"status": "ghosted"})

    assert response.status_code == 422


def test_candidate_cannot_change_status(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    application = crud.create_application(db_session, job.id, "candidate", None)
    login_as("candidate")

    response = test_client.patch(f"/applications/{application.id}/status", json={"status": "hired"})

    assert response.status_code == 403


def test_recruiter_lists_candidates_with_profiles(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    crud.create_application(db_session, job.id, "candidate", "Cover")
    login_as("recruiter")

    response = test_client.get(f"/jobs/{job.id}/applications")

    assert response.status_code == 200
    (candidate,) = response.json()
    assert candidate["profile"]["full_name"] == "Carlos Candidate"
    assert candidate["cover_letter"] == "Cover"


def test_outsider_cannot_list_candidates(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    login_as("candidate")

    assert test_client.get(f"/jobs/{job.id}/applications").status_code == 403


def test_message_candidates_prefixes_job_title(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    crud.create_application(db_session, job.id, "candidate", None)
    login_as("recruiter")

    response = test_client.post(
        f"/jobs/{job.id}/candidates/message",
        json={"user_ids": ["candidate"], "content": "Are you available on Monday?"},
    )

    assert response.status_code == 200
    assert response.json() == {"sent": 1}
    conversation = crud.find_shared_conversation(db_session, "recruiter", "candidate")
    (message,) = crud.list_messages(db_session, conversation.id)
    assert message.content == f"[{job.title}]\n\nAre you available on Monday?"
    assert message.sender_id == "recruiter"


def test_message_candidates_requires_applicants(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    login_as("recruiter")

    response = test_client.post(
        f"/jobs/{job.id}/candidates/message",
        json={"user_ids": ["candidate"], "content": "Hello"},
    )

    assert response.status_code == 400


def test_email_candidates_uses_default_subject(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    crud.create_application(db_session, job.id, "candidate", None)
    login_as("recruiter")

    with patch(
        "main.emails.send_candidate_email",
        new_callable=AsyncMock,
        return_value=schemas.EmailResult(success=True, sent=1),
    ) as mock_send:
        response = test_client.post(
            f"/jobs/{job.id}/candidates/email",
            json={"user_ids": ["candidate"], "message": "We'd like to talk."},
        )

    assert response.status_code == 200
    assert response.json() == {"sent": 1}
    sent_request = mock_send.await_args.args[0]
    assert sent_request.to == ["candidate@example.com"]
    assert sent_request.subject == f"Update about the position: {job.title}"
    assert sent_request.company_name == "Acme"


def test_deleting_job_removes_applications(db_session: Session):
    job = setup_job(db_session)
    crud.create_application(db_session, job.id, "candidate", None)

    crud.delete_job(db_session, job.id)

    assert crud.list_user_applications(db_session, "candidate") == []
    assert db_session.query(models.Application).count() == 0


def test_recruiter_applicant_is_not_messaged_into_other_conversations(
    test_client: TestClient, db_session: Session, login_as
):
    job = setup_job(db_session)
    crud.create_application(db_session, job.id, "recruiter", None)
    existing = crud.create_conversation(db_session, ["recruiter", "candidate"])
    login_as("recruiter")

    response = test_client.post(
        f"/jobs/{job.id}/candidates/message",
        json={"user_ids": ["recruiter"], "content": "private note"},
    )

    assert response.status_code == 400
    assert crud.list_messages(db_session, existing.id) == []


def test_message_candidates_skips_the_sender(test_client: TestClient, db_session: Session, login_as):
    job = setup_job(db_session)
    crud.create_application(db_session, job.id, "recruiter", None)
    crud.create_application(db_session, job.id, "candidate", None)
    login_as("recruiter")

    response = test_client.post(
        f"/jobs/{job.id}/candidates/message",
        json={"user_ids": ["recruiter", "candidate"], "content": "Interview on Monday"},
    )

    assert response.json() == {"sent": 1}
    conversation = crud.find_shared_conversation(db_session, "recruiter", "candidate")
    assert len(crud.list_messages(db_session, conversation.id)) == 1
    assert crud.find_shared_conversation(db_session, "recruiter", "recruiter") is None
