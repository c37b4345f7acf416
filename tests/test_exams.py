import json
from datetime import datetime, timedelta

import httpx
import pytest

from app.exams import essay_evaluator
from app.exams.exam_service import parse_option_index
from conftest import register, run


@pytest.fixture
def evaluator(monkeypatch):
    """Fake essay evaluator; tests set .response or .error and read .calls"""
    class FakeEvaluator:
        response = {"score": 6, "feedback": "Solid argument", "grammar": "Few errors",
                    "vocabulary": "Varied", "coherence": "Clear"}
        status_code = 200
        error = None
        calls = []

    fake = FakeEvaluator()
    fake.calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        fake.calls.append(json.loads(request.content))
        if fake.error:
            raise fake.error
        return httpx.Response(fake.status_code, json=fake.response)

    monkeypatch.setattr(
        essay_evaluator, "build_client",
        lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
    return fake


def exam_payload(**overrides):
    payload = {
        "title": "Unit 1 Test",
        "description": "Reading and writing",
        "duration": 30,
        "questions": [
            {
                "type": "multiple_choice",
                "question": "Pick the noun",
                "options": ["run", "table", "quickly"],
                "correct_answer": 1,
                "points": 2
            },
            {
                "type": "essay",
                "question": "Describe your hometown",
                "points": 9
            }
        ]
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def exam(client, teacher):
    _, headers = teacher
    resp = client.post("/exams", json=exam_payload(), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def question_ids(exam):
    mc = next(q for q in exam["questions"] if q["type"] == "multiple_choice")
    essay = next(q for q in exam["questions"] if q["type"] == "essay")
    return mc["question_id"], essay["question_id"]


def test_create_exam_computes_totals(exam):
    assert exam["exam_id"].startswith("EXM_")
    assert exam["total_questions"] == 2
    assert exam["total_points"] == 11
    assert [q["order"] for q in exam["questions"]] == [1, 2]
    essay = exam["questions"][1]
    assert essay["options"] is None
    assert essay["correct_answer"] is None


@pytest.mark.parametrize("question", [
    {"type": "multiple_choice", "question": "Q", "options": ["only one"], "correct_answer": 0, "points": 1},
    {"type": "multiple_choice", "question": "Q", "options": ["a", "b"], "correct_answer": 5, "points": 1},
    {"type": "multiple_choice", "question": "Q", "options": ["a", "b"], "points": 1},
])
def test_invalid_multiple_choice_rejected(client, teacher, question):
    _, headers = teacher
    resp = client.post("/exams", json=exam_payload(questions=[question]), headers=headers)
    assert resp.status_code == 400


def test_exam_needs_questions(client, teacher):
    _, headers = teacher
    assert client.post("/exams", json=exam_payload(questions=[]), headers=headers).status_code == 400


def test_students_never_see_correct_answers(client, exam, student):
    _, headers = student
    detail = client.get(f"/exams/{exam['exam_id']}", headers=headers).json()
    assert all("correct_answer" not in q for q in detail["questions"])

    started = client.post(f"/exams/{exam['exam_id']}/start", headers=headers).json()
    assert all("correct_answer" not in q for q in started["questions"])
    assert 0 < started["time_left_seconds"] <= 30 * 60


def test_start_is_idempotent(client, exam, student):
    _, headers = student
    first = client.post(f"/exams/{exam['exam_id']}/start", headers=headers).json()
    second = client.post(f"/exams/{exam['exam_id']}/start", headers=headers).json()
    assert first["started_at"] == second["started_at"]


def test_submit_grades_multiple_choice_and_essay(client, exam, student, evaluator):
    student_user, headers = student
    mc_id, essay_id = question_ids(exam)
    client.post(f"/exams/{exam['exam_id']}/start", headers=headers)

    resp = client.post(f"/exams/{exam['exam_id']}/submit", json={
        "answers": {mc_id: 1, essay_id: "<p>My town is <b>quiet</b> &amp; green.</p>"}
    }, headers=headers)
    assert resp.status_code == 201, resp.text
    result = resp.json()

    # 2 for the correct choice plus band 6 of 9 on a 9 point essay
    assert result["score"] == 8
    assert result["total_points"] == 11
    assert result["percentage"] == round(100 * 8 / 11, 2)
    assert result["late"] is False
    assert result["answers"][essay_id] == "My town is quiet & green."
    assert result["ai_results"][essay_id]["status"] == "evaluated"
    assert result["ai_results"][essay_id]["feedback"] == "Solid argument"
    assert evaluator.calls == [{"essay": "My town is quiet & green."}]

    me = client.get("/users/me", headers=headers).json()
    assert me["points"] == 8
    assert me["user_id"] == student_user["user_id"]


def test_wrong_choice_scores_zero(client, exam, student, evaluator):
    _, headers = student
    mc_id, _ = question_ids(exam)
    result = client.post(f"/exams/{exam['exam_id']}/submit", json={"answers": {mc_id: "0"}}, headers=headers).json()

    assert result["score"] == 0
    assert result["breakdown"][0]["correct"] is False
    assert evaluator.calls == []


@pytest.mark.parametrize("answer,expected", [
    (1, 1),
    (1.0, 1),
    (" 2 ", 2),
    (1.9, None),
    (True, None),
    (float("inf"), None),
    (float("nan"), None),
    ("-1", None),
    ("one", None),
    ([1], None),
])
def test_parse_option_index(answer, expected):
    assert parse_option_index(answer) == expected


@pytest.mark.parametrize("answer", [1.9, True])
def test_non_index_answers_score_zero(client, exam, student, answer):
    _, headers = student
    mc_id, _ = question_ids(exam)
    result = client.post(f"/exams/{exam['exam_id']}/submit", json={"answers": {mc_id: answer}}, headers=headers).json()

    assert result["score"] == 0
    assert result["breakdown"][0]["correct"] is False
    assert result["answers"][mc_id] is None


def test_infinite_answer_scores_zero(client, exam, student):
    _, headers = student
    mc_id, _ = question_ids(exam)
    body = '{"answers": {"%s": Infinity}}' % mc_id

    resp = client.post(
        f"/exams/{exam['exam_id']}/submit",
        content=body,
        headers={**headers, "Content-Type": "application/json"}
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["score"] == 0


def test_late_submission_is_flagged(client, db, exam, student):
    student_user, headers = student
    mc_id, _ = question_ids(exam)
    client.post(f"/exams/{exam['exam_id']}/start", headers=headers)
    run(db.exam_attempts.update_one(
        {"exam_id": exam["exam_id"], "user_id": student_user["user_id"]},
        {"$set": {"started_at": datetime.utcnow() - timedelta(minutes=40)}}
    ))

    result = client.post(f"/exams/{exam['exam_id']}/submit", json={"answers": {mc_id: 1}}, headers=headers).json()
    assert result["late"] is True
    assert result["time_spent"] >= 40 * 60
    assert result["score"] == 2


def test_submit_without_start_counts_full_duration(client, exam, student):
    _, headers = student
    mc_id, _ = question_ids(exam)

    result = client.post(f"/exams/{exam['exam_id']}/submit", json={"answers": {mc_id: 1}}, headers=headers).json()
    assert result["time_spent"] == 30 * 60
    assert result["late"] is False


def test_evaluator_failure_still_records_result(client, exam, student, evaluator):
    _, headers = student
    mc_id, essay_id = question_ids(exam)
    evaluator.status_code = 503

    resp = client.post(f"/exams/{exam['exam_id']}/submit", json={
        "answers": {mc_id: 1, essay_id: "An essay"}
    }, headers=headers)
    assert resp.status_code == 201
    result = resp.json()
    assert result["score"] == 2
    assert result["ai_results"][essay_id]["status"] == "unavailable"


def test_evaluator_unreachable(client, exam, student, evaluator):
    _, headers = student
    _, essay_id = question_ids(exam)
    evaluator.error = httpx.ConnectError("refused")

    result = client.post(f"/exams/{exam['exam_id']}/submit", json={
        "answers": {essay_id: "An essay"}
    }, headers=headers).json()
    assert result["score"] == 0
    assert result["ai_results"][essay_id]["status"] == "unavailable"


def test_evaluator_band_is_clamped(client, exam, student, evaluator):
    _, headers = student
    _, essay_id = question_ids(exam)
    evaluator.response = {"score": 14}

    result = client.post(f"/exams/{exam['exam_id']}/submit", json={
        "answers": {essay_id: "An essay"}
    }, headers=headers).json()
    assert result["score"] == 9


def test_resubmission_conflicts(client, exam, student, evaluator):
    _, headers = student
    mc_id, _ = question_ids(exam)
    url = f"/exams/{exam['exam_id']}/submit"

    assert client.post(url, json={"answers": {mc_id: 1}}, headers=headers).status_code == 201
    assert client.post(url, json={"answers": {mc_id: 1}}, headers=headers).status_code == 409
    assert client.post(f"/exams/{exam['exam_id']}/start", headers=headers).status_code == 409


def test_unknown_question_ids_rejected(client, exam, student):
    _, headers = student
    resp = client.post(f"/exams/{exam['exam_id']}/submit", json={"answers": {"EXQ_BOGUS": 1}}, headers=headers)
    assert resp.status_code == 400


def test_class_submission_requires_membership(client, exam, teacher, student, evaluator):
    _, teacher_headers = teacher
    _, headers = student
    _, outsider_headers = register(client, "Bob", "bob@example.com")
    mc_id, _ = question_ids(exam)

    class_id = client.post("/forum/classes", json={"name": "Period 3"}, headers=teacher_headers).json()["class_id"]
    client.post(f"/forum/classes/{class_id}/members", json={"email": "alice@example.com"}, headers=teacher_headers)

    url = f"/exams/{exam['exam_id']}/submit"
    unassigned = client.post(url, json={"answers": {mc_id: 1}, "class_id": class_id}, headers=headers)
    assert unassigned.status_code == 400

    assigned = client.post(f"/forum/classes/{class_id}/exams", json={"exam_id": exam["exam_id"]}, headers=teacher_headers)
    assert assigned.status_code == 201
    again = client.post(f"/forum/classes/{class_id}/exams", json={"exam_id": exam["exam_id"]}, headers=teacher_headers)
    assert again.status_code == 409

    outsider = client.post(url, json={"answers": {mc_id: 1}, "class_id": class_id}, headers=outsider_headers)
    assert outsider.status_code == 403

    ok = client.post(url, json={"answers": {mc_id: 1}, "class_id": class_id}, headers=headers)
    assert ok.status_code == 201

    class_exams = client.get(f"/forum/classes/{class_id}/exams", headers=headers).json()
    assert class_exams[0]["exam"]["title"] == "Unit 1 Test"
    assert class_exams[0]["result"]["score"] == 2


def test_results_views(client, exam, teacher, student, evaluator):
    _, teacher_headers = teacher
    _, headers = student
    _, other_headers = register(client, "Bob", "bob@example.com")
    mc_id, _ = question_ids(exam)
    result = client.post(f"/exams/{exam['exam_id']}/submit", json={"answers": {mc_id: 1}}, headers=headers).json()

    roster = client.get(f"/exams/{exam['exam_id']}/results", headers=teacher_headers).json()
    assert [r["user"]["name"] for r in roster] == ["Alice Student"]

    assert client.get(f"/exams/{exam['exam_id']}/results", headers=other_headers).status_code == 403
    assert client.get(f"/exams/{exam['exam_id']}/results/me", headers=headers).json()["result_id"] == result["result_id"]
    assert client.get(f"/exams/{exam['exam_id']}/results/me", headers=other_headers).status_code == 404

    mine = client.get("/exam-results/me", headers=headers).json()
    assert mine[0]["exam_title"] == "Unit 1 Test"

    detail = client.get(f"/exam-results/{result['result_id']}", headers=teacher_headers).json()
    assert detail["exam"]["questions"][0]["correct_answer"] == 1
    assert detail["user"]["name"] == "Alice Student"
    assert client.get(f"/exam-results/{result['result_id']}", headers=other_headers).status_code == 403


def test_question_management(client, exam, teacher):
    _, headers = teacher
    mc_id, essay_id = question_ids(exam)

    added = client.post(f"/exams/{exam['exam_id']}/questions", json={
        "type": "multiple_choice", "question": "2 + 2", "options": ["3", "4"], "correct_answer": 1, "points": 1
    }, headers=headers).json()
    assert added["total_questions"] == 3
    assert added["total_points"] == 12

    updated = client.patch(f"/exam-questions/{mc_id}", json={"points": 5}, headers=headers).json()
    assert updated["points"] == 5
    assert client.get(f"/exams/{exam['exam_id']}", headers=headers).json()["total_points"] == 15

    bad = client.patch(f"/exam-questions/{mc_id}", json={"correct_answer": 9}, headers=headers)
    assert bad.status_code == 400

    assert client.delete(f"/exam-questions/{essay_id}", headers=headers).status_code == 200


def test_last_question_cannot_be_deleted(client, teacher):
    _, headers = teacher
    exam = client.post("/exams", json=exam_payload(questions=[
        {"type": "essay", "question": "Only one", "points": 5}
    ]), headers=headers).json()

    resp = client.delete(f"/exam-questions/{exam['questions'][0]['question_id']}", headers=headers)
    assert resp.status_code == 400


def test_delete_exam_removes_results(client, exam, teacher, student, evaluator):
    _, teacher_headers = teacher
    _, headers = student
    mc_id, _ = question_ids(exam)
    client.post(f"/exams/{exam['exam_id']}/submit", json={"answers": {mc_id: 1}}, headers=headers)

    assert client.delete(f"/exams/{exam['exam_id']}", headers=teacher_headers).status_code == 200
    assert client.get("/exam-results/me", headers=headers).json() == []
    assert client.get(f"/exams/{exam['exam_id']}", headers=headers).status_code == 404


def test_strip_html_and_safe_string():
    assert essay_evaluator.strip_html("<p>One</p><p>Two &lt;3</p>") == "One\nTwo <3"
    assert essay_evaluator.safe_string('a "b"\nc\r') == "a 'b' c"
    assert essay_evaluator.strip_html(None) == ""
