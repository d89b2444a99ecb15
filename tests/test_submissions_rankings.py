"""
Tests for scoring, submissions and leaderboards.
"""

from datetime import timedelta

import pytest

from examhub.core.models import Question, Ranking, Role
from examhub.core.utils import utc_now
from examhub.services import assign_ranks, grade_for, score_answers


def _question(qid: str, correct: int = 0, negative: float = 0) -> Question:
    return Question(
        id=qid,
        content=qid,
        options=["a", "b", "c"],
        correct_option=correct,
        negative_marks=negative,
        subject="S",
        topic="T",
    )


def _row(user: str, score: float, percentage: float, minutes_ago: int = 0) -> Ranking:
    return Ranking(
        user_id=user,
        exam_id="exam_1",
        exam_name="Exam",
        submission_id=f"sub_{user}",
        score=score,
        percentage=percentage,
        total_questions=3,
        completed_at=utc_now() - timedelta(minutes=minutes_ago),
    )


# =============================================================================
# Scoring
# =============================================================================


class TestScoring:
    def test_mixed_sheet(self):
        questions = {"q1": _question("q1", 0), "q2": _question("q2", 1, negative=0.5), "q3": _question("q3", 2)}
        marks = {"q1": 2, "q2": 1, "q3": 1}

        result = score_answers({"q1": 0, "q2": 0}, marks, questions)

        assert result["score"] == 1.5
        assert result["total_marks"] == 4
        assert result["total_questions"] == 3
        assert (result["correct_answers"], result["wrong_answers"], result["unanswered"]) == (1, 1, 1)
        assert result["percentage"] == 37.5
        assert result["grade"] == "F"

    def test_negative_score_floors_percentage(self):
        questions = {"q1": _question("q1", 0, negative=2)}
        result = score_answers({"q1": 1}, {"q1": 1}, questions)
        assert result["score"] == -2
        assert result["percentage"] == 0

    def test_perfect_sheet(self):
        questions = {"q1": _question("q1", 2)}
        result = score_answers({"q1": 2}, {"q1": 3}, questions)
        assert result["percentage"] == 100
        assert result["grade"] == "AA"

    def test_no_questions(self):
        result = score_answers({}, {}, {})
        assert result["percentage"] == 0
        assert result["total_questions"] == 0

    @pytest.mark.parametrize("percentage, grade", [
        (100, "AA"),
        (98, "AA"),
        (97.99, "A+"),
        (90, "A+"),
        (85, "A"),
        (70, "B"),
        (60, "C"),
        (59.99, "F"),
        (0, "F"),
    ])
    def test_grades(self, percentage, grade):
        assert grade_for(percentage) == grade


class TestAssignRanks:
    def test_competition_ranking(self):
        rows = assign_ranks([
            _row("c", 3, 60),
            _row("a", 5, 100, minutes_ago=1),
            _row("b", 5, 100, minutes_ago=5),
        ])
        assert [(r.user_id, r.rank) for r in rows] == [("b", 1), ("a", 1), ("c", 3)]

    def test_percentage_breaks_score_tie(self):
        rows = assign_ranks([_row("a", 5, 50), _row("b", 5, 60)])
        assert [(r.user_id, r.rank) for r in rows] == [("b", 1), ("a", 2)]

    def test_empty(self):
        assert assign_ranks([]) == []


# =============================================================================
# Submissions through the API
# =============================================================================


@pytest.fixture
def exam(client, admin, make_question):
    """
    Published exam: q1 direct (2 marks, answer 1) and q2 in a section
    (3 marks, answer 0, one negative mark).
    """
    _, headers = admin
    q1 = make_question()
    q2 = make_question(content="Capital of France?", options=["Paris", "Rome"], correct_option=0, negative_marks=1)

    response = client.post(
        "/api/exams",
        json={
            "name": "Finals",
            "questions": [{"question_id": q1["id"], "marks": 2}],
            "sections": [{"name": "Geo", "questions": [{"question_id": q2["id"], "marks": 3}]}],
        },
        headers=headers,
    )
    exam_id = response.json()["exam"]["id"]
    assert client.put(f"/api/exams/{exam_id}/publish", headers=headers).status_code == 200
    return {"id": exam_id, "q1": q1["id"], "q2": q2["id"]}


def _submit(client, headers, exam, answers, **extra):
    return client.post("/api/submissions", json={"exam_id": exam["id"], "answers": answers, **extra}, headers=headers)


class TestSubmissions:
    def test_submit_scores_server_side(self, client, student, exam):
        _, headers = student
        response = _submit(client, headers, exam, {exam["q1"]: 1, exam["q2"]: 1}, time_spent=120)

        assert response.status_code == 201
        submission = response.json()["submission"]
        assert submission["score"] == 1
        assert submission["total_marks"] == 5
        assert submission["correct_answers"] == 1
        assert submission["wrong_answers"] == 1
        assert submission["percentage"] == 20
        assert submission["time_spent"] == 120

    def test_second_submission_rejected(self, client, student, exam):
        _, headers = student
        assert _submit(client, headers, exam, {exam["q1"]: 1}).status_code == 201
        response = _submit(client, headers, exam, {exam["q1"]: 1, exam["q2"]: 0})
        assert response.status_code == 409

    def test_unpublished_exam(self, client, moderator, student):
        _, staff = moderator
        draft = client.post("/api/exams", json={"name": "Draft"}, headers=staff).json()["exam"]
        _, headers = student
        response = _submit(client, headers, {"id": draft["id"]}, {})
        assert response.status_code == 400
        assert response.json()["error"] == "business_rule_violation"

    def test_foreign_question(self, client, student, exam):
        _, headers = student
        response = _submit(client, headers, exam, {"q_elsewhere": 0})
        assert response.status_code == 400
        assert response.json()["details"][0]["field"] == "answers.q_elsewhere"

    def test_answer_out_of_range(self, client, student, exam):
        _, headers = student
        assert _submit(client, headers, exam, {exam["q2"]: 5}).status_code == 400

    def test_guests_cannot_submit(self, client, make_user, exam):
        _, headers = make_user("guest@example.com", Role.GUEST)
        assert _submit(client, headers, exam, {}).status_code == 403

    def test_review_and_visibility(self, client, student, make_user, moderator, exam):
        _, headers = student
        submission_id = _submit(client, headers, exam, {exam["q1"]: 1}).json()["submission"]["id"]

        body = client.get(f"/api/submissions/{submission_id}", headers=headers).json()
        review = {r["question_id"]: r for r in body["review"]}
        assert review[exam["q1"]]["is_correct"] is True
        assert review[exam["q2"]]["selected_option"] is None
        assert review[exam["q2"]]["marks_awarded"] == 0

        _, other = make_user("other@example.com")
        assert client.get(f"/api/submissions/{submission_id}", headers=other).status_code == 403
        assert client.get("/api/submissions", headers=other).json()["submissions"] == []

        _, staff = moderator
        assert client.get(f"/api/submissions/{submission_id}", headers=staff).status_code == 200

    def test_user_submissions_endpoint(self, client, student, exam):
        student_id, headers = student
        _submit(client, headers, exam, {exam["q1"]: 1})
        body = client.get(f"/api/users/{student_id}/submissions", headers=headers).json()
        assert [s["exam_id"] for s in body["submissions"]] == [exam["id"]]


# =============================================================================
# Drafts
# =============================================================================


def _save_draft(client, headers, exam, answers, **extra):
    return client.post(
        "/api/submissions/draft", json={"exam_id": exam["id"], "answers": answers, **extra}, headers=headers
    )


class TestDrafts:
    def test_save_and_resume(self, client, student, exam):
        _, headers = student
        response = _save_draft(
            client,
            headers,
            exam,
            {exam["q1"]: 1},
            question_statuses={exam["q2"]: {"status": "MARKED_FOR_REVIEW", "time_spent": 30}},
            time_spent=45,
        )

        assert response.status_code == 200
        assert response.json()["draft"]["progress"] == {"answered": 1, "total": 2, "percentage": 50}

        draft = client.get("/api/submissions/draft", params={"exam_id": exam["id"]}, headers=headers).json()["draft"]
        assert draft["answers"] == {exam["q1"]: 1}
        assert draft["question_statuses"][exam["q2"]]["status"] == "MARKED_FOR_REVIEW"
        assert draft["time_spent"] == 45

    def test_resave_replaces_answers_and_merges_statuses(self, client, student, exam):
        _, headers = student
        first = _save_draft(
            client, headers, exam, {exam["q1"]: 0},
            question_statuses={exam["q1"]: {"status": "ANSWERED", "answer": 0}},
        ).json()["draft"]
        second = _save_draft(
            client, headers, exam, {exam["q2"]: 1},
            question_statuses={exam["q2"]: {"status": "ANSWERED", "answer": 1}},
        ).json()["draft"]

        assert second["submission_id"] == first["submission_id"]
        assert second["answers"] == {exam["q2"]: 1}
        assert set(second["question_statuses"]) == {exam["q1"], exam["q2"]}

    def test_drafts_are_not_results(self, client, student, exam, admin):
        _, headers = student
        draft_id = _save_draft(client, headers, exam, {exam["q1"]: 1}).json()["draft"]["submission_id"]

        assert client.get(f"/api/submissions/{draft_id}", headers=headers).status_code == 404
        assert client.get("/api/submissions", headers=headers).json()["submissions"] == []
        assert client.get(f"/api/rankings/exam/{exam['id']}", headers=headers).json()["rankings"] == []

        _, admin_headers = admin
        stats = client.get("/api/admin/stats", headers=admin_headers).json()["stats"]
        assert stats["submissions"]["total"] == 0

    def test_submit_converts_draft(self, client, student, exam, storage, run):
        _, headers = student
        draft = _save_draft(client, headers, exam, {exam["q1"]: 0}, time_spent=90).json()["draft"]

        submission = _submit(client, headers, exam, {exam["q1"]: 1}).json()["submission"]
        assert submission["id"] == draft["submission_id"]
        assert submission["is_submitted"] is True
        assert submission["score"] == 2
        assert submission["time_spent"] == 90
        assert run(storage.metadata.count("submissions", {"exam_id": exam["id"]})) == 1

        url = "/api/submissions/draft"
        assert client.get(url, params={"exam_id": exam["id"]}, headers=headers).status_code == 404

    def test_draft_closed_after_submit(self, client, student, exam):
        _, headers = student
        _submit(client, headers, exam, {exam["q1"]: 1})

        response = _save_draft(client, headers, exam, {exam["q1"]: 0})
        assert response.status_code == 409
        response = client.delete("/api/submissions/draft", params={"exam_id": exam["id"]}, headers=headers)
        assert response.status_code == 400

    def test_discard(self, client, student, exam):
        _, headers = student
        _save_draft(client, headers, exam, {exam["q1"]: 1})
        params = {"exam_id": exam["id"]}

        assert client.delete("/api/submissions/draft", params=params, headers=headers).status_code == 200
        assert client.get("/api/submissions/draft", params=params, headers=headers).status_code == 404
        assert client.delete("/api/submissions/draft", params=params, headers=headers).status_code == 404

    def test_draft_is_validated(self, client, student, exam):
        _, headers = student
        assert _save_draft(client, headers, exam, {"q_elsewhere": 0}).status_code == 400
        assert _save_draft(client, headers, exam, {exam["q2"]: 7}).status_code == 400
        bad_status = {exam["q1"]: {"status": "SKIPPED"}}
        assert _save_draft(client, headers, exam, {}, question_statuses=bad_status).status_code == 400

    def test_drafts_are_private(self, client, student, make_user, exam):
        _, headers = student
        _save_draft(client, headers, exam, {exam["q1"]: 1})

        _, other = make_user("other@example.com")
        response = client.get("/api/submissions/draft", params={"exam_id": exam["id"]}, headers=other)
        assert response.status_code == 404


# =============================================================================
# Leaderboards through the API
# =============================================================================


class TestLeaderboards:
    def test_exam_leaderboard(self, client, student, make_user, exam):
        _, top = make_user("top@example.com")
        _, mid = make_user("mid@example.com")
        _, low = student

        _submit(client, top, exam, {exam["q1"]: 1, exam["q2"]: 0})   # 5
        _submit(client, low, exam, {exam["q1"]: 1, exam["q2"]: 1})   # 1
        _submit(client, mid, exam, {exam["q1"]: 1})                  # 2

        body = client.get(f"/api/rankings/exam/{exam['id']}", headers=low).json()
        assert body["exam"]["name"] == "Finals"
        assert [(r["user_name"], r["rank"], r["score"]) for r in body["rankings"]] == [
            ("top", 1, 5),
            ("mid", 2, 2),
            ("student", 3, 1),
        ]

    def test_ties_share_rank(self, client, student, make_user, exam):
        _, first = student
        _, second = make_user("twin@example.com")
        _submit(client, first, exam, {exam["q1"]: 1})
        _submit(client, second, exam, {exam["q1"]: 1})

        rows = client.get(f"/api/rankings/exam/{exam['id']}", headers=first).json()["rankings"]
        assert [r["rank"] for r in rows] == [1, 1]

    def test_leaderboard_refreshes_after_submission(self, client, student, make_user, exam):
        _, first = student
        _submit(client, first, exam, {exam["q1"]: 1})
        url = f"/api/rankings/exam/{exam['id']}"
        assert len(client.get(url, headers=first).json()["rankings"]) == 1

        _, second = make_user("late@example.com")
        _submit(client, second, exam, {exam["q1"]: 1, exam["q2"]: 0})
        rows = client.get(url, headers=first).json()["rankings"]
        assert [r["user_name"] for r in rows] == ["late", "student"]

    def test_student_ranking_summary(self, client, student, exam):
        _, headers = student
        _submit(client, headers, exam, {exam["q1"]: 1, exam["q2"]: 0})

        body = client.get("/api/student/ranking", headers=headers).json()
        assert body["summary"] == {
            "total_exams": 1,
            "average_percentage": 100,
            "best_rank": 1,
            "global_rank": 1,
        }
        assert body["rankings"][0]["exam_name"] == "Finals"

    def test_global_leaderboard(self, client, student, make_user, exam):
        _, low = student
        _, high = make_user("high@example.com")
        _submit(client, low, exam, {exam["q1"]: 1})
        _submit(client, high, exam, {exam["q1"]: 1, exam["q2"]: 0})

        rows = client.get("/api/rankings/global", headers=low).json()["rankings"]
        assert [(r["user_name"], r["rank"]) for r in rows] == [("high", 1), ("student", 2)]
        assert rows[0]["highest_percentage"] == 100

    def test_subject_leaderboard(self, client, student, make_user, exam):
        _, low = student
        _, top = make_user("top@example.com")
        _submit(client, top, exam, {exam["q1"]: 1, exam["q2"]: 0})   # 5 of 5
        _submit(client, low, exam, {exam["q1"]: 1, exam["q2"]: 1})   # 1 of 5

        body = client.get("/api/rankings/subject", params={"subject": "Maths"}, headers=low).json()
        assert body["subject"] == "Maths"
        assert [(r["user_name"], r["rank"], r["percentage"]) for r in body["rankings"]] == [
            ("top", 1, 100),
            ("student", 2, 20),
        ]
        assert body["personal_rank"]["rank"] == 2
        assert body["statistics"] == {"total_participants": 2, "average_percentage": 60}

    def test_subject_board_scores_only_that_subject(self, client, admin, student, make_question):
        _, headers = admin
        maths = make_question()
        physics = make_question(
            content="Unit of force?", options=["Newton", "Joule"], correct_option=0, subject="Physics"
        )
        exam_id = client.post(
            "/api/exams",
            json={"name": "Mixed", "questions": [
                {"question_id": maths["id"], "marks": 2},
                {"question_id": physics["id"], "marks": 3},
            ]},
            headers=headers,
        ).json()["exam"]["id"]
        client.put(f"/api/exams/{exam_id}/publish", headers=headers)

        _, student_headers = student
        _submit(client, student_headers, {"id": exam_id}, {maths["id"]: 0, physics["id"]: 0})

        def board(subject):
            params = {"subject": subject}
            return client.get("/api/rankings/subject", params=params, headers=student_headers).json()["rankings"]

        assert [(r["score"], r["total_marks"], r["percentage"]) for r in board("Physics")] == [(3, 3, 100)]
        assert [(r["score"], r["total_marks"], r["percentage"]) for r in board("Maths")] == [(0, 2, 0)]

    @pytest.mark.parametrize("params", [{}, {"subject": "   "}])
    def test_subject_required(self, client, student, params):
        _, headers = student
        response = client.get("/api/rankings/subject", params=params, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"

    def test_unknown_subject(self, client, student, make_question):
        make_question()
        _, headers = student
        response = client.get("/api/rankings/subject", params={"subject": "Astrology"}, headers=headers)
        assert response.status_code == 404
        assert "Astrology" in response.json()["message"]

    def test_deleted_user_leaves_leaderboards(self, client, admin, student, make_user, exam, storage, run):
        _, low = student
        high_id, high = make_user("high@example.com")
        _submit(client, low, exam, {exam["q1"]: 1})
        _submit(client, high, exam, {exam["q1"]: 1, exam["q2"]: 0})
        assert len(client.get("/api/rankings/global", headers=low).json()["rankings"]) == 2

        _, admin_headers = admin
        assert client.delete(f"/api/users/{high_id}", headers=admin_headers).status_code == 200

        rows = client.get("/api/rankings/global", headers=low).json()["rankings"]
        assert [(r["user_name"], r["rank"]) for r in rows] == [("student", 1)]
        rows = client.get(f"/api/rankings/exam/{exam['id']}", headers=low).json()["rankings"]
        assert [(r["user_name"], r["rank"]) for r in rows] == [("student", 1)]
        assert run(storage.metadata.count("submissions", {"user_id": high_id})) == 0

    def test_recalculate(self, client, admin, student, exam, storage, run):
        _, headers = student
        _submit(client, headers, exam, {exam["q1"]: 1})
        run(storage.metadata.update("rankings", _first_ranking_id(storage, run, exam["id"]), {"rank": 99}))

        _, admin_headers = admin
        assert client.post(f"/api/rankings/exam/{exam['id']}/recalculate", headers=headers).status_code == 403
        response = client.post(f"/api/rankings/exam/{exam['id']}/recalculate", headers=admin_headers)
        assert response.status_code == 200
        assert [r["rank"] for r in response.json()["rankings"]] == [1]

    def test_unknown_exam(self, client, student):
        _, headers = student
        assert client.get("/api/rankings/exam/exam_missing", headers=headers).status_code == 404


def _first_ranking_id(storage, run, exam_id: str) -> str:
    return run(storage.metadata.query("rankings", {"exam_id": exam_id}, limit=1))[0]["id"]
