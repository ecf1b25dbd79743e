"""Tests for blueprints/quizzes.py — CRUD, student view, submission, attempts, grading."""

import pytest

from factories import essay, mcq, short_answer


class TestQuizCrud:
    def test_trainer_creates_quiz(self, trainer_client, course):
        resp = trainer_client.post("/api/quizzes", json={
            "courseId": course[0],
            "title": "Week 1 check",
            "questions": [mcq(points=2), short_answer()],
            "isPublished": True,
        })
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["title"] == {"en": "Week 1 check"}
        assert data["totalPoints"] == 3
        assert data["attemptsAllowed"] == 1

    def test_student_cannot_create_quiz(self, auth_client, course):
        resp = auth_client.post("/api/quizzes", json={"courseId": course[0], "title": "x", "questions": []})
        assert resp.status_code == 403
        assert resp.get_json()["success"] is False

    def test_anonymous_gets_401_envelope(self, client, course):
        resp = client.get(f"/api/quizzes?courseId={course[0]}")
        assert resp.status_code == 401
        assert resp.get_json() == {"success": False, "message": "Not authorized to access this route"}

    @pytest.mark.parametrize("payload, message", [
        ({"title": ""}, "title"),
        ({"questions": [{"type": "matching", "question": "q"}]}, "invalid type"),
        ({"questions": [dict(mcq(), difficulty="extreme")]}, "difficulty"),
        ({"showResults": "sometimes"}, "showResults"),
        ({"attemptsAllowed": 0}, "attemptsAllowed"),
    ])
    def test_create_validation(self, trainer_client, course, payload, message):
        body = {"courseId": course[0], "title": "Quiz", "questions": [mcq()]}
        body.update(payload)
        resp = trainer_client.post("/api/quizzes", json=body)
        assert resp.status_code == 400
        assert message in resp.get_json()["message"]

    def test_create_requires_existing_course(self, trainer_client):
        resp = trainer_client.post("/api/quizzes", json={"courseId": 999, "title": "Quiz", "questions": []})
        assert resp.status_code == 400

    def test_update_and_delete(self, trainer_client, make_quiz):
        quiz_id = make_quiz([mcq()])
        resp = trainer_client.put(f"/api/quizzes/{quiz_id}", json={"passingScore": 50, "questions": [mcq(), mcq()]})
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["passingScore"] == 50
        assert data["totalPoints"] == 2

        resp = trainer_client.delete(f"/api/quizzes/{quiz_id}")
        assert resp.status_code == 200
        assert trainer_client.get(f"/api/quizzes/{quiz_id}").status_code == 404

    def test_update_missing_quiz(self, trainer_client):
        assert trainer_client.put("/api/quizzes/404", json={"title": "x"}).status_code == 404


class TestQuizView:
    def test_list_requires_course(self, auth_client):
        assert auth_client.get("/api/quizzes").status_code == 400

    def test_list_only_published(self, auth_client, make_quiz, course):
        make_quiz([mcq()])
        make_quiz([mcq()], isPublished=False)
        resp = auth_client.get(f"/api/quizzes?courseId={course[0]}")
        assert resp.get_json()["count"] == 1

    def test_student_view_is_sanitized(self, auth_client, make_quiz):
        quiz_id = make_quiz([mcq(), short_answer()])
        data = auth_client.get(f"/api/quizzes/{quiz_id}").get_json()["data"]
        for q in data["questions"]:
            assert "correctAnswer" not in q
            assert "explanation" not in q
            assert all("isCorrect" not in o for o in q["options"])

    def test_trainer_view_keeps_answers(self, trainer_client, make_quiz):
        quiz_id = make_quiz([mcq()])
        data = trainer_client.get(f"/api/quizzes/{quiz_id}").get_json()["data"]
        assert data["questions"][0]["options"][0]["isCorrect"] is True

    def test_unpublished_quiz_hidden_from_students(self, auth_client, make_quiz):
        quiz_id = make_quiz([mcq()], isPublished=False)
        assert auth_client.get(f"/api/quizzes/{quiz_id}").status_code == 404

    def test_student_view_resolves_bank_questions(self, app, auth_client, make_quiz):
        with app.app_context():
            from db_stores import QuestionBankDB
            bq = QuestionBankDB.create("Is compost organic?", "true_false",
                                       [{"text": "True", "isCorrect": True},
                                        {"text": "False", "isCorrect": False}])
        quiz_id = make_quiz([{"bankRef": bq.id, "type": "true-false", "question": "placeholder"}])
        q = auth_client.get(f"/api/quizzes/{quiz_id}").get_json()["data"]["questions"][0]
        assert q["question"] == {"en": "Is compost organic?"}
        assert q["options"] == [{"text": "True"}, {"text": "False"}]
        assert "correctAnswer" not in q

    def test_student_list_resolves_bank_questions(self, app, auth_client, make_quiz, course):
        with app.app_context():
            from db_stores import QuestionBankDB
            bq = QuestionBankDB.create("Is compost organic?", "true_false",
                                       [{"text": "True", "isCorrect": True},
                                        {"text": "False", "isCorrect": False}])
        make_quiz([{"bankRef": bq.id, "type": "true-false", "question": "placeholder"}])
        quizzes = auth_client.get(f"/api/quizzes?courseId={course[0]}").get_json()["data"]
        q = quizzes[0]["questions"][0]
        assert q["question"] == {"en": "Is compost organic?"}
        assert q["options"] == [{"text": "True"}, {"text": "False"}]
        assert "correctAnswer" not in q


class TestSubmit:
    def test_submit_scores_and_records(self, app, auth_client, make_quiz, course):
        auth_client.post(f"/api/courses/{course[0]}/enroll")
        quiz_id = make_quiz([mcq(points=1), mcq(points=2)])
        resp = auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["Bamboo", "Plastic"]})
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["score"] == pytest.approx(33.33, abs=0.01)
        assert data["passed"] is False
        assert data["correctAnswers"] == 1
        assert data["totalQuestions"] == 2
        assert data["earnedPoints"] == 1
        assert data["totalPoints"] == 3
        assert data["attempt"] == 1
        assert data["results"][1]["explanation"] == {"en": "Bamboo regrows quickly."}

        enrollments = auth_client.get("/api/enrollments/me").get_json()["data"]
        assert enrollments[0]["quizScores"] == [{
            "quizId": quiz_id, "score": 1, "maxScore": 3, "attempt": 1,
            "completedAt": enrollments[0]["quizScores"][0]["completedAt"],
        }]

    def test_submit_logs_activity_and_notifies(self, app, auth_client, make_quiz):
        quiz_id = make_quiz([mcq()])
        auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["Bamboo"]})
        notifs = auth_client.get("/api/notifications").get_json()["data"]
        assert notifs[0]["type"] == "quiz_result"
        assert notifs[0]["data"]["passed"] is True
        with app.app_context():
            from db_stores import LeaderboardStoreDB
            entry = LeaderboardStoreDB.get(1)
            assert entry.streak_current == 1

    def test_results_hidden_when_show_results_never(self, auth_client, make_quiz):
        quiz_id = make_quiz([mcq()], showResults="never")
        data = auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["Bamboo"]}).get_json()["data"]
        assert data["results"] is None
        assert data["score"] == 100

    def test_attempt_limit(self, auth_client, make_quiz):
        quiz_id = make_quiz([mcq()], attemptsAllowed=2)
        for expected in (1, 2):
            resp = auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["Plastic"]})
            assert resp.get_json()["data"]["attempt"] == expected
        resp = auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["Bamboo"]})
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Maximum attempts reached for this quiz"

    def test_unlimited_attempts(self, auth_client, make_quiz):
        quiz_id = make_quiz([mcq()], attemptsAllowed=-1)
        for _ in range(4):
            assert auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": []}).status_code == 200

    def test_empty_quiz_rejected(self, auth_client, make_quiz):
        quiz_id = make_quiz([])
        assert auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": []}).status_code == 400

    def test_answers_must_be_list(self, auth_client, make_quiz):
        quiz_id = make_quiz([mcq()])
        assert auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": "Bamboo"}).status_code == 400

    def test_submit_missing_quiz(self, auth_client):
        assert auth_client.post("/api/quizzes/999/submit", json={"answers": []}).status_code == 404


class TestAttemptsAndGrading:
    def test_attempts_listed_in_order(self, auth_client, make_quiz):
        quiz_id = make_quiz([mcq()])
        auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["Plastic"]})
        auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["Bamboo"]})
        data = auth_client.get(f"/api/quizzes/{quiz_id}/attempts").get_json()["data"]
        assert [a["attempt"] for a in data] == [1, 2]
        assert [a["score"] for a in data] == [0, 100]

    def test_student_cannot_view_other_attempts(self, auth_client, make_quiz):
        quiz_id = make_quiz([mcq()])
        assert auth_client.get(f"/api/quizzes/{quiz_id}/attempts?userId=2").status_code == 403

    def test_trainer_grades_essay(self, auth_client, trainer_client, make_quiz):
        quiz_id = make_quiz([mcq(), essay(points=4)], passingScore=60)
        sub = auth_client.post(f"/api/quizzes/{quiz_id}/submit",
                               json={"answers": ["Bamboo", "Reuse before recycling."]}).get_json()["data"]
        assert sub["graded"] is False

        attempts = trainer_client.get(f"/api/quizzes/{quiz_id}/attempts?userId=1").get_json()["data"]
        assert len(attempts) == 1

        resp = trainer_client.post(f"/api/quizzes/{quiz_id}/grade", json={
            "submissionId": sub["submissionId"],
            "grades": [{"questionIndex": 1, "pointsAwarded": 3}],
        })
        assert resp.status_code == 200
        graded = resp.get_json()["data"]
        assert graded["graded"] is True
        assert graded["earnedPoints"] == 4
        assert graded["score"] == 80
        assert graded["isPassed"] is True

    def test_grade_out_of_range(self, auth_client, trainer_client, make_quiz):
        quiz_id = make_quiz([essay(points=2)])
        sub = auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["text"]}).get_json()["data"]
        resp = trainer_client.post(f"/api/quizzes/{quiz_id}/grade", json={
            "submissionId": sub["submissionId"],
            "grades": [{"questionIndex": 0, "pointsAwarded": 5}],
        })
        assert resp.status_code == 400

    def test_grading_older_attempt_keeps_latest_mirror(self, auth_client, trainer_client, make_quiz, course):
        auth_client.post(f"/api/courses/{course[0]}/enroll")
        quiz_id = make_quiz([mcq(), essay(points=4)])
        first = auth_client.post(f"/api/quizzes/{quiz_id}/submit",
                                 json={"answers": ["Bamboo", "draft"]}).get_json()["data"]
        auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["Plastic", "final"]})

        resp = trainer_client.post(f"/api/quizzes/{quiz_id}/grade", json={
            "submissionId": first["submissionId"],
            "grades": [{"questionIndex": 1, "pointsAwarded": 4}],
        })
        assert resp.status_code == 200

        scores = auth_client.get("/api/enrollments/me").get_json()["data"][0]["quizScores"]
        assert len(scores) == 1
        assert scores[0]["attempt"] == 2
        assert scores[0]["score"] == 0

    def test_grade_not_a_number(self, auth_client, trainer_client, make_quiz):
        quiz_id = make_quiz([essay(points=2)])
        sub = auth_client.post(f"/api/quizzes/{quiz_id}/submit", json={"answers": ["text"]}).get_json()["data"]
        resp = trainer_client.post(f"/api/quizzes/{quiz_id}/grade", json={
            "submissionId": sub["submissionId"],
            "grades": [{"questionIndex": 0, "pointsAwarded": "nan"}],
        })
        assert resp.status_code == 400
        attempts = trainer_client.get(f"/api/quizzes/{quiz_id}/attempts?userId=1").get_json()["data"]
        assert attempts[0]["graded"] is False

    def test_grade_unknown_submission(self, trainer_client, make_quiz):
        quiz_id = make_quiz([essay()])
        resp = trainer_client.post(f"/api/quizzes/{quiz_id}/grade",
                                   json={"submissionId": 42, "grades": [{"questionIndex": 0, "pointsAwarded": 1}]})
        assert resp.status_code == 404

    def test_student_cannot_grade(self, auth_client, make_quiz):
        quiz_id = make_quiz([essay()])
        assert auth_client.post(f"/api/quizzes/{quiz_id}/grade", json={}).status_code == 403
