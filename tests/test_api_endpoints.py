"""
API endpoint tests.

Uses Flask test client. Does not require a running server. Reference data is
injected in memory so tests never read data/ or the network.
"""

import json
import os
import shutil
import sys
import tempfile
import time

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from unittest.mock import patch


def get_app_client():
    """Create Flask app and test client. Lazy to avoid import-time side effects."""
    from app import app
    app.config["TESTING"] = True
    return app.test_client()


class _ApiTestCase(unittest.TestCase):

    def setUp(self):
        import routes
        from tests.fixtures.synthetic_landmarks import sample_catalog
        from utils.reference_store import ReferenceStore, parse_catalog
        self.routes = routes
        routes._reference_store = ReferenceStore(parse_catalog(sample_catalog()), {})
        routes._calibration = None
        routes.game_session = None
        self.client = get_app_client()

    def tearDown(self):
        if self.routes.game_session:
            self.routes.game_session.stop()
        self.routes.game_session = None
        self.routes._reference_store = None
        self.routes._calibration = None

    def start_game(self, **body):
        body.setdefault("sourceType", "browser")
        return self.client.post("/game/start", json=body)


class TestCatalogAndConfig(_ApiTestCase):

    def test_memes(self):
        r = self.client.get("/memes")
        self.assertEqual(r.status_code, 200)
        memes = r.get_json()["memes"]
        self.assertEqual(len(memes), 8)
        self.assertEqual(set(memes[0]), {"id", "name", "path", "expression"})

    def test_config_all_returns_json(self):
        r = self.client.get("/config/all")
        self.assertEqual(r.status_code, 200)
        self.assertIn("application/json", r.content_type)
        data = r.get_json()
        self.assertEqual(data["game"]["holdDurationMs"], 3000.0)
        self.assertEqual(data["referenceData"]["memes"], 8)


class TestGameEndpoints(_ApiTestCase):

    def test_state_404_before_start(self):
        self.assertEqual(self.client.get("/game/state").status_code, 404)
        self.assertEqual(self.client.post("/game/restart").status_code, 404)
        self.assertEqual(self.client.post("/game/challenge/start").status_code, 404)

    def test_start_requires_json(self):
        r = self.client.post("/game/start", data="x", content_type="text/plain")
        self.assertEqual(r.status_code, 400)

    def test_invalid_source_type(self):
        r = self.start_game(sourceType="carrier-pigeon")
        self.assertEqual(r.status_code, 400)
        self.assertIn("error", r.get_json())

    def test_missing_replay_file(self):
        r = self.start_game(sourceType="replay", sourcePath="/nonexistent/replay.json")
        self.assertEqual(r.status_code, 400)

    def test_non_string_source_path_rejected(self):
        for source_type, path in (("replay", ["a"]), ("replay", 0), ("file", 5), ("file", {"p": 1})):
            r = self.start_game(sourceType=source_type, sourcePath=path)
            self.assertEqual(r.status_code, 400, (source_type, path))
            self.assertIn("error", r.get_json())
        self.assertIsNone(self.routes.game_session)

    def test_mixed_landmark_points_do_not_break_detection(self):
        from tests.fixtures.synthetic_landmarks import make_face, expressions_for
        self.start_game()
        points = [{"x": float(x), "y": float(y)} for x, y in make_face()]
        points[10] = [1.0, 2.0]
        r = self.client.post("/game/detection", json={
            "landmarks": {"positions": points}, "expressions": expressions_for("happy"),
        })
        self.assertEqual(r.status_code, 200)
        self.assertFalse(r.get_json()["faceDetected"])

    def test_browser_game_flow(self):
        from tests.fixtures.synthetic_landmarks import make_face, face_api_payload, expressions_for
        r = self.start_game(easyMode=True)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["detector"], "browser")
        self.assertTrue(r.get_json()["easyMode"])

        r = self.client.post("/game/detection", json=face_api_payload(make_face(), expressions_for("neutral")))
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.get_json()["faceDetected"])

        deadline = time.time() + 2.0
        state = None
        while time.time() < deadline:
            state = self.client.get("/game/state").get_json()
            last = state.get("lastCycle") or {}
            if last.get("match"):
                break
            time.sleep(0.02)
        self.assertEqual(state["lastCycle"]["match"]["expressionId"], "smirk")
        self.assertTrue(state["running"])

        r = self.client.post("/game/challenge/start")
        self.assertEqual(r.status_code, 200)
        self.assertIsNotNone(r.get_json()["state"]["game"]["sessionStartMs"])

        r = self.client.put("/game/easy-mode", json={"easyMode": False})
        self.assertEqual(r.status_code, 400)

        r = self.client.post("/game/restart")
        self.assertEqual(r.status_code, 200)
        self.assertIsNone(r.get_json()["state"]["game"]["sessionStartMs"])

        r = self.client.post("/game/stop")
        self.assertEqual(r.status_code, 200)
        self.assertFalse(self.client.get("/game/state").get_json()["running"])

    def test_easy_mode_toggle(self):
        self.start_game()
        r = self.client.put("/game/easy-mode", json={"easyMode": True})
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.get_json()["easyMode"])
        r = self.client.put("/game/easy-mode", json={"easyMode": "maybe"})
        self.assertEqual(r.status_code, 400)

    def test_detection_404_without_game(self):
        r = self.client.post("/game/detection", json={"expressions": {}})
        self.assertEqual(r.status_code, 404)

    def test_frame_rejects_garbage(self):
        self.assertEqual(self.client.post("/game/frame", data=b"").status_code, 400)
        self.assertEqual(self.client.post("/game/frame", data=b"not an image").status_code, 400)

    def test_frame_accepts_png(self):
        import cv2
        import numpy as np
        ok, buf = cv2.imencode(".png", np.zeros((8, 8, 3), dtype=np.uint8))
        self.assertTrue(ok)
        r = self.client.post("/game/frame", data=buf.tobytes(), content_type="image/png")
        self.assertEqual(r.status_code, 204)

    def test_captures_empty_without_game(self):
        r = self.client.get("/game/captures")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["captures"], [])


class TestReplayGame(_ApiTestCase):

    def setUp(self):
        super().setUp()
        self.tmp = tempfile.mkdtemp()

    def tearDown(self):
        super().tearDown()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_replay_source(self):
        from tests.fixtures.synthetic_landmarks import make_face, face_api_payload, expressions_for
        path = os.path.join(self.tmp, "replay.json")
        with open(path, "w") as f:
            json.dump([face_api_payload(make_face(), expressions_for("neutral"))] * 3, f)
        r = self.start_game(sourceType="replay", sourcePath=path)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["detector"], "replay")
        r = self.client.post("/game/detection", json={"expressions": {}})
        self.assertEqual(r.status_code, 409)


class TestCalibrationEndpoints(_ApiTestCase):

    def setUp(self):
        super().setUp()
        self.tmp = tempfile.mkdtemp()

    def tearDown(self):
        super().tearDown()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def test_capture_and_save(self):
        from tests.fixtures.synthetic_landmarks import make_face, face_api_payload, expressions_for
        sample = face_api_payload(make_face(mouth_ratio=0.7), expressions_for("surprised"))
        r = self.client.post("/calibration/capture", json={"expressionId": "off-the-deep-end", "sample": sample})
        self.assertEqual(r.status_code, 200)
        self.assertAlmostEqual(r.get_json()["profile"]["mouthRatio"], 0.7)

        r = self.client.get("/calibration/profiles")
        self.assertIn("off-the-deep-end", r.get_json()["profiles"])
        self.assertEqual(len(r.get_json()["missing"]), 7)

        path = os.path.join(self.tmp, "facialdata.json")
        with patch("config.CALIBRATION_OUTPUT_PATH", path):
            r = self.client.post("/calibration/save")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["saved"], 1)
        with open(path) as f:
            saved = json.load(f)
        self.assertEqual(saved["off-the-deep-end"]["expression"], "off-the-deep-end")

    def test_capture_unknown_expression(self):
        from tests.fixtures.synthetic_landmarks import make_face, face_api_payload, expressions_for
        sample = face_api_payload(make_face(), expressions_for("happy"))
        r = self.client.post("/calibration/capture", json={"expressionId": "nope", "sample": sample})
        self.assertEqual(r.status_code, 400)

    def test_capture_without_face(self):
        r = self.client.post("/calibration/capture", json={"expressionId": "smirk", "sample": {"expressions": {}}})
        self.assertEqual(r.status_code, 400)

    def test_template_upload(self):
        from tests.fixtures.synthetic_landmarks import make_face, face_api_payload, expressions_for
        path = os.path.join(self.tmp, "templates.json")
        with patch("config.TEMPLATE_CACHE_PATH", path):
            r = self.client.post("/templates", json={"samples": {
                "smirk": face_api_payload(make_face(), expressions_for("neutral")),
            }})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.get_json()["attached"], 1)
        self.assertTrue(os.path.isfile(path))
        self.assertEqual(self.client.post("/templates", json={}).status_code, 400)


if __name__ == "__main__":
    unittest.main()
