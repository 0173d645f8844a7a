"""
Reference data, template cache and calibration tests.

File-based loading uses temporary directories; URL loading mocks requests.
"""

import json
import os
import shutil
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest
from unittest.mock import patch, MagicMock

import numpy as np


class _TempDirTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def write_json(self, name, data):
        path = os.path.join(self.tmp, name)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        return path


class TestCatalogParsing(unittest.TestCase):

    def test_parse_catalog_object_and_list(self):
        from tests.fixtures.synthetic_landmarks import sample_catalog
        from utils.reference_store import parse_catalog
        self.assertEqual(len(parse_catalog({"memes": sample_catalog()})), 8)
        self.assertEqual([m.id for m in parse_catalog(sample_catalog())][:2], ["angry", "cry"])

    def test_malformed_and_duplicate_entries_skipped(self):
        from utils.reference_store import parse_catalog
        catalog = parse_catalog([
            {"id": "smirk", "name": "Smirk", "path": "/a.png"},
            {"name": "no id"},
            "junk",
            {"id": "smirk", "name": "Again", "path": "/b.png"},
        ])
        self.assertEqual(len(catalog), 1)
        self.assertEqual(catalog[0].path, "/a.png")

    def test_parse_profiles_skips_bad_entries(self):
        from utils.reference_store import parse_profiles
        profiles = parse_profiles({
            "smirk": {"mouthRatio": 0.2, "eyeRatio": 0.25, "eyebrowDistance": 18, "expressions": {"neutral": 0.9}},
            "sad": {"mouthRatio": "x"},
            "cry": "junk",
        })
        self.assertEqual(list(profiles), ["smirk"])
        self.assertEqual(profiles["smirk"].eyebrow_distance, 18.0)
        self.assertEqual(profiles["smirk"].expressions, {"neutral": 0.9})

    def test_store_lookups(self):
        from tests.fixtures.synthetic_landmarks import sample_catalog
        from utils.reference_store import ReferenceStore, parse_catalog, parse_profiles
        store = ReferenceStore(
            parse_catalog(sample_catalog()),
            parse_profiles({"sad": {"mouthRatio": 0.1, "eyeRatio": 0.2, "eyebrowDistance": 15}}),
        )
        self.assertEqual(store.get_template("smirk").id, "smirk")
        self.assertIsNone(store.get_template("nope"))
        self.assertEqual(store.get_profile("sad").mouth_ratio, 0.1)
        self.assertIsNone(store.get_profile("smirk"))
        self.assertTrue(store.has_profiles())
        self.assertFalse(store.has_templates())
        self.assertEqual(store.attach_templates({"smirk": [[0.0, 1.0], [1.0, 0.0]], "nope": [[0, 0]]}), 1)
        self.assertTrue(store.has_templates())


class TestLoaders(_TempDirTestCase):

    def test_load_catalog_from_file(self):
        from tests.fixtures.synthetic_landmarks import sample_catalog
        from utils.reference_store import load_catalog
        path = self.write_json("memes.json", {"memes": sample_catalog()})
        self.assertEqual(len(load_catalog(url="", path=path)), 8)

    def test_missing_file_gives_empty(self):
        from utils.reference_store import load_catalog, load_profiles
        self.assertEqual(load_catalog(url="", path=os.path.join(self.tmp, "none.json")), [])
        self.assertEqual(load_profiles(url="", path=os.path.join(self.tmp, "none.json")), {})

    def test_invalid_json_gives_empty(self):
        from utils.reference_store import load_profiles
        path = os.path.join(self.tmp, "bad.json")
        with open(path, "w") as f:
            f.write("{not json")
        self.assertEqual(load_profiles(url="", path=path), {})

    @patch("utils.reference_store.requests.get")
    def test_url_takes_precedence(self, mock_get):
        from utils.reference_store import load_catalog
        resp = MagicMock()
        resp.ok = True
        resp.json.return_value = [{"id": "remote", "name": "Remote", "path": "/r.png"}]
        mock_get.return_value = resp
        path = self.write_json("memes.json", [{"id": "local", "name": "Local", "path": "/l.png"}])
        catalog = load_catalog(url="http://example.invalid/memes.json", path=path)
        self.assertEqual([m.id for m in catalog], ["remote"])

    @patch("utils.reference_store.requests.get")
    def test_url_failure_falls_back_to_file(self, mock_get):
        import requests
        from utils.reference_store import load_catalog
        mock_get.side_effect = requests.ConnectionError("offline")
        path = self.write_json("memes.json", [{"id": "local", "name": "Local", "path": "/l.png"}])
        catalog = load_catalog(url="http://example.invalid/memes.json", path=path)
        self.assertEqual([m.id for m in catalog], ["local"])

    def test_initialize_reference_store(self):
        from tests.fixtures.synthetic_landmarks import sample_catalog
        from utils.reference_store import initialize_reference_store, parse_catalog
        store = initialize_reference_store(
            catalog=parse_catalog(sample_catalog()),
            profiles={},
            template_cache_path=os.path.join(self.tmp, "missing_cache.json"),
        )
        self.assertEqual(len(store.catalog), 8)
        self.assertFalse(store.has_profiles())
        self.assertFalse(store.has_templates())


class TestTemplateCache(_TempDirTestCase):

    def _catalog(self):
        from tests.fixtures.synthetic_landmarks import sample_catalog
        from utils.reference_store import parse_catalog
        return parse_catalog(sample_catalog()[:2])

    def _templates(self):
        from tests.fixtures.synthetic_landmarks import make_face
        from utils.landmark_normalizer import key_landmark_vector
        return {
            "angry": key_landmark_vector(make_face(mouth_ratio=0.4)),
            "cry": key_landmark_vector(make_face(mouth_ratio=0.7)),
        }

    def test_save_then_load(self):
        from utils.template_builder import save_template_cache, load_template_cache
        path = os.path.join(self.tmp, "cache", "templates.json")
        self.assertTrue(save_template_cache(path, self._templates()))
        loaded = load_template_cache(path, self._catalog())
        self.assertEqual(set(loaded), {"angry", "cry"})
        np.testing.assert_allclose(loaded["cry"], self._templates()["cry"])

    def test_version_mismatch_rejected(self):
        from utils.template_builder import save_template_cache, load_template_cache
        path = os.path.join(self.tmp, "templates.json")
        save_template_cache(path, self._templates())
        with open(path) as f:
            data = json.load(f)
        data["version"] = 2
        self.write_json("templates.json", data)
        self.assertIsNone(load_template_cache(path, self._catalog()))

    def test_count_mismatch_rejected(self):
        from utils.template_builder import save_template_cache, load_template_cache
        path = os.path.join(self.tmp, "templates.json")
        save_template_cache(path, {"angry": self._templates()["angry"]})
        self.assertIsNone(load_template_cache(path, self._catalog()))

    def test_initialize_attaches_cached_templates(self):
        from utils.reference_store import initialize_reference_store
        from utils.template_builder import save_template_cache
        path = os.path.join(self.tmp, "templates.json")
        save_template_cache(path, self._templates())
        store = initialize_reference_store(catalog=self._catalog(), profiles={}, template_cache_path=path)
        self.assertEqual(set(store.templates()), {"angry", "cry"})

    def test_preprocess_memes_skips_failures(self):
        from tests.fixtures.synthetic_landmarks import make_face
        from utils.detector_interface import DetectionSample
        from utils.template_builder import preprocess_memes

        detector = MagicMock()
        detector.detect.side_effect = [
            DetectionSample(landmarks=make_face(mouth_ratio=0.4)),
            DetectionSample(landmarks=None),
        ]
        loader = MagicMock(return_value=np.zeros((8, 8, 3), dtype=np.uint8))
        templates = preprocess_memes(self._catalog(), detector, image_loader=loader)
        self.assertEqual(list(templates), ["angry"])
        self.assertEqual(loader.call_count, 2)

    def test_load_meme_image_reads_local_files_only(self):
        import cv2
        from utils.reference_store import MemeTemplate
        from utils.template_builder import load_meme_image
        path = os.path.join(self.tmp, "angry.png")
        self.assertTrue(cv2.imwrite(path, np.zeros((8, 8, 3), dtype=np.uint8)))
        self.assertEqual(load_meme_image(MemeTemplate("angry", "Angry", path)).shape, (8, 8, 3))
        self.assertIsNone(load_meme_image(MemeTemplate("angry", "Angry", "/nailong/does-not-exist.png")))
        self.assertIsNone(load_meme_image(MemeTemplate("angry", "Angry", "")))

    def test_templates_from_samples(self):
        from tests.fixtures.synthetic_landmarks import make_face, face_api_payload, expressions_for
        from utils.template_builder import templates_from_samples
        templates = templates_from_samples(self._catalog(), {
            "angry": face_api_payload(make_face(), expressions_for("angry")),
            "unknown": face_api_payload(make_face(), expressions_for("angry")),
            "cry": {"expressions": {"sad": 1.0}},
        })
        self.assertEqual(list(templates), ["angry"])


class TestCalibration(_TempDirTestCase):

    def test_build_profile_measures_ratios(self):
        from tests.fixtures.synthetic_landmarks import make_face, expressions_for
        from utils.calibration import build_profile
        from utils.detector_interface import DetectionSample
        sample = DetectionSample(make_face(mouth_ratio=0.6, eye_ratio=0.3, brow_distance=24.0), expressions_for("happy"))
        profile = build_profile("smiling", sample)
        self.assertAlmostEqual(profile.mouth_ratio, 0.6)
        self.assertAlmostEqual(profile.eye_ratio, 0.3)
        self.assertAlmostEqual(profile.eyebrow_distance, 24.0)
        self.assertIn("T", profile.timestamp)

    def test_capture_validation(self):
        from tests.fixtures.synthetic_landmarks import make_face
        from utils.calibration import CalibrationRecorder
        from utils.detector_interface import DetectionSample
        recorder = CalibrationRecorder(["smirk"])
        with self.assertRaises(ValueError):
            recorder.capture("not-a-meme", DetectionSample(make_face()))
        with self.assertRaises(ValueError):
            recorder.capture("smirk", DetectionSample(None))
        with self.assertRaises(ValueError):
            recorder.capture("", DetectionSample(make_face()))
        self.assertEqual(recorder.missing(), ["smirk"])

    def test_saved_profiles_load_back(self):
        from tests.fixtures.synthetic_landmarks import make_face, expressions_for
        from utils.calibration import CalibrationRecorder
        from utils.detector_interface import DetectionSample
        from utils.reference_store import load_profiles
        recorder = CalibrationRecorder(["smirk", "cry"])
        recorder.capture("cry", DetectionSample(make_face(mouth_ratio=0.7), expressions_for("sad")))
        path = os.path.join(self.tmp, "facialdata.json")
        self.assertEqual(recorder.save(path), 1)

        profiles = load_profiles(url="", path=path)
        self.assertEqual(list(profiles), ["cry"])
        self.assertAlmostEqual(profiles["cry"].mouth_ratio, 0.7)
        self.assertEqual(profiles["cry"].landmarks.shape, (68, 2))


if __name__ == "__main__":
    unittest.main()
