"""
Cache Classifier Tests
======================
Ordered-rule classification, precache bounds, artifact rendering, and
idempotence over an unchanged tree.
"""
import json
import re
from pathlib import Path
from unittest.mock import patch

import pytest

from perfwatch.analyzers.cache_classifier import (
    CacheClassifier,
    cache_headers_document,
    classify_file,
    render_nginx_config,
)
from perfwatch.core.constants import CACHE_CONTROL_IMMUTABLE, CACHE_CONTROL_LONG_TERM
from perfwatch.models.cache_policy import CachePolicy
from perfwatch.utils.filename_patterns import has_content_hash


@pytest.fixture
def static_tree(tmp_path):
    root = tmp_path / "public"
    (root / "js").mkdir(parents=True)
    (root / "img").mkdir()
    (root / "api").mkdir()
    (root / "js" / "app.3f2a9c1d.js").write_text("x" * 200_000)
    (root / "js" / "legacy.js").write_text("var a = 1;\n")
    (root / "styles.css").write_text("body{}")
    (root / "img" / "logo.png").write_bytes(b"\x89PNG")
    (root / "index.html").write_text("<html></html>")
    (root / "api" / "status.txt").write_text("ok")
    (root / "manifest.json").write_text("{}")
    (root / "robots.txt").write_text("User-agent: *")
    return root


class TestClassifyFile:

    def test_hashed_js_is_immutable(self):
        a = classify_file("app.3f2a9c1d.js")
        assert a.policy == CachePolicy.IMMUTABLE
        assert a.cache_control == "public, max-age=31536000, immutable"

    def test_plain_css_is_short_term(self):
        a = classify_file("styles.css")
        assert a.policy == CachePolicy.SHORT_TERM
        assert a.cache_control == "public, max-age=86400"

    @pytest.mark.parametrize("path,policy,header", [
        ("img/logo.png", CachePolicy.LONG_TERM, "public, max-age=2592000"),
        ("fonts/inter.woff2", CachePolicy.LONG_TERM, "public, max-age=2592000"),
        ("img/logo.3f2a9c1d.png", CachePolicy.IMMUTABLE, "public, max-age=31536000, immutable"),
        ("static/js/2.chunk.js", CachePolicy.IMMUTABLE, "public, max-age=31536000, immutable"),
        ("index.html", CachePolicy.SHORT_TERM, "public, max-age=3600, must-revalidate"),
        ("api/status.txt", CachePolicy.NO_CACHE, "no-cache, no-store, must-revalidate"),
        ("data/feed.json", CachePolicy.NO_CACHE, "no-cache, no-store, must-revalidate"),
        ("robots.txt", CachePolicy.SHORT_TERM, "public, max-age=3600"),
    ])
    def test_rule_table(self, path, policy, header):
        a = classify_file(path)
        assert a.policy == policy
        assert a.cache_control == header

    def test_extension_is_case_insensitive(self):
        assert classify_file("IMG/PHOTO.JPG").policy == CachePolicy.LONG_TERM


class TestCacheClassifier:

    def test_one_assignment_per_file(self, static_tree):
        classifier = CacheClassifier([str(static_tree)])
        assignments = classifier.classify()
        assert len(assignments) == 8
        assert len({a.path for a in assignments}) == 8

    def test_idempotent(self, static_tree):
        classifier = CacheClassifier([str(static_tree)])
        first = classifier.classify()
        second = classifier.classify()
        assert first == second

    def test_missing_root_is_skipped(self, static_tree, tmp_path):
        classifier = CacheClassifier([str(static_tree), str(tmp_path / "missing")])
        assert len(classifier.classify()) == 8

    def test_precache_manifest_is_bounded_and_ordered(self, tmp_path):
        root = tmp_path / "build"
        root.mkdir()
        for i in range(3):
            (root / f"chunk{i}.{i}a2b3c4d5e.js").write_text("x")
        for i in range(3):
            (root / f"photo{i}.png").write_bytes(b"x")

        classifier = CacheClassifier([str(root)], precache_limit=4)
        classifier.classify()
        manifest = classifier.precache_manifest()
        assert len(manifest) == 4
        assert all(url.endswith(".js") for url in manifest[:3])
        assert manifest[3] == "/photo0.png"

    def test_summary_percentages(self, static_tree):
        classifier = CacheClassifier([str(static_tree)])
        classifier.classify()
        summary = classifier.summary()
        assert summary["total_files"] == 8
        assert sum(s["count"] for s in summary["strategies"]) == 8
        assert sum(s["percentage"] for s in summary["strategies"]) == pytest.approx(100, abs=0.5)

    def test_bundle(self, static_tree):
        classifier = CacheClassifier([str(static_tree)])
        classifier.classify()
        bundle = classifier.to_bundle()
        assert bundle.kind == "cache"
        assert bundle.get("unversioned_assets") == 2
        assert bundle.get("large_files") == 1
        assert bundle.get("policy.immutable") == 1

    def test_unreadable_file_is_reported(self, static_tree):
        original = Path.stat

        def flaky(self, *args, **kwargs):
            if self.name == "logo.png":
                raise PermissionError(13, "Permission denied", str(self))
            return original(self, *args, **kwargs)

        classifier = CacheClassifier([str(static_tree)])
        with patch.object(Path, "stat", autospec=True, side_effect=flaky):
            assignments = classifier.classify()

        assert len(assignments) == 7
        bundle = classifier.to_bundle()
        assert bundle.get("skipped_files") == 1
        assert bundle.failures[0]["source"] == "img/logo.png"
        assert "Permission denied" in bundle.failures[0]["reason"]


class TestArtifacts:

    def test_headers_document_groups_by_policy(self, static_tree):
        classifier = CacheClassifier([str(static_tree)])
        doc = cache_headers_document(classifier.classify(), timestamp="2026-01-01T00:00:00+00:00")
        strategies = doc["strategies"]
        assert list(strategies) == ["immutable", "long_term", "short_term", "no_cache"]
        assert strategies["immutable"]["count"] == 1
        assert strategies["immutable"]["patterns"] == ["*.js"]
        assert strategies["no_cache"]["count"] == 2
        assert strategies["immutable"]["files"][0]["rationale"]

    def test_write_artifacts(self, static_tree, tmp_path):
        classifier = CacheClassifier([str(static_tree)])
        classifier.classify()
        paths = classifier.write_artifacts(str(tmp_path / "config"), str(tmp_path / "sw"))

        with open(paths["cache_headers"], encoding="utf-8") as f:
            assert json.load(f)["strategies"]["long_term"]["count"] == 1
        with open(paths["service_worker"], encoding="utf-8") as f:
            sw = f.read()
        assert '"/js/app.3f2a9c1d.js"' in sw
        assert "PRECACHE_URLS" in sw
        with open(paths["nginx"], encoding="utf-8") as f:
            assert CACHE_CONTROL_IMMUTABLE in f.read()

    def test_nginx_maps_extension_patterns(self):
        conf = render_nginx_config()
        assert "png" in conf and "woff2" in conf
        assert f'add_header Cache-Control "{CACHE_CONTROL_LONG_TERM}";' in conf
        assert "location /api/" in conf

    def test_headers_document_lists_skipped_files(self):
        doc = cache_headers_document(
            [], timestamp="2026-01-01T00:00:00+00:00",
            skipped=[{"path": "img/locked.png", "reason": "permission denied"}],
        )
        assert doc["skipped"] == [{"path": "img/locked.png", "reason": "permission denied"}]

    @pytest.mark.parametrize("path", [
        "/img/logo.3f2a9c1d.png",
        "/fonts/inter-3f2a9c1d.woff2",
        "/js/app.3F2A9C1D.js",
        "/js/2.chunk.js",
        "/js/app.js",
        "/img/logo.png",
        "/3f2a9c1d0a/app.js",
    ])
    def test_nginx_hashed_block_agrees_with_classifier(self, path):
        conf = render_nginx_config()
        pattern = re.search(r'# Content-hashed files.*\nlocation ~\* "(.+)" \{', conf).group(1)
        matched = re.search(pattern, path, re.IGNORECASE) is not None
        assert matched == has_content_hash(path)
        assert matched == (classify_file(path.lstrip("/")).policy == CachePolicy.IMMUTABLE)
