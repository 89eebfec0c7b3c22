from __future__ import annotations

import datetime as dt
import json
import tempfile
import unittest
from pathlib import Path

from criage_archive.errors import MetadataCorrupt
from criage_archive.metadata import (
    BuildManifest,
    BuildTarget,
    CompressionConfig,
    PackageHooks,
    PackageManifest,
    PackageMetadata,
    load_manifest,
    parse_timestamp,
)


def _sample_metadata() -> PackageMetadata:
    return PackageMetadata(
        package=PackageManifest(
            name="hello",
            version="1.2.3",
            description="Says hello",
            author="Dev Team",
            license="MIT",
            dependencies={"base": "^1.0"},
            dev_dependencies={"testkit": "2.0"},
            files=["bin/*"],
            hooks=PackageHooks(post_install=["./setup.sh"]),
        ),
        build=BuildManifest(
            name="hello",
            version="1.2.3",
            output_dir="dist",
            include_files=["bin/*"],
            compression=CompressionConfig(format="tar.zst", level=5),
            targets=[BuildTarget(os="linux", arch="amd64")],
        ),
        compression_type="tar.zst",
        created_at=dt.datetime(2024, 5, 17, 9, 30, 0, 123456, tzinfo=dt.timezone.utc),
        created_by="criage",
        version="1.0.0",
    )


class PackageMetadataTests(unittest.TestCase):
    def test_json_uses_wire_names(self):
        doc = json.loads(_sample_metadata().to_json())
        self.assertEqual(
            ["package", "build", "compressionType", "createdAt", "createdBy", "version"], list(doc)
        )
        self.assertEqual("2024-05-17T09:30:00.123456Z", doc["createdAt"])
        self.assertEqual({"testkit": "2.0"}, doc["package"]["devDependencies"])
        self.assertEqual({"postInstall": ["./setup.sh"]}, doc["package"]["hooks"])
        self.assertEqual("dist", doc["build"]["outputDir"])
        self.assertEqual([{"os": "linux", "arch": "amd64"}], doc["build"]["targets"])
        # empty optional fields are dropped, required ones kept
        self.assertNotIn("homepage", doc["package"])
        self.assertNotIn("buildScript", doc["build"])
        self.assertIn("description", doc["package"])

    def test_parse_back(self):
        original = _sample_metadata()
        parsed = PackageMetadata.from_json(original.to_json())
        self.assertEqual(original, parsed)

    def test_optional_sections_omitted(self):
        md = PackageMetadata(compression_type="zip", version="0.1")
        doc = json.loads(md.to_json())
        self.assertNotIn("package", doc)
        self.assertNotIn("build", doc)
        self.assertEqual("criage", doc["createdBy"])

    def test_go_style_timestamps(self):
        ts = parse_timestamp("2023-11-02T10:04:05.123456789+03:00")
        self.assertEqual(dt.timedelta(hours=3), ts.utcoffset())
        self.assertEqual(123456, ts.microsecond)
        self.assertEqual(dt.timezone.utc, parse_timestamp("2023-11-02T10:04:05Z").tzinfo)
        self.assertEqual(500000, parse_timestamp("2023-11-02T10:04:05.5Z").microsecond)

    def test_unknown_keys_are_ignored(self):
        raw = b'{"version": "2", "createdBy": "other", "extra": true, "package": {"name": "x", "future": 1}}'
        md = PackageMetadata.from_json(raw)
        self.assertEqual("2", md.version)
        self.assertEqual("x", md.package.name)

    def test_corrupt_documents(self):
        for raw in (b"{not json", b"[1, 2]", b'"text"', b"\xff\xfe", b'{"createdAt": "yesterday"}',
                    b'{"package": "nope"}', b'{"build": {"targets": {"os": "linux"}}}'):
            with self.assertRaises(MetadataCorrupt, msg=raw):
                PackageMetadata.from_json(raw)


class ManifestTests(unittest.TestCase):
    def test_load_manifest(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "criage.yaml"
            path.write_text(
                "name: hello\n"
                "version: 1.2.3\n"
                "author: Dev Team\n"
                "dependencies:\n"
                "  base: ^1.0\n"
                "files:\n"
                "  - bin/*\n"
                "exclude:\n"
                "  - '*.tmp'\n"
                "hooks:\n"
                "  preInstall: [check.sh]\n",
                encoding="utf-8",
            )
            manifest = load_manifest(path)
        self.assertEqual("hello", manifest.name)
        self.assertEqual("1.2.3", manifest.version)
        self.assertEqual({"base": "^1.0"}, manifest.dependencies)
        self.assertEqual(["bin/*"], manifest.files)
        self.assertEqual(["*.tmp"], manifest.exclude)
        self.assertEqual(["check.sh"], manifest.hooks.pre_install)

    def test_invalid_manifest(self):
        with tempfile.TemporaryDirectory() as tmp:
            bad_yaml = Path(tmp) / "bad.yaml"
            bad_yaml.write_text("name: [unterminated\n", encoding="utf-8")
            with self.assertRaises(MetadataCorrupt):
                load_manifest(bad_yaml)
            not_mapping = Path(tmp) / "list.yaml"
            not_mapping.write_text("- a\n- b\n", encoding="utf-8")
            with self.assertRaises(MetadataCorrupt):
                load_manifest(not_mapping)

    def test_empty_manifest(self):
        with tempfile.TemporaryDirectory() as tmp:
            empty = Path(tmp) / "criage.yaml"
            empty.write_text("", encoding="utf-8")
            self.assertEqual(PackageManifest(), load_manifest(empty))


if __name__ == "__main__":
    unittest.main()
