from __future__ import annotations

import io
import json
import os
import subprocess
import sys
import tarfile
import tempfile
import unittest
import zipfile
from pathlib import Path
from typing import Dict

from criage_archive.constants import METADATA_ENTRY_NAME


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    (root / "docs" / "notes").mkdir(parents=True)
    (root / "build").mkdir()
    content = b"hello world\n" * 20
    (root / "docs" / "readme.txt").write_bytes(content)
    files["docs/readme.txt"] = content

    bin_data = os.urandom(2048)
    (root / "docs" / "notes" / "binary.bin").write_bytes(bin_data)
    os.chmod(root / "docs" / "notes" / "binary.bin", 0o600)
    files["docs/notes/binary.bin"] = bin_data

    (root / "docs" / "notes" / "empty.txt").write_text("")
    files["docs/notes/empty.txt"] = b""

    # Build output is excluded in the tests below
    (root / "build" / "out.o").write_bytes(b"\x00" * 64)
    return files


def _collect(root: Path) -> Dict[str, bytes]:
    out = {}
    for dirpath, _dirs, names in os.walk(root):
        for name in names:
            full = Path(dirpath) / name
            out[full.relative_to(root).as_posix()] = full.read_bytes()
    return out


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, cwd: Path | None = None):
        cmd = [sys.executable, "-m", "criage_archive.cli"] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def test_pack_unpack_roundtrip_each_format(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            src.mkdir()
            expected = _build_fixture_tree(src)
            for suffix in (".tar.zst", ".tar.lz4", ".tar.xz", ".tar.gz", ".zip"):
                with self.subTest(suffix=suffix):
                    archive = root / f"pkg{suffix}"
                    pack = self.run_cli(["pack", str(archive), str(src), "--exclude", "build"])
                    self.assertIn("Done:", pack.stdout)
                    self.assertIn(suffix.lstrip("."), pack.stdout)

                    detect = self.run_cli(["detect", str(archive)])
                    self.assertEqual(suffix.lstrip("."), detect.stdout.strip())

                    out = root / f"out{suffix}"
                    self.run_cli(["unpack", str(archive), "--outdir", str(out), "--quiet"])
                    got = _collect(out)
                    got.pop(METADATA_ENTRY_NAME)
                    self.assertEqual(expected, got)

    def test_manifest_is_embedded_and_drives_excludes(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            src.mkdir()
            _build_fixture_tree(src)
            (src / "criage.yaml").write_text(
                "name: demo\nversion: 0.3.0\nauthor: someone\nexclude:\n  - build\n  - '*.bin'\n"
            )
            archive = root / "demo.criage"
            self.run_cli(["pack", str(archive), str(src), "--level", "best"])

            self.assertEqual("tar.zst", self.run_cli(["detect", str(archive)]).stdout.strip())

            meta = json.loads(self.run_cli(["metadata", str(archive)]).stdout)
            self.assertEqual("demo", meta["package"]["name"])
            self.assertEqual("0.3.0", meta["package"]["version"])
            self.assertEqual("tar.zst", meta["compressionType"])
            self.assertEqual("criage", meta["createdBy"])

            listing = self.run_cli(["list", str(archive)]).stdout.splitlines()
            paths = [line.split("\t")[-1] for line in listing]
            self.assertEqual(METADATA_ENTRY_NAME, paths[0])
            self.assertIn("criage.yaml", paths)
            self.assertIn("docs/readme.txt", paths)
            self.assertNotIn("docs/notes/binary.bin", paths)
            self.assertFalse(any(p.startswith("build") for p in paths))

    def test_explicit_format_overrides_suffix(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            src.mkdir()
            (src / "a.txt").write_text("a")
            archive = root / "pkg.bin"
            self.run_cli(["pack", str(archive), str(src), "--format", "tar+gzip"])
            # Unknown suffix and not a .criage file: detection falls back to the default
            self.assertEqual("tar.zst", self.run_cli(["detect", str(archive)]).stdout.strip())
            listing = self.run_cli(["list", str(archive), "--format", "tar.gz"]).stdout
            self.assertIn("a.txt", listing)

    def test_traversal_archive_is_refused(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            archive = root / "evil.tar.gz"
            with tarfile.open(archive, "w:gz") as tf:
                for name, data in (("ok.txt", b"ok"), ("../evil.txt", b"pwned")):
                    ti = tarfile.TarInfo(name)
                    ti.size = len(data)
                    tf.addfile(ti, io.BytesIO(data))
            out = root / "out"
            proc = self.run_cli(["unpack", str(archive), "--outdir", str(out)], expect=2)
            self.assertIn("Error:", proc.stderr)
            self.assertIn("evil.txt", proc.stderr)
            self.assertFalse((root / "evil.txt").exists())

    def test_errors_exit_with_status_two(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            proc = self.run_cli(["unpack", str(root / "missing.zip"), "--outdir", str(root / "o")], expect=2)
            self.assertIn("Error:", proc.stderr)

            garbage = root / "garbage.tar.xz"
            garbage.write_bytes(b"nope" * 50)
            proc = self.run_cli(["list", str(garbage)], expect=2)
            self.assertIn("Error:", proc.stderr)

            bare = root / "bare.zip"
            with zipfile.ZipFile(bare, "w") as zf:
                zf.writestr("x.txt", "x")
            proc = self.run_cli(["metadata", str(bare)], expect=2)
            self.assertIn("no metadata", proc.stderr)

            src = root / "src"
            src.mkdir()
            out = root / "pkg.rar"
            proc = self.run_cli(["pack", str(out), str(src), "--format", "rar"], expect=2)
            self.assertIn("unsupported archive format", proc.stderr)
            self.assertFalse(out.exists())

    def test_failed_pack_removes_partial_output(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            out = root / "pkg.tar.gz"
            proc = self.run_cli(["pack", str(out), str(root / "no-such-dir")], expect=2)
            self.assertIn("Error:", proc.stderr)
            self.assertFalse(out.exists())

    def test_failed_pack_keeps_existing_archive(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            out = root / "release.tar.gz"
            out.write_bytes(b"previous release")
            proc = self.run_cli(["pack", str(out), str(root / "no-such-src")], expect=2)
            self.assertIn("source directory not found", proc.stderr)
            self.assertEqual(b"previous release", out.read_bytes())
            self.assertEqual(["release.tar.gz"], sorted(p.name for p in root.iterdir()))

    def test_pack_replaces_existing_archive(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            src.mkdir()
            (src / "new.txt").write_text("new")
            out = root / "release.zip"
            out.write_bytes(b"stale")
            os.chmod(out, 0o640)
            self.run_cli(["pack", str(out), str(src), "--quiet"])
            self.assertEqual(0o640, out.stat().st_mode & 0o777)
            listing = self.run_cli(["list", str(out)]).stdout
            self.assertIn("new.txt", listing)
            self.assertEqual(["release.zip", "src"], sorted(p.name for p in root.iterdir()))

    def test_version_flag(self):
        proc = self.run_cli(["--version"])
        self.assertIn("criage-archive", proc.stdout)


if __name__ == "__main__":
    unittest.main()
