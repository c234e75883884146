import json
import sys
import tempfile
import unittest
from pathlib import Path

from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tpg_samples import SAMPLE_ENTRIES, build_archive, sample_archive, scenario_archive
from tpg_errors import (
    CorruptArchiveError,
    DecodeError,
    DimensionMismatchError,
    FormatError,
    InvalidRecordError,
    MissingPairError,
    UnsupportedFormatError,
)
from tpg_formats import TexFormat, bytes_per_texel
from tpg_package import TexturePackage, TextureRecord, parse, serialize
from tpg_packer import PackingStats, build_package, pack_directory, scan_directory_for_pairs
from tpg_unpacker import (
    MANIFEST_NAME,
    ExtractionStats,
    extract_package,
    extract_records,
    texture_basename,
)


class PipelineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def write_archive(self, data: bytes, name: str = "textures.tpg") -> Path:
        path = self.tmp / name
        path.write_bytes(data)
        return path


class ScenarioTests(PipelineTestCase):
    def test_single_rgba8888_texture(self) -> None:
        archive = self.write_archive(scenario_archive())
        out = self.tmp / "out"
        report = extract_package(archive, out, workers=1, flip=False)
        self.assertTrue(report.ok)
        self.assertEqual(report.written, ["0000_1a2b3c4d"])

        with Image.open(out / "0000_1a2b3c4d.png") as img:
            self.assertEqual(img.size, (2, 2))
            self.assertEqual(img.mode, "RGBA")
            self.assertEqual(img.tobytes(), bytes(range(16)))
            self.assertEqual(img.getpixel((1, 0)), (4, 5, 6, 7))

        sidecar = json.loads((out / "0000_1a2b3c4d.json").read_text())
        self.assertEqual(sidecar["id_hash"], "1a2b3c4d")
        self.assertEqual(sidecar["format"], "RGBA8888")
        self.assertEqual(sidecar["width"], 2)
        self.assertEqual(sidecar["height"], 2)

        package = build_package(out, workers=1)
        self.assertEqual(package.textures[0].texel_bytes, bytes(range(16)))
        self.assertEqual(serialize(package), scenario_archive())

    def test_flip_reverses_rows(self) -> None:
        archive = self.write_archive(scenario_archive())
        out = self.tmp / "out"
        extract_package(archive, out, workers=1)

        with Image.open(out / "0000_1a2b3c4d.png") as img:
            self.assertEqual(img.tobytes(), bytes(range(8, 16)) + bytes(range(8)))

        sidecar = json.loads((out / "0000_1a2b3c4d.json").read_text())
        self.assertTrue(sidecar["flipped"])
        self.assertEqual(serialize(build_package(out, workers=1)), scenario_archive())

    def test_default_output_directory(self) -> None:
        archive = self.write_archive(scenario_archive(), "menu.tpg")
        report = extract_package(archive, workers=1)
        self.assertEqual(report.output_dir, self.tmp / "menu")
        self.assertTrue((self.tmp / "menu" / MANIFEST_NAME).is_file())


class ExtractPackIdentityTests(PipelineTestCase):
    def test_extract_then_pack_is_identical(self) -> None:
        archive = self.write_archive(sample_archive())
        out = self.tmp / "out"
        stats = ExtractionStats()
        report = extract_package(archive, out, workers=1, stats=stats)
        self.assertTrue(report.ok)
        self.assertEqual(stats.success, len(SAMPLE_ENTRIES))

        rebuilt = self.tmp / "rebuilt.tpg"
        pack_stats = PackingStats()
        pack_directory(out, rebuilt, workers=1, stats=pack_stats)
        self.assertEqual(rebuilt.read_bytes(), sample_archive())
        self.assertEqual(pack_stats.success, len(SAMPLE_ENTRIES))

    def test_extract_then_pack_with_worker_pool(self) -> None:
        archive = self.write_archive(sample_archive())
        out = self.tmp / "out"
        report = extract_package(archive, out, workers=2)
        self.assertEqual(report.written, [texture_basename(i, e[0]) for i, e in enumerate(SAMPLE_ENTRIES)])

        rebuilt = self.tmp / "rebuilt.tpg"
        pack_directory(out, rebuilt, workers=2)
        self.assertEqual(rebuilt.read_bytes(), sample_archive())

    def test_duplicate_hashes_get_distinct_files(self) -> None:
        out = self.tmp / "out"
        extract_package(self.write_archive(sample_archive()), out, workers=1)
        self.assertTrue((out / "0002_00000001.png").is_file())
        self.assertTrue((out / "0003_00000001.png").is_file())

    def test_manifest_restores_header_fields(self) -> None:
        out = self.tmp / "out"
        extract_package(self.write_archive(sample_archive()), out, workers=1)
        manifest = json.loads((out / MANIFEST_NAME).read_text())
        self.assertEqual(manifest["record_count"], len(SAMPLE_ENTRIES))

        (out / MANIFEST_NAME).unlink()
        package = build_package(out, workers=1)
        self.assertEqual(package.header_reserved, bytes(24))

    def test_edited_image_changes_only_its_record(self) -> None:
        out = self.tmp / "out"
        extract_package(self.write_archive(sample_archive()), out, workers=1)
        image_path = out / "0000_1a2b3c4d.png"
        with Image.open(image_path) as img:
            edited = img.copy()
        edited.putpixel((0, 0), (255, 255, 255, 255))
        edited.save(image_path)

        original = parse(sample_archive())
        package = build_package(out, workers=1)
        self.assertNotEqual(package.textures[0].texel_bytes, original.textures[0].texel_bytes)
        self.assertEqual(package.textures[1:], original.textures[1:])

    def test_order_survives_five_digit_positions(self) -> None:
        # stems 10000_... sort before 1000_... as strings
        entries = [(i, 4, 1, 1, bytes([i & 0xFF]), bytes(16)) for i in range(10001)]
        data = build_archive(entries)
        out = self.tmp / "out"
        extract_package(self.write_archive(data), out, workers=1, flip=False)
        self.assertLess("10000_00002710", "1000_000003e8")

        package = build_package(out, workers=1)
        self.assertEqual(package.textures[1000].id_hash, 1000)
        self.assertEqual(package.textures[10000].id_hash, 10000)
        self.assertEqual(serialize(package), data)

    def test_sidecar_index_decides_order(self) -> None:
        out = self.tmp / "out"
        extract_package(self.write_archive(sample_archive()), out, workers=1)
        (out / MANIFEST_NAME).unlink()
        for suffix in (".png", ".json"):
            (out / ("0000_1a2b3c4d" + suffix)).rename(out / ("zz_first" + suffix))

        package = build_package(out, workers=1)
        self.assertEqual([r.id_hash for r in package.textures], [e[0] for e in SAMPLE_ENTRIES])

    def test_sidecars_without_index_use_stem_order(self) -> None:
        out = self.tmp / "out"
        extract_package(self.write_archive(sample_archive()), out, workers=1)
        for sidecar in out.glob("0*.json"):
            data = json.loads(sidecar.read_text())
            del data["index"]
            sidecar.write_text(json.dumps(data))

        package = build_package(out, workers=1)
        self.assertEqual(package.textures, parse(sample_archive()).textures)

    def test_existing_files_are_skipped(self) -> None:
        archive = self.write_archive(sample_archive())
        out = self.tmp / "out"
        extract_package(archive, out, workers=1)
        report = extract_package(archive, out, workers=1)
        self.assertEqual(report.written, [])
        self.assertEqual(len(report.skipped), len(SAMPLE_ENTRIES))
        report = extract_package(archive, out, workers=1, overwrite=True)
        self.assertEqual(len(report.written), len(SAMPLE_ENTRIES))


class ForcedFormatTests(PipelineTestCase):
    def test_forced_format_applies_to_every_record(self) -> None:
        out = self.tmp / "out"
        extract_package(self.write_archive(sample_archive()), out, workers=1)
        package = pack_directory(out, self.tmp / "forced.tpg", forced_format="rgba4444", workers=1)

        for record in package.textures:
            self.assertEqual(record.format, TexFormat.RGBA4444)
            self.assertEqual(len(record.texel_bytes),
                             record.width * record.height * bytes_per_texel(TexFormat.RGBA4444))

        reread = parse((self.tmp / "forced.tpg").read_bytes())
        self.assertEqual(reread.textures, package.textures)
        self.assertEqual([r.id_hash for r in reread.textures], [e[0] for e in SAMPLE_ENTRIES])

    def test_unknown_forced_format(self) -> None:
        out = self.tmp / "out"
        extract_package(self.write_archive(scenario_archive()), out, workers=1)
        with self.assertRaises(UnsupportedFormatError):
            pack_directory(out, self.tmp / "bad.tpg", forced_format="dxt1", workers=1)
        self.assertFalse((self.tmp / "bad.tpg").exists())


class PackingErrorTests(PipelineTestCase):
    def extract_sample(self) -> Path:
        out = self.tmp / "out"
        extract_package(self.write_archive(sample_archive()), out, workers=1)
        return out

    def test_missing_sidecar(self) -> None:
        out = self.extract_sample()
        (out / "0001_deadbeef.json").unlink()
        with self.assertRaises(MissingPairError) as ctx:
            scan_directory_for_pairs(out)
        self.assertIn("0001_deadbeef.png", str(ctx.exception))

    def test_missing_image(self) -> None:
        out = self.extract_sample()
        (out / "0004_cafebabe.png").unlink()
        with self.assertRaises(MissingPairError):
            pack_directory(out, self.tmp / "rebuilt.tpg", workers=1)
        self.assertFalse((self.tmp / "rebuilt.tpg").exists())

    def test_dimension_mismatch(self) -> None:
        out = self.extract_sample()
        Image.new("RGBA", (3, 3)).save(out / "0000_1a2b3c4d.png")
        with self.assertRaises(DimensionMismatchError) as ctx:
            pack_directory(out, self.tmp / "rebuilt.tpg", workers=1)
        self.assertEqual(ctx.exception.record_index, 0)
        self.assertEqual(ctx.exception.id_hash, 0x1A2B3C4D)
        self.assertFalse((self.tmp / "rebuilt.tpg").exists())

    def test_dimension_mismatch_from_worker_pool(self) -> None:
        out = self.extract_sample()
        Image.new("RGBA", (1, 1)).save(out / "0004_cafebabe.png")
        with self.assertRaises(DimensionMismatchError) as ctx:
            build_package(out, workers=2)
        self.assertEqual(ctx.exception.record_index, 4)

    def test_duplicate_record_index(self) -> None:
        out = self.extract_sample()
        sidecar = out / "0001_deadbeef.json"
        data = json.loads(sidecar.read_text())
        data["index"] = 0
        sidecar.write_text(json.dumps(data))
        with self.assertRaises(InvalidRecordError):
            build_package(out, workers=1)

    def test_manifest_lists_missing_texture(self) -> None:
        out = self.extract_sample()
        for suffix in (".png", ".json"):
            (out / ("0005_12345678" + suffix)).unlink()
        with self.assertRaises(MissingPairError) as ctx:
            pack_directory(out, self.tmp / "rebuilt.tpg", workers=1)
        self.assertIn("0005_12345678", str(ctx.exception))
        self.assertFalse((self.tmp / "rebuilt.tpg").exists())

    def test_texture_not_listed_in_manifest(self) -> None:
        out = self.extract_sample()
        (out / "0006_00000099.png").write_bytes((out / "0005_12345678.png").read_bytes())
        data = json.loads((out / "0005_12345678.json").read_text())
        data["index"] = 6
        (out / "0006_00000099.json").write_text(json.dumps(data))
        with self.assertRaises(MissingPairError) as ctx:
            build_package(out, workers=1)
        self.assertIn("0006_00000099", str(ctx.exception))

    def test_index_order_disagrees_with_manifest(self) -> None:
        out = self.extract_sample()
        for name, index in (("0000_1a2b3c4d", 1), ("0001_deadbeef", 0)):
            sidecar = out / (name + ".json")
            data = json.loads(sidecar.read_text())
            data["index"] = index
            sidecar.write_text(json.dumps(data))
        with self.assertRaises(InvalidRecordError):
            build_package(out, workers=1)

    def test_malformed_manifest(self) -> None:
        out = self.extract_sample()
        (out / MANIFEST_NAME).write_text("{not json")
        with self.assertRaises(CorruptArchiveError):
            build_package(out, workers=1)

    def test_bad_header_bytes_in_manifest(self) -> None:
        out = self.extract_sample()
        manifest = json.loads((out / MANIFEST_NAME).read_text())
        manifest["header_reserved"] = "zz"
        (out / MANIFEST_NAME).write_text(json.dumps(manifest))
        with self.assertRaises(CorruptArchiveError):
            build_package(out, workers=1)

    def test_existing_output_needs_overwrite(self) -> None:
        out = self.extract_sample()
        target = self.tmp / "rebuilt.tpg"
        target.write_bytes(b"keep")
        with self.assertRaises(FileExistsError):
            pack_directory(out, target, workers=1)
        self.assertEqual(target.read_bytes(), b"keep")
        pack_directory(out, target, workers=1, overwrite=True)
        self.assertEqual(target.read_bytes(), sample_archive())


class DecodeFailureTests(PipelineTestCase):
    def test_bad_record_is_reported_and_others_extracted(self) -> None:
        good = parse(sample_archive()).textures
        bad = TextureRecord(0x0BADF00D, TexFormat.RGB565, 4, 4, bytes(3))
        package = TexturePackage(textures=[good[0], bad, good[1]])

        stats = ExtractionStats()
        report = extract_records(package, self.tmp / "out", workers=1, stats=stats)
        self.assertFalse(report.ok)
        self.assertEqual(len(report.failures), 1)
        failure = report.failures[0]
        self.assertIsInstance(failure, DecodeError)
        self.assertEqual(failure.record_index, 1)
        self.assertEqual(failure.id_hash, 0x0BADF00D)
        self.assertEqual(report.written, ["0000_1a2b3c4d", "0002_deadbeef"])
        self.assertEqual((stats.total, stats.success, stats.failed), (3, 2, 1))
        self.assertFalse((self.tmp / "out" / "0001_0badf00d.png").exists())
        self.assertIsInstance(failure.__cause__, FormatError)
        self.assertIn("FormatError", str(failure))

    def test_codec_error_crosses_worker_pool(self) -> None:
        good = parse(sample_archive()).textures
        bad = TextureRecord(0x0BADF00D, TexFormat.RGB565, 4, 4, bytes(3))
        package = TexturePackage(textures=[good[0], bad, good[1], good[2]])

        report = extract_records(package, self.tmp / "out", workers=2)
        self.assertEqual(len(report.failures), 1)
        self.assertEqual(report.failures[0].record_index, 1)
        self.assertIsInstance(report.failures[0].__cause__, FormatError)
        self.assertEqual(len(report.written), 3)


if __name__ == "__main__":
    unittest.main()
