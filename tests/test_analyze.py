import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

import analyze
from hprof_writer import HprofWriter


def write_app_dump(path):
    writer = HprofWriter()
    writer.write_class("android.app.Application", instance_size=4,
                       fields=[("mBase", HprofWriter.TYPE_OBJECT)])
    writer.write_class("com.app.App", super_name="android.app.Application", instance_size=20,
                       fields=[("mItems", HprofWriter.TYPE_OBJECT),
                               ("mIcon", HprofWriter.TYPE_OBJECT)])
    writer.write_class("com.app.Item", instance_size=12, fields=[("mName", HprofWriter.TYPE_OBJECT)])
    writer.write_class("java.lang.Object[]")
    writer.write_class("android.graphics.Bitmap", instance_size=16,
                       fields=[("mBuffer", HprofWriter.TYPE_OBJECT),
                               ("mWidth", HprofWriter.TYPE_INT),
                               ("mHeight", HprofWriter.TYPE_INT)])

    items = [writer.write_instance("com.app.Item",
                                   mName=writer.write_primitive_array(HprofWriter.TYPE_CHAR, "ab"))
             for _ in range(2)]
    array = writer.write_object_array("java.lang.Object[]", items)
    pixels = writer.write_primitive_array(HprofWriter.TYPE_BYTE, bytes([1, 2, 3, 255, 4, 5, 6, 255]))
    bitmap = writer.write_instance("android.graphics.Bitmap", mBuffer=pixels, mWidth=2, mHeight=1)
    app = writer.write_instance("com.app.App", mItems=array, mIcon=bitmap)
    writer.make_root(app)
    writer.save(path)
    return bitmap


class TestMain(unittest.TestCase):
    # App 20, Object[] 8, Items 2 * 12, char[] 2 * 4, Bitmap 16, byte[] 8
    TOTAL = 84

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.dump = os.path.join(self.tmpdir.name, "app.hprof")
        self.bitmap = write_app_dump(self.dump)

    def tearDown(self):
        self.tmpdir.cleanup()

    def path(self, name):
        return os.path.join(self.tmpdir.name, name)

    def run_main(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = analyze.main(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_usage(self):
        code, out, _ = self.run_main()
        self.assertEqual(code, 1)
        self.assertIn(analyze.USAGE, out)

    def test_missing_file(self):
        missing = self.path("missing.hprof")
        code, out, _ = self.run_main(missing)
        self.assertEqual(code, 1)
        self.assertIn(f"File {missing} not found", out)

    def test_bad_dump(self):
        broken = self.path("broken.hprof")
        with open(broken, "wb") as f:
            f.write(b"garbage\0")
        code, _, err = self.run_main(broken)
        self.assertEqual(code, 1)
        self.assertIn("SnapshotError", err)

    def test_no_root_instances(self):
        code, _, err = self.run_main(self.dump, "-r", "com.app.Missing")
        self.assertEqual(code, 1)
        self.assertIn("com.app.Missing", err)

    def test_exact_class(self):
        code, _, _ = self.run_main(self.dump, "--exact-class")
        self.assertEqual(code, 1)

    def test_invalid_config(self):
        config = self.path("config.json")
        with open(config, "w") as f:
            json.dump({"root_class": "com.app.App"}, f)
        code, _, err = self.run_main(self.dump, "-c", config)
        self.assertEqual(code, 1)
        self.assertIn("root_class", err)

    def test_config_file(self):
        config = self.path("config.json")
        with open(config, "w") as f:
            json.dump({"root_class_name": "com.app.App", "include_subclasses": False}, f)
        code, out, _ = self.run_main(self.dump, "-c", config)
        self.assertEqual(code, 0)
        self.assertIn("Components count: 1", out)

    def test_report(self):
        report = self.path("report.json")
        bitmaps = self.path("bitmaps")

        code, out, err = self.run_main(self.dump, "--nodes", "--json", report,
                                       "--bitmaps", bitmaps, "-v")

        self.assertEqual(code, 0)
        self.assertIn(f"com.app.App, weighted_size={self.TOTAL}", out)
        self.assertIn(f"Bitmap {self.bitmap} (24 bytes):", out)
        self.assertIn("    mIcon", out)
        self.assertIn(f"com.app.App => {self.TOTAL} (100.00%) / {self.TOTAL}", out)
        self.assertIn(f"size: {self.TOTAL}", err)

        with open(report, encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data["total_size"], self.TOTAL)
        self.assertEqual(data["survivors"], 1)
        self.assertEqual(data["types"], [
            {"name": "com.app.App", "weighted_size": self.TOTAL, "percent": 100.0,
             "ret_size": self.TOTAL},
        ])
        com = data["components"]["children"][0]
        self.assertEqual(com["name"], "com")
        self.assertEqual(com["all_size"], self.TOTAL)
        self.assertFalse(com["is_class"])

        self.assertEqual(os.listdir(bitmaps), ["%d-24.png" % self.bitmap])
