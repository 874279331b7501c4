import os
import tempfile
import unittest

from hprof_writer import HprofWriter
from snapshot import (ClassObjectHandle, InstanceHandle, ObjectArrayHandle, PrimitiveArrayHandle,
                      open_snapshot)


class TestSnapshot(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.tmpdir = tempfile.TemporaryDirectory()
        writer = HprofWriter()
        writer.write_class("java.lang.Object")
        writer.write_class("java.lang.Class")
        writer.write_class("android.app.Application", super_name="java.lang.Object",
                           instance_size=8, fields=[("mBase", HprofWriter.TYPE_OBJECT),
                                                    ("mLoaded", HprofWriter.TYPE_BOOLEAN)])
        writer.write_class("com.app.App", super_name="android.app.Application", instance_size=20,
                           fields=[("mCache", HprofWriter.TYPE_OBJECT),
                                   ("mName", HprofWriter.TYPE_OBJECT),
                                   ("mCount", HprofWriter.TYPE_INT),
                                   ("mRatio", HprofWriter.TYPE_FLOAT)],
                           static_fields=[("sInstance", HprofWriter.TYPE_OBJECT, 0x700000),
                                          ("sCount", HprofWriter.TYPE_LONG, -5)])
        writer.write_class("com.app.App$Debug", super_name="com.app.App", instance_size=20)
        writer.write_class("java.lang.Object[]")

        cls.name = writer.write_primitive_array(HprofWriter.TYPE_BYTE, b"app")
        cls.other = writer.write_primitive_array(HprofWriter.TYPE_INT, [1, 2])
        cls.cache = writer.write_object_array("java.lang.Object[]", [cls.name, 0, 0x7FFFFF, cls.name])
        cls.app = writer.write_instance("com.app.App", object_id=0x700000, mCache=cls.cache,
                                        mName=cls.name, mCount=-3, mRatio=0.5, mBase=0, mLoaded=1)
        cls.debug = writer.write_instance("com.app.App$Debug")
        cls.writer = writer
        cls.snapshot = open_snapshot(writer.save(os.path.join(cls.tmpdir.name, "app.hprof")))

    @classmethod
    def tearDownClass(cls):
        cls.tmpdir.cleanup()

    def test_classes_by_name(self):
        snapshot = self.snapshot
        self.assertEqual([c.name for c in snapshot.classes_by_name("com.app.App")], ["com.app.App"])
        self.assertEqual([c.name for c in snapshot.classes_by_name("android.app.Application", True)],
                         ["android.app.Application", "com.app.App", "com.app.App$Debug"])
        self.assertEqual(snapshot.classes_by_name("com.app.Missing"), [])

    def test_class_handle(self):
        app_class = self.snapshot.classes_by_name("com.app.App")[0]
        self.assertEqual(app_class.heap_size_per_instance, 20)
        self.assertFalse(app_class.is_array_type)
        self.assertEqual(app_class.super_class.name, "android.app.Application")
        self.assertIsNone(app_class.super_class.super_class.super_class)
        self.assertEqual([c.name for c in app_class.subclasses()], ["com.app.App$Debug"])
        self.assertEqual(app_class.instance_ids(), [self.app])

    def test_instance_fields(self):
        app = self.snapshot.object(self.app)
        self.assertIsInstance(app, InstanceHandle)
        self.assertEqual(app.type_name, "com.app.App")
        fields = [(name, value) for name, _, value in app.fields()]
        self.assertEqual(fields, [
            ("mCache", self.cache),
            ("mName", self.name),
            ("mCount", -3),
            ("mRatio", 0.5),
            ("mBase", 0),
            ("mLoaded", True),
        ])

    def test_outbound_references(self):
        app = self.snapshot.object(self.app)
        refs = [(name, target.object_id) for name, target in app.outbound_references()]
        # Null references are skipped.
        self.assertEqual(refs, [("mCache", self.cache), ("mName", self.name)])

        cache = self.snapshot.object(self.cache)
        self.assertIsInstance(cache, ObjectArrayHandle)
        refs = [(name, target.object_id) for name, target in cache.outbound_references()]
        # Dangling ids are skipped too.
        self.assertEqual(refs, [("[0]", self.name), ("[3]", self.name)])
        self.assertEqual(cache.length, 4)
        self.assertEqual(cache.element_size, 4)

    def test_resolve_field(self):
        app = self.snapshot.object(self.app)
        self.assertEqual(app.resolve_field("mCount"), -3)
        self.assertEqual(app.resolve_field("mName"), self.snapshot.object(self.name))
        self.assertIsNone(app.resolve_field("mBase"))
        self.assertIsNone(app.resolve_field("mMissing"))

        cache = self.snapshot.object(self.cache)
        self.assertEqual(cache.resolve_field("[3]").object_id, self.name)
        self.assertIsNone(cache.resolve_field("[1]"))
        self.assertIsNone(cache.resolve_field("[9]"))
        self.assertIsNone(cache.resolve_field("mCount"))

    def test_primitive_arrays(self):
        name = self.snapshot.object(self.name)
        self.assertIsInstance(name, PrimitiveArrayHandle)
        self.assertEqual(name.type_name, "byte[]")
        self.assertTrue(name.clazz.is_array_type)
        self.assertEqual(name.element_size, 1)
        self.assertEqual(name.length, 3)
        self.assertEqual(name.array_data, b"app")
        self.assertEqual(name.outbound_references(), [])

        ints = self.snapshot.object(self.other)
        self.assertEqual(ints.type_name, "int[]")
        self.assertEqual(ints.element_size * ints.length, 8)

        self.assertEqual(self.snapshot.class_by_name("byte[]").instance_ids(), [self.name])
        self.assertEqual(self.snapshot.class_by_name("int[]").instance_ids(), [self.other])

    def test_class_object_statics(self):
        class_id = self.writer.lookup_class("com.app.App")
        class_object = self.snapshot.object(class_id)
        self.assertIsInstance(class_object, ClassObjectHandle)
        self.assertEqual(class_object.type_name, "java.lang.Class")
        self.assertEqual(class_object.described_class.name, "com.app.App")
        self.assertEqual(class_object.resolve_field("sCount"), -5)
        refs = [(name, target.object_id) for name, target in class_object.outbound_references()]
        self.assertEqual(refs, [("sInstance", self.app)])

    def test_identity(self):
        self.assertEqual(self.snapshot.object(self.app), self.snapshot.object(self.app))
        self.assertEqual(len({self.snapshot.object(self.app), self.snapshot.object(self.app)}), 1)
        self.assertIsNone(self.snapshot.object(0x7FFFFF))
