#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
HPROF heap dump reader.

Reads the records needed to walk the object graph of an Android (or JVM)
heap dump:
- STRING / LOAD_CLASS records (class names)
- CLASS_DUMP (super class, instance size, static and instance fields)
- INSTANCE_DUMP (raw field bytes)
- OBJECT_ARRAY_DUMP / PRIMITIVE_ARRAY_DUMP (elements and raw data)

GC roots are skipped: the analysis seeds from instances of a class, not
from roots.
"""

import os
import sys
from collections import defaultdict
from datetime import datetime


class SnapshotError(Exception):
    """Raised when a heap dump cannot be parsed."""


def normalize_class_name(name):
    """Convert JVM internal names to Java source form.

    'java/lang/String' -> 'java.lang.String'
    '[B' -> 'byte[]', '[[Ljava/lang/Object;' -> 'java.lang.Object[][]'
    """
    dims = 0
    while name.startswith('['):
        dims += 1
        name = name[1:]
    if dims:
        if name.startswith('L') and name.endswith(';'):
            name = name[1:-1]
        elif name in HprofParser.DESCRIPTOR_NAMES:
            name = HprofParser.DESCRIPTOR_NAMES[name]
    return name.replace('/', '.') + '[]' * dims


class HprofParser:
    """
    HPROF record reader.

    After parse(), the following maps are populated (all keyed by id):
    - classes: class_id -> {'name', 'super_class_id', 'instance_size',
      'instance_fields', 'static_fields'}
    - instances: object_id -> {'class_id', 'fields_data'}
    - object_arrays: array_id -> {'class_id', 'elements'}
    - primitive_arrays: array_id -> {'type', 'type_name', 'length', 'data'}
    """

    # HPROF Tags
    TAG_STRING = 0x01
    TAG_LOAD_CLASS = 0x02
    TAG_UNLOAD_CLASS = 0x03
    TAG_STACK_FRAME = 0x04
    TAG_STACK_TRACE = 0x05
    TAG_ALLOC_SITES = 0x06
    TAG_HEAP_SUMMARY = 0x07
    TAG_START_THREAD = 0x0A
    TAG_END_THREAD = 0x0B
    TAG_HEAP_DUMP = 0x0C
    TAG_HEAP_DUMP_SEGMENT = 0x1C
    TAG_HEAP_DUMP_END = 0x2C
    TAG_CPU_SAMPLES = 0x0D
    TAG_CONTROL_SETTINGS = 0x0E

    SKIPPED_TAGS = (
        TAG_UNLOAD_CLASS, TAG_STACK_FRAME, TAG_STACK_TRACE, TAG_ALLOC_SITES,
        TAG_HEAP_SUMMARY, TAG_START_THREAD, TAG_END_THREAD, TAG_HEAP_DUMP_END,
        TAG_CPU_SAMPLES, TAG_CONTROL_SETTINGS,
    )

    # Heap Dump Sub-record Tags
    HEAP_TAG_ROOT_UNKNOWN = 0xFF
    HEAP_TAG_ROOT_JNI_GLOBAL = 0x01
    HEAP_TAG_ROOT_JNI_LOCAL = 0x02
    HEAP_TAG_ROOT_JAVA_FRAME = 0x03
    HEAP_TAG_ROOT_NATIVE_STACK = 0x04
    HEAP_TAG_ROOT_STICKY_CLASS = 0x05
    HEAP_TAG_ROOT_THREAD_BLOCK = 0x06
    HEAP_TAG_ROOT_MONITOR_USED = 0x07
    HEAP_TAG_ROOT_THREAD_OBJECT = 0x08
    HEAP_TAG_CLASS_DUMP = 0x20
    HEAP_TAG_INSTANCE_DUMP = 0x21
    HEAP_TAG_OBJECT_ARRAY_DUMP = 0x22
    HEAP_TAG_PRIMITIVE_ARRAY_DUMP = 0x23
    HEAP_TAG_HEAP_DUMP_INFO = 0xfe
    HEAP_TAG_ROOT_INTERNED_STRING = 0x89
    HEAP_TAG_ROOT_FINALIZING = 0x8a
    HEAP_TAG_ROOT_DEBUGGER = 0x8b
    HEAP_TAG_ROOT_REFERENCE_CLEANUP = 0x8c
    HEAP_TAG_ROOT_VM_INTERNAL = 0x8d
    HEAP_TAG_ROOT_JNI_MONITOR = 0x8e
    HEAP_TAG_ROOT_UNREACHABLE = 0x90
    HEAP_TAG_PRIMITIVE_ARRAY_NODATA = 0xc3

    # Type constants
    TYPE_OBJECT = 2
    TYPE_BOOLEAN = 4
    TYPE_CHAR = 5
    TYPE_FLOAT = 6
    TYPE_DOUBLE = 7
    TYPE_BYTE = 8
    TYPE_SHORT = 9
    TYPE_INT = 10
    TYPE_LONG = 11

    PRIMITIVE_TYPES = {
        TYPE_BOOLEAN: (1, 'boolean'),
        TYPE_CHAR: (2, 'char'),
        TYPE_FLOAT: (4, 'float'),
        TYPE_DOUBLE: (8, 'double'),
        TYPE_BYTE: (1, 'byte'),
        TYPE_SHORT: (2, 'short'),
        TYPE_INT: (4, 'int'),
        TYPE_LONG: (8, 'long'),
    }

    DESCRIPTOR_NAMES = {
        'Z': 'boolean', 'C': 'char', 'F': 'float', 'D': 'double',
        'B': 'byte', 'S': 'short', 'I': 'int', 'J': 'long',
    }

    def __init__(self, filename, verbose=False):
        self.filename = filename
        self.verbose = verbose
        self.hprof = None
        self.file_length = 0
        self.version = None
        self.size_of_identifier = 4
        self.strings = {}
        self.class_names = {}
        self.classes = {}
        self.instances = {}
        self.object_arrays = {}
        self.primitive_arrays = {}
        self.instances_by_class = defaultdict(list)
        self.basic_types = dict(self.PRIMITIVE_TYPES)

    def parse(self):
        """Read the whole file. Raises SnapshotError on malformed input."""
        try:
            self.openHprof(self.filename)
            self.readHead()
            if self.verbose:
                print("正在解析HPROF记录...", file=sys.stderr)
            self.readRecords()
        finally:
            if self.hprof:
                self.hprof.close()
                self.hprof = None
        self.resolve_class_names()
        if self.verbose:
            print("类: %d, 实例: %d, 对象数组: %d, 基本类型数组: %d" % (
                len(self.classes), len(self.instances),
                len(self.object_arrays), len(self.primitive_arrays)), file=sys.stderr)
        return self

    def readHead(self):
        """Read HPROF file header"""
        version_bytes = []
        while True:
            b = self.read(1)
            if b == b'\x00':
                break
            version_bytes.append(b)
        version = b''.join(version_bytes).decode('utf-8', 'ignore')
        if not version.startswith('JAVA PROFILE'):
            raise SnapshotError("Not an HPROF file: bad header %r" % version[:32])
        self.version = version
        self.size_of_identifier = self.readInt(4)
        if self.size_of_identifier not in (4, 8):
            raise SnapshotError("Unsupported identifier size: %d" % self.size_of_identifier)
        timestamp = self.readInt(8) / 1000
        if self.verbose:
            print("HPROF版本: %s" % (version), file=sys.stderr)
            print("标识符大小: %d" % (self.size_of_identifier), file=sys.stderr)
            print("时间戳: %s" % (datetime.fromtimestamp(timestamp)), file=sys.stderr)
        self.basic_types[self.TYPE_OBJECT] = (self.size_of_identifier, 'object')

    def readRecords(self):
        """Read all top-level HPROF records"""
        while self.hprof.tell() < self.file_length:
            tag = self.readInt(1)
            self.readInt(4)  # time
            length = self.readInt(4)
            if tag == self.TAG_STRING:
                self.readString(length)
            elif tag == self.TAG_LOAD_CLASS:
                self.readLoadClass(length)
            elif tag in (self.TAG_HEAP_DUMP, self.TAG_HEAP_DUMP_SEGMENT):
                self.readHeapDumpInternal(length)
            elif tag in self.SKIPPED_TAGS:
                self.seek(length)
            else:
                raise SnapshotError('Not supported tag: %d, position: %d' % (tag, self.hprof.tell()))

    def readString(self, length):
        """Read UTF8 string record"""
        string_id = self.readId()
        self.strings[string_id] = self.read(length - self.size_of_identifier).decode('utf-8', 'ignore')

    def readLoadClass(self, length):
        """Read class load record"""
        self.readInt(4)  # class serial
        class_id = self.readId()
        self.readInt(4)  # stack trace serial
        class_name_id = self.readId()
        self.class_names[class_id] = class_name_id

    def readHeapDumpInternal(self, length):
        """Read a heap dump segment"""
        end = self.hprof.tell() + length
        while self.hprof.tell() < end:
            tag = self.readInt(1)
            if tag == self.HEAP_TAG_CLASS_DUMP:
                self.readClassDump()
            elif tag == self.HEAP_TAG_INSTANCE_DUMP:
                self.readInstanceDump()
            elif tag == self.HEAP_TAG_OBJECT_ARRAY_DUMP:
                self.readObjectArrayDump()
            elif tag == self.HEAP_TAG_PRIMITIVE_ARRAY_DUMP:
                self.readPrimitiveArrayDump()
            elif tag == self.HEAP_TAG_PRIMITIVE_ARRAY_NODATA:
                self.readPrimitiveArrayNoData()
            else:
                self.seek(self.get_heap_subrecord_length(tag))

    def get_heap_subrecord_length(self, tag):
        """Length of GC root and info sub-records, which are skipped"""
        if tag in (self.HEAP_TAG_ROOT_UNKNOWN, self.HEAP_TAG_ROOT_STICKY_CLASS,
                   self.HEAP_TAG_ROOT_MONITOR_USED, self.HEAP_TAG_ROOT_INTERNED_STRING,
                   self.HEAP_TAG_ROOT_FINALIZING, self.HEAP_TAG_ROOT_DEBUGGER,
                   self.HEAP_TAG_ROOT_REFERENCE_CLEANUP, self.HEAP_TAG_ROOT_VM_INTERNAL,
                   self.HEAP_TAG_ROOT_UNREACHABLE):
            return self.size_of_identifier
        elif tag == self.HEAP_TAG_ROOT_JNI_GLOBAL:
            return 2 * self.size_of_identifier
        elif tag in (self.HEAP_TAG_ROOT_JNI_LOCAL, self.HEAP_TAG_ROOT_JAVA_FRAME,
                     self.HEAP_TAG_ROOT_THREAD_OBJECT, self.HEAP_TAG_ROOT_JNI_MONITOR):
            return self.size_of_identifier + 8
        elif tag in (self.HEAP_TAG_ROOT_NATIVE_STACK, self.HEAP_TAG_ROOT_THREAD_BLOCK):
            return self.size_of_identifier + 4
        elif tag == self.HEAP_TAG_HEAP_DUMP_INFO:
            return 4 + self.size_of_identifier
        raise SnapshotError('Not supported heap sub-record: 0x%02x, position: %d' % (tag, self.hprof.tell()))

    def readClassDump(self):
        """Read class dump with static values and instance field definitions"""
        class_id = self.readId()
        self.readInt(4)  # stack trace serial
        super_class_id = self.readId()
        self.readId()  # class loader
        self.readId()  # signers
        self.readId()  # protection domain
        self.readId()  # reserved
        self.readId()  # reserved
        instance_size = self.readInt(4)

        self.readClassConstantFields()
        static_fields = self.readClassStaticFields()
        instance_fields = self.readInstanceFieldDefinitions()

        self.classes[class_id] = {
            'name': None,
            'super_class_id': super_class_id,
            'instance_size': instance_size,
            'instance_fields': instance_fields,
            'static_fields': static_fields,
        }

    def readClassConstantFields(self):
        """Skip the class constant pool"""
        count = self.readInt(2)
        for _ in range(count):
            self.readInt(2)  # index
            type_id = self.readInt(1)
            self.seek(self.type_size(type_id))

    def readClassStaticFields(self):
        """Read static fields as (name, type, raw value) tuples"""
        count = self.readInt(2)
        static_fields = []
        for _ in range(count):
            name_id = self.readId()
            type_id = self.readInt(1)
            value = self.read(self.type_size(type_id))
            static_fields.append((name_id, type_id, value))
        return static_fields

    def readInstanceFieldDefinitions(self):
        """Read instance field definitions as (name, type) tuples"""
        count = self.readInt(2)
        fields = []
        for _ in range(count):
            name_id = self.readId()
            type_id = self.readInt(1)
            fields.append((name_id, type_id))
        return fields

    def readInstanceDump(self):
        """Read instance dump with raw field values"""
        instance_id = self.readId()
        self.readInt(4)  # stack trace serial
        class_id = self.readId()
        fields_byte_size = self.readInt(4)
        self.instances[instance_id] = {
            'class_id': class_id,
            'fields_data': self.read(fields_byte_size),
        }
        self.instances_by_class[class_id].append(instance_id)

    def readObjectArrayDump(self):
        """Read object array with element ids"""
        array_id = self.readId()
        self.readInt(4)  # stack trace serial
        length = self.readInt(4)
        array_class_id = self.readId()
        data = self.read(length * self.size_of_identifier)
        elements = [
            int.from_bytes(data[i:i + self.size_of_identifier], byteorder='big')
            for i in range(0, len(data), self.size_of_identifier)
        ]
        self.object_arrays[array_id] = {
            'class_id': array_class_id,
            'elements': elements,
        }
        self.instances_by_class[array_class_id].append(array_id)

    def readPrimitiveArrayDump(self):
        """Read primitive array with data"""
        array_id = self.readId()
        self.readInt(4)  # stack trace serial
        length = self.readInt(4)
        type_id = self.readInt(1)
        size, type_name = self.primitive_type(type_id)
        self.primitive_arrays[array_id] = {
            'type': type_id,
            'type_name': type_name,
            'length': length,
            'data': self.read(size * length),
        }

    def readPrimitiveArrayNoData(self):
        """Read primitive array without data (Android specific)"""
        array_id = self.readId()
        self.readInt(4)  # stack trace serial
        length = self.readInt(4)
        type_id = self.readInt(1)
        _, type_name = self.primitive_type(type_id)
        self.primitive_arrays[array_id] = {
            'type': type_id,
            'type_name': type_name,
            'length': length,
            'data': None,
        }

    def resolve_class_names(self):
        """Attach normalized names to class dumps"""
        for class_id, class_info in self.classes.items():
            name_id = self.class_names.get(class_id)
            name = self.strings.get(name_id) if name_id is not None else None
            class_info['name'] = normalize_class_name(name) if name else 'unknown@%x' % class_id

    def type_size(self, type_id):
        if type_id not in self.basic_types:
            raise SnapshotError('Unknown basic type: %d' % type_id)
        return self.basic_types[type_id][0]

    def primitive_type(self, type_id):
        if type_id not in self.PRIMITIVE_TYPES:
            raise SnapshotError('Unknown primitive array type: %d' % type_id)
        return self.PRIMITIVE_TYPES[type_id]

    # ==================== Utility Methods ====================

    def openHprof(self, file):
        self.hprof = open(file, 'rb')
        self.file_length = os.path.getsize(file)

    def readInt(self, length):
        return int.from_bytes(self.read(length), byteorder='big', signed=False)

    def readId(self):
        return self.readInt(self.size_of_identifier)

    def read(self, length):
        data = self.hprof.read(length)
        if len(data) < length:
            raise SnapshotError('Unexpected end of file at position %d' % self.hprof.tell())
        return data

    def seek(self, length):
        self.hprof.seek(length, 1)
