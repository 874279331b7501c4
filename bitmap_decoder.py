#!/usr/bin/env python3
# -*- coding:utf-8 -*-
"""
Recover bitmap previews from pixel buffers found while folding.

android.graphics.Bitmap keeps its ARGB_8888 pixels in a byte[] (mBuffer on
older releases) stored as R, G, B, A per pixel. BitmapCollector is passed
to fold_graph as the leaf hook: when the byte[] folds into its Bitmap, the
pixels are decoded and kept until written out as PNG.
"""

import os
from array import array
from dataclasses import dataclass
from typing import Optional

from PIL import Image


@dataclass
class BitmapImage:
    """Decoded pixels of one bitmap"""
    width: int
    height: int
    rgba: bytes
    argb: array

    def to_image(self):
        return Image.frombytes('RGBA', (self.width, self.height), self.rgba)

    def save_png(self, path):
        self.to_image().save(path, 'PNG')


def decode_rgba(width, height, data) -> Optional[BitmapImage]:
    """Unpack R,G,B,A bytes into ARGB8888 ints; None if data is too short"""
    if not data or width <= 0 or height <= 0:
        return None
    count = width * height
    if len(data) < count * 4:
        return None
    rgba = bytes(data[:count * 4])
    argb = array('L', (
        (a << 24) | (r << 16) | (g << 8) | b
        for r, g, b, a in zip(rgba[0::4], rgba[1::4], rgba[2::4], rgba[3::4])
    ))
    return BitmapImage(width, height, rgba, argb)


class BitmapCollector:
    """Leaf hook decoding Bitmap pixel buffers into self.bitmaps"""

    def __init__(self, config):
        self.config = config
        self.bitmaps = {}

    def __call__(self, parent, leaf, label):
        config = self.config
        if (parent.type_name != config.bitmap_class_name or
                label != config.bitmap_buffer_field or
                leaf.type_name != config.pixel_array_type):
            return

        width = parent.object.resolve_field(config.bitmap_width_field)
        height = parent.object.resolve_field(config.bitmap_height_field)
        if not isinstance(width, int) or not isinstance(height, int):
            return

        image = decode_rgba(width, height, getattr(leaf.object, 'array_data', None))
        if image is not None:
            self.bitmaps[parent] = image

    def write_pngs(self, directory):
        """Write <object id>-<size>.png per bitmap and return the paths"""
        os.makedirs(directory, exist_ok=True)
        paths = []
        for node, image in self.bitmaps.items():
            path = os.path.join(directory, '%d-%d.png' % (node.object.object_id, round(node.size)))
            image.save_png(path)
            paths.append(path)
        return paths
