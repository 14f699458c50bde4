#!/usr/bin/env python3
"""
Tests for the device layer and the headless renderer.

Run with:  python -m pytest test_devices.py
"""

import random
import unittest

from devices import (
    FrameBuffer, Keypad, KeyMap, KeyMapError, DEFAULT_LAYOUT, KEY_COUNT,
)
from display import HeadlessDisplay, render_text


# =========================================================================
#  FrameBuffer
# =========================================================================

class TestFrameBuffer(unittest.TestCase):
    def test_starts_blank(self):
        fb = FrameBuffer()
        self.assertEqual((fb.width, fb.height), (64, 32))
        self.assertEqual(fb.lit_count(), 0)

    def test_draw_sets_pixels_msb_first(self):
        fb = FrameBuffer()
        collided = fb.draw(10, 5, bytes([0b10100000]))
        self.assertFalse(collided)
        self.assertEqual(fb.pixel(10, 5), 1)
        self.assertEqual(fb.pixel(11, 5), 0)
        self.assertEqual(fb.pixel(12, 5), 1)
        self.assertEqual(fb.lit_count(), 2)

    def test_overlap_reports_collision(self):
        fb = FrameBuffer()
        fb.draw(0, 0, bytes([0xF0]))
        self.assertTrue(fb.draw(3, 0, bytes([0x80])))
        self.assertEqual(fb.pixel(3, 0), 0)

    def test_adjacent_is_not_collision(self):
        fb = FrameBuffer()
        fb.draw(0, 0, bytes([0xF0]))
        self.assertFalse(fb.draw(4, 0, bytes([0xF0])))

    def test_xor_twice_restores(self):
        rng = random.Random(8)
        for _ in range(50):
            fb = FrameBuffer()
            fb.draw(rng.randrange(64), rng.randrange(32),
                    bytes(rng.randrange(256) for _ in range(15)))
            before = fb.snapshot()
            rows = bytes(rng.randrange(256) for _ in range(rng.randrange(1, 16)))
            # fully on screen, so every set bit lands on a pixel
            x, y = rng.randrange(64 - 8), rng.randrange(32 - 15)
            fb.draw(x, y, rows)
            collided = fb.draw(x, y, rows)
            self.assertEqual(fb.snapshot(), before)
            self.assertEqual(collided, any(rows))

    def test_clipping_right_and_bottom(self):
        fb = FrameBuffer()
        fb.draw(62, 31, bytes([0xFF, 0xFF]))
        self.assertEqual(fb.lit_count(), 2)
        self.assertEqual(fb.pixel(62, 31), 1)
        self.assertEqual(fb.pixel(63, 31), 1)
        self.assertEqual(fb.pixel(0, 31), 0)
        self.assertEqual(fb.pixel(62, 0), 0)

    def test_clear(self):
        fb = FrameBuffer()
        fb.draw(0, 0, bytes([0xFF] * 8))
        fb.clear()
        self.assertEqual(fb.lit_count(), 0)

    def test_snapshot_is_column_major_copy(self):
        fb = FrameBuffer()
        fb.draw(5, 7, bytes([0x80]))
        snap = fb.snapshot()
        self.assertEqual(len(snap), 64)
        self.assertEqual(len(snap[0]), 32)
        self.assertEqual(snap[5][7], 1)
        fb.clear()
        self.assertEqual(snap[5][7], 1)
        with self.assertRaises(TypeError):
            snap[5][7] = 0

    def test_snapshot_leaves_state_alone(self):
        fb = FrameBuffer()
        fb.draw(0, 0, bytes([0x80]))
        first = fb.snapshot()
        self.assertEqual(fb.snapshot(), first)
        self.assertEqual(fb.lit_count(), 1)
        self.assertFalse(hasattr(fb, "dirty"))


# =========================================================================
#  Keypad
# =========================================================================

class TestKeypad(unittest.TestCase):
    def test_set_and_query(self):
        kp = Keypad()
        self.assertFalse(kp.is_down(0xA))
        kp.set(0xA, True)
        self.assertTrue(kp.is_down(0xA))
        kp.set(0xA, False)
        self.assertFalse(kp.is_down(0xA))

    def test_first_down_is_lowest(self):
        kp = Keypad()
        self.assertIsNone(kp.first_down())
        kp.set(0xE, True)
        kp.set(0x3, True)
        self.assertEqual(kp.first_down(), 0x3)

    def test_key_index_masked(self):
        kp = Keypad()
        kp.set(0x1F, True)
        self.assertTrue(kp.is_down(0xF))
        self.assertTrue(kp.is_down(0xFF))

    def test_clear_all(self):
        kp = Keypad()
        for k in range(KEY_COUNT):
            kp.set(k, True)
        kp.clear_all()
        self.assertIsNone(kp.first_down())


# =========================================================================
#  KeyMap
# =========================================================================

class TestKeyMap(unittest.TestCase):
    def test_default_layout(self):
        km = KeyMap.default()
        self.assertEqual(len(km), 16)
        self.assertEqual(km.lookup("1"), 0x1)
        self.assertEqual(km.lookup("x"), 0x0)
        self.assertEqual(km.lookup("v"), 0xF)
        self.assertIsNone(km.lookup("p"))

    def test_too_few_entries(self):
        layout = dict(DEFAULT_LAYOUT)
        del layout["v"]
        with self.assertRaises(KeyMapError):
            KeyMap(layout)

    def test_too_many_entries(self):
        layout = dict(DEFAULT_LAYOUT)
        layout["p"] = 0x0
        with self.assertRaises(KeyMapError):
            KeyMap(layout)

    def test_duplicate_target(self):
        layout = dict(DEFAULT_LAYOUT)
        layout["v"] = 0x0  # now two names for key 0, none for F
        with self.assertRaises(KeyMapError):
            KeyMap(layout)

    def test_out_of_range_target(self):
        layout = dict(DEFAULT_LAYOUT)
        layout["v"] = 0x10
        with self.assertRaises(KeyMapError):
            KeyMap(layout)

    def test_error_is_value_error(self):
        self.assertTrue(issubclass(KeyMapError, ValueError))

    def test_from_names(self):
        names = "0 1 2 3 4 5 6 7 8 9 a b c d e f".split()
        km = KeyMap.from_names(names)
        for k, name in enumerate(names):
            self.assertEqual(km.lookup(name), k)

    def test_from_names_wrong_count(self):
        with self.assertRaises(KeyMapError):
            KeyMap.from_names(["a", "b", "c"])

    def test_from_names_duplicate(self):
        names = "0 1 2 3 4 5 6 7 8 9 a b c d e e".split()
        with self.assertRaises(KeyMapError):
            KeyMap.from_names(names)


# =========================================================================
#  HeadlessDisplay
# =========================================================================

class TestHeadlessDisplay(unittest.TestCase):
    def test_input_queue_drains(self):
        disp = HeadlessDisplay()
        disp.press(0x5)
        disp.release(0x5)
        self.assertEqual(disp.poll_input(), [(0x5, True), (0x5, False)])
        self.assertEqual(disp.poll_input(), [])

    def test_present_records(self):
        disp = HeadlessDisplay(max_snapshots=2)
        self.assertIsNone(disp.last)
        fb = FrameBuffer()
        for k in range(3):
            fb.draw(k, 0, bytes([0x80]))
            disp.present(fb.snapshot())
        self.assertEqual(disp.frames, 3)
        self.assertEqual(len(disp.snapshots), 2)
        self.assertEqual(disp.last[2][0], 1)
        self.assertFalse(disp.running)
        self.assertFalse(disp.quit_requested)

    def test_render_text(self):
        fb = FrameBuffer(4, 2)
        fb.draw(0, 0, bytes([0x90, 0x60]))
        self.assertEqual(render_text(fb.snapshot()), "#..#\n.##.")
        self.assertEqual(render_text(()), "")


if __name__ == "__main__":
    unittest.main()
