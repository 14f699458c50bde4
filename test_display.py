#!/usr/bin/env python3
"""
Tests for the pygame window and buzzer, run against SDL's dummy drivers
(see conftest.py).  Skipped when pygame is not installed.

Run with:  python -m pytest test_display.py
"""

import unittest

import pytest

pygame = pytest.importorskip("pygame")

from devices import FrameBuffer, KeyMap
from display import (
    PygameDisplay, PygameAudio, AudioUnavailable, FG_COLOR, BG_COLOR,
)


class TestPygameDisplay(unittest.TestCase):
    def setUp(self):
        self.disp = PygameDisplay(scale=4)
        self.disp.start()

    def tearDown(self):
        self.disp.stop()

    def test_window_size(self):
        self.assertTrue(self.disp.running)
        size = pygame.display.get_surface().get_size()
        self.assertEqual(size, (64 * 4, 32 * 4))

    def test_present_scales_pixels(self):
        fb = FrameBuffer()
        fb.draw(1, 0, bytes([0x80]))
        self.disp.present(fb.snapshot())
        screen = pygame.display.get_surface()
        self.assertEqual(tuple(screen.get_at((4 + 2, 2)))[:3], FG_COLOR)
        self.assertEqual(tuple(screen.get_at((2, 2)))[:3], BG_COLOR)
        self.assertEqual(self.disp.frames, 1)

    def test_present_keeps_column_major_layout(self):
        fb = FrameBuffer()
        fb.draw(60, 30, bytes([0x80]))
        fb.draw(0, 31, bytes([0x80]))
        self.disp.present(fb.snapshot())
        screen = pygame.display.get_surface()
        self.assertEqual(tuple(screen.get_at((60 * 4 + 1, 30 * 4 + 1)))[:3], FG_COLOR)
        self.assertEqual(tuple(screen.get_at((1, 31 * 4 + 1)))[:3], FG_COLOR)
        self.assertEqual(tuple(screen.get_at((30 * 4 + 1, 60 % 32 * 4 + 1)))[:3], BG_COLOR)

    def test_unchanged_frame_not_repainted(self):
        fb = FrameBuffer()
        fb.draw(0, 0, bytes([0x80]))
        self.disp.present(fb.snapshot())
        self.disp.present(fb.snapshot())
        self.assertEqual((self.disp.frames, self.disp.skipped), (1, 1))
        fb.draw(0, 0, bytes([0x80]))
        self.disp.present(fb.snapshot())
        self.assertEqual((self.disp.frames, self.disp.skipped), (2, 1))
        screen = pygame.display.get_surface()
        self.assertEqual(tuple(screen.get_at((1, 1)))[:3], BG_COLOR)

    def test_mapped_key_events(self):
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_q))
        pygame.event.post(pygame.event.Event(pygame.KEYUP, key=pygame.K_q))
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_p))
        self.assertEqual(self.disp.poll_input(), [(0x4, True), (0x4, False)])
        self.assertFalse(self.disp.quit_requested)

    def test_custom_keymap(self):
        self.disp.keymap = KeyMap.from_names(
            "0 1 2 3 4 5 6 7 8 9 a b c d e f".split())
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_e))
        self.assertEqual(self.disp.poll_input(), [(0xE, True)])

    def test_escape_requests_quit(self):
        pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_ESCAPE))
        self.assertEqual(self.disp.poll_input(), [])
        self.assertTrue(self.disp.quit_requested)

    def test_window_close_requests_quit(self):
        pygame.event.post(pygame.event.Event(pygame.QUIT))
        self.disp.poll_input()
        self.assertTrue(self.disp.quit_requested)

    def test_present_after_stop_is_ignored(self):
        self.disp.stop()
        self.disp.present(FrameBuffer().snapshot())
        self.assertEqual(self.disp.frames, 0)
        self.assertFalse(self.disp.running)


class TestPygameAudio(unittest.TestCase):
    def setUp(self):
        self.audio = PygameAudio()
        try:
            self.audio.open()
        except AudioUnavailable as e:
            self.skipTest(str(e))

    def tearDown(self):
        self.audio.close()

    def test_start_stop(self):
        self.audio.start()
        self.assertTrue(self.audio.playing)
        self.audio.start()
        self.assertTrue(self.audio.playing)
        self.audio.stop()
        self.assertFalse(self.audio.playing)

    def test_close_stops_playback(self):
        self.audio.start()
        self.audio.close()
        self.assertFalse(self.audio.playing)

    def test_unopened_is_silent(self):
        audio = PygameAudio()
        audio.start()
        self.assertFalse(audio.playing)


if __name__ == "__main__":
    unittest.main()
