"""
pyglet host tests
=================
Exercise chip8_emulator without opening a window: the window object is
built with __new__ and given only the state its callbacks touch.
"""

import os
import tempfile
import unittest
from contextlib import redirect_stdout
from io import StringIO
from types import SimpleNamespace

import numpy as np
import pyglet

import chip8
import chip8_emulator
from chip8_emulator import Chip8Window, upscale, parse_args


def program(*words):
    return b"".join(w.to_bytes(2, "big") for w in words)


def bare_window(pixel_scale=3):
    w = Chip8Window.__new__(Chip8Window)
    w.pixel_scale = pixel_scale
    w.machine = chip8.Chip8(draw=w.on_frame)
    w.frame = w.machine.display
    w.image = pyglet.image.ImageData(
        chip8.WIDTH * pixel_scale,
        chip8.HEIGHT * pixel_scale,
        'RGBA',
        upscale(w.frame, pixel_scale).tobytes()
    )
    w.status_label = SimpleNamespace(text="")
    return w


class TestUpscale(unittest.TestCase):
    def test_shape_and_flip(self):
        frame = np.zeros((chip8.HEIGHT, chip8.WIDTH), dtype=bool)
        frame[0, 0] = True
        out = upscale(frame, 3)
        self.assertEqual(out.shape, (96, 192, 4))
        self.assertEqual(out.dtype, np.uint8)
        # top-left CHIP-8 pixel ends up in the bottom rows (pyglet is bottom-up)
        self.assertTrue((out[-3:, :3, :3] == 255).all())
        self.assertTrue((out[:-3, :, :3] == 0).all())
        self.assertTrue((out[..., 3] == 255).all())

    def test_no_scaling(self):
        frame = np.ones((chip8.HEIGHT, chip8.WIDTH), dtype=bool)
        self.assertEqual(upscale(frame, 1).shape, (32, 64, 4))


class TestWindowState(unittest.TestCase):
    def setUp(self):
        fd, self.dump = tempfile.mkstemp(suffix=".dump")
        os.close(fd)
        self.saved_dump_path = chip8_emulator.dump_path
        chip8_emulator.dump_path = self.dump

    def tearDown(self):
        chip8_emulator.dump_path = self.saved_dump_path
        os.remove(self.dump)

    def test_pixel_scale_is_settable(self):
        w = bare_window(pixel_scale=10)
        self.assertEqual(w.pixel_scale, 10)

    def test_frames_reach_the_window(self):
        w = bare_window()
        w.machine.load_rom(program(0xA000, 0xD005))
        w._cpu_tick(0)
        w._cpu_tick(0)
        w._timer_tick(0)
        self.assertTrue(w.frame[0, :4].all())

    def test_fault_keeps_timer_clock_running(self):
        w = bare_window()
        w.machine.load_rom(program(0xA000, 0xD005, 0xFFFF))
        with redirect_stdout(StringIO()) as out:
            for _ in range(4):
                w._cpu_tick(0)
        self.assertIn("Emulation error", out.getvalue())
        self.assertTrue(w.machine.halted)
        self.assertFalse(w.machine.paused)
        self.assertEqual(w.status_label.text, str(w.machine.fault))

        # frame drawn just before the fault still gets flushed
        w._timer_tick(0)
        self.assertTrue(w.frame[0, :4].all())

        with open(self.dump) as f:
            self.assertEqual(f.readline().strip(), "CHIP 8 CPU STATE DUMP")

    def test_parse_args(self):
        args = parse_args(["game.ch8", "--scale", "4", "--cpu-hz", "700"])
        self.assertEqual(args.rom, "game.ch8")
        self.assertEqual(args.scale, 4)
        self.assertEqual(args.cpu_hz, 700)
        self.assertEqual(args.timer_hz, chip8.TIMER_HZ)
        self.assertFalse(args.log)
