# pyglet host for the CHIP-8 core in chip8.py.
# The window owns one Chip8 machine and drives its two clocks:
#   - CPU clock: machine.step() at cpu_hz
#   - timer clock: machine.tick() at timer_hz, which hands us frames and beeps back
# Keyboard -> keypad mapping, upscaling the 64x32 frame and playing the beep all live here.
#
# Keys: ESC quit, P pause/resume, F5 reset + reload ROM, F1 toggle logs.

import argparse
import sys

import numpy as np
import pyglet
from pyglet.window import key
from pyglet.media import synthesis

import chip8

# ---- Configuration ----
scale = 10
cpu_hz = 400
timer_hz = chip8.TIMER_HZ
beep_frequency = 440
dump_path = "cpu.dump"

# map binding keys
keymap = {
    key._1: 0x1, key._2: 0x2, key._3: 0x3, key._4: 0xC,
    key.Q: 0x4, key.W: 0x5, key.E: 0x6, key.R: 0xD,
    key.A: 0x7, key.S: 0x8, key.D: 0x9, key.F: 0xE,
    key.Z: 0xA, key.X: 0x0, key.C: 0xB, key.V: 0xF,
}


def upscale(frame, factor):
    """(32, 64) bool frame -> (32*factor, 64*factor, 4) RGBA bytes, bottom row first for pyglet."""
    small = np.zeros(frame.shape + (4,), dtype=np.uint8)
    small[..., :3] = frame[::-1, :, None] * 255
    small[..., 3] = 255
    if factor != 1:
        small = np.repeat(np.repeat(small, factor, axis=0), factor, axis=1)
    return small


class Chip8Window(pyglet.window.Window):

    # Window.scale is pyglet's read-only DPI ratio
    def __init__(self, rom_path, pixel_scale=scale, cpu_hz=cpu_hz, timer_hz=timer_hz):
        self.pixel_scale = pixel_scale
        super().__init__(
            width=chip8.WIDTH * pixel_scale,
            height=chip8.HEIGHT * pixel_scale,
            caption="CHIP-8 Emulator",
            vsync=False
        )

        self.rom_path = rom_path
        self.machine = chip8.Chip8(draw=self.on_frame, beep=self.play_beep)
        self.machine.load_rom_file(rom_path)

        # last frame handed over by the machine
        self.frame = self.machine.display
        self.image = pyglet.image.ImageData(
            self.width,
            self.height,
            'RGBA',
            upscale(self.frame, self.pixel_scale).tobytes()
        )
        self.status_label = pyglet.text.Label(
            "",
            font_size=12,
            x=5,
            y=self.height - 15,
            anchor_x='left',
            anchor_y='center',
            color=(255, 0, 0, 255)
        )

        # Schedule the loops
        pyglet.clock.schedule_interval(self._cpu_tick, 1.0 / cpu_hz)
        pyglet.clock.schedule_interval(self._timer_tick, 1.0 / timer_hz)

    # ---- Clocks ----
    def _cpu_tick(self, dt):
        try:
            self.machine.step()
        except chip8.Chip8Error as e:
            print("Emulation error:", e)
            self.write_dump()
            self.status_label.text = str(e)

    def _timer_tick(self, dt):
        self.machine.tick()

    # ---- Machine callbacks ----
    def on_frame(self, frame):
        self.frame = frame
        self.image.set_data('RGBA', self.image.width * 4, upscale(frame, self.pixel_scale).tobytes())

    def play_beep(self, duration_ms):
        wave = synthesis.Sine(duration=duration_ms / 1000.0, frequency=beep_frequency, sample_rate=44100)
        player = pyglet.media.Player()
        player.queue(wave)
        player.play()

        def on_eos():
            player.delete()

        player.on_eos = on_eos

    def write_dump(self):
        with open(dump_path, "w") as f:
            f.write("\n".join(self.machine.dump_state()) + "\n")
        print("CPU state dumped to", dump_path)

    def restart(self):
        self.machine.pause()
        self.machine.reset()
        self.machine.load_rom_file(self.rom_path)
        self.status_label.text = ""
        self.machine.resume()

    # ---- Drawing ----
    def on_draw(self):
        self.clear()
        self.image.blit(0, 0)
        if self.status_label.text:
            self.status_label.draw()

    # ---- Input ----
    def on_key_press(self, symbol, modifiers):
        if symbol == key.ESCAPE:
            self.close()
        elif symbol == key.P:
            if self.machine.paused:
                self.machine.resume()
            else:
                self.machine.pause()
        elif symbol == key.F5:
            self.restart()
        elif symbol == key.F1:
            chip8.logs_on = not chip8.logs_on
            print("logs_on:", chip8.logs_on)
        elif symbol in keymap:
            self.machine.key_down(keymap[symbol])

    def on_key_release(self, symbol, modifiers):
        if symbol in keymap:
            self.machine.key_up(keymap[symbol])

    def on_close(self):
        pyglet.clock.unschedule(self._cpu_tick)
        pyglet.clock.unschedule(self._timer_tick)
        super().on_close()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 emulator")
    parser.add_argument("rom", help="raw CHIP-8 ROM image")
    parser.add_argument("--scale", type=int, default=scale, help="window pixels per CHIP-8 pixel")
    parser.add_argument("--cpu-hz", type=int, default=cpu_hz, help="instructions per second")
    parser.add_argument("--timer-hz", type=int, default=timer_hz, help="timer/display rate")
    parser.add_argument("--log", action="store_true", help="print a trace of executed instructions")
    return parser.parse_args(argv)


# ---- Entry point ----
def main(argv=None):
    args = parse_args(argv)
    chip8.logs_on = args.log
    try:
        Chip8Window(args.rom, pixel_scale=args.scale, cpu_hz=args.cpu_hz, timer_hz=args.timer_hz)
    except (OSError, chip8.RomLoadError) as e:
        print("Could not load ROM:", e)
        sys.exit(1)
    pyglet.app.run()


if __name__ == "__main__":
    main()
