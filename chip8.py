# CHIP8 Virtual Machine core:
# Input - the host reports key presses/releases, we keep the set of held keys.
# Output - 64x32 display buffer (pixels are either on or off) & a tone request per timer tick.
# CPU - CowGods CHIP8 Technical reference http://devernay.free.fr/hacks/chip8/C8TECH10.HTM#0.0
# Memory - 4096 bytes which hold the fonts (0x000-0x04F) and the loaded ROM (from 0x200).
#----------------------------------------------------------------------------------------------
# No windowing in here. The host calls step() on its CPU clock and tick() on its timer clock,
# and gets the frame and the beeps back through the draw/beep callbacks.
# I and pc are 16 bit counters, every memory access is masked down to 12 bits (& 0xFFF).

import random
from collections import namedtuple

import numpy as np

# ---- Configuration ----
WIDTH, HEIGHT = 64, 32
MEMORY_SIZE = 4096
ADDRESS_MASK = 0xFFF
FONT_START = 0x000
PROGRAM_START = 0x200
STACK_SIZE = 16
TIMER_HZ = 60

#make it true if you want the logs
logs_on = False

def log(*args):
    if logs_on:
        print(*args)

# Standard CHIP-8 fontset (80 bytes, 5 per hex digit)
FONTSET = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])
FONT_HEIGHT = 5


# ---- Errors ----
class Chip8Error(Exception):
    """Base class for everything the machine reports to its host."""


class InstructionFault(Chip8Error):
    """The instruction at `pc` could not be executed; the run is over."""

    reason = "Instruction fault"

    def __init__(self, opcode, pc, reason=None):
        if reason is not None:
            self.reason = reason
        self.opcode = opcode
        self.pc = pc
        super().__init__("%s: %04X at 0x%03X" % (self.reason, opcode, pc))


class InvalidInstruction(InstructionFault):
    reason = "Unimplemented instruction"


class StackOverflow(InstructionFault):
    reason = "Stack overflow on CALL"


class StackUnderflow(InstructionFault):
    reason = "Stack underflow on RET"


class RomLoadError(Chip8Error, ValueError):
    pass


# ---- Decoder ----
Opcode = namedtuple("Opcode", "word group x y n nn nnn")


def decode(word):
    """Split a 16 bit instruction word into its nibble fields.

    Every word decodes, whether the dispatcher knows the result is another matter.
    """
    word &= 0xFFFF
    return Opcode(
        word=word,
        group=word >> 12,
        x=(word >> 8) & 0xF,
        y=(word >> 4) & 0xF,
        n=word & 0xF,
        nn=word & 0xFF,
        nnn=word & 0x0FFF,
    )


class Chip8:
    """One CHIP-8 machine.

    draw(frame) is called from tick() with a read-only (32, 64) bool array whenever
    pixels changed since the last flush, beep(ms) whenever tick() drains the sound timer.
    Both are optional so the machine runs headless.
    """

    def __init__(self, draw=None, beep=None, seed=None):
        self.draw = draw
        self.beep = beep
        self.seed = seed

        # ---- CPU state ----
        self.memory = bytearray(MEMORY_SIZE)
        self.V = bytearray(16)                       # V0..VF, VF doubles as the flag register
        self.I = 0
        self.pc = PROGRAM_START
        self.stack = np.zeros(STACK_SIZE, dtype=np.uint16)
        self.sp = 0
        self.gfx = np.zeros((HEIGHT, WIDTH), dtype=bool)   # indexed [y, x]
        self.delay_timer = 0
        self.sound_timer = 0
        self.keys = set()
        self.rng = random.Random()

        self.should_draw = False
        self.waiting_for_key = None                  # register index while parked on FX0A
        self.fault = None
        self._paused = False

        self.setup_funcmap()
        self.reset()

    # ---- Opcode function map ----
    def setup_funcmap(self):
        self.funcmap = {
            0x0: self._0xxx,  # 00E0 / 00EE - Clear screen / return from subroutine
            0x1: self._1nnn,  # 1nnn - Jump
            0x2: self._2nnn,  # 2nnn - Call subroutine
            0x3: self._3xkk,  # 3xkk - Skip if Vx == kk
            0x4: self._4xkk,  # 4xkk - Skip if Vx != kk
            0x5: self._5xy0,  # 5xy0 - Skip if Vx == Vy
            0x6: self._6xkk,  # 6xkk - Vx = kk
            0x7: self._7xkk,  # 7xkk - Vx += kk
            0x8: self._8xxx,  # 8xy0..8xyE - register to register math
            0x9: self._9xy0,  # 9xy0 - Skip if Vx != Vy
            0xA: self._Annn,  # Annn - I = nnn
            0xB: self._Bnnn,  # Bnnn - Jump to nnn + V0
            0xC: self._Cxkk,  # Cxkk - Vx = random byte & kk
            0xD: self._Dxyn,  # Dxyn - Draw sprite
            0xE: self._Exxx,  # Ex9E / ExA1 - key skips
            0xF: self._Fxxx,  # Fx07..Fx65 - timers, I, memory, key wait
        }
        self.math_ops = {
            0x0: self._8xy0,
            0x1: self._8xy1,
            0x2: self._8xy2,
            0x3: self._8xy3,
            0x4: self._8xy4,
            0x5: self._8xy5,
            0x6: self._8xy6,
            0x7: self._8xy7,
            0xE: self._8xyE,
        }
        self.misc_ops = {
            0x07: self._Fx07,
            0x0A: self._Fx0A,
            0x15: self._Fx15,
            0x18: self._Fx18,
            0x1E: self._Fx1E,
            0x29: self._Fx29,
            0x33: self._Fx33,
            0x55: self._Fx55,
            0x65: self._Fx65,
        }

    # ---- Reset / loading ----
    def reset(self):
        self.memory[:] = bytes(MEMORY_SIZE)
        self.V[:] = bytes(16)
        self.stack.fill(0)
        self.gfx.fill(False)

        self.I = 0
        self.sp = 0
        self.pc = PROGRAM_START

        self.delay_timer = 0
        self.sound_timer = 0

        self.rng.seed(self.seed)
        self.keys.clear()
        self.waiting_for_key = None
        self.fault = None
        self.should_draw = True   # blank screen still has to reach the host

        self.load_memory(FONTSET, FONT_START)
        log("Machine reset")

    def load_memory(self, data, offset):
        """Copy `data` into memory starting at `offset`; nothing is written if it doesn't fit."""
        data = bytes(data)
        if offset < 0 or offset + len(data) > MEMORY_SIZE:
            raise RomLoadError(
                "%d bytes at 0x%03X run past the end of memory" % (len(data), offset))
        self.memory[offset:offset + len(data)] = data

    def load_rom(self, data):
        self.load_memory(data, PROGRAM_START)
        log("Loaded", len(data), "bytes at", hex(PROGRAM_START))

    def load_rom_file(self, path):
        log("Loading ROM:", path)
        with open(path, "rb") as f:
            rom = f.read()
        self.load_rom(rom)
        return len(rom)

    # ---- Memory access ----
    def read_byte(self, addr):
        return self.memory[addr & ADDRESS_MASK]

    def write_byte(self, addr, value):
        self.memory[addr & ADDRESS_MASK] = value & 0xFF

    def fetch(self):
        return (self.read_byte(self.pc) << 8) | self.read_byte(self.pc + 1)

    # ---- Display ----
    @property
    def display(self):
        frame = self.gfx.copy()
        frame.flags.writeable = False
        return frame

    # ---- Input ----
    def key_down(self, code):
        self.keys.add(code)

    def key_up(self, code):
        self.keys.discard(code)

    # ---- Pause / resume ----
    @property
    def paused(self):
        return self._paused

    def pause(self):
        self._paused = True

    def resume(self):
        self._paused = False

    @property
    def halted(self):
        return self.fault is not None

    # ---- Cycle ----
    def step(self):
        """Run one instruction (or one more attempt at a pending key wait)."""
        if self._paused or self.fault is not None:
            return

        if self.waiting_for_key is not None:
            self._poll_key_wait()
            return

        start = self.pc
        opcode = decode(self.fetch())
        self.pc = (self.pc + 2) & 0xFFFF

        try:
            self.funcmap[opcode.group](opcode)
        except InstructionFault as fault:
            self.pc = start
            self.fault = fault
            log("Halted:", fault)
            raise

    def tick(self):
        """Timer clock: count the delay timer down, flush sound and display."""
        if self._paused:
            return

        if self.delay_timer > 0:
            self.delay_timer -= 1

        # the whole sound timer becomes a single tone request
        if self.sound_timer > 0:
            duration = self.sound_timer * 1000 // TIMER_HZ
            self.sound_timer = 0
            log("Beep for", duration, "ms")
            if self.beep is not None:
                self.beep(duration)

        if self.should_draw:
            self.should_draw = False
            if self.draw is not None:
                self.draw(self.display)

    def _poll_key_wait(self):
        if not self.keys:
            return
        x = self.waiting_for_key
        self.V[x] = min(self.keys)
        self.waiting_for_key = None
        self.pc = (self.pc + 2) & 0xFFFF
        log(f"Key {self.V[x]:X} pressed, stored in V{x:X}")

    def _invalid(self, opcode):
        raise InvalidInstruction(opcode.word, (self.pc - 2) & 0xFFFF)

    def _skip(self):
        self.pc = (self.pc + 2) & 0xFFFF

    # ---- Opcode Handlers ----

    # 00E0 / 00EE, 0nnn machine calls are not supported
    def _0xxx(self, opcode):
        if opcode.word == 0x00E0:
            self.gfx.fill(False)
            self.should_draw = True
            log("Clear the display")
        elif opcode.word == 0x00EE:
            if self.sp == 0:
                raise StackUnderflow(opcode.word, (self.pc - 2) & 0xFFFF)
            self.sp -= 1
            self.pc = int(self.stack[self.sp])
            log("Return to", hex(self.pc))
        else:
            self._invalid(opcode)

    # 1nnn - Jump to address nnn
    def _1nnn(self, opcode):
        self.pc = opcode.nnn
        log("Jump to address", hex(opcode.nnn))

    # 2nnn - Call subroutine at nnn
    def _2nnn(self, opcode):
        if self.sp >= STACK_SIZE:
            raise StackOverflow(opcode.word, (self.pc - 2) & 0xFFFF)
        self.stack[self.sp] = self.pc
        self.sp += 1
        self.pc = opcode.nnn
        log("Call subroutine at", hex(opcode.nnn))

    # 3xkk - Skip next instruction if Vx == kk
    def _3xkk(self, opcode):
        if self.V[opcode.x] == opcode.nn:
            self._skip()

    # 4xkk - Skip next instruction if Vx != kk
    def _4xkk(self, opcode):
        if self.V[opcode.x] != opcode.nn:
            self._skip()

    # 5xy0 - Skip next instruction if Vx == Vy
    def _5xy0(self, opcode):
        if opcode.n != 0:
            self._invalid(opcode)
        if self.V[opcode.x] == self.V[opcode.y]:
            self._skip()

    # 6xkk - Set Vx = kk
    def _6xkk(self, opcode):
        self.V[opcode.x] = opcode.nn
        log(f"Set V{opcode.x:X} = {opcode.nn}")

    # 7xkk - Add immediate, no carry
    def _7xkk(self, opcode):
        self.V[opcode.x] = (self.V[opcode.x] + opcode.nn) & 0xFF

    # 8xy0..8xyE
    def _8xxx(self, opcode):
        op = self.math_ops.get(opcode.n)
        if op is None:
            self._invalid(opcode)
        op(opcode.x, opcode.y)

    # VF is written last in every flag-setting op, x or y may be F itself.
    def _8xy0(self, x, y):
        self.V[x] = self.V[y]

    def _8xy1(self, x, y):
        self.V[x] |= self.V[y]

    def _8xy2(self, x, y):
        self.V[x] &= self.V[y]

    def _8xy3(self, x, y):
        self.V[x] ^= self.V[y]

    def _8xy4(self, x, y):
        s = self.V[x] + self.V[y]
        self.V[x] = s & 0xFF
        self.V[0xF] = 1 if s > 0xFF else 0
        log(f"Add V{y:X} to V{x:X}: result {self.V[x]}, carry={self.V[0xF]}")

    def _8xy5(self, x, y):
        no_borrow = self.V[x] >= self.V[y]
        self.V[x] = (self.V[x] - self.V[y]) & 0xFF
        self.V[0xF] = 1 if no_borrow else 0
        log(f"Subtract V{y:X} from V{x:X}: result {self.V[x]}, NOT borrow={self.V[0xF]}")

    def _8xy6(self, x, y):
        lsb = self.V[x] & 1
        self.V[x] >>= 1
        self.V[0xF] = lsb

    def _8xy7(self, x, y):
        no_borrow = self.V[y] >= self.V[x]
        self.V[x] = (self.V[y] - self.V[x]) & 0xFF
        self.V[0xF] = 1 if no_borrow else 0

    def _8xyE(self, x, y):
        msb = (self.V[x] >> 7) & 1
        self.V[x] = (self.V[x] << 1) & 0xFF
        self.V[0xF] = msb

    # 9xy0 - Skip next instruction if Vx != Vy
    def _9xy0(self, opcode):
        if opcode.n != 0:
            self._invalid(opcode)
        if self.V[opcode.x] != self.V[opcode.y]:
            self._skip()

    # Annn - Set I = nnn
    def _Annn(self, opcode):
        self.I = opcode.nnn
        log(f"Set I = {self.I:03X}")

    # Bnnn - Jump to address nnn + V0
    def _Bnnn(self, opcode):
        self.pc = (opcode.nnn + self.V[0]) & 0xFFFF
        log(f"Jump to address V0 + {opcode.nnn:03X} = {self.pc:03X}")

    # Cxkk - Vx = random byte & kk
    def _Cxkk(self, opcode):
        self.V[opcode.x] = self.rng.getrandbits(8) & opcode.nn

    # Dxyn - XOR an 8xN sprite from memory[I] onto the screen at (Vx, Vy)
    # Pixels past the right or bottom edge are dropped, not wrapped.
    def _Dxyn(self, opcode):
        px = self.V[opcode.x]
        py = self.V[opcode.y]
        rows = np.array([self.read_byte(self.I + row) for row in range(opcode.n)], dtype=np.uint8)
        sprite = np.unpackbits(rows).reshape(opcode.n, 8).astype(bool)

        target = self.gfx[py:py + opcode.n, px:px + 8]
        sprite = sprite[:target.shape[0], :target.shape[1]]
        collision = bool(np.any(target & sprite))
        target ^= sprite

        if sprite.any():
            self.should_draw = True
        self.V[0xF] = 1 if collision else 0
        log(f"Drew sprite at ({px}, {py}), collision={self.V[0xF]}")

    # Ex9E / ExA1 - skip if key Vx is / is not held
    def _Exxx(self, opcode):
        held = self.V[opcode.x] in self.keys
        if opcode.nn == 0x9E:
            if held:
                self._skip()
        elif opcode.nn == 0xA1:
            if not held:
                self._skip()
        else:
            self._invalid(opcode)

    # Fx07..Fx65
    def _Fxxx(self, opcode):
        op = self.misc_ops.get(opcode.nn)
        if op is None:
            self._invalid(opcode)
        op(opcode.x)

    def _Fx07(self, x):
        self.V[x] = self.delay_timer

    def _Fx0A(self, x):
        # LD Vx, K: park on this instruction until a key is held
        if self.keys:
            self.V[x] = min(self.keys)
            return
        self.waiting_for_key = x
        self.pc = (self.pc - 2) & 0xFFFF
        log(f"Waiting for a key for V{x:X}")

    def _Fx15(self, x):
        self.delay_timer = self.V[x]

    def _Fx18(self, x):
        self.sound_timer = self.V[x]

    def _Fx1E(self, x):
        total = self.I + self.V[x]
        self.I = total & 0xFFFF
        self.V[0xF] = 1 if total > ADDRESS_MASK else 0

    def _Fx29(self, x):
        self.I = FONT_START + self.V[x] * FONT_HEIGHT

    def _Fx33(self, x):
        val = self.V[x]
        self.write_byte(self.I, val // 100)
        self.write_byte(self.I + 1, (val // 10) % 10)
        self.write_byte(self.I + 2, val % 10)

    def _Fx55(self, x):
        for i in range(x + 1):
            self.write_byte(self.I + i, self.V[i])

    def _Fx65(self, x):
        for i in range(x + 1):
            self.V[i] = self.read_byte(self.I + i)

    # ---- Debugging ----
    def dump_state(self):
        """CPU state as text lines: counters, registers next to stack slots, then memory."""
        lines = ["CHIP 8 CPU STATE DUMP"]
        lines.append("COUNTERS".ljust(15, "="))
        lines.append("I [0x%04x]     SP [0x%02x]     PC [0x%04x]" % (self.I, self.sp, self.pc))
        lines.append("REGISTERS".ljust(15, "="))
        for i in range(0, 16, 2):
            lines.append("V%X [0x%02x]    V%X [0x%02x]    S%X [0x%04x]    S%X [0x%04x]" % (
                i, self.V[i], i + 1, self.V[i + 1],
                i, int(self.stack[i]), i + 1, int(self.stack[i + 1])))
        lines.append("MEMORY".ljust(15, "="))
        lines.append("       " + " ".join("%02x" % col for col in range(16)))
        for base in range(0, MEMORY_SIZE, 16):
            row = self.memory[base:base + 16]
            lines.append("0x%04x " % base + " ".join("%02x" % b for b in row))
        lines.append("END".ljust(15, "="))
        return lines

    def test_screen(self):
        """Light every pixel one at a time, flushing each frame, then blank the screen."""
        for y in range(HEIGHT):
            for x in range(WIDTH):
                self.gfx[y, x] = True
                if self.draw is not None:
                    self.draw(self.display)
        self.gfx.fill(False)
        if self.draw is not None:
            self.draw(self.display)
        self.should_draw = False
