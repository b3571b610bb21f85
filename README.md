# varvara

The peripheral devices of the Varvara computer, for use with a Uxn virtual
machine. A `varvara.varvara.Varvara` object routes the machine's device reads
and writes (`dei` / `deo`) to the device that owns each port:

| Ports       | Module               | Device                                              |
|-------------|----------------------|-----------------------------------------------------|
| `0x00`      | `varvara.system`     | palette, stack lengths, expansion memory, debug, exit |
| `0x10`      | `varvara.console`    | stdout, stderr, arguments, stdin                    |
| `0x20`      | `varvara.screen`     | two-layer framebuffer, pixels and sprites           |
| `0x30-0x6f` | `varvara.audio`      | four sample-playing voices with ADSR envelopes      |
| `0x80`      | `varvara.controller` | buttons and key characters                          |
| `0x90`      | `varvara.mouse`      | position, buttons, scrolling                        |
| `0xa0-0xbf` | `varvara.filedev`    | two file/directory devices sharing one open handle  |
| `0xc0`      | `varvara.clock`      | local date and time                                 |

Events passed from devices to the machine (`Event`, `EventData`) and the
`Output` snapshot handed to a front end live in `varvara.events`.

## What the package does not do

It holds the devices only. There is no Uxn CPU, no window or drawing surface,
no audio playback and no command-line program. You supply the machine; the
package fills in device memory and RAM, produces frames as bytes and audio as
float samples, and leaves showing and playing them to you.

## The machine object

Every device method takes a `vm` argument, which must provide:

* `dev`: a 256-byte mutable buffer of device memory,
* `ram`: a 65536-byte mutable buffer of main memory,
* `stack` and `ret`: stacks supporting `len()`, `set_len(n)` and
  `peek_byte_at(i)`,
* `run(device, vector)`: execute code from `vector`, calling
  `device.deo(vm, port)` and `device.dei(vm, port)` for port traffic
  (`Varvara.deo` returns `False` once the program has asked to exit).

## Install

```
pip install .
```

The package has no runtime dependencies. To run the tests:

```
pip install ".[test]"
pytest
```

## Use

```python
from varvara.varvara import Varvara
from varvara.controller import Key, CharKey
from varvara.mouse import MouseState

dev = Varvara()
dev.reset(extra_memory)          # loaded into the 15 expansion banks
vm.run(dev, 0x100)               # run the reset vector with dev attached

out = dev.output(vm)
out.check()                      # prints stdout/stderr, exits if requested

dev.mouse_input(vm, MouseState(pos=(10.0, 20.0), buttons=1))
dev.pressed(vm, Key.RIGHT, False)
dev.pressed(vm, CharKey(ord("a")), False)
dev.redraw(vm)                   # calls the screen vector; call at 60 Hz

out = dev.output(vm)
width, height = out.size
frame = out.frame                # 4 bytes per pixel, little-endian 0xAARRGGBB
```

`Varvara.output` empties the collected stdout and stderr and clears the exit
request, so each call returns only what is new. `Output.frame` holds at least
`width * height` pixels, row by row; take the first `width * height * 4`
bytes. `Output.hide_mouse` is true once the program has touched the mouse
ports.

### Input

* `Varvara.char(vm, byte)` sends a character through the controller;
  `pressed` and `released` take a `Key` or a `CharKey`, and the button port
  holds Ctrl, Alt, Shift, Home, Up, Down, Left and Right, lowest bit first.
* `Varvara.init_args(vm, args)` sets the console type before the reset vector
  if there are arguments; `Varvara.send_args(vm, args)` then delivers them
  byte by byte, leaves the console set to stdin and returns an `Output`.
* `Varvara.console_input(vm, byte)` sends one stdin byte.
  `varvara.console.spawn_worker(tx)` starts a daemon thread that calls `tx`
  with each byte read from standard input, stopping at end of input or when
  `tx` returns `False`.
* `Console.register_stdout_listener` and `register_stderr_listener` add
  callbacks that receive each byte the program writes.

### Audio

`Varvara.audio_streams()` returns the `StreamData` of the four voices. A
front end's audio thread calls `fill(buffer)` on each, holding the stream's
`lock`, to write interleaved stereo samples at 44100 Hz
(`varvara.audio.SAMPLE_RATE`, `CHANNELS`). `Varvara.process_audio(vm)` fires
the vector of every voice whose note has ended, and
`Varvara.audio_set_muted(True)` silences all voices.

### Files

The file devices only open relative paths that do not climb above the
working directory (`varvara.filedev.is_path_local`). Reading a directory
yields lines of the form `<size> <name>\n`, where the size is four hex
digits, `----` for a directory and `????` for files of 0xffff bytes or more.

### Date and time

`varvara.clock.Datetime` reads the local time from `datetime.now`; pass a
different callable as `clock` to fix the time. Daylight saving is always
reported as 0.