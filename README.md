# aiocanopen

A small, low-level CANopen client for `asyncio`.

It talks to CANopen devices over a CAN bus and covers the parts of the
protocol that a controlling node needs most often:

* **NMT** (`aiocanopen.nmt`): send network-management commands (start, stop,
  go to pre-operational, reset, reset communication) and wait for the
  device's heartbeat to confirm the expected state.
* **SYNC**: broadcast SYNC messages, with or without a counter (1 to 255).
* **SDO** (`aiocanopen.sdo`, `aiocanopen.sdo_protocol`): read (upload) and
  write (download) object-dictionary entries, using expedited transfers for
  up to 4 bytes and segmented transfers for more. Transfers that fail part-way
  are aborted towards the server, and abort codes sent by the server are
  reported as readable errors.
* **PDO** (`aiocanopen.pdo`, `aiocanopen.pdo_types`): read and write the full
  configuration of RPDOs and TPDOs: communication parameters (COB-ID,
  transmission type, inhibit time, event/deadline timer, start SYNC) and the
  object mappings.

The package has no runtime dependencies beyond the standard library. The
command-line tool uses Linux SocketCAN.

## Installation

```console
pip install aiocanopen
```

## Command-line tool

The `aiocanopen` command works with a CANopen node on a SocketCAN interface.
It has these subcommands:

| Subcommand        | What it does                                                      |
|-------------------|-------------------------------------------------------------------|
| `nmt`             | send an NMT command (`start`, `stop`, `go-to-pre-operational`, `reset`, `reset-communication`) and wait for the heartbeat |
| `sync`            | send a SYNC (`--counter`) and log the frames received during `--sync-window` seconds |
| `read-pdo-config` | print the configuration of `--rpdo N` or `--tpdo N`               |
| `configure-pdo`   | read a PDO configuration, change it and write it back             |
| `read-sdo`        | read an object and print it (`--format` raw, octal, decimal, hexadecimal, utf8, utf16) |
| `write-sdo`       | write the given bytes to an object                                |

Numbers such as node IDs, object indices and data bytes can be given in
decimal or with a `0x`, `0o` or `0b` prefix. Timeouts (`-t`/`--timeout`,
default 1) are given in seconds. PDO mappings for `configure-pdo --mapping`
are written as `INDEX,SUBINDEX,BITS` and the option may be repeated.

```console
aiocanopen --help
aiocanopen nmt can0 5 start
aiocanopen read-sdo can0 5 0x1008 0 --format utf8
aiocanopen write-sdo can0 5 0x6060 0 2
aiocanopen configure-pdo can0 5 --tpdo 0 --transmission-type 1 --mapping 0x6041,0,16
```

The command exits with status 1 when an operation fails.

## Using the library

All bus access goes through a `CanOpenSocket` (`aiocanopen.socket`), which
wraps a CAN transport: anything implementing `CanTransport`, that is an
async `send(frame)` and an async `recv()`. `aiocanopen.cli.SocketCanTransport`
is the SocketCAN implementation used by the command-line tool.

```python
import asyncio

from aiocanopen.cli import SocketCanTransport
from aiocanopen.nmt import NmtCommand
from aiocanopen.objects import ObjectIndex
from aiocanopen.sdo import DataType
from aiocanopen.sdo_protocol import SdoAddress, SdoError
from aiocanopen.socket import CanOpenSocket


async def run() -> None:
    transport = SocketCanTransport.open("can0")
    bus = CanOpenSocket(transport)
    sdo = SdoAddress.standard()
    try:
        await bus.send_nmt_command(5, NmtCommand.GO_TO_PRE_OPERATIONAL, 1.0)

        try:
            name = await bus.sdo_upload(5, sdo, ObjectIndex(0x1008, 0), DataType.STRING, 1.0)
        except SdoError as error:
            print(f"upload failed: {error}")
        else:
            print(name)

        await bus.sdo_download(5, sdo, ObjectIndex(0x6060, 0), 2, 1.0, DataType.U8)

        config = await bus.read_tpdo_configuration(5, sdo, 0, 1.0)
        print(config)
    finally:
        transport.close()


asyncio.run(run())
```

Integer values need a `DataType` (`U8` to `U128`, `I8` to `I128`) to be
written; `bytes` and `str` values may leave it out. `sdo_upload_raw` returns
the raw bytes of an object, optionally limited by `capacity`.

Errors are raised as exceptions: SDO failures derive from `SdoError`
(for example `SdoTimeout`, `TransferAborted`, `WrongDataCount`), NMT failures
from `NmtError` (for example `NmtTimeout`, `UnexpectedState`) and PDO
configuration failures from `PdoConfigError` (for example `InvalidPdoNumber`,
`InhibitTimeNotSupported`).

PDO configurations are plain data objects (`RpdoConfiguration`,
`TpdoConfiguration`, `PdoMapping`, `RpdoTransmissionType`,
`TpdoTransmissionType`) that can be read, modified and written back with
`configure_rpdo` / `configure_tpdo`.

## What it does not do

* It is a client only: there is no CANopen device side and no object
  dictionary of its own.
* SDO block transfers are not supported.
* There is no ready-made application such as a motor-control loop; sending
  and receiving process data is left to `send_frame` and
  `recv_frame_deadline` on the socket.
* Frames that arrive while waiting for a specific response and do not match
  it are dropped, not kept for later.

## A note on terminology

CANopen names transfers from the server's point of view: an SDO *upload*
reads a value from the device, an SDO *download* writes a value to it.

## Running the tests

```console
pip install -e ".[test]"
pytest
```