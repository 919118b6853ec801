"""Resuming an upload — capture a channel's state and continue elsewhere.

Demonstrates:
- Capturing a WriteChannel mid-upload and encoding the state
- Restoring the channel from the encoded bytes (e.g. in a new process)
- Resuming from the acknowledged cursor instead of the start
- Resuming a ReadChannel the same way
"""

from __future__ import annotations

import os
import tempfile

from remote_channel import ChannelConfig, ObjectId, Storage, WriteChannelState
from remote_channel.transports import LocalTransport

if __name__ == "__main__":
    data = os.urandom(5 * 1024 * 1024)
    chunk = 1024 * 1024

    with tempfile.TemporaryDirectory() as tmp:
        config = ChannelConfig(read_chunk_size=chunk, write_chunk_size=chunk)
        storage = Storage(LocalTransport(root=tmp), config)
        target = ObjectId("backups", "disk.img")

        # First "process": upload part of the data, then stop
        writer = storage.writer(target)
        writer.write(data[: 2 * chunk + 100])
        saved = writer.capture().encode()
        print(f"Captured at cursor {writer.cursor} ({writer.buffered} bytes still buffered)")

        # Second "process": only the saved bytes survive
        state = WriteChannelState.decode(saved)
        print(f"Decoded state: {state}")
        resumed = storage.restore(state)
        resumed.write(data[resumed.cursor :])
        resumed.close()
        print(f"Upload status: {resumed.status.value}")

        # Reads resume the same way
        reader = storage.reader(target)
        head = reader.read(1000)
        resumed_reader = storage.restore(reader.capture().encode())
        assert head + resumed_reader.read() == data
        print("Read resumed from byte 1000 and matched the original data.")
