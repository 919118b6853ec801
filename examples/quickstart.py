"""Quickstart — write and read an object with remote-channel.

Demonstrates:
- Creating a Storage over a local-directory transport
- Streaming an upload through a WriteChannel
- Reading it back with a ReadChannel and checking metadata
"""

from __future__ import annotations

import tempfile

from remote_channel import ChannelConfig, ObjectId, Storage
from remote_channel.transports import LocalTransport

if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        config = ChannelConfig(read_chunk_size=64 * 1024, write_chunk_size=256 * 1024)

        with Storage(LocalTransport(root=tmp), config) as storage:
            target = ObjectId("reports", "2024/summary.txt")

            # Stream an upload in pieces
            with storage.writer(target, {"contentType": "text/plain"}) as channel:
                for line in range(1000):
                    channel.write(f"line {line}\n".encode())
            print(f"Upload committed: {channel.status.value}")

            # Read it back in chunks
            with storage.reader(target) as reader:
                first = reader.read(7)
                print(f"First bytes: {first!r}")
                reader.seek(0)
                print(f"Total size: {len(reader.read())} bytes")

            # Check metadata
            info = storage.stat(target)
            print(f"Size: {info.size} bytes, generation: {info.generation}")

    print("Done! Temp directory cleaned up automatically.")
